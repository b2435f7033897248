from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Literal
from uuid import uuid4

FieldFormat = Literal["text", "json"]

SNAPSHOT_FIELDS: tuple[str, ...] = (
    "user_stats",
    "info_box",
    "character_thoughts",
    "spotify_url",
)

# Section headers the renderer writes into an otherwise empty text tracker.
EMPTY_PLACEHOLDERS: dict[str, str] = {
    "info_box": "Info Box\n---\n",
    "character_thoughts": "Present Characters\n---\n",
}


@dataclass(frozen=True)
class TrackerField:
    format: FieldFormat
    value: str

    @classmethod
    def text(cls, value: str) -> TrackerField:
        return cls(format="text", value=value)

    @classmethod
    def json(cls, value: Any) -> TrackerField:
        if isinstance(value, str):
            return cls(format="json", value=value)
        return cls(format="json", value=json.dumps(value, ensure_ascii=False))

    @classmethod
    def from_legacy(cls, raw: str) -> TrackerField:
        """Classify an untagged persisted value."""
        candidate = raw.strip()
        if candidate[:1] in {"{", "["}:
            try:
                loaded = json.loads(candidate)
            except ValueError:
                loaded = None
            if isinstance(loaded, (dict, list)):
                return cls(format="json", value=raw)
        return cls(format="text", value=raw)

    def parsed(self) -> Any:
        if self.format != "json":
            return None
        try:
            return json.loads(self.value)
        except ValueError:
            return None

    def is_blank(self) -> bool:
        return not self.value.strip()

    def to_payload(self) -> dict[str, str]:
        return {"format": self.format, "value": self.value}

    @classmethod
    def from_payload(cls, payload: Any) -> TrackerField | None:
        if payload is None:
            return None
        if isinstance(payload, str):
            return cls.from_legacy(payload)
        if isinstance(payload, dict) and isinstance(payload.get("value"), str):
            fmt = payload.get("format")
            if fmt in {"text", "json"}:
                return cls(format=fmt, value=payload["value"])
            return cls.from_legacy(payload["value"])
        return None


@dataclass(frozen=True)
class TrackerSnapshot:
    user_stats: TrackerField | None = None
    info_box: TrackerField | None = None
    character_thoughts: TrackerField | None = None
    spotify_url: TrackerField | None = None

    def fields(self) -> dict[str, TrackerField]:
        present: dict[str, TrackerField] = {}
        for name in SNAPSHOT_FIELDS:
            value = getattr(self, name)
            if value is not None:
                present[name] = value
        return present

    def with_fields(self, **updates: TrackerField | None) -> TrackerSnapshot:
        unknown = set(updates) - set(SNAPSHOT_FIELDS)
        if unknown:
            raise KeyError(f"Unknown tracker fields: {sorted(unknown)}")
        return replace(self, **updates)

    def overlay(self, other: TrackerSnapshot) -> TrackerSnapshot:
        """Replace every field that is present in ``other``; keep the rest."""
        return self.with_fields(**other.fields())

    def is_empty(self) -> bool:
        for name, value in self.fields().items():
            if value.is_blank():
                continue
            if value.format == "text" and value.value == EMPTY_PLACEHOLDERS.get(name):
                continue
            return False
        return True

    def to_payload(self) -> dict[str, Any]:
        return {name: value.to_payload() for name, value in self.fields().items()}

    @classmethod
    def from_payload(cls, payload: Any) -> TrackerSnapshot:
        if not isinstance(payload, dict):
            return cls()
        values: dict[str, TrackerField | None] = {}
        for name in SNAPSHOT_FIELDS:
            values[name] = TrackerField.from_payload(payload.get(name))
        return cls(**values)


@dataclass
class ChatMessage:
    text: str
    is_user: bool
    is_system: bool = False
    swipe_id: int = 0
    archived: dict[int, TrackerSnapshot] = field(default_factory=dict)

    @property
    def is_assistant(self) -> bool:
        return not self.is_user and not self.is_system

    def archived_snapshot(self) -> TrackerSnapshot | None:
        return self.archived.get(self.swipe_id)


@dataclass(frozen=True)
class GenerationRequest:
    generation_type: str = "normal"
    dry_run: bool = False
    is_swipe: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def is_image_generation(self) -> bool:
        return bool(
            self.data.get("quiet_image")
            or self.data.get("quietImage")
            or self.data.get("is_image_generation")
        )


@dataclass(frozen=True)
class SuppressionDecision:
    should_suppress: bool
    skip_mode: str
    reason: str = ""
    is_guided: bool = False
    is_impersonation: bool = False
    has_quiet_prompt: bool = False
    matched_pattern: str = ""


class SlotKind(IntEnum):
    NONE = -1
    IN_PROMPT = 0
    IN_CHAT = 1
    BEFORE_PROMPT = 2


class SlotRole(IntEnum):
    SYSTEM = 0
    USER = 1
    ASSISTANT = 2


@dataclass(frozen=True)
class SlotWrite:
    name: str
    text: str
    kind: SlotKind = SlotKind.IN_CHAT
    depth: int = 0
    is_volatile: bool = False
    role: SlotRole = SlotRole.SYSTEM

    @property
    def is_clear(self) -> bool:
        return self.text == ""


@dataclass(frozen=True)
class Span:
    start: int
    end: int


@dataclass
class PreAssemblyPayload:
    messages: list[dict[str, Any]]
    api: str = ""
    dry_run: bool = False


@dataclass
class FlatPromptPayload:
    prompt: str
    dry_run: bool = False


@dataclass
class ChatCompletionPayload:
    chat: list[dict[str, Any]]
    dry_run: bool = False


@dataclass(frozen=True)
class ParsedTracker:
    snapshot: TrackerSnapshot
    parsing_failed: bool = False
