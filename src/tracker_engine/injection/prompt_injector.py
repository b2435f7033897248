from __future__ import annotations

from typing import Callable, Sequence

from tracker_engine.config import AppConfig, GenerationMode
from tracker_engine.host import SlotHost
from tracker_engine.logging_setup import get_logger
from tracker_engine.prompts.catalog import FEATURE_KEYS
from tracker_engine.prompts.manager import MUSIC_FORMAT_INSTRUCTION, PromptManager
from tracker_engine.prompts.rendering import (
    render_contextual_summary,
    render_tracker_example,
    render_tracker_instructions,
)
from tracker_engine.state.models import (
    ChatMessage,
    SlotKind,
    SlotRole,
    SlotWrite,
    TrackerSnapshot,
)

CONTEXT_DEPTH = 1

# The host orders same-depth slots by name; "zzz" keeps the action list last.
SLOT_SUFFIXES: dict[str, str] = {
    "instructions": "inject",
    "example": "example",
    "context": "context",
    "immersive_markup": "html",
    "dialogue_coloring": "dialogue-coloring",
    "deception": "deception",
    "omniscience_filter": "omniscience",
    "music_suggestion": "music",
    "choose_your_own_adventure": "zzz-cyoa",
}


def last_assistant_depth(transcript: Sequence[ChatMessage]) -> int:
    """Depth of the newest real assistant message, skipping the newest entry."""
    for depth in range(1, len(transcript)):
        message = transcript[len(transcript) - 1 - depth]
        if message.is_assistant:
            return depth
    return -1


class PromptInjector:
    def __init__(self, *, config: AppConfig, host: SlotHost, prompts: PromptManager) -> None:
        self.logger = get_logger(__name__)
        self.config = config
        self.host = host
        self.prompts = prompts

    def slot_name(self, key: str) -> str:
        return f"{self.config.slots.prefix}-{SLOT_SUFFIXES[key]}"

    @property
    def slot_names(self) -> list[str]:
        return [self.slot_name(key) for key in SLOT_SUFFIXES]

    def _write(
        self,
        key: str,
        text: str,
        *,
        depth: int = 0,
        role: SlotRole = SlotRole.SYSTEM,
    ) -> SlotWrite:
        write = SlotWrite(
            name=self.slot_name(key),
            text=text,
            kind=SlotKind.IN_CHAT,
            depth=depth,
            is_volatile=False,
            role=role,
        )
        self.host.set_slot(
            write.name,
            write.text,
            write.kind,
            write.depth,
            write.is_volatile,
            write.role,
        )
        return write

    def _clear(self, key: str) -> SlotWrite:
        depth = CONTEXT_DEPTH if key == "context" else 0
        return self._write(key, "", depth=depth)

    def clear_all(self) -> list[SlotWrite]:
        return [self._clear(key) for key in SLOT_SUFFIXES]

    def apply_injections(
        self,
        mode: GenerationMode,
        committed: TrackerSnapshot,
        transcript: Sequence[ChatMessage],
        suppressed: bool,
    ) -> list[SlotWrite]:
        if suppressed or not self.config.enabled:
            self.logger.debug("Clearing all tracker slots (suppressed=%s).", suppressed)
            return self.clear_all()

        if mode == "together":
            writes = self._together(committed, transcript)
        elif mode in {"separate", "external"}:
            writes = self._follow_up(committed)
        else:
            self.logger.warning("Unknown generation mode=%s; clearing tracker slots.", mode)
            return self.clear_all()

        for key in FEATURE_KEYS:
            writes.append(self._feature(key))
        return writes

    def _together(
        self, committed: TrackerSnapshot, transcript: Sequence[ChatMessage]
    ) -> list[SlotWrite]:
        enabled_fields = self.config.trackers.enabled_fields()
        writes = [self._clear("context")]

        depth = last_assistant_depth(transcript)
        example = self._render(
            "example",
            lambda: render_tracker_example(committed, enabled_fields=enabled_fields),
        )
        if example and depth > 0:
            writes.append(self._write("example", example, depth=depth, role=SlotRole.ASSISTANT))
        else:
            writes.append(self._clear("example"))

        instructions = self._render(
            "instructions",
            lambda: render_tracker_instructions(
                self.prompts.get("tracker_instructions"),
                enabled_fields=enabled_fields,
                committed=committed,
                user_name=self.config.generation.user_name,
            ),
        )
        if instructions:
            writes.append(self._write("instructions", instructions, role=SlotRole.USER))
        else:
            writes.append(self._clear("instructions"))
        return writes

    def _follow_up(self, committed: TrackerSnapshot) -> list[SlotWrite]:
        writes = [self._clear("instructions"), self._clear("example")]
        summary = self._render(
            "context",
            lambda: render_contextual_summary(
                committed,
                enabled_fields=self.config.trackers.enabled_fields(),
                user_name=self.config.generation.user_name,
            ),
        )
        if summary:
            preamble = self.prompts.get("context_instructions")
            wrapped = f"\n<context>\n{summary}\n{preamble}\n</context>"
            writes.append(self._write("context", wrapped, depth=CONTEXT_DEPTH))
        else:
            writes.append(self._clear("context"))
        return writes

    def _feature(self, key: str) -> SlotWrite:
        if not getattr(self.config.features, key):
            return self._clear(key)
        fragment = self._render(key, lambda: self._feature_fragment(key))
        if not fragment:
            return self._clear(key)
        return self._write(key, fragment)

    def _feature_fragment(self, key: str) -> str:
        text = self.prompts.get(key)
        if key == "omniscience_filter":
            return f"\n{text}\n"
        if key == "music_suggestion":
            return f"\n- {text} {MUSIC_FORMAT_INSTRUCTION}\n"
        return f"\n- {text}\n"

    def _render(self, key: str, render: Callable[[], str | None]) -> str | None:
        try:
            return render()
        except Exception as exc:
            self.logger.warning(
                "Tracker fragment render failed slot=%s error=%s",
                self.slot_name(key),
                exc.__class__.__name__,
            )
            self.logger.debug("Tracker fragment render details: %s", exc)
            return None
