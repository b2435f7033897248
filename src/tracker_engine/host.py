from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from tracker_engine.state.models import (
    ChatCompletionPayload,
    ChatMessage,
    FlatPromptPayload,
    GenerationRequest,
    PreAssemblyPayload,
    SlotKind,
    SlotRole,
    SlotWrite,
)


class SlotHost(Protocol):
    def set_slot(
        self,
        name: str,
        text: str,
        kind: SlotKind,
        depth: int,
        is_volatile: bool,
        role: SlotRole,
    ) -> None: ...


class LifecycleSink(Protocol):
    def on_generation_start(self, request: GenerationRequest) -> None: ...

    def on_pre_assembly(self, payload: PreAssemblyPayload) -> None: ...

    def on_post_assembly(self, payload: FlatPromptPayload) -> None: ...

    def on_chat_completion_ready(self, payload: ChatCompletionPayload) -> None: ...


class HostEnvironment(SlotHost, Protocol):
    def subscribe(self, sink: LifecycleSink) -> None: ...

    def chat(self) -> list[ChatMessage]: ...

    def session_metadata(self) -> dict[str, Any]: ...

    async def generate_raw(self, messages: list[dict[str, str]]) -> str: ...

    def save_session(self, payload: dict[str, Any]) -> None: ...

    def notify(self, level: str, message: str, title: str = "") -> None: ...


@dataclass
class InMemoryHost:
    """Host stand-in that keeps slots, saves and notices in memory."""

    messages: list[ChatMessage] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    raw_responses: list[str] = field(default_factory=list)
    slots: dict[str, SlotWrite] = field(default_factory=dict)
    saved: list[dict[str, Any]] = field(default_factory=list)
    notices: list[tuple[str, str, str]] = field(default_factory=list)
    raw_requests: list[list[dict[str, str]]] = field(default_factory=list)
    sinks: list[LifecycleSink] = field(default_factory=list)

    def set_slot(
        self,
        name: str,
        text: str,
        kind: SlotKind,
        depth: int,
        is_volatile: bool,
        role: SlotRole,
    ) -> None:
        self.slots[name] = SlotWrite(
            name=name,
            text=text,
            kind=kind,
            depth=depth,
            is_volatile=is_volatile,
            role=role,
        )

    def slot_text(self, name: str) -> str:
        slot = self.slots.get(name)
        return slot.text if slot is not None else ""

    def subscribe(self, sink: LifecycleSink) -> None:
        self.sinks.append(sink)

    def chat(self) -> list[ChatMessage]:
        return self.messages

    def session_metadata(self) -> dict[str, Any]:
        return self.metadata

    async def generate_raw(self, messages: list[dict[str, str]]) -> str:
        self.raw_requests.append(messages)
        if not self.raw_responses:
            return ""
        return self.raw_responses.pop(0)

    def save_session(self, payload: dict[str, Any]) -> None:
        self.saved.append(payload)

    def notify(self, level: str, message: str, title: str = "") -> None:
        self.notices.append((level, message, title))
