from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from tracker_engine.config import HistoryPersistenceConfig
from tracker_engine.injection.matching import locate
from tracker_engine.logging_setup import get_logger
from tracker_engine.prompts.rendering import render_compact_history
from tracker_engine.state.models import ChatMessage

CONTEXT_OPEN_RE = re.compile(r"\n*<context>")
CONTEXT_CLOSE_RE = re.compile(r"</context>(?!\n)")
LAST_MESSAGE_OPEN_RE = re.compile(r"<last_message>\n{2,}")
LAST_MESSAGE_CLOSE_RE = re.compile(r"\n{2,}</last_message>")


def normalize_wrapper_tags(text: str) -> str:
    text = CONTEXT_OPEN_RE.sub("\n<context>", text)
    text = CONTEXT_CLOSE_RE.sub("</context>\n", text)
    text = LAST_MESSAGE_OPEN_RE.sub("<last_message>\n", text)
    return LAST_MESSAGE_CLOSE_RE.sub("\n</last_message>", text)


def build_context_map(
    config: HistoryPersistenceConfig, transcript: Sequence[ChatMessage]
) -> dict[int, str]:
    """Map transcript index -> archived tracker context for past assistant turns.

    The newest assistant turn is covered by the live injection, so with
    ``assistant_message_end`` the scan starts one message before it. With
    ``user_message_end`` it starts at it, because its context belongs to the
    user message that prompted it.
    """
    if not config.enabled or len(transcript) < 2:
        return {}

    by_user = config.injection_position == "user_message_end"
    last_assistant = -1
    for index in range(len(transcript) - 1, -1, -1):
        if transcript[index].is_assistant:
            last_assistant = index
            break

    if by_user:
        start = last_assistant
    else:
        start = last_assistant - 1 if last_assistant > 0 else len(transcript) - 2

    context_map: dict[int, str] = {}
    processed = 0
    for index in range(start, -1, -1):
        if config.message_count and processed >= config.message_count:
            break
        message = transcript[index]
        if not message.is_assistant:
            continue
        snapshot = message.archived_snapshot()
        if snapshot is None:
            continue
        formatted = render_compact_history(snapshot, persisted_fields=list(config.persisted_fields))
        if not formatted:
            continue

        target = index
        if by_user:
            target = next(
                (
                    j
                    for j in range(index - 1, -1, -1)
                    if transcript[j].is_user and not transcript[j].is_system
                ),
                -1,
            )
            if target < 0:
                continue

        wrapped = f"\n{config.context_preamble}\n{formatted}"
        context_map[target] = context_map.get(target, "") + wrapped
        processed += 1
    return context_map


class HistoricalContextPersistor:
    """Splices archived tracker context into prompts assembled by the host.

    ``prepare`` runs once per generation. The adapters remember which targets
    they already filled in this generation, so each of them may fire any
    number of times without appending a context twice.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self._context_map: dict[int, str] = {}
        self._transcript: tuple[ChatMessage, ...] = ()
        self._history_injected = False
        self._injected_pre: set[int] = set()
        self._injected_structured: set[int] = set()

    @property
    def context_map(self) -> Mapping[int, str]:
        return MappingProxyType(self._context_map)

    @property
    def history_injected(self) -> bool:
        return self._history_injected

    def reset(self) -> None:
        self._context_map = {}
        self._transcript = ()
        self._history_injected = False
        self._injected_pre = set()
        self._injected_structured = set()

    def prepare(
        self, config: HistoryPersistenceConfig, transcript: Sequence[ChatMessage]
    ) -> Mapping[int, str]:
        self._context_map = build_context_map(config, transcript)
        self._transcript = tuple(transcript)
        self._history_injected = False
        self._injected_pre = set()
        self._injected_structured = set()
        if self._context_map:
            self.logger.debug(
                "Historical context prepared targets=%s",
                sorted(self._context_map),
            )
        return self.context_map

    def _message_text(self, index: int) -> str:
        if 0 <= index < len(self._transcript):
            return self._transcript[index].text or ""
        return ""

    def _align(self, messages: Sequence[dict[str, Any]]) -> dict[int, int]:
        """Pair transcript indices with entries, skipping injected filler."""
        aligned: dict[int, int] = {}
        cursor = 0
        for chat_index, message in enumerate(self._transcript):
            if cursor >= len(messages):
                break
            if message.is_system:
                continue
            for probe in range(cursor, len(messages)):
                entry_text = messages[probe].get("text")
                if not isinstance(entry_text, str) or not entry_text:
                    continue
                if locate(message.text, entry_text) is not None:
                    aligned[chat_index] = probe
                    cursor = probe + 1
                    break
        return aligned

    def inject_into_pre_assembly_messages(self, messages: list[dict[str, Any]]) -> int:
        if not self._context_map or not messages:
            return 0

        aligned = self._align(messages)
        injected = 0
        for chat_index, context in self._context_map.items():
            entry_index = aligned.get(chat_index)
            if entry_index is None:
                self.logger.debug(
                    "History target %d not found in pre-assembly messages; skipped.",
                    chat_index,
                )
                continue
            entry = messages[entry_index]
            text = entry["text"]
            if chat_index not in self._injected_pre:
                entry["text"] = text + context
                self._injected_pre.add(chat_index)
            injected += 1

        if injected:
            self._history_injected = True
            self.logger.debug("Historical context injected into %d pre-assembly message(s).", injected)
        return injected

    def inject_into_flat_prompt(self, prompt: str) -> str:
        if self._history_injected or not self._context_map:
            return normalize_wrapper_tags(prompt)

        result = prompt
        injected = 0
        # Highest index first: inserting near the end never moves earlier matches.
        for index in sorted(self._context_map, reverse=True):
            text = self._message_text(index)
            if not text:
                continue
            context = self._context_map[index]
            span = locate(text, result)
            if span is None:
                self.logger.debug("History target %d not found in flat prompt; skipped.", index)
                continue
            if result[span.end : span.end + len(context)] == context:
                continue
            result = result[: span.end] + context + result[span.end :]
            injected += 1

        if injected:
            self.logger.debug("Historical context injected at %d flat prompt position(s).", injected)
        return normalize_wrapper_tags(result)

    def inject_into_structured_messages(
        self, chat: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        injected = 0
        for index, context in self._context_map.items():
            text = self._message_text(index)
            if not text:
                continue
            found = False
            for entry in chat:
                content = entry.get("content")
                if not isinstance(content, str) or not content:
                    continue
                if locate(text, content) is None:
                    continue
                if index not in self._injected_structured:
                    entry["content"] = content + context
                    self._injected_structured.add(index)
                    injected += 1
                found = True
                break
            if not found:
                self.logger.debug("History target %d not found in chat messages; skipped.", index)

        for entry in chat:
            content = entry.get("content")
            if isinstance(content, str):
                entry["content"] = normalize_wrapper_tags(content)
        if injected:
            self.logger.debug("Historical context injected into %d chat message(s).", injected)
        return chat
