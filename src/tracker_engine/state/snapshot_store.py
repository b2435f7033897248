from __future__ import annotations

from typing import Any, Iterable

from tracker_engine.logging_setup import get_logger
from tracker_engine.state.models import (
    SNAPSHOT_FIELDS,
    ChatMessage,
    TrackerField,
    TrackerSnapshot,
)

PAYLOAD_VERSION = 1


class SnapshotStore:
    """Pending and committed tracker snapshots for one chat session.

    ``pending`` is what the last completed generation produced and what the
    panel displays. ``committed`` is what the next prompt exposes as the
    current world state. The commit guard remembers the chat length of the
    last automatic commit.
    """

    def __init__(
        self,
        *,
        pending: TrackerSnapshot | None = None,
        committed: TrackerSnapshot | None = None,
        commit_guard: int = -1,
    ) -> None:
        self.logger = get_logger(__name__)
        self._pending = pending or TrackerSnapshot()
        self._committed = committed or TrackerSnapshot()
        self._commit_guard = commit_guard

    @property
    def pending(self) -> TrackerSnapshot:
        return self._pending

    @property
    def committed(self) -> TrackerSnapshot:
        return self._committed

    @property
    def commit_guard(self) -> int:
        return self._commit_guard

    def commit(self, *, chat_length: int | None = None) -> None:
        self._committed = self._pending
        if chat_length is not None:
            self._commit_guard = chat_length

    def record_pending(self, snapshot: TrackerSnapshot) -> TrackerSnapshot:
        self._pending = self._pending.overlay(snapshot)
        return self._pending

    def commit_if_empty(self, snapshot: TrackerSnapshot) -> bool:
        if not self._committed.is_empty():
            return False
        self._committed = self._committed.overlay(snapshot)
        return True

    def apply_user_edit(self, field_name: str, value: TrackerField | None) -> None:
        if field_name not in SNAPSHOT_FIELDS:
            raise KeyError(f"Unknown tracker field: {field_name}")
        self._pending = self._pending.with_fields(**{field_name: value})
        self._committed = self._committed.with_fields(**{field_name: value})
        self.logger.debug("User edit applied to both snapshots field=%s", field_name)

    def clear(self, transcript: Iterable[ChatMessage] = ()) -> int:
        self._pending = TrackerSnapshot()
        self._committed = TrackerSnapshot()
        self._commit_guard = -1
        removed = 0
        for message in transcript:
            removed += len(message.archived)
            message.archived.clear()
        self.logger.info("Tracker cache cleared (archived snapshots removed=%d).", removed)
        return removed

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": PAYLOAD_VERSION,
            "pending": self._pending.to_payload(),
            "committed": self._committed.to_payload(),
            "commit_guard": self._commit_guard,
        }

    def restore(self, payload: dict[str, Any] | None) -> None:
        payload = payload or {}
        guard = payload.get("commit_guard", -1)
        self._pending = TrackerSnapshot.from_payload(payload.get("pending"))
        self._committed = TrackerSnapshot.from_payload(payload.get("committed"))
        self._commit_guard = guard if isinstance(guard, int) else -1

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> SnapshotStore:
        store = cls()
        store.restore(payload)
        return store
