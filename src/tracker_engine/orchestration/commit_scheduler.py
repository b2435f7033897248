from __future__ import annotations

from tracker_engine.config import GenerationMode
from tracker_engine.logging_setup import get_logger
from tracker_engine.state.snapshot_store import SnapshotStore


class CommitScheduler:
    """Decides at generation start whether ``pending`` becomes ``committed``.

    A new turn is recognised by authorship: the host appends the placeholder
    reply before generation starts, so the second-to-last message tells who
    actually spoke last. Swipes never commit, which keeps every regeneration
    of one turn grounded in the same world state.
    """

    def __init__(self, store: SnapshotStore) -> None:
        self.logger = get_logger(__name__)
        self.store = store
        self._tracker_generation_active = False

    @property
    def tracker_generation_active(self) -> bool:
        return self._tracker_generation_active

    def mark_tracker_generation(self, active: bool) -> None:
        self._tracker_generation_active = active

    def on_generation_start(
        self,
        mode: GenerationMode,
        is_swipe: bool,
        chat_length: int,
        second_to_last_is_user: bool | None,
    ) -> bool:
        if chat_length < 2:
            self.logger.debug("Commit skipped: chat_length=%d has no prior turn.", chat_length)
            return False

        if mode == "together":
            return self._together(is_swipe, chat_length, second_to_last_is_user)
        if mode in {"separate", "external"}:
            return self._follow_up(mode, is_swipe, chat_length)

        self.logger.debug("Commit skipped: unknown generation mode=%s", mode)
        return False

    def _together(
        self,
        is_swipe: bool,
        chat_length: int,
        second_to_last_is_user: bool | None,
    ) -> bool:
        if second_to_last_is_user is not True:
            self.logger.debug("Commit skipped: previous message not user-authored.")
            return False
        if is_swipe:
            self.logger.debug("Commit skipped: swipe reuses committed snapshot.")
            return False
        if chat_length == self.store.commit_guard:
            self.logger.debug("Commit skipped: already committed at chat_length=%d", chat_length)
            return False
        self.store.commit(chat_length=chat_length)
        self.logger.info("Committed pending tracker snapshot mode=together chat_length=%d", chat_length)
        return True

    def _follow_up(self, mode: str, is_swipe: bool, chat_length: int) -> bool:
        if self._tracker_generation_active:
            self.logger.debug("Commit skipped: tracker follow-up generation in flight.")
            return False
        if is_swipe:
            self.logger.debug("Commit skipped: swipe reuses committed snapshot.")
            return False
        self.store.commit()
        self.logger.info("Committed pending tracker snapshot mode=%s chat_length=%d", mode, chat_length)
        return True
