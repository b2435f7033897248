from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Protocol, Sequence

from tracker_engine.config import AppConfig
from tracker_engine.errors import ExternalApiError, TrackerUpdateInProgress
from tracker_engine.host import HostEnvironment
from tracker_engine.logging_setup import get_logger
from tracker_engine.orchestration.commit_scheduler import CommitScheduler
from tracker_engine.prompts.manager import PromptManager
from tracker_engine.prompts.rendering import (
    render_contextual_summary,
    render_tracker_instructions,
)
from tracker_engine.providers.external_api import ExternalTrackerClient
from tracker_engine.state.models import (
    ChatMessage,
    GenerationRequest,
    ParsedTracker,
    TrackerSnapshot,
)
from tracker_engine.state.snapshot_store import SnapshotStore


class ResponseParser(Protocol):
    def __call__(self, raw: str) -> ParsedTracker: ...


class TrackerUpdater:
    """Follow-up generation that produces tracker data in separate/external mode."""

    def __init__(
        self,
        *,
        config: AppConfig,
        store: SnapshotStore,
        scheduler: CommitScheduler,
        host: HostEnvironment,
        prompts: PromptManager,
        parser: ResponseParser,
        external_client: ExternalTrackerClient | None = None,
    ) -> None:
        self.logger = get_logger(__name__)
        self.config = config
        self.store = store
        self.scheduler = scheduler
        self.host = host
        self.prompts = prompts
        self.parser = parser
        self.external_client = external_client or ExternalTrackerClient(config.external_api)
        self.completion_listeners: list[Callable[[bool], None]] = []

    @contextmanager
    def _tracker_generation(self) -> Iterator[None]:
        if self.scheduler.tracker_generation_active:
            raise TrackerUpdateInProgress("A tracker generation is already running.")
        self.scheduler.mark_tracker_generation(True)
        try:
            yield
        finally:
            self.scheduler.mark_tracker_generation(False)

    def build_messages(
        self, transcript: Sequence[ChatMessage], committed: TrackerSnapshot
    ) -> list[dict[str, str]]:
        enabled_fields = self.config.trackers.enabled_fields()
        user_name = self.config.generation.user_name
        instructions = render_tracker_instructions(
            self.prompts.get("tracker_instructions"),
            enabled_fields=enabled_fields,
            committed=committed,
            user_name=user_name,
        )
        messages = [
            {
                "role": "system",
                "content": (
                    "You maintain the RPG tracker for an ongoing roleplay. "
                    "Do not continue the story; only report its current state."
                ),
            }
        ]
        recent = [message for message in transcript if not message.is_system]
        for message in recent[-self.config.generation.update_depth :]:
            role = "user" if message.is_user else "assistant"
            messages.append({"role": role, "content": message.text})

        summary = render_contextual_summary(
            committed, enabled_fields=enabled_fields, user_name=user_name
        )
        if summary:
            messages.append(
                {"role": "system", "content": f"Tracker state before this exchange:\n{summary}"}
            )
        messages.append({"role": "user", "content": instructions})
        return messages

    async def update(self, request: GenerationRequest | None = None) -> bool:
        mode = self.config.generation.mode
        if not self.config.enabled or mode not in {"separate", "external"}:
            return False
        if mode == "external":
            self.external_client.resolve_endpoint()

        acquired = False
        succeeded = False
        try:
            with self._tracker_generation():
                acquired = True
                succeeded = await self._run(mode, request)
        except TrackerUpdateInProgress:
            self.logger.debug("Tracker update skipped: another update is in flight.")
            return False
        finally:
            # Only the call that owned the guard reports completion.
            if acquired:
                for listener in self.completion_listeners:
                    listener(succeeded)
        return succeeded

    async def _run(self, mode: str, request: GenerationRequest | None) -> bool:
        transcript = self.host.chat()
        messages = self.build_messages(transcript, self.store.committed)
        self.logger.info(
            "Tracker update started mode=%s swipe=%s request=%s",
            mode,
            bool(request and request.is_swipe),
            request.request_id if request else "-",
        )
        try:
            if mode == "external":
                raw = await self.external_client.chat_completion(messages)
            else:
                raw = await self.host.generate_raw(messages)
        except ExternalApiError as exc:
            self.host.notify("error", str(exc), "External API Error")
            return False
        except Exception as exc:
            self.logger.warning("Tracker generation failed error=%s", exc.__class__.__name__)
            self.logger.debug("Tracker generation details: %s", exc)
            self.host.notify("error", "Tracker generation failed.", "Tracker")
            return False

        if not raw or not raw.strip():
            self.logger.warning("Tracker generation returned an empty response.")
            return False

        parsed = self.parser(raw)
        if parsed.parsing_failed:
            self.host.notify(
                "warning",
                "Tracker data could not be parsed; keeping the previous state.",
                "Tracker",
            )
            return False

        self.store.record_pending(parsed.snapshot)
        last = transcript[-1] if transcript else None
        if last is not None and last.is_assistant:
            last.archived[last.swipe_id] = parsed.snapshot
        if self.store.commit_if_empty(parsed.snapshot):
            self.logger.info("First tracker snapshot committed directly.")
        self.host.save_session(self.store.to_payload())
        self.logger.info("Tracker update completed mode=%s", mode)
        return True
