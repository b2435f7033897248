from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Sequence

from tracker_engine.config import AppConfig, SuppressionConfig
from tracker_engine.host import HostEnvironment
from tracker_engine.injection.history import HistoricalContextPersistor
from tracker_engine.injection.prompt_injector import PromptInjector
from tracker_engine.logging_setup import get_logger
from tracker_engine.orchestration.commit_scheduler import CommitScheduler
from tracker_engine.orchestration.suppression import evaluate_suppression
from tracker_engine.orchestration.tracker_update import ResponseParser, TrackerUpdater
from tracker_engine.prompts.manager import PromptManager
from tracker_engine.providers.external_api import ExternalTrackerClient
from tracker_engine.state.models import (
    ChatCompletionPayload,
    ChatMessage,
    FlatPromptPayload,
    GenerationRequest,
    ParsedTracker,
    PreAssemblyPayload,
    SuppressionDecision,
    TrackerField,
)
from tracker_engine.state.snapshot_store import SnapshotStore

# APIs that assemble a message array; their pre-assembly list is not the prompt.
CHAT_COMPLETION_APIS = frozenset({"openai"})

SuppressionEvaluator = Callable[
    [SuppressionConfig, dict[str, Any], dict[str, Any]], SuppressionDecision
]


class GenerationPhase(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"


def second_to_last_is_user(transcript: Sequence[ChatMessage]) -> bool | None:
    if len(transcript) < 2:
        return None
    is_user = getattr(transcript[-2], "is_user", None)
    return is_user if isinstance(is_user, bool) else None


class TrackerEngine:
    """Per-session tracker state and the lifecycle hooks that keep it in sync.

    One instance per active chat. Generation start runs suppression, then the
    commit decision, then slot injection, then history preparation; assembly
    hooks only splice the prepared history into whatever prompt shape the
    host produced.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        host: HostEnvironment,
        parser: ResponseParser,
        store: SnapshotStore | None = None,
        suppression: SuppressionEvaluator = evaluate_suppression,
        external_client: ExternalTrackerClient | None = None,
    ) -> None:
        self.logger = get_logger(__name__)
        self.config = config
        self.host = host
        self.store = store or SnapshotStore()
        self.suppression = suppression
        self.prompts = PromptManager(config.prompts)
        self.scheduler = CommitScheduler(self.store)
        self.injector = PromptInjector(config=config, host=host, prompts=self.prompts)
        self.history = HistoricalContextPersistor()
        self.updater = TrackerUpdater(
            config=config,
            store=self.store,
            scheduler=self.scheduler,
            host=host,
            prompts=self.prompts,
            parser=parser,
            external_client=external_client,
        )
        self.phase = GenerationPhase.IDLE
        self.active_request: GenerationRequest | None = None
        self.last_suppression: SuppressionDecision | None = None

    @classmethod
    def attach(
        cls,
        *,
        config: AppConfig,
        host: HostEnvironment,
        parser: ResponseParser,
        session_payload: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> TrackerEngine:
        engine = cls(config=config, host=host, parser=parser, **kwargs)
        if session_payload:
            engine.store.restore(session_payload)
        host.subscribe(engine)
        return engine

    def on_generation_start(self, request: GenerationRequest) -> None:
        if request.dry_run:
            return
        if request.is_image_generation:
            self.logger.debug("Image generation request; tracker injection skipped.")
            return
        if not self.config.enabled:
            self.injector.clear_all()
            self.history.reset()
            return

        transcript = self.host.chat()
        decision = self.suppression(
            self.config.suppression, self.host.session_metadata(), request.data
        )
        self.last_suppression = decision
        if decision.should_suppress:
            self.logger.info(
                "Tracker injection suppressed mode=%s reason=%s",
                decision.skip_mode,
                decision.reason,
            )

        mode = self.config.generation.mode
        if self.scheduler.on_generation_start(
            mode,
            request.is_swipe,
            len(transcript),
            second_to_last_is_user(transcript),
        ):
            self._save()

        self.injector.apply_injections(
            mode, self.store.committed, transcript, decision.should_suppress
        )
        if decision.should_suppress:
            self.history.reset()
        else:
            self.history.prepare(self.config.history, transcript)

        self.active_request = request
        self.phase = GenerationPhase.STARTED

    def on_pre_assembly(self, payload: PreAssemblyPayload) -> None:
        if payload.dry_run or payload.api in CHAT_COMPLETION_APIS:
            return
        self.phase = GenerationPhase.ASSEMBLING
        self.history.inject_into_pre_assembly_messages(payload.messages)

    def on_post_assembly(self, payload: FlatPromptPayload) -> None:
        if payload.dry_run:
            return
        self.phase = GenerationPhase.ASSEMBLING
        payload.prompt = self.history.inject_into_flat_prompt(payload.prompt)

    def on_chat_completion_ready(self, payload: ChatCompletionPayload) -> None:
        if payload.dry_run:
            return
        self.phase = GenerationPhase.ASSEMBLING
        payload.chat = self.history.inject_into_structured_messages(payload.chat)

    def accept_parsed_snapshot(
        self, parsed: ParsedTracker, *, message: ChatMessage | None = None
    ) -> bool:
        """Record tracker data the caller parsed from a completed reply."""
        self.phase = GenerationPhase.COMPLETED
        try:
            if parsed.parsing_failed:
                self.logger.warning("Parsed reply carried no tracker data; pending unchanged.")
                return False
            self.store.record_pending(parsed.snapshot)
            if message is not None and message.is_assistant:
                message.archived[message.swipe_id] = parsed.snapshot
            self._save()
            return True
        finally:
            self.active_request = None
            self.phase = GenerationPhase.IDLE

    async def update_tracker(self, request: GenerationRequest | None = None) -> bool:
        """Run the follow-up tracker generation and close out the active request."""
        try:
            return await self.updater.update(request or self.active_request)
        finally:
            self.phase = GenerationPhase.COMPLETED
            self.active_request = None
            self.phase = GenerationPhase.IDLE

    def edit_field(self, field_name: str, value: TrackerField | None) -> None:
        self.store.apply_user_edit(field_name, value)
        self._save()

    def clear_cache(self) -> None:
        self.store.clear(self.host.chat())
        self.history.reset()
        self._save()

    def _save(self) -> None:
        self.host.save_session(self.store.to_payload())
