"""
Comparison Orchestrator - fans one prompt out to N models.

Each model streams concurrently into its own slot; progress is published
to the session's event channel as it happens, and the finished comparison
is persisted exactly once.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable

import structlog

from polyphony.core.config import Settings, get_settings
from polyphony.core.models import (
    ComparisonRecord,
    ModelIdentifier,
    ModelResult,
    SessionRecord,
    StreamProgress,
    utcnow,
)
from polyphony.providers.factory import AdapterRegistry, BoundAdapter, UnknownModelError
from polyphony.realtime.channel import ChannelEventName, EventChannel
from polyphony.storage import create_stores
from polyphony.storage.base import ComparisonStore, PersistenceError, SessionRegistry
from polyphony.utils.metrics import Metrics

logger = structlog.get_logger()


class InvalidSubmissionError(ValueError):
    """Raised for a submission that cannot be run (e.g. a blank prompt)."""


def model_complete_payload(result: ModelResult) -> dict[str, Any]:
    """Client-facing shape of a finished model stream."""
    return {
        "model": result.model,
        "finalResponse": result.response,
        "tokens": result.tokens.model_dump() if result.tokens else None,
        "elapsedMs": result.elapsed_ms,
        "cost": result.estimated_cost_usd,
        "error": result.error,
        "synthetic": result.synthetic,
    }


class _ModelStream:
    """
    Per-model result slot and streaming callback.

    Only the first terminal callback is accepted; later ones are ignored.
    """

    def __init__(
        self,
        adapter: BoundAdapter,
        channel: EventChannel,
        session_id: str,
        progress_total: int,
    ):
        self.adapter = adapter
        self.channel = channel
        self.session_id = session_id
        self.progress_total = progress_total
        self.model = adapter.metadata.display_name
        self.received_chars = 0
        self.result: ModelResult | None = None

    @property
    def settled(self) -> bool:
        return self.result is not None

    async def on_chunk(self, text: str) -> None:
        if self.settled:
            return
        self.received_chars += len(text)
        progress = StreamProgress(current=self.received_chars, total=self.progress_total)
        self.channel.publish(
            self.session_id,
            ChannelEventName.MODEL_STREAM,
            {
                "model": self.model,
                "chunk": text,
                "progress": {
                    "current": progress.current,
                    "total": progress.total,
                    "percentage": progress.percentage,
                },
            },
        )

    async def on_complete(self, result: ModelResult) -> None:
        if self.settled:
            return
        self._settle(result)

    async def on_error(self, message: str) -> None:
        if self.settled:
            return
        self._settle(
            ModelResult.failure(self.model, message, model_id=self.adapter.metadata.model_id)
        )

    def _settle(self, result: ModelResult) -> None:
        self.result = result
        self.channel.publish(
            self.session_id,
            ChannelEventName.MODEL_COMPLETE,
            model_complete_payload(result),
        )
        logger.info(
            "Model stream finished",
            session_id=self.session_id,
            model=self.model,
            elapsed_ms=round(result.elapsed_ms, 2),
            error=result.error,
        )

    async def run(self, prompt: str) -> ModelResult:
        self.channel.publish(
            self.session_id,
            ChannelEventName.MODEL_TYPING,
            {"model": self.model, "isTyping": True},
        )
        try:
            await self.adapter.stream(prompt, self)
        except Exception as e:
            logger.error(
                "Adapter raised during stream",
                session_id=self.session_id,
                model=self.model,
                error=str(e),
            )
            await self.on_error(str(e) or type(e).__name__)

        if self.result is None:
            await self.on_error(f"{self.model} stream ended without a result")

        assert self.result is not None
        return self.result


class ComparisonOrchestrator:
    """
    Runs prompt comparisons across models.

    Collaborators are injected; ``from_settings`` builds the default graph.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        store: ComparisonStore,
        sessions: SessionRegistry,
        channel: EventChannel,
        settings: Settings | None = None,
        metrics: Metrics | None = None,
    ):
        self.registry = registry
        self.store = store
        self.sessions = sessions
        self.channel = channel
        self.settings = settings or get_settings()
        self.metrics = metrics or Metrics()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ComparisonOrchestrator":
        settings = settings or get_settings()
        store, sessions = create_stores(settings.storage)
        return cls(
            registry=AdapterRegistry.from_settings(settings),
            store=store,
            sessions=sessions,
            channel=EventChannel(queue_size=settings.playground.event_queue_size),
            settings=settings,
        )

    async def submit(
        self,
        session_id: str,
        prompt: str,
        model_ids: Iterable[ModelIdentifier | str] | None = None,
        owner_user_id: str | None = None,
        owner_user_email: str | None = None,
        submitted_by: str | None = None,
    ) -> ComparisonRecord:
        """
        Stream ``prompt`` to every requested model and persist the comparison.

        Args:
            session_id: Client-chosen session key
            prompt: Prompt text, must not be blank
            model_ids: Models to compare; None or empty means the defaults
            owner_user_id: Owner recorded on the comparison
            owner_user_email: Owner email recorded on the comparison
            submitted_by: Display label for ``prompt_received``

        Returns:
            The persisted ComparisonRecord

        Raises:
            InvalidSubmissionError: Blank prompt
            UnknownModelError: A model id has no metadata
            PersistenceError: The store rejected the record
        """
        adapters = self._validate(session_id, prompt, model_ids)
        created_at = utcnow()

        log = logger.bind(session_id=session_id)
        log.info(
            "Comparison started",
            models=[a.metadata.display_name for a in adapters],
            prompt_chars=len(prompt),
        )

        try:
            await self._touch_session(session_id, [a.metadata.model_id for a in adapters])
        except Exception as e:
            # Session bookkeeping never blocks a comparison
            log.warning("Session upsert failed", error=str(e))

        self.channel.publish(
            session_id,
            ChannelEventName.PROMPT_RECEIVED,
            {
                "sessionId": session_id,
                "prompt": prompt,
                "submittedBy": submitted_by or owner_user_email or "anonymous",
            },
        )

        progress_total = self.settings.playground.progress_total_estimate
        streams = [
            _ModelStream(adapter, self.channel, session_id, progress_total)
            for adapter in adapters
        ]
        results: dict[str, ModelResult] = {}
        for finished in asyncio.as_completed([s.run(prompt) for s in streams]):
            result = await finished
            results[result.model] = result

        record = ComparisonRecord.from_results(
            session_id=session_id,
            prompt=prompt,
            results=results,
            created_at=created_at,
            owner_user_id=owner_user_id,
            owner_user_email=owner_user_email,
        )

        try:
            await self.store.save(record)
        except Exception as e:
            log.error("Failed to persist comparison", comparison_id=record.id, error=str(e))
            self.metrics.record_persistence_failure()
            self.channel.publish(
                session_id,
                ChannelEventName.PROMPT_ERROR,
                {"sessionId": session_id, "error": f"Failed to save comparison: {e}"},
            )
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(str(e)) from e

        self.channel.publish(
            session_id,
            ChannelEventName.COMPARISON_COMPLETE,
            {"sessionId": session_id, "record": record.model_dump(mode="json")},
        )

        for stream in streams:
            self.metrics.record_result(
                stream.adapter.metadata.provider.value,
                results[stream.model],
            )
        self.metrics.record_comparison()

        log.info(
            "Comparison completed",
            comparison_id=record.id,
            total_tokens=record.total_tokens,
            total_cost_usd=record.total_cost_usd,
            average_response_time_ms=round(record.average_response_time_ms, 2),
            failed=len(record.failed_results),
        )
        return record

    def _validate(
        self,
        session_id: str,
        prompt: str,
        model_ids: Iterable[ModelIdentifier | str] | None,
    ) -> list[BoundAdapter]:
        if not prompt or not prompt.strip():
            raise InvalidSubmissionError("Prompt must not be empty")

        requested = list(model_ids or []) or list(self.settings.playground.default_models)

        adapters: list[BoundAdapter] = []
        seen: set[ModelIdentifier] = set()
        for model_id in requested:
            try:
                adapter = self.registry.resolve(model_id)
            except UnknownModelError as e:
                logger.warning("Unknown model in submission", session_id=session_id, model_id=e.model_id)
                self.channel.publish(
                    session_id,
                    ChannelEventName.PROMPT_ERROR,
                    {"sessionId": session_id, "error": str(e)},
                )
                raise
            if adapter.metadata.model_id in seen:
                continue
            seen.add(adapter.metadata.model_id)
            adapters.append(adapter)
        return adapters

    async def _touch_session(
        self,
        session_id: str,
        model_ids: list[ModelIdentifier],
    ) -> SessionRecord:
        now = utcnow()
        existing = await self.sessions.find_by_session_id(session_id)
        if existing is None:
            record = SessionRecord(
                session_id=session_id,
                selected_models=model_ids,
                name=f"Session {now.strftime('%Y-%m-%d %H:%M:%S')}",
                created_at=now,
                last_activity_at=now,
            )
        else:
            record = existing.model_copy(
                update={"selected_models": model_ids, "last_activity_at": now}
            )
        return await self.sessions.upsert(record)

    async def session_history(self, session_id: str, limit: int | None = None) -> list[ComparisonRecord]:
        return await self.store.find_by_session(
            session_id, limit or self.settings.playground.history_limit
        )

    async def all_history(self, limit: int | None = None) -> list[ComparisonRecord]:
        return await self.store.find_all(limit or self.settings.playground.all_history_limit)

    async def get_session(self, session_id: str) -> SessionRecord | None:
        return await self.sessions.find_by_session_id(session_id)
