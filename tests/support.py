"""Test doubles: scripted providers, recording subscribers, failing stores."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from polyphony.core.models import (
    ModelIdentifier,
    ModelMetadata,
    ModelProvider,
    ModelResult,
    TokenUsage,
)
from polyphony.providers.base import BaseProvider, StreamDelta, StreamingCallback
from polyphony.providers.factory import AdapterRegistry
from polyphony.realtime.channel import ChannelEvent, ChannelEventName
from polyphony.storage.memory import InMemoryComparisonStore
from polyphony.utils.retry import RetryConfig

Behavior = Callable[[ModelMetadata, str, StreamingCallback], Awaitable[Any]]


class ScriptedProvider(BaseProvider):
    """
    Provider whose upstream stream is a script per api model.

    Script steps: ``str`` yields text, ``TokenUsage`` yields usage, a number
    sleeps that many seconds, an exception instance is raised.
    """

    def __init__(
        self,
        provider: ModelProvider,
        scripts: dict[str, list[Any]] | None = None,
        api_key: str | None = "test-key",
        **kwargs: Any,
    ):
        self.provider = provider
        kwargs.setdefault("retry_config", RetryConfig(max_retries=0, jitter=False))
        kwargs.setdefault("synthetic_chunk_delay", 0)
        super().__init__(api_key, **kwargs)
        self.scripts = scripts or {}
        self.calls: list[tuple[ModelIdentifier, str]] = []

    async def _stream_deltas(self, model: ModelMetadata, prompt: str):
        self.calls.append((model.model_id, prompt))
        for step in self.scripts.get(model.api_model, ["Hello ", "world"]):
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, TokenUsage):
                yield StreamDelta(usage=step)
            elif isinstance(step, (int, float)):
                await asyncio.sleep(step)
            else:
                yield StreamDelta(text=step)


class CallbackProvider(BaseProvider):
    """
    Provider that bypasses the base streaming contract and drives the
    callback directly, so tests can model misbehaving adapters.
    """

    def __init__(self, provider: ModelProvider, behaviors: dict[str, Behavior] | None = None):
        self.provider = provider
        super().__init__("test-key")
        self.behaviors = behaviors or {}
        self.invocations = 0

    async def _stream_deltas(self, model, prompt):  # pragma: no cover
        raise NotImplementedError
        yield

    async def stream(self, model: ModelMetadata, prompt: str, callback: StreamingCallback) -> ModelResult:
        self.invocations += 1
        behavior = self.behaviors.get(model.api_model, complete_with("ok"))
        return await behavior(model, prompt, callback)


def complete_with(
    text: str,
    total_tokens: int = 5,
    cost: float = 0.001,
    elapsed_ms: float = 200.0,
    delay: float = 0.0,
) -> Behavior:
    async def behavior(model: ModelMetadata, prompt: str, callback: StreamingCallback) -> ModelResult:
        if delay:
            await asyncio.sleep(delay)
        await callback.on_chunk(text)
        result = ModelResult(
            model=model.display_name,
            model_id=model.model_id,
            response=text,
            tokens=TokenUsage(prompt_tokens=0, completion_tokens=total_tokens, total_tokens=total_tokens),
            elapsed_ms=elapsed_ms,
            estimated_cost_usd=cost,
        )
        await callback.on_complete(result)
        return result

    return behavior


def error_with(message: str, delay: float = 0.0) -> Behavior:
    async def behavior(model: ModelMetadata, prompt: str, callback: StreamingCallback) -> ModelResult:
        if delay:
            await asyncio.sleep(delay)
        await callback.on_error(message)
        return ModelResult.failure(model.display_name, message, model_id=model.model_id)

    return behavior


def raise_with(exc: Exception) -> Behavior:
    async def behavior(model, prompt, callback):
        raise exc

    return behavior


def silent() -> Behavior:
    async def behavior(model, prompt, callback):
        return None

    return behavior


class RecordingSubscriber:
    """Collects every event delivered to it."""

    def __init__(self, subscriber_id: str = "recorder"):
        self.subscriber_id = subscriber_id
        self.events: list[ChannelEvent] = []

    async def send(self, event: ChannelEvent) -> None:
        self.events.append(event)

    def named(self, name: ChannelEventName) -> list[ChannelEvent]:
        return [e for e in self.events if e.name == name]

    @property
    def names(self) -> list[str]:
        return [e.name.value for e in self.events]


class FailingStore(InMemoryComparisonStore):
    """Store whose writes always fail."""

    def __init__(self, error: Exception | None = None):
        super().__init__()
        self.error = error or OSError("disk full")
        self.attempts = 0

    async def save(self, record):
        self.attempts += 1
        raise self.error


def scripted_registry(scripts: dict[str, list[Any]] | None = None, **kwargs: Any) -> AdapterRegistry:
    return AdapterRegistry(
        {p: ScriptedProvider(p, scripts, **kwargs) for p in ModelProvider}
    )


def callback_registry(behaviors: dict[str, Behavior] | None = None) -> AdapterRegistry:
    return AdapterRegistry(
        {p: CallbackProvider(p, behaviors) for p in ModelProvider}
    )


