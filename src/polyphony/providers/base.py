"""
Base provider interface for streaming AI models.

All provider adapters inherit from BaseProvider and implement
``_stream_deltas``. The base class owns the callback contract: chunks are
forwarded in order and exactly one of ``on_complete`` / ``on_error`` is
reached on every path.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, TypeVar

import structlog

from polyphony.core.models import (
    ModelMetadata,
    ModelProvider,
    ModelResult,
    TokenUsage,
    estimate_cost,
)
from polyphony.utils.retry import RetryConfig, retry_async

logger = structlog.get_logger()

T = TypeVar("T")

AUTH_FALLBACK_ERROR = "Authentication error - using mock response"


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        provider: ModelProvider | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class AdapterUnavailableError(ProviderError):
    """Raised when a provider has no credentials configured."""

    def __init__(self, provider: ModelProvider):
        super().__init__(
            f"{provider.label} service not available - API key not configured",
            provider,
        )


class UpstreamAuthenticationError(ProviderError):
    """Raised when the provider rejects our credentials."""

    def __init__(
        self,
        message: str,
        provider: ModelProvider | None = None,
        status_code: int | None = 401,
    ):
        super().__init__(message, provider, status_code=status_code, retryable=False)


class UpstreamTransportError(ProviderError):
    """Network, timeout, non-auth HTTP and malformed payload failures."""


class RateLimitError(UpstreamTransportError):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str,
        provider: ModelProvider | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, provider, status_code=429, retryable=True)
        self.retry_after = retry_after


@dataclass(frozen=True)
class StreamDelta:
    """One increment from an upstream stream: text, usage, or both."""

    text: str = ""
    usage: TokenUsage | None = None


class StreamingCallback(Protocol):
    """Receiver for a single model stream."""

    async def on_chunk(self, text: str) -> None: ...

    async def on_complete(self, result: ModelResult) -> None: ...

    async def on_error(self, message: str) -> None: ...


class BaseProvider(ABC):
    """
    Abstract base class for streaming model providers.

    Subclasses set ``provider`` and implement ``_stream_deltas``; they may
    override ``_translate_error`` to map SDK exceptions into the
    ProviderError taxonomy.
    """

    provider: ModelProvider

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = 60.0,
        retry_config: RetryConfig | None = None,
        substitute_on_auth_failure: bool = False,
        synthetic_chunk_delay: float = 0.01,
        **kwargs: Any,
    ):
        self.api_key = api_key or None
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self.substitute_on_auth_failure = substitute_on_auth_failure
        self.synthetic_chunk_delay = synthetic_chunk_delay

    @property
    def available(self) -> bool:
        """True when credentials are configured."""
        return self.api_key is not None

    @abstractmethod
    def _stream_deltas(
        self,
        model: ModelMetadata,
        prompt: str,
    ) -> AsyncIterator[StreamDelta]:
        """
        Stream a completion from the upstream API.

        Args:
            model: Catalogue entry for the requested model
            prompt: User prompt

        Yields:
            StreamDelta items in upstream order
        """
        ...

    async def stream(
        self,
        model: ModelMetadata,
        prompt: str,
        callback: StreamingCallback,
    ) -> ModelResult:
        """
        Stream ``prompt`` to ``model``, reporting through ``callback``.

        Never raises for upstream failures; they are reported via
        ``on_error`` and returned as an errored ModelResult.
        """
        if not self.available:
            unavailable = AdapterUnavailableError(self.provider)
            logger.warning(
                "Provider unavailable",
                provider=self.provider.value,
                model=model.display_name,
            )
            return await self._fail(model, callback, unavailable.message)

        start = time.perf_counter()
        parts: list[str] = []
        usage: TokenUsage | None = None

        try:
            async for delta in self._stream_deltas(model, prompt):
                if delta.usage is not None:
                    usage = delta.usage
                if delta.text:
                    parts.append(delta.text)
                    await callback.on_chunk(delta.text)
        except UpstreamAuthenticationError as e:
            if self.substitute_on_auth_failure:
                logger.warning(
                    "Authentication failed, streaming synthetic response",
                    provider=self.provider.value,
                    model=model.display_name,
                )
                return await self._stream_synthetic(model, prompt, callback, start)
            return await self._fail(model, callback, e.message)
        except Exception as e:
            error = self._translate_error(e)
            logger.error(
                "Provider stream failed",
                provider=self.provider.value,
                model=model.display_name,
                error=error.message,
                status_code=error.status_code,
            )
            return await self._fail(model, callback, error.message)

        response = "".join(parts)
        result = self._build_result(model, prompt, response, usage, start)
        await callback.on_complete(result)
        return result

    def _translate_error(self, error: Exception) -> ProviderError:
        """Map an arbitrary exception into the ProviderError taxonomy."""
        if isinstance(error, ProviderError):
            return error
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return UpstreamTransportError(
                f"{self.provider.label} request timed out",
                self.provider,
                retryable=True,
            )
        if isinstance(error, ConnectionError):
            return UpstreamTransportError(
                f"{self.provider.label} connection error: {error}",
                self.provider,
                retryable=True,
            )
        return UpstreamTransportError(
            f"{self.provider.label} error: {error}",
            self.provider,
        )

    async def _open_with_retry(self, opener: Callable[[], Awaitable[T]]) -> T:
        """Open the upstream stream, retrying transient failures."""

        async def attempt() -> T:
            try:
                return await opener()
            except ProviderError:
                raise
            except Exception as exc:
                raise self._translate_error(exc) from exc

        return await retry_async(attempt, config=self.retry_config)

    def _build_result(
        self,
        model: ModelMetadata,
        prompt: str,
        response: str,
        usage: TokenUsage | None,
        start: float,
        error: str | None = None,
        synthetic: bool = False,
    ) -> ModelResult:
        tokens = _resolve_usage(usage, prompt, response)
        return ModelResult(
            model=model.display_name,
            model_id=model.model_id,
            response=response,
            tokens=tokens,
            elapsed_ms=(time.perf_counter() - start) * 1000,
            estimated_cost_usd=estimate_cost(tokens.total_tokens, model.cost_per_1k_tokens),
            error=error,
            synthetic=synthetic,
        )

    async def _fail(
        self,
        model: ModelMetadata,
        callback: StreamingCallback,
        message: str,
    ) -> ModelResult:
        await callback.on_error(message)
        return ModelResult.failure(model.display_name, message, model_id=model.model_id)

    async def _stream_synthetic(
        self,
        model: ModelMetadata,
        prompt: str,
        callback: StreamingCallback,
        start: float,
    ) -> ModelResult:
        text = synthetic_response(model, prompt)
        for word in text.split(" "):
            await callback.on_chunk(word + " ")
            if self.synthetic_chunk_delay:
                await asyncio.sleep(self.synthetic_chunk_delay)

        result = self._build_result(
            model,
            prompt,
            text + " ",
            None,
            start,
            error=AUTH_FALLBACK_ERROR,
            synthetic=True,
        )
        await callback.on_complete(result)
        return result


def synthetic_response(model: ModelMetadata, prompt: str) -> str:
    """Clearly labelled placeholder text streamed instead of a real answer."""
    excerpt = prompt if len(prompt) <= 100 else prompt[:100] + "..."
    return (
        f"[Synthetic response] {model.display_name} could not authenticate, "
        f"so this placeholder stands in for its answer to: \"{excerpt}\". "
        "Configure a valid API key to see real output."
    )


def _resolve_usage(
    usage: TokenUsage | None,
    prompt: str,
    response: str,
) -> TokenUsage:
    """Prefer provider-reported usage; fall back to a character estimate."""
    if usage is not None:
        total = usage.total_tokens or usage.prompt_tokens + usage.completion_tokens
        if total > 0:
            return TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=total,
            )
    return TokenUsage.estimate(prompt, response)
