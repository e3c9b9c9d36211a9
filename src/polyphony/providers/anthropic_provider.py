"""
Anthropic provider implementation for Claude models.

Reads the raw Messages streaming events: ``message_start`` carries input
usage, ``content_block_delta`` carries text, ``message_delta`` carries the
final output usage.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from polyphony.core.models import ModelMetadata, ModelProvider, TokenUsage
from polyphony.providers.base import (
    BaseProvider,
    ProviderError,
    RateLimitError,
    StreamDelta,
    UpstreamAuthenticationError,
    UpstreamTransportError,
)


class AnthropicProvider(BaseProvider):
    """Anthropic provider for Claude models."""

    provider = ModelProvider.ANTHROPIC

    max_tokens = 4000
    temperature = 0.7

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.client: AsyncAnthropic | None = None
        if self.api_key:
            self.client = AsyncAnthropic(
                api_key=self.api_key,
                base_url=base_url,
                timeout=self.timeout,
                max_retries=0,
            )

    async def _stream_deltas(
        self,
        model: ModelMetadata,
        prompt: str,
    ) -> AsyncIterator[StreamDelta]:
        assert self.client is not None
        client = self.client

        stream = await self._open_with_retry(
            lambda: client.messages.create(
                model=model.api_model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
            )
        )

        input_tokens = 0
        output_tokens = 0

        async for event in stream:
            if event.type == "message_start":
                usage = event.message.usage
                input_tokens = usage.input_tokens or 0
                output_tokens = usage.output_tokens or 0
            elif event.type == "content_block_delta":
                if event.delta.type == "text_delta" and event.delta.text:
                    yield StreamDelta(text=event.delta.text)
            elif event.type == "message_delta":
                if event.usage is not None:
                    output_tokens = event.usage.output_tokens or output_tokens

        if input_tokens or output_tokens:
            yield StreamDelta(
                usage=TokenUsage(
                    prompt_tokens=input_tokens,
                    completion_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                )
            )

    def _translate_error(self, error: Exception) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        label = self.provider.label
        if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return UpstreamAuthenticationError(
                f"{label} authentication failed: {error}",
                self.provider,
                status_code=error.status_code,
            )
        if isinstance(error, anthropic.RateLimitError):
            retry_after = error.response.headers.get("retry-after")
            return RateLimitError(
                f"{label} rate limit exceeded: {error}",
                self.provider,
                retry_after=float(retry_after) if retry_after else None,
            )
        if isinstance(error, anthropic.APITimeoutError):
            return UpstreamTransportError(
                f"{label} request timed out", self.provider, retryable=True
            )
        if isinstance(error, anthropic.APIConnectionError):
            return UpstreamTransportError(
                f"{label} connection error: {error}", self.provider, retryable=True
            )
        if isinstance(error, anthropic.APIStatusError):
            return UpstreamTransportError(
                f"{label} API error: {error}",
                self.provider,
                status_code=error.status_code,
                retryable=error.status_code >= 500,
            )
        return super()._translate_error(error)
