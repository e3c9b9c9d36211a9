"""
OpenAI provider implementation for ChatGPT models.

Streams chat completions with usage reporting enabled.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import openai
from openai import AsyncOpenAI

from polyphony.core.models import ModelMetadata, ModelProvider, TokenUsage
from polyphony.providers.base import (
    BaseProvider,
    ProviderError,
    RateLimitError,
    StreamDelta,
    UpstreamAuthenticationError,
    UpstreamTransportError,
)


class OpenAIProvider(BaseProvider):
    """OpenAI provider for ChatGPT models."""

    provider = ModelProvider.OPENAI

    temperature = 0.7

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.client: AsyncOpenAI | None = None
        if self.api_key:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=base_url,
                organization=organization,
                timeout=self.timeout,
                # Retries are handled by utils.retry before the first chunk
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
            lambda: client.chat.completions.create(
                model=model.api_model,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
                stream_options={"include_usage": True},
                temperature=self.temperature,
            )
        )

        async for chunk in stream:
            usage = None
            if getattr(chunk, "usage", None):
                usage = TokenUsage(
                    prompt_tokens=chunk.usage.prompt_tokens or 0,
                    completion_tokens=chunk.usage.completion_tokens or 0,
                    total_tokens=chunk.usage.total_tokens or 0,
                )

            text = ""
            if chunk.choices:
                text = chunk.choices[0].delta.content or ""

            if text or usage is not None:
                yield StreamDelta(text=text, usage=usage)

    def _translate_error(self, error: Exception) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        label = self.provider.label
        if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return UpstreamAuthenticationError(
                f"{label} authentication failed: {error}",
                self.provider,
                status_code=error.status_code,
            )
        if isinstance(error, openai.RateLimitError):
            retry_after = error.response.headers.get("retry-after")
            return RateLimitError(
                f"{label} rate limit exceeded: {error}",
                self.provider,
                retry_after=float(retry_after) if retry_after else None,
            )
        if isinstance(error, openai.APITimeoutError):
            return UpstreamTransportError(
                f"{label} request timed out", self.provider, retryable=True
            )
        if isinstance(error, openai.APIConnectionError):
            return UpstreamTransportError(
                f"{label} connection error: {error}", self.provider, retryable=True
            )
        if isinstance(error, openai.APIStatusError):
            return UpstreamTransportError(
                f"{label} API error: {error}",
                self.provider,
                status_code=error.status_code,
                retryable=error.status_code >= 500,
            )
        return super()._translate_error(error)
