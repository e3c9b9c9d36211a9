"""
Google provider implementation for Gemini models.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import GenerationConfig

from polyphony.core.models import ModelMetadata, ModelProvider, TokenUsage
from polyphony.providers.base import (
    BaseProvider,
    ProviderError,
    RateLimitError,
    StreamDelta,
    UpstreamAuthenticationError,
    UpstreamTransportError,
)


class GoogleProvider(BaseProvider):
    """Google provider for Gemini models."""

    provider = ModelProvider.GOOGLE

    temperature = 0.7

    def __init__(
        self,
        api_key: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        if self.api_key:
            genai.configure(api_key=self.api_key)

        self._models: dict[str, genai.GenerativeModel] = {}

    def _get_model(self, api_model: str) -> genai.GenerativeModel:
        """Get or create a GenerativeModel instance."""
        if api_model not in self._models:
            self._models[api_model] = genai.GenerativeModel(api_model)
        return self._models[api_model]

    async def _stream_deltas(
        self,
        model: ModelMetadata,
        prompt: str,
    ) -> AsyncIterator[StreamDelta]:
        generative = self._get_model(model.api_model)

        response = await self._open_with_retry(
            lambda: generative.generate_content_async(
                prompt,
                generation_config=GenerationConfig(temperature=self.temperature),
                stream=True,
                request_options={"timeout": self.timeout},
            )
        )

        usage: TokenUsage | None = None
        async for chunk in response:
            metadata = getattr(chunk, "usage_metadata", None)
            if metadata and metadata.total_token_count:
                usage = TokenUsage(
                    prompt_tokens=metadata.prompt_token_count or 0,
                    completion_tokens=metadata.candidates_token_count or 0,
                    total_tokens=metadata.total_token_count or 0,
                )

            text = _chunk_text(chunk)
            if text:
                yield StreamDelta(text=text)

        if usage is not None:
            yield StreamDelta(usage=usage)

    def _translate_error(self, error: Exception) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        label = self.provider.label
        if isinstance(error, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
            return UpstreamAuthenticationError(
                f"{label} authentication failed: {error}",
                self.provider,
                status_code=error.code,
            )
        if isinstance(error, google_exceptions.InvalidArgument) and "api key" in str(error).lower():
            return UpstreamAuthenticationError(
                f"{label} authentication failed: {error}",
                self.provider,
                status_code=error.code,
            )
        if isinstance(error, google_exceptions.ResourceExhausted):
            return RateLimitError(f"{label} rate limit exceeded: {error}", self.provider)
        if isinstance(error, google_exceptions.DeadlineExceeded):
            return UpstreamTransportError(
                f"{label} request timed out", self.provider, retryable=True
            )
        if isinstance(error, google_exceptions.ServiceUnavailable):
            return UpstreamTransportError(
                f"{label} service unavailable: {error}",
                self.provider,
                status_code=error.code,
                retryable=True,
            )
        if isinstance(error, google_exceptions.GoogleAPICallError):
            return UpstreamTransportError(
                f"{label} API error: {error}",
                self.provider,
                status_code=error.code,
            )
        return super()._translate_error(error)


def _chunk_text(chunk: Any) -> str:
    # .text raises ValueError when a chunk has no text parts (e.g. safety stops)
    try:
        return chunk.text or ""
    except ValueError:
        return ""
