"""
Adapter registry: maps logical model ids to catalogue metadata and to the
single adapter instance serving each provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import structlog

from polyphony.core.config import Settings, get_settings
from polyphony.core.models import (
    MODEL_REGISTRY,
    ModelIdentifier,
    ModelMetadata,
    ModelProvider,
    ModelResult,
)
from polyphony.providers.anthropic_provider import AnthropicProvider
from polyphony.providers.base import BaseProvider, StreamingCallback
from polyphony.providers.google_provider import GoogleProvider
from polyphony.providers.openai_provider import OpenAIProvider
from polyphony.providers.xai_provider import XAIProvider
from polyphony.utils.retry import RetryConfig

logger = structlog.get_logger()


class UnknownModelError(ValueError):
    """Raised when a model id has no catalogue entry."""

    def __init__(self, model_id: str):
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


@dataclass(frozen=True)
class BoundAdapter:
    """An adapter bound to one model's metadata."""

    metadata: ModelMetadata
    provider: BaseProvider

    async def stream(self, prompt: str, callback: StreamingCallback) -> ModelResult:
        return await self.provider.stream(self.metadata, prompt, callback)


class AdapterRegistry:
    """Resolves model ids to bound adapters. One adapter per provider."""

    def __init__(
        self,
        adapters: Mapping[ModelProvider, BaseProvider],
        catalogue: Mapping[ModelIdentifier, ModelMetadata] | None = None,
    ):
        missing = [p.value for p in ModelProvider if p not in adapters]
        if missing:
            raise ValueError(f"No adapter registered for providers: {', '.join(missing)}")
        self._adapters = dict(adapters)
        self._catalogue = dict(catalogue if catalogue is not None else MODEL_REGISTRY)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AdapterRegistry":
        """Build every provider adapter from application settings."""
        settings = settings or get_settings()
        keys = settings.providers
        playground = settings.playground
        retry = RetryConfig(
            max_retries=playground.max_retries,
            base_delay=playground.retry_base_delay,
        )

        def common(provider: ModelProvider) -> dict:
            return {
                "api_key": keys.api_key_for(provider),
                "timeout": playground.request_timeout_seconds,
                "retry_config": retry,
                "substitute_on_auth_failure": provider in playground.synthetic_on_auth_failure,
                "synthetic_chunk_delay": playground.synthetic_chunk_delay_seconds,
            }

        adapters: dict[ModelProvider, BaseProvider] = {
            ModelProvider.OPENAI: OpenAIProvider(
                base_url=keys.openai_base_url, **common(ModelProvider.OPENAI)
            ),
            ModelProvider.ANTHROPIC: AnthropicProvider(
                base_url=keys.anthropic_base_url, **common(ModelProvider.ANTHROPIC)
            ),
            ModelProvider.XAI: XAIProvider(
                base_url=keys.xai_base_url, **common(ModelProvider.XAI)
            ),
            ModelProvider.GOOGLE: GoogleProvider(**common(ModelProvider.GOOGLE)),
        }

        logger.info(
            "Adapter registry initialized",
            available_providers=[p.value for p in keys.available_providers],
        )
        return cls(adapters)

    def metadata(self, model_id: ModelIdentifier | str) -> ModelMetadata:
        """Catalogue entry for a model id."""
        try:
            identifier = ModelIdentifier(model_id)
        except ValueError:
            raise UnknownModelError(str(model_id)) from None

        entry = self._catalogue.get(identifier)
        if entry is None:
            raise UnknownModelError(identifier.value)
        return entry

    def resolve(self, model_id: ModelIdentifier | str) -> BoundAdapter:
        """Adapter bound to a model id."""
        entry = self.metadata(model_id)
        return BoundAdapter(metadata=entry, provider=self._adapters[entry.provider])

    def adapter_for(self, provider: ModelProvider) -> BaseProvider:
        return self._adapters[provider]

    def available_models(self) -> list[ModelMetadata]:
        """Catalogue entries whose provider has credentials."""
        return [
            entry
            for entry in self._catalogue.values()
            if self._adapters[entry.provider].available
        ]

    def all_models(self) -> list[ModelMetadata]:
        return list(self._catalogue.values())
