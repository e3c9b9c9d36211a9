"""AI Provider implementations."""

from polyphony.providers.base import (
    AdapterUnavailableError,
    BaseProvider,
    ProviderError,
    RateLimitError,
    StreamDelta,
    StreamingCallback,
    UpstreamAuthenticationError,
    UpstreamTransportError,
)
from polyphony.providers.openai_provider import OpenAIProvider
from polyphony.providers.xai_provider import XAIProvider
from polyphony.providers.anthropic_provider import AnthropicProvider
from polyphony.providers.google_provider import GoogleProvider
from polyphony.providers.factory import AdapterRegistry, BoundAdapter, UnknownModelError

__all__ = [
    "AdapterRegistry",
    "AdapterUnavailableError",
    "AnthropicProvider",
    "BaseProvider",
    "BoundAdapter",
    "GoogleProvider",
    "OpenAIProvider",
    "ProviderError",
    "RateLimitError",
    "StreamDelta",
    "StreamingCallback",
    "UnknownModelError",
    "UpstreamAuthenticationError",
    "UpstreamTransportError",
    "XAIProvider",
]
