"""
xAI provider for Grok models.

xAI exposes an OpenAI-compatible chat completions endpoint.
"""

from __future__ import annotations

from typing import Any

from polyphony.core.models import ModelProvider
from polyphony.providers.openai_provider import OpenAIProvider

XAI_BASE_URL = "https://api.x.ai/v1"


class XAIProvider(OpenAIProvider):
    """Grok models over the OpenAI wire protocol."""

    provider = ModelProvider.XAI

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, base_url=base_url or XAI_BASE_URL, **kwargs)
