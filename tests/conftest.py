"""Shared fixtures."""

from __future__ import annotations

import pytest

from polyphony.core.config import PlaygroundSettings, Settings
from polyphony.core.models import ModelIdentifier
from polyphony.core.orchestrator import ComparisonOrchestrator
from polyphony.providers.factory import AdapterRegistry
from polyphony.realtime.channel import EventChannel
from polyphony.storage.memory import InMemoryComparisonStore, InMemorySessionRegistry
from polyphony.utils.metrics import Metrics


@pytest.fixture
def settings() -> Settings:
    return Settings(
        playground=PlaygroundSettings(
            default_models=[
                ModelIdentifier.OPENAI_GPT4O_MINI,
                ModelIdentifier.ANTHROPIC_CLAUDE35_SONNET,
            ],
        )
    )


@pytest.fixture
def store() -> InMemoryComparisonStore:
    return InMemoryComparisonStore()


@pytest.fixture
def sessions() -> InMemorySessionRegistry:
    return InMemorySessionRegistry()


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel(queue_size=1000)


@pytest.fixture
def make_orchestrator(store, sessions, channel, settings):
    """Build an orchestrator around a registry, sharing the test's stores."""

    def build(registry: AdapterRegistry, comparison_store=None) -> ComparisonOrchestrator:
        return ComparisonOrchestrator(
            registry=registry,
            store=comparison_store if comparison_store is not None else store,
            sessions=sessions,
            channel=channel,
            settings=settings,
            metrics=Metrics(),
        )

    return build
