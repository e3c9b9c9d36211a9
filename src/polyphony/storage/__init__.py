"""Persistence for comparisons and sessions."""

from __future__ import annotations

from polyphony.core.config import StorageSettings
from polyphony.storage.base import ComparisonStore, PersistenceError, SessionRegistry
from polyphony.storage.json_store import JsonComparisonStore, JsonDocument, JsonSessionRegistry
from polyphony.storage.memory import InMemoryComparisonStore, InMemorySessionRegistry


def create_stores(settings: StorageSettings) -> tuple[ComparisonStore, SessionRegistry]:
    """Build the comparison store and session registry for a backend."""
    if settings.backend == "json":
        document = JsonDocument(settings.json_path)
        return JsonComparisonStore(document), JsonSessionRegistry(document)
    return InMemoryComparisonStore(), InMemorySessionRegistry()


__all__ = [
    "ComparisonStore",
    "InMemoryComparisonStore",
    "InMemorySessionRegistry",
    "JsonComparisonStore",
    "JsonDocument",
    "JsonSessionRegistry",
    "PersistenceError",
    "SessionRegistry",
    "create_stores",
]
