"""
Storage interfaces for comparisons and sessions.

Listing methods return records newest first by ``completed_at``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from polyphony.core.models import ComparisonRecord, SessionRecord


class PersistenceError(Exception):
    """Raised when a store cannot read or write records."""


class ComparisonStore(ABC):
    """Async store of ComparisonRecords."""

    @abstractmethod
    async def save(self, record: ComparisonRecord) -> str:
        """Persist a record and return its id."""
        ...

    @abstractmethod
    async def find_by_id(self, record_id: str) -> ComparisonRecord | None:
        ...

    @abstractmethod
    async def find_by_session(self, session_id: str, limit: int = 50) -> list[ComparisonRecord]:
        ...

    @abstractmethod
    async def find_all(self, limit: int = 100) -> list[ComparisonRecord]:
        ...

    @abstractmethod
    async def find_by_owner(self, user_id: str, limit: int = 50) -> list[ComparisonRecord]:
        ...

    @abstractmethod
    async def delete_by_id(self, record_id: str) -> bool:
        """Delete one record. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def delete_by_owner(self, user_id: str) -> int:
        """Delete every record owned by ``user_id``. Returns the count."""
        ...


class SessionRegistry(ABC):
    """Async registry of SessionRecords, one per session id."""

    @abstractmethod
    async def find_by_session_id(self, session_id: str) -> SessionRecord | None:
        ...

    @abstractmethod
    async def upsert(self, record: SessionRecord) -> SessionRecord:
        ...


def newest_first(records: Iterable[ComparisonRecord], limit: int | None = None) -> list[ComparisonRecord]:
    """Sort records by completion time, newest first, and apply a limit."""
    ordered = sorted(records, key=lambda r: r.completed_at, reverse=True)
    if limit is not None:
        ordered = ordered[: max(limit, 0)]
    return ordered
