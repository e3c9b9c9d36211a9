"""In-process stores, the default backend."""

from __future__ import annotations

from polyphony.core.models import ComparisonRecord, SessionRecord
from polyphony.storage.base import ComparisonStore, SessionRegistry, newest_first


class InMemoryComparisonStore(ComparisonStore):
    """Dictionary-backed comparison store."""

    def __init__(self) -> None:
        self._records: dict[str, ComparisonRecord] = {}

    async def save(self, record: ComparisonRecord) -> str:
        self._records[record.id] = record
        return record.id

    async def find_by_id(self, record_id: str) -> ComparisonRecord | None:
        return self._records.get(record_id)

    async def find_by_session(self, session_id: str, limit: int = 50) -> list[ComparisonRecord]:
        return newest_first(
            (r for r in self._records.values() if r.session_id == session_id), limit
        )

    async def find_all(self, limit: int = 100) -> list[ComparisonRecord]:
        return newest_first(self._records.values(), limit)

    async def find_by_owner(self, user_id: str, limit: int = 50) -> list[ComparisonRecord]:
        return newest_first(
            (r for r in self._records.values() if r.owner_user_id == user_id), limit
        )

    async def delete_by_id(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    async def delete_by_owner(self, user_id: str) -> int:
        doomed = [k for k, r in self._records.items() if r.owner_user_id == user_id]
        for key in doomed:
            del self._records[key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._records)


class InMemorySessionRegistry(SessionRegistry):
    """Dictionary-backed session registry."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}

    async def find_by_session_id(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    async def upsert(self, record: SessionRecord) -> SessionRecord:
        self._sessions[record.session_id] = record
        return record

    def __len__(self) -> int:
        return len(self._sessions)
