"""
File-backed stores for single-process deployments.

Comparisons and sessions share one JSON document guarded by a
``threading.Lock``; file I/O runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from polyphony.core.models import ComparisonRecord, SessionRecord
from polyphony.storage.base import (
    ComparisonStore,
    PersistenceError,
    SessionRegistry,
    newest_first,
)

T = TypeVar("T")


def _empty() -> dict[str, Any]:
    return {"comparisons": {}, "sessions": {}}


class JsonDocument:
    """A JSON file holding ``comparisons`` and ``sessions`` maps."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return _empty()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Malformed store document: {self.path}")
        data.setdefault("comparisons", {})
        data.setdefault("sessions", {})
        return data

    def _save(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e

    def read(self, fn: Callable[[dict[str, Any]], T]) -> T:
        with self.lock:
            return fn(self._load())

    def update(self, fn: Callable[[dict[str, Any]], T]) -> T:
        """Apply ``fn`` to the document and write it back atomically."""
        with self.lock:
            data = self._load()
            result = fn(data)
            self._save(data)
            return result


def _decode_comparison(raw: dict[str, Any]) -> ComparisonRecord:
    try:
        return ComparisonRecord.model_validate(raw)
    except ValidationError as e:
        raise PersistenceError(f"Corrupt comparison record: {e}") from e


class JsonComparisonStore(ComparisonStore):
    """Comparison store persisted to a JSON document."""

    def __init__(self, document: JsonDocument):
        self.document = document

    def _records(self, data: dict[str, Any]) -> list[ComparisonRecord]:
        return [_decode_comparison(raw) for raw in data["comparisons"].values()]

    async def save(self, record: ComparisonRecord) -> str:
        payload = record.model_dump(mode="json")

        def write(data: dict[str, Any]) -> str:
            data["comparisons"][record.id] = payload
            return record.id

        return await asyncio.to_thread(self.document.update, write)

    async def find_by_id(self, record_id: str) -> ComparisonRecord | None:
        raw = await asyncio.to_thread(
            self.document.read, lambda data: data["comparisons"].get(record_id)
        )
        return _decode_comparison(raw) if raw is not None else None

    async def find_by_session(self, session_id: str, limit: int = 50) -> list[ComparisonRecord]:
        records = await asyncio.to_thread(self.document.read, self._records)
        return newest_first((r for r in records if r.session_id == session_id), limit)

    async def find_all(self, limit: int = 100) -> list[ComparisonRecord]:
        records = await asyncio.to_thread(self.document.read, self._records)
        return newest_first(records, limit)

    async def find_by_owner(self, user_id: str, limit: int = 50) -> list[ComparisonRecord]:
        records = await asyncio.to_thread(self.document.read, self._records)
        return newest_first((r for r in records if r.owner_user_id == user_id), limit)

    async def delete_by_id(self, record_id: str) -> bool:
        def delete(data: dict[str, Any]) -> bool:
            return data["comparisons"].pop(record_id, None) is not None

        return await asyncio.to_thread(self.document.update, delete)

    async def delete_by_owner(self, user_id: str) -> int:
        def delete(data: dict[str, Any]) -> int:
            comparisons = data["comparisons"]
            doomed = [k for k, raw in comparisons.items() if raw.get("owner_user_id") == user_id]
            for key in doomed:
                del comparisons[key]
            return len(doomed)

        return await asyncio.to_thread(self.document.update, delete)


class JsonSessionRegistry(SessionRegistry):
    """Session registry persisted to a JSON document."""

    def __init__(self, document: JsonDocument):
        self.document = document

    async def find_by_session_id(self, session_id: str) -> SessionRecord | None:
        raw = await asyncio.to_thread(
            self.document.read, lambda data: data["sessions"].get(session_id)
        )
        if raw is None:
            return None
        try:
            return SessionRecord.model_validate(raw)
        except ValidationError as e:
            raise PersistenceError(f"Corrupt session record: {e}") from e

    async def upsert(self, record: SessionRecord) -> SessionRecord:
        payload = record.model_dump(mode="json")

        def write(data: dict[str, Any]) -> None:
            data["sessions"][record.session_id] = payload

        await asyncio.to_thread(self.document.update, write)
        return record
