"""
Per-user chat history over persisted comparisons.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict

from polyphony.core.models import ComparisonRecord, ModelResult
from polyphony.storage.base import ComparisonStore

logger = structlog.get_logger()


class HistoryItemNotFoundError(LookupError):
    """Raised when a history item does not exist."""


class HistoryAccessDeniedError(PermissionError):
    """Raised when a history item belongs to another user."""


class HistoryItem(BaseModel):
    """A comparison as shown in a history listing."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    prompt: str
    results: dict[str, ModelResult]
    created_at: datetime
    completed_at: datetime
    model_count: int
    models: list[str]
    total_tokens: int
    total_cost_usd: float
    average_response_time_ms: float
    owner_user_id: str | None = None

    @classmethod
    def from_record(cls, record: ComparisonRecord) -> "HistoryItem":
        models = record.model_names
        return cls(
            id=record.id,
            session_id=record.session_id,
            prompt=record.prompt,
            results=record.results,
            created_at=record.created_at,
            completed_at=record.completed_at,
            model_count=len(models),
            models=models,
            total_tokens=record.total_tokens,
            total_cost_usd=record.total_cost_usd,
            average_response_time_ms=record.average_response_time_ms,
            owner_user_id=record.owner_user_id,
        )


class ChatHistoryService:
    """Read and delete comparisons on behalf of their owners."""

    def __init__(self, store: ComparisonStore):
        self.store = store

    async def get_user_history(self, user_id: str, limit: int = 50) -> list[HistoryItem]:
        records = await self.store.find_by_owner(user_id, limit)
        return [HistoryItem.from_record(r) for r in records]

    async def get_history_item(self, item_id: str, user_id: str) -> HistoryItem:
        """
        Fetch one item owned by ``user_id``.

        Raises:
            HistoryItemNotFoundError: No such item
            HistoryAccessDeniedError: Item belongs to someone else
        """
        record = await self._owned(item_id, user_id)
        return HistoryItem.from_record(record)

    async def delete_history_item(self, item_id: str, user_id: str) -> None:
        await self._owned(item_id, user_id)
        await self.store.delete_by_id(item_id)
        logger.info("Deleted history item", item_id=item_id, user_id=user_id)

    async def delete_all_user_history(self, user_id: str) -> int:
        deleted = await self.store.delete_by_owner(user_id)
        logger.info("Deleted user history", user_id=user_id, deleted=deleted)
        return deleted

    async def get_session_history(self, session_id: str, limit: int = 50) -> list[HistoryItem]:
        records = await self.store.find_by_session(session_id, limit)
        return [HistoryItem.from_record(r) for r in records]

    async def get_all_history(self, limit: int = 100) -> list[HistoryItem]:
        records = await self.store.find_all(limit)
        return [HistoryItem.from_record(r) for r in records]

    async def _owned(self, item_id: str, user_id: str) -> ComparisonRecord:
        record = await self.store.find_by_id(item_id)
        if record is None:
            raise HistoryItemNotFoundError(f"History item not found: {item_id}")
        if record.owner_user_id != user_id:
            logger.warning(
                "History access denied",
                item_id=item_id,
                user_id=user_id,
            )
            raise HistoryAccessDeniedError("Access denied to this history item")
        return record
