"""Tests for per-user chat history."""

from datetime import datetime, timedelta, timezone

import pytest

from polyphony.core.models import ComparisonRecord, ModelResult, TokenUsage
from polyphony.history.service import (
    ChatHistoryService,
    HistoryAccessDeniedError,
    HistoryItemNotFoundError,
)
from polyphony.storage.memory import InMemoryComparisonStore


def record_for(owner, minutes=0, session_id="s1"):
    at = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return ComparisonRecord.from_results(
        session_id,
        "Explain recursion",
        {
            "A": ModelResult(model="A", response="Hi", tokens=TokenUsage(total_tokens=5), elapsed_ms=200),
            "B": ModelResult.failure("B", "auth failed"),
        },
        created_at=at,
        completed_at=at,
        owner_user_id=owner,
    )


@pytest.fixture
def history_store():
    return InMemoryComparisonStore()


@pytest.fixture
def history(history_store):
    return ChatHistoryService(history_store)


class TestChatHistoryService:
    """Tests for ChatHistoryService."""

    @pytest.mark.asyncio
    async def test_user_history_is_scoped_and_summarised(self, history, history_store):
        mine_old = record_for("u1", minutes=0)
        mine_new = record_for("u1", minutes=1)
        await history_store.save(mine_old)
        await history_store.save(mine_new)
        await history_store.save(record_for("u2", minutes=2))

        items = await history.get_user_history("u1")

        assert [i.id for i in items] == [mine_new.id, mine_old.id]
        assert items[0].model_count == 2
        assert items[0].models == ["A", "B"]
        assert items[0].total_tokens == 5

    @pytest.mark.asyncio
    async def test_get_item(self, history, history_store):
        record = record_for("u1")
        await history_store.save(record)

        item = await history.get_history_item(record.id, "u1")
        assert item.prompt == "Explain recursion"
        assert item.results["B"].error == "auth failed"

    @pytest.mark.asyncio
    async def test_missing_item(self, history):
        with pytest.raises(HistoryItemNotFoundError):
            await history.get_history_item("cmp-missing", "u1")

    @pytest.mark.asyncio
    async def test_other_users_item(self, history, history_store):
        record = record_for("u2")
        await history_store.save(record)

        with pytest.raises(HistoryAccessDeniedError):
            await history.get_history_item(record.id, "u1")
        with pytest.raises(HistoryAccessDeniedError):
            await history.delete_history_item(record.id, "u1")
        assert await history_store.find_by_id(record.id) is not None

    @pytest.mark.asyncio
    async def test_delete(self, history, history_store):
        first = record_for("u1", minutes=0)
        second = record_for("u1", minutes=1)
        await history_store.save(first)
        await history_store.save(second)

        await history.delete_history_item(first.id, "u1")
        assert await history_store.find_by_id(first.id) is None

        assert await history.delete_all_user_history("u1") == 1
        assert await history.get_user_history("u1") == []

    @pytest.mark.asyncio
    async def test_session_and_global_listings(self, history, history_store):
        await history_store.save(record_for(None, minutes=0, session_id="s1"))
        await history_store.save(record_for(None, minutes=1, session_id="s2"))

        assert len(await history.get_session_history("s1")) == 1
        assert len(await history.get_all_history()) == 2
        assert len(await history.get_all_history(limit=1)) == 1
