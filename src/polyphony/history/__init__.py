"""Chat history over persisted comparisons."""

from polyphony.history.service import (
    ChatHistoryService,
    HistoryAccessDeniedError,
    HistoryItem,
    HistoryItemNotFoundError,
)

__all__ = [
    "ChatHistoryService",
    "HistoryAccessDeniedError",
    "HistoryItem",
    "HistoryItemNotFoundError",
]
