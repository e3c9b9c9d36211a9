"""
Session-scoped event channel.

Publishes comparison progress to every subscriber of a session topic.
Each subscriber gets its own bounded queue and pump task, so a slow or
broken listener never blocks the publisher or other listeners. Delivery
is best effort and at most once; there is no replay for late joiners.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import structlog

from polyphony.core.models import utcnow

logger = structlog.get_logger()


class ChannelEventName(str, Enum):
    """Event names visible to clients."""

    CONNECTED = "connected"
    SESSION_CREATED = "session_created"
    JOINED_SESSION = "joined_session"
    LEFT_SESSION = "left_session"
    PROMPT_RECEIVED = "prompt_received"
    MODEL_TYPING = "model_typing"
    MODEL_STREAM = "model_stream"
    MODEL_COMPLETE = "model_complete"
    COMPARISON_COMPLETE = "comparison_complete"
    PROMPT_ERROR = "prompt_error"
    ERROR = "error"


@dataclass(frozen=True)
class ChannelEvent:
    """A single event published to a session topic."""

    name: ChannelEventName
    session_id: str | None
    data: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Wire form: ``{"event": name, "data": {..., "timestamp"}}``."""
        return {
            "event": self.name.value,
            "data": {**self.data, "timestamp": self.timestamp.isoformat()},
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class Subscriber(Protocol):
    """Anything that can receive channel events."""

    subscriber_id: str

    async def send(self, event: ChannelEvent) -> None: ...


@dataclass
class _Subscription:
    subscriber: Subscriber
    queue: asyncio.Queue
    topics: set[str] = field(default_factory=set)
    task: asyncio.Task | None = None


class EventChannel:
    """
    Topic-per-session publish/subscribe hub.

    ``publish`` is synchronous and never awaits a subscriber.
    """

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._subscriptions: dict[str, _Subscription] = {}
        self._topics: dict[str, set[str]] = {}

    async def join(self, session_id: str, subscriber: Subscriber) -> None:
        """Subscribe to a session topic. Joining twice is a no-op."""
        sub = self._subscriptions.get(subscriber.subscriber_id)
        if sub is None:
            sub = _Subscription(
                subscriber=subscriber,
                queue=asyncio.Queue(maxsize=self._queue_size),
            )
            sub.task = asyncio.create_task(self._pump(sub))
            self._subscriptions[subscriber.subscriber_id] = sub

        sub.topics.add(session_id)
        self._topics.setdefault(session_id, set()).add(subscriber.subscriber_id)
        logger.debug(
            "Subscriber joined session",
            session_id=session_id,
            subscriber_id=subscriber.subscriber_id,
            subscribers=self.subscriber_count(session_id),
        )

    async def leave(self, session_id: str, subscriber: Subscriber) -> None:
        """Unsubscribe from one topic; the pump stops with the last topic."""
        sub = self._subscriptions.get(subscriber.subscriber_id)
        if sub is None:
            return
        self._unlink(sub, session_id)
        if not sub.topics:
            await self._stop(sub)

    async def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a subscriber from every topic."""
        sub = self._subscriptions.get(subscriber.subscriber_id)
        if sub is None:
            return
        for topic in list(sub.topics):
            self._unlink(sub, topic)
        await self._stop(sub)

    def publish(
        self,
        session_id: str,
        name: ChannelEventName | str,
        payload: dict[str, Any] | None = None,
    ) -> ChannelEvent:
        """Queue an event for every current subscriber of ``session_id``."""
        event = ChannelEvent(
            name=ChannelEventName(name),
            session_id=session_id,
            data=dict(payload or {}),
        )
        for subscriber_id in list(self._topics.get(session_id, ())):
            sub = self._subscriptions.get(subscriber_id)
            if sub is None:
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Subscriber queue full, dropping event",
                    session_id=session_id,
                    subscriber_id=subscriber_id,
                    event=event.name.value,
                )
        return event

    def subscriber_count(self, session_id: str) -> int:
        return len(self._topics.get(session_id, ()))

    async def flush(self) -> None:
        """Wait until every queued event has been handed to its subscriber."""
        await asyncio.gather(
            *(sub.queue.join() for sub in list(self._subscriptions.values()))
        )

    async def close(self) -> None:
        """Stop all pumps and forget every subscriber."""
        for sub in list(self._subscriptions.values()):
            for topic in list(sub.topics):
                self._unlink(sub, topic)
            await self._stop(sub)

    async def _pump(self, sub: _Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                await sub.subscriber.send(event)
            except Exception as e:
                logger.warning(
                    "Subscriber send failed, dropping subscriber",
                    subscriber_id=sub.subscriber.subscriber_id,
                    event=event.name.value,
                    error=str(e),
                )
                break
            finally:
                sub.queue.task_done()

        for topic in list(sub.topics):
            self._unlink(sub, topic)
        self._subscriptions.pop(sub.subscriber.subscriber_id, None)
        _drain(sub.queue)

    def _unlink(self, sub: _Subscription, session_id: str) -> None:
        sub.topics.discard(session_id)
        members = self._topics.get(session_id)
        if members is not None:
            members.discard(sub.subscriber.subscriber_id)
            if not members:
                del self._topics[session_id]

    async def _stop(self, sub: _Subscription) -> None:
        self._subscriptions.pop(sub.subscriber.subscriber_id, None)
        task = sub.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        _drain(sub.queue)


def _drain(queue: asyncio.Queue) -> None:
    # Release pending items so flush() never waits on a dead subscriber
    while True:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            return
        queue.task_done()
