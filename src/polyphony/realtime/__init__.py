"""Real-time event delivery for comparison sessions."""

from polyphony.realtime.channel import (
    ChannelEvent,
    ChannelEventName,
    EventChannel,
    Subscriber,
)

__all__ = [
    "ChannelEvent",
    "ChannelEventName",
    "EventChannel",
    "Subscriber",
]
