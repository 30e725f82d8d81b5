"""
Outbox-style event bus.

``emit`` only appends to the outbox, so it cannot fail the operation that
produced the event. ``deliver`` drains pending entries to the handlers
subscribed on each channel; handler failures are logged and the entry is
marked failed, nothing is retried here.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from ..logging import get_correlation_id
from .base import EngineEvent, EventChannel, EventType, DeliveryStatus, OutboxEntry

EventHandler = Callable[[EngineEvent], Union[None, Awaitable[None]]]


class EventBus:
    """In-process outbox with per-channel subscribers."""

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._outbox: List[OutboxEntry] = []
        self._handlers: Dict[EventChannel, List[EventHandler]] = {channel: [] for channel in EventChannel}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def subscribe(self, channel: EventChannel, handler: EventHandler) -> None:
        """Register a handler for a channel."""
        self._handlers[channel].append(handler)

    def unsubscribe(self, channel: EventChannel, handler: EventHandler) -> None:
        """Remove a handler from a channel."""
        if handler in self._handlers[channel]:
            self._handlers[channel].remove(handler)

    def emit(self, event: EngineEvent, channels: Iterable[EventChannel]) -> List[OutboxEntry]:
        """Queue an event on the given channels."""
        if event.correlation_id is None:
            event.correlation_id = get_correlation_id()

        entries = [OutboxEntry(event=event, channel=channel) for channel in channels]
        self._outbox.extend(entries)

        if len(self._outbox) > self.max_entries:
            # drop the oldest settled entries first
            overflow = len(self._outbox) - self.max_entries
            settled = [e for e in self._outbox if e.status != DeliveryStatus.PENDING][:overflow]
            for entry in settled:
                self._outbox.remove(entry)

        self.logger.debug(
            f"Queued {event.event_type.value} on {', '.join(c.value for c in channels)}"
        )
        return entries

    async def deliver(self) -> int:
        """
        Deliver all pending entries.

        Returns:
            Number of entries delivered successfully
        """
        delivered = 0
        for entry in [e for e in self._outbox if e.status == DeliveryStatus.PENDING]:
            entry.attempts += 1
            try:
                for handler in list(self._handlers[entry.channel]):
                    result = handler(entry.event)
                    if asyncio.iscoroutine(result):
                        await result
                entry.status = DeliveryStatus.DELIVERED
                delivered += 1
            except Exception as e:
                entry.status = DeliveryStatus.FAILED
                entry.last_error = str(e)
                self.logger.warning(
                    f"Delivery of {entry.event.event_type.value} to {entry.channel.value} failed: {e}"
                )
        return delivered

    async def publish(self, event: EngineEvent, channels: Iterable[EventChannel]) -> None:
        """Queue an event and deliver it right away."""
        self.emit(event, list(channels))
        await self.deliver()

    def entries(
        self,
        channel: Optional[EventChannel] = None,
        event_type: Optional[EventType] = None,
        status: Optional[DeliveryStatus] = None
    ) -> List[OutboxEntry]:
        """Query the outbox."""
        return [
            entry for entry in self._outbox
            if (channel is None or entry.channel == channel)
            and (event_type is None or entry.event.event_type == event_type)
            and (status is None or entry.status == status)
        ]

    def events(
        self,
        channel: Optional[EventChannel] = None,
        event_type: Optional[EventType] = None
    ) -> List[EngineEvent]:
        """Events in the outbox, optionally filtered."""
        return [entry.event for entry in self.entries(channel=channel, event_type=event_type)]

    def clear(self) -> None:
        """Drop every outbox entry."""
        self._outbox.clear()
