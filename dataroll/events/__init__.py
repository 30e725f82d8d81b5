"""
Engine event emission.
"""

from .base import EventType, EventChannel, DeliveryStatus, EngineEvent, OutboxEntry
from .bus import EventBus, EventHandler

__all__ = [
    "EventType",
    "EventChannel",
    "DeliveryStatus",
    "EngineEvent",
    "OutboxEntry",
    "EventBus",
    "EventHandler",
]
