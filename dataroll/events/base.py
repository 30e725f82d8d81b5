"""
Engine events.

Events are emitted after the state transition they describe has been
committed. Each event goes to one or more channels consumed by external
collaborators (audit log, webhook fan-out, notifications).
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    """Types of engine events."""
    MIGRATION_CREATED = "migration.created"
    MIGRATION_EXECUTED = "migration.executed"
    MIGRATION_FAILED = "migration.failed"
    MIGRATION_ROLLED_BACK = "migration.rolled_back"
    MIGRATION_ROLLBACK_FAILED = "migration.rollback_failed"
    MIGRATION_SCHEDULED = "migration.scheduled"
    SCHEDULE_CANCELLED = "schedule.cancelled"
    SCHEDULED_EXECUTION_SUCCEEDED = "scheduled_execution.succeeded"
    SCHEDULED_EXECUTION_FAILED = "scheduled_execution.failed"
    SNAPSHOT_CREATED = "snapshot.created"


class EventChannel(str, Enum):
    """Delivery channels."""
    AUDIT = "audit"
    WEBHOOK = "webhook"
    NOTIFICATION = "notification"


class DeliveryStatus(str, Enum):
    """Outbox entry status."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class EngineEvent:
    """An engine event with the identifiers every consumer needs."""
    event_type: EventType
    migration_id: Optional[str] = None
    team_id: Optional[str] = None
    actor_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            'id': self.id,
            'event_type': self.event_type.value,
            'migration_id': self.migration_id,
            'team_id': self.team_id,
            'actor_id': self.actor_id,
            'payload': self.payload,
            'timestamp': self.timestamp.isoformat(),
            'correlation_id': self.correlation_id
        }

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class OutboxEntry:
    """One event queued for one channel."""
    event: EngineEvent
    channel: EventChannel
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
