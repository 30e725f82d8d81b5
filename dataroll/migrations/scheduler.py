"""
Deferred migration execution.

``Scheduler.schedule`` validates and records an intent to execute a
migration later; ``Scheduler.process_due`` is called by an external periodic
trigger and runs every due entry through the execution dispatcher. Each due
entry is processed on its own: a failing entry is marked FAILURE and the
remaining entries still run. An entry whose migration is already executing
under another tick is left PENDING for that tick to settle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import EngineConfig
from ..events.base import EngineEvent, EventChannel, EventType
from ..events.bus import EventBus
from ..exceptions import ConflictError, ConnectionMismatchError, NotFoundError, ValidationError
from ..logging import EngineLogger
from ..storage.base import MigrationStore
from .dispatcher import ExecutionDispatcher
from .lookup import current_status
from .models import ScheduledExecution, utcnow
from .states import MigrationStatus, ScheduledStatus


def _as_utc(value: datetime) -> datetime:
    # naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class ScheduledOutcome:
    """What happened to one due entry during ``process_due``."""
    scheduled_id: str
    migration_id: str
    status: ScheduledStatus
    error: Optional[str] = None
    execution_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ScheduledStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scheduled_id': self.scheduled_id,
            'migration_id': self.migration_id,
            'status': self.status.value,
            'error': self.error,
            'execution_id': self.execution_id,
        }


@dataclass
class ScheduledPage:
    """One page of a team's scheduled executions."""
    items: List[ScheduledExecution] = field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [item.to_dict() for item in self.items],
            'total': self.total,
            'limit': self.limit,
            'offset': self.offset,
            'has_more': self.has_more,
        }


class Scheduler:
    """Schedules migrations and runs the ones that are due."""

    def __init__(
        self,
        store: MigrationStore,
        dispatcher: ExecutionDispatcher,
        events: EventBus,
        config: Optional[EngineConfig] = None
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.events = events
        self.config = config or EngineConfig()
        self.logger = EngineLogger("scheduler")

    async def schedule(
        self,
        migration_id: str,
        team_id: str,
        connection_id: str,
        scheduled_for: datetime,
        scheduled_by_id: Optional[str]
    ) -> ScheduledExecution:
        """
        Record a future execution of a migration.

        All checks run before anything is written.

        Raises:
            NotFoundError: Migration absent or owned by another team
            ConnectionMismatchError: ``connection_id`` is not the migration's connection
            ValidationError: ``scheduled_for`` is not in the future
        """
        migration = self.store.get_migration(migration_id)
        if migration is None or migration.team_id != team_id:
            raise NotFoundError("Migration", migration_id)

        if migration.connection_id != connection_id:
            raise ConnectionMismatchError(migration.id, migration.connection_id, connection_id)

        scheduled_for = _as_utc(scheduled_for)
        if scheduled_for <= utcnow():
            raise ValidationError(
                "Scheduled time must be in the future",
                validation_errors=["scheduled_for must be in the future"],
                details={'scheduled_for': scheduled_for.isoformat()}
            )

        scheduled = self.store.add_scheduled(ScheduledExecution(
            migration_id=migration.id,
            connection_id=connection_id,
            team_id=team_id,
            scheduled_for=scheduled_for,
            scheduled_by=scheduled_by_id
        ))

        self.logger.info(
            f"Migration {migration.id} scheduled for {scheduled_for.isoformat()}",
            operation="schedule",
            status="success",
            metadata={'migration_id': migration.id, 'scheduled_id': scheduled.id}
        )

        await self.events.publish(
            EngineEvent(
                event_type=EventType.MIGRATION_SCHEDULED,
                migration_id=migration.id,
                team_id=team_id,
                actor_id=scheduled_by_id,
                payload={
                    'scheduled_id': scheduled.id,
                    'migration_name': migration.name,
                    'scheduled_for': scheduled_for.isoformat(),
                }
            ),
            (EventChannel.AUDIT, EventChannel.WEBHOOK)
        )
        return scheduled

    async def cancel(self, scheduled_id: str, team_id: str, requester_id: Optional[str]) -> None:
        """
        Cancel a PENDING scheduled execution; the entry is deleted.

        Raises:
            NotFoundError: Entry absent or owned by another team
            ConflictError: Entry already ran
        """
        scheduled = self.store.get_scheduled(scheduled_id)
        if scheduled is None or scheduled.team_id != team_id:
            raise NotFoundError("Scheduled execution", scheduled_id)

        if scheduled.status != ScheduledStatus.PENDING:
            raise ConflictError(
                f"Cannot cancel {scheduled.status.value.lower()} execution",
                details={'scheduled_id': scheduled_id, 'status': scheduled.status.value}
            )

        if not self.store.delete_scheduled(scheduled_id, only_status=ScheduledStatus.PENDING):
            # processed between the read and the delete
            current = self.store.get_scheduled(scheduled_id)
            status = current.status.value.lower() if current else "processed"
            raise ConflictError(
                f"Cannot cancel {status} execution",
                details={'scheduled_id': scheduled_id}
            )

        self.logger.info(
            f"Scheduled execution {scheduled_id} cancelled",
            operation="cancel",
            status="success",
            metadata={'migration_id': scheduled.migration_id, 'scheduled_id': scheduled_id}
        )

        await self.events.publish(
            EngineEvent(
                event_type=EventType.SCHEDULE_CANCELLED,
                migration_id=scheduled.migration_id,
                team_id=team_id,
                actor_id=requester_id,
                payload={
                    'scheduled_id': scheduled_id,
                    'scheduled_for': scheduled.scheduled_for.isoformat(),
                }
            ),
            (EventChannel.AUDIT,)
        )

    def list_scheduled(
        self,
        team_id: str,
        status: Optional[ScheduledStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> ScheduledPage:
        """Page through a team's scheduled executions, earliest first."""
        if limit <= 0:
            raise ValidationError("limit must be positive")
        if offset < 0:
            raise ValidationError("offset must not be negative")

        items, total = self.store.list_scheduled(team_id, status=status, limit=limit, offset=offset)
        return ScheduledPage(items=items, total=total, limit=limit, offset=offset)

    async def process_due(self, now: Optional[datetime] = None) -> List[ScheduledOutcome]:
        """
        Run every PENDING entry whose time has come.

        Args:
            now: Reference time (default: current UTC time)

        Returns:
            One ScheduledOutcome per processed entry
        """
        now = _as_utc(now) if now else utcnow()
        due = self.store.due_scheduled(now, limit=self.config.scheduler_batch_size)
        if not due:
            return []

        self.logger.info(f"Processing {len(due)} due scheduled execution(s)", operation="process_due")

        outcomes = []
        for scheduled in due:
            outcome = await self._process_one(scheduled)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    async def _process_one(self, scheduled: ScheduledExecution) -> Optional[ScheduledOutcome]:
        execution_id = None
        try:
            result = await self.dispatcher.execute(
                scheduled.migration_id,
                team_id=scheduled.team_id,
                executed_by=scheduled.scheduled_by
            )
            status = ScheduledStatus.SUCCESS if result.success else ScheduledStatus.FAILURE
            error = result.error
            execution_id = result.execution_id
        except ConflictError as e:
            if current_status(self.store, scheduled.migration_id) == MigrationStatus.EXECUTING:
                # another tick holds the claim and will settle this entry
                self.logger.info(
                    f"Migration {scheduled.migration_id} is already executing; "
                    f"leaving scheduled execution {scheduled.id} to its holder",
                    operation="process_due",
                    metadata={'scheduled_id': scheduled.id, 'migration_id': scheduled.migration_id}
                )
                return None
            status = ScheduledStatus.FAILURE
            error = str(e)
        except Exception as e:
            status = ScheduledStatus.FAILURE
            error = str(e) or e.__class__.__name__

        if not self.store.complete_scheduled(scheduled.id, status, utcnow(), error=error):
            self.logger.warning(
                f"Scheduled execution {scheduled.id} was settled or cancelled concurrently",
                operation="process_due",
                metadata={'scheduled_id': scheduled.id, 'migration_id': scheduled.migration_id}
            )
            return None

        self.logger.log_operation(
            "scheduled_execute",
            scheduled.migration_id,
            status == ScheduledStatus.SUCCESS,
            scheduled_id=scheduled.id,
            error=error
        )

        event_type = (
            EventType.SCHEDULED_EXECUTION_SUCCEEDED
            if status == ScheduledStatus.SUCCESS
            else EventType.SCHEDULED_EXECUTION_FAILED
        )
        await self.events.publish(
            EngineEvent(
                event_type=event_type,
                migration_id=scheduled.migration_id,
                team_id=scheduled.team_id,
                actor_id=scheduled.scheduled_by,
                payload={
                    'scheduled_id': scheduled.id,
                    'status': status.value,
                    'error': error,
                    'execution_id': execution_id,
                }
            ),
            (EventChannel.AUDIT, EventChannel.NOTIFICATION)
        )

        return ScheduledOutcome(
            scheduled_id=scheduled.id,
            migration_id=scheduled.migration_id,
            status=status,
            error=error,
            execution_id=execution_id
        )
