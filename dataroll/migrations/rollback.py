"""
Rollback engine.

Reverses an EXECUTED migration using reversal SQL taken from its persisted
snapshot or derived on the fly.

Eligibility without ``force``:

- ORM-tool migrations are never rolled back automatically.
- Raw SQL migrations are eligible only when their content mentions
  ``rollback``, ``drop`` or ``alter``, and only when reversal SQL can
  actually be derived.

With ``force`` the same derivation is used, but an empty derivation is
accepted as a no-op: the migration is marked rolled back without running
any SQL. No extra heuristics are applied on the forced path, and
ORM-tool migrations never get SQL.

A failed rollback puts the migration back to EXECUTED and records the
failed attempt.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import EngineConfig
from ..connections.base import BatchResult
from ..connections.registry import AdapterFactory
from ..connections.statements import split_statements
from ..events.base import EngineEvent, EventChannel, EventType
from ..events.bus import EventBus
from ..exceptions import ConflictError, RollbackUnsupportedError
from ..logging import EngineLogger
from ..security.encryption import SecretCipher
from ..storage.base import MigrationStore
from .dispatcher import AdapterProvider
from .lookup import current_status, load_migration, load_connection
from .models import Migration, MigrationRollback, utcnow
from .reversal import derive_reversal, ReversalConfidence
from .states import MigrationKind, MigrationStatus, ExecutionOutcome, RollbackOutcome, ROLLBACKABLE_STATES

ROLLBACK_KEYWORDS = ("rollback", "drop", "alter")


@dataclass
class RollbackPlan:
    """Reversal SQL chosen for a migration and where it came from."""
    sql: Optional[str]
    source: str
    confidence: ReversalConfidence = ReversalConfidence.NONE
    skipped_statements: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.confidence == ReversalConfidence.PARTIAL


@dataclass
class RollbackResult:
    """Result of a rollback call."""
    migration_id: str
    success: bool
    duration_ms: float
    rollback_sql: Optional[str] = None
    dry_run: bool = False
    forced: bool = False
    confidence: ReversalConfidence = ReversalConfidence.NONE
    skipped_statements: List[str] = field(default_factory=list)
    backup_location: Optional[str] = None
    rollback_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    status: Optional[MigrationStatus] = None

    @property
    def partial(self) -> bool:
        return self.confidence == ReversalConfidence.PARTIAL

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'migration_id': self.migration_id,
            'success': self.success,
            'duration_ms': round(self.duration_ms, 2),
            'rollback_sql': self.rollback_sql,
            'dry_run': self.dry_run,
            'forced': self.forced,
            'confidence': self.confidence.value,
            'partial': self.partial,
        }
        for key in ('backup_location', 'rollback_id', 'message', 'error'):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.skipped_statements:
            data['skipped_statements'] = list(self.skipped_statements)
        if self.status:
            data['status'] = self.status.value
        return data


def can_rollback(migration: Migration, force: bool = False) -> bool:
    """
    Eligibility policy for automatic rollback.

    Args:
        migration: Migration to check
        force: Caller accepts a best-effort, possibly empty, reversal

    Returns:
        True if a rollback may be attempted
    """
    if force:
        return True
    if migration.kind.is_orm_tool:
        return False
    content = migration.content.lower()
    return any(keyword in content for keyword in ROLLBACK_KEYWORDS)


class RollbackEngine:
    """Reverses executed migrations."""

    def __init__(
        self,
        store: MigrationStore,
        cipher: SecretCipher,
        events: EventBus,
        adapter_provider: Optional[AdapterProvider] = None,
        config: Optional[EngineConfig] = None
    ):
        self.store = store
        self.cipher = cipher
        self.events = events
        self.config = config or EngineConfig()
        self.adapter_provider = adapter_provider or AdapterFactory(
            connect_timeout=self.config.connect_timeout,
            command_timeout=self.config.command_timeout,
            application_name=self.config.application_name
        )
        self.logger = EngineLogger("rollback")

    def can_rollback(self, migration: Migration, force: bool = False) -> bool:
        return can_rollback(migration, force)

    def plan(self, migration: Migration) -> RollbackPlan:
        """Pick reversal SQL: persisted snapshot first, then derivation."""
        if migration.kind.is_orm_tool:
            return RollbackPlan(
                sql=None,
                source="none",
                reason=f"{migration.kind.value} migrations have no automatic down-migration"
            )

        snapshot = self.store.get_snapshot(migration.id)
        if snapshot is not None and snapshot.rollback_sql:
            return RollbackPlan(
                sql=snapshot.rollback_sql,
                source="snapshot",
                confidence=ReversalConfidence(snapshot.metadata.get('confidence', ReversalConfidence.FULL.value)),
                skipped_statements=list(snapshot.metadata.get('skipped_statements', []))
            )

        reversal = derive_reversal(migration.content)
        return RollbackPlan(
            sql=reversal.sql,
            source="derived",
            confidence=reversal.confidence,
            skipped_statements=list(reversal.skipped),
            reason=reversal.reason
        )

    def create_backup_location(self, migration: Migration) -> Optional[str]:
        """
        Placeholder backup hook.

        Returns the location a dump would be written to; the dump itself is
        produced by database-native tooling outside the engine. Only raw SQL
        migrations get a location.
        """
        if migration.kind != MigrationKind.RAW_SQL:
            return None
        timestamp = int(time.time() * 1000)
        return f"{self.config.backup_root.rstrip('/')}/backup-{migration.id}-{timestamp}.sql"

    async def rollback(
        self,
        migration_id: str,
        *,
        team_id: Optional[str] = None,
        force: bool = False,
        reason: Optional[str] = None,
        create_backup: bool = False,
        dry_run: bool = False,
        rolled_back_by: Optional[str] = None
    ) -> RollbackResult:
        """
        Roll back an executed migration.

        Args:
            migration_id: Migration identifier
            team_id: Requesting team
            force: Accept a best-effort, possibly empty, reversal
            reason: Human-supplied reason, recorded on the rollback entry
            create_backup: Reserve a backup location before reversing
            dry_run: Return the plan without claiming or executing
            rolled_back_by: Acting user

        Returns:
            RollbackResult

        Raises:
            NotFoundError, ForbiddenError, ConflictError, RollbackUnsupportedError
        """
        start = time.perf_counter()

        migration = load_migration(self.store, migration_id, team_id)
        connection = load_connection(self.store, migration)

        if not migration.status.is_rollbackable:
            raise ConflictError(
                f"Only EXECUTED migrations can be rolled back (current status: {migration.status.value})",
                details={'migration_id': migration.id, 'status': migration.status.value}
            )

        if not self.can_rollback(migration, force):
            if migration.kind.is_orm_tool:
                message = (
                    f"{migration.kind.value} migrations cannot be rolled back automatically; "
                    "generate a down-migration with the ORM tool or use force"
                )
            else:
                message = "Migration content does not look reversible; use force to attempt a best-effort rollback"
            raise RollbackUnsupportedError(
                message,
                details={'migration_id': migration.id, 'kind': migration.kind.value}
            )

        plan = self.plan(migration)
        if plan.sql is None and not force:
            raise RollbackUnsupportedError(
                "Rollback SQL cannot be derived for this migration",
                details={'migration_id': migration.id, 'reason': plan.reason}
            )

        if dry_run:
            return RollbackResult(
                migration_id=migration.id,
                success=True,
                duration_ms=(time.perf_counter() - start) * 1000,
                rollback_sql=plan.sql,
                dry_run=True,
                forced=force,
                confidence=plan.confidence,
                skipped_statements=plan.skipped_statements,
                message="Dry run complete. Review the rollback SQL before executing.",
                status=migration.status
            )

        if not self.store.claim(migration.id, ROLLBACKABLE_STATES, MigrationStatus.EXECUTING):
            raise ConflictError(
                "Migration is already being executed or rolled back",
                details={'migration_id': migration.id}
            )

        backup_location = None
        if create_backup:
            try:
                backup_location = self.create_backup_location(migration)
            except Exception as e:
                self.logger.warning(
                    f"Backup location could not be recorded for migration {migration.id}: {e}",
                    metadata={'migration_id': migration.id, 'error': str(e)}
                )

        try:
            batch = await self._run(plan, connection)
        except Exception as e:
            self.logger.error(
                f"Rollback of migration {migration.id} aborted: {e}",
                operation="rollback",
                status="failure",
                metadata={'migration_id': migration.id, 'error': str(e)}
            )
            batch = BatchResult(success=False, error=str(e) or e.__class__.__name__)

        if batch.success:
            return await self._complete(migration, plan, batch, start, force, reason, backup_location, rolled_back_by)
        return await self._revert(migration, plan, batch, start, force, reason, backup_location, rolled_back_by)

    async def _run(self, plan: RollbackPlan, connection) -> BatchResult:
        if not plan.sql:
            return BatchResult(success=True)

        descriptor = connection.to_descriptor(self.cipher)
        adapter = self.adapter_provider(connection.kind)
        return await adapter.execute(
            descriptor,
            split_statements(plan.sql),
            atomic=self.config.transactional_rollbacks
        )

    async def _complete(
        self,
        migration: Migration,
        plan: RollbackPlan,
        batch: BatchResult,
        start: float,
        force: bool,
        reason: Optional[str],
        backup_location: Optional[str],
        rolled_back_by: Optional[str]
    ) -> RollbackResult:
        duration = (time.perf_counter() - start) * 1000

        final_status = MigrationStatus.ROLLED_BACK
        if not self.store.claim(
            migration.id,
            (MigrationStatus.EXECUTING,),
            MigrationStatus.ROLLED_BACK,
            rolled_back_at=utcnow()
        ):
            final_status = current_status(self.store, migration.id)
            self.logger.error(
                f"Migration {migration.id} left EXECUTING by another writer",
                operation="rollback",
                status="failure",
                metadata={
                    'migration_id': migration.id,
                    'status': final_status.value if final_status else None
                }
            )

        record = self.store.add_rollback(MigrationRollback(
            migration_id=migration.id,
            status=RollbackOutcome.COMPLETED,
            reason=reason,
            rollback_sql=plan.sql,
            rolled_back_by=rolled_back_by,
            backup_location=backup_location,
            duration_ms=duration
        ))

        latest = self.store.latest_execution(migration.id)
        if latest is not None:
            self.store.mark_execution_outcome(latest.id, ExecutionOutcome.ROLLBACK)

        message = "Rollback executed successfully"
        if plan.sql is None:
            message = "No rollback SQL could be derived; migration marked as rolled back without running SQL"

        self.logger.log_operation(
            "rollback",
            migration.id,
            True,
            duration_ms=duration,
            forced=force,
            source=plan.source,
            sql=plan.sql
        )

        await self.events.publish(
            EngineEvent(
                event_type=EventType.MIGRATION_ROLLED_BACK,
                migration_id=migration.id,
                team_id=migration.team_id,
                actor_id=rolled_back_by,
                payload={
                    'migration_name': migration.name,
                    'version': migration.version,
                    'reason': reason,
                    'forced': force,
                    'rollback_id': record.id,
                    'backup_location': backup_location,
                    'duration_ms': round(duration, 2),
                }
            ),
            (EventChannel.AUDIT, EventChannel.WEBHOOK)
        )

        return RollbackResult(
            migration_id=migration.id,
            success=True,
            duration_ms=duration,
            rollback_sql=plan.sql,
            forced=force,
            confidence=plan.confidence,
            skipped_statements=plan.skipped_statements,
            backup_location=backup_location,
            rollback_id=record.id,
            message=message,
            status=final_status
        )

    async def _revert(
        self,
        migration: Migration,
        plan: RollbackPlan,
        batch: BatchResult,
        start: float,
        force: bool,
        reason: Optional[str],
        backup_location: Optional[str],
        rolled_back_by: Optional[str]
    ) -> RollbackResult:
        duration = (time.perf_counter() - start) * 1000

        final_status = MigrationStatus.EXECUTED
        if not self.store.claim(migration.id, (MigrationStatus.EXECUTING,), MigrationStatus.EXECUTED):
            final_status = current_status(self.store, migration.id)
            self.logger.error(
                f"Migration {migration.id} left EXECUTING by another writer",
                operation="rollback",
                status="failure",
                metadata={
                    'migration_id': migration.id,
                    'status': final_status.value if final_status else None
                }
            )

        record = self.store.add_rollback(MigrationRollback(
            migration_id=migration.id,
            status=RollbackOutcome.FAILED,
            reason=reason,
            rollback_sql=plan.sql,
            rolled_back_by=rolled_back_by,
            backup_location=backup_location,
            error=batch.error,
            duration_ms=duration
        ))

        self.logger.log_operation(
            "rollback",
            migration.id,
            False,
            duration_ms=duration,
            forced=force,
            error=batch.error
        )

        await self.events.publish(
            EngineEvent(
                event_type=EventType.MIGRATION_ROLLBACK_FAILED,
                migration_id=migration.id,
                team_id=migration.team_id,
                actor_id=rolled_back_by,
                payload={
                    'migration_name': migration.name,
                    'reason': reason,
                    'forced': force,
                    'rollback_id': record.id,
                    'error': batch.error,
                }
            ),
            (EventChannel.AUDIT, EventChannel.WEBHOOK)
        )

        return RollbackResult(
            migration_id=migration.id,
            success=False,
            duration_ms=duration,
            rollback_sql=plan.sql,
            forced=force,
            confidence=plan.confidence,
            skipped_statements=plan.skipped_statements,
            backup_location=backup_location,
            rollback_id=record.id,
            error=batch.error,
            status=final_status
        )
