"""
Execution dispatcher.

Routes a migration by kind to its execution strategy, guards the run with a
checksum check and an atomic claim, and records exactly one execution entry
per real run.

Order of operations for ``execute``:

1. ownership checks (NotFound / Forbidden)
2. checksum verification (ChecksumMismatch)
3. state check: only PENDING or FAILED may run (Conflict)
4. dry run: build a preview and return; nothing is written
5. claim PENDING|FAILED -> EXECUTING (Conflict if another caller won)
6. run the batch through the backend adapter
7. settle EXECUTING -> EXECUTED|FAILED, append the execution, emit events

Backend failures in step 6 are returned as ``success=False`` results.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..config import EngineConfig
from ..connections.base import BatchResult, ConnectionAdapter
from ..connections.config import BackendKind
from ..connections.registry import AdapterFactory
from ..connections.statements import split_statements
from ..events.base import EngineEvent, EventChannel, EventType
from ..events.bus import EventBus
from ..exceptions import ConflictError
from ..logging import EngineLogger
from ..security.encryption import SecretCipher
from ..storage.base import MigrationStore
from .checksum import verify_checksum
from .lookup import current_status, load_migration, load_connection
from .models import Migration, MigrationExecution, utcnow
from .preview import preview_changes
from .states import MigrationStatus, ExecutionOutcome, EXECUTABLE_STATES

AdapterProvider = Callable[[BackendKind], ConnectionAdapter]


@dataclass
class ExecutionResult:
    """Result of an execute call."""
    migration_id: str
    success: bool
    duration_ms: float
    dry_run: bool = False
    change_summaries: List[str] = field(default_factory=list)
    total_rows_affected: int = 0
    error: Optional[str] = None
    failed_statement: Optional[str] = None
    execution_id: Optional[str] = None
    status: Optional[MigrationStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'migration_id': self.migration_id,
            'success': self.success,
            'duration_ms': round(self.duration_ms, 2),
            'dry_run': self.dry_run,
            'changes': list(self.change_summaries),
            'total_rows_affected': self.total_rows_affected,
        }
        if self.error:
            data['error'] = self.error
        if self.failed_statement:
            data['failed_statement'] = self.failed_statement
        if self.execution_id:
            data['execution_id'] = self.execution_id
        if self.status:
            data['status'] = self.status.value
        return data


class ExecutionDispatcher:
    """Runs migrations against their bound connection."""

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
        self.logger = EngineLogger("dispatcher")

    async def execute(
        self,
        migration_id: str,
        *,
        team_id: Optional[str] = None,
        checksum: Optional[str] = None,
        dry_run: bool = False,
        executed_by: Optional[str] = None
    ) -> ExecutionResult:
        """
        Execute or preview a migration.

        Args:
            migration_id: Migration identifier
            team_id: Requesting team; other teams' migrations are invisible
            checksum: Checksum captured at creation time, verified first
            dry_run: Preview only; no state transition, no record
            executed_by: Acting user, recorded on the execution entry

        Returns:
            ExecutionResult

        Raises:
            NotFoundError, ForbiddenError, ChecksumMismatchError, ConflictError
        """
        start = time.perf_counter()

        migration = load_migration(self.store, migration_id, team_id)
        connection = load_connection(self.store, migration)

        verify_checksum(migration.id, migration.content, checksum)

        if not migration.status.is_executable:
            raise ConflictError(
                f"Migration cannot be executed from status {migration.status.value}",
                details={
                    'migration_id': migration.id,
                    'status': migration.status.value,
                    'allowed_statuses': [s.value for s in EXECUTABLE_STATES]
                }
            )

        if dry_run:
            preview = preview_changes(migration.kind, migration.content)
            duration = (time.perf_counter() - start) * 1000
            self.logger.info(
                f"Dry run for migration {migration.id} ({migration.kind.value})",
                operation="execute",
                status="dry_run",
                duration_ms=duration,
                metadata={'migration_id': migration.id, 'preview_lines': len(preview)}
            )
            return ExecutionResult(
                migration_id=migration.id,
                success=True,
                duration_ms=duration,
                dry_run=True,
                change_summaries=preview,
                status=migration.status
            )

        if not self.store.claim(migration.id, EXECUTABLE_STATES, MigrationStatus.EXECUTING):
            current = self.store.get_migration(migration.id)
            raise ConflictError(
                "Migration is already being executed",
                details={
                    'migration_id': migration.id,
                    'status': current.status.value if current else None
                }
            )

        try:
            batch = await self._run(migration, connection)
        except Exception as e:
            # decryption or adapter setup; the claim must still be settled
            self.logger.error(
                f"Execution of migration {migration.id} aborted: {e}",
                operation="execute",
                status="failure",
                metadata={'migration_id': migration.id, 'error': str(e)}
            )
            batch = BatchResult(success=False, error=str(e) or e.__class__.__name__)

        return await self._finalize(migration, batch, start, executed_by)

    def _statements_for(self, migration: Migration) -> List[str]:
        # ORM-tool output is plain SQL by the time it reaches the engine
        return split_statements(migration.content)

    async def _run(self, migration: Migration, connection) -> BatchResult:
        descriptor = connection.to_descriptor(self.cipher)
        adapter = self.adapter_provider(connection.kind)
        statements = self._statements_for(migration)

        self.logger.debug(
            f"Running {len(statements)} statement(s) for migration {migration.id} on {descriptor.display_name}",
            operation="execute",
            metadata={'migration_id': migration.id, 'kind': migration.kind.value}
        )
        return await adapter.execute(
            descriptor,
            statements,
            atomic=self.config.transactional_batches
        )

    async def _finalize(
        self,
        migration: Migration,
        batch: BatchResult,
        start: float,
        executed_by: Optional[str]
    ) -> ExecutionResult:
        duration = (time.perf_counter() - start) * 1000
        final_status = MigrationStatus.EXECUTED if batch.success else MigrationStatus.FAILED
        outcome = ExecutionOutcome.SUCCESS if batch.success else ExecutionOutcome.FAILURE

        if not self.store.claim(
            migration.id,
            (MigrationStatus.EXECUTING,),
            final_status,
            executed_at=utcnow()
        ):
            final_status = current_status(self.store, migration.id)
            self.logger.error(
                f"Migration {migration.id} left EXECUTING by another writer",
                operation="execute",
                status="failure",
                metadata={
                    'migration_id': migration.id,
                    'status': final_status.value if final_status else None
                }
            )

        execution = self.store.add_execution(MigrationExecution(
            migration_id=migration.id,
            outcome=outcome,
            duration_ms=duration,
            error=batch.error,
            executed_by=executed_by,
            change_summaries=batch.change_summaries
        ))

        self.logger.log_operation(
            "execute",
            migration.id,
            batch.success,
            duration_ms=duration,
            statements=len(batch.changes),
            error=batch.error
        )

        event_type = EventType.MIGRATION_EXECUTED if batch.success else EventType.MIGRATION_FAILED
        await self.events.publish(
            EngineEvent(
                event_type=event_type,
                migration_id=migration.id,
                team_id=migration.team_id,
                actor_id=executed_by,
                payload={
                    'migration_name': migration.name,
                    'version': migration.version,
                    'kind': migration.kind.value,
                    'success': batch.success,
                    'duration_ms': round(duration, 2),
                    'execution_id': execution.id,
                    'error': batch.error,
                }
            ),
            (EventChannel.AUDIT, EventChannel.WEBHOOK)
        )

        return ExecutionResult(
            migration_id=migration.id,
            success=batch.success,
            duration_ms=duration,
            change_summaries=batch.change_summaries,
            total_rows_affected=batch.total_rows_affected,
            error=batch.error,
            failed_statement=batch.failed_statement,
            execution_id=execution.id,
            status=final_status
        )
