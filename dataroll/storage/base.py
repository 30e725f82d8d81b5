"""
Persistence boundary for the migration engine.

``MigrationStore`` is the only way the engine reads or writes state. The
concurrency guarantees live in two conditional updates:

- ``claim`` moves a migration from one of ``from_states`` to ``to_state``
  and reports whether it won. A second caller racing on the same
  migration sees ``False``.
- ``complete_scheduled`` terminalizes a scheduled execution only while it
  is still PENDING, so two scheduler ticks cannot both settle it.

Implementations must make both atomic in the underlying store; in-process
locks are not enough when callers are separate processes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from ..migrations.models import (
    DatabaseConnection, Migration, MigrationExecution, MigrationRollback,
    MigrationSnapshot, ScheduledExecution
)
from ..migrations.states import (
    MigrationStatus, ExecutionOutcome, ScheduledStatus
)


class MigrationStore(ABC):
    """Abstract store for migrations and their satellite records."""

    # Connections

    @abstractmethod
    def add_connection(self, connection: DatabaseConnection) -> DatabaseConnection:
        pass

    @abstractmethod
    def get_connection(self, connection_id: str) -> Optional[DatabaseConnection]:
        pass

    # Migrations

    @abstractmethod
    def add_migration(self, migration: Migration) -> Migration:
        """
        Insert a migration.

        Raises:
            ConflictError: Version already taken for the same team and connection
        """
        pass

    @abstractmethod
    def get_migration(self, migration_id: str) -> Optional[Migration]:
        pass

    @abstractmethod
    def find_migration_by_version(
        self,
        team_id: str,
        connection_id: str,
        version: str
    ) -> Optional[Migration]:
        pass

    @abstractmethod
    def list_migrations(
        self,
        team_id: str,
        connection_id: Optional[str] = None,
        status: Optional[MigrationStatus] = None
    ) -> List[Migration]:
        """Migrations of a team, newest first."""
        pass

    @abstractmethod
    def claim(
        self,
        migration_id: str,
        from_states: Sequence[MigrationStatus],
        to_state: MigrationStatus,
        **stamps: Any
    ) -> bool:
        """
        Atomically move a migration between states.

        Args:
            migration_id: Migration identifier
            from_states: States the migration must currently be in
            to_state: Target state
            **stamps: Extra columns to set in the same update
                (``executed_at``, ``rolled_back_at``)

        Returns:
            True if this call performed the transition
        """
        pass

    # Executions

    @abstractmethod
    def add_execution(self, execution: MigrationExecution) -> MigrationExecution:
        pass

    @abstractmethod
    def list_executions(self, migration_id: str) -> List[MigrationExecution]:
        """Executions of a migration, newest first."""
        pass

    def latest_execution(self, migration_id: str) -> Optional[MigrationExecution]:
        executions = self.list_executions(migration_id)
        return executions[0] if executions else None

    @abstractmethod
    def mark_execution_outcome(self, execution_id: str, outcome: ExecutionOutcome) -> bool:
        """Re-tag an execution; used only to mark a rolled back execution."""
        pass

    # Rollbacks

    @abstractmethod
    def add_rollback(self, rollback: MigrationRollback) -> MigrationRollback:
        pass

    @abstractmethod
    def list_rollbacks(self, migration_id: str) -> List[MigrationRollback]:
        """Rollback attempts of a migration, newest first."""
        pass

    # Snapshots

    @abstractmethod
    def get_snapshot(self, migration_id: str) -> Optional[MigrationSnapshot]:
        pass

    @abstractmethod
    def add_snapshot_if_absent(self, snapshot: MigrationSnapshot) -> Tuple[MigrationSnapshot, bool]:
        """
        Persist a snapshot unless the migration already has one.

        Returns:
            (stored snapshot, created) where ``created`` is False when an
            existing snapshot was returned instead
        """
        pass

    # Scheduled executions

    @abstractmethod
    def add_scheduled(self, scheduled: ScheduledExecution) -> ScheduledExecution:
        pass

    @abstractmethod
    def get_scheduled(self, scheduled_id: str) -> Optional[ScheduledExecution]:
        pass

    @abstractmethod
    def delete_scheduled(self, scheduled_id: str, only_status: Optional[ScheduledStatus] = None) -> bool:
        """Delete a scheduled execution, optionally only while in ``only_status``."""
        pass

    @abstractmethod
    def list_scheduled(
        self,
        team_id: str,
        status: Optional[ScheduledStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[ScheduledExecution], int]:
        """Page of a team's scheduled executions ordered by time, plus the total count."""
        pass

    @abstractmethod
    def due_scheduled(self, now: datetime, limit: Optional[int] = None) -> List[ScheduledExecution]:
        """PENDING entries whose ``scheduled_for`` is at or before ``now``."""
        pass

    @abstractmethod
    def complete_scheduled(
        self,
        scheduled_id: str,
        status: ScheduledStatus,
        executed_at: datetime,
        error: Optional[str] = None
    ) -> bool:
        """Terminalize a scheduled execution if it is still PENDING."""
        pass
