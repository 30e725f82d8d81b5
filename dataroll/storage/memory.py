"""
In-memory migration store.

Same claim semantics as the relational store, guarded by a lock. Used by
tests and for single-process embedding.
"""

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..migrations.models import (
    DatabaseConnection, Migration, MigrationExecution, MigrationRollback,
    MigrationSnapshot, ScheduledExecution
)
from ..migrations.states import MigrationStatus, ExecutionOutcome, ScheduledStatus, legal_sources
from ..exceptions import ConflictError
from .base import MigrationStore


class InMemoryMigrationStore(MigrationStore):
    """Dictionary-backed store. Returned records are copies."""

    def __init__(self):
        self._lock = threading.RLock()
        self.connections: Dict[str, DatabaseConnection] = {}
        self.migrations: Dict[str, Migration] = {}
        self.executions: List[MigrationExecution] = []
        self.rollbacks: List[MigrationRollback] = []
        self.snapshots: Dict[str, MigrationSnapshot] = {}
        self.scheduled: Dict[str, ScheduledExecution] = {}

    # Connections

    def add_connection(self, connection: DatabaseConnection) -> DatabaseConnection:
        with self._lock:
            self.connections[connection.id] = copy.deepcopy(connection)
        return connection

    def get_connection(self, connection_id: str) -> Optional[DatabaseConnection]:
        with self._lock:
            connection = self.connections.get(connection_id)
            return copy.deepcopy(connection) if connection else None

    # Migrations

    def add_migration(self, migration: Migration) -> Migration:
        with self._lock:
            if self._by_version(migration.team_id, migration.connection_id, migration.version) is not None:
                raise ConflictError(
                    f"Migration version {migration.version} already exists for this connection",
                    details={'version': migration.version, 'connection_id': migration.connection_id}
                )
            self.migrations[migration.id] = copy.deepcopy(migration)
        return migration

    def get_migration(self, migration_id: str) -> Optional[Migration]:
        with self._lock:
            migration = self.migrations.get(migration_id)
            return copy.deepcopy(migration) if migration else None

    def find_migration_by_version(
        self,
        team_id: str,
        connection_id: str,
        version: str
    ) -> Optional[Migration]:
        with self._lock:
            migration = self._by_version(team_id, connection_id, version)
            return copy.deepcopy(migration) if migration else None

    def _by_version(self, team_id: str, connection_id: str, version: str) -> Optional[Migration]:
        for migration in self.migrations.values():
            if (migration.team_id == team_id
                    and migration.connection_id == connection_id
                    and migration.version == version):
                return migration
        return None

    def list_migrations(
        self,
        team_id: str,
        connection_id: Optional[str] = None,
        status: Optional[MigrationStatus] = None
    ) -> List[Migration]:
        with self._lock:
            found = [
                copy.deepcopy(m) for m in self.migrations.values()
                if m.team_id == team_id
                and (connection_id is None or m.connection_id == connection_id)
                and (status is None or m.status == status)
            ]
        return sorted(found, key=lambda m: m.created_at, reverse=True)

    def claim(
        self,
        migration_id: str,
        from_states: Sequence[MigrationStatus],
        to_state: MigrationStatus,
        **stamps: Any
    ) -> bool:
        from_states = legal_sources(from_states, to_state)
        with self._lock:
            migration = self.migrations.get(migration_id)
            if migration is None or migration.status not in from_states:
                return False
            migration.status = to_state
            for key, value in stamps.items():
                setattr(migration, key, value)
            return True

    # Executions

    def add_execution(self, execution: MigrationExecution) -> MigrationExecution:
        with self._lock:
            self.executions.append(copy.deepcopy(execution))
        return execution

    def list_executions(self, migration_id: str) -> List[MigrationExecution]:
        with self._lock:
            found = [copy.deepcopy(e) for e in self.executions if e.migration_id == migration_id]
        # insertion order breaks timestamp ties
        return list(reversed(found))

    def mark_execution_outcome(self, execution_id: str, outcome: ExecutionOutcome) -> bool:
        with self._lock:
            for execution in self.executions:
                if execution.id == execution_id:
                    execution.outcome = outcome
                    return True
        return False

    # Rollbacks

    def add_rollback(self, rollback: MigrationRollback) -> MigrationRollback:
        with self._lock:
            self.rollbacks.append(copy.deepcopy(rollback))
        return rollback

    def list_rollbacks(self, migration_id: str) -> List[MigrationRollback]:
        with self._lock:
            found = [copy.deepcopy(r) for r in self.rollbacks if r.migration_id == migration_id]
        return list(reversed(found))

    # Snapshots

    def get_snapshot(self, migration_id: str) -> Optional[MigrationSnapshot]:
        with self._lock:
            snapshot = self.snapshots.get(migration_id)
            return copy.deepcopy(snapshot) if snapshot else None

    def add_snapshot_if_absent(self, snapshot: MigrationSnapshot) -> Tuple[MigrationSnapshot, bool]:
        with self._lock:
            existing = self.snapshots.get(snapshot.migration_id)
            if existing is not None:
                return copy.deepcopy(existing), False
            self.snapshots[snapshot.migration_id] = copy.deepcopy(snapshot)
            return snapshot, True

    # Scheduled executions

    def add_scheduled(self, scheduled: ScheduledExecution) -> ScheduledExecution:
        with self._lock:
            self.scheduled[scheduled.id] = copy.deepcopy(scheduled)
        return scheduled

    def get_scheduled(self, scheduled_id: str) -> Optional[ScheduledExecution]:
        with self._lock:
            scheduled = self.scheduled.get(scheduled_id)
            return copy.deepcopy(scheduled) if scheduled else None

    def delete_scheduled(self, scheduled_id: str, only_status: Optional[ScheduledStatus] = None) -> bool:
        with self._lock:
            scheduled = self.scheduled.get(scheduled_id)
            if scheduled is None:
                return False
            if only_status is not None and scheduled.status != only_status:
                return False
            del self.scheduled[scheduled_id]
            return True

    def list_scheduled(
        self,
        team_id: str,
        status: Optional[ScheduledStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[ScheduledExecution], int]:
        with self._lock:
            found = [
                copy.deepcopy(s) for s in self.scheduled.values()
                if s.team_id == team_id and (status is None or s.status == status)
            ]
        found.sort(key=lambda s: s.scheduled_for)
        return found[offset:offset + limit], len(found)

    def due_scheduled(self, now: datetime, limit: Optional[int] = None) -> List[ScheduledExecution]:
        with self._lock:
            due = [
                copy.deepcopy(s) for s in self.scheduled.values()
                if s.status == ScheduledStatus.PENDING and s.scheduled_for <= now
            ]
        due.sort(key=lambda s: s.scheduled_for)
        return due[:limit] if limit else due

    def complete_scheduled(
        self,
        scheduled_id: str,
        status: ScheduledStatus,
        executed_at: datetime,
        error: Optional[str] = None
    ) -> bool:
        with self._lock:
            scheduled = self.scheduled.get(scheduled_id)
            if scheduled is None or scheduled.status != ScheduledStatus.PENDING:
                return False
            scheduled.status = status
            scheduled.executed_at = executed_at
            scheduled.error = error
            return True
