"""
Repository implementation of ``MigrationStore`` over SQLAlchemy.

Claims are single conditional ``UPDATE ... WHERE status IN (...)``
statements; the row count tells the caller whether it won.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError

from ..connections.config import BackendKind
from ..migrations.models import (
    DatabaseConnection, Migration, MigrationExecution, MigrationRollback,
    MigrationSnapshot, ScheduledExecution
)
from ..migrations.states import (
    MigrationStatus, MigrationKind, ExecutionOutcome, RollbackOutcome, ScheduledStatus, legal_sources
)
from ..exceptions import ConflictError
from .base import MigrationStore
from .database import StoreDatabaseManager
from .models import (
    DatabaseConnectionModel, MigrationModel, MigrationExecutionModel,
    MigrationRollbackModel, MigrationSnapshotModel, ScheduledExecutionModel
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _stamp_value(value: Any) -> Any:
    if hasattr(value, 'value') and isinstance(getattr(value, 'value'), str):
        return value.value
    return value


class SQLAlchemyMigrationStore(MigrationStore):
    """Store backed by the engine's relational database."""

    def __init__(self, db_manager: StoreDatabaseManager):
        """
        Initialize the store.

        Args:
            db_manager: Initialized database manager
        """
        self.db = db_manager

    # Conversions

    @staticmethod
    def _connection_from_model(model: DatabaseConnectionModel) -> DatabaseConnection:
        return DatabaseConnection(
            id=model.id,
            name=model.name,
            team_id=model.team_id,
            kind=BackendKind(model.kind),
            host=model.host,
            port=model.port,
            database=model.database or "",
            username=model.username,
            encrypted_password=model.encrypted_password,
            url=model.url,
            ssl=bool(model.ssl),
            created_at=_aware(model.created_at)
        )

    @staticmethod
    def _migration_from_model(model: MigrationModel) -> Migration:
        return Migration(
            id=model.id,
            name=model.name,
            version=model.version,
            kind=MigrationKind(model.kind),
            content=model.content,
            status=MigrationStatus(model.status),
            checksum=model.checksum,
            description=model.description,
            team_id=model.team_id,
            connection_id=model.connection_id,
            created_by=model.created_by,
            created_at=_aware(model.created_at),
            executed_at=_aware(model.executed_at),
            rolled_back_at=_aware(model.rolled_back_at)
        )

    @staticmethod
    def _execution_from_model(model: MigrationExecutionModel) -> MigrationExecution:
        return MigrationExecution(
            id=model.id,
            migration_id=model.migration_id,
            outcome=ExecutionOutcome(model.outcome),
            duration_ms=model.duration_ms or 0.0,
            error=model.error,
            executed_by=model.executed_by,
            change_summaries=list(model.change_summaries or []),
            executed_at=_aware(model.executed_at)
        )

    @staticmethod
    def _rollback_from_model(model: MigrationRollbackModel) -> MigrationRollback:
        return MigrationRollback(
            id=model.id,
            migration_id=model.migration_id,
            status=RollbackOutcome(model.status),
            reason=model.reason,
            rollback_sql=model.rollback_sql,
            rolled_back_by=model.rolled_back_by,
            backup_location=model.backup_location,
            error=model.error,
            duration_ms=model.duration_ms or 0.0,
            completed_at=_aware(model.completed_at)
        )

    @staticmethod
    def _snapshot_from_model(model: MigrationSnapshotModel) -> MigrationSnapshot:
        return MigrationSnapshot(
            id=model.id,
            migration_id=model.migration_id,
            schema_version=model.schema_version,
            affected_tables=list(model.affected_tables or []),
            rollback_sql=model.rollback_sql,
            pre_state=model.pre_state,
            metadata=dict(model.snapshot_metadata or {}),
            created_by=model.created_by,
            created_at=_aware(model.created_at)
        )

    @staticmethod
    def _scheduled_from_model(model: ScheduledExecutionModel) -> ScheduledExecution:
        return ScheduledExecution(
            id=model.id,
            migration_id=model.migration_id,
            connection_id=model.connection_id,
            team_id=model.team_id,
            scheduled_for=_aware(model.scheduled_for),
            status=ScheduledStatus(model.status),
            scheduled_by=model.scheduled_by,
            error=model.error,
            created_at=_aware(model.created_at),
            executed_at=_aware(model.executed_at)
        )

    # Connections

    def add_connection(self, connection: DatabaseConnection) -> DatabaseConnection:
        with self.db.session_scope() as session:
            session.add(DatabaseConnectionModel(
                id=connection.id,
                name=connection.name,
                team_id=connection.team_id,
                kind=connection.kind.value,
                host=connection.host,
                port=connection.port,
                database=connection.database,
                username=connection.username,
                encrypted_password=connection.encrypted_password,
                url=connection.url,
                ssl=connection.ssl,
                created_at=connection.created_at
            ))
        return connection

    def get_connection(self, connection_id: str) -> Optional[DatabaseConnection]:
        with self.db.session_scope() as session:
            model = session.get(DatabaseConnectionModel, connection_id)
            return self._connection_from_model(model) if model else None

    # Migrations

    def add_migration(self, migration: Migration) -> Migration:
        try:
            self._insert_migration(migration)
        except IntegrityError as e:
            # uq_migration_version
            raise ConflictError(
                f"Migration version {migration.version} already exists for this connection",
                details={'version': migration.version, 'connection_id': migration.connection_id}
            ) from e
        return migration

    def _insert_migration(self, migration: Migration) -> None:
        with self.db.session_scope() as session:
            session.add(MigrationModel(
                id=migration.id,
                name=migration.name,
                version=migration.version,
                kind=migration.kind.value,
                content=migration.content,
                status=migration.status.value,
                checksum=migration.checksum,
                description=migration.description,
                team_id=migration.team_id,
                connection_id=migration.connection_id,
                created_by=migration.created_by,
                created_at=migration.created_at,
                executed_at=migration.executed_at,
                rolled_back_at=migration.rolled_back_at
            ))

    def get_migration(self, migration_id: str) -> Optional[Migration]:
        with self.db.session_scope() as session:
            model = session.get(MigrationModel, migration_id)
            return self._migration_from_model(model) if model else None

    def find_migration_by_version(
        self,
        team_id: str,
        connection_id: str,
        version: str
    ) -> Optional[Migration]:
        with self.db.session_scope() as session:
            model = session.query(MigrationModel).filter(
                MigrationModel.team_id == team_id,
                MigrationModel.connection_id == connection_id,
                MigrationModel.version == version
            ).first()
            return self._migration_from_model(model) if model else None

    def list_migrations(
        self,
        team_id: str,
        connection_id: Optional[str] = None,
        status: Optional[MigrationStatus] = None
    ) -> List[Migration]:
        with self.db.session_scope() as session:
            query = session.query(MigrationModel).filter(MigrationModel.team_id == team_id)
            if connection_id is not None:
                query = query.filter(MigrationModel.connection_id == connection_id)
            if status is not None:
                query = query.filter(MigrationModel.status == status.value)
            models = query.order_by(desc(MigrationModel.created_at)).all()
            return [self._migration_from_model(model) for model in models]

    def claim(
        self,
        migration_id: str,
        from_states: Sequence[MigrationStatus],
        to_state: MigrationStatus,
        **stamps: Any
    ) -> bool:
        from_states = legal_sources(from_states, to_state)
        if not from_states:
            return False

        values = {MigrationModel.status: to_state.value}
        for key, value in stamps.items():
            values[getattr(MigrationModel, key)] = _stamp_value(value)

        with self.db.session_scope() as session:
            updated = session.query(MigrationModel).filter(
                MigrationModel.id == migration_id,
                MigrationModel.status.in_([state.value for state in from_states])
            ).update(values, synchronize_session=False)
        return updated == 1

    # Executions

    def add_execution(self, execution: MigrationExecution) -> MigrationExecution:
        with self.db.session_scope() as session:
            session.add(MigrationExecutionModel(
                id=execution.id,
                migration_id=execution.migration_id,
                outcome=execution.outcome.value,
                duration_ms=execution.duration_ms,
                error=execution.error,
                executed_by=execution.executed_by,
                change_summaries=list(execution.change_summaries),
                executed_at=execution.executed_at
            ))
        return execution

    def list_executions(self, migration_id: str) -> List[MigrationExecution]:
        with self.db.session_scope() as session:
            models = session.query(MigrationExecutionModel).filter(
                MigrationExecutionModel.migration_id == migration_id
            ).order_by(desc(MigrationExecutionModel.seq)).all()
            return [self._execution_from_model(model) for model in models]

    def mark_execution_outcome(self, execution_id: str, outcome: ExecutionOutcome) -> bool:
        with self.db.session_scope() as session:
            updated = session.query(MigrationExecutionModel).filter(
                MigrationExecutionModel.id == execution_id
            ).update({MigrationExecutionModel.outcome: outcome.value}, synchronize_session=False)
        return updated == 1

    # Rollbacks

    def add_rollback(self, rollback: MigrationRollback) -> MigrationRollback:
        with self.db.session_scope() as session:
            session.add(MigrationRollbackModel(
                id=rollback.id,
                migration_id=rollback.migration_id,
                status=rollback.status.value,
                reason=rollback.reason,
                rollback_sql=rollback.rollback_sql,
                rolled_back_by=rollback.rolled_back_by,
                backup_location=rollback.backup_location,
                error=rollback.error,
                duration_ms=rollback.duration_ms,
                completed_at=rollback.completed_at
            ))
        return rollback

    def list_rollbacks(self, migration_id: str) -> List[MigrationRollback]:
        with self.db.session_scope() as session:
            models = session.query(MigrationRollbackModel).filter(
                MigrationRollbackModel.migration_id == migration_id
            ).order_by(desc(MigrationRollbackModel.seq)).all()
            return [self._rollback_from_model(model) for model in models]

    # Snapshots

    def get_snapshot(self, migration_id: str) -> Optional[MigrationSnapshot]:
        with self.db.session_scope() as session:
            model = session.query(MigrationSnapshotModel).filter(
                MigrationSnapshotModel.migration_id == migration_id
            ).first()
            return self._snapshot_from_model(model) if model else None

    def add_snapshot_if_absent(self, snapshot: MigrationSnapshot) -> Tuple[MigrationSnapshot, bool]:
        existing = self.get_snapshot(snapshot.migration_id)
        if existing is not None:
            return existing, False

        try:
            with self.db.session_scope() as session:
                session.add(MigrationSnapshotModel(
                    id=snapshot.id,
                    migration_id=snapshot.migration_id,
                    schema_version=snapshot.schema_version,
                    affected_tables=list(snapshot.affected_tables),
                    rollback_sql=snapshot.rollback_sql,
                    pre_state=snapshot.pre_state,
                    snapshot_metadata=dict(snapshot.metadata),
                    created_by=snapshot.created_by,
                    created_at=snapshot.created_at
                ))
        except IntegrityError:
            # lost the race on the unique migration_id
            existing = self.get_snapshot(snapshot.migration_id)
            if existing is None:
                raise
            return existing, False

        return snapshot, True

    # Scheduled executions

    def add_scheduled(self, scheduled: ScheduledExecution) -> ScheduledExecution:
        with self.db.session_scope() as session:
            session.add(ScheduledExecutionModel(
                id=scheduled.id,
                migration_id=scheduled.migration_id,
                connection_id=scheduled.connection_id,
                team_id=scheduled.team_id,
                scheduled_for=scheduled.scheduled_for,
                status=scheduled.status.value,
                scheduled_by=scheduled.scheduled_by,
                error=scheduled.error,
                created_at=scheduled.created_at,
                executed_at=scheduled.executed_at
            ))
        return scheduled

    def get_scheduled(self, scheduled_id: str) -> Optional[ScheduledExecution]:
        with self.db.session_scope() as session:
            model = session.get(ScheduledExecutionModel, scheduled_id)
            return self._scheduled_from_model(model) if model else None

    def delete_scheduled(self, scheduled_id: str, only_status: Optional[ScheduledStatus] = None) -> bool:
        with self.db.session_scope() as session:
            query = session.query(ScheduledExecutionModel).filter(
                ScheduledExecutionModel.id == scheduled_id
            )
            if only_status is not None:
                query = query.filter(ScheduledExecutionModel.status == only_status.value)
            deleted = query.delete(synchronize_session=False)
        return deleted == 1

    def list_scheduled(
        self,
        team_id: str,
        status: Optional[ScheduledStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[ScheduledExecution], int]:
        with self.db.session_scope() as session:
            query = session.query(ScheduledExecutionModel).filter(
                ScheduledExecutionModel.team_id == team_id
            )
            if status is not None:
                query = query.filter(ScheduledExecutionModel.status == status.value)
            total = query.count()
            models = query.order_by(ScheduledExecutionModel.scheduled_for).offset(offset).limit(limit).all()
            return [self._scheduled_from_model(model) for model in models], total

    def due_scheduled(self, now: datetime, limit: Optional[int] = None) -> List[ScheduledExecution]:
        with self.db.session_scope() as session:
            query = session.query(ScheduledExecutionModel).filter(
                ScheduledExecutionModel.status == ScheduledStatus.PENDING.value,
                ScheduledExecutionModel.scheduled_for <= now
            ).order_by(ScheduledExecutionModel.scheduled_for)
            if limit:
                query = query.limit(limit)
            return [self._scheduled_from_model(model) for model in query.all()]

    def complete_scheduled(
        self,
        scheduled_id: str,
        status: ScheduledStatus,
        executed_at: datetime,
        error: Optional[str] = None
    ) -> bool:
        with self.db.session_scope() as session:
            updated = session.query(ScheduledExecutionModel).filter(
                ScheduledExecutionModel.id == scheduled_id,
                ScheduledExecutionModel.status == ScheduledStatus.PENDING.value
            ).update({
                ScheduledExecutionModel.status: status.value,
                ScheduledExecutionModel.executed_at: executed_at,
                ScheduledExecutionModel.error: error
            }, synchronize_session=False)
        return updated == 1
