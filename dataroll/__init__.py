"""
dataroll

Migration lifecycle and execution engine for PostgreSQL, MySQL and SQLite.

Example usage:
    from dataroll import MigrationService, EngineConfig, BackendKind, MigrationKind

    service = MigrationService.from_config(EngineConfig.from_env())
    connection = service.add_connection("main", "team-1", BackendKind.SQLITE, database="app.db")
    migration = await service.create_migration(
        "team-1", connection.id, "create users", MigrationKind.RAW_SQL,
        "CREATE TABLE users (id integer primary key);"
    )
    result = await service.execute(migration.id, team_id="team-1")
"""

from .version import __version__
from .config import EngineConfig
from .exceptions import (
    DatarollError,
    NotFoundError,
    ConflictError,
    ForbiddenError,
    ValidationError,
    ConnectionMismatchError,
    ChecksumMismatchError,
    RollbackUnsupportedError,
    BackendExecutionError,
    ConfigurationError,
    EncryptionError,
)
from .connections import BackendKind, ConnectionDescriptor, AdapterRegistry
from .migrations import MigrationKind, MigrationStatus, ScheduledStatus
from .migrations.dispatcher import ExecutionDispatcher, ExecutionResult
from .migrations.rollback import RollbackEngine, RollbackResult
from .migrations.snapshots import SnapshotService, SnapshotView, PitrCapability
from .migrations.scheduler import Scheduler, ScheduledOutcome
from .migrations.service import MigrationService
from .events import EventBus, EventChannel, EventType
from .storage import InMemoryMigrationStore, SQLAlchemyMigrationStore, StoreDatabaseManager

__title__ = "dataroll"

__all__ = [
    "__version__",
    "EngineConfig",
    "DatarollError",
    "NotFoundError",
    "ConflictError",
    "ForbiddenError",
    "ValidationError",
    "ConnectionMismatchError",
    "ChecksumMismatchError",
    "RollbackUnsupportedError",
    "BackendExecutionError",
    "ConfigurationError",
    "EncryptionError",
    "BackendKind",
    "ConnectionDescriptor",
    "AdapterRegistry",
    "MigrationKind",
    "MigrationStatus",
    "ScheduledStatus",
    "ExecutionDispatcher",
    "ExecutionResult",
    "RollbackEngine",
    "RollbackResult",
    "SnapshotService",
    "SnapshotView",
    "PitrCapability",
    "Scheduler",
    "ScheduledOutcome",
    "MigrationService",
    "EventBus",
    "EventChannel",
    "EventType",
    "InMemoryMigrationStore",
    "SQLAlchemyMigrationStore",
    "StoreDatabaseManager",
]
