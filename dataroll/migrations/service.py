"""
Migration service.

Single entry point that wires the store, the secret cipher, the event bus
and the engine components together. API layers, CI/CD hooks and the CLI talk
to this class; authorization happens before these methods are called.
"""

from datetime import datetime, timezone
from typing import List, Optional

from ..config import EngineConfig
from ..connections.base import ConnectionTestResult
from ..connections.config import BackendKind, ConnectionDescriptor
from ..connections.detection import OrmDetectionResult
from ..connections.registry import AdapterFactory
from ..events.base import EngineEvent, EventChannel, EventType
from ..events.bus import EventBus
from ..exceptions import ConfigurationError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..logging import EngineLogger
from ..security.encryption import SecretCipher, create_cipher
from ..storage.base import MigrationStore
from .checksum import compute_checksum
from .dispatcher import AdapterProvider, ExecutionDispatcher, ExecutionResult
from .lookup import load_migration
from .models import (
    DatabaseConnection, Migration, MigrationExecution, MigrationRollback, MigrationSnapshot, ScheduledExecution
)
from .rollback import RollbackEngine, RollbackResult
from .scheduler import Scheduler, ScheduledOutcome, ScheduledPage
from .snapshots import SnapshotService, SnapshotView, PitrCapability
from .states import MigrationKind, MigrationStatus, ScheduledStatus


def default_version(now: Optional[datetime] = None) -> str:
    """Timestamp version string, ``YYYYMMDDHHMMSSffffff`` in UTC."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S%f")


# attempts at a generated version before giving up
MAX_VERSION_ATTEMPTS = 10


class MigrationService:
    """Facade over the migration engine."""

    def __init__(
        self,
        store: MigrationStore,
        cipher: SecretCipher,
        events: Optional[EventBus] = None,
        adapter_provider: Optional[AdapterProvider] = None,
        config: Optional[EngineConfig] = None
    ):
        self.store = store
        self.cipher = cipher
        self.events = events or EventBus()
        self.config = config or EngineConfig()
        self.adapter_provider = adapter_provider or AdapterFactory(
            connect_timeout=self.config.connect_timeout,
            command_timeout=self.config.command_timeout,
            application_name=self.config.application_name
        )
        self.logger = EngineLogger("service")

        self.dispatcher = ExecutionDispatcher(store, cipher, self.events, self.adapter_provider, self.config)
        self.rollbacks = RollbackEngine(store, cipher, self.events, self.adapter_provider, self.config)
        self.snapshots = SnapshotService(store, cipher, self.events, self.adapter_provider, self.config)
        self.scheduler = Scheduler(store, self.dispatcher, self.events, self.config)

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None) -> 'MigrationService':
        """
        Build a service backed by the SQLAlchemy store named in the config.

        Raises:
            ConfigurationError: If the store cannot be initialized
        """
        from ..storage.database import StoreDatabaseManager
        from ..storage.repository import SQLAlchemyMigrationStore

        config = config or EngineConfig.from_env()
        config.configure_logging()

        db_manager = StoreDatabaseManager(config.store_url, echo=config.store_echo)
        if not db_manager.initialize():
            raise ConfigurationError(
                "Could not initialize the migration store",
                details={'store_url': db_manager.database_url.split('@')[-1]}
            )

        return cls(
            SQLAlchemyMigrationStore(db_manager),
            create_cipher(config.encryption_key),
            EventBus(),
            config=config
        )

    # Connections

    def add_connection(
        self,
        name: str,
        team_id: str,
        kind: BackendKind,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: str = "",
        username: Optional[str] = None,
        password: Optional[str] = None,
        url: Optional[str] = None,
        ssl: bool = False
    ) -> DatabaseConnection:
        """Register a connection; the password is stored encrypted."""
        if not name or not name.strip():
            raise ValidationError("Connection name is required")

        connection = DatabaseConnection(
            name=name.strip(),
            team_id=team_id,
            kind=BackendKind(kind),
            host=host,
            port=port,
            database=database,
            username=username,
            encrypted_password=self.cipher.encrypt(password) if password else None,
            url=url,
            ssl=ssl
        )
        return self.store.add_connection(connection)

    def get_connection(self, connection_id: str, team_id: Optional[str] = None) -> DatabaseConnection:
        connection = self.store.get_connection(connection_id)
        if connection is None or (team_id is not None and connection.team_id != team_id):
            raise NotFoundError("Database connection", connection_id)
        return connection

    async def test_connection(self, descriptor: ConnectionDescriptor) -> ConnectionTestResult:
        adapter = self.adapter_provider(descriptor.kind)
        return await adapter.test(descriptor)

    async def test_stored_connection(self, connection_id: str, team_id: Optional[str] = None) -> ConnectionTestResult:
        connection = self.get_connection(connection_id, team_id)
        return await self.test_connection(connection.to_descriptor(self.cipher))

    async def detect_orm(self, descriptor: ConnectionDescriptor) -> OrmDetectionResult:
        adapter = self.adapter_provider(descriptor.kind)
        return await adapter.detect_orm(descriptor)

    # Migrations

    async def create_migration(
        self,
        team_id: str,
        connection_id: str,
        name: str,
        kind: MigrationKind,
        content: str,
        *,
        version: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Migration:
        """
        Create a PENDING migration bound to a team's connection.

        Args:
            team_id: Owning team
            connection_id: Connection the migration will run against
            name: Human-readable name
            kind: PRISMA, DRIZZLE or RAW_SQL
            content: Forward SQL or ORM-tool output
            version: Version string (default: UTC timestamp)
            description: Optional description
            created_by: Acting user

        Returns:
            The stored Migration with its checksum

        Raises:
            ValidationError, NotFoundError, ForbiddenError, ConflictError
        """
        errors = []
        if not name or not name.strip():
            errors.append("name is required")
        if not content or not content.strip():
            errors.append("content is required")
        if errors:
            raise ValidationError("Invalid migration", validation_errors=errors)

        connection = self.store.get_connection(connection_id)
        if connection is None:
            raise NotFoundError("Database connection", connection_id)
        if connection.team_id != team_id:
            raise ForbiddenError(
                "Database connection does not belong to this team",
                details={'connection_id': connection_id}
            )

        migration = Migration(
            name=name.strip(),
            version=version or default_version(),
            kind=MigrationKind(kind),
            content=content,
            team_id=team_id,
            connection_id=connection_id,
            checksum=compute_checksum(content),
            description=description,
            created_by=created_by
        )

        if version is None:
            migration = self._add_with_generated_version(migration)
        else:
            if self.store.find_migration_by_version(team_id, connection_id, version) is not None:
                raise ConflictError(
                    f"Migration version {version} already exists for this connection",
                    details={'version': version, 'connection_id': connection_id}
                )
            migration = self.store.add_migration(migration)

        self.logger.info(
            f"Migration {migration.name} ({migration.version}) created",
            operation="create",
            status="success",
            metadata={'migration_id': migration.id, 'kind': migration.kind.value}
        )

        await self.events.publish(
            EngineEvent(
                event_type=EventType.MIGRATION_CREATED,
                migration_id=migration.id,
                team_id=team_id,
                actor_id=created_by,
                payload={
                    'migration_name': migration.name,
                    'version': migration.version,
                    'kind': migration.kind.value,
                    'connection_id': connection_id,
                }
            ),
            (EventChannel.AUDIT, EventChannel.WEBHOOK)
        )
        return migration

    def _add_with_generated_version(self, migration: Migration) -> Migration:
        """
        Store a migration whose version the caller left out.

        A taken timestamp gets a ``_N`` suffix instead of failing the request.
        """
        base = migration.version
        for attempt in range(MAX_VERSION_ATTEMPTS):
            if attempt:
                migration.version = f"{base}_{attempt}"
            if self.store.find_migration_by_version(
                migration.team_id, migration.connection_id, migration.version
            ) is not None:
                continue
            try:
                return self.store.add_migration(migration)
            except ConflictError:
                # taken by a concurrent request after the lookup
                continue

        raise ConflictError(
            f"Could not allocate a version for migration {migration.name}",
            details={'version': base, 'connection_id': migration.connection_id}
        )

    def get_migration(self, migration_id: str, team_id: Optional[str] = None) -> Migration:
        return load_migration(self.store, migration_id, team_id)

    def list_migrations(
        self,
        team_id: str,
        connection_id: Optional[str] = None,
        status: Optional[MigrationStatus] = None
    ) -> List[Migration]:
        return self.store.list_migrations(team_id, connection_id=connection_id, status=status)

    def list_executions(self, migration_id: str, team_id: Optional[str] = None) -> List[MigrationExecution]:
        migration = load_migration(self.store, migration_id, team_id)
        return self.store.list_executions(migration.id)

    def list_rollbacks(self, migration_id: str, team_id: Optional[str] = None) -> List[MigrationRollback]:
        migration = load_migration(self.store, migration_id, team_id)
        return self.store.list_rollbacks(migration.id)

    async def execute(
        self,
        migration_id: str,
        *,
        team_id: Optional[str] = None,
        checksum: Optional[str] = None,
        dry_run: bool = False,
        executed_by: Optional[str] = None
    ) -> ExecutionResult:
        return await self.dispatcher.execute(
            migration_id,
            team_id=team_id,
            checksum=checksum,
            dry_run=dry_run,
            executed_by=executed_by
        )

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
        return await self.rollbacks.rollback(
            migration_id,
            team_id=team_id,
            force=force,
            reason=reason,
            create_backup=create_backup,
            dry_run=dry_run,
            rolled_back_by=rolled_back_by
        )

    # Snapshots

    async def create_snapshot(
        self,
        migration_id: str,
        *,
        team_id: Optional[str] = None,
        created_by: Optional[str] = None,
        capture_pre_state: bool = False
    ) -> MigrationSnapshot:
        return await self.snapshots.create_and_persist(
            migration_id,
            created_by=created_by,
            capture_pre_state=capture_pre_state,
            team_id=team_id
        )

    def get_snapshot(self, migration_id: str, team_id: Optional[str] = None) -> SnapshotView:
        return self.snapshots.get_snapshot(migration_id, team_id)

    def pitr_capability(self, connection_id: str, team_id: Optional[str] = None) -> PitrCapability:
        return self.snapshots.pitr_capability(self.get_connection(connection_id, team_id))

    # Scheduling

    async def schedule(
        self,
        migration_id: str,
        team_id: str,
        connection_id: str,
        scheduled_for: datetime,
        scheduled_by_id: Optional[str] = None
    ) -> ScheduledExecution:
        return await self.scheduler.schedule(migration_id, team_id, connection_id, scheduled_for, scheduled_by_id)

    async def cancel_scheduled(self, scheduled_id: str, team_id: str, requester_id: Optional[str] = None) -> None:
        await self.scheduler.cancel(scheduled_id, team_id, requester_id)

    def list_scheduled(
        self,
        team_id: str,
        status: Optional[ScheduledStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> ScheduledPage:
        return self.scheduler.list_scheduled(team_id, status=status, limit=limit, offset=offset)

    async def process_due(self, now: Optional[datetime] = None) -> List[ScheduledOutcome]:
        return await self.scheduler.process_due(now)
