"""
Snapshot and point-in-time recovery service.

A snapshot is the recoverability record of one migration: the tables it
touches, the reversal SQL derived from its content and, optionally, the
column definitions those tables had before the migration ran. A migration
has at most one persisted snapshot; asking again returns the stored one.

PITR capability reporting is informational. The engine never invokes a
provider's restore tooling, it only says whether one exists and how to use it.
"""

import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import EngineConfig
from ..connections.registry import AdapterFactory
from ..connections.statements import split_statements
from ..events.base import EngineEvent, EventChannel, EventType
from ..events.bus import EventBus
from ..logging import EngineLogger
from ..security.encryption import SecretCipher
from ..storage.base import MigrationStore
from .dispatcher import AdapterProvider
from .lookup import load_migration, load_connection
from .models import DatabaseConnection, Migration, MigrationSnapshot, utcnow
from .reversal import derive_reversal, ReversalConfidence

_TABLE_PATTERNS = (
    re.compile(r"\b(?:CREATE|ALTER|DROP)\s+TABLE\s+(?:IF\s+(?:NOT\s+)?EXISTS\s+)?[\"'`]?(\w+)", re.IGNORECASE),
    re.compile(r"\b(?:INSERT\s+INTO|UPDATE|DELETE\s+FROM|TRUNCATE)\s+[\"'`]?(\w+)", re.IGNORECASE),
    re.compile(r"\b(?:FROM|JOIN)\s+[\"'`]?(\w+)", re.IGNORECASE),
)

_NOT_TABLES = frozenset({
    'SELECT', 'FROM', 'WHERE', 'AND', 'OR', 'SET', 'VALUES', 'IF', 'ONLY', 'TABLE', 'CASCADE',
})

# Provider signatures, checked in order against the lowercased URL or host
_PROVIDER_SIGNATURES = (
    ('neon', ('neon.tech', 'neon')),
    ('supabase', ('supabase',)),
    ('planetscale', ('planetscale',)),
    ('vercel-postgres', ('vercel-storage', 'postgres.vercel')),
)

DEFAULT_PROVIDER = "default"

PITR_INSTRUCTIONS: Dict[str, str] = {
    'vercel-postgres': (
        "Vercel Postgres includes automatic daily backups.\n"
        "To restore using provider PITR:\n"
        "1. Go to your Vercel Dashboard > Storage > Your Database\n"
        "2. Click \"Backups\" tab\n"
        "3. Select a backup point and click \"Restore\"\n"
        "\n"
        "For automated schema rollback, use the dataroll rollback operation."
    ),
    'neon': (
        "Neon provides instant branching for point-in-time recovery.\n"
        "To restore using provider PITR:\n"
        "1. Go to your Neon Console > Your Project\n"
        "2. Click \"Branches\" > \"Create Branch\"\n"
        "3. Select \"From a point in time\" and choose your target timestamp\n"
        "\n"
        "For automated schema rollback, use the dataroll rollback operation."
    ),
    'supabase': (
        "Supabase provides Point-in-Time Recovery on Pro plans.\n"
        "To restore using provider PITR:\n"
        "1. Go to your Supabase Dashboard > Project Settings > Database\n"
        "2. Open the \"Backups\" section\n"
        "3. Use PITR to restore to a specific timestamp\n"
        "\n"
        "For automated schema rollback, use the dataroll rollback operation."
    ),
    'planetscale': (
        "PlanetScale provides automatic backups and safe migrations.\n"
        "To restore using provider PITR:\n"
        "1. Go to your PlanetScale Dashboard > Your Database\n"
        "2. Click \"Backups\" tab\n"
        "3. Select a backup and click \"Restore\"\n"
        "\n"
        "For automated schema rollback, use the dataroll rollback operation."
    ),
    DEFAULT_PROVIDER: (
        "For full data restoration, contact your database provider for PITR options.\n"
        "Most managed database services include:\n"
        "- Automatic daily backups\n"
        "- Point-in-time recovery to any moment\n"
        "- One-click restore functionality\n"
        "\n"
        "For schema rollback, use the dataroll rollback operation."
    ),
}


def extract_affected_tables(sql: str) -> List[str]:
    """
    Best-effort list of tables a script touches.

    DDL targets come first, then DML targets, then tables read in FROM/JOIN
    clauses. Names are lowercased and deduplicated in first-seen order.
    """
    tables: List[str] = []
    for pattern in _TABLE_PATTERNS:
        for match in pattern.finditer(sql):
            name = match.group(1)
            if name.upper() in _NOT_TABLES:
                continue
            name = name.lower()
            if name not in tables:
                tables.append(name)
    return tables


def detect_provider(connection_url: Optional[str]) -> str:
    """Detect a managed database provider from a connection URL or host."""
    url = (connection_url or "").lower()
    for provider, signatures in _PROVIDER_SIGNATURES:
        if any(signature in url for signature in signatures):
            return provider
    return DEFAULT_PROVIDER


def get_pitr_instructions(provider: str) -> str:
    return PITR_INSTRUCTIONS.get(provider, PITR_INSTRUCTIONS[DEFAULT_PROVIDER])


@dataclass
class SnapshotDescriptor:
    """In-memory snapshot derived from migration content."""
    migration_id: str
    schema_version: str
    affected_tables: List[str] = field(default_factory=list)
    rollback_sql: Optional[str] = None
    confidence: ReversalConfidence = ReversalConfidence.NONE
    skipped_statements: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'migration_id': self.migration_id,
            'schema_version': self.schema_version,
            'affected_tables': list(self.affected_tables),
            'rollback_sql': self.rollback_sql,
            'confidence': self.confidence.value,
            'skipped_statements': list(self.skipped_statements),
            'metadata': dict(self.metadata),
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class SnapshotView:
    """Snapshot as returned to callers, persisted or derived on the fly."""
    migration_id: str
    schema_version: str
    affected_tables: List[str]
    rollback_sql: Optional[str]
    is_persisted: bool
    metadata: Dict[str, Any] = field(default_factory=dict)
    pre_state: Optional[Dict[str, Any]] = None
    snapshot_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, snapshot: MigrationSnapshot) -> 'SnapshotView':
        return cls(
            migration_id=snapshot.migration_id,
            schema_version=snapshot.schema_version,
            affected_tables=list(snapshot.affected_tables),
            rollback_sql=snapshot.rollback_sql,
            is_persisted=True,
            metadata=dict(snapshot.metadata),
            pre_state=snapshot.pre_state,
            snapshot_id=snapshot.id,
            created_by=snapshot.created_by,
            created_at=snapshot.created_at
        )

    @classmethod
    def from_descriptor(cls, descriptor: SnapshotDescriptor) -> 'SnapshotView':
        return cls(
            migration_id=descriptor.migration_id,
            schema_version=descriptor.schema_version,
            affected_tables=list(descriptor.affected_tables),
            rollback_sql=descriptor.rollback_sql,
            is_persisted=False,
            metadata=dict(descriptor.metadata),
            created_at=descriptor.timestamp
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'migration_id': self.migration_id,
            'schema_version': self.schema_version,
            'affected_tables': list(self.affected_tables),
            'rollback_sql': self.rollback_sql,
            'is_persisted': self.is_persisted,
            'metadata': dict(self.metadata),
            'pre_state': self.pre_state,
            'snapshot_id': self.snapshot_id,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class PitrCapability:
    """Native point-in-time recovery support of a connection's provider."""
    provider: str
    native_pitr: bool
    instructions: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'native_pitr': self.native_pitr,
            'instructions': self.instructions,
        }


class SnapshotService:
    """Derives, persists and reports migration snapshots."""

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
        self.logger = EngineLogger("snapshots")

    def create_snapshot(self, migration_id: str, content: str, schema_version: str) -> SnapshotDescriptor:
        """
        Derive a snapshot from migration content without touching any database.

        Args:
            migration_id: Migration identifier
            content: Forward migration content
            schema_version: Schema version the snapshot belongs to

        Returns:
            SnapshotDescriptor
        """
        reversal = derive_reversal(content)
        return SnapshotDescriptor(
            migration_id=migration_id,
            schema_version=schema_version,
            affected_tables=extract_affected_tables(content),
            rollback_sql=reversal.sql,
            confidence=reversal.confidence,
            skipped_statements=list(reversal.skipped),
            metadata={
                'original_sql_length': len(content),
                'statement_count': len(split_statements(content)),
                'captured_at': utcnow().isoformat(),
            }
        )

    async def create_and_persist(
        self,
        migration_id: str,
        *,
        created_by: Optional[str],
        capture_pre_state: bool = False,
        team_id: Optional[str] = None
    ) -> MigrationSnapshot:
        """
        Derive and store the snapshot of a migration, once.

        When a snapshot already exists it is returned unchanged and nothing
        is captured or emitted. Pre-state capture opens its own short-lived
        read connection; any failure there degrades to ``pre_state=None``.

        Raises:
            NotFoundError, ForbiddenError
        """
        migration = load_migration(self.store, migration_id, team_id)

        existing = self.store.get_snapshot(migration.id)
        if existing is not None:
            return existing

        descriptor = self.create_snapshot(migration.id, migration.content, migration.version)

        pre_state = None
        if capture_pre_state and descriptor.affected_tables:
            pre_state = await self._capture_pre_state(migration, descriptor.affected_tables)

        metadata = dict(descriptor.metadata)
        metadata['confidence'] = descriptor.confidence.value
        if descriptor.skipped_statements:
            metadata['skipped_statements'] = list(descriptor.skipped_statements)

        snapshot, created = self.store.add_snapshot_if_absent(MigrationSnapshot(
            migration_id=migration.id,
            schema_version=descriptor.schema_version,
            affected_tables=descriptor.affected_tables,
            rollback_sql=descriptor.rollback_sql,
            pre_state=pre_state,
            metadata=metadata,
            created_by=created_by
        ))

        if created:
            self.logger.info(
                f"Snapshot created for migration {migration.id}",
                operation="snapshot",
                status="success",
                metadata={
                    'migration_id': migration.id,
                    'affected_tables': snapshot.affected_tables,
                    'has_rollback_sql': snapshot.rollback_sql is not None,
                    'has_pre_state': snapshot.pre_state is not None,
                }
            )
            await self.events.publish(
                EngineEvent(
                    event_type=EventType.SNAPSHOT_CREATED,
                    migration_id=migration.id,
                    team_id=migration.team_id,
                    actor_id=created_by,
                    payload={
                        'snapshot_id': snapshot.id,
                        'affected_tables': list(snapshot.affected_tables),
                        'has_rollback_sql': snapshot.rollback_sql is not None,
                    }
                ),
                (EventChannel.AUDIT,)
            )

        return snapshot

    async def _capture_pre_state(self, migration: Migration, tables: List[str]) -> Optional[Dict[str, Any]]:
        start = time.perf_counter()
        try:
            connection = load_connection(self.store, migration)
            descriptor = connection.to_descriptor(self.cipher)
            adapter = self.adapter_provider(connection.kind)
            pre_state = await adapter.capture_table_schemas(descriptor, tables)
        except Exception as e:
            self.logger.warning(
                f"Failed to capture pre-state for migration {migration.id}: {e}",
                operation="snapshot",
                metadata={'migration_id': migration.id, 'error': str(e)}
            )
            return None

        self.logger.debug(
            f"Captured pre-state of {len(pre_state or {})} table(s)",
            operation="snapshot",
            duration_ms=(time.perf_counter() - start) * 1000,
            metadata={'migration_id': migration.id}
        )
        return pre_state

    def get_snapshot(self, migration_id: str, team_id: Optional[str] = None) -> SnapshotView:
        """
        Return the persisted snapshot, or one derived on the fly.

        Raises:
            NotFoundError
        """
        migration = load_migration(self.store, migration_id, team_id)

        snapshot = self.store.get_snapshot(migration.id)
        if snapshot is not None:
            return SnapshotView.from_record(snapshot)

        return SnapshotView.from_descriptor(
            self.create_snapshot(migration.id, migration.content, migration.version)
        )

    def pitr_capability(self, connection: DatabaseConnection) -> PitrCapability:
        """Report whether the connection's provider has native PITR."""
        provider = detect_provider(connection.url or connection.host)
        return PitrCapability(
            provider=provider,
            native_pitr=provider != DEFAULT_PROVIDER,
            instructions=get_pitr_instructions(provider)
        )
