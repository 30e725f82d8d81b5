"""
Unit tests for snapshots and PITR reporting.
"""

from unittest.mock import AsyncMock, patch

import pytest

from conftest import OTHER_TEAM_ID, TEAM_ID, USER_ID
from dataroll.connections.config import BackendKind
from dataroll.events.base import EventChannel, EventType
from dataroll.exceptions import NotFoundError
from dataroll.migrations.reversal import ReversalConfidence
from dataroll.migrations.snapshots import (
    DEFAULT_PROVIDER, PITR_INSTRUCTIONS, detect_provider, extract_affected_tables, get_pitr_instructions
)


class TestExtractAffectedTables:
    """Test cases for extract_affected_tables."""

    def test_ddl_then_dml_then_reads(self):
        """Test ordering and deduplication."""
        sql = (
            "CREATE TABLE Orders (id int);\n"
            "ALTER TABLE orders ADD COLUMN total int;\n"
            "INSERT INTO audit_log SELECT * FROM customers JOIN regions ON true;\n"
            "UPDATE orders SET total = 0;"
        )

        assert extract_affected_tables(sql) == ["orders", "audit_log", "customers", "regions"]

    def test_if_exists_and_quotes(self):
        """Test IF [NOT] EXISTS and quoted names."""
        sql = 'CREATE TABLE IF NOT EXISTS "users" (id int); DROP TABLE IF EXISTS legacy;'

        assert extract_affected_tables(sql) == ["users", "legacy"]

    def test_dml_target_lowercased(self):
        """Test DML-only content."""
        assert extract_affected_tables("DELETE FROM Sessions WHERE expired;") == ["sessions"]

    def test_no_tables(self):
        """Test content without table references."""
        assert extract_affected_tables("CREATE INDEX idx ON t (id);") == []


class TestProviderDetection:
    """Test cases for provider detection and PITR instructions."""

    @pytest.mark.parametrize("url,provider", [
        ("postgresql://u:p@ep-cool-1.us-east-2.aws.neon.tech/db", "neon"),
        ("postgresql://postgres@db.abc.supabase.co:5432/postgres", "supabase"),
        ("mysql://u@aws.connect.psdb.cloud/db?planetscale=true", "planetscale"),
        ("postgres://default@ep-x.vercel-storage.com/verceldb", "vercel-postgres"),
        ("postgresql://localhost/app", DEFAULT_PROVIDER),
        (None, DEFAULT_PROVIDER),
    ])
    def test_detect_provider(self, url, provider):
        """Test URL signatures."""
        assert detect_provider(url) == provider

    def test_instructions(self):
        """Test that every provider has instructions and unknown ones fall back."""
        for provider, text in PITR_INSTRUCTIONS.items():
            assert get_pitr_instructions(provider) == text
            assert "dataroll rollback" in text
        assert get_pitr_instructions("unknown") == PITR_INSTRUCTIONS[DEFAULT_PROVIDER]


class TestSnapshotService:
    """Test cases for SnapshotService."""

    def test_create_snapshot_is_pure(self, service, store):
        """Test deriving a snapshot without a database."""
        descriptor = service.snapshots.create_snapshot(
            "m-1", "CREATE TABLE t (id int); INSERT INTO t VALUES (1);", "20240101000000"
        )

        assert descriptor.affected_tables == ["t"]
        assert descriptor.rollback_sql == "DROP TABLE IF EXISTS t;"
        assert descriptor.confidence == ReversalConfidence.PARTIAL
        assert descriptor.metadata['statement_count'] == 2
        assert descriptor.metadata['original_sql_length'] == 50
        assert store.snapshots == {}

    @pytest.mark.asyncio
    async def test_create_and_persist_once(self, service, store, events, make_migration):
        """Test that a second request returns the stored snapshot."""
        migration = make_migration("CREATE TABLE t (id int);")

        first = await service.create_snapshot(migration.id, team_id=TEAM_ID, created_by=USER_ID)
        second = await service.create_snapshot(migration.id, team_id=TEAM_ID, created_by="someone-else")

        assert first.id == second.id
        assert second.created_by == USER_ID
        assert first.rollback_sql == "DROP TABLE IF EXISTS t;"
        assert first.metadata['confidence'] == "full"
        assert first.pre_state is None
        assert len(store.snapshots) == 1

        created = events.entries(event_type=EventType.SNAPSHOT_CREATED)
        assert len(created) == 1
        assert created[0].channel == EventChannel.AUDIT

    @pytest.mark.asyncio
    async def test_snapshot_of_undecidable_migration(self, service, make_migration):
        """Test that a DROP TABLE migration persists without rollback SQL."""
        migration = make_migration("DROP TABLE legacy;")

        snapshot = await service.create_snapshot(migration.id)

        assert snapshot.rollback_sql is None
        assert snapshot.affected_tables == ["legacy"]
        assert snapshot.metadata['confidence'] == "none"

    @pytest.mark.asyncio
    async def test_capture_pre_state(self, service, adapter, make_migration):
        """Test that existing tables' columns are captured."""
        adapter.columns = {
            'users': [{'column_name': 'id', 'data_type': 'integer', 'is_nullable': 'NO', 'column_default': None}]
        }
        migration = make_migration("ALTER TABLE users ADD COLUMN age int; CREATE TABLE pets (id int);")

        snapshot = await service.create_snapshot(migration.id, capture_pre_state=True)

        assert set(snapshot.pre_state) == {"users"}
        assert snapshot.pre_state['users']['columns'][0]['column_name'] == "id"
        assert adapter.opened == adapter.closed == 1

    @pytest.mark.asyncio
    async def test_pre_state_failure_degrades(self, service, adapter, make_migration):
        """Test that capture errors never fail snapshot creation."""
        adapter.fail_open = ConnectionRefusedError("connection refused")
        migration = make_migration("ALTER TABLE users ADD COLUMN age int;")

        snapshot = await service.create_snapshot(migration.id, capture_pre_state=True)

        assert snapshot.pre_state is None
        assert snapshot.rollback_sql == "ALTER TABLE users DROP COLUMN IF EXISTS age;"

    @pytest.mark.asyncio
    async def test_pre_state_unexpected_error_degrades(self, service, adapter, make_migration):
        """Test that errors outside the adapter are contained too."""
        migration = make_migration("ALTER TABLE users ADD COLUMN age int;")

        with patch.object(adapter, 'capture_table_schemas', AsyncMock(side_effect=RuntimeError("boom"))):
            snapshot = await service.create_snapshot(migration.id, capture_pre_state=True)

        assert snapshot.pre_state is None

    @pytest.mark.asyncio
    async def test_get_snapshot(self, service, make_migration):
        """Test derived and persisted views."""
        migration = make_migration("CREATE TABLE t (id int);")

        derived = service.get_snapshot(migration.id, TEAM_ID)
        assert not derived.is_persisted
        assert derived.snapshot_id is None
        assert derived.rollback_sql == "DROP TABLE IF EXISTS t;"

        stored = await service.create_snapshot(migration.id, created_by=USER_ID)
        persisted = service.get_snapshot(migration.id, TEAM_ID)
        assert persisted.is_persisted
        assert persisted.snapshot_id == stored.id
        assert persisted.to_dict()['created_by'] == USER_ID

    @pytest.mark.asyncio
    async def test_other_team(self, service, make_migration):
        """Test that another team's migration is invisible."""
        migration = make_migration("CREATE TABLE t (id int);")

        with pytest.raises(NotFoundError):
            service.get_snapshot(migration.id, OTHER_TEAM_ID)
        with pytest.raises(NotFoundError):
            await service.create_snapshot(migration.id, team_id=OTHER_TEAM_ID)

    def test_pitr_capability(self, service):
        """Test PITR reporting per connection."""
        neon = service.add_connection(
            "neon", TEAM_ID, BackendKind.POSTGRESQL,
            url="postgresql://app:pw@ep-round-1.eu-central-1.aws.neon.tech/app"
        )
        local = service.add_connection("local", TEAM_ID, BackendKind.POSTGRESQL, host="localhost", database="app")

        capability = service.pitr_capability(neon.id, TEAM_ID)
        assert capability.provider == "neon"
        assert capability.native_pitr
        assert "Neon" in capability.instructions

        fallback = service.pitr_capability(local.id, TEAM_ID)
        assert fallback.provider == DEFAULT_PROVIDER
        assert not fallback.native_pitr

        with pytest.raises(NotFoundError):
            service.pitr_capability(local.id, OTHER_TEAM_ID)
