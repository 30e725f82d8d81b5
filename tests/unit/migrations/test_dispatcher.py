"""
Unit tests for the execution dispatcher.
"""

from unittest.mock import patch

import pytest

from conftest import OTHER_TEAM_ID, TEAM_ID, USER_ID
from dataroll.connections.config import BackendKind
from dataroll.events.base import EventChannel, EventType
from dataroll.exceptions import ChecksumMismatchError, ConflictError, ForbiddenError, NotFoundError
from dataroll.migrations.checksum import compute_checksum
from dataroll.migrations.dispatcher import ExecutionDispatcher
from dataroll.migrations.models import DatabaseConnection, Migration
from dataroll.migrations.preview import PREVIEW_UNAVAILABLE
from dataroll.migrations.states import ExecutionOutcome, MigrationKind, MigrationStatus
from dataroll.security.encryption import FernetSecretCipher


class TestExecute:
    """Test cases for ExecutionDispatcher.execute."""

    @pytest.mark.asyncio
    async def test_successful_execution(self, service, store, events, adapter, make_migration):
        """Test a clean run from PENDING."""
        migration = make_migration("CREATE TABLE t (id int); ALTER TABLE t ADD COLUMN name text;")

        result = await service.execute(
            migration.id,
            team_id=TEAM_ID,
            checksum=migration.checksum,
            executed_by=USER_ID
        )

        assert result.success
        assert result.status == MigrationStatus.EXECUTED
        assert result.error is None
        assert adapter.executed == ["CREATE TABLE t (id int)", "ALTER TABLE t ADD COLUMN name text"]
        assert result.change_summaries == ["CREATE TABLE affected 0 rows", "ALTER TABLE affected 0 rows"]

        stored = store.get_migration(migration.id)
        assert stored.status == MigrationStatus.EXECUTED
        assert stored.executed_at is not None

        executions = store.list_executions(migration.id)
        assert len(executions) == 1
        assert executions[0].id == result.execution_id
        assert executions[0].outcome == ExecutionOutcome.SUCCESS
        assert executions[0].executed_by == USER_ID

        executed_events = events.events(event_type=EventType.MIGRATION_EXECUTED)
        assert len(executed_events) == 2
        assert {e.channel for e in events.entries(event_type=EventType.MIGRATION_EXECUTED)} == {
            EventChannel.AUDIT, EventChannel.WEBHOOK
        }

    @pytest.mark.asyncio
    async def test_connection_opened_and_closed(self, service, adapter, make_migration):
        """Test that every opened connection is closed."""
        migration = make_migration("SELECT 1;")

        await service.execute(migration.id)

        assert adapter.opened == 1
        assert adapter.closed == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        MigrationStatus.EXECUTING,
        MigrationStatus.EXECUTED,
        MigrationStatus.ROLLED_BACK,
    ])
    async def test_non_executable_status(self, service, store, events, adapter, make_migration, status):
        """Test that only PENDING and FAILED migrations run."""
        migration = make_migration("CREATE TABLE t (id int);", status=status)

        with pytest.raises(ConflictError):
            await service.execute(migration.id)

        assert store.get_migration(migration.id).status == status
        assert store.list_executions(migration.id) == []
        assert events.entries() == []
        assert adapter.opened == 0

    @pytest.mark.asyncio
    async def test_failed_migration_can_be_retried(self, service, store, make_migration):
        """Test FAILED -> EXECUTING -> EXECUTED."""
        migration = make_migration("CREATE TABLE t (id int);", status=MigrationStatus.FAILED)

        result = await service.execute(migration.id)

        assert result.success
        assert store.get_migration(migration.id).status == MigrationStatus.EXECUTED

    @pytest.mark.asyncio
    async def test_checksum_drift(self, service, store, adapter, make_migration):
        """Test that changed content is refused before anything runs."""
        migration = make_migration("CREATE TABLE t (id int);")
        store.migrations[migration.id].content = "DROP TABLE t;"

        with pytest.raises(ChecksumMismatchError):
            await service.execute(migration.id, checksum=migration.checksum)

        assert store.get_migration(migration.id).status == MigrationStatus.PENDING
        assert adapter.opened == 0

    @pytest.mark.asyncio
    async def test_checksum_match(self, service, make_migration):
        """Test that a matching checksum lets the run proceed."""
        content = "CREATE TABLE t (id int);"
        migration = make_migration(content)

        result = await service.execute(migration.id, checksum=compute_checksum(content))

        assert result.success

    @pytest.mark.asyncio
    async def test_dry_run_raw_sql(self, service, store, events, adapter, make_migration):
        """Test that a dry run previews without side effects."""
        migration = make_migration("CREATE TABLE t (id int); INSERT INTO t VALUES (1);")

        result = await service.execute(migration.id, dry_run=True)

        assert result.success
        assert result.dry_run
        assert result.change_summaries == ["CREATE TABLE t (id int)", "INSERT INTO t VALUES (1)"]
        assert result.execution_id is None
        assert store.get_migration(migration.id).status == MigrationStatus.PENDING
        assert store.list_executions(migration.id) == []
        assert events.entries() == []
        assert adapter.opened == 0

    @pytest.mark.asyncio
    async def test_dry_run_orm_without_ddl(self, service, make_migration):
        """Test the preview placeholder for ORM content."""
        migration = make_migration("-- nothing here", kind=MigrationKind.DRIZZLE)

        result = await service.execute(migration.id, dry_run=True)

        assert result.change_summaries == [PREVIEW_UNAVAILABLE]

    @pytest.mark.asyncio
    async def test_dry_run_rejected_for_executed(self, service, make_migration):
        """Test that a dry run applies the same state check."""
        migration = make_migration("CREATE TABLE t (id int);", status=MigrationStatus.EXECUTED)

        with pytest.raises(ConflictError):
            await service.execute(migration.id, dry_run=True)

    @pytest.mark.asyncio
    async def test_backend_failure(self, service, store, events, adapter, make_migration):
        """Test that a failing statement marks the migration FAILED."""
        migration = make_migration("CREATE TABLE a (id int); CREATE TABLE broken (x);")
        adapter.fail_on = ["broken"]

        result = await service.execute(migration.id)

        assert not result.success
        assert result.status == MigrationStatus.FAILED
        assert "broken" in result.error
        assert result.failed_statement == "CREATE TABLE broken (x)"
        # non-transactional batches keep what already ran
        assert result.change_summaries == ["CREATE TABLE affected 0 rows"]

        assert store.get_migration(migration.id).status == MigrationStatus.FAILED
        executions = store.list_executions(migration.id)
        assert len(executions) == 1
        assert executions[0].outcome == ExecutionOutcome.FAILURE
        assert executions[0].error == result.error
        assert len(events.events(channel=EventChannel.AUDIT, event_type=EventType.MIGRATION_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_transactional_batch_failure(self, service, config, adapter, make_migration):
        """Test that atomic batches are rolled back as a whole."""
        config.transactional_batches = True
        migration = make_migration("CREATE TABLE a (id int); CREATE TABLE broken (x);")
        adapter.fail_on = ["broken"]

        result = await service.execute(migration.id)

        assert not result.success
        assert adapter.transactions == ["begin", "rollback"]
        assert result.change_summaries == []

    @pytest.mark.asyncio
    async def test_unreachable_backend(self, service, store, adapter, make_migration):
        """Test that a connection failure is a failed execution, not an exception."""
        migration = make_migration("CREATE TABLE t (id int);")
        adapter.fail_open = ConnectionRefusedError("connection refused")

        result = await service.execute(migration.id)

        assert not result.success
        assert result.error == "connection refused"
        assert store.get_migration(migration.id).status == MigrationStatus.FAILED

    @pytest.mark.asyncio
    async def test_other_team_sees_not_found(self, service, make_migration):
        """Test that another team's migration is invisible."""
        migration = make_migration("CREATE TABLE t (id int);")

        with pytest.raises(NotFoundError):
            await service.execute(migration.id, team_id=OTHER_TEAM_ID)

    @pytest.mark.asyncio
    async def test_unknown_migration(self, service):
        """Test a missing migration."""
        with pytest.raises(NotFoundError):
            await service.execute("does-not-exist")

    @pytest.mark.asyncio
    async def test_connection_of_other_team(self, service, store, adapter, make_migration):
        """Test that cross-team connection linkage is refused."""
        foreign = service.add_connection("foreign", OTHER_TEAM_ID, BackendKind.POSTGRESQL, host="x", database="y")
        migration = make_migration("CREATE TABLE t (id int);", connection_id=foreign.id)

        with pytest.raises(ForbiddenError):
            await service.execute(migration.id)

        assert store.get_migration(migration.id).status == MigrationStatus.PENDING
        assert adapter.opened == 0

    @pytest.mark.asyncio
    async def test_lost_claim(self, service, store, adapter, make_migration):
        """Test that a concurrent winner makes the loser fail without side effects."""
        migration = make_migration("CREATE TABLE t (id int);")

        with patch.object(store, 'claim', return_value=False):
            with pytest.raises(ConflictError):
                await service.execute(migration.id)

        assert adapter.opened == 0
        assert store.list_executions(migration.id) == []

    @pytest.mark.asyncio
    async def test_lost_settle_reports_stored_status(self, service, store, make_migration):
        """Test that a settle lost to another writer reports the status actually stored."""
        migration = make_migration("CREATE TABLE t (id int);")
        real_claim = store.claim

        def claim(migration_id, from_states, to_state, **stamps):
            if to_state == MigrationStatus.EXECUTED:
                store.migrations[migration_id].status = MigrationStatus.FAILED
                return False
            return real_claim(migration_id, from_states, to_state, **stamps)

        with patch.object(store, 'claim', side_effect=claim):
            result = await service.execute(migration.id)

        assert result.success
        assert result.status == MigrationStatus.FAILED
        assert store.get_migration(migration.id).status == MigrationStatus.FAILED
        assert len(store.list_executions(migration.id)) == 1

    @pytest.mark.asyncio
    async def test_undecryptable_secret(self, store, events, adapter, config):
        """Test that a bad secret settles the migration as FAILED."""
        cipher = FernetSecretCipher(FernetSecretCipher.generate_key())
        dispatcher = ExecutionDispatcher(store, cipher, events, lambda kind: adapter, config)
        connection = store.add_connection(DatabaseConnection(
            name="broken-secret",
            team_id=TEAM_ID,
            kind=BackendKind.POSTGRESQL,
            host="db.internal",
            database="app",
            encrypted_password="not-a-fernet-token"
        ))
        content = "CREATE TABLE t (id int);"
        migration = store.add_migration(Migration(
            name="m", version="1", kind=MigrationKind.RAW_SQL, content=content,
            team_id=TEAM_ID, connection_id=connection.id, checksum=compute_checksum(content)
        ))

        result = await dispatcher.execute(migration.id)

        assert not result.success
        assert result.error == "Failed to decrypt connection secret"
        assert store.get_migration(migration.id).status == MigrationStatus.FAILED
        assert adapter.opened == 0

    @pytest.mark.asyncio
    async def test_result_serialization(self, service, make_migration):
        """Test ExecutionResult.to_dict."""
        migration = make_migration("CREATE TABLE t (id int);")

        data = (await service.execute(migration.id)).to_dict()

        assert data['success'] is True
        assert data['status'] == "EXECUTED"
        assert data['changes'] == ["CREATE TABLE affected 0 rows"]
        assert 'error' not in data
