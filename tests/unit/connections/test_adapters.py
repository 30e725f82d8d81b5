"""
Unit tests for connection adapters.

The shared template methods are exercised through a scripted adapter, the
SQLite adapter against real database files, and the PostgreSQL and MySQL
adapters against mocked drivers.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dataroll.connections.config import BackendKind, ConnectionDescriptor
from dataroll.connections.detection import DetectedOrm
from dataroll.connections.mysql import MySQLAdapter
from dataroll.connections.postgresql import PostgreSQLAdapter, parse_command_status
from dataroll.connections.registry import AdapterFactory, AdapterRegistry
from dataroll.connections.sqlite import SQLiteAdapter
from dataroll.exceptions import ConfigurationError

from conftest import ScriptedAdapter


def pg_descriptor(**kwargs):
    values = dict(kind=BackendKind.POSTGRESQL, host="db.internal", database="app",
                  username="app", password="s3cret")
    values.update(kwargs)
    return ConnectionDescriptor(**values)


@pytest.fixture
def sqlite_descriptor(tmp_path):
    return ConnectionDescriptor(kind=BackendKind.SQLITE, database=str(tmp_path / "target.db"))


class TestConnectionAdapterTemplate:
    """Test cases for the shared adapter behaviour."""

    @pytest.mark.asyncio
    async def test_execute_runs_statements_in_order(self):
        """Test sequential execution and per-statement summaries."""
        adapter = ScriptedAdapter()

        result = await adapter.execute(pg_descriptor(), ["CREATE TABLE a (id int)", "CREATE TABLE b (id int)"])

        assert result.success
        assert adapter.executed == ["CREATE TABLE a (id int)", "CREATE TABLE b (id int)"]
        assert result.change_summaries == ["CREATE TABLE affected 0 rows", "CREATE TABLE affected 0 rows"]
        assert adapter.transactions == []
        assert adapter.opened == adapter.closed == 1

    @pytest.mark.asyncio
    async def test_failure_is_returned_not_raised(self):
        """Test that a failing statement stops the batch and closes the connection."""
        adapter = ScriptedAdapter()
        adapter.fail_on = ["broken"]

        result = await adapter.execute(pg_descriptor(), ["CREATE TABLE a (id int)", "broken stmt", "SELECT 1"])

        assert not result.success
        assert "syntax error" in result.error
        assert result.failed_statement == "broken stmt"
        assert len(result.changes) == 1
        assert adapter.executed == ["CREATE TABLE a (id int)"]
        assert adapter.closed == 1

    @pytest.mark.asyncio
    async def test_atomic_batch_commits(self):
        """Test transaction wrapping on success."""
        adapter = ScriptedAdapter()

        result = await adapter.execute(pg_descriptor(), ["SELECT 1"], atomic=True)

        assert result.success
        assert adapter.transactions == ["begin", "commit"]

    @pytest.mark.asyncio
    async def test_atomic_batch_rolls_back(self):
        """Test transaction rollback on failure."""
        adapter = ScriptedAdapter()
        adapter.fail_on = ["broken"]

        result = await adapter.execute(pg_descriptor(), ["SELECT 1", "broken"], atomic=True)

        assert not result.success
        assert adapter.transactions == ["begin", "rollback"]
        assert result.changes == []

    @pytest.mark.asyncio
    async def test_connect_timeout_message(self):
        """Test that a connect timeout is reported plainly."""
        adapter = ScriptedAdapter()
        adapter.fail_open = asyncio.TimeoutError()

        result = await adapter.test(pg_descriptor())

        assert not result.ok
        assert result.error == "Connection timed out"

    @pytest.mark.asyncio
    async def test_detect_orm_failure_degrades(self):
        """Test that detection never raises."""
        adapter = ScriptedAdapter()
        adapter.fail_open = OSError("connection refused")

        result = await adapter.detect_orm(pg_descriptor())

        assert result.detected == DetectedOrm.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_capture_skips_missing_tables(self):
        """Test that only existing tables are captured."""
        adapter = ScriptedAdapter()
        adapter.columns = {'users': [{'column_name': 'id', 'data_type': 'integer'}]}

        captured = await adapter.capture_table_schemas(pg_descriptor(), ["users", "ghosts"])

        assert list(captured) == ["users"]
        assert captured['users']['columns'][0]['column_name'] == "id"
        assert 'captured_at' in captured['users']

    @pytest.mark.asyncio
    async def test_capture_failure_degrades_to_none(self):
        """Test that capture failures return None."""
        adapter = ScriptedAdapter()
        adapter.fail_open = OSError("connection refused")

        assert await adapter.capture_table_schemas(pg_descriptor(), ["users"]) is None


class TestSQLiteAdapter:
    """Test cases for SQLiteAdapter against real database files."""

    @pytest.mark.asyncio
    async def test_connection_test(self, sqlite_descriptor):
        """Test a successful probe."""
        result = await SQLiteAdapter().test(sqlite_descriptor)

        assert result.ok
        assert result.server_version
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_connection_test_failure(self, tmp_path):
        """Test a probe against an unusable path."""
        descriptor = ConnectionDescriptor(kind=BackendKind.SQLITE, database=str(tmp_path / "missing" / "x.db"))

        result = await SQLiteAdapter().test(descriptor)

        assert not result.ok
        assert result.error

    @pytest.mark.asyncio
    async def test_execute_reports_rows(self, sqlite_descriptor):
        """Test DDL and DML change summaries."""
        adapter = SQLiteAdapter()

        result = await adapter.execute(sqlite_descriptor, [
            "CREATE TABLE items (id integer primary key)",
            "INSERT INTO items (id) VALUES (1), (2)",
        ])

        assert result.success
        assert result.total_rows_affected == 2
        assert result.change_summaries[-1] == "Query executed, affected 2 rows"

    @pytest.mark.asyncio
    async def test_non_atomic_batch_keeps_earlier_statements(self, sqlite_descriptor):
        """Test partial execution without a transaction."""
        adapter = SQLiteAdapter()

        result = await adapter.execute(sqlite_descriptor, [
            "CREATE TABLE kept (id integer)",
            "INSERT INTO missing VALUES (1)",
        ])

        assert not result.success
        assert "missing" in result.error
        assert len(result.changes) == 1
        assert await adapter.capture_table_schemas(sqlite_descriptor, ["kept"]) is not None

    @pytest.mark.asyncio
    async def test_atomic_batch_is_all_or_nothing(self, sqlite_descriptor):
        """Test that a transactional batch leaves no trace on failure."""
        adapter = SQLiteAdapter()

        result = await adapter.execute(sqlite_descriptor, [
            "CREATE TABLE discarded (id integer)",
            "INSERT INTO missing VALUES (1)",
        ], atomic=True)

        assert not result.success
        assert result.changes == []
        assert await adapter.capture_table_schemas(sqlite_descriptor, ["discarded"]) is None

    @pytest.mark.asyncio
    async def test_detect_orm(self, sqlite_descriptor):
        """Test ORM detection from catalog tables."""
        adapter = SQLiteAdapter()
        await adapter.execute(sqlite_descriptor, ["CREATE TABLE _prisma_migrations (id text)"])

        result = await adapter.detect_orm(sqlite_descriptor)

        assert result.detected == DetectedOrm.PRISMA
        assert result.confidence == 0.8

    @pytest.mark.asyncio
    async def test_capture_table_schemas(self, sqlite_descriptor):
        """Test column capture through PRAGMA table_info."""
        adapter = SQLiteAdapter()
        await adapter.execute(sqlite_descriptor, ["CREATE TABLE users (id integer not null, name text default 'x')"])

        captured = await adapter.capture_table_schemas(sqlite_descriptor, ["users"])

        columns = captured['users']['columns']
        assert [c['column_name'] for c in columns] == ["id", "name"]
        assert columns[0]['is_nullable'] == "NO"
        assert columns[1]['is_nullable'] == "YES"


class TestPostgreSQLAdapter:
    """Test cases for PostgreSQLAdapter with a mocked asyncpg."""

    def test_parse_command_status(self):
        """Test asyncpg status string parsing."""
        assert parse_command_status("CREATE TABLE") == ("CREATE TABLE", 0)
        assert parse_command_status("INSERT 0 3") == ("INSERT", 3)
        assert parse_command_status("UPDATE 7") == ("UPDATE", 7)
        assert parse_command_status(None) == ("UNKNOWN", 0)

    @pytest.mark.asyncio
    async def test_execute(self):
        """Test connect arguments and change summaries."""
        conn = AsyncMock()
        conn.execute.side_effect = ["CREATE TABLE", "INSERT 0 3"]

        with patch("dataroll.connections.postgresql.asyncpg") as asyncpg:
            asyncpg.connect = AsyncMock(return_value=conn)
            adapter = PostgreSQLAdapter(connect_timeout=5.0)

            result = await adapter.execute(pg_descriptor(), ["CREATE TABLE t (id int)", "INSERT INTO t VALUES (1),(2),(3)"])

        assert result.success
        assert result.change_summaries == ["CREATE TABLE affected 0 rows", "INSERT affected 3 rows"]
        assert result.total_rows_affected == 3
        kwargs = asyncpg.connect.call_args.kwargs
        assert kwargs['host'] == "db.internal"
        assert kwargs['port'] == 5432
        assert kwargs['timeout'] == 5.0
        assert kwargs['server_settings'] == {'application_name': "dataroll"}
        conn.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_url_and_ssl(self):
        """Test that a direct URL wins and SSL is requested."""
        conn = AsyncMock()
        conn.fetchval.return_value = "PostgreSQL 16.1"

        with patch("dataroll.connections.postgresql.asyncpg") as asyncpg:
            asyncpg.connect = AsyncMock(return_value=conn)
            result = await PostgreSQLAdapter().test(pg_descriptor(url="postgresql://u:p@h/db", ssl=True))

        assert result.ok
        assert result.server_version == "PostgreSQL 16.1"
        kwargs = asyncpg.connect.call_args.kwargs
        assert kwargs['dsn'] == "postgresql://u:p@h/db"
        assert kwargs['ssl'] == 'require'

    @pytest.mark.asyncio
    async def test_atomic_rollback(self):
        """Test that a failed atomic batch rolls the transaction back."""
        tx = AsyncMock()
        conn = AsyncMock()
        conn.transaction = MagicMock(return_value=tx)
        conn.execute.side_effect = ["CREATE TABLE", Exception('relation "missing" does not exist')]

        with patch("dataroll.connections.postgresql.asyncpg") as asyncpg:
            asyncpg.connect = AsyncMock(return_value=conn)
            result = await PostgreSQLAdapter().execute(pg_descriptor(), ["CREATE TABLE t (id int)", "INSERT INTO missing VALUES (1)"], atomic=True)

        assert not result.success
        assert 'relation "missing" does not exist' in result.error
        tx.start.assert_awaited_once()
        tx.rollback.assert_awaited_once()
        tx.commit.assert_not_awaited()
        conn.close.assert_awaited_once()


class TestMySQLAdapter:
    """Test cases for MySQLAdapter with a mocked aiomysql."""

    def test_connection_options_from_url(self):
        """Test URL parsing into aiomysql arguments."""
        descriptor = ConnectionDescriptor(kind=BackendKind.MYSQL, url="mysql://shop:pw@mysql.internal:3307/shop")

        options = MySQLAdapter(connect_timeout=3.0)._build_connection_options(descriptor)

        assert options['host'] == "mysql.internal"
        assert options['port'] == 3307
        assert options['user'] == "shop"
        assert options['password'] == "pw"
        assert options['db'] == "shop"
        assert options['connect_timeout'] == 3.0
        assert options['autocommit'] is True
        assert 'ssl' not in options

    @pytest.mark.asyncio
    async def test_execute(self):
        """Test statement execution through a cursor."""
        cursor = MagicMock()
        cursor.execute = AsyncMock()
        cursor.rowcount = 2
        cursor_cm = MagicMock()
        cursor_cm.__aenter__ = AsyncMock(return_value=cursor)
        cursor_cm.__aexit__ = AsyncMock(return_value=False)
        conn = MagicMock()
        conn.cursor.return_value = cursor_cm

        descriptor = ConnectionDescriptor(kind=BackendKind.MYSQL, host="mysql.internal", database="shop", username="shop")
        with patch("dataroll.connections.mysql.aiomysql") as aiomysql:
            aiomysql.connect = AsyncMock(return_value=conn)
            result = await MySQLAdapter().execute(descriptor, ["UPDATE items SET price = 1"])

        assert result.success
        assert result.change_summaries == ["Query executed, affected 2 rows"]
        conn.close.assert_called_once()


class TestAdapterRegistry:
    """Test cases for AdapterRegistry and AdapterFactory."""

    def test_builtin_backends_registered(self):
        """Test auto registration."""
        assert set(AdapterRegistry.list_registered_backends()) == set(BackendKind)
        assert AdapterRegistry.get_adapter_class(BackendKind.SQLITE) is SQLiteAdapter

    def test_register_rejects_non_adapters(self):
        """Test registration type check."""
        with pytest.raises(ConfigurationError):
            AdapterRegistry.register_adapter(BackendKind.SQLITE, object)

    def test_factory_passes_timeouts(self):
        """Test that the factory applies engine-wide settings."""
        factory = AdapterFactory(connect_timeout=2.0, command_timeout=30.0, application_name="ci")

        adapter = factory(BackendKind.SQLITE)

        assert isinstance(adapter, SQLiteAdapter)
        assert adapter.connect_timeout == 2.0
        assert adapter.command_timeout == 30.0
        assert adapter.application_name == "ci"
