"""
Shared fixtures for dataroll tests.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from dataroll.config import EngineConfig
from dataroll.connections.base import ConnectionAdapter, StatementChange
from dataroll.connections.config import BackendKind, ConnectionDescriptor
from dataroll.events.bus import EventBus
from dataroll.migrations.checksum import compute_checksum
from dataroll.migrations.models import Migration
from dataroll.migrations.service import MigrationService
from dataroll.migrations.states import MigrationKind, MigrationStatus
from dataroll.security.encryption import PlaintextSecretCipher
from dataroll.storage.memory import InMemoryMigrationStore

TEAM_ID = "team-1"
OTHER_TEAM_ID = "team-2"
USER_ID = "user-1"


class ScriptedAdapter(ConnectionAdapter):
    """
    Adapter that records statements instead of talking to a database.

    Statements containing any of ``fail_on`` raise; ``fail_open`` makes every
    connection attempt fail. ``delay`` slows every statement down.
    """

    kind = BackendKind.POSTGRESQL

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on: List[str] = []
        self.fail_open: Optional[Exception] = None
        self.delay = 0.0
        self.executed: List[str] = []
        self.transactions: List[str] = []
        self.tables: List[str] = []
        self.columns: Dict[str, List[Dict[str, Any]]] = {}
        self.opened = 0
        self.closed = 0

    async def _open(self, descriptor: ConnectionDescriptor) -> Any:
        if self.fail_open is not None:
            raise self.fail_open
        self.opened += 1
        return object()

    async def _close(self, conn: Any) -> None:
        self.closed += 1

    async def _run_statement(self, conn: Any, statement: str) -> StatementChange:
        if self.delay:
            await asyncio.sleep(self.delay)
        for marker in self.fail_on:
            if marker in statement:
                raise RuntimeError(f"syntax error near {marker!r}")
        self.executed.append(statement)
        command = " ".join(statement.split()[:2]).upper()
        return StatementChange(statement=statement, command=command, rows_affected=0,
                               summary=f"{command} affected 0 rows")

    async def _begin(self, conn: Any) -> Any:
        self.transactions.append("begin")
        return None

    async def _commit(self, conn: Any, tx: Any) -> None:
        self.transactions.append("commit")

    async def _rollback(self, conn: Any, tx: Any) -> None:
        self.transactions.append("rollback")

    async def _server_version(self, conn: Any) -> Optional[str]:
        return "PostgreSQL 16.0"

    async def _list_tables(self, conn: Any) -> List[str]:
        return list(self.tables)

    async def _describe_table(self, conn: Any, table: str) -> List[Dict[str, Any]]:
        return list(self.columns.get(table, []))


@pytest.fixture
def store():
    return InMemoryMigrationStore()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def adapter():
    return ScriptedAdapter()


@pytest.fixture
def config():
    return EngineConfig(backup_root="/var/backups/dataroll")


@pytest.fixture
def service(store, events, adapter, config):
    return MigrationService(
        store,
        PlaintextSecretCipher(),
        events,
        adapter_provider=lambda kind: adapter,
        config=config
    )


@pytest.fixture
def connection(service):
    return service.add_connection(
        "primary",
        TEAM_ID,
        BackendKind.POSTGRESQL,
        host="db.internal",
        database="app",
        username="app",
        password="s3cret"
    )


@pytest.fixture
def make_migration(store, connection):
    """Insert a migration straight into the store."""
    counter = {'n': 0}

    def _make(
        content: str,
        kind: MigrationKind = MigrationKind.RAW_SQL,
        status: MigrationStatus = MigrationStatus.PENDING,
        team_id: str = TEAM_ID,
        connection_id: Optional[str] = None
    ) -> Migration:
        counter['n'] += 1
        migration = Migration(
            name=f"migration {counter['n']}",
            version=f"2024010100000{counter['n']}",
            kind=kind,
            content=content,
            team_id=team_id,
            connection_id=connection_id or connection.id,
            status=status,
            checksum=compute_checksum(content)
        )
        return store.add_migration(migration)

    return _make
