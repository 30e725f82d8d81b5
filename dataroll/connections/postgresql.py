"""
PostgreSQL connection adapter.

Uses asyncpg. asyncpg reports a command status string per statement
(``"INSERT 0 3"``, ``"CREATE TABLE"``), which is turned into the change
summary ``"<COMMAND> affected <n> rows"``.
"""

from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError
from .base import ConnectionAdapter, StatementChange
from .config import BackendKind, ConnectionDescriptor
from .statements import summarize_statement

# Optional dependency
try:
    import asyncpg
    ASYNCPG_AVAILABLE = True
except ImportError:
    ASYNCPG_AVAILABLE = False
    asyncpg = None


def parse_command_status(status: Optional[str]) -> tuple:
    """Split an asyncpg status string into (command, rows)."""
    if not status:
        return "UNKNOWN", 0
    parts = status.split()
    command = parts[0]
    rows = 0
    if len(parts) > 1 and parts[-1].isdigit():
        rows = int(parts[-1])
    if command in ("CREATE", "ALTER", "DROP") and len(parts) > 1 and not parts[1].isdigit():
        command = f"{parts[0]} {parts[1]}"
    return command, rows


class PostgreSQLAdapter(ConnectionAdapter):
    """PostgreSQL adapter backed by asyncpg."""

    kind = BackendKind.POSTGRESQL

    def __init__(self, *args, **kwargs):
        if not ASYNCPG_AVAILABLE:
            raise ConfigurationError(
                "asyncpg not installed - required for PostgreSQL support",
                details={'engine': BackendKind.POSTGRESQL.value}
            )
        super().__init__(*args, **kwargs)

    async def _open(self, descriptor: ConnectionDescriptor) -> Any:
        connect_args: Dict[str, Any] = {
            'timeout': self.connect_timeout,
            'server_settings': {'application_name': self.application_name},
        }
        if self.command_timeout:
            connect_args['command_timeout'] = self.command_timeout
        if descriptor.ssl:
            connect_args['ssl'] = 'require'

        if descriptor.url:
            return await asyncpg.connect(dsn=descriptor.url, **connect_args)

        return await asyncpg.connect(
            host=descriptor.host,
            port=descriptor.effective_port,
            user=descriptor.username,
            password=descriptor.password,
            database=descriptor.database,
            **connect_args
        )

    async def _close(self, conn: Any) -> None:
        await conn.close()

    async def _run_statement(self, conn: Any, statement: str) -> StatementChange:
        status = await conn.execute(statement)
        command, rows = parse_command_status(status)
        return StatementChange(
            statement=summarize_statement(statement),
            command=command,
            rows_affected=rows,
            summary=f"{command} affected {rows} rows"
        )

    async def _begin(self, conn: Any) -> Any:
        tx = conn.transaction()
        await tx.start()
        return tx

    async def _commit(self, conn: Any, tx: Any) -> None:
        await tx.commit()

    async def _rollback(self, conn: Any, tx: Any) -> None:
        await tx.rollback()

    async def _server_version(self, conn: Any) -> Optional[str]:
        return await conn.fetchval("SELECT version()")

    async def _list_tables(self, conn: Any) -> List[str]:
        rows = await conn.fetch(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = 'public' ORDER BY table_name"
        )
        return [row['table_name'] for row in rows]

    async def _describe_table(self, conn: Any, table: str) -> List[Dict[str, Any]]:
        rows = await conn.fetch(
            "SELECT column_name, data_type, is_nullable, column_default "
            "FROM information_schema.columns "
            "WHERE table_name = $1 "
            "ORDER BY ordinal_position",
            table
        )
        return [dict(row) for row in rows]
