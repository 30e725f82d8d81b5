"""
MySQL connection adapter.

Uses aiomysql in autocommit mode; atomic batches open an explicit
transaction with ``BEGIN``. DDL statements commit implicitly on MySQL, so a
transactional batch is only all-or-nothing for DML.
"""

import ssl
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError
from .base import ConnectionAdapter, StatementChange
from .config import BackendKind, ConnectionDescriptor
from .statements import summarize_statement

# Optional dependency
try:
    import aiomysql
    AIOMYSQL_AVAILABLE = True
except ImportError:
    AIOMYSQL_AVAILABLE = False
    aiomysql = None


class MySQLAdapter(ConnectionAdapter):
    """MySQL adapter backed by aiomysql."""

    kind = BackendKind.MYSQL

    def __init__(self, *args, **kwargs):
        if not AIOMYSQL_AVAILABLE:
            raise ConfigurationError(
                "aiomysql not installed - required for MySQL support",
                details={'engine': BackendKind.MYSQL.value}
            )
        super().__init__(*args, **kwargs)

    def _build_connection_options(self, descriptor: ConnectionDescriptor) -> Dict[str, Any]:
        if descriptor.url:
            parts = descriptor.url_parts()
        else:
            parts = {
                'host': descriptor.host,
                'port': descriptor.effective_port,
                'user': descriptor.username,
                'password': descriptor.password,
                'database': descriptor.database,
            }

        options: Dict[str, Any] = {
            'host': parts['host'] or 'localhost',
            'port': parts['port'] or 3306,
            'user': parts['user'],
            'password': parts['password'] or '',
            'db': parts['database'],
            'connect_timeout': self.connect_timeout,
            'autocommit': True,
        }
        if descriptor.ssl:
            options['ssl'] = ssl.create_default_context()
        return options

    async def _open(self, descriptor: ConnectionDescriptor) -> Any:
        return await aiomysql.connect(**self._build_connection_options(descriptor))

    async def _close(self, conn: Any) -> None:
        conn.close()

    async def _run_statement(self, conn: Any, statement: str) -> StatementChange:
        async with conn.cursor() as cursor:
            await cursor.execute(statement)
            rows = max(cursor.rowcount or 0, 0)
        command = statement.split(None, 1)[0].upper() if statement.strip() else "UNKNOWN"
        return StatementChange(
            statement=summarize_statement(statement),
            command=command,
            rows_affected=rows,
            summary=f"Query executed, affected {rows} rows"
        )

    async def _begin(self, conn: Any) -> Any:
        await conn.begin()
        return None

    async def _commit(self, conn: Any, tx: Any) -> None:
        await conn.commit()

    async def _rollback(self, conn: Any, tx: Any) -> None:
        await conn.rollback()

    async def _server_version(self, conn: Any) -> Optional[str]:
        async with conn.cursor() as cursor:
            await cursor.execute("SELECT VERSION()")
            row = await cursor.fetchone()
        return row[0] if row else None

    async def _list_tables(self, conn: Any) -> List[str]:
        async with conn.cursor() as cursor:
            await cursor.execute(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = DATABASE() ORDER BY table_name"
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def _describe_table(self, conn: Any, table: str) -> List[Dict[str, Any]]:
        async with conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(
                "SELECT column_name AS column_name, data_type AS data_type, "
                "is_nullable AS is_nullable, column_default AS column_default "
                "FROM information_schema.columns "
                "WHERE table_schema = DATABASE() AND table_name = %s "
                "ORDER BY ordinal_position",
                (table,)
            )
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]
