"""
SQLite connection adapter.

Uses aiosqlite with ``isolation_level=None`` so statements autocommit unless
an atomic batch opens a transaction with ``BEGIN``.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError
from .base import ConnectionAdapter, StatementChange
from .config import BackendKind, ConnectionDescriptor
from .statements import summarize_statement

# Optional dependency
try:
    import aiosqlite
    AIOSQLITE_AVAILABLE = True
except ImportError:
    AIOSQLITE_AVAILABLE = False
    aiosqlite = None


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteAdapter(ConnectionAdapter):
    """SQLite adapter backed by aiosqlite."""

    kind = BackendKind.SQLITE

    def __init__(self, *args, **kwargs):
        if not AIOSQLITE_AVAILABLE:
            raise ConfigurationError(
                "aiosqlite not installed - required for SQLite support",
                details={'engine': BackendKind.SQLITE.value}
            )
        super().__init__(*args, **kwargs)

    def _get_database_path(self, descriptor: ConnectionDescriptor) -> str:
        path = descriptor.sqlite_path()
        if not path:
            raise ConfigurationError("SQLite connection requires a database path")
        if path == ":memory:":
            return path
        db_path = Path(path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        return str(db_path)

    async def _open(self, descriptor: ConnectionDescriptor) -> Any:
        conn = await aiosqlite.connect(
            self._get_database_path(descriptor),
            timeout=self.connect_timeout,
            isolation_level=None
        )
        await conn.execute("PRAGMA foreign_keys=ON")
        return conn

    async def _close(self, conn: Any) -> None:
        await conn.close()

    async def _run_statement(self, conn: Any, statement: str) -> StatementChange:
        cursor = await conn.execute(statement)
        rows = max(cursor.rowcount or 0, 0)
        await cursor.close()
        command = statement.split(None, 1)[0].upper() if statement.strip() else "UNKNOWN"
        return StatementChange(
            statement=summarize_statement(statement),
            command=command,
            rows_affected=rows,
            summary=f"Query executed, affected {rows} rows"
        )

    async def _begin(self, conn: Any) -> Any:
        await conn.execute("BEGIN")
        return None

    async def _commit(self, conn: Any, tx: Any) -> None:
        await conn.execute("COMMIT")

    async def _rollback(self, conn: Any, tx: Any) -> None:
        await conn.execute("ROLLBACK")

    async def _server_version(self, conn: Any) -> Optional[str]:
        cursor = await conn.execute("SELECT sqlite_version()")
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else None

    async def _list_tables(self, conn: Any) -> List[str]:
        cursor = await conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [row[0] for row in rows]

    async def _describe_table(self, conn: Any, table: str) -> List[Dict[str, Any]]:
        cursor = await conn.execute(f"PRAGMA table_info({_quote_identifier(table)})")
        rows = await cursor.fetchall()
        await cursor.close()
        # cid, name, type, notnull, dflt_value, pk
        return [
            {
                'column_name': row[1],
                'data_type': row[2],
                'is_nullable': "NO" if row[3] else "YES",
                'column_default': row[4],
            }
            for row in rows
        ]
