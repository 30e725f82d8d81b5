"""
Base connection adapter interface for target databases.

Each backend implements a handful of primitive hooks (open, run one
statement, transaction control, catalog queries, close). The public
operations are template methods on ``ConnectionAdapter``: they open a
short-lived connection per call, run the work, and close the connection on
every path. Backend failures never escape these methods; they come back as
``ok=False`` / ``success=False`` results.

Batches are not atomic unless ``atomic=True`` is passed, in which case the
adapter wraps them in a transaction. MySQL still commits DDL implicitly.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .config import BackendKind, ConnectionDescriptor
from .detection import OrmDetectionResult, classify_tables
from .statements import summarize_statement

DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass
class ConnectionTestResult:
    """Outcome of a connectivity probe."""
    ok: bool
    latency_ms: float = 0.0
    error: Optional[str] = None
    server_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'ok': self.ok, 'latency_ms': round(self.latency_ms, 2)}
        if self.error:
            data['error'] = self.error
        if self.server_version:
            data['server_version'] = self.server_version
        return data


@dataclass
class StatementChange:
    """Per-statement change summary."""
    statement: str
    command: str
    rows_affected: int = 0
    summary: str = ""


@dataclass
class BatchResult:
    """Outcome of running a statement batch."""
    success: bool
    changes: List[StatementChange] = field(default_factory=list)
    total_rows_affected: int = 0
    error: Optional[str] = None
    failed_statement: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def change_summaries(self) -> List[str]:
        return [change.summary for change in self.changes]


class ConnectionAdapter(ABC):
    """
    Abstract base class for target database adapters.

    Subclasses implement the ``_open``/``_close``/``_run_statement`` hooks
    and the catalog queries; everything else is shared.
    """

    kind: BackendKind

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: Optional[float] = None,
        application_name: str = "dataroll"
    ):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.application_name = application_name
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # Backend hooks

    @abstractmethod
    async def _open(self, descriptor: ConnectionDescriptor) -> Any:
        """Open a native connection, bounded by ``connect_timeout``."""
        pass

    @abstractmethod
    async def _close(self, conn: Any) -> None:
        """Close a native connection."""
        pass

    @abstractmethod
    async def _run_statement(self, conn: Any, statement: str) -> StatementChange:
        """Execute one statement and summarize its effect."""
        pass

    @abstractmethod
    async def _begin(self, conn: Any) -> Any:
        """Start a transaction; the return value is passed to commit/rollback."""
        pass

    @abstractmethod
    async def _commit(self, conn: Any, tx: Any) -> None:
        pass

    @abstractmethod
    async def _rollback(self, conn: Any, tx: Any) -> None:
        pass

    @abstractmethod
    async def _server_version(self, conn: Any) -> Optional[str]:
        pass

    @abstractmethod
    async def _list_tables(self, conn: Any) -> List[str]:
        """Table names of the current schema."""
        pass

    @abstractmethod
    async def _describe_table(self, conn: Any, table: str) -> List[Dict[str, Any]]:
        """Column definitions with column_name, data_type, is_nullable, column_default."""
        pass

    # Shared operations

    async def _safe_close(self, conn: Any) -> None:
        try:
            await self._close(conn)
        except Exception as e:
            self.logger.warning(f"Error closing {self.kind.value} connection: {e}")

    async def test(self, descriptor: ConnectionDescriptor) -> ConnectionTestResult:
        """
        Probe connectivity.

        Args:
            descriptor: Target connection descriptor

        Returns:
            ConnectionTestResult with latency on success or error text
        """
        start = time.perf_counter()
        conn = None
        try:
            conn = await self._open(descriptor)
            version = await self._server_version(conn)
            latency = (time.perf_counter() - start) * 1000
            self.logger.debug(f"Connection test succeeded for {descriptor.display_name} ({latency:.2f}ms)")
            return ConnectionTestResult(ok=True, latency_ms=latency, server_version=version)
        except Exception as e:
            latency = (time.perf_counter() - start) * 1000
            self.logger.warning(f"Connection test failed for {descriptor.display_name}: {e}")
            return ConnectionTestResult(ok=False, latency_ms=latency, error=_describe_error(e))
        finally:
            if conn is not None:
                await self._safe_close(conn)

    async def execute(
        self,
        descriptor: ConnectionDescriptor,
        statements: Sequence[str],
        atomic: bool = False
    ) -> BatchResult:
        """
        Run a statement batch sequentially.

        Args:
            descriptor: Target connection descriptor
            statements: Statements already split on boundaries
            atomic: Wrap the batch in a transaction

        Returns:
            BatchResult; on failure ``changes`` holds the statements that ran
        """
        start = time.perf_counter()
        changes: List[StatementChange] = []
        conn = None
        tx = None
        in_transaction = False
        current: Optional[str] = None

        try:
            conn = await self._open(descriptor)
            if atomic:
                tx = await self._begin(conn)
                in_transaction = True

            for statement in statements:
                current = statement
                change = await self._run_statement(conn, statement)
                changes.append(change)
            current = None

            if in_transaction:
                await self._commit(conn, tx)
                in_transaction = False

            return BatchResult(
                success=True,
                changes=changes,
                total_rows_affected=sum(change.rows_affected for change in changes),
                duration_ms=(time.perf_counter() - start) * 1000
            )

        except Exception as e:
            if in_transaction:
                try:
                    await self._rollback(conn, tx)
                    # nothing from the batch survives a rolled back transaction
                    changes = []
                except Exception as rollback_error:
                    self.logger.error(f"Transaction rollback failed: {rollback_error}")

            self.logger.warning(
                f"Batch failed on {descriptor.display_name} after {len(changes)} statement(s): {e}"
            )
            return BatchResult(
                success=False,
                changes=changes,
                total_rows_affected=sum(change.rows_affected for change in changes),
                error=_describe_error(e),
                failed_statement=summarize_statement(current) if current else None,
                duration_ms=(time.perf_counter() - start) * 1000
            )

        finally:
            if conn is not None:
                await self._safe_close(conn)

    async def detect_orm(self, descriptor: ConnectionDescriptor) -> OrmDetectionResult:
        """Classify the target schema by ORM bookkeeping tables and naming."""
        conn = None
        try:
            conn = await self._open(descriptor)
            tables = await self._list_tables(conn)
            return classify_tables(tables)
        except Exception as e:
            self.logger.warning(f"ORM detection failed for {descriptor.display_name}: {e}")
            return OrmDetectionResult.failed(e)
        finally:
            if conn is not None:
                await self._safe_close(conn)

    async def capture_table_schemas(
        self,
        descriptor: ConnectionDescriptor,
        tables: Sequence[str]
    ) -> Optional[Dict[str, Any]]:
        """
        Capture current column definitions of the given tables.

        Opens a separate read connection and closes it even when capture
        fails. Failure degrades to ``None``.

        Returns:
            ``{table: {"columns": [...], "captured_at": iso}}`` for tables
            that exist, or None when nothing was captured
        """
        if not tables:
            return None

        conn = None
        try:
            conn = await self._open(descriptor)
            captured: Dict[str, Any] = {}
            for table in tables:
                columns = await self._describe_table(conn, table)
                # tables that do not exist yet have nothing to restore
                if columns:
                    captured[table] = {
                        'columns': columns,
                        'captured_at': datetime.now(timezone.utc).isoformat()
                    }
            return captured or None
        except Exception as e:
            self.logger.warning(f"Could not capture pre-migration state: {e}")
            return None
        finally:
            if conn is not None:
                await self._safe_close(conn)


def _describe_error(error: Exception) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Connection timed out"
    message = str(error)
    return message or error.__class__.__name__
