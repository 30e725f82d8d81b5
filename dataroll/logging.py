"""
Structured logging for dataroll.

Engine operations are logged as ``LogEvent`` records with a correlation ID
kept in a context variable, so every line emitted while handling one
execute/rollback/schedule request carries the same ID. SQL is truncated and
obvious credentials are masked before anything reaches a handler.
"""

import json
import logging
import re
import uuid
from typing import Dict, Any, Optional, List, Callable
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from enum import Enum
from contextvars import ContextVar

MAX_SQL_LOG_LENGTH = 1000

_SECRET_PATTERN = re.compile(r"(password|passwd|pwd|token|secret)(\s*[=:]\s*)('[^']*'|\"[^\"]*\"|\S+)", re.IGNORECASE)
_URL_CREDENTIALS_PATTERN = re.compile(r"(://[^:/@\s]+:)([^@\s]+)(@)")


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LogEvent:
    """Engine event for structured logging."""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    status: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


correlation_id_context: ContextVar[Optional[str]] = ContextVar('dataroll_correlation_id', default=None)


def mask_secrets(text: str) -> str:
    """Mask password/token literals and URL credentials."""
    masked = _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}***", text)
    return _URL_CREDENTIALS_PATTERN.sub(r"\1***\3", masked)


def sanitize_sql(sql: Optional[str], limit: int = MAX_SQL_LOG_LENGTH) -> Optional[str]:
    """Truncate and mask SQL before it is logged."""
    if sql is None:
        return None
    cleaned = mask_secrets(sql)
    if len(cleaned) > limit:
        return cleaned[:limit] + "..."
    return cleaned


class EngineLogger:
    """
    Structured logger for engine operations.

    Wraps a standard ``logging.Logger`` named ``dataroll.<component>`` and
    attaches the serialized event under ``extra['dataroll_event']``.
    """

    def __init__(self, component: str, level: Optional[LogLevel] = None):
        """
        Initialize engine logger.

        Args:
            component: Component name (dispatcher, rollback, scheduler, ...)
            level: Optional explicit log level
        """
        self.component = component
        self.logger = logging.getLogger(f"dataroll.{component}")
        if level is not None:
            self.logger.setLevel(getattr(logging, level.value))
        self._event_handlers: List[Callable[[LogEvent], None]] = []

    def _get_correlation_id(self) -> str:
        """Get or generate correlation ID."""
        correlation_id = correlation_id_context.get()
        if not correlation_id:
            correlation_id = str(uuid.uuid4())
            correlation_id_context.set(correlation_id)
        return correlation_id

    def _create_event(self, message: str, **kwargs) -> LogEvent:
        metadata = dict(kwargs.get('metadata') or {})
        if 'sql' in metadata:
            metadata['sql'] = sanitize_sql(metadata['sql'])
        if 'error' in metadata and metadata['error'] is not None:
            metadata['error'] = mask_secrets(str(metadata['error']))
        return LogEvent(
            correlation_id=self._get_correlation_id(),
            component=self.component,
            operation=kwargs.get('operation'),
            status=kwargs.get('status'),
            duration_ms=kwargs.get('duration_ms'),
            metadata={'message': mask_secrets(message), **metadata}
        )

    def _log_event(self, event: LogEvent, level: LogLevel) -> None:
        self.logger.log(
            getattr(logging, level.value),
            f"[{event.correlation_id}] {event.metadata.get('message', '')}",
            extra={'dataroll_event': event.to_dict()}
        )

        for handler in self._event_handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Event handler error: {e}")

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self._log_event(self._create_event(message, **kwargs), LogLevel.DEBUG)

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self._log_event(self._create_event(message, **kwargs), LogLevel.INFO)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self._log_event(self._create_event(message, **kwargs), LogLevel.WARNING)

    def error(self, message: str, **kwargs) -> None:
        """Log error message."""
        self._log_event(self._create_event(message, **kwargs), LogLevel.ERROR)

    def log_operation(
        self,
        operation: str,
        migration_id: str,
        success: bool,
        duration_ms: Optional[float] = None,
        **metadata
    ) -> None:
        """Log the outcome of an execute/rollback/schedule operation."""
        status = "success" if success else "failure"
        message = f"{operation} {status} for migration {migration_id}"
        if duration_ms is not None:
            message += f" ({duration_ms:.2f}ms)"
        log = self.info if success else self.error
        log(
            message,
            operation=operation,
            status=status,
            duration_ms=duration_ms,
            metadata={'migration_id': migration_id, **metadata}
        )

    def add_event_handler(self, handler: Callable[[LogEvent], None]) -> None:
        """Add event handler."""
        self._event_handlers.append(handler)

    def remove_event_handler(self, handler: Callable[[LogEvent], None]) -> None:
        """Remove event handler."""
        if handler in self._event_handlers:
            self._event_handlers.remove(handler)


class CorrelationContext:
    """Context manager for correlation ID tracking."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self._token = None

    def __enter__(self):
        self._token = correlation_id_context.set(self.correlation_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        correlation_id_context.reset(self._token)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context."""
    return correlation_id_context.get()
