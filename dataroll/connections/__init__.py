"""
Target database connections.

One adapter per backend behind a common ``ConnectionAdapter`` interface,
selected through ``AdapterRegistry``.
"""

from .config import BackendKind, ConnectionDescriptor
from .base import (
    ConnectionAdapter, ConnectionTestResult, BatchResult, StatementChange,
    DEFAULT_CONNECT_TIMEOUT
)
from .detection import DetectedOrm, OrmDetectionResult, classify_tables
from .statements import split_statements, summarize_statement
from .registry import AdapterRegistry, AdapterFactory

__all__ = [
    "BackendKind",
    "ConnectionDescriptor",
    "ConnectionAdapter",
    "ConnectionTestResult",
    "BatchResult",
    "StatementChange",
    "DEFAULT_CONNECT_TIMEOUT",
    "DetectedOrm",
    "OrmDetectionResult",
    "classify_tables",
    "split_statements",
    "summarize_statement",
    "AdapterRegistry",
    "AdapterFactory",
]
