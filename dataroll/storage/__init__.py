"""
Persistence for migrations, executions, rollbacks, snapshots and schedules.
"""

from .base import MigrationStore
from .memory import InMemoryMigrationStore
from .database import StoreDatabaseManager
from .repository import SQLAlchemyMigrationStore

__all__ = [
    "MigrationStore",
    "InMemoryMigrationStore",
    "StoreDatabaseManager",
    "SQLAlchemyMigrationStore",
]
