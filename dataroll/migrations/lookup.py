"""
Ownership-checked lookups shared by the engine components.
"""

from typing import Optional

from ..exceptions import NotFoundError, ForbiddenError
from ..storage.base import MigrationStore
from .models import DatabaseConnection, Migration
from .states import MigrationStatus


def load_migration(store: MigrationStore, migration_id: str, team_id: Optional[str] = None) -> Migration:
    """
    Fetch a migration, hiding other teams' migrations.

    Raises:
        NotFoundError: If absent or owned by a different team
    """
    migration = store.get_migration(migration_id)
    if migration is None or (team_id is not None and migration.team_id != team_id):
        raise NotFoundError("Migration", migration_id)
    return migration


def load_connection(store: MigrationStore, migration: Migration) -> DatabaseConnection:
    """
    Fetch the connection a migration is bound to and re-check team linkage.

    Raises:
        NotFoundError: If the connection no longer exists
        ForbiddenError: If the connection belongs to another team
    """
    connection = store.get_connection(migration.connection_id)
    if connection is None:
        raise NotFoundError("Database connection", migration.connection_id)
    if connection.team_id != migration.team_id:
        raise ForbiddenError(
            "Database connection does not belong to the migration's team",
            details={
                'migration_id': migration.id,
                'connection_id': connection.id
            }
        )
    return connection


def current_status(store: MigrationStore, migration_id: str) -> Optional[MigrationStatus]:
    """Status as stored right now, or None if the migration is gone."""
    migration = store.get_migration(migration_id)
    return migration.status if migration is not None else None
