"""
Database models for the engine's own relational store.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Boolean, Text, Float, Integer, JSON, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseConnectionModel(Base):
    """Target database connection descriptor."""

    __tablename__ = "database_connections"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    team_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)
    host = Column(String, nullable=True)
    port = Column(Integer, nullable=True)
    database = Column(String, nullable=False, default="")
    username = Column(String, nullable=True)
    encrypted_password = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    ssl = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<DatabaseConnectionModel(id='{self.id}', name='{self.name}', kind='{self.kind}')>"


class MigrationModel(Base):
    """Migration record."""

    __tablename__ = "migrations"
    __table_args__ = (
        UniqueConstraint("team_id", "connection_id", "version", name="uq_migration_version"),
        Index("ix_migrations_team_status", "team_id", "status"),
    )

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    version = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="PENDING")
    checksum = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    team_id = Column(String, nullable=False)
    connection_id = Column(String, ForeignKey("database_connections.id"), nullable=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    executed_at = Column(DateTime(timezone=True), nullable=True)
    rolled_back_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<MigrationModel(id='{self.id}', version='{self.version}', status='{self.status}')>"


class MigrationExecutionModel(Base):
    """Append-only execution log."""

    __tablename__ = "migration_executions"

    # autoincrement seq orders rows inserted within the same timestamp
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    migration_id = Column(String, ForeignKey("migrations.id"), nullable=False, index=True)
    outcome = Column(String, nullable=False)
    duration_ms = Column(Float, default=0.0)
    error = Column(Text, nullable=True)
    executed_by = Column(String, nullable=True)
    change_summaries = Column(JSON, nullable=True)
    executed_at = Column(DateTime(timezone=True), default=_utcnow)


class MigrationRollbackModel(Base):
    """Append-only rollback attempts."""

    __tablename__ = "migration_rollbacks"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    migration_id = Column(String, ForeignKey("migrations.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    reason = Column(Text, nullable=True)
    rollback_sql = Column(Text, nullable=True)
    rolled_back_by = Column(String, nullable=True)
    backup_location = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    duration_ms = Column(Float, default=0.0)
    completed_at = Column(DateTime(timezone=True), default=_utcnow)


class MigrationSnapshotModel(Base):
    """Recoverability record, unique per migration."""

    __tablename__ = "migration_snapshots"

    id = Column(String, primary_key=True, index=True)
    migration_id = Column(String, ForeignKey("migrations.id"), nullable=False, unique=True)
    schema_version = Column(String, nullable=False)
    affected_tables = Column(JSON, nullable=False, default=list)
    rollback_sql = Column(Text, nullable=True)
    pre_state = Column(JSON, nullable=True)
    snapshot_metadata = Column("metadata", JSON, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ScheduledExecutionModel(Base):
    """Deferred execution intent."""

    __tablename__ = "scheduled_executions"
    __table_args__ = (
        Index("ix_scheduled_status_time", "status", "scheduled_for"),
    )

    id = Column(String, primary_key=True, index=True)
    migration_id = Column(String, ForeignKey("migrations.id"), nullable=False, index=True)
    connection_id = Column(String, nullable=False)
    team_id = Column(String, nullable=False, index=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default="PENDING")
    scheduled_by = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    executed_at = Column(DateTime(timezone=True), nullable=True)
