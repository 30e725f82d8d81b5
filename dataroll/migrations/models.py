"""
Domain records for the migration engine.

Plain dataclasses shared by every store implementation. Stores convert to
and from these at their boundary, so engine code never sees ORM rows.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..connections.config import BackendKind, ConnectionDescriptor
from ..security.encryption import SecretCipher
from .states import (
    MigrationStatus, MigrationKind, ExecutionOutcome, RollbackOutcome, ScheduledStatus
)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            result[key] = value.isoformat()
        elif hasattr(value, 'value') and isinstance(getattr(value, 'value'), str):
            result[key] = value.value
        else:
            result[key] = value
    return result


@dataclass
class DatabaseConnection:
    """Named, reusable endpoint and credential record owned by a team."""
    name: str
    team_id: str
    kind: BackendKind
    host: Optional[str] = None
    port: Optional[int] = None
    database: str = ""
    username: Optional[str] = None
    encrypted_password: Optional[str] = field(default=None, repr=False)
    url: Optional[str] = field(default=None, repr=False)
    ssl: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_descriptor(self, cipher: SecretCipher) -> ConnectionDescriptor:
        """Decrypt the secret and build a connection descriptor."""
        password = None
        if self.encrypted_password:
            password = cipher.decrypt(self.encrypted_password)
        return ConnectionDescriptor(
            kind=self.kind,
            host=self.host,
            port=self.port,
            database=self.database,
            username=self.username,
            password=password,
            url=self.url,
            ssl=self.ssl
        )

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(asdict(self))
        data.pop('encrypted_password', None)
        data.pop('url', None)
        return data


@dataclass
class Migration:
    """One versioned unit of change."""
    name: str
    version: str
    kind: MigrationKind
    content: str
    team_id: str
    connection_id: str
    status: MigrationStatus = MigrationStatus.PENDING
    checksum: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    executed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class MigrationExecution:
    """Append-only execution log entry."""
    migration_id: str
    outcome: ExecutionOutcome
    duration_ms: float
    error: Optional[str] = None
    executed_by: Optional[str] = None
    change_summaries: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    executed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class MigrationRollback:
    """Append-only record of a rollback attempt."""
    migration_id: str
    status: RollbackOutcome
    reason: Optional[str] = None
    rollback_sql: Optional[str] = None
    rolled_back_by: Optional[str] = None
    backup_location: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    id: str = field(default_factory=new_id)
    completed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class MigrationSnapshot:
    """Persisted recoverability record, at most one per migration."""
    migration_id: str
    schema_version: str
    affected_tables: List[str] = field(default_factory=list)
    rollback_sql: Optional[str] = None
    pre_state: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_by: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class ScheduledExecution:
    """Deferred intent to execute a migration."""
    migration_id: str
    connection_id: str
    team_id: str
    scheduled_for: datetime
    scheduled_by: Optional[str] = None
    status: ScheduledStatus = ScheduledStatus.PENDING
    error: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    executed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))
