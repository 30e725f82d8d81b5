"""
Connection descriptors for target databases.

A ``ConnectionDescriptor`` is what an adapter needs to open a connection:
backend kind, endpoint, credentials (already decrypted) and an optional
direct URL that wins over the individual fields.
"""

from enum import Enum
from typing import Optional, Dict, Any
from urllib.parse import urlparse, unquote

from pydantic import BaseModel, ConfigDict, Field, validator


class BackendKind(str, Enum):
    """Supported target database backends."""
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


DEFAULT_PORTS = {
    BackendKind.POSTGRESQL: 5432,
    BackendKind.MYSQL: 3306,
}


class ConnectionDescriptor(BaseModel):
    """Endpoint plus decrypted credentials for one target database."""

    model_config = ConfigDict(frozen=True)

    kind: BackendKind
    host: Optional[str] = None
    port: Optional[int] = None
    database: str = ""
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    url: Optional[str] = Field(default=None, repr=False)
    ssl: bool = False
    options: Dict[str, Any] = Field(default_factory=dict)

    @validator('port')
    def validate_port(cls, v):
        """Validate port range."""
        if v is not None and not (0 < v < 65536):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @property
    def effective_port(self) -> Optional[int]:
        """Configured port, or the backend default."""
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS.get(self.kind)

    @property
    def display_name(self) -> str:
        """Credential-free label for logs."""
        if self.kind == BackendKind.SQLITE:
            return f"sqlite:{self.sqlite_path()}"
        if self.url:
            parsed = urlparse(self.url)
            return f"{self.kind.value}://{parsed.hostname}{parsed.path}"
        return f"{self.kind.value}://{self.host}:{self.effective_port}/{self.database}"

    def url_parts(self) -> Dict[str, Any]:
        """
        Split the direct URL into connect arguments.

        Returns:
            Dictionary with host, port, user, password and database keys
        """
        parsed = urlparse(self.url or "")
        return {
            'host': parsed.hostname or self.host,
            'port': parsed.port or self.effective_port,
            'user': unquote(parsed.username) if parsed.username else self.username,
            'password': unquote(parsed.password) if parsed.password else self.password,
            'database': parsed.path.lstrip('/') or self.database,
        }

    def sqlite_path(self) -> str:
        """Resolve the SQLite file path from the URL or database field."""
        source = self.url or self.database
        for prefix in ("sqlite+aiosqlite:///", "sqlite:///", "file:"):
            if source.startswith(prefix):
                return source[len(prefix):]
        return source
