"""
Exception classes for dataroll.

Every error kind the engine can surface to a caller has its own class with a
stable ``code`` and an HTTP-like ``status_code`` so API layers can render
them without a lookup table. Backend failures are normally returned inside
result objects; ``BackendExecutionError`` exists for callers that want to
raise them explicitly.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


class DatarollError(Exception):
    """Base exception for all dataroll errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None
    ):
        self.message = message
        self.details = details or {}
        if code:
            self.code = code
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'code': self.code,
            'message': self.message,
            'status_code': self.status_code,
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }


class NotFoundError(DatarollError):
    """Raised when a migration, connection or scheduled execution is absent or not owned by the team."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None, **kwargs):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} not found: {resource_id}"
        super().__init__(message, **kwargs)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(DatarollError):
    """Raised when the requested transition collides with the current state."""

    code = "CONFLICT"
    status_code = 409


class ForbiddenError(DatarollError):
    """Raised when team or connection linkage does not match the caller."""

    code = "FORBIDDEN"
    status_code = 403


class ValidationError(DatarollError):
    """Raised for malformed input."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.validation_errors = validation_errors or []


class ConnectionMismatchError(ValidationError):
    """Raised when the given connection is not the one the migration is bound to."""

    code = "CONNECTION_MISMATCH"

    def __init__(
        self,
        migration_id: str,
        expected_connection_id: str,
        actual_connection_id: str,
        **kwargs
    ):
        super().__init__(
            "Connection ID does not match migration's connection",
            details={
                'migration_id': migration_id,
                'expected_connection_id': expected_connection_id,
                'actual_connection_id': actual_connection_id
            },
            **kwargs
        )
        self.expected_connection_id = expected_connection_id
        self.actual_connection_id = actual_connection_id


class ChecksumMismatchError(DatarollError):
    """Raised when migration content drifted since its checksum was taken."""

    code = "CHECKSUM_MISMATCH"
    status_code = 409

    def __init__(
        self,
        migration_id: str,
        expected_checksum: str,
        actual_checksum: str,
        **kwargs
    ):
        super().__init__(
            f"Checksum mismatch for migration {migration_id}",
            details={
                'migration_id': migration_id,
                'expected_checksum': expected_checksum,
                'actual_checksum': actual_checksum
            },
            **kwargs
        )
        self.migration_id = migration_id
        self.expected_checksum = expected_checksum
        self.actual_checksum = actual_checksum


class RollbackUnsupportedError(DatarollError):
    """Raised when a migration cannot be rolled back automatically."""

    code = "ROLLBACK_NOT_SUPPORTED"
    status_code = 400


class BackendExecutionError(DatarollError):
    """Raised when the target database rejects a statement."""

    code = "BACKEND_EXECUTION_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        statement: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.backend = backend
        self.statement = statement
        self.original_error = original_error


class ConfigurationError(DatarollError):
    """Raised for invalid engine configuration."""

    code = "CONFIGURATION_ERROR"


class EncryptionError(DatarollError):
    """Raised when a connection secret cannot be decrypted."""

    code = "ENCRYPTION_ERROR"


def format_error(error: Exception) -> Dict[str, Any]:
    """Render any exception as an error envelope."""
    if isinstance(error, DatarollError):
        return {
            'error': {
                'code': error.code,
                'message': error.message,
                'details': error.details
            }
        }
    return {
        'error': {
            'code': DatarollError.code,
            'message': str(error) or error.__class__.__name__,
            'details': {}
        }
    }
