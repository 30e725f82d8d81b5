"""
Configuration management for dataroll.

Engine settings are a pydantic model so invalid values are rejected at load
time. ``EngineConfig.from_env()`` reads ``DATAROLL_*`` environment variables.
"""

import os
import logging
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, validator

from .exceptions import ConfigurationError

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class EngineConfig(BaseModel):
    """Settings shared by the dispatcher, rollback engine and scheduler."""

    model_config = ConfigDict(validate_assignment=True)

    store_url: str = "sqlite:///./dataroll.db"
    store_echo: bool = False

    # Connection timeouts (seconds)
    connect_timeout: float = 10.0
    command_timeout: float = 300.0

    # Batch atomicity policy
    transactional_batches: bool = False
    transactional_rollbacks: bool = True

    backup_root: str = "/backups"
    encryption_key: Optional[str] = None

    log_level: str = "INFO"
    application_name: str = "dataroll"

    scheduler_batch_size: int = Field(default=100, gt=0)

    @validator('connect_timeout', 'command_timeout')
    def validate_timeouts(cls, v):
        """Validate timeout values."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Validate log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @validator('backup_root')
    def validate_backup_root(cls, v):
        """Strip trailing separators from the backup prefix."""
        return v.rstrip("/") or "/"

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """
        Create configuration from environment variables.

        Returns:
            EngineConfig instance with values from environment

        Raises:
            ConfigurationError: If a variable holds an invalid value

        Example:
            os.environ['DATAROLL_CONNECT_TIMEOUT'] = '5'
            config = EngineConfig.from_env()
        """
        values: Dict[str, Any] = {
            'store_url': os.getenv('DATAROLL_STORE_URL', 'sqlite:///./dataroll.db'),
            'store_echo': _env_bool('DATAROLL_STORE_ECHO', False),
            'transactional_batches': _env_bool('DATAROLL_TRANSACTIONAL_BATCHES', False),
            'transactional_rollbacks': _env_bool('DATAROLL_TRANSACTIONAL_ROLLBACKS', True),
            'backup_root': os.getenv('DATAROLL_BACKUP_ROOT', '/backups'),
            'encryption_key': os.getenv('DATAROLL_ENCRYPTION_KEY'),
            'log_level': os.getenv('DATAROLL_LOG_LEVEL', 'INFO'),
            'application_name': os.getenv('DATAROLL_APPLICATION_NAME', 'dataroll'),
        }

        try:
            values['connect_timeout'] = float(os.getenv('DATAROLL_CONNECT_TIMEOUT', '10'))
            values['command_timeout'] = float(os.getenv('DATAROLL_COMMAND_TIMEOUT', '300'))
            values['scheduler_batch_size'] = int(os.getenv('DATAROLL_SCHEDULER_BATCH_SIZE', '100'))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")

        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid dataroll configuration",
                details={'errors': [err['msg'] for err in e.errors()]}
            )

    def configure_logging(self) -> None:
        """Apply the configured level to the package logger."""
        logging.getLogger("dataroll").setLevel(getattr(logging, self.log_level))
