"""
Unit tests for EngineConfig.
"""

import logging

import pytest

from dataroll.config import EngineConfig
from dataroll.exceptions import ConfigurationError


class TestEngineConfig:
    """Test cases for EngineConfig."""

    def test_defaults(self):
        """Test default settings."""
        config = EngineConfig()

        assert config.transactional_batches is False
        assert config.transactional_rollbacks is True
        assert config.connect_timeout == 10.0
        assert config.backup_root == "/backups"
        assert config.scheduler_batch_size == 100

    def test_from_env(self, monkeypatch):
        """Test reading DATAROLL_* variables."""
        monkeypatch.setenv("DATAROLL_STORE_URL", "sqlite:///tmp/store.db")
        monkeypatch.setenv("DATAROLL_CONNECT_TIMEOUT", "2.5")
        monkeypatch.setenv("DATAROLL_TRANSACTIONAL_BATCHES", "yes")
        monkeypatch.setenv("DATAROLL_BACKUP_ROOT", "/srv/backups/")
        monkeypatch.setenv("DATAROLL_LOG_LEVEL", "debug")
        monkeypatch.setenv("DATAROLL_SCHEDULER_BATCH_SIZE", "25")

        config = EngineConfig.from_env()

        assert config.store_url == "sqlite:///tmp/store.db"
        assert config.connect_timeout == 2.5
        assert config.transactional_batches is True
        assert config.backup_root == "/srv/backups"
        assert config.log_level == "DEBUG"
        assert config.scheduler_batch_size == 25

    @pytest.mark.parametrize("name,value", [
        ("DATAROLL_CONNECT_TIMEOUT", "soon"),
        ("DATAROLL_CONNECT_TIMEOUT", "0"),
        ("DATAROLL_LOG_LEVEL", "LOUD"),
        ("DATAROLL_SCHEDULER_BATCH_SIZE", "0"),
    ])
    def test_invalid_env(self, monkeypatch, name, value):
        """Test that bad values become ConfigurationError."""
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()

    def test_configure_logging(self):
        """Test applying the log level."""
        EngineConfig(log_level="warning").configure_logging()

        assert logging.getLogger("dataroll").level == logging.WARNING
        logging.getLogger("dataroll").setLevel(logging.NOTSET)
