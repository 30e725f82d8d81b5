"""
Database management for the engine's relational store.
"""

import logging
from contextlib import contextmanager
from typing import Optional, Generator, Dict, Any

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..exceptions import DatarollError
from .models import Base


class StoreDatabaseManager:
    """Owns the SQLAlchemy engine and session factory for the store."""

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        """
        Initialize the database manager.

        Args:
            database_url: Database connection URL (default: local SQLite file)
            echo: Whether to echo SQL statements
        """
        self.logger = logging.getLogger("dataroll.storage.database")

        if not database_url:
            database_url = "sqlite:///./dataroll.db"

        self.database_url = database_url
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    def initialize(self) -> bool:
        """
        Create the engine, session factory and tables.

        Returns:
            True if initialization successful
        """
        try:
            if self.database_url.startswith("sqlite"):
                self.engine = create_engine(
                    self.database_url,
                    echo=self.echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool
                )
            else:
                self.engine = create_engine(
                    self.database_url,
                    echo=self.echo,
                    pool_pre_ping=True
                )

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            Base.metadata.create_all(bind=self.engine)

            self._initialized = True
            self.logger.info(f"Store initialized: {self.engine.url.render_as_string(hide_password=True)}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize store: {e}")
            return False

    def get_session(self) -> Session:
        """
        Get a database session.

        Raises:
            DatarollError: If the store is not initialized
        """
        if not self._initialized or not self.SessionLocal:
            raise DatarollError("Store not initialized. Call initialize() first.")

        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """Check if the store connection is working."""
        try:
            if not self.engine:
                return False

            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))

            return True

        except Exception as e:
            self.logger.error(f"Store connection check failed: {e}")
            return False

    def get_database_info(self) -> Dict[str, Any]:
        """Summary of the store configuration."""
        return {
            "database_url": self.engine.url.render_as_string(hide_password=True) if self.engine else self.database_url,
            "initialized": self._initialized,
            "connection_working": self.check_connection(),
            "tables": sorted(Base.metadata.tables.keys()),
        }

    def close(self) -> None:
        """Dispose of the engine."""
        if self.engine:
            self.engine.dispose()
            self.logger.info("Store connections closed")
