"""
Connection adapter registry.

Maps each ``BackendKind`` to its adapter class. Adding a backend means
registering one more adapter; nothing else in the engine branches on kind.
"""

import logging
from typing import Dict, Type, List, Optional

from ..exceptions import ConfigurationError
from .base import ConnectionAdapter, DEFAULT_CONNECT_TIMEOUT
from .config import BackendKind


class AdapterRegistry:
    """Registry for connection adapters."""

    _adapters: Dict[BackendKind, Type[ConnectionAdapter]] = {}
    _logger = logging.getLogger(__name__)

    @classmethod
    def register_adapter(
        cls,
        kind: BackendKind,
        adapter_class: Type[ConnectionAdapter]
    ) -> None:
        """Register a connection adapter for a backend kind."""
        if not issubclass(adapter_class, ConnectionAdapter):
            raise ConfigurationError(
                "Adapter class must inherit from ConnectionAdapter",
                details={
                    'kind': kind.value,
                    'adapter_class': adapter_class.__name__
                }
            )

        cls._adapters[kind] = adapter_class
        cls._logger.debug(f"Registered adapter {adapter_class.__name__} for backend {kind.value}")

    @classmethod
    def get_adapter_class(cls, kind: BackendKind) -> Type[ConnectionAdapter]:
        """Get the adapter class for a backend kind."""
        if kind not in cls._adapters:
            raise ConfigurationError(
                f"No adapter registered for backend {kind.value}",
                details={
                    'kind': kind.value,
                    'available_backends': [k.value for k in cls._adapters.keys()]
                }
            )

        return cls._adapters[kind]

    @classmethod
    def create_adapter(
        cls,
        kind: BackendKind,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: Optional[float] = None,
        application_name: str = "dataroll"
    ) -> ConnectionAdapter:
        """Create a new adapter instance for a backend kind."""
        adapter_class = cls.get_adapter_class(kind)
        return adapter_class(
            connect_timeout=connect_timeout,
            command_timeout=command_timeout,
            application_name=application_name
        )

    @classmethod
    def list_registered_backends(cls) -> List[BackendKind]:
        """List all registered backend kinds."""
        return list(cls._adapters.keys())

    @classmethod
    def is_backend_supported(cls, kind: BackendKind) -> bool:
        """Check if a backend kind is supported."""
        return kind in cls._adapters


class AdapterFactory:
    """Builds adapters with engine-wide timeouts."""

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: Optional[float] = None,
        application_name: str = "dataroll"
    ):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.application_name = application_name

    def __call__(self, kind: BackendKind) -> ConnectionAdapter:
        return AdapterRegistry.create_adapter(
            kind,
            connect_timeout=self.connect_timeout,
            command_timeout=self.command_timeout,
            application_name=self.application_name
        )


def _auto_register_adapters():
    """Register the built-in adapters."""
    from .postgresql import PostgreSQLAdapter
    from .mysql import MySQLAdapter
    from .sqlite import SQLiteAdapter

    AdapterRegistry.register_adapter(BackendKind.POSTGRESQL, PostgreSQLAdapter)
    AdapterRegistry.register_adapter(BackendKind.MYSQL, MySQLAdapter)
    AdapterRegistry.register_adapter(BackendKind.SQLITE, SQLiteAdapter)


_auto_register_adapters()
