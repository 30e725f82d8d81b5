"""
Migration lifecycle: states, records, checksums and the reversal heuristic.

The engine components (dispatcher, rollback, snapshots, scheduler, service)
live in their own modules and are imported from there; they depend on
``dataroll.storage``, which itself depends on the records defined here.
"""

from .states import (
    MigrationStatus, MigrationKind, ExecutionOutcome, RollbackOutcome, ScheduledStatus,
    EXECUTABLE_STATES, ROLLBACKABLE_STATES, legal_sources
)
from .models import (
    DatabaseConnection, Migration, MigrationExecution, MigrationRollback,
    MigrationSnapshot, ScheduledExecution
)
from .checksum import compute_checksum, verify_checksum
from .preview import preview_changes
from .reversal import ReversalConfidence, ReversalPlan, derive_reversal, generate_rollback_sql

__all__ = [
    "MigrationStatus",
    "MigrationKind",
    "ExecutionOutcome",
    "RollbackOutcome",
    "ScheduledStatus",
    "EXECUTABLE_STATES",
    "ROLLBACKABLE_STATES",
    "legal_sources",
    "DatabaseConnection",
    "Migration",
    "MigrationExecution",
    "MigrationRollback",
    "MigrationSnapshot",
    "ScheduledExecution",
    "compute_checksum",
    "verify_checksum",
    "preview_changes",
    "ReversalConfidence",
    "ReversalPlan",
    "derive_reversal",
    "generate_rollback_sql",
]
