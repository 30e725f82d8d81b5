"""
Migration lifecycle states.

Statuses are a closed enumeration with an explicit transition table; every
status change in the engine goes through ``MigrationStatus.can_transition``
before it is attempted as a conditional update in the store.
"""

from enum import Enum
from typing import Dict, FrozenSet, Tuple


class MigrationStatus(str, Enum):
    """Status of a migration."""
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"

    def can_transition(self, target: 'MigrationStatus') -> bool:
        """Check whether ``self -> target`` is a legal transition."""
        return target in _TRANSITIONS[self]

    @property
    def is_executable(self) -> bool:
        return self in EXECUTABLE_STATES

    @property
    def is_rollbackable(self) -> bool:
        return self in ROLLBACKABLE_STATES


_TRANSITIONS: Dict[MigrationStatus, FrozenSet[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset({MigrationStatus.EXECUTING}),
    MigrationStatus.EXECUTING: frozenset({
        MigrationStatus.EXECUTED,
        MigrationStatus.FAILED,
        MigrationStatus.ROLLED_BACK,
    }),
    MigrationStatus.EXECUTED: frozenset({MigrationStatus.EXECUTING}),
    MigrationStatus.FAILED: frozenset({MigrationStatus.EXECUTING}),
    MigrationStatus.ROLLED_BACK: frozenset(),
}

# Claim sources
EXECUTABLE_STATES: Tuple[MigrationStatus, ...] = (MigrationStatus.PENDING, MigrationStatus.FAILED)
ROLLBACKABLE_STATES: Tuple[MigrationStatus, ...] = (MigrationStatus.EXECUTED,)


def legal_sources(from_states, to_state: MigrationStatus) -> Tuple[MigrationStatus, ...]:
    """Subset of ``from_states`` that may move to ``to_state``."""
    return tuple(state for state in from_states if state.can_transition(to_state))


class MigrationKind(str, Enum):
    """How a migration's content was produced."""
    PRISMA = "PRISMA"
    DRIZZLE = "DRIZZLE"
    RAW_SQL = "RAW_SQL"

    @property
    def is_orm_tool(self) -> bool:
        """ORM-tool migrations have no reliable down-migration."""
        return self in (MigrationKind.PRISMA, MigrationKind.DRIZZLE)


class ExecutionOutcome(str, Enum):
    """Outcome recorded on a MigrationExecution."""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ROLLBACK = "ROLLBACK"


class RollbackOutcome(str, Enum):
    """Outcome recorded on a MigrationRollback."""
    COMPLETED = "completed"
    FAILED = "failed"


class ScheduledStatus(str, Enum):
    """Status of a scheduled execution."""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self is not ScheduledStatus.PENDING
