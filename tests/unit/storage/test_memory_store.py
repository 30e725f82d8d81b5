"""
Unit tests for the in-memory store.
"""

from datetime import timedelta

import pytest

from dataroll.exceptions import ConflictError
from dataroll.migrations.models import Migration, MigrationExecution, ScheduledExecution, utcnow
from dataroll.migrations.states import (
    EXECUTABLE_STATES, ExecutionOutcome, MigrationKind, MigrationStatus, ScheduledStatus
)
from dataroll.storage.memory import InMemoryMigrationStore


@pytest.fixture
def memory_store():
    return InMemoryMigrationStore()


def _migration(status=MigrationStatus.PENDING, **kwargs) -> Migration:
    values = dict(name="m", version="1", kind=MigrationKind.RAW_SQL, content="SELECT 1;",
                  team_id="team-1", connection_id="conn-1", status=status)
    values.update(kwargs)
    return Migration(**values)


class TestClaim:
    """Test cases for the conditional status update."""

    def test_claim_from_allowed_state(self, memory_store):
        """Test a winning claim."""
        migration = memory_store.add_migration(_migration())

        assert memory_store.claim(migration.id, EXECUTABLE_STATES, MigrationStatus.EXECUTING)
        assert memory_store.get_migration(migration.id).status == MigrationStatus.EXECUTING

    def test_second_claim_loses(self, memory_store):
        """Test that only one of two claims wins."""
        migration = memory_store.add_migration(_migration())

        assert memory_store.claim(migration.id, EXECUTABLE_STATES, MigrationStatus.EXECUTING)
        assert not memory_store.claim(migration.id, EXECUTABLE_STATES, MigrationStatus.EXECUTING)

    def test_claim_applies_stamps(self, memory_store):
        """Test timestamp stamping on a claim."""
        migration = memory_store.add_migration(_migration(status=MigrationStatus.EXECUTING))
        now = utcnow()

        assert memory_store.claim(migration.id, (MigrationStatus.EXECUTING,), MigrationStatus.EXECUTED,
                                  executed_at=now)
        assert memory_store.get_migration(migration.id).executed_at == now

    def test_illegal_transition_refused(self, memory_store):
        """Test that the transition table is enforced even for matching sources."""
        migration = memory_store.add_migration(_migration())

        assert not memory_store.claim(migration.id, (MigrationStatus.PENDING,), MigrationStatus.EXECUTED)
        assert memory_store.get_migration(migration.id).status == MigrationStatus.PENDING

    def test_unknown_migration(self, memory_store):
        """Test claiming a missing migration."""
        assert not memory_store.claim("missing", EXECUTABLE_STATES, MigrationStatus.EXECUTING)

    def test_returned_records_are_copies(self, memory_store):
        """Test that callers cannot mutate stored state."""
        migration = memory_store.add_migration(_migration())

        copy = memory_store.get_migration(migration.id)
        copy.status = MigrationStatus.EXECUTED

        assert memory_store.get_migration(migration.id).status == MigrationStatus.PENDING

    def test_duplicate_version_rejected(self, memory_store):
        """Test version uniqueness per team and connection."""
        memory_store.add_migration(_migration())

        with pytest.raises(ConflictError):
            memory_store.add_migration(_migration(name="again"))

        memory_store.add_migration(_migration(connection_id="conn-2"))
        assert len(memory_store.list_migrations("team-1")) == 2


class TestExecutions:
    """Test cases for the execution log."""

    def test_latest_first(self, memory_store):
        """Test ordering and latest_execution."""
        first = memory_store.add_execution(MigrationExecution("m-1", ExecutionOutcome.FAILURE, 1.0))
        second = memory_store.add_execution(MigrationExecution("m-1", ExecutionOutcome.SUCCESS, 1.0))

        assert [e.id for e in memory_store.list_executions("m-1")] == [second.id, first.id]
        assert memory_store.latest_execution("m-1").id == second.id
        assert memory_store.latest_execution("m-2") is None

    def test_mark_outcome(self, memory_store):
        """Test retagging an execution."""
        execution = memory_store.add_execution(MigrationExecution("m-1", ExecutionOutcome.SUCCESS, 1.0))

        assert memory_store.mark_execution_outcome(execution.id, ExecutionOutcome.ROLLBACK)
        assert memory_store.latest_execution("m-1").outcome == ExecutionOutcome.ROLLBACK
        assert not memory_store.mark_execution_outcome("missing", ExecutionOutcome.ROLLBACK)


class TestScheduled:
    """Test cases for scheduled executions."""

    def _scheduled(self, minutes: int) -> ScheduledExecution:
        return ScheduledExecution("m-1", "conn-1", "team-1", utcnow() + timedelta(minutes=minutes))

    def test_due_scheduled(self, memory_store):
        """Test due selection and ordering."""
        late = memory_store.add_scheduled(self._scheduled(-1))
        early = memory_store.add_scheduled(self._scheduled(-10))
        memory_store.add_scheduled(self._scheduled(10))

        due = memory_store.due_scheduled(utcnow())

        assert [s.id for s in due] == [early.id, late.id]
        assert len(memory_store.due_scheduled(utcnow(), limit=1)) == 1

    def test_complete_only_once(self, memory_store):
        """Test that a settled entry cannot be settled again."""
        scheduled = memory_store.add_scheduled(self._scheduled(-1))

        assert memory_store.complete_scheduled(scheduled.id, ScheduledStatus.SUCCESS, utcnow())
        assert not memory_store.complete_scheduled(scheduled.id, ScheduledStatus.FAILURE, utcnow(), error="x")
        assert memory_store.get_scheduled(scheduled.id).status == ScheduledStatus.SUCCESS
        assert memory_store.due_scheduled(utcnow()) == []

    def test_delete_with_status_guard(self, memory_store):
        """Test conditional deletion."""
        scheduled = memory_store.add_scheduled(self._scheduled(10))
        memory_store.complete_scheduled(scheduled.id, ScheduledStatus.FAILURE, utcnow())

        assert not memory_store.delete_scheduled(scheduled.id, only_status=ScheduledStatus.PENDING)
        assert memory_store.delete_scheduled(scheduled.id)
        assert not memory_store.delete_scheduled(scheduled.id)
