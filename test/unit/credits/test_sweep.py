"""Unit tests for the recurring grant sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from credits.errors import TransientStorageError
from credits.executor import GrantExecutor
from credits.leases import GrantLeaseRegistry
from credits.recurrence import RecurrenceRule
from credits.sweep import GrantSweepJob

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
HOURLY = RecurrenceRule(interval_count=1, interval_unit="hour")


class FailingExecutor(GrantExecutor):
    """Executor that fails for selected grants."""

    def __init__(self, session_factory, failing: set[int], error: Exception | None = None) -> None:
        super().__init__(session_factory)
        self._failing = failing
        self._error = error

    def execute(self, grant_id, **kwargs):
        if grant_id in self._failing:
            raise self._error or TransientStorageError("boom", {"grant_id": grant_id})
        return super().execute(grant_id, **kwargs)


def test_sweep_runs_due_grants_and_advances(world, service) -> None:
    """Due recurring grants run once per window and move to the next occurrence."""
    setup = world.simple_setup(attendees=2)
    grant_id = world.grant(
        setup["package_id"], run_type="recurring", next_run_at=NOW, recurrence=HOURLY
    )
    world.grant(setup["package_id"])

    summary = service.run_due_grants(now=NOW + timedelta(minutes=1))
    repeat = service.run_due_grants(now=NOW + timedelta(minutes=2))

    assert summary.due_count == 1
    assert [result.grant_id for result in summary.executed] == [grant_id]
    assert summary.executed[0].awarded_count == 2
    assert repeat.due_count == 0
    assert service.get_grant(grant_id).next_run_at == NOW + timedelta(hours=1)
    history = service.execution_history(world.event_id)
    assert [row.trigger for row in history] == ["scheduled"]


def test_sweep_skips_missed_windows(world, service) -> None:
    """A sweep after a long outage runs once and schedules the next future slot."""
    setup = world.simple_setup(attendees=1)
    grant_id = world.grant(
        setup["package_id"], run_type="recurring", next_run_at=NOW, recurrence=HOURLY
    )

    summary = service.run_due_grants(now=NOW + timedelta(hours=5, minutes=20))

    assert len(summary.executed) == 1
    assert service.get_grant(grant_id).next_run_at == NOW + timedelta(hours=6)


def test_failing_grant_does_not_stop_sweep(world, sqlite_session_factory) -> None:
    """A grant failure is recorded and the remaining grants still run."""
    setup = world.simple_setup(attendees=1)
    failing = world.grant(
        setup["package_id"], run_type="recurring", next_run_at=NOW, recurrence=HOURLY
    )
    healthy = world.grant(
        setup["package_id"],
        run_type="recurring",
        next_run_at=NOW + timedelta(seconds=1),
        recurrence=HOURLY,
    )
    job = GrantSweepJob(
        sqlite_session_factory, FailingExecutor(sqlite_session_factory, {failing})
    )

    summary = job.run(now=NOW + timedelta(minutes=1))

    assert summary.failed_grant_ids == [failing]
    assert [result.grant_id for result in summary.executed] == [healthy]
    repeat = job.run(now=NOW + timedelta(minutes=2))
    assert repeat.due_count == 0


def test_unexpected_error_does_not_stop_sweep(world, sqlite_session_factory) -> None:
    """Errors outside the credit taxonomy are logged and the sweep moves on."""
    setup = world.simple_setup(attendees=1)
    crashing = world.grant(
        setup["package_id"], run_type="recurring", next_run_at=NOW, recurrence=HOURLY
    )
    healthy = world.grant(
        setup["package_id"],
        run_type="recurring",
        next_run_at=NOW + timedelta(seconds=1),
        recurrence=HOURLY,
    )
    job = GrantSweepJob(
        sqlite_session_factory,
        FailingExecutor(sqlite_session_factory, {crashing}, error=RuntimeError("bug")),
    )

    summary = job.run(now=NOW + timedelta(minutes=1))

    assert summary.failed_grant_ids == [crashing]
    assert [result.grant_id for result in summary.executed] == [healthy]
    assert job.run(now=NOW + timedelta(minutes=2)).due_count == 0


def test_busy_grant_is_skipped(world, sqlite_session_factory) -> None:
    """Grants leased by another caller are skipped for this sweep."""
    setup = world.simple_setup(attendees=1)
    grant_id = world.grant(
        setup["package_id"], run_type="recurring", next_run_at=NOW, recurrence=HOURLY
    )
    leases = GrantLeaseRegistry()
    job = GrantSweepJob(
        sqlite_session_factory, GrantExecutor(sqlite_session_factory), leases=leases
    )

    with leases.lease(grant_id):
        summary = job.run(now=NOW)

    assert summary.busy_grant_ids == [grant_id]
    assert summary.executed == []
    assert job.run(now=NOW).executed[0].grant_id == grant_id


def test_sweep_ignores_one_time_grants(world, service) -> None:
    """One-time grants are never picked up by the sweep."""
    setup = world.simple_setup(attendees=1)
    world.grant(setup["package_id"], next_run_at=NOW - timedelta(hours=1))

    summary = service.run_due_grants(now=NOW)

    assert summary.due_count == 0
    assert world.awards() == []
