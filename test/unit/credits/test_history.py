"""Unit tests for execution history and award reports."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from credits.award_exceptions import ExceptionCreateInput
from credits.errors import NotFoundError
from credits.recurrence import RecurrenceRule

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def test_history_counts_surviving_rows(world, service) -> None:
    """History counts drop when awards are revoked."""
    setup = world.simple_setup(attendees=3, attendance_criterion="session_check_in")
    world.set_registration(setup["registration_ids"][2], checked_in_at=None)
    grant_id = world.grant(setup["package_id"])
    result = service.run_grant_now(grant_id, now=NOW)

    service.unaward(world.awards()[0].id)
    history = service.execution_history(world.event_id)

    assert len(history) == 1
    assert history[0].execution_log_id == result.execution_log_id
    assert history[0].awarded_count == 1
    assert history[0].declined_count == 1
    assert history[0].trigger == "manual"
    assert history[0].run_at == NOW


def test_history_filters_scheduled_runs(world, service) -> None:
    """Scheduled and manual runs can be listed separately, newest first."""
    setup = world.simple_setup(attendees=1)
    recurring = world.grant(
        setup["package_id"],
        run_type="recurring",
        next_run_at=NOW,
        recurrence=RecurrenceRule(interval_count=1, interval_unit="hour"),
    )
    once = world.grant(setup["package_id"])
    service.run_due_grants(now=NOW)
    service.run_grant_now(once, now=NOW + timedelta(minutes=5))

    everything = service.execution_history(world.event_id)
    scheduled = service.execution_history(world.event_id, scheduled=True)
    manual = service.execution_history(world.event_id, scheduled=False)

    assert [row.grant_id for row in everything] == [once, recurring]
    assert [row.grant_id for row in scheduled] == [recurring]
    assert [row.grant_id for row in manual] == [once]


def test_execution_detail_lists_outcomes(world, service) -> None:
    """Execution detail separates awarded and declined lines."""
    first = world.event_session("Alpha")
    second = world.event_session("Beta")
    category_id = world.category("CME")
    world.credit(first, category_id, "1")
    world.credit(second, category_id, "2")
    package_id = world.package([category_id], attendance_criterion="session_check_in")
    attendee_id = world.attendee()
    world.register(attendee_id, first)
    world.register(attendee_id, second, checked_in=False)
    grant_id = world.grant(package_id)
    result = service.run_grant_now(grant_id, now=NOW)

    detail = service.execution_detail(result.execution_log_id)
    filtered = service.execution_detail(result.execution_log_id, session_id=second)

    assert [(line.session_name, line.credit_value) for line in detail.awarded] == [
        ("Alpha", Decimal("1"))
    ]
    assert [(line.session_name, line.reasons) for line in detail.declined] == [
        ("Beta", "attendance")
    ]
    assert filtered.awarded == ()
    assert len(filtered.declined) == 1


def test_execution_detail_unknown_log(service) -> None:
    """Unknown execution logs raise NotFoundError."""
    with pytest.raises(NotFoundError):
        service.execution_detail(404)


def test_awarded_by_category_reports_facts_and_exceptions(world, service) -> None:
    """Category reports include attendance facts and the granting exception."""
    setup = world.simple_setup(attendees=2, payment_in_full_required=True)
    owing = world.attendee(first_name="Zed", balance_due="40")
    world.register(owing, setup["session_id"])
    exception = service.add_exception(
        ExceptionCreateInput(
            attendee_id=owing,
            package_id=setup["package_id"],
            category_id=setup["category_id"],
            session_id=setup["session_id"],
            justification="Scholarship",
            admin_user_id=5,
        )
    )
    service.run_grant_now(world.grant(setup["package_id"]), now=NOW)

    lines = service.awarded_by_category(world.event_id, setup["category_id"])

    assert [line.first_name for line in lines] == ["Attendee0", "Attendee1", "Zed"]
    zed = lines[-1]
    assert zed.balance_due == Decimal("40")
    assert zed.exception_id == exception.id
    assert zed.session_checked_in is True
    assert lines[0].exception_id is None


def test_credits_for_user_lists_awards(world, service) -> None:
    """Transcript lines list the awards earned by a user."""
    setup = world.simple_setup(attendees=0)
    attendee_id = world.attendee(user_id=77)
    world.register(attendee_id, setup["session_id"])
    service.run_grant_now(world.grant(setup["package_id"]), now=NOW)

    lines = service.credits_for_user(77)

    assert len(lines) == 1
    assert lines[0].category_name == "CME"
    assert lines[0].credit_value == Decimal("1.5")
    assert service.credits_for_user(78) == []
