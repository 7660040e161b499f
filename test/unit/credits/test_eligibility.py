"""Unit tests for eligibility decisions and package evaluation."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from credits.attendance import AttendanceFact
from credits.eligibility import (
    CHECK_ATTENDANCE,
    CHECK_PAYMENT,
    CHECK_SURVEY,
    CategoryAudience,
    Candidate,
    EvaluationResult,
    PackageCriteria,
    decide_candidate,
    evaluate_package,
    representative_attendee,
)
from credits.errors import NotFoundError
from models import AwardCriteriaPackage, CreditAward, CreditCategory, GrantExecutionLog

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def _fact(**overrides) -> AttendanceFact:
    """Build an attendance fact that passes every check by default."""
    values = dict(
        attendee_id=1,
        session_id=10,
        category_id=100,
        credit_value=Decimal("1.5"),
        event_checked_in=True,
        session_checked_in=True,
        session_checked_out=True,
        balance_due=Decimal("0"),
        survey_responded=True,
        session_has_survey=True,
        do_not_award=False,
        profile_id=None,
        jurisdiction_code=None,
    )
    values.update(overrides)
    return AttendanceFact(**values)


STRICT = PackageCriteria(
    attendance_criterion="session_check_in_and_out",
    payment_in_full_required=True,
    survey_required=True,
)


def test_passing_fact_is_awarded() -> None:
    """A fact meeting every requirement is awarded without an exception."""
    outcome, candidate = decide_candidate(STRICT, _fact(), CategoryAudience(), has_exception=False)

    assert outcome == "award"
    assert candidate.failed_checks == ()
    assert candidate.via_exception is False


@pytest.mark.parametrize(
    ("criterion", "overrides", "expected"),
    [
        ("none", {"event_checked_in": False, "session_checked_in": False}, True),
        ("event_check_in", {"event_checked_in": False}, False),
        ("event_check_in", {"session_checked_in": False}, True),
        ("session_check_in", {"session_checked_in": False}, False),
        ("session_check_in", {"session_checked_out": False}, True),
        ("session_check_in_and_out", {"session_checked_out": False}, False),
    ],
)
def test_attendance_criterion_variants(criterion, overrides, expected) -> None:
    """Each attendance criterion inspects only its own facts."""
    criteria = PackageCriteria(attendance_criterion=criterion)
    outcome, candidate = decide_candidate(
        criteria, _fact(**overrides), CategoryAudience(), has_exception=False
    )

    assert (outcome == "award") is expected
    if not expected:
        assert candidate.failed_checks == (CHECK_ATTENDANCE,)


def test_outstanding_balance_fails_payment_check() -> None:
    """A positive balance declines when payment in full is required."""
    outcome, candidate = decide_candidate(
        STRICT, _fact(balance_due=Decimal("25.00")), CategoryAudience(), has_exception=False
    )

    assert outcome == "decline"
    assert candidate.failed_checks == (CHECK_PAYMENT,)


def test_credit_balance_passes_payment_check() -> None:
    """A negative balance (overpayment) counts as paid in full."""
    outcome, _ = decide_candidate(
        STRICT, _fact(balance_due=Decimal("-5")), CategoryAudience(), has_exception=False
    )

    assert outcome == "award"


def test_survey_requirement_ignores_sessions_without_survey() -> None:
    """Sessions with no survey attached satisfy the survey requirement."""
    fact = _fact(survey_responded=False, session_has_survey=False)

    outcome, _ = decide_candidate(STRICT, fact, CategoryAudience(), has_exception=False)

    assert outcome == "award"


def test_unanswered_survey_declines_with_all_failed_checks() -> None:
    """Declines list every failed sub-check in a stable order."""
    fact = _fact(
        survey_responded=False,
        session_checked_out=False,
        balance_due=Decimal("1"),
    )

    outcome, candidate = decide_candidate(STRICT, fact, CategoryAudience(), has_exception=False)

    assert outcome == "decline"
    assert candidate.failed_checks == (CHECK_ATTENDANCE, CHECK_PAYMENT, CHECK_SURVEY)


def test_exception_overrides_failed_checks() -> None:
    """An exception awards a triple that fails standard criteria."""
    fact = _fact(session_checked_in=False, balance_due=Decimal("10"))

    outcome, candidate = decide_candidate(STRICT, fact, CategoryAudience(), has_exception=True)

    assert outcome == "award"
    assert candidate.via_exception is True
    assert candidate.failed_checks == (CHECK_ATTENDANCE, CHECK_PAYMENT)


def test_exception_on_passing_fact_is_not_marked_as_override() -> None:
    """An exception on an already-eligible triple is not reported as an override."""
    _, candidate = decide_candidate(STRICT, _fact(), CategoryAudience(), has_exception=True)

    assert candidate.via_exception is False


def test_do_not_award_suppresses_without_exception() -> None:
    """Revoked registrations are neither awarded nor declined."""
    assert (
        decide_candidate(STRICT, _fact(do_not_award=True), CategoryAudience(), has_exception=False)
        is None
    )


def test_do_not_award_yields_to_exception() -> None:
    """An exception re-awards a revoked registration."""
    outcome, candidate = decide_candidate(
        STRICT, _fact(do_not_award=True), CategoryAudience(), has_exception=True
    )

    assert outcome == "award"
    assert candidate.via_exception is True


def test_zero_credit_is_not_a_candidate() -> None:
    """Zero-value credits never produce awards or declines."""
    assert (
        decide_candidate(
            STRICT, _fact(credit_value=Decimal("0")), CategoryAudience(), has_exception=True
        )
        is None
    )


def test_audience_restrictions_exclude_outsiders() -> None:
    """Profile and jurisdiction restrictions exclude non-matching attendees."""
    audience = CategoryAudience(profile_ids=frozenset({5}), jurisdictions=frozenset({"NY"}))

    wrong_profile = _fact(profile_id=4, jurisdiction_code="NY")
    wrong_jurisdiction = _fact(profile_id=5, jurisdiction_code="CA")

    assert decide_candidate(STRICT, wrong_profile, audience, has_exception=False) is None
    assert decide_candidate(STRICT, wrong_jurisdiction, audience, has_exception=False) is None
    outcome, _ = decide_candidate(
        STRICT, _fact(profile_id=5, jurisdiction_code=" ny "), audience, has_exception=False
    )
    assert outcome == "award"


def test_audience_does_not_hide_ineligible_outsiders() -> None:
    """Attendees failing a check are declined even outside the category audience."""
    audience = CategoryAudience(jurisdictions=frozenset({"CA", "NY"}))
    absent = _fact(jurisdiction_code="TX", session_checked_in=False)

    outcome, candidate = decide_candidate(STRICT, absent, audience, has_exception=False)

    assert outcome == "decline"
    assert CHECK_ATTENDANCE in candidate.failed_checks
    assert decide_candidate(STRICT, absent, audience, has_exception=True) is None


def test_representative_attendee_prefers_awardable() -> None:
    """Test-mode representative is the lowest attendee with something to award."""
    award = Candidate(attendee_id=7, session_id=1, category_id=1, credit_value=Decimal("1"))
    decline = Candidate(attendee_id=3, session_id=1, category_id=1, credit_value=Decimal("1"))
    other = replace(award, attendee_id=9)

    assert representative_attendee(EvaluationResult(1, (other, award), (decline,))) == 7
    assert representative_attendee(EvaluationResult(1, (), (decline,))) == 3
    assert representative_attendee(EvaluationResult(1)) is None


def test_evaluate_package_splits_award_and_decline(world, sqlite_session_factory) -> None:
    """Package evaluation awards checked-in attendees and declines the rest."""
    session_id = world.event_session()
    category_id = world.category()
    world.credit(session_id, category_id, "2")
    package_id = world.package([category_id], attendance_criterion="session_check_in")
    present = world.attendee(first_name="Present")
    absent = world.attendee(first_name="Absent")
    world.register(present, session_id)
    world.register(absent, session_id, checked_in=False)

    with sqlite_session_factory() as session:
        result = evaluate_package(session, package_id)

    assert [c.attendee_id for c in result.to_award] == [present]
    assert [c.attendee_id for c in result.to_decline] == [absent]
    assert result.to_award[0].credit_value == Decimal("2")
    assert result.award_attendee_ids == frozenset({present})


def test_evaluate_package_skips_ineligible_population(world, sqlite_session_factory) -> None:
    """Scratched, incomplete, and already-awarded registrations are not candidates."""
    setup = world.simple_setup(attendees=1)
    scratched = world.attendee(first_name="Scratched")
    world.register(scratched, setup["session_id"], scratched=True)
    incomplete = world.attendee(first_name="Incomplete", registration_complete=False)
    world.register(incomplete, setup["session_id"])
    grant_id = world.grant(setup["package_id"])

    with sqlite_session_factory() as session:
        log = GrantExecutionLog(grant_id=grant_id, run_at=NOW, status="succeeded")
        session.add(log)
        session.flush()
        session.add(
            CreditAward(
                execution_log_id=log.id,
                attendee_id=setup["attendee_ids"][0],
                session_id=setup["session_id"],
                category_id=setup["category_id"],
                credit_value=Decimal("1.5"),
            )
        )
        session.commit()

        result = evaluate_package(session, setup["package_id"])

    assert result.to_award == ()
    assert result.to_decline == ()


def test_evaluate_package_ignores_archived_categories(world, sqlite_session_factory) -> None:
    """Archived categories produce no candidates."""
    setup = world.simple_setup(attendees=1)
    with sqlite_session_factory() as session:
        session.get(CreditCategory, setup["category_id"]).archived = True
        session.commit()

        result = evaluate_package(session, setup["package_id"])

    assert result.to_award == ()


def test_evaluate_archived_package_is_empty(world, sqlite_session_factory) -> None:
    """Archived packages evaluate to nothing."""
    setup = world.simple_setup(attendees=1)
    with sqlite_session_factory() as session:
        session.get(AwardCriteriaPackage, setup["package_id"]).archived = True
        session.commit()

        result = evaluate_package(session, setup["package_id"])

    assert result.to_award == ()
    assert result.to_decline == ()


def test_evaluate_package_filters_narrow_population(world, sqlite_session_factory) -> None:
    """Category and session filters narrow the evaluated triples."""
    first = world.event_session("First")
    second = world.event_session("Second")
    category_id = world.category()
    world.credit(first, category_id)
    world.credit(second, category_id)
    package_id = world.package([category_id])
    attendee_id = world.attendee()
    world.register(attendee_id, first)
    world.register(attendee_id, second)

    with sqlite_session_factory() as session:
        result = evaluate_package(session, package_id, session_id=second)

    assert [c.session_id for c in result.to_award] == [second]


def test_evaluate_package_applies_audience(world, sqlite_session_factory) -> None:
    """Eligible attendees outside a restricted category audience are not awarded."""
    session_id = world.event_session()
    category_id = world.category(jurisdictions=("ny",))
    world.credit(session_id, category_id)
    package_id = world.package([category_id])
    inside = world.attendee(jurisdiction_code="NY")
    outside = world.attendee(jurisdiction_code="CA")
    world.register(inside, session_id)
    world.register(outside, session_id, checked_in=False)

    with sqlite_session_factory() as session:
        result = evaluate_package(session, package_id)

    assert [c.attendee_id for c in result.to_award] == [inside]
    assert result.to_decline == ()


def test_evaluate_missing_package_raises(sqlite_session_factory) -> None:
    """Unknown package ids raise NotFoundError."""
    with sqlite_session_factory() as session:
        with pytest.raises(NotFoundError):
            evaluate_package(session, 404)



def test_evaluate_package_declines_ineligible_outside_audience(world, sqlite_session_factory) -> None:
    """Out-of-jurisdiction attendees who missed check-in still land in the decline list."""
    session_id = world.event_session()
    category_id = world.category(jurisdictions=("CA", "NY"))
    world.credit(session_id, category_id)
    package_id = world.package([category_id], attendance_criterion="session_check_in")
    absent = world.attendee(jurisdiction_code="TX")
    present = world.attendee(jurisdiction_code="TX")
    world.register(absent, session_id, checked_in=False)
    world.register(present, session_id)

    with sqlite_session_factory() as session:
        result = evaluate_package(session, package_id)

    assert result.to_award == ()
    assert [c.attendee_id for c in result.to_decline] == [absent]
