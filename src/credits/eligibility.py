"""Eligibility evaluation for award criteria packages.

The decision for a single candidate triple is a pure function of the package
criteria, the attendance facts, the category audience, and whether an
administrator exception exists. ``evaluate_package`` loads those inputs and
splits the candidate population into award and decline sets; it never writes,
so it serves both the read-only preview and the grant executor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from credits.attendance import AttendanceFact, CandidateFilter, load_candidate_facts
from credits.errors import NotFoundError
from models import (
    AwardCriteriaPackage,
    AwardException,
    AwardPackageCategory,
    CreditCategoryJurisdiction,
    CreditCategoryProfile,
)

logger = logging.getLogger(__name__)

CHECK_ATTENDANCE = "attendance"
CHECK_PAYMENT = "payment"
CHECK_SURVEY = "survey"


@dataclass(frozen=True)
class PackageCriteria:
    """Eligibility requirements of an award criteria package."""

    attendance_criterion: str = "none"
    payment_in_full_required: bool = False
    survey_required: bool = False

    @classmethod
    def from_package(cls, package: AwardCriteriaPackage) -> "PackageCriteria":
        """Build criteria from a persisted package."""
        return cls(
            attendance_criterion=package.attendance_criterion,
            payment_in_full_required=bool(package.payment_in_full_required),
            survey_required=bool(package.survey_required),
        )


@dataclass(frozen=True)
class CategoryAudience:
    """Profile and jurisdiction restrictions of a category; empty means everyone."""

    profile_ids: frozenset[int] = frozenset()
    jurisdictions: frozenset[str] = frozenset()

    def admits(self, fact: AttendanceFact) -> bool:
        """Return whether the attendee belongs to the category audience."""
        if self.profile_ids and fact.profile_id not in self.profile_ids:
            return False
        if self.jurisdictions:
            code = (fact.jurisdiction_code or "").strip().upper()
            if code not in self.jurisdictions:
                return False
        return True


@dataclass(frozen=True)
class Candidate:
    """One (attendee, session, category) triple with its evaluated outcome."""

    attendee_id: int
    session_id: int
    category_id: int
    credit_value: Decimal
    failed_checks: tuple[str, ...] = ()
    via_exception: bool = False

    @property
    def key(self) -> tuple[int, int, int]:
        """Return the (attendee, session, category) identity of the triple."""
        return (self.attendee_id, self.session_id, self.category_id)


@dataclass(frozen=True)
class EvaluationResult:
    """Award and decline sets produced by one evaluation."""

    package_id: int
    to_award: tuple[Candidate, ...] = field(default_factory=tuple)
    to_decline: tuple[Candidate, ...] = field(default_factory=tuple)

    @property
    def award_attendee_ids(self) -> frozenset[int]:
        """Return the distinct attendees that would receive credit."""
        return frozenset(candidate.attendee_id for candidate in self.to_award)

    def restricted_to(self, attendee_id: int) -> "EvaluationResult":
        """Return a copy keeping only one attendee's candidates."""
        return EvaluationResult(
            package_id=self.package_id,
            to_award=tuple(c for c in self.to_award if c.attendee_id == attendee_id),
            to_decline=tuple(c for c in self.to_decline if c.attendee_id == attendee_id),
        )


def attendance_check(criterion: str, fact: AttendanceFact) -> bool:
    """Return whether the attendance requirement is met."""
    if criterion == "none":
        return True
    if criterion == "event_check_in":
        return fact.event_checked_in
    if criterion == "session_check_in":
        return fact.session_checked_in
    if criterion == "session_check_in_and_out":
        return fact.session_checked_in and fact.session_checked_out
    raise ValueError(f"Unsupported attendance criterion: {criterion}")


def payment_check(payment_in_full_required: bool, fact: AttendanceFact) -> bool:
    """Return whether the payment requirement is met."""
    if not payment_in_full_required:
        return True
    return fact.balance_due <= 0


def survey_check(survey_required: bool, fact: AttendanceFact) -> bool:
    """Return whether the survey requirement is met."""
    if not survey_required:
        return True
    return fact.survey_responded or not fact.session_has_survey


def failed_checks(criteria: PackageCriteria, fact: AttendanceFact) -> tuple[str, ...]:
    """Return the names of the standard sub-checks the fact fails."""
    failed = []
    if not attendance_check(criteria.attendance_criterion, fact):
        failed.append(CHECK_ATTENDANCE)
    if not payment_check(criteria.payment_in_full_required, fact):
        failed.append(CHECK_PAYMENT)
    if not survey_check(criteria.survey_required, fact):
        failed.append(CHECK_SURVEY)
    return tuple(failed)


def decide_candidate(
    criteria: PackageCriteria,
    fact: AttendanceFact,
    audience: CategoryAudience,
    *,
    has_exception: bool,
) -> tuple[str, Candidate] | None:
    """Classify one triple as ``("award", c)``, ``("decline", c)``, or None.

    None means the triple is not a candidate at all: it has no credit, was
    revoked and is suppressed, or is eligible but outside the category
    audience. Ineligible triples are declined whatever their audience.
    """
    if fact.credit_value <= 0:
        return None
    failed = failed_checks(criteria, fact)
    candidate = Candidate(
        attendee_id=fact.attendee_id,
        session_id=fact.session_id,
        category_id=fact.category_id,
        credit_value=fact.credit_value,
        failed_checks=failed,
        via_exception=has_exception and (bool(failed) or fact.do_not_award),
    )
    if has_exception:
        return ("award", candidate) if audience.admits(fact) else None
    if fact.do_not_award:
        return None
    if failed:
        return ("decline", candidate)
    return ("award", candidate) if audience.admits(fact) else None


def evaluate_facts(
    package_id: int,
    criteria: PackageCriteria,
    facts: list[AttendanceFact],
    audiences: dict[int, CategoryAudience],
    exception_keys: set[tuple[int, int, int]],
) -> EvaluationResult:
    """Split candidate facts into award and decline sets."""
    to_award: list[Candidate] = []
    to_decline: list[Candidate] = []
    for fact in facts:
        decision = decide_candidate(
            criteria,
            fact,
            audiences.get(fact.category_id, CategoryAudience()),
            has_exception=fact.key in exception_keys,
        )
        if decision is None:
            continue
        outcome, candidate = decision
        if outcome == "award":
            to_award.append(candidate)
        else:
            to_decline.append(candidate)
    return EvaluationResult(
        package_id=package_id,
        to_award=tuple(to_award),
        to_decline=tuple(to_decline),
    )


def load_category_audiences(
    session: Session,
    category_ids: frozenset[int],
) -> dict[int, CategoryAudience]:
    """Return the audience restrictions for each category."""
    if not category_ids:
        return {}
    ids = sorted(category_ids)
    profiles: dict[int, set[int]] = {category_id: set() for category_id in ids}
    jurisdictions: dict[int, set[str]] = {category_id: set() for category_id in ids}
    for row in session.execute(
        select(CreditCategoryProfile.category_id, CreditCategoryProfile.profile_id).where(
            CreditCategoryProfile.category_id.in_(ids)
        )
    ):
        profiles[row.category_id].add(row.profile_id)
    for row in session.execute(
        select(
            CreditCategoryJurisdiction.category_id,
            CreditCategoryJurisdiction.jurisdiction_code,
        ).where(CreditCategoryJurisdiction.category_id.in_(ids))
    ):
        jurisdictions[row.category_id].add(row.jurisdiction_code.strip().upper())
    return {
        category_id: CategoryAudience(
            profile_ids=frozenset(profiles[category_id]),
            jurisdictions=frozenset(jurisdictions[category_id]),
        )
        for category_id in ids
    }


def load_exception_keys(session: Session, package_id: int) -> set[tuple[int, int, int]]:
    """Return the (attendee, session, category) keys with an exception for the package."""
    rows = session.execute(
        select(
            AwardException.attendee_id,
            AwardException.session_id,
            AwardException.category_id,
        ).where(AwardException.package_id == package_id)
    ).all()
    return {(row.attendee_id, row.session_id, row.category_id) for row in rows}


def evaluate_package(
    session: Session,
    package_id: int,
    *,
    category_id: int | None = None,
    session_id: int | None = None,
    attendee_id: int | None = None,
) -> EvaluationResult:
    """Evaluate every not-yet-awarded candidate triple of a package.

    Optional filters narrow the evaluation to one category, session, or
    attendee for targeted re-evaluation.
    """
    package = session.get(AwardCriteriaPackage, package_id)
    if package is None:
        raise NotFoundError(f"Award package not found: {package_id}", {"package_id": package_id})
    if package.archived:
        logger.info("Award package %s is archived; nothing to evaluate.", package_id)
        return EvaluationResult(package_id=package_id)

    category_ids = frozenset(
        session.scalars(
            select(AwardPackageCategory.category_id).where(
                AwardPackageCategory.package_id == package_id
            )
        ).all()
    )
    facts = load_candidate_facts(
        session,
        CandidateFilter(
            category_ids=category_ids,
            category_id=category_id,
            session_id=session_id,
            attendee_id=attendee_id,
        ),
    )
    result = evaluate_facts(
        package_id,
        PackageCriteria.from_package(package),
        facts,
        load_category_audiences(session, category_ids),
        load_exception_keys(session, package_id),
    )
    logger.debug(
        "Evaluated package %s: %s candidates, %s to award, %s to decline.",
        package_id,
        len(facts),
        len(result.to_award),
        len(result.to_decline),
    )
    return result


def representative_attendee(result: EvaluationResult) -> int | None:
    """Return the attendee used for test-mode runs.

    Prefers the lowest attendee id with something to award, falling back to
    the lowest declined attendee.
    """
    if result.to_award:
        return min(candidate.attendee_id for candidate in result.to_award)
    if result.to_decline:
        return min(candidate.attendee_id for candidate in result.to_decline)
    return None
