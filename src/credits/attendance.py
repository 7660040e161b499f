"""Read/write seam over externally owned registration and attendance facts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import and_, exists, select, update
from sqlalchemy.orm import Session

from models import (
    Attendee,
    CreditAward,
    CreditCategory,
    EventSession,
    SessionCreditValue,
    SessionRegistration,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateFilter:
    """Typed narrowing of the candidate population for an evaluation."""

    category_ids: frozenset[int]
    category_id: int | None = None
    session_id: int | None = None
    attendee_id: int | None = None


@dataclass(frozen=True)
class AttendanceFact:
    """Attendance, payment, and survey facts for one candidate triple."""

    attendee_id: int
    session_id: int
    category_id: int
    credit_value: Decimal
    event_checked_in: bool
    session_checked_in: bool
    session_checked_out: bool
    balance_due: Decimal
    survey_responded: bool
    session_has_survey: bool
    do_not_award: bool
    profile_id: int | None
    jurisdiction_code: str | None

    @property
    def key(self) -> tuple[int, int, int]:
        """Return the (attendee, session, category) identity of the triple."""
        return (self.attendee_id, self.session_id, self.category_id)


def _candidate_query(candidate_filter: CandidateFilter):
    """Compose the candidate select from a typed filter."""
    already_awarded = exists().where(
        and_(
            CreditAward.attendee_id == SessionRegistration.attendee_id,
            CreditAward.session_id == SessionRegistration.session_id,
            CreditAward.category_id == SessionCreditValue.category_id,
        )
    )
    query = (
        select(
            SessionRegistration.attendee_id,
            SessionRegistration.session_id,
            SessionCreditValue.category_id,
            SessionCreditValue.credit_value,
            Attendee.event_checked_in_at,
            SessionRegistration.checked_in_at,
            SessionRegistration.checked_out_at,
            Attendee.balance_due,
            SessionRegistration.survey_responded,
            EventSession.survey_id,
            SessionRegistration.do_not_award,
            Attendee.profile_id,
            Attendee.jurisdiction_code,
        )
        .join(Attendee, Attendee.id == SessionRegistration.attendee_id)
        .join(EventSession, EventSession.id == SessionRegistration.session_id)
        .join(SessionCreditValue, SessionCreditValue.session_id == EventSession.id)
        .join(CreditCategory, CreditCategory.id == SessionCreditValue.category_id)
        .where(
            SessionCreditValue.category_id.in_(sorted(candidate_filter.category_ids)),
            SessionCreditValue.credit_value > 0,
            CreditCategory.archived.is_(False),
            Attendee.registration_complete.is_(True),
            SessionRegistration.scratched.is_(False),
            ~already_awarded,
        )
    )
    if candidate_filter.category_id is not None:
        query = query.where(SessionCreditValue.category_id == candidate_filter.category_id)
    if candidate_filter.session_id is not None:
        query = query.where(SessionRegistration.session_id == candidate_filter.session_id)
    if candidate_filter.attendee_id is not None:
        query = query.where(SessionRegistration.attendee_id == candidate_filter.attendee_id)
    return query.order_by(
        SessionRegistration.attendee_id,
        SessionRegistration.session_id,
        SessionCreditValue.category_id,
    )


def load_candidate_facts(
    session: Session,
    candidate_filter: CandidateFilter,
) -> list[AttendanceFact]:
    """Return facts for every not-yet-awarded candidate triple matching the filter."""
    if not candidate_filter.category_ids:
        return []
    rows = session.execute(_candidate_query(candidate_filter)).all()
    return [
        AttendanceFact(
            attendee_id=row.attendee_id,
            session_id=row.session_id,
            category_id=row.category_id,
            credit_value=Decimal(str(row.credit_value)),
            event_checked_in=row.event_checked_in_at is not None,
            session_checked_in=row.checked_in_at is not None,
            session_checked_out=row.checked_out_at is not None,
            balance_due=Decimal(str(row.balance_due or 0)),
            survey_responded=bool(row.survey_responded),
            session_has_survey=row.survey_id is not None,
            do_not_award=bool(row.do_not_award),
            profile_id=row.profile_id,
            jurisdiction_code=row.jurisdiction_code,
        )
        for row in rows
    ]


def set_do_not_award(session: Session, attendee_id: int, session_id: int) -> bool:
    """Flag a registration so the next run does not re-award it.

    Returns False when no matching registration exists.
    """
    result = session.execute(
        update(SessionRegistration)
        .where(
            SessionRegistration.attendee_id == attendee_id,
            SessionRegistration.session_id == session_id,
        )
        .values(do_not_award=True)
    )
    if not result.rowcount:
        logger.warning(
            "No registration found to flag do_not_award: attendee=%s session=%s.",
            attendee_id,
            session_id,
        )
        return False
    return True


def clear_do_not_award(
    session: Session,
    session_ids: Iterable[int],
    *,
    keep: Iterable[tuple[int, int]] = (),
) -> int:
    """Clear the do_not_award flag on every registration of the given sessions.

    Registrations whose (attendee_id, session_id) pair is in ``keep`` stay flagged.
    """
    ids = sorted(set(session_ids))
    if not ids:
        return 0
    kept = set(keep)
    flagged = session.execute(
        select(SessionRegistration.id, SessionRegistration.attendee_id, SessionRegistration.session_id)
        .where(
            SessionRegistration.session_id.in_(ids),
            SessionRegistration.do_not_award.is_(True),
        )
    ).all()
    registration_ids = [
        row.id for row in flagged if (row.attendee_id, row.session_id) not in kept
    ]
    if not registration_ids:
        return 0
    result = session.execute(
        update(SessionRegistration)
        .where(SessionRegistration.id.in_(registration_ids))
        .values(do_not_award=False)
    )
    return int(result.rowcount or 0)


def sessions_for_categories(session: Session, category_ids: Iterable[int]) -> list[int]:
    """Return ids of sessions carrying credit for any of the categories."""
    ids = sorted(set(category_ids))
    if not ids:
        return []
    return list(
        session.scalars(
            select(SessionCreditValue.session_id)
            .where(SessionCreditValue.category_id.in_(ids))
            .distinct()
        ).all()
    )
