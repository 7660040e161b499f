"""Administrator exception log overriding standard award criteria."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from credits.errors import ConfigurationConflictError, CreditValidationError, NotFoundError
from models import (
    Attendee,
    AwardCriteriaPackage,
    AwardException,
    AwardPackageCategory,
    CreditAward,
    SessionCreditValue,
)
from time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExceptionCreateInput:
    """Input payload for adding an exception for one triple."""

    attendee_id: int
    package_id: int
    category_id: int
    session_id: int
    justification: str
    admin_user_id: int


@dataclass(frozen=True)
class ExceptionFilter:
    """Typed filter for listing exceptions."""

    event_id: int | None = None
    package_id: int | None = None
    category_id: int | None = None
    session_id: int | None = None
    pending: bool | None = None


@dataclass(frozen=True)
class ExceptionView:
    """Read-only view of an exception log entry."""

    id: int
    attendee_id: int
    package_id: int
    category_id: int
    session_id: int
    justification: str
    admin_user_id: int
    created_at: datetime
    awarded: bool


def _require_justification(value: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise CreditValidationError("justification is required.")
    return normalized


def _awarded_clause():
    return exists().where(
        and_(
            CreditAward.attendee_id == AwardException.attendee_id,
            CreditAward.session_id == AwardException.session_id,
            CreditAward.category_id == AwardException.category_id,
        )
    )


def _to_view(session: Session, entry: AwardException) -> ExceptionView:
    awarded = session.scalar(
        select(
            exists().where(
                CreditAward.attendee_id == entry.attendee_id,
                CreditAward.session_id == entry.session_id,
                CreditAward.category_id == entry.category_id,
            )
        )
    )
    return ExceptionView(
        id=entry.id,
        attendee_id=entry.attendee_id,
        package_id=entry.package_id,
        category_id=entry.category_id,
        session_id=entry.session_id,
        justification=entry.justification,
        admin_user_id=entry.admin_user_id,
        created_at=entry.created_at,
        awarded=bool(awarded),
    )


def _fetch_exception(session: Session, exception_id: int) -> AwardException:
    entry = session.get(AwardException, exception_id)
    if entry is None:
        raise NotFoundError(
            f"Award exception not found: {exception_id}", {"exception_id": exception_id}
        )
    return entry


def add_exception(session: Session, payload: ExceptionCreateInput) -> ExceptionView:
    """Record an exception; it takes effect on the next evaluation of the triple."""
    justification = _require_justification(payload.justification)
    if session.get(AwardCriteriaPackage, payload.package_id) is None:
        raise NotFoundError(
            f"Award package not found: {payload.package_id}", {"package_id": payload.package_id}
        )
    if session.get(Attendee, payload.attendee_id) is None:
        raise NotFoundError(
            f"Attendee not found: {payload.attendee_id}", {"attendee_id": payload.attendee_id}
        )
    linked = session.scalar(
        select(
            exists().where(
                AwardPackageCategory.package_id == payload.package_id,
                AwardPackageCategory.category_id == payload.category_id,
            )
        )
    )
    if not linked:
        raise CreditValidationError(
            "Credit category is not linked to the award package.",
            {"package_id": payload.package_id, "category_id": payload.category_id},
        )
    carries_credit = session.scalar(
        select(
            exists().where(
                SessionCreditValue.session_id == payload.session_id,
                SessionCreditValue.category_id == payload.category_id,
            )
        )
    )
    if not carries_credit:
        raise CreditValidationError(
            "Session does not carry credit for the category.",
            {"session_id": payload.session_id, "category_id": payload.category_id},
        )
    duplicate = session.scalars(
        select(AwardException.id).where(
            AwardException.attendee_id == payload.attendee_id,
            AwardException.package_id == payload.package_id,
            AwardException.category_id == payload.category_id,
            AwardException.session_id == payload.session_id,
        )
    ).first()
    if duplicate is not None:
        raise ConfigurationConflictError(
            "An exception already exists for this attendee, session, and category.",
            {"exception_id": duplicate},
        )

    timestamp = utc_now()
    entry = AwardException(
        attendee_id=payload.attendee_id,
        package_id=payload.package_id,
        category_id=payload.category_id,
        session_id=payload.session_id,
        justification=justification,
        admin_user_id=payload.admin_user_id,
        created_at=timestamp,
        updated_at=timestamp,
    )
    session.add(entry)
    session.flush()
    logger.info(
        "Admin %s added award exception %s (attendee=%s session=%s category=%s).",
        payload.admin_user_id,
        entry.id,
        entry.attendee_id,
        entry.session_id,
        entry.category_id,
    )
    return _to_view(session, entry)


def update_exception(
    session: Session,
    exception_id: int,
    *,
    justification: str,
    admin_user_id: int | None = None,
) -> ExceptionView:
    """Replace the justification text of an exception."""
    entry = _fetch_exception(session, exception_id)
    entry.justification = _require_justification(justification)
    if admin_user_id is not None:
        entry.admin_user_id = admin_user_id
    entry.updated_at = utc_now()
    session.flush()
    return _to_view(session, entry)


def remove_exception(session: Session, exception_id: int) -> None:
    """Delete an exception; existing awards are left untouched."""
    entry = _fetch_exception(session, exception_id)
    session.delete(entry)
    session.flush()
    logger.info("Removed award exception %s.", exception_id)


def get_exception(session: Session, exception_id: int) -> ExceptionView:
    """Return one exception view or raise when missing."""
    return _to_view(session, _fetch_exception(session, exception_id))


def list_exceptions(session: Session, exception_filter: ExceptionFilter) -> list[ExceptionView]:
    """Return exceptions matching the filter, newest first.

    ``pending=True`` keeps only entries whose triple has not been awarded yet;
    ``pending=False`` keeps only the awarded ones.
    """
    query = select(AwardException)
    if exception_filter.event_id is not None:
        query = query.join(
            AwardCriteriaPackage, AwardCriteriaPackage.id == AwardException.package_id
        ).where(AwardCriteriaPackage.event_id == exception_filter.event_id)
    if exception_filter.package_id is not None:
        query = query.where(AwardException.package_id == exception_filter.package_id)
    if exception_filter.category_id is not None:
        query = query.where(AwardException.category_id == exception_filter.category_id)
    if exception_filter.session_id is not None:
        query = query.where(AwardException.session_id == exception_filter.session_id)
    if exception_filter.pending is True:
        query = query.where(~_awarded_clause())
    elif exception_filter.pending is False:
        query = query.where(_awarded_clause())
    entries = session.scalars(
        query.order_by(AwardException.created_at.desc(), AwardException.id.desc())
    ).all()
    return [_to_view(session, entry) for entry in entries]
