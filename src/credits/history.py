"""Read-only execution history and award reporting queries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from credits.errors import NotFoundError
from models import (
    Attendee,
    AwardException,
    CreditAward,
    CreditCategory,
    CreditDecline,
    CreditGrant,
    EventSession,
    GrantExecutionLog,
    SessionRegistration,
)
from time_utils import ensure_utc


@dataclass(frozen=True)
class ExecutionSummary:
    """One execution as shown in the run history."""

    execution_log_id: int
    grant_id: int
    package_id: int
    run_at: datetime
    status: str
    trigger: str
    test_mode: bool
    awarded_count: int
    declined_count: int


@dataclass(frozen=True)
class OutcomeLine:
    """One awarded or declined triple of an execution."""

    record_id: int
    attendee_id: int
    session_id: int
    session_name: str
    category_id: int
    category_name: str
    credit_value: Decimal
    reasons: str | None = None


@dataclass(frozen=True)
class ExecutionDetail:
    """Awarded and declined lines of one execution."""

    execution_log_id: int
    grant_id: int
    run_at: datetime
    status: str
    awarded: tuple[OutcomeLine, ...]
    declined: tuple[OutcomeLine, ...]


@dataclass(frozen=True)
class CategoryAwardLine:
    """Award report line for a category with the facts behind it."""

    award_id: int
    attendee_id: int
    first_name: str | None
    last_name: str | None
    session_id: int
    session_name: str
    event_checked_in: bool
    session_checked_in: bool
    session_checked_out: bool
    balance_due: Decimal
    survey_responded: bool
    credit_value: Decimal
    exception_id: int | None


@dataclass(frozen=True)
class UserCreditLine:
    """Transcript line: one credit earned by a user."""

    award_id: int
    event_id: int
    category_id: int
    category_name: str
    session_id: int
    session_name: str
    credit_value: Decimal
    awarded_at: datetime


def execution_history(
    session: Session,
    event_id: int,
    *,
    scheduled: bool | None = None,
    limit: int = 100,
) -> list[ExecutionSummary]:
    """Return executions of an event's grants, newest first.

    Counts are taken from the surviving rows, so revoked awards are excluded.
    """
    award_counts = (
        select(CreditAward.execution_log_id, func.count(CreditAward.id).label("awarded"))
        .group_by(CreditAward.execution_log_id)
        .subquery()
    )
    decline_counts = (
        select(CreditDecline.execution_log_id, func.count(CreditDecline.id).label("declined"))
        .group_by(CreditDecline.execution_log_id)
        .subquery()
    )
    query = (
        select(
            GrantExecutionLog,
            CreditGrant.package_id,
            func.coalesce(award_counts.c.awarded, 0),
            func.coalesce(decline_counts.c.declined, 0),
        )
        .join(CreditGrant, CreditGrant.id == GrantExecutionLog.grant_id)
        .outerjoin(award_counts, award_counts.c.execution_log_id == GrantExecutionLog.id)
        .outerjoin(decline_counts, decline_counts.c.execution_log_id == GrantExecutionLog.id)
        .where(CreditGrant.event_id == event_id)
    )
    if scheduled is True:
        query = query.where(GrantExecutionLog.trigger == "scheduled")
    elif scheduled is False:
        query = query.where(GrantExecutionLog.trigger != "scheduled")
    rows = session.execute(
        query.order_by(GrantExecutionLog.run_at.desc(), GrantExecutionLog.id.desc()).limit(limit)
    ).all()
    return [
        ExecutionSummary(
            execution_log_id=log.id,
            grant_id=log.grant_id,
            package_id=package_id,
            run_at=ensure_utc(log.run_at),
            status=log.status,
            trigger=log.trigger,
            test_mode=bool(log.test_mode),
            awarded_count=int(awarded),
            declined_count=int(declined),
        )
        for log, package_id, awarded, declined in rows
    ]


def execution_detail(
    session: Session,
    execution_log_id: int,
    *,
    category_id: int | None = None,
    session_id: int | None = None,
) -> ExecutionDetail:
    """Return the awarded and declined lines of one execution.

    Optional filters narrow the lines to one category and/or session.
    """
    execution_log = session.get(GrantExecutionLog, execution_log_id)
    if execution_log is None:
        raise NotFoundError(
            f"Execution log not found: {execution_log_id}",
            {"execution_log_id": execution_log_id},
        )
    return ExecutionDetail(
        execution_log_id=execution_log.id,
        grant_id=execution_log.grant_id,
        run_at=ensure_utc(execution_log.run_at),
        status=execution_log.status,
        awarded=tuple(
            _outcome_lines(session, CreditAward, execution_log_id, category_id, session_id)
        ),
        declined=tuple(
            _outcome_lines(session, CreditDecline, execution_log_id, category_id, session_id)
        ),
    )


def _outcome_lines(session, model, execution_log_id, category_id, session_id) -> list[OutcomeLine]:
    reasons_column = model.reasons if model is CreditDecline else None
    columns = [
        model.id,
        model.attendee_id,
        model.session_id,
        EventSession.name.label("session_name"),
        model.category_id,
        CreditCategory.name.label("category_name"),
        model.credit_value,
    ]
    if reasons_column is not None:
        columns.append(reasons_column)
    query = (
        select(*columns)
        .join(EventSession, EventSession.id == model.session_id)
        .join(CreditCategory, CreditCategory.id == model.category_id)
        .where(model.execution_log_id == execution_log_id)
    )
    if category_id is not None:
        query = query.where(model.category_id == category_id)
    if session_id is not None:
        query = query.where(model.session_id == session_id)
    rows = session.execute(
        query.order_by(model.attendee_id, model.session_id, model.category_id)
    ).all()
    return [
        OutcomeLine(
            record_id=row.id,
            attendee_id=row.attendee_id,
            session_id=row.session_id,
            session_name=row.session_name,
            category_id=row.category_id,
            category_name=row.category_name,
            credit_value=Decimal(str(row.credit_value)),
            reasons=getattr(row, "reasons", None),
        )
        for row in rows
    ]


def awarded_by_category(
    session: Session,
    event_id: int,
    category_id: int,
) -> list[CategoryAwardLine]:
    """Return every award of a category with the attendance facts behind it."""
    category = session.get(CreditCategory, category_id)
    if category is None or category.event_id != event_id:
        raise NotFoundError(
            f"Credit category not found: {category_id}",
            {"category_id": category_id, "event_id": event_id},
        )
    exception_id = (
        select(func.min(AwardException.id))
        .where(
            AwardException.attendee_id == CreditAward.attendee_id,
            AwardException.session_id == CreditAward.session_id,
            AwardException.category_id == CreditAward.category_id,
        )
        .correlate(CreditAward)
        .scalar_subquery()
    )
    rows = session.execute(
        select(
            CreditAward.id,
            CreditAward.attendee_id,
            Attendee.first_name,
            Attendee.last_name,
            CreditAward.session_id,
            EventSession.name.label("session_name"),
            Attendee.event_checked_in_at,
            SessionRegistration.checked_in_at,
            SessionRegistration.checked_out_at,
            Attendee.balance_due,
            SessionRegistration.survey_responded,
            CreditAward.credit_value,
            exception_id.label("exception_id"),
        )
        .join(Attendee, Attendee.id == CreditAward.attendee_id)
        .join(EventSession, EventSession.id == CreditAward.session_id)
        .outerjoin(
            SessionRegistration,
            (SessionRegistration.attendee_id == CreditAward.attendee_id)
            & (SessionRegistration.session_id == CreditAward.session_id),
        )
        .where(CreditAward.category_id == category_id)
        .order_by(Attendee.first_name, Attendee.last_name, EventSession.name)
    ).all()
    return [
        CategoryAwardLine(
            award_id=row.id,
            attendee_id=row.attendee_id,
            first_name=row.first_name,
            last_name=row.last_name,
            session_id=row.session_id,
            session_name=row.session_name,
            event_checked_in=row.event_checked_in_at is not None,
            session_checked_in=row.checked_in_at is not None,
            session_checked_out=row.checked_out_at is not None,
            balance_due=Decimal(str(row.balance_due or 0)),
            survey_responded=bool(row.survey_responded),
            credit_value=Decimal(str(row.credit_value)),
            exception_id=row.exception_id,
        )
        for row in rows
    ]


def credits_for_user(session: Session, user_id: int) -> list[UserCreditLine]:
    """Return every positive credit a user has earned across events."""
    rows = session.execute(
        select(
            CreditAward.id,
            Attendee.event_id,
            CreditAward.category_id,
            CreditCategory.name.label("category_name"),
            CreditAward.session_id,
            EventSession.name.label("session_name"),
            CreditAward.credit_value,
            CreditAward.awarded_at,
        )
        .join(Attendee, Attendee.id == CreditAward.attendee_id)
        .join(CreditCategory, CreditCategory.id == CreditAward.category_id)
        .join(EventSession, EventSession.id == CreditAward.session_id)
        .where(Attendee.user_id == user_id, CreditAward.credit_value > 0)
        .order_by(CreditAward.awarded_at, CreditAward.id)
    ).all()
    return [
        UserCreditLine(
            award_id=row.id,
            event_id=row.event_id,
            category_id=row.category_id,
            category_name=row.category_name,
            session_id=row.session_id,
            session_name=row.session_name,
            credit_value=Decimal(str(row.credit_value)),
            awarded_at=ensure_utc(row.awarded_at),
        )
        for row in rows
    ]
