"""Grant definitions and the due-grant scheduling predicate."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from credits.errors import CreditValidationError, InUseConflictError, NotFoundError
from credits.recurrence import RecurrenceRule, compute_next_run, resolve_recurrence_rule
from models import AwardCriteriaPackage, CreditGrant, GrantExecutionLog, GrantRunTypeEnum
from time_utils import ensure_utc, to_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrantCreateInput:
    """Input payload for creating a grant.

    A naive ``next_run_at`` is read as local time in the configured timezone.
    """

    event_id: int
    package_id: int
    admin_id: int
    run_type: str = "once"
    next_run_at: datetime | None = None
    recurrence: RecurrenceRule | None = None
    certificate_template_id: int | None = None
    email_template_id: int | None = None
    notify: bool = False
    test_mode: bool = False


@dataclass(frozen=True)
class GrantView:
    """Read-only view of a grant definition."""

    id: int
    event_id: int
    package_id: int
    admin_id: int
    run_type: str
    next_run_at: datetime | None
    interval_count: int | None
    interval_unit: str | None
    rrule: str | None
    certificate_template_id: int | None
    email_template_id: int | None
    notify: bool
    test_mode: bool
    archived: bool
    last_run_at: datetime | None


def grant_view(grant: CreditGrant) -> GrantView:
    """Build a read-only view of a grant."""
    return GrantView(
        id=grant.id,
        event_id=grant.event_id,
        package_id=grant.package_id,
        admin_id=grant.admin_id,
        run_type=grant.run_type,
        next_run_at=ensure_utc(grant.next_run_at) if grant.next_run_at else None,
        interval_count=grant.interval_count,
        interval_unit=grant.interval_unit,
        rrule=grant.rrule,
        certificate_template_id=grant.certificate_template_id,
        email_template_id=grant.email_template_id,
        notify=bool(grant.notify),
        test_mode=bool(grant.test_mode),
        archived=bool(grant.archived),
        last_run_at=ensure_utc(grant.last_run_at) if grant.last_run_at else None,
    )


def fetch_grant(session: Session, grant_id: int) -> CreditGrant:
    """Return a grant or raise when missing."""
    grant = session.get(CreditGrant, grant_id)
    if grant is None:
        raise NotFoundError(f"Grant not found: {grant_id}", {"grant_id": grant_id})
    return grant


def grant_rule(grant: CreditGrant) -> RecurrenceRule:
    """Return the recurrence rule stored on a grant."""
    return RecurrenceRule(
        interval_count=grant.interval_count,
        interval_unit=grant.interval_unit,
        rrule=grant.rrule,
    )


def create_grant(
    session: Session,
    payload: GrantCreateInput,
    *,
    now: datetime | None = None,
) -> CreditGrant:
    """Create a grant definition for a package."""
    if payload.run_type not in GrantRunTypeEnum.enums:
        raise CreditValidationError(f"Invalid run_type: {payload.run_type}.")
    package = session.get(AwardCriteriaPackage, payload.package_id)
    if package is None:
        raise NotFoundError(
            f"Award package not found: {payload.package_id}", {"package_id": payload.package_id}
        )
    if package.event_id != payload.event_id:
        raise CreditValidationError(
            "Award package belongs to a different event.",
            {"package_id": payload.package_id, "event_id": payload.event_id},
        )
    if package.archived:
        raise InUseConflictError(
            "Cannot create a grant for an archived package.", {"package_id": payload.package_id}
        )

    timestamp = ensure_utc(now or utc_now())
    next_run_at = to_utc(payload.next_run_at) if payload.next_run_at else None
    rule = RecurrenceRule()
    if payload.run_type == "recurring":
        rule = resolve_recurrence_rule(payload.recurrence)
        if next_run_at is None:
            next_run_at = timestamp
    elif payload.recurrence is not None:
        raise CreditValidationError("Only recurring grants accept a recurrence rule.")

    grant = CreditGrant(
        event_id=payload.event_id,
        package_id=payload.package_id,
        admin_id=payload.admin_id,
        certificate_template_id=payload.certificate_template_id,
        email_template_id=payload.email_template_id,
        notify=bool(payload.notify),
        run_type=payload.run_type,
        next_run_at=next_run_at,
        recurrence_start_at=next_run_at if payload.run_type == "recurring" else None,
        interval_count=rule.interval_count,
        interval_unit=rule.interval_unit,
        rrule=rule.rrule,
        test_mode=bool(payload.test_mode),
        archived=False,
        created_at=timestamp,
        updated_at=timestamp,
    )
    session.add(grant)
    session.flush()
    logger.info(
        "Created %s grant %s for package %s (next_run_at=%s).",
        grant.run_type,
        grant.id,
        grant.package_id,
        next_run_at,
    )
    return grant


def archive_grant(session: Session, grant_id: int, *, now: datetime | None = None) -> CreditGrant:
    """Soft-delete a grant so it is never swept again; history is kept."""
    grant = fetch_grant(session, grant_id)
    grant.archived = True
    grant.updated_at = ensure_utc(now or utc_now())
    session.flush()
    logger.info("Archived grant %s.", grant_id)
    return grant


def list_grants(
    session: Session,
    event_id: int,
    *,
    scheduled: bool | None = None,
    include_archived: bool = False,
) -> list[CreditGrant]:
    """Return grants for an event; ``scheduled`` selects recurring or one-time."""
    query = select(CreditGrant).where(CreditGrant.event_id == event_id)
    if not include_archived:
        query = query.where(CreditGrant.archived.is_(False))
    if scheduled is True:
        query = query.where(CreditGrant.run_type == "recurring")
    elif scheduled is False:
        query = query.where(CreditGrant.run_type == "once")
    return list(session.scalars(query.order_by(CreditGrant.id)).all())


def list_due_grants(session: Session, now: datetime) -> list[CreditGrant]:
    """Return recurring grants due at or before ``now``.

    A grant whose log already holds a run at or after its ``next_run_at`` is
    skipped; that guard is advisory and does not replace a per-grant lease.
    """
    now = ensure_utc(now)
    already_ran = exists().where(
        and_(
            GrantExecutionLog.grant_id == CreditGrant.id,
            GrantExecutionLog.run_at >= CreditGrant.next_run_at,
        )
    )
    query = (
        select(CreditGrant)
        .where(
            CreditGrant.archived.is_(False),
            CreditGrant.run_type == "recurring",
            CreditGrant.next_run_at.is_not(None),
            CreditGrant.next_run_at <= now,
            ~already_ran,
        )
        .order_by(CreditGrant.next_run_at, CreditGrant.id)
    )
    return list(session.scalars(query).all())


def advance_next_run(
    session: Session,
    grant: CreditGrant,
    *,
    now: datetime,
) -> datetime | None:
    """Move a recurring grant's ``next_run_at`` past ``now`` along its rule."""
    if grant.run_type != "recurring" or grant.next_run_at is None:
        return None
    now = ensure_utc(now)
    anchor = ensure_utc(grant.next_run_at)
    if anchor > now:
        return anchor
    next_run_at = compute_next_run(
        grant_rule(grant),
        anchor,
        reference_time=now,
        series_start=grant.recurrence_start_at,
    )
    grant.next_run_at = next_run_at
    grant.updated_at = now
    session.flush()
    logger.info("Advanced grant %s next_run_at to %s.", grant.id, next_run_at)
    return next_run_at
