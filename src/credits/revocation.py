"""Administrator revocation of single awards and full package resets."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from credits.attendance import clear_do_not_award, sessions_for_categories, set_do_not_award
from credits.errors import NotFoundError
from models import (
    AwardCriteriaPackage,
    AwardException,
    AwardPackageCategory,
    AwardRevocation,
    CreditAward,
    CreditDecline,
    CreditGrant,
    GrantExecutionLog,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnawardResult:
    """Outcome of revoking one award."""

    award_id: int
    attendee_id: int
    session_id: int
    category_id: int
    suppressed: bool


@dataclass(frozen=True)
class ResetSummary:
    """Counts of rows removed or cleared by a package reset."""

    package_id: int
    awards_deleted: int
    declines_deleted: int
    execution_logs_deleted: int
    exceptions_deleted: int
    revocations_deleted: int
    registrations_cleared: int


def unaward(session: Session, award_id: int) -> UnawardResult:
    """Delete an award and suppress re-award of its attendee/session pair."""
    award = session.get(CreditAward, award_id)
    if award is None:
        raise NotFoundError(f"Award not found: {award_id}", {"award_id": award_id})
    package_id = session.scalar(
        select(CreditGrant.package_id)
        .join(GrantExecutionLog, GrantExecutionLog.grant_id == CreditGrant.id)
        .where(GrantExecutionLog.id == award.execution_log_id)
    )
    session.add(
        AwardRevocation(
            package_id=package_id,
            attendee_id=award.attendee_id,
            session_id=award.session_id,
            category_id=award.category_id,
            award_id=award.id,
        )
    )
    result = UnawardResult(
        award_id=award.id,
        attendee_id=award.attendee_id,
        session_id=award.session_id,
        category_id=award.category_id,
        suppressed=set_do_not_award(session, award.attendee_id, award.session_id),
    )
    session.delete(award)
    session.flush()
    logger.info(
        "Revoked award %s (attendee=%s session=%s category=%s).",
        award_id,
        result.attendee_id,
        result.session_id,
        result.category_id,
    )
    return result


def reset_package(session: Session, package_id: int) -> ResetSummary:
    """Rewind a package: delete its execution history and exceptions.

    Also clears ``do_not_award`` on every registration of a session carrying
    credit for one of the package's categories, except pairs still held by a
    revocation made under another package.
    """
    if session.get(AwardCriteriaPackage, package_id) is None:
        raise NotFoundError(f"Award package not found: {package_id}", {"package_id": package_id})

    grant_ids = select(CreditGrant.id).where(CreditGrant.package_id == package_id)
    log_ids = list(
        session.scalars(
            select(GrantExecutionLog.id).where(GrantExecutionLog.grant_id.in_(grant_ids))
        ).all()
    )
    awards_deleted = declines_deleted = logs_deleted = 0
    if log_ids:
        awards_deleted = (
            session.query(CreditAward)
            .filter(CreditAward.execution_log_id.in_(log_ids))
            .delete(synchronize_session=False)
        )
        declines_deleted = (
            session.query(CreditDecline)
            .filter(CreditDecline.execution_log_id.in_(log_ids))
            .delete(synchronize_session=False)
        )
        logs_deleted = (
            session.query(GrantExecutionLog)
            .filter(GrantExecutionLog.id.in_(log_ids))
            .delete(synchronize_session=False)
        )
    revocations_deleted = (
        session.query(AwardRevocation)
        .filter(AwardRevocation.package_id == package_id)
        .delete(synchronize_session=False)
    )
    exceptions_deleted = (
        session.query(AwardException)
        .filter(AwardException.package_id == package_id)
        .delete(synchronize_session=False)
    )
    category_ids = session.scalars(
        select(AwardPackageCategory.category_id).where(
            AwardPackageCategory.package_id == package_id
        )
    ).all()
    session_ids = sessions_for_categories(session, category_ids)
    held_elsewhere = session.execute(
        select(AwardRevocation.attendee_id, AwardRevocation.session_id)
        .where(
            AwardRevocation.package_id != package_id,
            AwardRevocation.session_id.in_(session_ids),
        )
        .distinct()
    ).all()
    cleared = clear_do_not_award(
        session,
        session_ids,
        keep=[(row.attendee_id, row.session_id) for row in held_elsewhere],
    )
    session.flush()

    summary = ResetSummary(
        package_id=package_id,
        awards_deleted=int(awards_deleted),
        declines_deleted=int(declines_deleted),
        execution_logs_deleted=int(logs_deleted),
        exceptions_deleted=int(exceptions_deleted),
        revocations_deleted=int(revocations_deleted),
        registrations_cleared=cleared,
    )
    logger.info("Reset award package %s: %s", package_id, summary)
    return summary
