"""Grant execution: evaluate a package and persist awards and declines.

An execution is not transactional as a whole. The log row is committed first,
then awards and declines are committed batch by batch, so a failure leaves the
rows already written in place. The unique (attendee, session, category)
constraint on awards is what keeps retries and racing executions safe.
"""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from credits.eligibility import Candidate, evaluate_package, representative_attendee
from credits.errors import DuplicateAwardError, InUseConflictError, TransientStorageError
from credits.grants import fetch_grant
from credits.notifications import AwardNotice, ExecutionListener, ExecutionNotice
from models import CreditAward, CreditDecline, GrantExecutionLog
from observability import log_context
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Counts produced by one grant execution."""

    grant_id: int
    execution_log_id: int
    awarded_count: int = 0
    declined_count: int = 0
    duplicate_count: int = 0
    canceled: bool = False
    awards: list[AwardNotice] = field(default_factory=list)


def _batches(items: Sequence[Candidate], size: int) -> Iterator[Sequence[Candidate]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class GrantExecutor:
    """Runs one grant against its package and records the outcome."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        batch_size: int | None = None,
        listener: ExecutionListener | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            session_factory: Factory producing SQLAlchemy sessions.
            batch_size: Candidates committed per batch (defaults to settings).
            listener: Optional receiver of post-execution notices.
        """
        self._session_factory = session_factory
        self._batch_size = int(batch_size or settings.credits.executor_batch_size)
        if self._batch_size < 1:
            raise ValueError("batch_size must be >= 1.")
        self._listener = listener

    def execute(
        self,
        grant_id: int,
        *,
        trigger: str = "manual",
        test_mode: bool | None = None,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Execute a grant once and return award/decline counts.

        Raises:
            NotFoundError: The grant does not exist.
            InUseConflictError: The grant is archived.
            TransientStorageError: Storage failed mid-run; ``result`` holds the
                partial counts and the execution log is kept.
        """
        run_at = ensure_utc(now or utc_now())
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            grant = fetch_grant(session, grant_id)
            if grant.archived:
                raise InUseConflictError("Grant is archived.", {"grant_id": grant_id})
            effective_test_mode = bool(grant.test_mode if test_mode is None else test_mode)

            execution_log = GrantExecutionLog(
                grant_id=grant.id,
                run_at=run_at,
                status="running",
                trigger=trigger,
                test_mode=effective_test_mode,
            )
            session.add(execution_log)
            session.commit()
            result = ExecutionResult(grant_id=grant.id, execution_log_id=execution_log.id)

            with log_context({"grant_id": grant.id, "execution_log_id": execution_log.id}):
                logger.info(
                    "Executing grant %s for package %s (trigger=%s test_mode=%s).",
                    grant.id,
                    grant.package_id,
                    trigger,
                    effective_test_mode,
                )
                try:
                    evaluation = evaluate_package(session, grant.package_id)
                    if effective_test_mode:
                        attendee_id = representative_attendee(evaluation)
                        if attendee_id is not None:
                            evaluation = evaluation.restricted_to(attendee_id)
                    self._write_awards(
                        session, execution_log.id, evaluation.to_award, result, cancel_event
                    )
                    if not result.canceled:
                        self._write_declines(
                            session, execution_log.id, evaluation.to_decline, result, cancel_event
                        )
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.exception("Grant %s execution failed mid-run.", grant_id)
                    self._finish(session, execution_log.id, "failed", error=str(exc))
                    raise TransientStorageError(
                        f"Storage failure while executing grant {grant_id}.",
                        {
                            "grant_id": grant_id,
                            "execution_log_id": execution_log.id,
                            "awarded_count": result.awarded_count,
                            "declined_count": result.declined_count,
                        },
                        result=result,
                    ) from exc
                except Exception as exc:
                    session.rollback()
                    logger.exception("Grant %s execution aborted.", grant_id)
                    self._finish(session, execution_log.id, "failed", error=str(exc))
                    raise

                status = "canceled" if result.canceled else "succeeded"
                grant.last_run_at = run_at
                self._finish(session, execution_log.id, status)
                logger.info(
                    "Grant %s %s: awarded=%s declined=%s duplicates=%s.",
                    grant_id,
                    status,
                    result.awarded_count,
                    result.declined_count,
                    result.duplicate_count,
                )
                if status == "succeeded" and grant.notify:
                    self._notify(grant, result, effective_test_mode)
        return result

    def _write_awards(
        self,
        session: Session,
        execution_log_id: int,
        candidates: Sequence[Candidate],
        result: ExecutionResult,
        cancel_event: threading.Event | None,
    ) -> None:
        for batch in _batches(candidates, self._batch_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Cancellation requested; stopping before next award batch.")
                result.canceled = True
                return
            records = [_award_record(execution_log_id, candidate) for candidate in batch]
            session.add_all(records)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Award batch collided with existing awards; replaying row by row.")
                self._write_awards_individually(session, execution_log_id, batch, result)
                continue
            for record in records:
                _record_award(result, record)

    def _write_awards_individually(
        self,
        session: Session,
        execution_log_id: int,
        batch: Sequence[Candidate],
        result: ExecutionResult,
    ) -> None:
        for candidate in batch:
            try:
                record = self._insert_award(session, execution_log_id, candidate)
            except DuplicateAwardError as exc:
                result.duplicate_count += 1
                logger.info("Skipped duplicate award: %s", exc.details)
                continue
            _record_award(result, record)

    def _insert_award(
        self,
        session: Session,
        execution_log_id: int,
        candidate: Candidate,
    ) -> CreditAward:
        """Insert one award, raising DuplicateAwardError when the triple exists."""
        record = _award_record(execution_log_id, candidate)
        session.add(record)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            existing = session.scalars(
                select(CreditAward.id).where(
                    CreditAward.attendee_id == candidate.attendee_id,
                    CreditAward.session_id == candidate.session_id,
                    CreditAward.category_id == candidate.category_id,
                )
            ).first()
            if existing is None:
                raise
            raise DuplicateAwardError(
                "Award already exists for triple.",
                {
                    "attendee_id": candidate.attendee_id,
                    "session_id": candidate.session_id,
                    "category_id": candidate.category_id,
                    "award_id": existing,
                },
            ) from None
        return record

    def _write_declines(
        self,
        session: Session,
        execution_log_id: int,
        candidates: Sequence[Candidate],
        result: ExecutionResult,
        cancel_event: threading.Event | None,
    ) -> None:
        for batch in _batches(candidates, self._batch_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Cancellation requested; stopping before next decline batch.")
                result.canceled = True
                return
            session.add_all(
                [
                    CreditDecline(
                        execution_log_id=execution_log_id,
                        attendee_id=candidate.attendee_id,
                        session_id=candidate.session_id,
                        category_id=candidate.category_id,
                        credit_value=candidate.credit_value,
                        reasons=",".join(candidate.failed_checks) or None,
                        declined_at=utc_now(),
                    )
                    for candidate in batch
                ]
            )
            session.commit()
            result.declined_count += len(batch)

    def _finish(
        self,
        session: Session,
        execution_log_id: int,
        status: str,
        *,
        error: str | None = None,
    ) -> None:
        """Close the execution log; failures here are logged, not raised."""
        try:
            execution_log = session.get(GrantExecutionLog, execution_log_id)
            execution_log.status = status
            execution_log.finished_at = utc_now()
            execution_log.error_message = error
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to close execution log %s as %s.", execution_log_id, status)

    def _notify(self, grant, result: ExecutionResult, test_mode: bool) -> None:
        if self._listener is None:
            return
        notice = ExecutionNotice(
            grant_id=grant.id,
            execution_log_id=result.execution_log_id,
            event_id=grant.event_id,
            certificate_template_id=grant.certificate_template_id,
            email_template_id=grant.email_template_id,
            test_mode=test_mode,
            awards=tuple(result.awards),
        )
        try:
            self._listener.on_execution_complete(notice)
        except Exception:
            logger.exception("Execution listener failed for grant %s.", grant.id)


def _award_record(execution_log_id: int, candidate: Candidate) -> CreditAward:
    return CreditAward(
        execution_log_id=execution_log_id,
        attendee_id=candidate.attendee_id,
        session_id=candidate.session_id,
        category_id=candidate.category_id,
        credit_value=candidate.credit_value,
        awarded_at=utc_now(),
    )


def _record_award(result: ExecutionResult, record: CreditAward) -> None:
    result.awarded_count += 1
    result.awards.append(
        AwardNotice(
            award_id=record.id,
            attendee_id=record.attendee_id,
            session_id=record.session_id,
            category_id=record.category_id,
            credit_value=record.credit_value,
        )
    )
