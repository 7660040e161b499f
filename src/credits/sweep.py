"""Periodic sweep that executes due recurring grants."""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from credits.errors import CreditServiceError, GrantBusyError
from credits.executor import ExecutionResult, GrantExecutor
from credits.grants import advance_next_run, fetch_grant, list_due_grants
from credits.leases import GrantLeaseRegistry
from observability import log_context
from services.database import session_scope
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    """Outcome of one sweep cycle."""

    swept_at: datetime
    due_count: int = 0
    executed: list[ExecutionResult] = field(default_factory=list)
    busy_grant_ids: list[int] = field(default_factory=list)
    failed_grant_ids: list[int] = field(default_factory=list)


class GrantSweepJob:
    """Job to run every recurring grant whose next run has come due."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: GrantExecutor,
        *,
        leases: GrantLeaseRegistry | None = None,
    ) -> None:
        """Initialize the sweep job.

        Args:
            session_factory: Factory producing SQLAlchemy sessions.
            executor: Executor used for each due grant.
            leases: Lease registry shared with manual runs.
        """
        self._session_factory = session_factory
        self._executor = executor
        self._leases = leases or GrantLeaseRegistry()

    def run(
        self,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SweepSummary:
        """Execute the sweep.

        Args:
            now: Reference timestamp (defaults to current UTC time).
            cancel_event: Optional signal checked before each grant.

        Returns:
            Counts of executed, busy, and failed grants.
        """
        now = ensure_utc(now or utc_now())
        with closing(self._session_factory()) as session:
            due_ids = [grant.id for grant in list_due_grants(session, now)]
        summary = SweepSummary(swept_at=now, due_count=len(due_ids))
        if due_ids:
            logger.info("Sweep found %s due grant(s).", len(due_ids))

        for index, grant_id in enumerate(due_ids):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Sweep canceled with %s grant(s) remaining.", len(due_ids) - index)
                break
            with log_context({"grant_id": grant_id}):
                self._run_one(grant_id, now, summary, cancel_event)
        return summary

    def _run_one(
        self,
        grant_id: int,
        now: datetime,
        summary: SweepSummary,
        cancel_event: threading.Event | None,
    ) -> None:
        try:
            with self._leases.lease(grant_id):
                try:
                    result = self._executor.execute(
                        grant_id,
                        trigger="scheduled",
                        now=now,
                        cancel_event=cancel_event,
                    )
                    summary.executed.append(result)
                except CreditServiceError as exc:
                    summary.failed_grant_ids.append(grant_id)
                    logger.error(
                        "Scheduled run of grant %s failed: %s (%s)", grant_id, exc.message, exc.code
                    )
                except SQLAlchemyError:
                    summary.failed_grant_ids.append(grant_id)
                    logger.exception("Scheduled run of grant %s hit a storage error.", grant_id)
                except Exception:
                    summary.failed_grant_ids.append(grant_id)
                    logger.exception("Scheduled run of grant %s aborted.", grant_id)
                self._advance(grant_id, now)
        except GrantBusyError:
            summary.busy_grant_ids.append(grant_id)
            logger.info("Grant %s is already running; skipped this sweep.", grant_id)

    def _advance(self, grant_id: int, now: datetime) -> None:
        """Move the grant's next run forward whether or not the run succeeded."""
        try:
            with session_scope(self._session_factory) as session:
                advance_next_run(session, fetch_grant(session, grant_id), now=now)
        except SQLAlchemyError:
            logger.exception("Failed to advance next_run_at for grant %s.", grant_id)
