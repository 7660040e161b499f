"""Administrative surface of the credit award engine.

Each method is a short unit of work run inside its own managed session.
Grant executions additionally hold an in-process lease keyed by grant id.
"""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from credits import award_exceptions, catalog, history, revocation
from credits.award_exceptions import ExceptionCreateInput, ExceptionFilter, ExceptionView
from credits.catalog import (
    CategoryCreateInput,
    CategorySessionView,
    CategoryUpdateInput,
    CategoryView,
    PackageCreateInput,
    PackageUpdateInput,
    PackageView,
)
from credits.eligibility import EvaluationResult, evaluate_package, representative_attendee
from credits.executor import ExecutionResult, GrantExecutor
from credits.grants import (
    GrantCreateInput,
    GrantView,
    advance_next_run,
    archive_grant,
    create_grant,
    fetch_grant,
    grant_view,
    list_grants,
)
from credits.history import (
    CategoryAwardLine,
    ExecutionDetail,
    ExecutionSummary,
    UserCreditLine,
)
from credits.leases import GrantLeaseRegistry
from credits.revocation import ResetSummary, UnawardResult
from services.database import session_scope
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class CreditAwardService:
    """Facade over catalog, exception, grant, execution, and history operations."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        executor: GrantExecutor | None = None,
        leases: GrantLeaseRegistry | None = None,
    ) -> None:
        """Initialize the service with a session factory and collaborators."""
        self._session_factory = session_factory
        self._executor = executor or GrantExecutor(session_factory)
        self._leases = leases or GrantLeaseRegistry()

    @property
    def leases(self) -> GrantLeaseRegistry:
        """Return the lease registry shared with sweeps."""
        return self._leases

    # Categories

    def create_category(self, payload: CategoryCreateInput) -> CategoryView:
        """Create a credit category."""
        return self._execute(lambda session: catalog.create_category(session, payload))

    def update_category(self, category_id: int, updates: CategoryUpdateInput) -> CategoryView:
        """Update a credit category."""
        return self._execute(lambda session: catalog.update_category(session, category_id, updates))

    def archive_category(self, category_id: int, archived: bool = True) -> CategoryView:
        """Archive (or restore) a credit category."""
        return self._execute(
            lambda session: catalog.set_category_archived(session, category_id, archived)
        )

    def get_category(self, category_id: int) -> CategoryView:
        """Return one credit category."""
        return self._execute(lambda session: catalog.get_category(session, category_id))

    def list_categories(self, event_id: int, *, include_archived: bool = False) -> list[CategoryView]:
        """Return the credit categories of an event."""
        return self._execute(
            lambda session: catalog.list_categories(
                session, event_id, include_archived=include_archived
            )
        )

    def list_unused_categories(self, event_id: int) -> list[CategoryView]:
        """Return categories attached to sessions but not to any package."""
        return self._execute(lambda session: catalog.list_unused_categories(session, event_id))

    def category_sessions(self, category_id: int) -> list[CategorySessionView]:
        """Return the sessions carrying credit for a category."""
        return self._execute(lambda session: catalog.list_category_sessions(session, category_id))

    def category_grants(self, category_id: int) -> list[int]:
        """Return ids of grants touching a category."""
        return self._execute(lambda session: catalog.list_category_grant_ids(session, category_id))

    # Packages

    def create_package(self, payload: PackageCreateInput) -> PackageView:
        """Create an award criteria package."""
        return self._execute(lambda session: catalog.create_package(session, payload))

    def update_package(self, package_id: int, updates: PackageUpdateInput) -> PackageView:
        """Update an award criteria package."""
        return self._execute(lambda session: catalog.update_package(session, package_id, updates))

    def archive_package(self, package_id: int, archived: bool = True) -> PackageView:
        """Archive (or restore) an award criteria package."""
        return self._execute(
            lambda session: catalog.set_package_archived(session, package_id, archived)
        )

    def delete_package(self, package_id: int) -> None:
        """Delete a package that has never executed."""
        self._execute(lambda session: catalog.delete_package(session, package_id))

    def get_package(self, package_id: int) -> PackageView:
        """Return one award criteria package."""
        return self._execute(lambda session: catalog.get_package(session, package_id))

    def list_packages(self, event_id: int) -> list[PackageView]:
        """Return the award criteria packages of an event."""
        return self._execute(lambda session: catalog.list_packages(session, event_id))

    # Exceptions

    def add_exception(self, payload: ExceptionCreateInput) -> ExceptionView:
        """Add an exception overriding standard criteria for one triple."""
        return self._execute(lambda session: award_exceptions.add_exception(session, payload))

    def update_exception(
        self,
        exception_id: int,
        *,
        justification: str,
        admin_user_id: int | None = None,
    ) -> ExceptionView:
        """Replace the justification of an exception."""
        return self._execute(
            lambda session: award_exceptions.update_exception(
                session,
                exception_id,
                justification=justification,
                admin_user_id=admin_user_id,
            )
        )

    def remove_exception(self, exception_id: int) -> None:
        """Remove an exception."""
        self._execute(lambda session: award_exceptions.remove_exception(session, exception_id))

    def get_exception(self, exception_id: int) -> ExceptionView:
        """Return one exception."""
        return self._read(lambda session: award_exceptions.get_exception(session, exception_id))

    def list_exceptions(self, exception_filter: ExceptionFilter) -> list[ExceptionView]:
        """Return exceptions matching a filter."""
        return self._execute(
            lambda session: award_exceptions.list_exceptions(session, exception_filter)
        )

    # Evaluation

    def preview_award(
        self,
        package_id: int,
        *,
        category_id: int | None = None,
        session_id: int | None = None,
    ) -> EvaluationResult:
        """Return the anticipated awards and declines without writing anything."""
        return self._read(
            lambda session: evaluate_package(
                session, package_id, category_id=category_id, session_id=session_id
            )
        )

    def affected_attendee_count(self, package_id: int, *, test_mode: bool = False) -> int:
        """Return how many distinct attendees a run would award."""

        def handler(session: Session) -> int:
            result = evaluate_package(session, package_id)
            if test_mode:
                return 1 if representative_attendee(result) in result.award_attendee_ids else 0
            return len(result.award_attendee_ids)

        return self._read(handler)

    # Grants

    def create_grant(
        self,
        payload: GrantCreateInput,
        *,
        now: datetime | None = None,
    ) -> tuple[GrantView, ExecutionResult | None]:
        """Create a grant; test-mode grants execute immediately."""
        now = ensure_utc(now or utc_now())
        grant = self._execute(lambda session: grant_view(create_grant(session, payload, now=now)))
        if not payload.test_mode:
            return grant, None
        result = self._run_leased(grant.id, trigger="creation", test_mode=True, now=now)
        return self.get_grant(grant.id), result

    def run_grant_now(
        self,
        grant_id: int,
        *,
        test_mode: bool | None = None,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Execute a grant immediately regardless of its schedule."""
        now = ensure_utc(now or utc_now())
        return self._run_leased(
            grant_id,
            trigger="manual",
            test_mode=test_mode,
            now=now,
            cancel_event=cancel_event,
        )

    def archive_grant(self, grant_id: int) -> GrantView:
        """Archive a grant so it is never swept again."""
        return self._execute(lambda session: grant_view(archive_grant(session, grant_id)))

    def get_grant(self, grant_id: int) -> GrantView:
        """Return one grant."""
        return self._execute(lambda session: grant_view(fetch_grant(session, grant_id)))

    def list_grants(self, event_id: int, *, scheduled: bool | None = None) -> list[GrantView]:
        """Return the active grants of an event."""
        return self._execute(
            lambda session: [
                grant_view(grant) for grant in list_grants(session, event_id, scheduled=scheduled)
            ]
        )

    def run_due_grants(
        self,
        *,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """Run one scheduling sweep over every due recurring grant."""
        from credits.sweep import GrantSweepJob

        job = GrantSweepJob(self._session_factory, self._executor, leases=self._leases)
        return job.run(now=now, cancel_event=cancel_event)

    # History

    def execution_history(
        self,
        event_id: int,
        *,
        scheduled: bool | None = None,
    ) -> list[ExecutionSummary]:
        """Return the run history of an event."""
        return self._read(
            lambda session: history.execution_history(session, event_id, scheduled=scheduled)
        )

    def execution_detail(
        self,
        execution_log_id: int,
        *,
        category_id: int | None = None,
        session_id: int | None = None,
    ) -> ExecutionDetail:
        """Return the awarded and declined lines of one run."""
        return self._read(
            lambda session: history.execution_detail(
                session, execution_log_id, category_id=category_id, session_id=session_id
            )
        )

    def awarded_by_category(self, event_id: int, category_id: int) -> list[CategoryAwardLine]:
        """Return the award report for a category."""
        return self._read(
            lambda session: history.awarded_by_category(session, event_id, category_id)
        )

    def credits_for_user(self, user_id: int) -> list[UserCreditLine]:
        """Return the transcript credits of a user."""
        return self._read(lambda session: history.credits_for_user(session, user_id))

    # Revocation

    def unaward(self, award_id: int) -> UnawardResult:
        """Revoke one award and suppress its re-award."""
        return self._execute(lambda session: revocation.unaward(session, award_id))

    def reset_package(self, package_id: int) -> ResetSummary:
        """Rewind a package's entire award history."""
        return self._execute(lambda session: revocation.reset_package(session, package_id))

    def _run_leased(self, grant_id: int, *, now: datetime, **kwargs) -> ExecutionResult:
        """Execute under the grant lease, then move a passed recurring schedule forward."""
        with self._leases.lease(grant_id):
            logger.debug("Acquired lease for grant %s.", grant_id)
            try:
                return self._executor.execute(grant_id, now=now, **kwargs)
            finally:
                self._execute(
                    lambda session: advance_next_run(session, fetch_grant(session, grant_id), now=now)
                )

    def _read(self, handler):
        """Run read-only work inside a session that is never committed."""
        with closing(self._session_factory()) as session:
            return handler(session)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with session_scope(self._session_factory) as session:
            session.expire_on_commit = False
            return handler(session)
