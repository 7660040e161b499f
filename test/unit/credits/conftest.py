"""Shared builders for credit engine tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from credits import catalog
from credits.catalog import CategoryCreateInput, PackageCreateInput
from credits.grants import GrantCreateInput, create_grant
from credits.recurrence import RecurrenceRule
from credits.service import CreditAwardService
from models import Attendee, CreditAward, EventSession, SessionCreditValue, SessionRegistration

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class CreditWorld:
    """Small builder for events, attendance facts, and catalog rows."""

    def __init__(self, factory: sessionmaker, event_id: int = 1) -> None:
        self.factory = factory
        self.event_id = event_id

    def _add(self, record) -> int:
        with self.factory() as session:
            session.add(record)
            session.commit()
            return record.id

    def attendee(
        self,
        *,
        first_name: str = "Ada",
        last_name: str = "Lovelace",
        user_id: int | None = None,
        checked_in: bool = True,
        balance_due: str = "0",
        profile_id: int | None = None,
        jurisdiction_code: str | None = None,
        registration_complete: bool = True,
    ) -> int:
        """Create an attendee and return its id."""
        return self._add(
            Attendee(
                event_id=self.event_id,
                user_id=user_id,
                first_name=first_name,
                last_name=last_name,
                profile_id=profile_id,
                jurisdiction_code=jurisdiction_code,
                event_checked_in_at=NOW if checked_in else None,
                balance_due=Decimal(balance_due),
                registration_complete=registration_complete,
            )
        )

    def event_session(self, name: str = "Keynote", *, survey: bool = False) -> int:
        """Create a session and return its id."""
        return self._add(
            EventSession(event_id=self.event_id, name=name, survey_id=7 if survey else None)
        )

    def category(self, name: str = "CME", **kwargs) -> int:
        """Create a credit category and return its id."""
        with self.factory() as session:
            view = catalog.create_category(
                session, CategoryCreateInput(event_id=self.event_id, name=name, **kwargs)
            )
            session.commit()
            return view.id

    def credit(self, session_id: int, category_id: int, value: str = "1.5") -> None:
        """Attach a credit value for a category to a session."""
        self._add(
            SessionCreditValue(
                session_id=session_id,
                category_id=category_id,
                credit_value=Decimal(value),
            )
        )

    def register(
        self,
        attendee_id: int,
        session_id: int,
        *,
        checked_in: bool = True,
        checked_out: bool = True,
        survey_responded: bool = False,
        scratched: bool = False,
        do_not_award: bool = False,
    ) -> int:
        """Register an attendee for a session and return the registration id."""
        return self._add(
            SessionRegistration(
                attendee_id=attendee_id,
                session_id=session_id,
                checked_in_at=NOW if checked_in else None,
                checked_out_at=NOW if checked_out else None,
                survey_responded=survey_responded,
                scratched=scratched,
                do_not_award=do_not_award,
            )
        )

    def package(self, category_ids, name: str = "Standard", **kwargs) -> int:
        """Create an award criteria package and return its id."""
        with self.factory() as session:
            view = catalog.create_package(
                session,
                PackageCreateInput(
                    event_id=self.event_id,
                    name=name,
                    category_ids=tuple(category_ids),
                    **kwargs,
                ),
            )
            session.commit()
            return view.id

    def grant(
        self,
        package_id: int,
        *,
        run_type: str = "once",
        next_run_at: datetime | None = None,
        recurrence: RecurrenceRule | None = None,
        **kwargs,
    ) -> int:
        """Create a grant directly (without test-mode execution) and return its id."""
        with self.factory() as session:
            grant = create_grant(
                session,
                GrantCreateInput(
                    event_id=self.event_id,
                    package_id=package_id,
                    admin_id=99,
                    run_type=run_type,
                    next_run_at=next_run_at,
                    recurrence=recurrence,
                    **kwargs,
                ),
                now=NOW,
            )
            session.commit()
            return grant.id

    def set_attendee(self, attendee_id: int, **values) -> None:
        """Update attendee-level facts such as balance due."""
        with self.factory() as session:
            attendee = session.get(Attendee, attendee_id)
            for key, value in values.items():
                setattr(attendee, key, value)
            session.commit()

    def set_registration(self, registration_id: int, **values) -> None:
        """Update attendance facts on a registration."""
        with self.factory() as session:
            registration = session.get(SessionRegistration, registration_id)
            for key, value in values.items():
                setattr(registration, key, value)
            session.commit()

    def awards(self) -> list[CreditAward]:
        """Return every persisted award ordered by id."""
        with self.factory() as session:
            session.expire_on_commit = False
            return list(session.query(CreditAward).order_by(CreditAward.id).all())

    def registration(self, registration_id: int) -> SessionRegistration:
        """Return a registration row."""
        with self.factory() as session:
            return session.get(SessionRegistration, registration_id)

    def simple_setup(self, *, attendees: int = 2, **package_kwargs) -> dict[str, object]:
        """Create one session, one category, a package, and registered attendees."""
        session_id = self.event_session()
        category_id = self.category()
        self.credit(session_id, category_id)
        package_id = self.package([category_id], **package_kwargs)
        attendee_ids = []
        registration_ids = []
        for index in range(attendees):
            attendee_id = self.attendee(first_name=f"Attendee{index}")
            attendee_ids.append(attendee_id)
            registration_ids.append(self.register(attendee_id, session_id))
        return {
            "session_id": session_id,
            "category_id": category_id,
            "package_id": package_id,
            "attendee_ids": attendee_ids,
            "registration_ids": registration_ids,
        }


@pytest.fixture()
def world(sqlite_session_factory: sessionmaker) -> CreditWorld:
    """Provide a credit world builder bound to the sqlite session factory."""
    return CreditWorld(sqlite_session_factory)


@pytest.fixture()
def service(sqlite_session_factory: sessionmaker) -> CreditAwardService:
    """Provide a credit award service bound to the sqlite session factory."""
    return CreditAwardService(sqlite_session_factory)
