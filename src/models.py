"""Data models for the credit award engine."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from time_utils import utc_now

# SQLAlchemy base
Base = declarative_base()


# Credit engine enums
AttendanceCriterionEnum = Enum(
    "none",
    "event_check_in",
    "session_check_in",
    "session_check_in_and_out",
    name="attendance_criterion",
    native_enum=False,
)
GrantRunTypeEnum = Enum(
    "once",
    "recurring",
    name="grant_run_type",
    native_enum=False,
)
RecurrenceIntervalUnitEnum = Enum(
    "minute",
    "hour",
    "day",
    "week",
    "month",
    name="recurrence_interval_unit",
    native_enum=False,
)
GrantExecutionStatusEnum = Enum(
    "running",
    "succeeded",
    "failed",
    "canceled",
    name="grant_execution_status",
    native_enum=False,
)
GrantExecutionTriggerEnum = Enum(
    "scheduled",
    "manual",
    "creation",
    name="grant_execution_trigger",
    native_enum=False,
)


# External collaborator tables: registration and attendance facts.
class Attendee(Base):
    """Event registrant (contestant) with event-level attendance and payment facts."""

    __tablename__ = "attendees"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    first_name = Column(String(200), nullable=True)
    last_name = Column(String(200), nullable=True)
    profile_id = Column(Integer, nullable=True)
    jurisdiction_code = Column(String(16), nullable=True)
    event_checked_in_at = Column(DateTime(timezone=True), nullable=True)
    balance_due = Column(Numeric(12, 2), nullable=False, default=0)
    registration_complete = Column(Boolean, nullable=False, default=True)


class EventSession(Base):
    """Session (registration item) that can carry credit."""

    __tablename__ = "event_sessions"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, nullable=False, index=True)
    name = Column(String(500), nullable=False)
    survey_id = Column(Integer, nullable=True)


class SessionCreditValue(Base):
    """Configured credit value of a session for one credit category."""

    __tablename__ = "session_credit_values"
    __table_args__ = (
        UniqueConstraint("session_id", "category_id", name="uq_session_credit_values_pair"),
        CheckConstraint("credit_value >= 0", name="ck_session_credit_values_nonnegative"),
    )

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    credit_value = Column(Numeric(8, 2), nullable=False, default=0)


class SessionRegistration(Base):
    """Attendee registration for one session with session-level attendance facts."""

    __tablename__ = "session_registrations"
    __table_args__ = (
        UniqueConstraint("attendee_id", "session_id", name="uq_session_registrations_pair"),
    )

    id = Column(Integer, primary_key=True)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_out_at = Column(DateTime(timezone=True), nullable=True)
    survey_responded = Column(Boolean, nullable=False, default=False)
    scratched = Column(Boolean, nullable=False, default=False)
    do_not_award = Column(Boolean, nullable=False, default=False)


# Criteria catalog
class CreditCategory(Base):
    """Named class of continuing-education credit for an event."""

    __tablename__ = "credit_categories"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class CreditCategoryJurisdiction(Base):
    """Jurisdiction restriction for a credit category."""

    __tablename__ = "credit_category_jurisdictions"
    __table_args__ = (
        UniqueConstraint(
            "category_id", "jurisdiction_code", name="uq_credit_category_jurisdiction"
        ),
    )

    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    jurisdiction_code = Column(String(16), nullable=False)


class CreditCategoryProfile(Base):
    """Attendee profile restriction for a credit category."""

    __tablename__ = "credit_category_profiles"
    __table_args__ = (
        UniqueConstraint("category_id", "profile_id", name="uq_credit_category_profile"),
    )

    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    profile_id = Column(Integer, nullable=False)


class AwardCriteriaPackage(Base):
    """Bundle of eligibility criteria bound to one or more credit categories."""

    __tablename__ = "award_criteria_packages"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    attendance_criterion = Column(AttendanceCriterionEnum, nullable=False, default="none")
    payment_in_full_required = Column(Boolean, nullable=False, default=False)
    survey_required = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class AwardPackageCategory(Base):
    """Link between an award criteria package and a credit category."""

    __tablename__ = "award_package_categories"
    __table_args__ = (
        UniqueConstraint("package_id", "category_id", name="uq_award_package_category"),
    )

    id = Column(Integer, primary_key=True)
    package_id = Column(Integer, ForeignKey("award_criteria_packages.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)


# Grants and audit trail
class CreditGrant(Base):
    """Configured, possibly recurring, instruction to award credit for a package."""

    __tablename__ = "credit_grants"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("award_criteria_packages.id"), nullable=False)
    admin_id = Column(Integer, nullable=False)
    certificate_template_id = Column(Integer, nullable=True)
    email_template_id = Column(Integer, nullable=True)
    notify = Column(Boolean, nullable=False, default=False)
    run_type = Column(GrantRunTypeEnum, nullable=False)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    recurrence_start_at = Column(DateTime(timezone=True), nullable=True)
    interval_count = Column(Integer, nullable=True)
    interval_unit = Column(RecurrenceIntervalUnitEnum, nullable=True)
    rrule = Column(String(1000), nullable=True)
    test_mode = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class GrantExecutionLog(Base):
    """Append-only audit anchor for one execution of a grant."""

    __tablename__ = "grant_execution_logs"
    __table_args__ = (Index("ix_grant_execution_logs_grant_run", "grant_id", "run_at"),)

    id = Column(Integer, primary_key=True)
    grant_id = Column(Integer, ForeignKey("credit_grants.id"), nullable=False)
    run_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(GrantExecutionStatusEnum, nullable=False, default="running")
    trigger = Column(GrantExecutionTriggerEnum, nullable=False, default="manual")
    test_mode = Column(Boolean, nullable=False, default=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)


class CreditAward(Base):
    """Credit granted to an attendee for a session and category."""

    __tablename__ = "credit_awards"
    __table_args__ = (
        UniqueConstraint(
            "attendee_id",
            "session_id",
            "category_id",
            name="uq_credit_awards_triple",
        ),
        CheckConstraint("credit_value >= 0", name="ck_credit_awards_nonnegative"),
    )

    id = Column(Integer, primary_key=True)
    execution_log_id = Column(Integer, ForeignKey("grant_execution_logs.id"), nullable=False)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    credit_value = Column(Numeric(8, 2), nullable=False)
    awarded_at = Column(DateTime(timezone=True), default=utc_now)


class CreditDecline(Base):
    """Evaluated-and-ineligible outcome kept for audit and reporting."""

    __tablename__ = "credit_declines"
    __table_args__ = (
        Index("ix_credit_declines_triple", "attendee_id", "session_id", "category_id"),
    )

    id = Column(Integer, primary_key=True)
    execution_log_id = Column(Integer, ForeignKey("grant_execution_logs.id"), nullable=False)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    credit_value = Column(Numeric(8, 2), nullable=False)
    reasons = Column(String(200), nullable=True)
    declined_at = Column(DateTime(timezone=True), default=utc_now)


class AwardException(Base):
    """Administrator override forcing eligibility for one attendee/session/category."""

    __tablename__ = "award_exceptions"
    __table_args__ = (
        UniqueConstraint(
            "attendee_id",
            "package_id",
            "category_id",
            "session_id",
            name="uq_award_exceptions_key",
        ),
    )

    id = Column(Integer, primary_key=True)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    package_id = Column(Integer, ForeignKey("award_criteria_packages.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False)
    justification = Column(Text, nullable=False)
    admin_user_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class AwardRevocation(Base):
    """Revoked award whose attendee/session pair stays suppressed for a package."""

    __tablename__ = "award_revocations"
    __table_args__ = (
        Index("ix_award_revocations_pair", "attendee_id", "session_id"),
        Index("ix_award_revocations_package", "package_id"),
    )

    id = Column(Integer, primary_key=True)
    package_id = Column(Integer, ForeignKey("award_criteria_packages.id"), nullable=False)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("credit_categories.id"), nullable=False)
    award_id = Column(Integer, nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utc_now)
