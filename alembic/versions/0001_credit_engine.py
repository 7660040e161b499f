"""Credit award engine schema.

Revision ID: 0001_credit_engine
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_credit_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create attendance, catalog, grant, and award tables."""
    op.create_table(
        "attendees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("first_name", sa.String(length=200), nullable=True),
        sa.Column("last_name", sa.String(length=200), nullable=True),
        sa.Column("profile_id", sa.Integer(), nullable=True),
        sa.Column("jurisdiction_code", sa.String(length=16), nullable=True),
        sa.Column("event_checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("balance_due", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column(
            "registration_complete", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
    )
    op.create_index("ix_attendees_event_id", "attendees", ["event_id"])
    op.create_index("ix_attendees_user_id", "attendees", ["user_id"])

    op.create_table(
        "event_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("survey_id", sa.Integer(), nullable=True),
    )
    op.create_index("ix_event_sessions_event_id", "event_sessions", ["event_id"])

    op.create_table(
        "credit_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_credit_categories_event_id", "credit_categories", ["event_id"])

    op.create_table(
        "session_credit_values",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("credit_value", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.UniqueConstraint("session_id", "category_id", name="uq_session_credit_values_pair"),
        sa.CheckConstraint("credit_value >= 0", name="ck_session_credit_values_nonnegative"),
    )

    op.create_table(
        "session_registrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("attendee_id", sa.Integer(), sa.ForeignKey("attendees.id"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("survey_responded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scratched", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("do_not_award", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("attendee_id", "session_id", name="uq_session_registrations_pair"),
    )

    op.create_table(
        "credit_category_jurisdictions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("jurisdiction_code", sa.String(length=16), nullable=False),
        sa.UniqueConstraint(
            "category_id", "jurisdiction_code", name="uq_credit_category_jurisdiction"
        ),
    )
    op.create_table(
        "credit_category_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("category_id", "profile_id", name="uq_credit_category_profile"),
    )

    op.create_table(
        "award_criteria_packages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "attendance_criterion",
            sa.Enum(
                "none",
                "event_check_in",
                "session_check_in",
                "session_check_in_and_out",
                name="attendance_criterion",
                native_enum=False,
            ),
            nullable=False,
            server_default="none",
        ),
        sa.Column(
            "payment_in_full_required", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("survey_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_award_criteria_packages_event_id", "award_criteria_packages", ["event_id"]
    )
    op.create_table(
        "award_package_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "package_id",
            sa.Integer(),
            sa.ForeignKey("award_criteria_packages.id"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.UniqueConstraint("package_id", "category_id", name="uq_award_package_category"),
    )

    op.create_table(
        "credit_grants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column(
            "package_id",
            sa.Integer(),
            sa.ForeignKey("award_criteria_packages.id"),
            nullable=False,
        ),
        sa.Column("admin_id", sa.Integer(), nullable=False),
        sa.Column("certificate_template_id", sa.Integer(), nullable=True),
        sa.Column("email_template_id", sa.Integer(), nullable=True),
        sa.Column("notify", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "run_type",
            sa.Enum("once", "recurring", name="grant_run_type", native_enum=False),
            nullable=False,
        ),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("interval_count", sa.Integer(), nullable=True),
        sa.Column(
            "interval_unit",
            sa.Enum(
                "minute",
                "hour",
                "day",
                "week",
                "month",
                name="recurrence_interval_unit",
                native_enum=False,
            ),
            nullable=True,
        ),
        sa.Column("rrule", sa.String(length=1000), nullable=True),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_credit_grants_event_id", "credit_grants", ["event_id"])

    op.create_table(
        "grant_execution_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("grant_id", sa.Integer(), sa.ForeignKey("credit_grants.id"), nullable=False),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "running",
                "succeeded",
                "failed",
                "canceled",
                name="grant_execution_status",
                native_enum=False,
            ),
            nullable=False,
            server_default="running",
        ),
        sa.Column(
            "trigger",
            sa.Enum(
                "scheduled",
                "manual",
                "creation",
                name="grant_execution_trigger",
                native_enum=False,
            ),
            nullable=False,
            server_default="manual",
        ),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_grant_execution_logs_grant_run", "grant_execution_logs", ["grant_id", "run_at"]
    )

    op.create_table(
        "credit_awards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "execution_log_id",
            sa.Integer(),
            sa.ForeignKey("grant_execution_logs.id"),
            nullable=False,
        ),
        sa.Column("attendee_id", sa.Integer(), sa.ForeignKey("attendees.id"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("credit_value", sa.Numeric(8, 2), nullable=False),
        sa.Column("awarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "attendee_id", "session_id", "category_id", name="uq_credit_awards_triple"
        ),
        sa.CheckConstraint("credit_value >= 0", name="ck_credit_awards_nonnegative"),
    )

    op.create_table(
        "credit_declines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "execution_log_id",
            sa.Integer(),
            sa.ForeignKey("grant_execution_logs.id"),
            nullable=False,
        ),
        sa.Column("attendee_id", sa.Integer(), sa.ForeignKey("attendees.id"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("credit_value", sa.Numeric(8, 2), nullable=False),
        sa.Column("reasons", sa.String(length=200), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_credit_declines_triple",
        "credit_declines",
        ["attendee_id", "session_id", "category_id"],
    )

    op.create_table(
        "award_exceptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("attendee_id", sa.Integer(), sa.ForeignKey("attendees.id"), nullable=False),
        sa.Column(
            "package_id",
            sa.Integer(),
            sa.ForeignKey("award_criteria_packages.id"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column("justification", sa.Text(), nullable=False),
        sa.Column("admin_user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "attendee_id",
            "package_id",
            "category_id",
            "session_id",
            name="uq_award_exceptions_key",
        ),
    )


def downgrade() -> None:
    """Drop credit engine tables."""
    op.drop_table("award_exceptions")
    op.drop_index("ix_credit_declines_triple", table_name="credit_declines")
    op.drop_table("credit_declines")
    op.drop_table("credit_awards")
    op.drop_index("ix_grant_execution_logs_grant_run", table_name="grant_execution_logs")
    op.drop_table("grant_execution_logs")
    op.drop_index("ix_credit_grants_event_id", table_name="credit_grants")
    op.drop_table("credit_grants")
    op.drop_table("award_package_categories")
    op.drop_index("ix_award_criteria_packages_event_id", table_name="award_criteria_packages")
    op.drop_table("award_criteria_packages")
    op.drop_table("credit_category_profiles")
    op.drop_table("credit_category_jurisdictions")
    op.drop_table("session_registrations")
    op.drop_table("session_credit_values")
    op.drop_index("ix_credit_categories_event_id", table_name="credit_categories")
    op.drop_table("credit_categories")
    op.drop_index("ix_event_sessions_event_id", table_name="event_sessions")
    op.drop_table("event_sessions")
    op.drop_index("ix_attendees_user_id", table_name="attendees")
    op.drop_index("ix_attendees_event_id", table_name="attendees")
    op.drop_table("attendees")
