"""Track which package each revoked award belonged to.

Revision ID: 0002_award_revocations
Revises: 0001_credit_engine
Create Date: 2026-10-19 12:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_award_revocations"
down_revision = "0001_credit_engine"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the award_revocations table."""
    op.create_table(
        "award_revocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "package_id",
            sa.Integer(),
            sa.ForeignKey("award_criteria_packages.id"),
            nullable=False,
        ),
        sa.Column("attendee_id", sa.Integer(), sa.ForeignKey("attendees.id"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("credit_categories.id"), nullable=False
        ),
        sa.Column("award_id", sa.Integer(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_award_revocations_pair",
        "award_revocations",
        ["attendee_id", "session_id"],
    )
    op.create_index("ix_award_revocations_package", "award_revocations", ["package_id"])


def downgrade() -> None:
    """Drop the award_revocations table."""
    op.drop_index("ix_award_revocations_package", table_name="award_revocations")
    op.drop_index("ix_award_revocations_pair", table_name="award_revocations")
    op.drop_table("award_revocations")
