"""Store the first scheduled occurrence of recurring grants.

Revision ID: 0003_grant_recurrence_start
Revises: 0002_award_revocations
Create Date: 2026-10-19 12:30:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0003_grant_recurrence_start"
down_revision = "0002_award_revocations"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add credit_grants.recurrence_start_at and backfill it from next_run_at."""
    op.add_column(
        "credit_grants",
        sa.Column("recurrence_start_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.execute(
        "UPDATE credit_grants SET recurrence_start_at = next_run_at "
        "WHERE run_type = 'recurring'"
    )


def downgrade() -> None:
    """Drop credit_grants.recurrence_start_at."""
    op.drop_column("credit_grants", "recurrence_start_at")
