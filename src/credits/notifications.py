"""Post-execution notice contract for certificate and email delivery.

Rendering and delivery live outside the engine; it only hands listeners the
grant's template ids and the list of credits awarded by one execution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol


@dataclass(frozen=True)
class AwardNotice:
    """One awarded credit as delivered to notification consumers."""

    award_id: int
    attendee_id: int
    session_id: int
    category_id: int
    credit_value: Decimal


@dataclass(frozen=True)
class ExecutionNotice:
    """Data handed to listeners after a grant execution completes."""

    grant_id: int
    execution_log_id: int
    event_id: int
    certificate_template_id: int | None
    email_template_id: int | None
    test_mode: bool
    awards: tuple[AwardNotice, ...] = field(default_factory=tuple)


class ExecutionListener(Protocol):
    """Receiver of execution notices for grants with ``notify`` enabled."""

    def on_execution_complete(self, notice: ExecutionNotice) -> None:
        """Handle a completed execution."""
