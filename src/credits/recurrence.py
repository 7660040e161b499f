"""Recurrence rules for recurring grants and next-run computation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrulestr

from config import settings
from credits.errors import CreditValidationError
from models import RecurrenceIntervalUnitEnum
from time_utils import ensure_utc, to_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecurrenceRule:
    """Interval or calendar rule for a recurring grant."""

    interval_count: int | None = None
    interval_unit: str | None = None
    rrule: str | None = None

    @staticmethod
    def from_settings() -> "RecurrenceRule":
        """Build the default interval rule from credit settings."""
        credits_config = settings.credits
        return RecurrenceRule(
            interval_count=int(credits_config.default_recurrence_interval_count),
            interval_unit=str(credits_config.default_recurrence_interval_unit),
        )


def resolve_recurrence_rule(rule: RecurrenceRule | None) -> RecurrenceRule:
    """Return a validated rule, defaulting to settings when unset or empty."""
    if rule is None or (rule.rrule is None and rule.interval_count is None):
        rule = RecurrenceRule.from_settings()
    validate_recurrence_rule(rule)
    return rule


def validate_recurrence_rule(rule: RecurrenceRule) -> None:
    """Validate that exactly one of the interval or calendar forms is set."""
    if rule.rrule is not None:
        if rule.interval_count is not None or rule.interval_unit is not None:
            raise CreditValidationError("Recurrence takes either an interval or an rrule, not both.")
        try:
            rrulestr(rule.rrule, dtstart=datetime(2000, 1, 1, tzinfo=timezone.utc))
        except (ValueError, TypeError) as exc:
            raise CreditValidationError(f"Invalid rrule: {rule.rrule}") from exc
        return
    if rule.interval_count is None or rule.interval_count < 1:
        raise CreditValidationError("interval_count must be >= 1.")
    if rule.interval_unit not in RecurrenceIntervalUnitEnum.enums:
        raise CreditValidationError(f"Invalid interval_unit: {rule.interval_unit}.")



def compute_next_run(
    rule: RecurrenceRule,
    anchor_at: datetime,
    *,
    reference_time: datetime,
    series_start: datetime | None = None,
) -> datetime | None:
    """Return the first occurrence of the rule strictly after the reference time.

    Occurrences are anchored on ``anchor_at`` (the previous next-run time), so
    the cadence does not drift with execution latency and missed windows are
    skipped rather than replayed. Monthly steps are counted from
    ``series_start`` so a month-end clamp is not carried forward.
    """
    if rule.rrule is not None:
        return compute_calendar_next_run(rule.rrule, anchor_at, reference_time=reference_time)
    return compute_interval_next_run(
        rule.interval_count,
        rule.interval_unit,
        anchor_at,
        reference_time=reference_time,
        series_start=series_start,
    )


def compute_interval_next_run(
    interval_count: int | None,
    interval_unit: str | None,
    anchor_at: datetime | None,
    *,
    reference_time: datetime,
    series_start: datetime | None = None,
) -> datetime | None:
    """Compute the next interval occurrence after a reference timestamp.

    Minute and hour intervals are exact elapsed time. Day, week, and month
    intervals keep the local wall-clock time across daylight saving changes.
    """
    if interval_count is None or interval_count <= 0 or interval_unit is None:
        return None
    reference = ensure_utc(reference_time)
    anchor = ensure_utc(anchor_at) if anchor_at else reference
    if anchor > reference:
        return anchor
    if interval_unit == "month":
        start = ensure_utc(series_start) if series_start else anchor
        return _next_monthly(interval_count, start, anchor, reference)
    step = _interval_delta(interval_count, interval_unit)
    if step is None:
        return None
    if interval_unit in ("minute", "hour"):
        elapsed_cycles = (reference - anchor) // step
        return anchor + step * (elapsed_cycles + 1)
    local_anchor = to_local(anchor)
    elapsed_cycles = (to_local(reference) - local_anchor) // step
    candidate = local_anchor + step * (elapsed_cycles + 1)
    while ensure_utc(candidate) <= reference:
        candidate += step
    return ensure_utc(candidate)


def compute_calendar_next_run(
    rrule_value: str,
    anchor_at: datetime | None,
    *,
    reference_time: datetime,
) -> datetime | None:
    """Compute the next calendar rule occurrence after the reference timestamp.

    The rule is expanded in the configured local timezone, so ``BYHOUR`` and
    ``BYDAY`` refer to local wall-clock time.
    """
    reference = ensure_utc(reference_time)
    anchor = to_local(ensure_utc(anchor_at) if anchor_at else reference)
    try:
        rule = rrulestr(rrule_value, dtstart=anchor)
    except (ValueError, TypeError) as exc:
        logger.warning("Failed to parse RRULE '%s': %s", rrule_value, exc)
        return None
    next_occurrence = rule.after(to_local(reference), inc=False)
    if next_occurrence is None:
        return None
    return ensure_utc(next_occurrence)


def _next_monthly(
    interval_count: int,
    series_start: datetime,
    anchor: datetime,
    reference: datetime,
) -> datetime:
    """Return the first monthly occurrence after both the anchor and the reference."""
    start = to_local(series_start)
    local_anchor = to_local(anchor)
    months = (local_anchor.year - start.year) * 12 + local_anchor.month - start.month
    index = max(months // interval_count, 0) + 1
    while True:
        candidate = ensure_utc(start + relativedelta(months=interval_count * index))
        if candidate > reference and candidate > anchor:
            return candidate
        index += 1


def _interval_delta(count: int, unit: str) -> timedelta | None:
    if unit == "minute":
        return timedelta(minutes=count)
    if unit == "hour":
        return timedelta(hours=count)
    if unit == "day":
        return timedelta(days=count)
    if unit == "week":
        return timedelta(weeks=count)
    return None
