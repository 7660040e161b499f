"""Unit tests for the sweep command loop."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from credit_sweep import run_sweep_loop
from credits.sweep import SweepSummary


class StubJob:
    """Sweep job stub counting runs and stopping after a limit."""

    def __init__(self, stop_event: threading.Event, stop_after: int) -> None:
        self.calls = 0
        self._stop_event = stop_event
        self._stop_after = stop_after

    def run(self, now=None, cancel_event=None) -> SweepSummary:
        self.calls += 1
        if self.calls >= self._stop_after:
            self._stop_event.set()
        return SweepSummary(swept_at=datetime(2026, 3, 2, tzinfo=timezone.utc))


def test_once_runs_single_sweep() -> None:
    """--once performs exactly one sweep."""
    stop_event = threading.Event()
    job = StubJob(stop_event, stop_after=99)

    summaries = run_sweep_loop(job, 1, stop_event, once=True)

    assert job.calls == 1
    assert len(summaries) == 1


def test_loop_stops_when_signalled() -> None:
    """The loop exits once the stop event is set."""
    stop_event = threading.Event()
    job = StubJob(stop_event, stop_after=3)

    summaries = run_sweep_loop(job, 0, stop_event)

    assert job.calls == 3
    assert len(summaries) == 3
