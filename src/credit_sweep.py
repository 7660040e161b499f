"""Run the recurring grant sweep on a fixed interval."""

import argparse
import logging
import signal
import threading

from config import settings
from credits.executor import GrantExecutor
from credits.leases import GrantLeaseRegistry
from credits.sweep import GrantSweepJob, SweepSummary
from observability import configure_logging
from services.database import build_engine, build_session_factory, check_connection, run_migrations

logger = logging.getLogger(__name__)


def run_sweep_loop(
    job: GrantSweepJob,
    interval_seconds: int,
    stop_event: threading.Event,
    *,
    once: bool = False,
) -> list[SweepSummary]:
    """Run sweep cycles until stopped; return the summaries produced."""
    summaries: list[SweepSummary] = []
    while not stop_event.is_set():
        summary = job.run(cancel_event=stop_event)
        summaries.append(summary)
        logger.info(
            "Sweep complete: due=%s executed=%s busy=%s failed=%s",
            summary.due_count,
            len(summary.executed),
            len(summary.busy_grant_ids),
            len(summary.failed_grant_ids),
        )
        if once:
            break
        stop_event.wait(interval_seconds)
    return summaries


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Execute due recurring credit grants")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.credits.sweep_interval_seconds,
        help="Seconds between sweeps"
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Apply database migrations before sweeping"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    configure_logging(settings.log_level, json_output=settings.log_json)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        for handler in logging.getLogger().handlers:
            handler.setLevel(logging.DEBUG)

    if args.interval < 1:
        parser.error("--interval must be >= 1")

    if args.migrate:
        run_migrations()

    stop_event = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("Received signal %s; stopping after the current batch.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    engine = build_engine()
    try:
        if not check_connection(engine):
            raise SystemExit(1)
        session_factory = build_session_factory(engine)
        job = GrantSweepJob(
            session_factory,
            GrantExecutor(session_factory),
            leases=GrantLeaseRegistry(),
        )
        run_sweep_loop(job, args.interval, stop_event, once=args.once)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
