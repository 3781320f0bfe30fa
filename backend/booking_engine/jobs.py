#!/usr/bin/env python3
"""
Scheduled jobs for the booking engine.

Usage:
    booking-engine-jobs expire-holds
    booking-engine-jobs close-stale-shifts [--before 2024-01-26]
    booking-engine-jobs recalculate-ratings [--days-back 7]
    booking-engine-jobs recalculate-ratings --start 2024-01-01 --end 2024-01-31

Every job is safe to run from several hosts at once. Exit code 0 means every
item succeeded, 1 means some items failed (details in the log), 2 means the
job could not run at all.
"""

import argparse
import logging
import signal
import sys
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from booking_engine.core.errors import BatchPartialFailure, BookingEngineError
from booking_engine.db.session import SessionLocal
from booking_engine.services.rating_aggregator import RatingAggregator
from booking_engine.services.shift_settlement import ShiftSettlementCalculator
from booking_engine.services.slot_guard import SlotAvailabilityGuard

logger = logging.getLogger("booking_engine.jobs")

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FAILED = 2


class StopFlag:
    """Flips on SIGTERM/SIGINT so long batches stop between entities."""

    def __init__(self):
        self.stopped = False

    def __call__(self) -> bool:
        return self.stopped

    def install(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle)

    def _handle(self, signum, frame):
        logger.warning("Received signal %s, stopping after the current entity", signum)
        self.stopped = True


def expire_holds(db: Session) -> int:
    released = SlotAvailabilityGuard(db).release_expired_holds()
    logger.info("expire-holds: released %d holds", released)
    return EXIT_OK


def close_stale_shifts(db: Session, before: Optional[date] = None) -> int:
    report = ShiftSettlementCalculator(db).close_stale_shifts(before=before)
    logger.info("close-stale-shifts: closed %d, failed %d", len(report.closed), len(report.errors))
    return EXIT_PARTIAL if report.errors else EXIT_OK


def recalculate_ratings(
    db: Session,
    days_back: int = 1,
    start: Optional[date] = None,
    end: Optional[date] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> int:
    aggregator = RatingAggregator(db)
    if start is not None and end is not None:
        report = aggregator.recalculate_date_range(start, end, should_stop=should_stop)
    else:
        report = aggregator.initialize_all_ratings(days_back, should_stop=should_stop)
    try:
        report.raise_for_errors()
    except BatchPartialFailure as e:
        logger.error("recalculate-ratings: %s", e.message)
        return EXIT_PARTIAL
    logger.info(
        "recalculate-ratings: %d entities x %d days%s",
        report.entities_processed, report.days_processed, " (stopped)" if report.stopped else "",
    )
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="booking-engine-jobs", description="Booking engine scheduled jobs")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="job", required=True)

    sub.add_parser("expire-holds", help="Cancel holds whose TTL has passed")

    stale = sub.add_parser("close-stale-shifts", help="Close shifts left open on previous days")
    stale.add_argument("--before", type=date.fromisoformat, help="Close shifts dated before this day (default: today)")

    ratings = sub.add_parser("recalculate-ratings", help="Recalculate rating scores of all active entities")
    ratings.add_argument("--days-back", type=int, default=1, help="Days to recalculate, today included")
    ratings.add_argument("--start", type=date.fromisoformat, help="First day of an explicit range")
    ratings.add_argument("--end", type=date.fromisoformat, help="Last day of an explicit range")
    return parser


def main(argv: Optional[List[str]] = None, session_factory=SessionLocal) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if args.job == "recalculate-ratings" and (args.start is None) != (args.end is None):
        logger.error("--start and --end must be given together")
        return EXIT_FAILED

    db = session_factory()
    try:
        if args.job == "expire-holds":
            return expire_holds(db)
        if args.job == "close-stale-shifts":
            return close_stale_shifts(db, before=args.before)
        stop = StopFlag()
        stop.install()
        return recalculate_ratings(db, days_back=args.days_back, start=args.start, end=args.end, should_stop=stop)
    except BookingEngineError as e:
        logger.error("%s failed: %s", args.job, e.message)
        return EXIT_FAILED
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
