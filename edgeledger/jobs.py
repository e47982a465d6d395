"""
Scheduled ledger jobs.

  settlement_job()       - every SETTLE_INTERVAL_MIN: pull results, settle PENDING entries
  closing_capture_job()  - every CLOSING_CAPTURE_INTERVAL_MIN: attach pre-kickoff odds
  analysis_job()         - every ANALYSIS_INTERVAL_MIN: analyze the upcoming slate

Feeds are injected collaborators.  The core never fetches anything; a feed
returns already-fetched payloads and its own timeouts/retries are its
business.
"""

import logging
import os
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from edgeledger.models import SessionLocal
from edgeledger.schemas import OddsSnapshotIn, RawMatchInput, ResultFeedItem
from edgeledger.services.analysis import run_batch
from edgeledger.services.team_mapping import TeamIdCache
from edgeledger.services.tracker import capture_closing_odds, settle_from_feed

logger = logging.getLogger(__name__)

SETTLE_INTERVAL_MIN = int(os.getenv("SETTLE_INTERVAL_MIN", "120"))
CLOSING_CAPTURE_INTERVAL_MIN = int(os.getenv("CLOSING_CAPTURE_INTERVAL_MIN", "30"))
ANALYSIS_INTERVAL_MIN = int(os.getenv("ANALYSIS_INTERVAL_MIN", "360"))
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")


class ResultFeed(Protocol):
    def fetch_results(self) -> List[Union[ResultFeedItem, dict]]:
        ...


class OddsFeed(Protocol):
    def fetch_snapshots(self) -> List[Union[OddsSnapshotIn, dict]]:
        ...


class MatchFeed(Protocol):
    def fetch_matches(self) -> List[Union[RawMatchInput, dict]]:
        ...


SETTLE_COUNTERS = ("updated", "settled", "pushes", "deferred")
CAPTURE_COUNTERS = ("updated", "clv_updated")
ANALYSIS_COUNTERS = ("recorded", "skipped")


def _failed(counters: Tuple[str, ...], errors: List[str]) -> Dict:
    summary: Dict = dict.fromkeys(counters, 0)
    summary["errors"] = errors
    return summary


def _run(
    name: str,
    session_factory: Callable[[], Session],
    fetch: Callable[[], list],
    work,
    counters: Tuple[str, ...],
) -> Dict:
    """Shared fetch → work → close wrapper.  A feed failure is reported, not raised."""
    logger.info("Starting %s", name)
    db = session_factory()
    try:
        try:
            payload = fetch()
        except Exception as exc:
            logger.error("%s: feed failed: %s", name, exc, exc_info=True)
            return _failed(counters, [f"Feed failed: {exc}"])
        return work(db, payload)
    except Exception as exc:
        logger.error("Fatal error in %s: %s", name, exc, exc_info=True)
        db.rollback()
        return _failed(counters, [f"Fatal: {exc}"])
    finally:
        db.close()


def settlement_job(feed: ResultFeed, session_factory: Callable[[], Session] = SessionLocal) -> Dict:
    return _run(
        "settlement_job", session_factory, feed.fetch_results, settle_from_feed, SETTLE_COUNTERS
    )


def closing_capture_job(feed: OddsFeed, session_factory: Callable[[], Session] = SessionLocal) -> Dict:
    return _run(
        "closing_capture_job", session_factory, feed.fetch_snapshots, capture_closing_odds, CAPTURE_COUNTERS
    )


def analysis_job(
    feed: MatchFeed,
    session_factory: Callable[[], Session] = SessionLocal,
    team_cache: Optional[TeamIdCache] = None,
) -> Dict:
    def work(db, matches):
        summary = run_batch(db, matches, team_cache=team_cache)
        summary.pop("results", None)
        return summary

    return _run("analysis_job", session_factory, feed.fetch_matches, work, ANALYSIS_COUNTERS)


def build_scheduler(
    result_feed: Optional[ResultFeed] = None,
    odds_feed: Optional[OddsFeed] = None,
    match_feed: Optional[MatchFeed] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    team_cache: Optional[TeamIdCache] = None,
) -> BackgroundScheduler:
    """Register a job for every feed supplied.  The caller starts the scheduler."""
    scheduler = BackgroundScheduler(timezone=SCHEDULER_TIMEZONE)

    if match_feed is not None:
        scheduler.add_job(
            analysis_job,
            IntervalTrigger(minutes=ANALYSIS_INTERVAL_MIN),
            args=[match_feed, session_factory, team_cache],
            id="analyze_slate",
            name="Analyze Upcoming Matches",
            replace_existing=True,
        )
    if result_feed is not None:
        scheduler.add_job(
            settlement_job,
            IntervalTrigger(minutes=SETTLE_INTERVAL_MIN),
            args=[result_feed, session_factory],
            id="settle_results",
            name="Settle Completed Matches",
            replace_existing=True,
        )
    if odds_feed is not None:
        scheduler.add_job(
            closing_capture_job,
            IntervalTrigger(minutes=CLOSING_CAPTURE_INTERVAL_MIN),
            args=[odds_feed, session_factory],
            id="capture_closing_odds",
            name="Capture Closing Odds",
            replace_existing=True,
        )

    logger.info("Scheduler configured with %d job(s)", len(scheduler.get_jobs()))
    return scheduler
