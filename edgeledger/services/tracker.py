"""
Outcome and CLV tracking for PENDING ledger entries.

  settle()                - one entry: final score or void → HIT / MISS / PUSH
  settle_from_feed()      - batch of ResultFeedItems, errors collected per item
  capture_closing_odds()  - batch of odds snapshots inside the closing window

PUSH is never inferred from a score.  It requires an explicit void signal
(postponed, abandoned).  A malformed or missing score defers settlement
and the entry stays PENDING.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from edgeledger.core.contracts import Outcome, Selection
from edgeledger.core.errors import EdgeLedgerError, StateConflict
from edgeledger.core.odds_math import implied_shift_pct, is_valid_decimal
from edgeledger.models import PredictionLedgerEntry, naive_utc, utcnow
from edgeledger.schemas import OddsSnapshotIn, ResultFeedItem
from edgeledger.services.ledger import attach_odds

logger = logging.getLogger(__name__)

_SCORE_RE = re.compile(r"^\s*(\d+)\s*[-:–]\s*(\d+)\s*$")


# ---------------------------------------------------------------------------
# Score parsing and outcome calculation (pure functions, no DB)
# ---------------------------------------------------------------------------

def parse_score(actual_score: Any) -> Optional[Tuple[int, int]]:
    """
    Parse '2-1'            → (2, 1).
    Parse (102, 99)        → (102, 99).
    Parse {'home': 3, 'away': 3} → (3, 3).

    Returns None for anything malformed (negative, non-integer, wrong arity).
    """
    if actual_score is None:
        return None
    if isinstance(actual_score, str):
        match = _SCORE_RE.match(actual_score)
        if not match:
            return None
        return int(match.group(1)), int(match.group(2))
    if isinstance(actual_score, Mapping):
        pair = (actual_score.get("home"), actual_score.get("away"))
    elif isinstance(actual_score, Sequence) and len(actual_score) == 2:
        pair = (actual_score[0], actual_score[1])
    else:
        return None

    home, away = pair
    if isinstance(home, bool) or isinstance(away, bool):
        return None
    if not isinstance(home, int) or not isinstance(away, int):
        return None
    if home < 0 or away < 0:
        return None
    return home, away


def determine_winner(home: int, away: int, three_way: bool) -> Optional[Selection]:
    """Realized winner.  A level score in a two-way sport is not a final result."""
    if home > away:
        return Selection.HOME
    if away > home:
        return Selection.AWAY
    return Selection.DRAW if three_way else None


def determine_outcome(
    selection: Union[Selection, str],
    actual_score: Any,
    three_way: bool,
    void: bool = False,
) -> Optional[Outcome]:
    """
    HIT / MISS / PUSH for a selection, or None when the result is not yet
    determinable (settlement deferred).
    """
    if void:
        return Outcome.PUSH
    score = parse_score(actual_score)
    if score is None:
        return None
    winner = determine_winner(score[0], score[1], three_way)
    if winner is None:
        return None
    return Outcome.HIT if winner is Selection(selection) else Outcome.MISS


def calculate_clv(opening_odds: Optional[float], closing_odds: Optional[float]) -> Optional[float]:
    """
    CLV in percentage points, ``(1/closing − 1/opening) × 100``.

    None whenever either price is missing.  Never approximated from the
    opening price alone.
    """
    if not is_valid_decimal(opening_odds) or not is_valid_decimal(closing_odds):
        return None
    return round(implied_shift_pct(opening_odds, closing_odds), 2)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

def settle(
    db: Session,
    ledger_id: int,
    actual_score: Any,
    void: bool = False,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Outcome:
    """
    Settle one entry.

    Returns:
        The new outcome, or ``Outcome.PENDING`` when settlement is deferred
        because the score is malformed or absent.

    Raises:
        LookupError: unknown ledger id.
        StateConflict: the entry is already terminal.
    """
    T = PredictionLedgerEntry
    row = db.execute(
        select(T.selection, T.outcome, T.draw).where(T.id == ledger_id)
    ).first()
    if row is None:
        raise LookupError(f"Ledger entry {ledger_id} not found")
    if row.outcome != Outcome.PENDING.value:
        raise StateConflict(f"Entry {ledger_id} is already {row.outcome}")

    # Outcome space was fixed at prediction time; a draw column means three-way
    three_way = row.draw is not None
    outcome = determine_outcome(row.selection, actual_score, three_way, void)
    if outcome is None:
        logger.warning("Entry %d: score %r not settleable, deferring", ledger_id, actual_score)
        return Outcome.PENDING

    score = parse_score(actual_score)
    result = db.execute(
        update(T)
        .where(T.id == ledger_id, T.outcome == Outcome.PENDING.value)
        .values(
            outcome=outcome.value,
            actual_score=f"{score[0]}-{score[1]}" if score else None,
            settled_at=naive_utc(now) or utcnow(),
        )
    )
    if result.rowcount == 0:
        if commit:
            db.rollback()
        raise StateConflict(f"Entry {ledger_id} was settled concurrently")

    if commit:
        db.commit()
    logger.info("%s: entry %d (%s) score=%s", outcome.value, ledger_id, row.selection, score)
    return outcome


def _job_summary(updated: int, settled: int, pushes: int, deferred: int, errors: List[str]) -> Dict:
    return {
        "updated": updated,
        "settled": settled,
        "pushes": pushes,
        "deferred": deferred,
        "errors": errors,
        "timestamp": utcnow().isoformat(),
    }


def _pending_ids(db: Session, match_id: str) -> List[int]:
    T = PredictionLedgerEntry
    return list(db.execute(
        select(T.id).where(T.match_id == match_id, T.outcome == Outcome.PENDING.value)
    ).scalars())


def settle_from_feed(
    db: Session,
    items: Iterable[Union[ResultFeedItem, Mapping[str, Any]]],
    now: Optional[datetime] = None,
) -> Dict:
    """Settle every PENDING entry named by the result feed.  Errors never stop the batch."""
    settled = pushes = deferred = 0
    errors: List[str] = []

    for raw in items:
        try:
            item = raw if isinstance(raw, ResultFeedItem) else ResultFeedItem.model_validate(raw)
        except ValueError as exc:
            errors.append(f"Bad result item {raw!r}: {exc}")
            continue

        for ledger_id in _pending_ids(db, item.match_id):
            try:
                outcome = settle(db, ledger_id, item.actual_score(), void=item.void, now=now)
            except (EdgeLedgerError, LookupError) as exc:
                errors.append(f"Entry {ledger_id} ({item.match_id}): {exc}")
                continue
            if outcome is Outcome.PENDING:
                deferred += 1
            elif outcome is Outcome.PUSH:
                pushes += 1
            else:
                settled += 1

    summary = _job_summary(settled + pushes, settled, pushes, deferred, errors)
    logger.info("settle_from_feed done: %s", summary)
    return summary


def capture_closing_odds(
    db: Session,
    snapshots: Iterable[Union[OddsSnapshotIn, Mapping[str, Any]]],
    now: Optional[datetime] = None,
    window_minutes: Optional[int] = None,
) -> Dict:
    """Attach each snapshot to the PENDING entries for its match."""
    updated = clv_updated = 0
    errors: List[str] = []

    for raw in snapshots:
        try:
            snap = raw if isinstance(raw, OddsSnapshotIn) else OddsSnapshotIn.model_validate(raw)
        except ValueError as exc:
            errors.append(f"Bad odds snapshot {raw!r}: {exc}")
            continue

        for ledger_id in _pending_ids(db, snap.match_id):
            try:
                result = attach_odds(db, ledger_id, snap, now=now, window_minutes=window_minutes)
            except (EdgeLedgerError, LookupError) as exc:
                errors.append(f"Entry {ledger_id} ({snap.match_id}): {exc}")
                continue
            if result.accepted:
                updated += 1
            if result.closing_set:
                clv_updated += 1

    summary = {
        "updated": updated,
        "clv_updated": clv_updated,
        "errors": errors,
        "timestamp": utcnow().isoformat(),
    }
    logger.info("capture_closing_odds done: %s", summary)
    return summary
