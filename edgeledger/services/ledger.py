"""
Prediction ledger: create/replace PENDING entries and attach odds snapshots.

Concurrency model
-----------------
No application-level locks.  Every write is a single conditional statement
so overlapping runs cannot corrupt an entry:

  record_prediction   INSERT ... ON CONFLICT (match_id, model_version)
                      DO UPDATE ... WHERE outcome = 'PENDING' AND kickoff > now
  attach_odds         UPDATE ... WHERE opening_odds IS NULL         (opening)
                      UPDATE ... WHERE outcome = 'PENDING'
                                   AND kickoff > now                (closing)

A statement that matches no row is re-inspected to tell the caller *why*
(terminal entry → StateConflict, kickoff passed → not accepted).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy import case, func, null, or_, select, update
from sqlalchemy.orm import Session

from edgeledger.core.contracts import (
    EdgeResult,
    MarketOdds,
    MarketProbability,
    ModelProbability,
    Outcome,
    PredictionSnapshot,
    UniversalSignals,
)
from edgeledger.core.errors import StateConflict
from edgeledger.core.odds_math import implied_shift_pct, is_valid_decimal
from edgeledger.models import PredictionLedgerEntry, naive_utc, utcnow
from edgeledger.schemas import OddsSnapshotIn

logger = logging.getLogger(__name__)

MODEL_VERSION = os.getenv("MODEL_VERSION", "v2")
CLOSING_WINDOW_MINUTES = int(os.getenv("CLOSING_WINDOW_MINUTES", "70"))

# Columns a re-analysis may never overwrite
_SETTLEMENT_COLUMNS = frozenset({
    "id", "match_id", "model_version", "opening_odds", "closing_odds",
    "clv_value", "actual_score", "outcome", "settled_at",
})


def _r2(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


# ---------------------------------------------------------------------------
# Entry construction (pure)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LedgerRecord:
    """Column values for one prediction, ready to upsert."""

    values: dict[str, Any]

    @property
    def match_id(self) -> str:
        return self.values["match_id"]

    @property
    def model_version(self) -> str:
        return self.values["model_version"]


def _signals_dict(signals: UniversalSignals) -> dict[str, Any]:
    avail = signals.data_availability
    return {
        "sport": signals.sport.value,
        "home": signals.home,
        "away": signals.away,
        "three_way": signals.three_way,
        "bookmaker": signals.market_odds.bookmaker if signals.market_odds else None,
        "home_form": "".join(signals.home_form) if signals.home_form else None,
        "away_form": "".join(signals.away_form) if signals.away_form else None,
        "h2h": [r.value for r in signals.h2h] if signals.h2h else None,
        "injuries": (
            [
                {"player": i.player, "severity": i.severity.value, "side": i.side.value, "key_player": i.key_player}
                for i in signals.injuries
            ]
            if signals.injuries is not None else None
        ),
        "data_availability": {k: bool(v) for k, v in vars(avail).items()},
    }


def build_record(
    match_id: str,
    signals: UniversalSignals,
    model: ModelProbability,
    market: Optional[MarketProbability],
    edge: EdgeResult,
    model_version: str = MODEL_VERSION,
) -> LedgerRecord:
    """Assemble ledger columns and the authoritative snapshot for one analysis."""
    odds: Optional[MarketOdds] = signals.market_odds
    selection = edge.selection
    price = odds.price(selection) if odds is not None else None

    snapshot = PredictionSnapshot(
        match_id=match_id,
        model_version=model_version,
        selection=selection,
        model_probability={k: round(v, 2) for k, v in model.as_dict().items()},
        market_raw={k: round(v, 2) for k, v in market.raw.items()} if market else None,
        market_fair={k: round(v, 2) for k, v in market.fair.items()} if market else None,
        edge_value=edge.edge_value,
        edge_bucket=edge.edge_bucket,
        odds=odds.as_dict() if odds is not None else None,
        signals=_signals_dict(signals),
    )

    values = {
        "match_id": match_id,
        "model_version": model_version,
        "selection": selection.value,
        "sport": signals.sport.value,
        "home_team": signals.home,
        "away_team": signals.away,
        "full_response": snapshot.to_dict(),
        "home_win": _r2(model.home),
        "draw": _r2(model.draw),
        "away_win": _r2(model.away),
        "model_probability": _r2(model.get(selection)),
        "market_probability_raw": _r2(market.raw_for(selection)) if market else None,
        "market_probability_fair": _r2(market.fair_for(selection)) if market else None,
        "market_odds_at_prediction": price,
        "edge_value": _r2(edge.edge_value),
        "edge_bucket": edge.edge_bucket.value,
        "confidence": _r2(model.confidence),
        "kickoff": naive_utc(signals.kickoff),
        "opening_odds": price,
        "outcome": Outcome.PENDING.value,
    }
    return LedgerRecord(values=values)


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------

def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Atomic upsert not supported on {dialect!r}")
    return insert


def record_prediction(
    db: Session,
    record: LedgerRecord,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> int:
    """
    Create or replace the PENDING entry for ``(match_id, model_version)``.

    Returns:
        The ledger id.

    Raises:
        StateConflict: the existing entry is terminal or its match has started.
    """
    now = naive_utc(now) or utcnow()
    T = PredictionLedgerEntry
    values = dict(record.values)
    values["prediction_timestamp"] = now

    insert = _dialect_insert(db)
    stmt = insert(T).values(**values)
    set_ = {
        name: stmt.excluded[name]
        for name in values
        if name not in _SETTLEMENT_COLUMNS
    }
    # A flipped selection invalidates prices observed for the old one
    same_pick = T.selection == stmt.excluded.selection
    set_["opening_odds"] = case(
        (same_pick, func.coalesce(T.opening_odds, stmt.excluded.opening_odds)),
        else_=stmt.excluded.opening_odds,
    )
    set_["closing_odds"] = case((same_pick, T.closing_odds), else_=null())
    set_["clv_value"] = case((same_pick, T.clv_value), else_=null())
    stmt = stmt.on_conflict_do_update(
        index_elements=["match_id", "model_version"],
        set_=set_,
        where=(T.outcome == Outcome.PENDING.value) & or_(T.kickoff.is_(None), T.kickoff > now),
    ).returning(T.id)

    ledger_id = db.execute(stmt).scalar()
    if ledger_id is None:
        existing = db.execute(
            select(T.id, T.outcome, T.kickoff).where(
                T.match_id == record.match_id, T.model_version == record.model_version
            )
        ).first()
        if commit:
            db.rollback()
        if existing is not None and existing.outcome != Outcome.PENDING.value:
            raise StateConflict(
                f"Entry {existing.id} ({record.match_id}@{record.model_version}) is "
                f"{existing.outcome}; re-analysis rejected"
            )
        raise StateConflict(
            f"Match {record.match_id} kicked off at {existing.kickoff if existing else '?'}; "
            "re-analysis rejected"
        )

    if commit:
        db.commit()
    logger.info(
        "Recorded prediction %d: %s@%s %s edge=%s (%s)",
        ledger_id, record.match_id, record.model_version, values["selection"],
        values["edge_value"], values["edge_bucket"],
    )
    return ledger_id


# ---------------------------------------------------------------------------
# Odds snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AttachResult:
    accepted: bool
    opening_set: bool = False
    closing_set: bool = False
    clv_value: Optional[float] = None
    detail: Optional[str] = None


def _price(snapshot: Union[OddsSnapshotIn, MarketOdds, Mapping[str, Any]], selection: str) -> Optional[float]:
    if isinstance(snapshot, Mapping):
        return snapshot.get(selection)
    return getattr(snapshot, selection, None)


def get_entry(db: Session, ledger_id: int) -> Optional[PredictionLedgerEntry]:
    return db.get(PredictionLedgerEntry, ledger_id)


def attach_odds(
    db: Session,
    ledger_id: int,
    snapshot: Union[OddsSnapshotIn, MarketOdds, Mapping[str, Any]],
    now: Optional[datetime] = None,
    window_minutes: Optional[int] = None,
    commit: bool = True,
) -> AttachResult:
    """
    Record an observed price for the entry's selection.

    ``opening_odds`` is written only if it is still null.  ``closing_odds``
    and ``clv_value`` are written only while the entry is PENDING and
    ``kickoff − window ≤ now < kickoff``.  Once the match has started no
    snapshot is accepted.

    Raises:
        LookupError: unknown ledger id.
        StateConflict: the entry is already settled.
    """
    now = naive_utc(now) or utcnow()
    window = timedelta(minutes=window_minutes if window_minutes is not None else CLOSING_WINDOW_MINUTES)
    T = PredictionLedgerEntry

    row = db.execute(
        select(T.selection, T.outcome, T.kickoff).where(T.id == ledger_id)
    ).first()
    if row is None:
        raise LookupError(f"Ledger entry {ledger_id} not found")
    if row.outcome != Outcome.PENDING.value:
        raise StateConflict(f"Entry {ledger_id} is {row.outcome}; odds snapshots are closed")

    price = _price(snapshot, row.selection)
    if not is_valid_decimal(price):
        return AttachResult(accepted=False, detail=f"no valid {row.selection} price in snapshot")
    price = float(price)

    if row.kickoff is not None and now >= row.kickoff:
        logger.info("Entry %d: snapshot after kickoff ignored", ledger_id)
        return AttachResult(accepted=False, detail="match already started")

    pending = T.outcome == Outcome.PENDING.value
    not_started = or_(T.kickoff.is_(None), T.kickoff > now)

    opened = db.execute(
        update(T)
        .where(T.id == ledger_id, T.opening_odds.is_(None), pending, not_started)
        .values(opening_odds=price)
    ).rowcount > 0

    closing_set = False
    clv = None
    if row.kickoff is not None and row.kickoff - window <= now:
        opening = db.execute(select(T.opening_odds).where(T.id == ledger_id)).scalar()
        if opening is not None:
            clv = round(implied_shift_pct(opening, price), 2)
            # Pinning opening_odds keeps the CLV consistent with a concurrent re-analysis
            closing_set = db.execute(
                update(T)
                .where(T.id == ledger_id, T.opening_odds == opening, pending, T.kickoff > now)
                .values(closing_odds=price, clv_value=clv)
            ).rowcount > 0

    if commit:
        db.commit()

    if not (opened or closing_set):
        return AttachResult(accepted=False, detail="nothing to update")
    if closing_set:
        logger.info("Entry %d: closing %.2f, CLV %+.2f pp", ledger_id, price, clv)
    return AttachResult(
        accepted=True,
        opening_set=opened,
        closing_set=closing_set,
        clv_value=clv if closing_set else None,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def query_entries(
    db: Session,
    match_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    sport: Optional[str] = None,
    min_edge: Optional[float] = None,
    outcome: Optional[Union[Outcome, str]] = None,
    model_version: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[PredictionLedgerEntry]:
    """Ledger entries filtered by match, kickoff range, sport, edge and outcome."""
    T = PredictionLedgerEntry
    stmt = select(T)
    if match_id is not None:
        stmt = stmt.where(T.match_id == match_id)
    if start is not None:
        stmt = stmt.where(T.kickoff >= naive_utc(start))
    if end is not None:
        stmt = stmt.where(T.kickoff < naive_utc(end))
    if sport is not None:
        stmt = stmt.where(T.sport == str(getattr(sport, "value", sport)))
    if min_edge is not None:
        stmt = stmt.where(T.edge_value >= min_edge)
    if outcome is not None:
        stmt = stmt.where(T.outcome == Outcome(outcome).value)
    if model_version is not None:
        stmt = stmt.where(T.model_version == model_version)
    stmt = stmt.order_by(T.kickoff, T.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars())
