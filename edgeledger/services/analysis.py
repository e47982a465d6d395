"""
Per-match analysis pipeline.

    RawMatchInput → normalize → devig → blend → classify → MarketIntel
                                                          └→ ledger upsert

Every stage that can fail on bad input reports a reason code instead of
raising, so :func:`run_batch` always processes the whole slate.  Ledger
state conflicts abort the single match's write (its SAVEPOINT is rolled
back) and are reported in the batch summary.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from edgeledger.core.bookmakers import quality_adjusted
from edgeledger.core.contracts import (
    BlendMethod,
    EdgeResult,
    MarketProbability,
    ModelProbability,
    UniversalSignals,
)
from edgeledger.core.errors import (
    USER_MESSAGE_INSUFFICIENT_DATA,
    EdgeLedgerError,
    OddsInvalid,
    ReasonCode,
)
from edgeledger.core.odds_math import devig
from edgeledger.core.sport_config import BlendWeights
from edgeledger.schemas import MarketIntel, RawMatchInput
from edgeledger.services.blender import blend_result
from edgeledger.services.edge import classify
from edgeledger.services.ledger import MODEL_VERSION, build_record, record_prediction
from edgeledger.services.normalizer import normalize_result
from edgeledger.services.team_mapping import TeamIdCache

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    ok: bool
    match_id: Optional[str] = None
    intel: Optional[MarketIntel] = None
    signals: Optional[UniversalSignals] = None
    model: Optional[ModelProbability] = None
    market: Optional[MarketProbability] = None
    edge: Optional[EdgeResult] = None
    reason: ReasonCode = ReasonCode.OK
    detail: Optional[str] = None
    ledger_id: Optional[int] = None

    @property
    def user_message(self) -> Optional[str]:
        return None if self.ok else USER_MESSAGE_INSUFFICIENT_DATA


def market_probability(signals: UniversalSignals) -> Optional[MarketProbability]:
    """De-vig the signals' market, or None when it is unavailable."""
    if signals.market_odds is None:
        return None
    try:
        result = devig(signals.market_odds.as_dict())
    except OddsInvalid as exc:
        logger.debug("Market unavailable for %s vs %s: %s", signals.home, signals.away, exc)
        return None
    return MarketProbability(raw=result.raw, fair=result.fair)


def default_match_id(signals: UniversalSignals) -> str:
    day = signals.kickoff.strftime("%Y-%m-%d") if signals.kickoff else "undated"
    return f"{signals.sport.value}:{day}:{signals.home}:{signals.away}".lower().replace(" ", "-")


def _r2(probs: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
    return {k: round(v, 2) for k, v in probs.items()} if probs is not None else None


def _intel(match_id, signals, model, market, edge) -> MarketIntel:
    bookmaker = signals.market_odds.bookmaker if signals.market_odds else None
    adjusted = (
        {k: quality_adjusted(v, bookmaker, signals.three_way) for k, v in market.fair.items()}
        if market else None
    )
    return MarketIntel(
        match_id=match_id,
        sport=signals.sport.value,
        home_team=signals.home,
        away_team=signals.away,
        model_probability=model.as_dict(),
        market_probability_raw=_r2(market.raw) if market else None,
        market_probability_fair=_r2(market.fair) if market else None,
        edge_value=edge.edge_value,
        edge_bucket=edge.edge_bucket.value,
        selection=edge.selection.value,
        favored=model.favored.value if model.favored else None,
        confidence=model.confidence,
        method=model.method.value,
        overround=round(market.overround, 2) if market else None,
        bookmaker=bookmaker,
        bookmaker_quality=edge.bookmaker_quality,
        market_probability_quality_adjusted=adjusted,
        min_value_edge=edge.min_value_edge,
        is_value=edge.is_value,
        data_quality={k: bool(v) for k, v in vars(signals.data_availability).items()},
    )


def analyze_match(
    raw_input: Union[RawMatchInput, Mapping[str, Any]],
    weights: Optional[BlendWeights] = None,
    team_cache: Optional[TeamIdCache] = None,
) -> AnalysisResult:
    """Run the pure pipeline for one match.  Never raises on bad input."""
    norm = normalize_result(raw_input, team_cache)
    if not norm.ok:
        return AnalysisResult(ok=False, reason=norm.reason, detail=norm.detail)
    signals = norm.signals

    raw_match_id = (
        raw_input.match_id if isinstance(raw_input, RawMatchInput) else raw_input.get("match_id")
    )
    match_id = raw_match_id or default_match_id(signals)

    market = market_probability(signals)
    blended = blend_result(signals, market, weights)
    if not blended.ok:
        return AnalysisResult(
            ok=False, match_id=match_id, signals=signals, market=market,
            reason=blended.reason, detail=blended.detail,
        )
    model = blended.probability
    # The blender ignores a market that does not cover the outcome space
    if model.method is BlendMethod.FEATURES_ONLY:
        market = None

    bookmaker = signals.market_odds.bookmaker if signals.market_odds else None
    edge = classify(model, market, bookmaker=bookmaker)
    return AnalysisResult(
        ok=True,
        match_id=match_id,
        intel=_intel(match_id, signals, model, market, edge),
        signals=signals,
        model=model,
        market=market,
        edge=edge,
    )


def analyze_and_record(
    db: Session,
    raw_input: Union[RawMatchInput, Mapping[str, Any]],
    model_version: str = MODEL_VERSION,
    weights: Optional[BlendWeights] = None,
    team_cache: Optional[TeamIdCache] = None,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> AnalysisResult:
    """
    Analyze one match and upsert its ledger entry.

    Raises:
        StateConflict: the ledger entry is terminal or the match has started.
    """
    result = analyze_match(raw_input, weights, team_cache)
    if not result.ok:
        return result
    record = build_record(
        result.match_id, result.signals, result.model, result.market, result.edge, model_version
    )
    result.ledger_id = record_prediction(db, record, now=now, commit=commit)
    return result


def run_batch(
    db: Session,
    raw_inputs: Iterable[Union[RawMatchInput, Mapping[str, Any]]],
    model_version: str = MODEL_VERSION,
    weights: Optional[BlendWeights] = None,
    team_cache: Optional[TeamIdCache] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Analyze and record a slate of matches.  Each match is written inside
    its own SAVEPOINT, so one failure never rolls back the others.
    """
    recorded = skipped = 0
    errors: List[str] = []
    reasons: Dict[str, int] = {}
    results: List[AnalysisResult] = []

    for raw in raw_inputs:
        try:
            with db.begin_nested():
                result = analyze_and_record(
                    db, raw, model_version, weights, team_cache, now=now, commit=False
                )
        except EdgeLedgerError as exc:
            errors.append(str(exc))
            reasons[exc.reason.value] = reasons.get(exc.reason.value, 0) + 1
            logger.warning("Ledger write rejected: %s", exc)
            continue

        results.append(result)
        if result.ok:
            recorded += 1
        else:
            skipped += 1
            reasons[result.reason.value] = reasons.get(result.reason.value, 0) + 1

    db.commit()
    summary = {
        "recorded": recorded,
        "skipped": skipped,
        "reasons": reasons,
        "errors": errors,
        "results": results,
    }
    logger.info("run_batch done: %d recorded, %d skipped, %d rejected", recorded, skipped, len(errors))
    return summary
