"""
Probability blender: UniversalSignals + fair market → ModelProbability.

Algorithm
---------
1. **Anchor** on the de-vigged market.  Bookmaker consensus is the prior.
2. **Shift** by bounded situational factors, each expressed as percentage
   points in favour of the home side:

       form        recent-results differential
       injuries    severity-weighted absences (+ key-player penalty)
       context     back-to-back, rest gap, schedule density, travel
       h2h         one-sidedness of prior meetings
       season      scoring-rate model vs market, scaled by 1 − market_weight

   Each factor is clipped to ``weights.max_factor_shift`` and the sum to
   ``weights.max_total_shift``.  A dimension that was not supplied is not
   evaluated at all.
3. **Distribute** the net shift.  Two-way: home +s, away −s.  Three-way:
   home +s, away −0.6s, draw −0.4s (an edge for the home side mostly comes
   out of the away price).
4. **Floor and renormalize** so every outcome is ≥ ``prob_floor`` and the
   vector sums to exactly 100.

Without a usable market the anchor is a features-only scoring model built
from season rates (Poisson goals or Normal margin, see
:func:`features_only_estimate`) and the result carries lower confidence.

All arithmetic is in percentage units.  Unit probabilities appear only
inside the scoring model, where scipy works in [0, 1].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.stats import norm, poisson

from edgeledger.core.contracts import (
    BlendMethod,
    MarketProbability,
    ModelProbability,
    Selection,
    UniversalSignals,
)
from edgeledger.core.errors import EdgeLedgerError, InputIncomplete, ReasonCode
from edgeledger.core.sport_config import SCORING_NORMAL, BlendWeights, SportConfig

logger = logging.getLogger(__name__)

# Split of a home-favouring shift across the other two outcomes (three-way)
AWAY_SHARE = 0.6
DRAW_SHARE = 0.4

MAX_CONFIDENCE = 85.0
FEATURES_ONLY_MAX_CONFIDENCE = 50.0
_MARKET_BASE_CONFIDENCE = 55.0
_MARKET_PER_SIGNAL = 6.0
_FEATURES_BASE_CONFIDENCE = 25.0
_FEATURES_PER_SIGNAL = 5.0

# Lower bound for an expected-goals rate fed to the Poisson model
_MIN_RATE = 0.05


# ---------------------------------------------------------------------------
# Features-only scoring model
# ---------------------------------------------------------------------------

def expected_scores(signals: UniversalSignals, config: SportConfig) -> tuple[float, float]:
    """
    Expected home/away score from season per-game rates.

    Each side's attack is averaged with the opponent's defence, then the
    sport's home advantage is split evenly between the two sides.
    """
    stats = signals.season_stats
    if stats is None:
        raise InputIncomplete("season stats unavailable")
    half_adv = config.home_advantage / 2.0
    home_exp = (stats.home.scored_per_game + stats.away.conceded_per_game) / 2.0 + half_adv
    away_exp = (stats.away.scored_per_game + stats.home.conceded_per_game) / 2.0 - half_adv
    return home_exp, away_exp


def _poisson_probs(home_exp: float, away_exp: float, max_goals: int) -> tuple[float, float, float]:
    goals = np.arange(max_goals + 1)
    home_pmf = poisson.pmf(goals, max(home_exp, _MIN_RATE))
    away_pmf = poisson.pmf(goals, max(away_exp, _MIN_RATE))
    grid = np.outer(home_pmf, away_pmf)      # rows = home goals
    total = grid.sum()
    p_home = np.tril(grid, -1).sum() / total
    p_draw = np.trace(grid) / total
    p_away = np.triu(grid, 1).sum() / total
    return float(p_home), float(p_draw), float(p_away)


def _normal_probs(home_exp: float, away_exp: float, sd: float) -> tuple[float, float, float]:
    margin = home_exp - away_exp
    # Regulation tie = final margin rounds to zero
    p_draw = float(norm.cdf(0.5, loc=margin, scale=sd) - norm.cdf(-0.5, loc=margin, scale=sd))
    p_home = float(1.0 - norm.cdf(0.5, loc=margin, scale=sd))
    return p_home, p_draw, 1.0 - p_home - p_draw


def features_only_estimate(signals: UniversalSignals, config: SportConfig) -> dict[str, float]:
    """
    Outcome probabilities (percent) from season scoring rates alone.

    Two-way sports redistribute the tie mass proportionally, which models
    overtime/shootout as a continuation of the same matchup.
    """
    home_exp, away_exp = expected_scores(signals, config)
    if config.scoring_model == SCORING_NORMAL:
        p_home, p_draw, p_away = _normal_probs(home_exp, away_exp, config.margin_sd)
    else:
        p_home, p_draw, p_away = _poisson_probs(home_exp, away_exp, config.max_goals)

    if signals.three_way:
        return {"home": p_home * 100.0, "draw": p_draw * 100.0, "away": p_away * 100.0}
    decided = p_home + p_away
    return {"home": p_home / decided * 100.0, "away": p_away / decided * 100.0}


# ---------------------------------------------------------------------------
# Situational factors (each returns home-favouring percentage points)
# ---------------------------------------------------------------------------

def _form_score(results: tuple[str, ...], three_way: bool) -> float:
    draw_value = 1.0 / 3.0 if three_way else 0.5
    values = {"W": 1.0, "D": draw_value, "L": 0.0}
    return sum(values[r] for r in results) / len(results)


def form_shift(signals: UniversalSignals, config: SportConfig) -> float:
    diff = (
        _form_score(signals.home_form, signals.three_way)
        - _form_score(signals.away_form, signals.three_way)
    )
    return diff * config.form_scale_pp


def injury_shift(signals: UniversalSignals, config: SportConfig) -> float:
    shift = 0.0
    for injury in signals.injuries:
        impact = config.injury_out_pp
        if injury.key_player:
            impact += config.injury_key_player_pp
        impact *= injury.severity.weight
        # Impacts are negative for the injured side
        shift += impact if injury.side is Selection.HOME else -impact
    return shift


def context_shift(signals: UniversalSignals, config: SportConfig) -> float:
    ctx = signals.context
    shift = 0.0

    if ctx.home_back_to_back:
        shift += config.back_to_back_pp
    if ctx.away_back_to_back:
        shift -= config.back_to_back_road_pp or config.back_to_back_pp

    if ctx.home_rest_days is not None and ctx.away_rest_days is not None:
        rest_gap = ctx.home_rest_days - ctx.away_rest_days
        if rest_gap >= config.rest_advantage_days:
            shift += config.rest_advantage_pp
        elif rest_gap <= -config.rest_advantage_days:
            shift -= config.rest_advantage_pp

    if ctx.home_games_last_7 is not None and ctx.home_games_last_7 >= config.heavy_schedule_games:
        shift += config.heavy_schedule_pp
    if ctx.away_games_last_7 is not None and ctx.away_games_last_7 >= config.heavy_schedule_games:
        shift -= config.heavy_schedule_pp

    if ctx.away_travel_miles is not None and ctx.away_travel_miles >= config.travel_fatigue_miles:
        shift -= config.travel_fatigue_pp

    return shift


def h2h_shift(signals: UniversalSignals, config: SportConfig) -> Optional[float]:
    meetings = signals.h2h
    if len(meetings) < config.h2h_min_meetings:
        return None
    home_wins = sum(1 for m in meetings if m is Selection.HOME)
    away_wins = sum(1 for m in meetings if m is Selection.AWAY)
    return (home_wins - away_wins) / len(meetings) * config.h2h_scale_pp


def season_shift(
    signals: UniversalSignals,
    anchor: dict[str, float],
    config: SportConfig,
) -> float:
    """Half the gap between the scoring model's and the anchor's home-minus-away spread."""
    features = features_only_estimate(signals, config)
    model_spread = features["home"] - features["away"]
    anchor_spread = anchor["home"] - anchor["away"]
    return (1.0 - config.market_weight) * (model_spread - anchor_spread) / 2.0


def situational_shifts(
    signals: UniversalSignals,
    config: SportConfig,
    weights: BlendWeights,
    anchor: Optional[dict[str, float]] = None,
) -> dict[str, float]:
    """
    Evaluate every available factor, apply its multiplier and clip it.

    Returns a mapping of factor name → clipped shift.  Factors whose input
    dimension is absent do not appear.
    """
    avail = signals.data_availability
    raw: dict[str, float] = {}
    if avail.form and weights.form:
        raw["form"] = form_shift(signals, config) * weights.form
    if avail.injuries and weights.injuries:
        raw["injuries"] = injury_shift(signals, config) * weights.injuries
    if avail.context and weights.context:
        raw["context"] = context_shift(signals, config) * weights.context
    if avail.h2h and weights.h2h:
        h2h = h2h_shift(signals, config)
        if h2h is not None:
            raw["h2h"] = h2h * weights.h2h
    if anchor is not None and avail.season_stats and weights.season_stats:
        raw["season"] = season_shift(signals, anchor, config) * weights.season_stats

    cap = weights.max_factor_shift
    return {name: float(np.clip(value, -cap, cap)) for name, value in raw.items()}


# ---------------------------------------------------------------------------
# Blend
# ---------------------------------------------------------------------------

def _apply_shift(probs: dict[str, float], shift: float, three_way: bool) -> dict[str, float]:
    out = dict(probs)
    out["home"] += shift
    if three_way:
        out["away"] -= AWAY_SHARE * shift
        out["draw"] -= DRAW_SHARE * shift
    else:
        out["away"] -= shift
    return out


def _floor_and_normalize(probs: dict[str, float], floor: float) -> dict[str, float]:
    keys = list(probs)
    values = np.maximum(np.array([probs[k] for k in keys], dtype=float), floor)
    values = values * 100.0 / values.sum()
    return {k: float(v) for k, v in zip(keys, values)}


def pick_favored(
    probs: dict[str, float],
    market_favourite: Optional[Selection],
    tolerance: float,
) -> Selection:
    """
    Highest-probability outcome.  When several are within *tolerance* of
    the top, the market favourite wins if it is among them.
    """
    top = max(probs.values())
    tied = [k for k, v in probs.items() if top - v <= tolerance]
    if len(tied) > 1 and market_favourite is not None and market_favourite.value in tied:
        return market_favourite
    return Selection(max(tied, key=lambda k: probs[k]))


def _market_anchor(
    signals: UniversalSignals,
    market_fair: Optional[MarketProbability],
) -> Optional[dict[str, float]]:
    if market_fair is None:
        return None
    keys = [o.value for o in signals.outcomes]
    if set(market_fair.fair) != set(keys):
        logger.warning(
            "Market covers %s but outcome space is %s for %s vs %s; ignoring market",
            sorted(market_fair.fair), keys, signals.home, signals.away,
        )
        return None
    return {k: market_fair.fair[k] for k in keys}


def _confidence(method: BlendMethod, signal_count: int) -> float:
    if method is BlendMethod.MARKET_ANCHORED:
        return min(MAX_CONFIDENCE, _MARKET_BASE_CONFIDENCE + _MARKET_PER_SIGNAL * signal_count)
    return min(FEATURES_ONLY_MAX_CONFIDENCE, _FEATURES_BASE_CONFIDENCE + _FEATURES_PER_SIGNAL * signal_count)


def blend(
    signals: UniversalSignals,
    market_fair: Optional[MarketProbability],
    weights: Optional[BlendWeights] = None,
    config: Optional[SportConfig] = None,
) -> ModelProbability:
    """
    Blend normalized signals with the fair market into model probabilities.

    Args:
        signals: Output of the normalizer.
        market_fair: De-vigged market, or None when unavailable.
        weights: Caps and multipliers.  Defaults to :class:`BlendWeights`.
        config: Sport constants.  Defaults to the sport's canonical config.

    Raises:
        InputIncomplete: neither a usable market nor season stats.
    """
    weights = weights or BlendWeights()
    config = config or SportConfig.for_sport(signals.sport)

    anchor = _market_anchor(signals, market_fair)
    if anchor is not None:
        method = BlendMethod.MARKET_ANCHORED
        base = anchor
        shifts = situational_shifts(signals, config, weights, anchor=anchor)
    elif signals.data_availability.season_stats:
        method = BlendMethod.FEATURES_ONLY
        base = features_only_estimate(signals, config)
        shifts = situational_shifts(signals, config, weights)
    else:
        raise InputIncomplete(
            f"No market and no season stats for {signals.home} vs {signals.away}"
        )

    total = float(np.clip(sum(shifts.values()), -weights.max_total_shift, weights.max_total_shift))
    probs = _floor_and_normalize(_apply_shift(base, total, signals.three_way), weights.prob_floor)

    market_fav = market_fair.favourite if anchor is not None else None
    favored = pick_favored(probs, market_fav, weights.tie_tolerance)

    if shifts:
        logger.debug(
            "%s vs %s: %s shifts %s → total %+.2f",
            signals.home, signals.away, method.value,
            {k: round(v, 2) for k, v in shifts.items()}, total,
        )

    return ModelProbability(
        home=round(probs["home"], 2),
        away=round(probs["away"], 2),
        draw=round(probs["draw"], 2) if "draw" in probs else None,
        confidence=_confidence(method, signals.data_availability.signal_count()),
        method=method,
        favored=favored,
    )


@dataclass(frozen=True)
class BlendResult:
    """Structured outcome for batch callers."""

    ok: bool
    probability: Optional[ModelProbability] = None
    reason: ReasonCode = ReasonCode.OK
    detail: Optional[str] = None


def blend_result(
    signals: UniversalSignals,
    market_fair: Optional[MarketProbability],
    weights: Optional[BlendWeights] = None,
    config: Optional[SportConfig] = None,
) -> BlendResult:
    """Like :func:`blend` but returns a reason code instead of raising."""
    try:
        return BlendResult(ok=True, probability=blend(signals, market_fair, weights, config))
    except EdgeLedgerError as exc:
        logger.warning("Blend failed (%s): %s", exc.reason.value, exc)
        return BlendResult(ok=False, reason=exc.reason, detail=str(exc))
