"""Tests for the probability blender: anchoring, factor caps, fallback and ties."""

import pytest

from edgeledger.core.contracts import BlendMethod, MarketProbability, Selection
from edgeledger.core.errors import InputIncomplete, ReasonCode
from edgeledger.core.odds_math import devig
from edgeledger.core.sport_config import BlendWeights, SportConfig
from edgeledger.services.blender import (
    FEATURES_ONLY_MAX_CONFIDENCE,
    MAX_CONFIDENCE,
    blend,
    blend_result,
    features_only_estimate,
    pick_favored,
    situational_shifts,
)
from edgeledger.services.normalizer import normalize

from conftest import nba_match, soccer_match


def _market(signals):
    result = devig(signals.market_odds.as_dict())
    return MarketProbability(raw=result.raw, fair=result.fair)


def _blend(raw, **kwargs):
    signals = normalize(raw)
    market = _market(signals) if signals.market_odds is not None else None
    return blend(signals, market, **kwargs)


def _key_injuries(side, count):
    return [
        {"player": f"Player {i}", "severity": "Out", "side": side, "key_player": True}
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Market anchor
# ---------------------------------------------------------------------------

def test_no_signals_returns_fair_market():
    model = _blend(soccer_match())
    assert model.method is BlendMethod.MARKET_ANCHORED
    assert model.home == pytest.approx(51.83, abs=0.01)
    assert model.draw == pytest.approx(27.44, abs=0.01)
    assert model.away == pytest.approx(20.73, abs=0.01)
    assert model.favored is Selection.HOME
    assert model.confidence == pytest.approx(55.0)


@pytest.mark.parametrize("raw", [
    soccer_match(),
    soccer_match(home_form="WWWWW", away_form="LLLLL", h2h=["home"] * 5),
    soccer_match(injuries=_key_injuries("home", 12)),
    soccer_match(odds={"home": 1.05, "draw": 15.0, "away": 41.0},
                 injuries=_key_injuries("home", 4), away_form="WWWWW", home_form="LLLLL"),
    nba_match(),
    nba_match(odds={"home": 1.02, "away": 30.0}, injuries=_key_injuries("away", 3)),
    nba_match(context={"home_back_to_back": True, "away_rest_days": 4, "home_rest_days": 0}),
])
def test_output_is_a_probability_vector(raw):
    model = _blend(raw)
    probs = model.as_dict()
    assert all(p >= 0 for p in probs.values())
    assert sum(probs.values()) == pytest.approx(100.0, abs=0.5)


# ---------------------------------------------------------------------------
# Factor caps and distribution
# ---------------------------------------------------------------------------

def test_single_factor_is_capped_and_split_three_way():
    # 12 key players out → −84pp raw, capped at −5
    model = _blend(soccer_match(injuries=_key_injuries("home", 12)))
    assert model.home == pytest.approx(51.83 - 5.0, abs=0.01)
    assert model.away == pytest.approx(20.73 + 3.0, abs=0.01)   # 60% of the shift
    assert model.draw == pytest.approx(27.44 + 2.0, abs=0.01)   # 40% of the shift


def test_total_shift_is_capped():
    # form +5 (capped from 6), injuries +5 (capped from 21), h2h +3 → 13, capped at 10
    model = _blend(soccer_match(
        home_form="WWWWW", away_form="LLLLL",
        injuries=_key_injuries("away", 3),
        h2h=["home", "home", "home"],
    ))
    assert model.home == pytest.approx(51.83 + 10.0, abs=0.01)
    assert model.away == pytest.approx(20.73 - 6.0, abs=0.01)
    assert model.draw == pytest.approx(27.44 - 4.0, abs=0.01)
    assert model.confidence == pytest.approx(55.0 + 3 * 6.0)


def test_two_way_shift_moves_away_one_for_one():
    model = _blend(nba_match(context={"home_back_to_back": True}))
    assert model.draw is None
    assert model.home == pytest.approx(65.12 - 5.0, abs=0.01)
    assert model.away == pytest.approx(34.88 + 5.0, abs=0.01)


def test_probability_floor_applied_before_renormalizing():
    model = _blend(nba_match(odds={"home": 1.02, "away": 30.0}, injuries=_key_injuries("away", 3)))
    assert model.away > 0
    assert model.home < 100
    assert model.home + model.away == pytest.approx(100.0, abs=0.02)


def test_zero_multiplier_disables_factor():
    weights = BlendWeights(injuries=0.0)
    model = _blend(soccer_match(injuries=_key_injuries("home", 3)), weights=weights)
    assert model.home == pytest.approx(51.83, abs=0.01)


def test_absent_dimensions_are_not_evaluated():
    signals = normalize(soccer_match(home_form="WWWWW"))    # away form missing
    shifts = situational_shifts(signals, SportConfig.soccer(), BlendWeights(), anchor=_market(signals).fair)
    assert shifts == {}


def test_h2h_needs_minimum_meetings():
    signals = normalize(soccer_match(h2h=["home", "home"]))
    shifts = situational_shifts(signals, SportConfig.soccer(), BlendWeights(), anchor=_market(signals).fair)
    assert "h2h" not in shifts


def test_season_stats_fold_in_as_bounded_factor():
    signals = normalize(soccer_match(
        home_stats={"scored": 30, "conceded": 5, "played": 10},
        away_stats={"scored": 5, "conceded": 25, "played": 10},
    ))
    shifts = situational_shifts(signals, SportConfig.soccer(), BlendWeights(), anchor=_market(signals).fair)
    assert 0 < shifts["season"] <= BlendWeights().max_factor_shift


# ---------------------------------------------------------------------------
# Features-only fallback
# ---------------------------------------------------------------------------

def test_features_only_when_no_market():
    raw = soccer_match(
        odds=None,
        home_stats={"scored": 20, "conceded": 5, "played": 10},
        away_stats={"scored": 8, "conceded": 16, "played": 10},
    )
    model = _blend(raw)
    assert model.method is BlendMethod.FEATURES_ONLY
    assert model.confidence <= FEATURES_ONLY_MAX_CONFIDENCE
    assert model.draw is not None
    assert model.home > model.away
    assert model.total == pytest.approx(100.0, abs=0.5)


def test_features_only_normal_model_gives_home_advantage():
    signals = normalize(nba_match(
        odds=None,
        home_stats={"scored": 1100, "conceded": 1100, "played": 10},
        away_stats={"scored": 1100, "conceded": 1100, "played": 10},
    ))
    probs = features_only_estimate(signals, SportConfig.basketball())
    assert set(probs) == {"home", "away"}
    assert probs["home"] > 50.0
    assert probs["home"] + probs["away"] == pytest.approx(100.0)


def test_hockey_features_only_is_two_way():
    model = _blend({
        "sport": "nhl", "home": "Bruins", "away": "Rangers",
        "home_stats": {"scored": 30, "conceded": 20, "played": 10},
        "away_stats": {"scored": 25, "conceded": 28, "played": 10},
    })
    assert model.draw is None
    assert model.home + model.away == pytest.approx(100.0, abs=0.02)


def test_no_market_and_no_stats_is_input_incomplete():
    signals = normalize(soccer_match(odds=None, home_form="WWW", away_form="LLL"))
    with pytest.raises(InputIncomplete):
        blend(signals, None)

    result = blend_result(signals, None)
    assert result.ok is False
    assert result.reason is ReasonCode.INPUT_INCOMPLETE


def test_market_not_covering_outcomes_is_ignored():
    signals = normalize(soccer_match(
        home_stats={"scored": 15, "conceded": 10, "played": 10},
        away_stats={"scored": 12, "conceded": 12, "played": 10},
    ))
    two_way = MarketProbability(raw={"home": 55.0, "away": 50.0}, fair={"home": 52.38, "away": 47.62})
    model = blend(signals, two_way)
    assert model.method is BlendMethod.FEATURES_ONLY


# ---------------------------------------------------------------------------
# Confidence and ties
# ---------------------------------------------------------------------------

def test_confidence_is_capped():
    model = _blend(soccer_match(
        home_form="WDW", away_form="LDL",
        h2h=["home", "draw", "away"],
        injuries=[],
        context={"home_rest_days": 3, "away_rest_days": 3},
        home_stats={"scored": 15, "conceded": 10, "played": 10},
        away_stats={"scored": 12, "conceded": 12, "played": 10},
    ))
    assert model.confidence == pytest.approx(MAX_CONFIDENCE)


@pytest.mark.parametrize("probs, market_fav, expected", [
    ({"home": 45.0, "draw": 10.0, "away": 45.05}, Selection.HOME, Selection.HOME),
    ({"home": 45.0, "draw": 10.0, "away": 45.05}, None,           Selection.AWAY),
    ({"home": 45.0, "draw": 10.0, "away": 45.05}, Selection.DRAW, Selection.AWAY),
    ({"home": 40.0, "draw": 20.0, "away": 40.5},  Selection.HOME, Selection.AWAY),
])
def test_pick_favored_tie_breaks_on_market_favourite(probs, market_fav, expected):
    assert pick_favored(probs, market_fav, tolerance=0.1) is expected
