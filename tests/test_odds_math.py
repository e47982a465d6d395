"""Tests for odds conversion, de-vig and line movement."""

import math

import pytest

from edgeledger.core.errors import OddsInvalid
from edgeledger.core.odds_math import (
    american_to_decimal,
    decimal_to_american,
    devig,
    implied_prob,
    implied_shift_pct,
    is_valid_decimal,
    overround,
)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("american, expected", [
    (-110, 1.9091),
    (+150, 2.5),
    (-200, 1.5),
    (+100, 2.0),
    (-100, 2.0),
])
def test_american_to_decimal(american, expected):
    assert american_to_decimal(american) == pytest.approx(expected, abs=1e-4)


def test_american_to_decimal_rejects_small_magnitude():
    with pytest.raises(ValueError):
        american_to_decimal(50)


@pytest.mark.parametrize("decimal_odds, expected", [
    (2.5, 150),
    (1.5, -200),
    (2.0, 100),
])
def test_decimal_to_american(decimal_odds, expected):
    assert decimal_to_american(decimal_odds) == expected


@pytest.mark.parametrize("odds, valid", [
    (1.80, True),
    (1.01, True),
    (1.0, False),
    (0.5, False),
    (-2.0, False),
    (float("nan"), False),
    (float("inf"), False),
    (None, False),
    ("abc", False),
])
def test_is_valid_decimal(odds, valid):
    assert is_valid_decimal(odds) is valid


def test_implied_prob_percent():
    assert implied_prob(1.80) == pytest.approx(55.56, abs=0.01)
    with pytest.raises(OddsInvalid):
        implied_prob(1.0)


# ---------------------------------------------------------------------------
# De-vig
# ---------------------------------------------------------------------------

def test_devig_three_way_example():
    result = devig({"home": 1.80, "draw": 3.40, "away": 4.50})

    assert result.raw["home"] == pytest.approx(55.6, abs=0.05)
    assert result.raw["draw"] == pytest.approx(29.4, abs=0.05)
    assert result.raw["away"] == pytest.approx(22.2, abs=0.05)
    assert sum(result.raw.values()) == pytest.approx(107.2, abs=0.05)

    assert result.fair["home"] == pytest.approx(51.8, abs=0.05)
    assert result.fair["draw"] == pytest.approx(27.4, abs=0.05)
    assert result.fair["away"] == pytest.approx(20.73, abs=0.05)
    assert sum(result.fair.values()) == pytest.approx(100.0, abs=0.01)

    assert result.overround == pytest.approx(7.19, abs=0.01)
    assert result.favourite == "home"


@pytest.mark.parametrize("odds", [
    {"home": 1.80, "draw": 3.40, "away": 4.50},
    {"home": 1.91, "away": 1.91},
    {"home": 1.01, "away": 21.0},
    {"home": 12.0, "draw": 7.5, "away": 1.22},
    {"home": 2.05, "draw": 3.10, "away": 3.60},
    {"home": 1.50, "away": 2.80, "draw": None},
])
def test_fair_probabilities_sum_to_100(odds):
    assert sum(devig(odds).fair.values()) == pytest.approx(100.0, abs=0.01)


def test_invalid_price_is_excluded_and_rest_renormalized():
    result = devig({"home": 1.80, "draw": 1.0, "away": 4.50})
    assert "draw" not in result.fair
    assert result.excluded == ("draw",)
    assert result.fair["home"] == pytest.approx(55.556 / (55.556 + 22.222) * 100, abs=0.01)
    assert sum(result.fair.values()) == pytest.approx(100.0, abs=0.01)


def test_nan_price_is_excluded():
    result = devig({"home": 2.0, "draw": float("nan"), "away": 2.0})
    assert set(result.fair) == {"home", "away"}
    assert result.fair["home"] == pytest.approx(50.0)


@pytest.mark.parametrize("odds", [
    {"home": 0.9, "away": 2.0},
    {"home": 1.80},
    {"home": 1.0, "draw": 1.0, "away": 1.0},
    {},
])
def test_fewer_than_two_valid_prices_is_unavailable(odds):
    with pytest.raises(OddsInvalid):
        devig(odds)


def test_overround_helper():
    assert overround({"home": 1.91, "away": 1.91}) == pytest.approx(4.712, abs=0.01)


# ---------------------------------------------------------------------------
# Line movement
# ---------------------------------------------------------------------------

def test_implied_shift_toward_selection_is_positive():
    # 55.6% → 60.6%
    assert implied_shift_pct(1.80, 1.65) == pytest.approx(5.05, abs=0.01)


def test_implied_shift_away_from_selection_is_negative():
    assert implied_shift_pct(2.10, 2.30) < 0


def test_implied_shift_no_movement():
    assert math.isclose(implied_shift_pct(1.90, 1.90), 0.0, abs_tol=1e-12)
