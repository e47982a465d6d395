"""Tests for bookmaker quality ratings, prior regression and value thresholds."""

import pytest

from edgeledger.core.bookmakers import (
    DEFAULT_QUALITY,
    bookmaker_key,
    bookmaker_quality,
    min_value_edge,
    quality_adjusted,
)


@pytest.mark.parametrize("name, key", [
    ("pinnacle",      "pinnacle"),
    ("Bet365",        "bet365"),
    ("William Hill",  "williamhill"),
    ("BetOnline.ag",  "betonlineag"),
    ("betfair_ex_uk", "betfair_ex_uk"),
    ("   ",           None),
    (None,            None),
])
def test_bookmaker_key(name, key):
    assert bookmaker_key(name) == key


@pytest.mark.parametrize("name, quality", [
    ("Pinnacle",     1.0),
    ("betfair",      0.95),
    ("Bovada",       0.82),
    ("DraftKings",   0.75),
    ("BetUS",        0.55),
    ("corner-shop",  DEFAULT_QUALITY),   # unknown → conservative default
    (None,           DEFAULT_QUALITY),
])
def test_bookmaker_quality(name, quality):
    assert bookmaker_quality(name) == pytest.approx(quality)


@pytest.mark.parametrize("quality, edge", [
    (1.0,  8.0),
    (0.95, 8.0),
    (0.94, 6.0),
    (0.80, 6.0),
    (0.78, 4.0),
    (0.70, 4.0),
    (0.69, 3.0),
    (0.50, 3.0),
    (0.49, 5.0),
])
def test_min_value_edge_tiers(quality, edge):
    assert min_value_edge(quality) == edge


def test_sharper_books_never_need_a_smaller_edge():
    qualities = sorted({bookmaker_quality(n) for n in ("betus", "betrivers", "bet365", "bovada", "pinnacle")})
    thresholds = [min_value_edge(q) for q in qualities if q >= 0.5]
    assert thresholds == sorted(thresholds)


def test_quality_adjusted_trusts_sharp_book():
    assert quality_adjusted(51.83, "pinnacle") == pytest.approx(51.8)


def test_quality_adjusted_regresses_soft_book_to_prior():
    # 0.55 * 51.83 + 0.45 * 33.3
    assert quality_adjusted(51.83, "betus", three_way=True) == pytest.approx(43.5)
    # 0.55 * 60 + 0.45 * 50
    assert quality_adjusted(60.0, "betus", three_way=False) == pytest.approx(55.5)


def test_quality_adjusted_unknown_book_uses_default():
    # 0.7 * 60 + 0.3 * 50
    assert quality_adjusted(60.0, None, three_way=False) == pytest.approx(57.0)
