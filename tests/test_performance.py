"""Tests for performance analytics: bucket hit rates, CLV health, summary."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from edgeledger.services.analysis import analyze_and_record
from edgeledger.services.ledger import attach_odds
from edgeledger.services.performance import (
    _median,
    _std,
    accuracy_by_bucket,
    calculate_summary,
    clv_grade,
    clv_summary,
    model_trust,
)
from edgeledger.services.tracker import settle

from conftest import KICKOFF, NOW, soccer_match


def _fake_entry(outcome, bucket="SMALL", edge=3.0, clv=None):
    e = MagicMock()
    e.outcome = outcome
    e.edge_bucket = bucket
    e.edge_value = edge
    e.clv_value = clv
    return e


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_median_even():
    assert _median([1.0, 3.0, 2.0, 4.0]) == pytest.approx(2.5)


def test_std_single_is_none():
    assert _std([1.0]) is None


@pytest.mark.parametrize("clv, grade", [
    (4.0,  "STRONG+"),
    (1.5,  "POSITIVE"),
    (0.0,  "NEUTRAL"),
    (-2.0, "NEGATIVE"),
    (-5.0, "STRONG-"),
    (None, "UNKNOWN"),
])
def test_clv_grade(clv, grade):
    assert clv_grade(clv) == grade


@pytest.mark.parametrize("mean, rate, samples, level", [
    (4.0,  0.60, 10,  "insufficient"),
    (4.0,  0.60, 80,  "high"),
    (1.5,  0.52, 80,  "medium"),
    (-1.0, 0.40, 80,  "low"),
    (0.5,  0.50, 80,  "medium"),
])
def test_model_trust(mean, rate, samples, level):
    assert model_trust(mean, rate, samples)["level"] == level


# ---------------------------------------------------------------------------
# accuracy_by_bucket / clv_summary
# ---------------------------------------------------------------------------

def test_accuracy_by_bucket_excludes_push_and_pending():
    entries = (
        [_fake_entry("HIT", "MEDIUM", 6.0)] * 4
        + [_fake_entry("MISS", "MEDIUM", 5.5)] * 2
        + [_fake_entry("PUSH", "MEDIUM")] * 3
        + [_fake_entry("PENDING", "MEDIUM")] * 3
        + [_fake_entry("HIT", "HIGH", 9.0)] * 2
    )
    result = accuracy_by_bucket(entries)

    assert result["MEDIUM"]["count"] == 6
    assert result["MEDIUM"]["hit_rate"] == pytest.approx(4 / 6, abs=1e-4)
    assert result["MEDIUM"]["mean_edge"] == pytest.approx((6.0 * 4 + 5.5 * 2) / 6, abs=0.01)
    # Too few samples for a rate
    assert result["HIGH"]["count"] == 2
    assert result["HIGH"]["hit_rate"] is None
    assert result["NO_EDGE"]["count"] == 0


def test_clv_summary_ignores_missing_closing_prices():
    entries = [
        _fake_entry("HIT", clv=2.0),
        _fake_entry("MISS", clv=-1.0),
        _fake_entry("HIT", clv=3.0),
        _fake_entry("PENDING", clv=None),
    ]
    summary = clv_summary(entries)
    assert summary["count"] == 3
    assert summary["mean_clv"] == pytest.approx(4.0 / 3, abs=1e-3)
    assert summary["median_clv"] == pytest.approx(2.0)
    assert summary["positive_rate"] == pytest.approx(2 / 3, abs=1e-4)
    assert summary["status"] == "HEALTHY"
    assert summary["trust"]["level"] == "insufficient"


def test_clv_summary_empty():
    summary = clv_summary([])
    assert summary["count"] == 0
    assert summary["mean_clv"] is None
    assert summary["status"] == "UNKNOWN"


# ---------------------------------------------------------------------------
# calculate_summary (DB)
# ---------------------------------------------------------------------------

def test_calculate_summary(db):
    hit = analyze_and_record(db, soccer_match("m-1"), now=NOW).ledger_id
    miss = analyze_and_record(db, soccer_match("m-2"), now=NOW).ledger_id
    analyze_and_record(db, soccer_match("m-3"), now=NOW)

    attach_odds(db, hit, {"home": 1.65}, now=KICKOFF - timedelta(minutes=15))
    settle(db, hit, "2-0", now=KICKOFF + timedelta(hours=2))
    settle(db, miss, "0-2", now=KICKOFF + timedelta(hours=2))

    summary = calculate_summary(db)

    assert summary["total"] == 3
    assert summary["outcomes"] == {"PENDING": 1, "HIT": 1, "MISS": 1, "PUSH": 0}
    assert summary["hit_rate"] == pytest.approx(0.5)
    assert summary["by_bucket"]["NO_EDGE"]["count"] == 2
    assert summary["clv"]["count"] == 1
    assert summary["clv"]["mean_clv"] == pytest.approx(5.05, abs=0.01)


def test_calculate_summary_filters_by_sport(db):
    analyze_and_record(db, soccer_match("m-1"), now=NOW)
    assert calculate_summary(db, sport="basketball")["total"] == 0
