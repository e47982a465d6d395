"""Tests for integrity repair: sum check, edge drift, snapshots and audit log."""

import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from edgeledger.core.contracts import EdgeBucket, PredictionSnapshot, Selection
from edgeledger.core.errors import DataCorruption
from edgeledger.models import LedgerRepairLog
from edgeledger.services.analysis import analyze_and_record
from edgeledger.services.integrity import (
    ISSUE_EDGE_DRIFT,
    ISSUE_PROB_SUM,
    ISSUE_UNREPAIRABLE,
    check_probability_sum,
    repair,
    repair_ledger,
)
from edgeledger.services.ledger import get_entry

from conftest import NOW, soccer_match


def _snapshot(match_id="m-1", model_version="v2", **overrides):
    data = dict(
        match_id=match_id,
        model_version=model_version,
        selection=Selection.HOME,
        model_probability={"home": 58.0, "draw": 24.0, "away": 18.0},
        market_raw={"home": 55.56, "draw": 29.41, "away": 22.22},
        market_fair={"home": 51.83, "draw": 27.44, "away": 20.73},
        edge_value=6.17,
        edge_bucket=EdgeBucket.MEDIUM,
    )
    data.update(overrides)
    return PredictionSnapshot(**data)


def _make_entry(entry_id=1, match_id="m-1", home=58.0, draw=24.0, away=18.0,
                edge=6.17, model_prob=None, selection="home", full_response=None):
    entry = MagicMock()
    entry.id = entry_id
    entry.match_id = match_id
    entry.model_version = "v2"
    entry.selection = selection
    entry.home_win = home
    entry.draw = draw
    entry.away_win = away
    entry.model_probability = home if model_prob is None else model_prob
    entry.market_probability_fair = 51.83
    entry.market_probability_raw = 55.56
    entry.edge_value = edge
    entry.edge_bucket = "MEDIUM"
    entry.full_response = full_response
    return entry


# ---------------------------------------------------------------------------
# Sum check
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("home, draw, away, ok", [
    (58.0, 24.0, 18.0,  True),
    (55.6, 29.4, 22.2,  True),     # raw implied, overround 7.2
    (65.0, None, 35.0,  True),     # two-way
    (0.58, 0.24, 0.18,  False),    # stored as fractions
    (116.0, 48.0, 36.0, False),    # double-counted
    (50.0, 20.0, 20.0,  False),
])
def test_check_probability_sum(home, draw, away, ok):
    entry = _make_entry(home=home, draw=draw, away=away)
    if ok:
        check_probability_sum(entry)
    else:
        with pytest.raises(DataCorruption):
            check_probability_sum(entry)


# ---------------------------------------------------------------------------
# repair
# ---------------------------------------------------------------------------

def test_fraction_entry_repaired_from_snapshot():
    entry = _make_entry(home=0.58, draw=0.24, away=0.18, edge=0.0617, model_prob=0.58)
    report = repair([entry], snapshots={("m-1", "v2"): _snapshot()})

    assert report.fixed_count == 1
    assert (entry.home_win, entry.draw, entry.away_win) == (58.0, 24.0, 18.0)
    assert entry.model_probability == 58.0
    assert entry.edge_value == 6.17
    assert {i.kind for i in report.issues} == {ISSUE_PROB_SUM, ISSUE_EDGE_DRIFT}
    assert all(i.repaired for i in report.issues)
    changed = {c.field_name for c in report.changes}
    assert {"home_win", "draw", "away_win", "edge_value", "model_probability"} <= changed


def test_repair_is_idempotent():
    entry = _make_entry(home=0.58, draw=0.24, away=0.18, edge=0.0617, model_prob=0.58)
    snapshots = {("m-1", "v2"): _snapshot()}
    repair([entry], snapshots)

    second = repair([entry], snapshots)
    assert second.fixed_count == 0
    assert second.issues == []
    assert second.changes == []


def test_corrupted_entry_without_snapshot_is_unrepairable():
    entry = _make_entry(home=0.58, draw=0.24, away=0.18)
    report = repair([entry], snapshots={}, use_stored_snapshot=False)

    assert report.fixed_count == 0
    assert len(report.unrepairable) == 1
    assert report.unrepairable[0].entry_id == 1
    # Nothing guessed
    assert (entry.home_win, entry.draw, entry.away_win) == (0.58, 0.24, 0.18)


def test_edge_drift_repaired():
    entry = _make_entry(edge=9.0)
    report = repair([entry], snapshots={("m-1", "v2"): _snapshot()})

    assert report.fixed_count == 1
    assert report.issues[0].kind == ISSUE_EDGE_DRIFT
    assert entry.edge_value == 6.17


def test_drift_within_tolerance_ignored():
    entry = _make_entry(edge=6.20)
    report = repair([entry], snapshots={("m-1", "v2"): _snapshot()})
    assert report.fixed_count == 0
    assert report.issues == []


def test_stored_full_response_used_as_snapshot():
    entry = _make_entry(home=0.58, draw=0.24, away=0.18, model_prob=0.58,
                        full_response=_snapshot().to_dict())
    report = repair([entry])
    assert report.fixed_count == 1
    assert entry.home_win == 58.0


def test_snapshot_for_another_entry_is_not_trusted():
    entry = _make_entry(home=0.58, draw=0.24, away=0.18,
                        full_response=_snapshot(match_id="other-match").to_dict())
    report = repair([entry])
    assert report.fixed_count == 0
    assert len(report.unrepairable) == 1


def test_corrupted_snapshot_is_not_trusted():
    bad = _snapshot(model_probability={"home": 0.58, "draw": 0.24, "away": 0.18})
    entry = _make_entry(home=0.58, draw=0.24, away=0.18)
    report = repair([entry], snapshots={("m-1", "v2"): bad}, use_stored_snapshot=False)
    assert report.fixed_count == 0
    assert len(report.unrepairable) == 1


def test_selection_mismatch_is_unrepairable():
    entry = _make_entry(home=0.58, draw=0.24, away=0.18, selection="away")
    report = repair([entry], snapshots={("m-1", "v2"): _snapshot()})
    assert report.fixed_count == 0
    assert len(report.unrepairable) == 1
    assert entry.home_win == 0.58


# ---------------------------------------------------------------------------
# repair_ledger (DB)
# ---------------------------------------------------------------------------

def _corrupt(db, ledger_id):
    entry = get_entry(db, ledger_id)
    entry.home_win = round(entry.home_win / 100, 4)
    entry.draw = round(entry.draw / 100, 4)
    entry.away_win = round(entry.away_win / 100, 4)
    db.commit()
    return entry


def test_repair_ledger_writes_audit_log(db):
    ledger_id = analyze_and_record(db, soccer_match(), now=NOW).ledger_id
    _corrupt(db, ledger_id)

    report = repair_ledger(db)

    assert report.fixed_count == 1
    entry = get_entry(db, ledger_id)
    assert entry.home_win + entry.draw + entry.away_win == pytest.approx(100.0, abs=0.5)

    logs = list(db.execute(select(LedgerRepairLog)).scalars())
    assert {log.field_name for log in logs} == {"home_win", "draw", "away_win"}
    assert all(log.entry_id == ledger_id for log in logs)
    assert all(ISSUE_PROB_SUM in log.reason for log in logs)

    assert repair_ledger(db).fixed_count == 0


def test_repair_ledger_dry_run_changes_nothing(db, caplog):
    ledger_id = analyze_and_record(db, soccer_match(), now=NOW).ledger_id
    _corrupt(db, ledger_id)

    with caplog.at_level(logging.INFO, logger="edgeledger.services.integrity"):
        report = repair_ledger(db, dry_run=True)

    assert report.fixed_count == 1
    assert get_entry(db, ledger_id).home_win < 1.0
    assert db.execute(select(LedgerRepairLog)).first() is None

    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("Would repair entry") for m in messages)
    assert not any(m.startswith("Repaired entry") for m in messages)


def test_repair_ledger_reports_unrepairable(db):
    ledger_id = analyze_and_record(db, soccer_match(), now=NOW).ledger_id
    entry = _corrupt(db, ledger_id)
    entry.full_response = None
    db.commit()

    report = repair_ledger(db)

    assert report.fixed_count == 0
    assert [i.entry_id for i in report.unrepairable] == [ledger_id]
    assert ISSUE_UNREPAIRABLE in {i.kind for i in report.issues}
