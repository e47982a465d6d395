"""
Integrity repair for ledger entries whose stored numbers drifted.

Two checks run against every entry:

  probability sum   home_win + draw + away_win must lie in [98, 112].
                    Catches values stored as 0–1 fractions and values that
                    were double-counted.
  edge drift        edge_value and model_probability must agree with the
                    authoritative snapshot within 0.05 pp.

A flagged entry is corrected **only** from its authoritative
:class:`~edgeledger.core.contracts.PredictionSnapshot`.  Without one the
entry is reported as unrepairable; nothing is guessed.  Every overwritten
field is logged old → new, and :func:`repair_ledger` also persists each
change to ``ledger_repair_log``.

Running repair twice is a no-op the second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from edgeledger.core.contracts import PredictionSnapshot
from edgeledger.core.errors import DataCorruption
from edgeledger.models import LedgerRepairLog, PredictionLedgerEntry

logger = logging.getLogger(__name__)

PROB_SUM_MIN = 98.0
PROB_SUM_MAX = 112.0
EDGE_DRIFT_TOLERANCE = 0.05

SnapshotKey = Tuple[str, str]      # (match_id, model_version)

ISSUE_PROB_SUM = "PROB_SUM"
ISSUE_EDGE_DRIFT = "EDGE_DRIFT"
ISSUE_UNREPAIRABLE = "UNREPAIRABLE"


@dataclass
class FieldChange:
    entry_id: Optional[int]
    field_name: str
    old_value: Any
    new_value: Any
    reason: str


@dataclass
class RepairIssue:
    entry_id: Optional[int]
    match_id: str
    kind: str
    detail: str
    repaired: bool = False


@dataclass
class RepairReport:
    fixed_count: int = 0
    issues: List[RepairIssue] = field(default_factory=list)
    changes: List[FieldChange] = field(default_factory=list)

    @property
    def unrepairable(self) -> List[RepairIssue]:
        return [i for i in self.issues if i.kind == ISSUE_UNREPAIRABLE]

    def to_dict(self) -> dict:
        return {
            "fixed_count": self.fixed_count,
            "issues": [vars(i) for i in self.issues],
            "changes": len(self.changes),
        }


# ---------------------------------------------------------------------------
# Checks (pure)
# ---------------------------------------------------------------------------

def probability_sum(entry: Any) -> Optional[float]:
    """Sum of stored outcome probabilities, or None if home/away are missing."""
    if entry.home_win is None or entry.away_win is None:
        return None
    return entry.home_win + (entry.draw or 0.0) + entry.away_win


def check_probability_sum(entry: Any) -> None:
    """
    Raises:
        DataCorruption: stored probabilities are missing or outside [98, 112].
    """
    total = probability_sum(entry)
    if total is None:
        raise DataCorruption("stored probabilities missing")
    if not PROB_SUM_MIN <= total <= PROB_SUM_MAX:
        raise DataCorruption(f"probability sum {total:.2f} outside [{PROB_SUM_MIN:.0f}, {PROB_SUM_MAX:.0f}]")


def _snapshot_sum_ok(snapshot: PredictionSnapshot) -> bool:
    total = sum(snapshot.model_probability.values())
    return PROB_SUM_MIN <= total <= PROB_SUM_MAX


def _drifted(stored: Optional[float], authoritative: Optional[float]) -> bool:
    if authoritative is None:
        return False
    if stored is None:
        return True
    return abs(stored - authoritative) > EDGE_DRIFT_TOLERANCE


def _as_snapshot(raw: Union[PredictionSnapshot, Mapping[str, Any], None]) -> Optional[PredictionSnapshot]:
    if raw is None or isinstance(raw, PredictionSnapshot):
        return raw
    try:
        return PredictionSnapshot.from_dict(dict(raw))
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Ignoring unreadable snapshot: %s", exc)
        return None


def _find_snapshot(
    entry: Any,
    snapshots: Mapping[SnapshotKey, Any],
    use_stored: bool,
) -> Optional[PredictionSnapshot]:
    snapshot = _as_snapshot(snapshots.get((entry.match_id, entry.model_version)))
    if snapshot is None and use_stored:
        snapshot = _as_snapshot(entry.full_response)
    if snapshot is None:
        return None
    if (snapshot.match_id, snapshot.model_version) != (entry.match_id, entry.model_version):
        logger.warning(
            "Snapshot %s@%s does not belong to entry %s",
            snapshot.match_id, snapshot.model_version, entry.id,
        )
        return None
    if not _snapshot_sum_ok(snapshot):
        logger.warning("Snapshot for entry %s fails the sum check itself", entry.id)
        return None
    return snapshot


def _target_values(entry: Any, snapshot: PredictionSnapshot) -> dict[str, Any]:
    probs = snapshot.model_probability
    targets = {
        "home_win": probs.get("home"),
        "draw": probs.get("draw"),
        "away_win": probs.get("away"),
        "model_probability": probs.get(snapshot.selection.value),
        "edge_value": snapshot.edge_value,
        "edge_bucket": snapshot.edge_bucket.value,
    }
    if snapshot.market_fair is not None:
        targets["market_probability_fair"] = snapshot.market_fair.get(snapshot.selection.value)
    if snapshot.market_raw is not None:
        targets["market_probability_raw"] = snapshot.market_raw.get(snapshot.selection.value)
    return targets


def _differs(old: Any, new: Any) -> bool:
    if isinstance(old, float) or isinstance(new, float):
        if old is None or new is None:
            return old is not new
        return abs(old - new) > 1e-9
    return old != new


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

def repair(
    entries: Iterable[Any],
    snapshots: Optional[Mapping[SnapshotKey, Any]] = None,
    use_stored_snapshot: bool = True,
    dry_run: bool = False,
) -> RepairReport:
    """
    Detect and correct corrupted entries in place.

    Args:
        entries: Ledger entries (ORM rows or any object with the same
            attributes).  Corrected fields are assigned directly.
        snapshots: Authoritative snapshots keyed by
            ``(match_id, model_version)``.  May hold
            :class:`PredictionSnapshot` objects or their dict form.
        use_stored_snapshot: Fall back to the entry's own ``full_response``
            when no external snapshot is supplied.
        dry_run: Only affects log wording; the caller discards the changes.

    Returns:
        :class:`RepairReport` with ``fixed_count``, every issue found and
        every field change applied.
    """
    snapshots = snapshots or {}
    report = RepairReport()

    for entry in entries:
        snapshot = _find_snapshot(entry, snapshots, use_stored_snapshot)

        flagged: List[RepairIssue] = []
        try:
            check_probability_sum(entry)
        except DataCorruption as exc:
            flagged.append(RepairIssue(entry.id, entry.match_id, ISSUE_PROB_SUM, str(exc)))

        if snapshot is not None:
            probs = snapshot.model_probability
            if (
                _drifted(entry.edge_value, snapshot.edge_value)
                or _drifted(entry.model_probability, probs.get(snapshot.selection.value))
            ):
                flagged.append(RepairIssue(
                    entry.id, entry.match_id, ISSUE_EDGE_DRIFT,
                    f"stored edge {entry.edge_value} vs snapshot {snapshot.edge_value}",
                ))

        if not flagged:
            continue

        if snapshot is None:
            report.issues.extend(flagged)
            report.issues.append(RepairIssue(
                entry.id, entry.match_id, ISSUE_UNREPAIRABLE, "no authoritative snapshot",
            ))
            logger.warning("Entry %s (%s) corrupted and unrepairable: no snapshot", entry.id, entry.match_id)
            continue

        if snapshot.selection.value != entry.selection:
            report.issues.extend(flagged)
            report.issues.append(RepairIssue(
                entry.id, entry.match_id, ISSUE_UNREPAIRABLE,
                f"snapshot selection {snapshot.selection.value} != stored {entry.selection}",
            ))
            logger.warning("Entry %s (%s): selection mismatch, not repaired", entry.id, entry.match_id)
            continue

        reason = ",".join(i.kind for i in flagged)
        for name, new in _target_values(entry, snapshot).items():
            old = getattr(entry, name)
            if not _differs(old, new):
                continue
            setattr(entry, name, new)
            report.changes.append(FieldChange(entry.id, name, old, new, reason))
            logger.info(
                "%s entry %s %s: %r → %r (%s)",
                "Would repair" if dry_run else "Repaired", entry.id, name, old, new, reason,
            )

        for issue in flagged:
            issue.repaired = True
        report.issues.extend(flagged)
        report.fixed_count += 1

    logger.info(
        "Integrity repair%s: %d fixed, %d issue(s), %d unrepairable",
        " (dry run)" if dry_run else "",
        report.fixed_count, len(report.issues), len(report.unrepairable),
    )
    return report


def repair_ledger(
    db: Session,
    snapshots: Optional[Mapping[SnapshotKey, Any]] = None,
    use_stored_snapshot: bool = True,
    sport: Optional[str] = None,
    dry_run: bool = False,
) -> RepairReport:
    """Run :func:`repair` over the stored ledger and persist the audit trail."""
    stmt = select(PredictionLedgerEntry).order_by(PredictionLedgerEntry.id)
    if sport is not None:
        stmt = stmt.where(PredictionLedgerEntry.sport == sport)
    entries = list(db.execute(stmt).scalars())

    report = repair(entries, snapshots, use_stored_snapshot, dry_run=dry_run)
    if dry_run:
        db.rollback()
        return report

    for change in report.changes:
        db.add(LedgerRepairLog(
            entry_id=change.entry_id,
            field_name=change.field_name,
            old_value=None if change.old_value is None else str(change.old_value),
            new_value=None if change.new_value is None else str(change.new_value),
            reason=change.reason,
        ))
    db.commit()
    return report
