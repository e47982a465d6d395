"""
repair_ledger.py: detect and correct drifted ledger entries.

Flags entries whose stored probabilities do not sum to [98, 112] or whose
edge drifted from the authoritative snapshot, and overwrites them from that
snapshot.  Entries with no snapshot are listed as unrepairable.

Snapshots come from each entry's stored ``full_response`` unless a JSON
file of exported snapshots is given (a list of PredictionSnapshot dicts).

Usage
-----
  python scripts/repair_ledger.py                          # dry-run
  python scripts/repair_ledger.py --execute                # write fixes + audit log
  python scripts/repair_ledger.py --snapshots snaps.json --execute
  python scripts/repair_ledger.py --sport soccer --no-stored
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure the project root (one level up from scripts/) is on sys.path so that
# `from edgeledger.xxx import ...` resolves when the script is run directly.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def load_snapshots(path: Path) -> dict:
    data = json.loads(path.read_text())
    return {(str(s["match_id"]), str(s["model_version"])): s for s in data}


def main() -> None:
    parser = argparse.ArgumentParser(description="Integrity repair for the prediction ledger.")
    parser.add_argument("--execute", action="store_true",
                        help="Write fixes.  Without this flag the script runs dry.")
    parser.add_argument("--snapshots", type=Path, default=None,
                        help="JSON file of authoritative snapshots.")
    parser.add_argument("--no-stored", action="store_true",
                        help="Do not fall back to each entry's stored full_response.")
    parser.add_argument("--sport", default=None, help="Limit to one sport.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    from edgeledger.models import SessionLocal
    from edgeledger.services.integrity import repair_ledger

    snapshots = load_snapshots(args.snapshots) if args.snapshots else None

    db = SessionLocal()
    try:
        report = repair_ledger(
            db,
            snapshots=snapshots,
            use_stored_snapshot=not args.no_stored,
            sport=args.sport,
            dry_run=not args.execute,
        )
    finally:
        db.close()

    label = "[DRY RUN] " if not args.execute else ""
    print(f"{label}fixed: {report.fixed_count}  issues: {len(report.issues)}  "
          f"unrepairable: {len(report.unrepairable)}")
    for issue in report.issues:
        status = "fixed" if issue.repaired else "open"
        print(f"  [{status:5}] entry {issue.entry_id} {issue.match_id}: {issue.kind} {issue.detail}")


if __name__ == "__main__":
    main()
