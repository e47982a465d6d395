"""
Performance analytics over settled ledger entries.

The pure functions take lists of entries (ORM rows or any object with the
same attributes) and return plain dicts.  :func:`calculate_summary` is the
only one that touches a Session.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from edgeledger.core.contracts import EdgeBucket, Outcome
from edgeledger.models import utcnow
from edgeledger.services.ledger import query_entries

logger = logging.getLogger(__name__)

# Buckets with fewer settled entries report no hit rate
MIN_BUCKET_SAMPLES = 5
# CLV trust levels need at least this many closing prices
MIN_CLV_SAMPLES = 50


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _hit_rate(hits: int, total: int) -> Optional[float]:
    return round(hits / total, 4) if total > 0 else None


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _median(values: List[float]) -> Optional[float]:
    if not values:
        return None
    s = sorted(values)
    n = len(s)
    mid = n // 2
    return s[mid] if n % 2 else (s[mid - 1] + s[mid]) / 2.0


def _std(values: List[float]) -> Optional[float]:
    if len(values) < 2:
        return None
    m = _mean(values)
    variance = sum((v - m) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance)


def clv_grade(clv_value: Optional[float]) -> str:
    """Human-readable grade for one entry's CLV (percentage points)."""
    if clv_value is None:
        return "UNKNOWN"
    if clv_value >= 3.0:
        return "STRONG+"
    elif clv_value >= 1.0:
        return "POSITIVE"
    elif clv_value >= -1.0:
        return "NEUTRAL"
    elif clv_value >= -3.0:
        return "NEGATIVE"
    return "STRONG-"


def _clv_status(mean_clv: Optional[float]) -> str:
    if mean_clv is None:
        return "UNKNOWN"
    if mean_clv > 0.5:
        return "HEALTHY"
    if mean_clv >= -0.5:
        return "WARNING"
    return "CRITICAL"


def model_trust(mean_clv: Optional[float], positive_rate: Optional[float], samples: int) -> Dict:
    """Trust level and conviction multiplier implied by the CLV record."""
    if samples < MIN_CLV_SAMPLES or mean_clv is None:
        return {"level": "insufficient", "multiplier": 0.8,
                "reason": f"Only {samples} CLV samples, need {MIN_CLV_SAMPLES}+"}
    if mean_clv >= 3.0 and positive_rate >= 0.55:
        return {"level": "high", "multiplier": 1.15,
                "reason": f"Strong +{mean_clv:.1f}pp average CLV"}
    if mean_clv >= 1.0 and positive_rate >= 0.50:
        return {"level": "medium", "multiplier": 1.0,
                "reason": f"Positive +{mean_clv:.1f}pp CLV suggests some edge"}
    if mean_clv < 0:
        return {"level": "low", "multiplier": 0.7,
                "reason": f"Negative {mean_clv:.1f}pp CLV, market is sharper"}
    return {"level": "medium", "multiplier": 0.9, "reason": "CLV metrics inconclusive"}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def accuracy_by_bucket(entries: Iterable[Any], min_samples: int = MIN_BUCKET_SAMPLES) -> Dict[str, Dict]:
    """
    Hit rate per edge bucket over HIT/MISS entries.  PUSH and PENDING are
    excluded.  Buckets below *min_samples* report ``hit_rate = None``.
    """
    stats = {b.value: {"hits": 0, "total": 0, "edges": []} for b in EdgeBucket}
    for e in entries:
        if e.outcome not in (Outcome.HIT.value, Outcome.MISS.value):
            continue
        bucket = stats.setdefault(e.edge_bucket, {"hits": 0, "total": 0, "edges": []})
        bucket["total"] += 1
        if e.outcome == Outcome.HIT.value:
            bucket["hits"] += 1
        if e.edge_value is not None:
            bucket["edges"].append(e.edge_value)

    result = {}
    for name, s in stats.items():
        mean_edge = _mean(s["edges"])
        result[name] = {
            "count": s["total"],
            "hits": s["hits"],
            "hit_rate": _hit_rate(s["hits"], s["total"]) if s["total"] >= min_samples else None,
            "mean_edge": round(mean_edge, 2) if mean_edge is not None else None,
        }
    return result


def clv_summary(entries: Iterable[Any]) -> Dict:
    """Mean / median / spread of CLV over entries whose closing price was captured."""
    values = [e.clv_value for e in entries if e.clv_value is not None]
    mean = _mean(values)
    positive_rate = _hit_rate(sum(1 for v in values if v > 0), len(values))
    std = _std(values)
    median = _median(values)
    return {
        "count": len(values),
        "mean_clv": round(mean, 3) if mean is not None else None,
        "median_clv": round(median, 3) if median is not None else None,
        "std_clv": round(std, 3) if std is not None else None,
        "positive_rate": positive_rate,
        "status": _clv_status(mean),
        "trust": model_trust(mean, positive_rate, len(values)),
    }


def calculate_summary(
    db: Session,
    days: Optional[int] = None,
    sport: Optional[str] = None,
    model_version: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """Outcome counts, hit rate by bucket and CLV health for the ledger."""
    start = (now or utcnow()) - timedelta(days=days) if days else None
    entries = query_entries(db, start=start, sport=sport, model_version=model_version)

    counts = {o.value: 0 for o in Outcome}
    for e in entries:
        counts[e.outcome] = counts.get(e.outcome, 0) + 1

    decided = counts[Outcome.HIT.value] + counts[Outcome.MISS.value]
    summary = {
        "total": len(entries),
        "outcomes": counts,
        "hit_rate": _hit_rate(counts[Outcome.HIT.value], decided),
        "by_bucket": accuracy_by_bucket(entries),
        "clv": clv_summary(entries),
    }
    logger.info(
        "Performance summary: %d entries, hit rate %s, CLV status %s",
        len(entries), summary["hit_rate"], summary["clv"]["status"],
    )
    return summary
