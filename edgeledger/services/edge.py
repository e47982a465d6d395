"""
Edge classifier: model vs fair market → selection, edge value, bucket.

Edge is signed percentage points, ``model[selection] − fair[selection]``.
With no explicit selection the classifier scans every priced outcome and
picks the one where the model most disagrees *favourably* with the market,
which is not necessarily the outcome the model rates most likely.

Bucket thresholds (percentage points of edge)::

    edge ≥ 8  → HIGH
    edge ≥ 5  → MEDIUM
    edge ≥ 2  → SMALL
    otherwise → NO_EDGE   (includes every negative edge)

Separately from the bucket, an edge is flagged as *value* when it clears the
minimum value edge for the quoting bookmaker's quality (see
:mod:`edgeledger.core.bookmakers`).
"""

from __future__ import annotations

from typing import Final, Optional

from edgeledger.core.bookmakers import bookmaker_quality, min_value_edge
from edgeledger.core.contracts import (
    EdgeBucket,
    EdgeResult,
    MarketProbability,
    ModelProbability,
    Selection,
)

HIGH_EDGE_THRESHOLD: Final[float] = 8.0
MEDIUM_EDGE_THRESHOLD: Final[float] = 5.0
SMALL_EDGE_THRESHOLD: Final[float] = 2.0

#: Edges within this many pp are treated as tied.
TIE_TOLERANCE: Final[float] = 0.1

EDGE_PRECISION: Final[int] = 2


def bucket_for_edge(edge_value: Optional[float]) -> EdgeBucket:
    """Map a signed edge to its bucket.  ``None`` (no market) is NO_EDGE."""
    if edge_value is None:
        return EdgeBucket.NO_EDGE
    if edge_value >= HIGH_EDGE_THRESHOLD:
        return EdgeBucket.HIGH
    if edge_value >= MEDIUM_EDGE_THRESHOLD:
        return EdgeBucket.MEDIUM
    if edge_value >= SMALL_EDGE_THRESHOLD:
        return EdgeBucket.SMALL
    return EdgeBucket.NO_EDGE


def outcome_edges(model: ModelProbability, market_fair: MarketProbability) -> dict[str, float]:
    """Signed edge for every outcome priced by both model and market."""
    edges = {}
    for key, fair in market_fair.fair.items():
        model_prob = model.get(Selection(key))
        if model_prob is None:
            continue
        edges[key] = model_prob - fair
    return edges


def classify(
    model: ModelProbability,
    market_fair: Optional[MarketProbability],
    selection: Optional[Selection] = None,
    bookmaker: Optional[str] = None,
) -> EdgeResult:
    """
    Compute the edge and bucket.

    Args:
        model: Blended model probabilities.
        market_fair: De-vigged market, or None when unavailable.  Without a
            market the edge is None, the bucket NO_EDGE and the selection
            falls back to the model's favoured outcome.
        selection: Force the edge onto this outcome instead of scanning.
        bookmaker: Book that quoted the market.  Sets the minimum value
            edge behind ``is_value``; unknown books use the default quality.

    Example::

        classify(ModelProbability(home=58, draw=24, away=18), fair{51.8, 27.4, 20.7})
        → EdgeResult(selection=HOME, edge_value=6.17, edge_bucket=MEDIUM)
    """
    if market_fair is None:
        fallback = selection or model.favored or Selection(max(model.as_dict(), key=model.as_dict().get))
        return EdgeResult(selection=Selection(fallback), edge_value=None, edge_bucket=EdgeBucket.NO_EDGE)

    edges = outcome_edges(model, market_fair)
    if not edges:
        raise ValueError("Model and market share no priced outcome")

    if selection is not None:
        key = Selection(selection).value
        if key not in edges:
            raise ValueError(f"Selection {key!r} is not priced by the market")
    else:
        best = max(edges.values())
        tied = [k for k, v in edges.items() if best - v <= TIE_TOLERANCE]
        favourite = market_fair.favourite.value
        key = favourite if len(tied) > 1 and favourite in tied else max(tied, key=edges.get)

    edge_value = round(edges[key], EDGE_PRECISION)
    quality = bookmaker_quality(bookmaker)
    threshold = min_value_edge(quality)
    return EdgeResult(
        selection=Selection(key),
        edge_value=edge_value,
        edge_bucket=bucket_for_edge(edge_value),
        edges={k: round(v, EDGE_PRECISION) for k, v in edges.items()},
        bookmaker_quality=quality,
        min_value_edge=threshold,
        is_value=edge_value >= threshold,
    )
