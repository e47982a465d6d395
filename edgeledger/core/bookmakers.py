"""
Bookmaker quality registry.

Sharp books price close to the true probabilities, soft (recreational)
books carry wider margins and more pricing errors.  A quality rating in
[0, 1] expresses how far a book's prices can be trusted:

    ≥ 0.95  sharp       Pinnacle, Betfair Exchange
    ≥ 0.80  mid-sharp   BetOnline, Bovada, William Hill
    ≥ 0.70  mid-tier    Bet365, DraftKings, FanDuel
    ≥ 0.50  soft        BetRivers, Barstool, BetUS

Two consumers:

* :func:`quality_adjusted` regresses a book's probability toward a neutral
  prior (33.3 % three-way, 50 % two-way) in proportion to its distrust.
* :func:`min_value_edge` raises the edge needed to call a price *value* when
  the book is sharp, since beating an efficient price by a small margin is
  more likely noise.

Neither changes the de-vigged fair market or the edge buckets.
"""

from __future__ import annotations

import re
from typing import Final, Optional

DEFAULT_QUALITY: Final[float] = 0.7

BOOKMAKER_QUALITY: Final[dict[str, float]] = {
    # Sharp
    "pinnacle": 1.0,
    "betfair_ex_eu": 0.98,
    "betfair_ex_uk": 0.98,
    "betfair": 0.95,
    "matchbook": 0.92,
    # Mid-sharp
    "betonlineag": 0.85,
    "bovada": 0.82,
    "mybookieag": 0.80,
    "williamhill": 0.80,
    "williamhill_us": 0.80,
    # Mid-tier
    "bet365": 0.78,
    "unibet": 0.75,
    "unibet_eu": 0.75,
    "unibet_uk": 0.75,
    "draftkings": 0.75,
    "fanduel": 0.75,
    "betmgm": 0.72,
    "caesars": 0.72,
    "pointsbetus": 0.70,
    "wynnbet": 0.70,
    # Soft
    "betrivers": 0.68,
    "superbook": 0.65,
    "twinspires": 0.65,
    "barstool": 0.62,
    "lowvig": 0.60,
    "betus": 0.55,
}

# (minimum quality, minimum edge in pp), checked top-down
MIN_VALUE_EDGE_TIERS: Final[tuple[tuple[float, float], ...]] = (
    (0.95, 8.0),
    (0.80, 6.0),
    (0.70, 4.0),
    (0.50, 3.0),
)
MIN_VALUE_EDGE_FALLBACK: Final[float] = 5.0

THREE_WAY_PRIOR: Final[float] = 33.3
TWO_WAY_PRIOR: Final[float] = 50.0

_KEY_CHARS = re.compile(r"[^a-z0-9_]")


def bookmaker_key(name: Optional[str]) -> Optional[str]:
    """'Bet365' → 'bet365', 'William Hill' → 'williamhill'.  Blank → None."""
    if name is None:
        return None
    key = _KEY_CHARS.sub("", name.strip().lower())
    return key or None


def bookmaker_quality(name: Optional[str]) -> float:
    """Quality rating for a bookmaker.  Unknown or missing books get DEFAULT_QUALITY."""
    key = bookmaker_key(name)
    if key is None:
        return DEFAULT_QUALITY
    return BOOKMAKER_QUALITY.get(key, DEFAULT_QUALITY)


def quality_adjusted(prob_pct: float, bookmaker: Optional[str], three_way: bool = True) -> float:
    """
    Blend a bookmaker probability with the neutral prior by quality.

    ``quality * prob + (1 - quality) * prior``, rounded to 0.1 pp.  Pinnacle
    (1.0) is returned unchanged; a 0.6 book keeps 60 % of its own view.
    """
    quality = bookmaker_quality(bookmaker)
    prior = THREE_WAY_PRIOR if three_way else TWO_WAY_PRIOR
    return round(quality * prob_pct + (1.0 - quality) * prior, 1)


def min_value_edge(quality: float) -> float:
    """Edge (pp) required before a price from a book of this quality counts as value."""
    for floor, edge in MIN_VALUE_EDGE_TIERS:
        if quality >= floor:
            return edge
    return MIN_VALUE_EDGE_FALLBACK
