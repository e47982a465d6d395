"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or models.

The three pillars exposed are:

1. **Odds conversion**: decimal ↔ American ↔ implied probability.
2. **Vig removal**: proportional de-vig of a two- or three-way market.
3. **Line movement**: implied-probability shift between two prices (CLV).

Design decisions
----------------
* Every probability leaving this module is in **percentage units** (0–100).
  This is the only boundary where unit probabilities (0–1) exist; the
  blender, classifier and ledger never see fractions.
* Decimal odds are the native format.  American odds are accepted only
  through :func:`american_to_decimal` for feeds that quote them.
* De-vig is proportional (``fair_i = raw_i / Σ raw``).  Invalid prices
  (``≤ 1.0`` or non-finite) are dropped and the remaining outcomes are
  re-normalised over themselves; fewer than two valid prices means the
  market is *unavailable*, which is signalled with :class:`OddsInvalid`
  rather than a zero probability.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Mapping, Optional

from edgeledger.core.errors import OddsInvalid

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Decimal odds must be strictly greater than this to carry any payout.
MIN_DECIMAL_ODDS: Final[float] = 1.0

#: American-odds magnitude floor.  Values below this are not representable.
_MIN_AMERICAN_MAGNITUDE: Final[int] = 100

#: Minimum number of valid prices needed to de-vig a market.
MIN_VALID_OUTCOMES: Final[int] = 2

#: Outcome keys in canonical display order.
OUTCOME_KEYS: Final[tuple[str, ...]] = ("home", "draw", "away")


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def is_valid_decimal(odds: Optional[float]) -> bool:
    """True when *odds* is a finite decimal price above 1.0."""
    if odds is None:
        return False
    try:
        value = float(odds)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > MIN_DECIMAL_ODDS


def implied_prob(decimal_odds: float) -> float:
    """Raw implied probability in percent from decimal odds (vig-inclusive).

    Examples::

        implied_prob(1.80) → 55.56
        implied_prob(4.50) → 22.22

    Raises:
        OddsInvalid: If ``decimal_odds`` is not a valid price.
    """
    if not is_valid_decimal(decimal_odds):
        raise OddsInvalid(f"Decimal odds {decimal_odds!r} must be a finite number > 1.0")
    return 100.0 / float(decimal_odds)


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal (European) format.

    Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Raises:
        ValueError: If ``|american| < 100``.
    """
    if abs(american) < _MIN_AMERICAN_MAGNITUDE:
        raise ValueError(
            f"Invalid American odds {american!r}: magnitude must be ≥ 100. "
            "Check upstream odds parsing for data errors."
        )
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / abs(american) + 1.0


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds to the nearest American integer.

    Use the result for display and logging, not for further arithmetic.

    Raises:
        ValueError: If ``decimal_odds <= 1.0``.
    """
    if decimal_odds <= MIN_DECIMAL_ODDS:
        raise ValueError(f"Decimal odds {decimal_odds!r} must be > 1.0.")
    if decimal_odds >= 2.0:
        return round((decimal_odds - 1.0) * 100)
    # Favourite: decimal < 2.0 → negative American
    return round(-100.0 / (decimal_odds - 1.0))


# ---------------------------------------------------------------------------
# Vig removal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DevigResult:
    """Raw and de-vigged probabilities for one market, in percent.

    Attributes:
        raw: ``100 / odds`` per valid outcome.  Sums to ``100 + overround``.
        fair: ``raw / Σ raw`` per valid outcome.  Sums to 100.
        excluded: Outcome keys dropped because their price was invalid.
    """

    raw: dict[str, float]
    fair: dict[str, float]
    excluded: tuple[str, ...] = ()

    @property
    def overround(self) -> float:
        """Bookmaker margin in percentage points (``Σ raw − 100``)."""
        return sum(self.raw.values()) - 100.0

    @property
    def favourite(self) -> str:
        """Outcome with the highest fair probability."""
        return max(self.fair, key=lambda k: self.fair[k])


def devig(decimal_odds: Mapping[str, Optional[float]]) -> DevigResult:
    """De-vig a market of decimal odds into raw and fair probabilities.

    Args:
        decimal_odds: Mapping of outcome key (``home``, ``draw``, ``away``)
            to decimal price.  ``draw`` may be absent or ``None`` for
            two-way markets.

    Returns:
        :class:`DevigResult` over the valid outcomes only.

    Raises:
        OddsInvalid: If fewer than two outcomes carry a valid price.

    Examples::

        devig({"home": 1.80, "draw": 3.40, "away": 4.50})
        → raw  {home: 55.56, draw: 29.41, away: 22.22}   (Σ 107.19)
        → fair {home: 51.83, draw: 27.44, away: 20.73}   (Σ 100.00)
    """
    raw: dict[str, float] = {}
    excluded: list[str] = []
    for key in OUTCOME_KEYS:
        if key not in decimal_odds:
            continue
        price = decimal_odds[key]
        if price is None:
            continue
        if is_valid_decimal(price):
            raw[key] = 100.0 / float(price)
        else:
            excluded.append(key)

    if len(raw) < MIN_VALID_OUTCOMES:
        raise OddsInvalid(
            f"Need at least {MIN_VALID_OUTCOMES} valid prices to de-vig, "
            f"got {len(raw)} (excluded: {excluded or 'none'})"
        )

    total = sum(raw.values())
    fair = {key: value * 100.0 / total for key, value in raw.items()}
    return DevigResult(raw=raw, fair=fair, excluded=tuple(excluded))


def overround(decimal_odds: Mapping[str, Optional[float]]) -> float:
    """Bookmaker margin in percentage points for a market (e.g. 7.19)."""
    return devig(decimal_odds).overround


# ---------------------------------------------------------------------------
# Line movement
# ---------------------------------------------------------------------------


def implied_shift_pct(opening_odds: float, closing_odds: float) -> float:
    """Implied-probability shift in percentage points from open to close.

    ``(1/closing − 1/opening) × 100``.  Positive means the market moved
    toward the backed outcome after the price was taken.

    Examples::

        implied_shift_pct(1.80, 1.65) → +5.05
        implied_shift_pct(2.10, 2.30) → −4.14
    """
    return implied_prob(closing_odds) - implied_prob(opening_odds)
