"""Data transfer objects shared by every component.

All structures here are plain, frozen dataclasses so they can be passed
across process boundaries and compared by value.  None of them import
SQLAlchemy, pydantic or any service module, so ``edgeledger.core`` stays a
pure leaf package.

Units
-----
Every probability field is in **percentage units** (0–100).  Odds are
decimal.  Edges are signed percentage points.

Absent data
-----------
Optional numeric fields are ``None`` when the input did not carry them.
A zero always means a measured zero, never "no data".
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Final, Optional

#: Current layout of :class:`PredictionSnapshot`.  Bump on any field change.
SNAPSHOT_SCHEMA_VERSION: Final[int] = 1


# ---------------------------------------------------------------------------
# Closed enums
# ---------------------------------------------------------------------------


class Sport(str, Enum):
    SOCCER = "soccer"
    BASKETBALL = "basketball"
    HOCKEY = "hockey"
    FOOTBALL = "football"
    OTHER = "other"


class Selection(str, Enum):
    HOME = "home"
    DRAW = "draw"
    AWAY = "away"


class Outcome(str, Enum):
    PENDING = "PENDING"
    HIT = "HIT"
    MISS = "MISS"
    PUSH = "PUSH"

    @property
    def is_terminal(self) -> bool:
        return self is not Outcome.PENDING


class EdgeBucket(str, Enum):
    NO_EDGE = "NO_EDGE"
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _BUCKET_RANK[self]


_BUCKET_RANK = {
    EdgeBucket.NO_EDGE: 0,
    EdgeBucket.SMALL: 1,
    EdgeBucket.MEDIUM: 2,
    EdgeBucket.HIGH: 3,
}


class Severity(str, Enum):
    OUT = "out"
    DOUBTFUL = "doubtful"
    QUESTIONABLE = "questionable"
    PROBABLE = "probable"

    @property
    def weight(self) -> float:
        """Probability the player misses the match."""
        return _SEVERITY_WEIGHTS[self]


_SEVERITY_WEIGHTS = {
    Severity.OUT: 1.0,
    Severity.DOUBTFUL: 0.75,
    Severity.QUESTIONABLE: 0.40,
    Severity.PROBABLE: 0.10,
}


class BlendMethod(str, Enum):
    MARKET_ANCHORED = "market_anchored"
    FEATURES_ONLY = "features_only"


# ---------------------------------------------------------------------------
# Signal components
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SideStats:
    """Season scoring record for one side."""

    scored: float
    conceded: float
    played: int

    @property
    def scored_per_game(self) -> float:
        return self.scored / self.played

    @property
    def conceded_per_game(self) -> float:
        return self.conceded / self.played


@dataclass(frozen=True)
class SeasonStats:
    home: SideStats
    away: SideStats


@dataclass(frozen=True)
class Injury:
    player: str
    severity: Severity
    side: Selection          # HOME or AWAY
    key_player: bool = False


@dataclass(frozen=True)
class MatchContext:
    """Rest and travel context.  Every field is optional."""

    home_rest_days: Optional[float] = None
    away_rest_days: Optional[float] = None
    home_back_to_back: Optional[bool] = None
    away_back_to_back: Optional[bool] = None
    home_games_last_7: Optional[int] = None
    away_games_last_7: Optional[int] = None
    away_travel_miles: Optional[float] = None


@dataclass(frozen=True)
class MarketOdds:
    """Decimal odds.  ``draw`` is ``None`` for two-way markets.

    ``bookmaker`` names the book that quoted the prices, when known.
    """

    home: Optional[float]
    away: Optional[float]
    draw: Optional[float] = None
    bookmaker: Optional[str] = None

    def as_dict(self) -> dict[str, Optional[float]]:
        return {"home": self.home, "draw": self.draw, "away": self.away}

    def price(self, selection: Selection) -> Optional[float]:
        return getattr(self, Selection(selection).value)


@dataclass(frozen=True)
class DataAvailability:
    """Which optional input dimensions were actually present."""

    form: bool = False
    h2h: bool = False
    injuries: bool = False
    season_stats: bool = False
    context: bool = False
    market_odds: bool = False

    def signal_count(self) -> int:
        """Number of non-market dimensions present."""
        return sum((self.form, self.h2h, self.injuries, self.season_stats, self.context))


@dataclass(frozen=True)
class UniversalSignals:
    """Per-match bundle produced by the normalizer.

    ``three_way`` is fixed at normalisation and never recomputed downstream.
    """

    sport: Sport
    home: str
    away: str
    three_way: bool
    kickoff: Optional[datetime] = None
    home_form: Optional[tuple[str, ...]] = None      # most recent first, W/D/L
    away_form: Optional[tuple[str, ...]] = None
    season_stats: Optional[SeasonStats] = None
    injuries: Optional[tuple[Injury, ...]] = None
    h2h: Optional[tuple[Selection, ...]] = None      # current home side's view
    context: Optional[MatchContext] = None
    market_odds: Optional[MarketOdds] = None
    data_availability: DataAvailability = field(default_factory=DataAvailability)

    @property
    def outcomes(self) -> tuple[Selection, ...]:
        if self.three_way:
            return (Selection.HOME, Selection.DRAW, Selection.AWAY)
        return (Selection.HOME, Selection.AWAY)


# ---------------------------------------------------------------------------
# Probabilities and edges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelProbability:
    """Blended outcome probabilities in percent.  Sums to 100 ± 0.5."""

    home: float
    away: float
    draw: Optional[float] = None
    confidence: float = 0.0
    method: BlendMethod = BlendMethod.MARKET_ANCHORED
    favored: Optional[Selection] = None

    def get(self, selection: Selection) -> Optional[float]:
        return getattr(self, Selection(selection).value)

    def as_dict(self) -> dict[str, float]:
        probs = {"home": self.home, "away": self.away}
        if self.draw is not None:
            probs["draw"] = self.draw
        return probs

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class MarketProbability:
    """Raw (1/odds) and fair (de-vigged) probabilities in percent."""

    raw: dict[str, float]
    fair: dict[str, float]

    @property
    def overround(self) -> float:
        return sum(self.raw.values()) - 100.0

    @property
    def favourite(self) -> Selection:
        return Selection(max(self.fair, key=lambda k: self.fair[k]))

    def fair_for(self, selection: Selection) -> Optional[float]:
        return self.fair.get(Selection(selection).value)

    def raw_for(self, selection: Selection) -> Optional[float]:
        return self.raw.get(Selection(selection).value)


@dataclass(frozen=True)
class EdgeResult:
    """Classifier output.  ``edge_value`` is ``None`` when the market is unavailable.

    ``is_value`` is true when the edge clears the minimum value edge for the
    quoting bookmaker's quality.  It is independent of ``edge_bucket``.
    """

    selection: Selection
    edge_value: Optional[float]
    edge_bucket: EdgeBucket
    edges: dict[str, float] = field(default_factory=dict)
    bookmaker_quality: Optional[float] = None
    min_value_edge: Optional[float] = None
    is_value: bool = False


# ---------------------------------------------------------------------------
# Versioned snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PredictionSnapshot:
    """Authoritative record of one analysis, stored as the ledger's input blob.

    This is the only source Integrity Repair trusts.  ``schema_version``
    tags the layout so older rows can be read without runtime probing.
    """

    match_id: str
    model_version: str
    selection: Selection
    model_probability: dict[str, float]
    market_raw: Optional[dict[str, float]]
    market_fair: Optional[dict[str, float]]
    edge_value: Optional[float]
    edge_bucket: EdgeBucket
    odds: Optional[dict[str, Optional[float]]] = None
    signals: Optional[dict[str, Any]] = None
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["selection"] = self.selection.value
        data["edge_bucket"] = self.edge_bucket.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PredictionSnapshot:
        version = int(data.get("schema_version", SNAPSHOT_SCHEMA_VERSION))
        if version > SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported snapshot schema_version {version}")
        return cls(
            match_id=str(data["match_id"]),
            model_version=str(data["model_version"]),
            selection=Selection(data["selection"]),
            model_probability={k: float(v) for k, v in data["model_probability"].items()},
            market_raw=data.get("market_raw"),
            market_fair=data.get("market_fair"),
            edge_value=data.get("edge_value"),
            edge_bucket=EdgeBucket(data.get("edge_bucket", EdgeBucket.NO_EDGE.value)),
            odds=data.get("odds"),
            signals=data.get("signals"),
            schema_version=version,
        )
