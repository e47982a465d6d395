"""
Pydantic schemas for collaborator payloads.

Validation is permissive about *content* (an odds price of 0.9 is accepted
and later dropped by the de-vigger) and strict about *shape* (a team
identifier must be a non-empty string).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Match input
# ---------------------------------------------------------------------------

class SideStatsIn(BaseModel):
    scored: float = Field(..., ge=0)
    conceded: float = Field(..., ge=0)
    played: int = Field(..., ge=0)


class InjuryIn(BaseModel):
    player: str = Field(..., min_length=1)
    severity: str = Field("out", description='Free text, e.g. "Out", "Doubtful", "GTD"')
    side: Literal["home", "away"]
    key_player: bool = False


class ContextIn(BaseModel):
    home_rest_days: Optional[float] = Field(None, ge=0)
    away_rest_days: Optional[float] = Field(None, ge=0)
    home_back_to_back: Optional[bool] = None
    away_back_to_back: Optional[bool] = None
    home_games_last_7: Optional[int] = Field(None, ge=0)
    away_games_last_7: Optional[int] = Field(None, ge=0)
    away_travel_miles: Optional[float] = Field(None, ge=0)


class OddsIn(BaseModel):
    """Bookmaker prices.  Invalid prices are kept here and dropped by the de-vigger."""

    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None
    odds_format: Literal["decimal", "american"] = "decimal"
    bookmaker: Optional[str] = Field(None, description='Quoting book, e.g. "pinnacle" or "Bet365"')


class RawMatchInput(BaseModel):
    """
    One match as delivered by the schedule/stats/odds collaborators.

    Only ``sport``, ``home`` and ``away`` are required.  Every other
    dimension may be missing and is then marked unavailable downstream.
    """

    sport: str = Field(..., min_length=1, description='Sport key, e.g. "soccer_epl" or "nba"')
    home: str = Field(..., min_length=1)
    away: str = Field(..., min_length=1)
    match_id: Optional[str] = None
    kickoff: Optional[datetime] = None

    home_form: Optional[Union[str, list[str]]] = Field(None, description='e.g. "WWDLW", most recent first')
    away_form: Optional[Union[str, list[str]]] = None
    home_stats: Optional[SideStatsIn] = None
    away_stats: Optional[SideStatsIn] = None
    injuries: Optional[list[InjuryIn]] = None
    h2h: Optional[list[Union[str, dict[str, Any]]]] = None
    context: Optional[ContextIn] = None
    odds: Optional[OddsIn] = None

    @field_validator("home", "away")
    @classmethod
    def strip_team(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("team identifier cannot be blank")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "sport": "soccer_epl",
                "match_id": "epl-2026-10-18-ars-che",
                "home": "Arsenal",
                "away": "Chelsea",
                "kickoff": "2026-10-18T15:00:00Z",
                "home_form": "WWDLW",
                "away_form": "LDWWL",
                "home_stats": {"scored": 18, "conceded": 7, "played": 8},
                "away_stats": {"scored": 12, "conceded": 10, "played": 8},
                "injuries": [{"player": "B. Saka", "severity": "Doubtful", "side": "home", "key_player": True}],
                "h2h": ["home", "draw", "away", "home"],
                "odds": {"home": 1.80, "draw": 3.40, "away": 4.50, "bookmaker": "bet365"},
            }
        }
    }


# ---------------------------------------------------------------------------
# Results and odds feeds
# ---------------------------------------------------------------------------

class ResultFeedItem(BaseModel):
    """Final score or void signal for one match."""

    match_id: str = Field(..., min_length=1)
    home_score: Optional[int] = Field(None, ge=0)
    away_score: Optional[int] = Field(None, ge=0)
    score: Optional[str] = Field(None, description='Alternative "2-1" form')
    void: bool = Field(False, description="Postponed / abandoned / no result")

    def actual_score(self) -> Optional[Union[str, tuple[int, int]]]:
        if self.home_score is not None and self.away_score is not None:
            return (self.home_score, self.away_score)
        return self.score


class OddsSnapshotIn(BaseModel):
    """Decimal prices observed for one match at ``captured_at``."""

    match_id: str = Field(..., min_length=1)
    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None
    captured_at: Optional[datetime] = None

    def price_for(self, selection: str) -> Optional[float]:
        return getattr(self, selection, None)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class MarketIntel(BaseModel):
    """Per-match analysis consumed by presentation and alerting layers."""

    match_id: Optional[str] = None
    sport: str
    home_team: str
    away_team: str
    model_probability: dict[str, float]
    market_probability_raw: Optional[dict[str, float]] = None
    market_probability_fair: Optional[dict[str, float]] = None
    edge_value: Optional[float] = None
    edge_bucket: Literal["NO_EDGE", "SMALL", "MEDIUM", "HIGH"]
    selection: Literal["home", "draw", "away"]
    favored: Optional[Literal["home", "draw", "away"]] = None
    confidence: float = Field(..., ge=0, le=100)
    method: Literal["market_anchored", "features_only"]
    overround: Optional[float] = None
    bookmaker: Optional[str] = None
    bookmaker_quality: Optional[float] = None
    market_probability_quality_adjusted: Optional[dict[str, float]] = None
    min_value_edge: Optional[float] = None
    is_value: bool = False
    data_quality: dict[str, bool] = Field(default_factory=dict)
