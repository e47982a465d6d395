"""Sport-level configuration: all sport-specific constants in one place.

This module is the **registry** for every constant that differs between
sports.  Nowhere else in the codebase should situational adjustments,
injury impacts, or scoring-model parameters be hard-coded.

Architecture
------------
:class:`SportConfig` is a frozen dataclass carrying all per-sport constants.
Named constructors (:meth:`SportConfig.soccer`, :meth:`SportConfig.basketball`,
...) return pre-populated instances and :meth:`SportConfig.for_sport`
dispatches on the :class:`~edgeledger.core.contracts.Sport` enum.  To add a
new sport:

1. Add a member to ``Sport``.
2. Add a ``@classmethod`` constructor here and register it in ``for_sport``.
3. The normalizer, blender and tracker read everything they need from the
   injected config.

All adjustment magnitudes are **percentage points** of home-win probability.
Negative values hurt the side they are applied to.

Typical usage::

    from edgeledger.core.sport_config import SportConfig

    cfg = SportConfig.for_sport(Sport.BASKETBALL)

    # Override a single constant for a custom calibration:
    from dataclasses import replace
    custom_cfg = replace(cfg, injury_key_player_pp=-7.0)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from edgeledger.core.contracts import Sport

#: Scoring-model identifiers for the features-only fallback.
SCORING_POISSON: Final[str] = "poisson"
SCORING_NORMAL: Final[str] = "normal"


@dataclass(frozen=True)
class SportConfig:
    """Immutable configuration bundle for a single sport.

    Attributes:
        sport: The :class:`Sport` this bundle describes.
        sport_name: Human-readable name for logging.

        --- Outcome space ---
        has_draw: True when a regulation draw is a settled outcome
            (soccer).  Hockey moneylines include overtime and are two-way.
        draw_from_market: True for sports whose outcome space is unknown
            until the market is seen (``other``): three-way if and only if
            a valid draw price is supplied.

        --- Situational context ---
        back_to_back_pp: Shift applied to a side playing on consecutive days.
        back_to_back_road_pp: Shift for an away side on a road back-to-back.
        rest_advantage_pp: Shift for the side with the rest advantage.
        rest_advantage_days: Minimum rest-day gap that triggers the above.
        heavy_schedule_pp: Shift for a side with ``heavy_schedule_games`` or
            more games in the last seven days.
        travel_fatigue_pp: Shift for an away side that travelled at least
            ``travel_fatigue_miles``.  Zero disables the factor.

        --- Injuries ---
        injury_out_pp: Shift per player fully OUT (scaled by severity).
        injury_key_player_pp: Additional shift when the player is flagged
            as a key player.

        --- Form / head-to-head ---
        form_scale_pp: Shift for a maximal form differential (one side won
            every recent game, the other lost every one).
        h2h_scale_pp: Shift for a one-sided head-to-head record.
        h2h_min_meetings: Meetings required before head-to-head is used.

        --- Features-only fallback ---
        scoring_model: ``"poisson"`` for low-scoring sports (goals),
            ``"normal"`` for margin-based sports (points).
        home_advantage: Home scoring edge in native units (goals or points).
        margin_sd: Standard deviation of the final margin (normal model).
        max_goals: Truncation of the Poisson score grid.

        --- Market ---
        market_weight: Weight of the market anchor when the season
            scoring-rate estimate is folded in as a bounded factor.
    """

    sport: Sport
    sport_name: str

    # Outcome space
    has_draw: bool
    draw_from_market: bool = False

    # Situational context
    back_to_back_pp: float = 0.0
    back_to_back_road_pp: float = 0.0
    rest_advantage_pp: float = 0.0
    rest_advantage_days: int = 3
    heavy_schedule_pp: float = -2.0
    heavy_schedule_games: int = 4
    travel_fatigue_pp: float = 0.0
    travel_fatigue_miles: float = 3000.0

    # Injuries
    injury_out_pp: float = -2.0
    injury_key_player_pp: float = -5.0

    # Form / head-to-head
    form_scale_pp: float = 6.0
    h2h_scale_pp: float = 3.0
    h2h_min_meetings: int = 3

    # Features-only fallback
    scoring_model: str = SCORING_POISSON
    home_advantage: float = 0.25
    margin_sd: float = 12.0
    max_goals: int = 10

    # Market
    market_weight: float = 0.50

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def soccer(cls) -> SportConfig:
        """Association football: three-way, Poisson goals."""
        return cls(
            sport=Sport.SOCCER,
            sport_name="Soccer",
            has_draw=True,
            back_to_back_pp=0.0,        # fixtures on consecutive days do not happen
            rest_advantage_pp=2.0,
            heavy_schedule_pp=-2.0,     # midweek cup fatigue
            injury_out_pp=-2.0,
            injury_key_player_pp=-5.0,
            form_scale_pp=6.0,
            h2h_scale_pp=3.0,
            scoring_model=SCORING_POISSON,
            home_advantage=0.25,        # goals
            max_goals=10,
            market_weight=0.50,
        )

    @classmethod
    def basketball(cls) -> SportConfig:
        """Basketball (NBA / NCAAB): two-way moneyline, normal margin."""
        return cls(
            sport=Sport.BASKETBALL,
            sport_name="Basketball",
            has_draw=False,
            back_to_back_pp=-6.0,
            back_to_back_road_pp=-8.0,
            rest_advantage_pp=3.0,
            injury_out_pp=-2.5,
            injury_key_player_pp=-6.0,
            form_scale_pp=6.0,
            h2h_scale_pp=2.0,
            scoring_model=SCORING_NORMAL,
            home_advantage=2.5,         # points
            margin_sd=12.0,
            market_weight=0.45,
        )

    @classmethod
    def hockey(cls) -> SportConfig:
        """Ice hockey: two-way moneyline incl. overtime, Poisson goals."""
        return cls(
            sport=Sport.HOCKEY,
            sport_name="Hockey",
            has_draw=False,
            back_to_back_pp=-4.0,
            back_to_back_road_pp=-6.0,
            rest_advantage_pp=2.5,
            injury_out_pp=-1.5,
            injury_key_player_pp=-4.0,  # goalies
            form_scale_pp=5.0,
            h2h_scale_pp=2.0,
            scoring_model=SCORING_POISSON,
            home_advantage=0.15,        # goals
            max_goals=12,
            market_weight=0.55,
        )

    @classmethod
    def football(cls) -> SportConfig:
        """American football: two-way moneyline, normal margin."""
        return cls(
            sport=Sport.FOOTBALL,
            sport_name="American Football",
            has_draw=False,
            back_to_back_pp=-4.0,       # short week
            rest_advantage_pp=3.0,      # coming off a bye
            rest_advantage_days=5,
            heavy_schedule_pp=0.0,
            travel_fatigue_pp=-2.0,
            travel_fatigue_miles=3000.0,
            injury_out_pp=-1.0,
            injury_key_player_pp=-8.0,  # quarterback
            form_scale_pp=5.0,
            h2h_scale_pp=2.0,
            scoring_model=SCORING_NORMAL,
            home_advantage=2.0,         # points
            margin_sd=13.5,
            market_weight=0.40,
        )

    @classmethod
    def other(cls) -> SportConfig:
        """Catch-all: outcome space decided by the market at normalisation."""
        return cls(
            sport=Sport.OTHER,
            sport_name="Other",
            has_draw=False,
            draw_from_market=True,
            rest_advantage_pp=2.0,
            scoring_model=SCORING_POISSON,
            home_advantage=0.20,
            market_weight=0.50,
        )

    @classmethod
    def for_sport(cls, sport: Sport) -> SportConfig:
        """Return the canonical configuration for *sport*."""
        constructors = {
            Sport.SOCCER: cls.soccer,
            Sport.BASKETBALL: cls.basketball,
            Sport.HOCKEY: cls.hockey,
            Sport.FOOTBALL: cls.football,
            Sport.OTHER: cls.other,
        }
        return constructors[Sport(sport)]()

    def __repr__(self) -> str:
        return (
            f"SportConfig(sport={self.sport.value!r}, has_draw={self.has_draw}, "
            f"scoring_model={self.scoring_model!r}, market_weight={self.market_weight})"
        )


@dataclass(frozen=True)
class BlendWeights:
    """Caps and multipliers for the probability blender.

    Attributes:
        max_factor_shift: Ceiling (pp) on any single situational factor.
        max_total_shift: Ceiling (pp) on the sum of all factors.
        prob_floor: Minimum probability (pp) for any outcome before the
            final renormalisation.
        tie_tolerance: Two outcomes within this many pp are treated as tied.
        form / injuries / context / h2h / season_stats: Per-factor
            multipliers.  Set to 0.0 to disable a factor entirely.
    """

    max_factor_shift: float = 5.0
    max_total_shift: float = 10.0
    prob_floor: float = 1.0
    tie_tolerance: float = 0.1
    form: float = 1.0
    injuries: float = 1.0
    context: float = 1.0
    h2h: float = 1.0
    season_stats: float = 1.0
