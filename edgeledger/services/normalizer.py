"""
Signal normalizer: raw per-sport feed payloads → UniversalSignals.

Every optional dimension is either converted into its typed form or left
as ``None`` with the matching ``DataAvailability`` flag cleared.  Nothing
here substitutes a neutral value for missing data; the blender decides
what to do with an absent dimension.

The outcome space (two-way vs three-way) is fixed here and carried
unchanged through the rest of the pipeline.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from edgeledger.core.contracts import (
    DataAvailability,
    Injury,
    MarketOdds,
    MatchContext,
    SeasonStats,
    Selection,
    Severity,
    SideStats,
    Sport,
    UniversalSignals,
)
from edgeledger.core.errors import EdgeLedgerError, InputIncomplete, ReasonCode
from edgeledger.core.odds_math import MIN_VALID_OUTCOMES, american_to_decimal, is_valid_decimal
from edgeledger.core.sport_config import SportConfig
from edgeledger.schemas import OddsIn, RawMatchInput
from edgeledger.services.team_mapping import TeamIdCache

logger = logging.getLogger(__name__)

# Feed sport keys → Sport.  Prefix keys match "<prefix>_<league>".
_SPORT_PREFIXES: dict[str, Sport] = {
    "soccer": Sport.SOCCER,
    "basketball": Sport.BASKETBALL,
    "icehockey": Sport.HOCKEY,
    "hockey": Sport.HOCKEY,
    "americanfootball": Sport.FOOTBALL,
    "football": Sport.FOOTBALL,
}

_SPORT_ALIASES: dict[str, Sport] = {
    "nba": Sport.BASKETBALL,
    "ncaab": Sport.BASKETBALL,
    "euroleague": Sport.BASKETBALL,
    "nhl": Sport.HOCKEY,
    "nfl": Sport.FOOTBALL,
    "ncaaf": Sport.FOOTBALL,
    "epl": Sport.SOCCER,
    "laliga": Sport.SOCCER,
    "seriea": Sport.SOCCER,
    "bundesliga": Sport.SOCCER,
}

_SEVERITY_ALIASES: dict[str, Severity] = {
    "out": Severity.OUT,
    "o": Severity.OUT,
    "injured reserve": Severity.OUT,
    "ir": Severity.OUT,
    "suspended": Severity.OUT,
    "doubtful": Severity.DOUBTFUL,
    "d": Severity.DOUBTFUL,
    "questionable": Severity.QUESTIONABLE,
    "q": Severity.QUESTIONABLE,
    "gtd": Severity.QUESTIONABLE,
    "day-to-day": Severity.QUESTIONABLE,
    "probable": Severity.PROBABLE,
    "p": Severity.PROBABLE,
}

_FORM_CHARS = frozenset("WDL")

# Cap on how many recent results count toward form.
MAX_FORM_GAMES = 10


# ---------------------------------------------------------------------------
# Field-level helpers (pure)
# ---------------------------------------------------------------------------

def parse_sport(key: str) -> Sport:
    """Map a feed sport key (``soccer_epl``, ``nba``, ``hockey``) to :class:`Sport`."""
    k = key.strip().lower()
    try:
        return Sport(k)
    except ValueError:
        pass
    if k in _SPORT_ALIASES:
        return _SPORT_ALIASES[k]
    prefix = k.split("_", 1)[0]
    return _SPORT_PREFIXES.get(prefix, Sport.OTHER)


def parse_form(raw: Optional[Union[str, Iterable[str]]]) -> Optional[tuple[str, ...]]:
    """
    'WWDLW' → ('W', 'W', 'D', 'L', 'W').  Unknown characters are dropped.
    An empty result means no form data, so returns None.
    """
    if raw is None:
        return None
    chars: Iterable[str] = raw if not isinstance(raw, str) else list(raw)
    results = tuple(
        c.strip().upper()[:1] for c in chars if c and c.strip().upper()[:1] in _FORM_CHARS
    )
    return results[:MAX_FORM_GAMES] or None


def parse_severity(raw: str) -> Severity:
    """Free-text injury status → Severity.  Unknown text is treated as OUT."""
    key = raw.strip().lower()
    if key in _SEVERITY_ALIASES:
        return _SEVERITY_ALIASES[key]
    for alias, severity in _SEVERITY_ALIASES.items():
        if len(alias) > 2 and alias in key:
            return severity
    logger.debug("Unknown injury status %r, treating as OUT", raw)
    return Severity.OUT


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _parse_h2h_item(item: Union[str, Mapping[str, Any]], home: str) -> Optional[Selection]:
    """One prior meeting → result from the *current* home side's perspective."""
    if isinstance(item, str):
        token = item.strip().lower()
        if token in ("home", "w", "h"):
            return Selection.HOME
        if token in ("away", "l", "a"):
            return Selection.AWAY
        if token in ("draw", "d", "x"):
            return Selection.DRAW
        return None

    hs, as_ = item.get("home_score"), item.get("away_score")
    if hs is None or as_ is None:
        return None
    try:
        hs, as_ = float(hs), float(as_)
    except (TypeError, ValueError):
        logger.debug("Unusable h2h score %r-%r, meeting skipped", hs, as_)
        return None
    if not (hs.is_integer() and as_.is_integer()) or min(hs, as_) < 0:
        logger.debug("Unusable h2h score %r-%r, meeting skipped", hs, as_)
        return None
    if hs == as_:
        return Selection.DRAW
    venue_home = str(item.get("home_team", home)).strip().lower()
    current_home_was_home = venue_home == home.strip().lower()
    current_home_won = (hs > as_) if current_home_was_home else (as_ > hs)
    return Selection.HOME if current_home_won else Selection.AWAY


def parse_h2h(
    raw: Optional[Iterable[Union[str, Mapping[str, Any]]]],
    home: str,
    three_way: bool,
) -> Optional[tuple[Selection, ...]]:
    if raw is None:
        return None
    results = []
    for item in raw:
        result = _parse_h2h_item(item, home)
        if result is None:
            continue
        if result is Selection.DRAW and not three_way:
            continue
        results.append(result)
    return tuple(results) or None


def _stats(side: Optional[Any]) -> Optional[SideStats]:
    if side is None or side.played <= 0:
        return None
    scored, conceded = _finite(side.scored), _finite(side.conceded)
    if scored is None or conceded is None:
        return None
    return SideStats(scored=scored, conceded=conceded, played=int(side.played))


def parse_odds(odds: Optional[OddsIn]) -> Optional[MarketOdds]:
    """
    Convert to decimal and drop invalid prices.  Fewer than two valid
    prices means the market is unavailable and None is returned.
    """
    if odds is None:
        return None

    def _decimal(price: Optional[float]) -> Optional[float]:
        if price is None:
            return None
        if odds.odds_format == "american":
            try:
                price = american_to_decimal(price)
            except ValueError:
                return None
        return float(price) if is_valid_decimal(price) else None

    home, draw, away = _decimal(odds.home), _decimal(odds.draw), _decimal(odds.away)
    valid = sum(p is not None for p in (home, draw, away))
    if valid < MIN_VALID_OUTCOMES:
        logger.debug("Market unavailable: only %d valid price(s)", valid)
        return None
    bookmaker = odds.bookmaker.strip() if odds.bookmaker else None
    return MarketOdds(home=home, away=away, draw=draw, bookmaker=bookmaker or None)


def _context(ctx: Optional[Any]) -> Optional[MatchContext]:
    if ctx is None:
        return None
    parsed = MatchContext(
        home_rest_days=_finite(ctx.home_rest_days),
        away_rest_days=_finite(ctx.away_rest_days),
        home_back_to_back=ctx.home_back_to_back,
        away_back_to_back=ctx.away_back_to_back,
        home_games_last_7=ctx.home_games_last_7,
        away_games_last_7=ctx.away_games_last_7,
        away_travel_miles=_finite(ctx.away_travel_miles),
    )
    if all(v is None for v in vars(parsed).values()):
        return None
    return parsed


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _coerce(raw_input: Union[RawMatchInput, Mapping[str, Any]]) -> RawMatchInput:
    if isinstance(raw_input, RawMatchInput):
        return raw_input
    try:
        return RawMatchInput.model_validate(raw_input)
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise InputIncomplete(f"Invalid or missing match fields: {', '.join(missing)}") from exc


def normalize(
    raw_input: Union[RawMatchInput, Mapping[str, Any]],
    team_cache: Optional[TeamIdCache] = None,
) -> UniversalSignals:
    """
    Normalize one raw match payload.

    Args:
        raw_input: A :class:`RawMatchInput` or an equivalent mapping.
        team_cache: Optional resolver that canonicalizes team identifiers.

    Raises:
        InputIncomplete: sport or a team identifier is missing/blank.
    """
    raw = _coerce(raw_input)
    sport = parse_sport(raw.sport)
    config = SportConfig.for_sport(sport)

    home, away = raw.home, raw.away
    if team_cache is not None:
        home, away = team_cache.resolve(home), team_cache.resolve(away)
    if home.lower() == away.lower():
        raise InputIncomplete(f"Home and away resolve to the same team: {home!r}")

    market = parse_odds(raw.odds)
    if config.draw_from_market:
        three_way = market is not None and market.draw is not None
    else:
        three_way = config.has_draw
    if market is not None and not three_way and market.draw is not None:
        # A draw price on a two-way sport belongs to a regulation-time market
        market = replace(market, draw=None)
        if market.home is None or market.away is None:
            market = None

    home_form, away_form = parse_form(raw.home_form), parse_form(raw.away_form)
    form_ok = home_form is not None and away_form is not None

    home_stats, away_stats = _stats(raw.home_stats), _stats(raw.away_stats)
    season = SeasonStats(home=home_stats, away=away_stats) if home_stats and away_stats else None

    injuries = None
    if raw.injuries is not None:
        injuries = tuple(
            Injury(
                player=i.player.strip(),
                severity=parse_severity(i.severity),
                side=Selection(i.side),
                key_player=i.key_player,
            )
            for i in raw.injuries
        )

    h2h = parse_h2h(raw.h2h, raw.home, three_way)
    context = _context(raw.context)

    availability = DataAvailability(
        form=form_ok,
        h2h=h2h is not None,
        # An explicit empty list is a measured "nobody injured"
        injuries=injuries is not None,
        season_stats=season is not None,
        context=context is not None,
        market_odds=market is not None,
    )

    return UniversalSignals(
        sport=sport,
        home=home,
        away=away,
        three_way=three_way,
        kickoff=raw.kickoff,
        home_form=home_form if form_ok else None,
        away_form=away_form if form_ok else None,
        season_stats=season,
        injuries=injuries,
        h2h=h2h,
        context=context,
        market_odds=market,
        data_availability=availability,
    )


@dataclass(frozen=True)
class NormalizeResult:
    """Structured outcome for batch callers that must not stop on one bad match."""

    ok: bool
    signals: Optional[UniversalSignals] = None
    reason: ReasonCode = ReasonCode.OK
    detail: Optional[str] = None


def normalize_result(
    raw_input: Union[RawMatchInput, Mapping[str, Any]],
    team_cache: Optional[TeamIdCache] = None,
) -> NormalizeResult:
    """Like :func:`normalize` but returns a reason code instead of raising."""
    try:
        return NormalizeResult(ok=True, signals=normalize(raw_input, team_cache))
    except EdgeLedgerError as exc:
        logger.warning("Normalization failed (%s): %s", exc.reason.value, exc)
        return NormalizeResult(ok=False, reason=exc.reason, detail=str(exc))
