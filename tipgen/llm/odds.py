"""
Typed parsing of the loosely-structured odds blob stored on match_data.odds.

Two shapes exist in the wild:

1. Match-sync shape (current):
   {"match_result": {"home_win": 2.1, "draw": 3.4, "away_win": 3.2},
    "over_under": {"over_2_5": 1.9, "under_2_5": 1.95},
    "btts": {"yes": 1.8, "no": 2.0},
    "double_chance": {"home_draw": 1.3, ...},
    "handicap": {"home_-1.5": 3.1, ...},
    "bookmaker": "Bet365"}

2. Legacy list shape: {"h2h": [{"home":..,"draw":..,"away":..}], "totals": [{...}], "btts": [{...}]}

parse_odds_blob() turns either into a list of market variants. Every function
here is total: bad input yields fewer markets, never an exception.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# Only these goal lines are exposed to the model
TOTAL_GOAL_LINES = (0.5, 1.5, 2.5, 3.5, 4.5)

# Keys that describe the blob rather than a market
METADATA_KEYS = {"bookmaker", "last_update", "updated_at"}

_TOTAL_KEY = re.compile(r"^(over|under)_(\d+)(?:[._](\d))?$")
_HANDICAP_KEY = re.compile(r"^(home|away)_([+-]?\d+(?:[._]\d+)?)$")


@dataclass(frozen=True)
class MatchResultMarket:
    home_win: Optional[float] = None
    draw: Optional[float] = None
    away_win: Optional[float] = None


@dataclass(frozen=True)
class TotalsMarket:
    lines: dict = field(default_factory=dict)  # "over_2.5" -> price


@dataclass(frozen=True)
class BttsMarket:
    yes: Optional[float] = None
    no: Optional[float] = None


@dataclass(frozen=True)
class DoubleChanceMarket:
    home_draw: Optional[float] = None
    home_away: Optional[float] = None
    away_draw: Optional[float] = None


@dataclass(frozen=True)
class HandicapMarket:
    lines: dict = field(default_factory=dict)  # "home_-1.5" -> price


@dataclass(frozen=True)
class UnknownMarket:
    key: str
    raw: Any = None


Market = Union[
    MatchResultMarket,
    TotalsMarket,
    BttsMarket,
    DoubleChanceMarket,
    HandicapMarket,
    UnknownMarket,
]


def _price(value: Any) -> Optional[float]:
    """Coerce a price to float. Non-numeric, zero or negative prices are dropped."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    elif isinstance(value, str):
        try:
            price = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return price if price > 0 else None


def _first_entry(value: Any) -> Optional[dict]:
    """Legacy markets are lists of per-bookmaker dicts; take the first one."""
    if isinstance(value, list):
        return value[0] if value and isinstance(value[0], dict) else None
    if isinstance(value, dict):
        return value
    return None


def _pick(entry: dict, *keys: str) -> Optional[float]:
    for key in keys:
        price = _price(entry.get(key))
        if price is not None:
            return price
    return None


def parse_match_result(value: Any) -> Optional[MatchResultMarket]:
    entry = _first_entry(value)
    if entry is None:
        return None
    market = MatchResultMarket(
        home_win=_pick(entry, "home_win", "home"),
        draw=_pick(entry, "draw"),
        away_win=_pick(entry, "away_win", "away"),
    )
    if market.home_win is None and market.draw is None and market.away_win is None:
        return None
    return market


def normalize_total_key(key: str) -> Optional[str]:
    """'over_2_5' / 'over_2.5' -> 'over_2.5' when the line is one we expose."""
    m = _TOTAL_KEY.match(key.strip().lower())
    if not m:
        return None
    side, whole, decimal = m.groups()
    line = float(f"{whole}.{decimal or 0}")
    if line not in TOTAL_GOAL_LINES:
        return None
    return f"{side}_{line:g}"


def parse_totals(value: Any) -> Optional[TotalsMarket]:
    entry = _first_entry(value)
    if entry is None:
        return None
    lines = {}
    for key, raw in entry.items():
        if not isinstance(key, str):
            continue
        normalized = normalize_total_key(key)
        price = _price(raw)
        if normalized and price is not None:
            lines[normalized] = price
    return TotalsMarket(lines=lines) if lines else None


def parse_btts(value: Any) -> Optional[BttsMarket]:
    entry = _first_entry(value)
    if entry is None:
        return None
    market = BttsMarket(yes=_pick(entry, "yes"), no=_pick(entry, "no"))
    if market.yes is None and market.no is None:
        return None
    return market


def parse_double_chance(value: Any) -> Optional[DoubleChanceMarket]:
    entry = _first_entry(value)
    if entry is None:
        return None
    market = DoubleChanceMarket(
        home_draw=_pick(entry, "home_draw", "1X"),
        home_away=_pick(entry, "home_away", "12"),
        away_draw=_pick(entry, "away_draw", "X2"),
    )
    if market.home_draw is None and market.home_away is None and market.away_draw is None:
        return None
    return market


def normalize_handicap_key(key: str) -> Optional[str]:
    """'home_-1_5' / 'home_1.5' -> 'home_-1.5' / 'home_+1.5'."""
    m = _HANDICAP_KEY.match(key.strip().lower())
    if not m:
        return None
    side, point = m.groups()
    try:
        value = float(point.replace("_", "."))
    except ValueError:
        return None
    return f"{side}_{value:+g}"


def parse_handicap(value: Any) -> Optional[HandicapMarket]:
    entry = _first_entry(value)
    if entry is None:
        return None
    lines = {}
    for key, raw in entry.items():
        if not isinstance(key, str):
            continue
        normalized = normalize_handicap_key(key)
        price = _price(raw)
        if normalized and price is not None:
            lines[normalized] = price
    return HandicapMarket(lines=lines) if lines else None


_PARSERS = {
    "match_result": parse_match_result,
    "h2h": parse_match_result,
    "over_under": parse_totals,
    "totals": parse_totals,
    "btts": parse_btts,
    "double_chance": parse_double_chance,
    "handicap": parse_handicap,
    "spreads": parse_handicap,
}


def parse_odds_blob(blob: Any) -> list[Market]:
    """
    Parse an odds blob into market variants.

    Known keys whose payload is unusable are omitted. Unrecognized keys are
    kept as UnknownMarket so callers can log them.
    """
    if not isinstance(blob, dict):
        return []

    markets: list[Market] = []
    seen: set[type] = set()
    for key, value in blob.items():
        if not isinstance(key, str) or key in METADATA_KEYS:
            continue
        parser = _PARSERS.get(key)
        if parser is None:
            markets.append(UnknownMarket(key=key, raw=value))
            continue
        market = parser(value)
        # Both shapes may be present; the first one wins
        if market is not None and type(market) not in seen:
            seen.add(type(market))
            markets.append(market)
    return markets
