"""
Context optimizer: compact, token-bounded match context for the tip LLM.

Raw statistics are summarized into short strings instead of JSON, and the
sections included depend on the data maturity tier:

    score < 30   team stats and H2H omitted (model relies on prior knowledge)
    score >= 30  home/away team stats summaries
    score >= 50  H2H summary (when a record exists)
    any score    recent form strings when present

Token cost uses the ceil(chars / 4) heuristic. It is an approximation, not a
tokenizer; the degradation thresholds (120% / 110% of budget) are tuned to it.
"""

import copy
import json
import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from tipgen.config import Settings, get_settings
from tipgen.llm.odds import (
    BttsMarket,
    DoubleChanceMarket,
    HandicapMarket,
    MatchResultMarket,
    TotalsMarket,
    UnknownMarket,
    parse_odds_blob,
)
from tipgen.models import (
    DataMaturityScore,
    MatchPredictabilityScore,
    TeamHeadToHead,
    TeamImportanceRating,
    TeamStatistics,
)
from tipgen.repository import MatchFacts, MatchRecords

logger = logging.getLogger(__name__)

# Maturity tier boundaries
LOW_MATURITY_MAX = 30
HIGH_MATURITY_MIN = 70
# Minimum maturity to include each optional section
TEAM_STATS_MIN_MATURITY = 30
HEAD_TO_HEAD_MIN_MATURITY = 50

# Degradation stages, as fractions of the available budget
DROP_DETAIL_THRESHOLD = 1.2
COMPRESS_STATS_THRESHOLD = 1.1
COMPRESSED_STATS_SEGMENTS = 3

SEGMENT_SEPARATOR = " | "
NO_STATS = "No statistics available"


def data_quality_tier(score: float) -> str:
    """Map a 0-100 maturity score to low / medium / high."""
    if score < LOW_MATURITY_MAX:
        return "low"
    if score < HIGH_MATURITY_MIN:
        return "medium"
    return "high"


@dataclass
class MatchInfo:
    id: str
    home_team: str
    away_team: str
    league: str
    date: str
    country: Optional[str] = None
    venue: Optional[str] = None
    round: Optional[str] = None
    season: Optional[str] = None


@dataclass
class OddsInfo:
    home_win: Optional[float] = None
    draw: Optional[float] = None
    away_win: Optional[float] = None
    over_under: Optional[dict] = None
    btts: Optional[dict] = None
    double_chance: Optional[dict] = None
    handicap: Optional[dict] = None


@dataclass
class HistoricalInfo:
    home_team_stats: Optional[str] = None
    away_team_stats: Optional[str] = None
    head_to_head: Optional[str] = None
    home_team_form: Optional[str] = None
    away_team_form: Optional[str] = None


@dataclass
class ImportanceInfo:
    home_team_importance: Optional[float] = None
    away_team_importance: Optional[float] = None
    combined_importance: Optional[float] = None


@dataclass
class PredictabilityInfo:
    score: Optional[float] = None
    factors: Optional[str] = None


@dataclass
class MaturityInfo:
    score: int = 0
    confidence: str = "low"
    note: Optional[str] = None


@dataclass
class ContextMetadata:
    token_estimate: int = 0
    data_quality: str = "low"


@dataclass
class OptimizedContext:
    """Bounded summary of one match (or of an accumulator, see `matches`)."""

    match: MatchInfo
    odds: OddsInfo = field(default_factory=OddsInfo)
    historical: HistoricalInfo = field(default_factory=HistoricalInfo)
    importance: ImportanceInfo = field(default_factory=ImportanceInfo)
    predictability: PredictabilityInfo = field(default_factory=PredictabilityInfo)
    maturity: MaturityInfo = field(default_factory=MaturityInfo)
    metadata: ContextMetadata = field(default_factory=ContextMetadata)
    # Per-match contexts when this context is a merged accumulator
    matches: list["OptimizedContext"] = field(default_factory=list)

    def to_dict(self, include_metadata: bool = True) -> dict:
        """Plain dict with unset fields and empty sections pruned."""
        data = asdict(self)
        if not include_metadata:
            data.pop("metadata", None)
            for sub in data.get("matches", []):
                sub.pop("metadata", None)
        return _prune(data)


def _prune(value: Any) -> Any:
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = _prune(item)
            if item is None or item == {} or item == []:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        return [_prune(item) for item in value]
    return value


def serialize_context(context: OptimizedContext) -> str:
    """Compact, key-ordered JSON of what the model will see."""
    return json.dumps(
        context.to_dict(include_metadata=False),
        separators=(",", ":"),
        ensure_ascii=False,
    )


def estimate_tokens(context: OptimizedContext) -> int:
    """Rough token count: ceil(serialized length / 4)."""
    return math.ceil(len(serialize_context(context)) / 4)


def extract_match_info(match: MatchFacts) -> MatchInfo:
    return MatchInfo(
        id=match.id,
        home_team=match.home_team,
        away_team=match.away_team,
        league=match.league or "Unknown",
        date=match.kickoff.isoformat(),
        country=match.country,
        venue=match.venue or None,
        round=match.round or None,
        season=match.season or None,
    )


def extract_odds(blob: Any) -> OddsInfo:
    """Collect known markets from the odds blob. Absent markets stay None."""
    odds = OddsInfo()
    for market in parse_odds_blob(blob):
        if isinstance(market, MatchResultMarket):
            odds.home_win = market.home_win
            odds.draw = market.draw
            odds.away_win = market.away_win
        elif isinstance(market, TotalsMarket):
            odds.over_under = dict(market.lines)
        elif isinstance(market, BttsMarket):
            odds.btts = {k: v for k, v in (("yes", market.yes), ("no", market.no)) if v is not None}
        elif isinstance(market, DoubleChanceMarket):
            odds.double_chance = {
                k: v
                for k, v in (
                    ("home_draw", market.home_draw),
                    ("home_away", market.home_away),
                    ("away_draw", market.away_draw),
                )
                if v is not None
            }
        elif isinstance(market, HandicapMarket):
            odds.handicap = dict(market.lines)
        elif isinstance(market, UnknownMarket):
            logger.debug(f"Ignoring unknown odds market '{market.key}'")
    return odds


def summarize_team_stats(stats: Optional[TeamStatistics], side: str) -> str:
    """
    Compress team statistics into ' | '-separated segments, most important first.

    Example: "Record: 10W-3D-2L (15 matches) | Avg: 1.8 scored, 0.9 conceded | Form: WWDLW"
    """
    if stats is None:
        return NO_STATS

    parts = []
    if stats.matches_played and stats.matches_played > 0:
        parts.append(
            f"Record: {stats.wins}W-{stats.draws}D-{stats.losses}L ({stats.matches_played} matches)"
        )

    if stats.avg_goals_scored is not None:
        avg = f"Avg: {float(stats.avg_goals_scored):.1f} scored"
        if stats.avg_goals_conceded is not None:
            avg += f", {float(stats.avg_goals_conceded):.1f} conceded"
        parts.append(avg)

    if stats.recent_form:
        parts.append(f"Form: {stats.recent_form}")

    if side == "home" and stats.home_matches and stats.home_matches > 0:
        rate = stats.home_wins / stats.home_matches * 100
        parts.append(
            f"Home: {stats.home_wins}W-{stats.home_draws}D-{stats.home_losses}L ({rate:.0f}% win rate)"
        )
    if side == "away" and stats.away_matches and stats.away_matches > 0:
        rate = stats.away_wins / stats.away_matches * 100
        parts.append(
            f"Away: {stats.away_wins}W-{stats.away_draws}D-{stats.away_losses}L ({rate:.0f}% win rate)"
        )

    if stats.league_position:
        parts.append(f"Position: {stats.league_position}")

    return SEGMENT_SEPARATOR.join(parts) if parts else NO_STATS


def _recent_h2h_letter(entry: Any, home_team: str) -> str:
    """W/D/L from the upcoming home team's point of view."""
    if not isinstance(entry, dict):
        return "D"
    result = entry.get("result")
    if result not in ("home", "away"):
        return "D"
    winner = entry.get("homeTeam") if result == "home" else entry.get("awayTeam")
    if winner is None:
        return "W" if result == "home" else "L"
    return "W" if winner == home_team else "L"


def summarize_head_to_head(h2h: TeamHeadToHead, home_team: str, away_team: str) -> str:
    if not h2h.total_matches:
        return "No head-to-head history"

    parts = [f"H2H: {h2h.team_a_wins}W-{h2h.draws}D-{h2h.team_b_wins}L ({h2h.total_matches} matches)"]

    recent = h2h.recent_matches or []
    if recent:
        letters = [_recent_h2h_letter(entry, home_team) for entry in recent[:3]]
        parts.append(f"Recent: {'-'.join(letters)}")

    if h2h.team_a_home_wins > 0 or h2h.team_b_home_wins > 0:
        parts.append(
            f"Home advantage: {home_team} {h2h.team_a_home_wins}W, {away_team} {h2h.team_b_home_wins}W"
        )

    return SEGMENT_SEPARATOR.join(parts)


_FACTOR_LABELS = (
    ("teamFormConsistency", "Form consistency"),
    ("headToHeadPattern", "H2H pattern"),
    ("homeAdvantage", "Home advantage"),
    ("oddsClarity", "Odds clarity"),
)


def summarize_predictability_factors(factors: Optional[dict]) -> Optional[str]:
    if not factors:
        return None
    parts = []
    for key, label in _FACTOR_LABELS:
        value = factors.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            parts.append(f"{label}: {value:.0f}%")
    return ", ".join(parts) or None


def compress_stats(summary: str) -> str:
    """Keep only the first three summary segments."""
    return SEGMENT_SEPARATOR.join(summary.split(SEGMENT_SEPARATOR)[:COMPRESSED_STATS_SEGMENTS])


class ContextOptimizer:
    """Builds OptimizedContext objects inside a fixed token budget."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.available_tokens = self.settings.context_available_tokens
        self.historical_budget = self.settings.CONTEXT_HISTORICAL_TOKEN_BUDGET

    def build_optimized_context(
        self, match: MatchFacts, records: Optional[MatchRecords] = None
    ) -> OptimizedContext:
        """
        Build the context for one match. Never raises on missing records.

        Output is a pure function of the inputs (no clock, no randomness).
        """
        records = records or MatchRecords()
        maturity: Optional[DataMaturityScore] = records.maturity
        score = int(maturity.score) if maturity is not None and maturity.score is not None else 0
        tier = data_quality_tier(score)

        context = OptimizedContext(
            match=extract_match_info(match),
            odds=extract_odds(match.odds),
            maturity=MaturityInfo(
                score=score,
                confidence=(maturity.confidence if maturity is not None and maturity.confidence else tier),
            ),
            metadata=ContextMetadata(data_quality=tier),
        )

        if score >= TEAM_STATS_MIN_MATURITY:
            context.historical.home_team_stats = summarize_team_stats(records.home_stats, "home")
            context.historical.away_team_stats = summarize_team_stats(records.away_stats, "away")

        if score >= HEAD_TO_HEAD_MIN_MATURITY and records.head_to_head is not None:
            context.historical.head_to_head = summarize_head_to_head(
                records.head_to_head, match.home_team, match.away_team
            )

        if records.home_stats is not None and records.home_stats.recent_form:
            context.historical.home_team_form = records.home_stats.recent_form
        if records.away_stats is not None and records.away_stats.recent_form:
            context.historical.away_team_form = records.away_stats.recent_form

        self._add_importance(context, records.home_importance, records.away_importance)
        self._add_predictability(context, records.predictability)

        context.metadata.token_estimate = estimate_tokens(context)
        self._check_historical_budget(context)
        return self.optimize_for_token_budget(context)

    @staticmethod
    def _add_importance(
        context: OptimizedContext,
        home: Optional[TeamImportanceRating],
        away: Optional[TeamImportanceRating],
    ) -> None:
        if home is not None and home.importance_score is not None:
            context.importance.home_team_importance = float(home.importance_score)
        if away is not None and away.importance_score is not None:
            context.importance.away_team_importance = float(away.importance_score)

    @staticmethod
    def _add_predictability(
        context: OptimizedContext, predictability: Optional[MatchPredictabilityScore]
    ) -> None:
        if predictability is None:
            return
        if predictability.combined_importance_score is not None:
            context.importance.combined_importance = float(predictability.combined_importance_score)
        if predictability.predictability_score is not None:
            context.predictability.score = float(predictability.predictability_score)
        context.predictability.factors = summarize_predictability_factors(
            predictability.predictability_factors
        )

    def _check_historical_budget(self, context: OptimizedContext) -> None:
        historical = _prune(asdict(context.historical))
        tokens = math.ceil(len(json.dumps(historical, separators=(",", ":"), ensure_ascii=False)) / 4)
        if tokens > self.historical_budget:
            logger.debug(
                f"Historical section for match {context.match.id} uses ~{tokens} tokens "
                f"(allotted {self.historical_budget})"
            )

    def optimize_for_token_budget(self, context: OptimizedContext) -> OptimizedContext:
        """
        Degrade the context until it fits, in a fixed order:

        1. over 120% of budget: drop H2H summary and predictability factors
        2. still over 110%: keep only the first 3 segments of each team summary

        Returns a new object when degrading; the input is left untouched.
        """
        available = self.available_tokens
        estimated = estimate_tokens(context)
        if estimated <= available:
            context.metadata.token_estimate = estimated
            return context

        logger.debug(
            f"Context too large ({estimated} tokens). Optimizing to fit {available} token budget..."
        )
        optimized = copy.deepcopy(context)

        if estimated > available * DROP_DETAIL_THRESHOLD:
            optimized.historical.head_to_head = None
            optimized.predictability.factors = None
            estimated = estimate_tokens(optimized)

        if estimated > available * COMPRESS_STATS_THRESHOLD:
            if optimized.historical.home_team_stats:
                optimized.historical.home_team_stats = compress_stats(optimized.historical.home_team_stats)
            if optimized.historical.away_team_stats:
                optimized.historical.away_team_stats = compress_stats(optimized.historical.away_team_stats)
            estimated = estimate_tokens(optimized)

        if estimated > available:
            logger.debug(
                f"Context for match {optimized.match.id} still ~{estimated} tokens after degradation"
            )
        optimized.metadata.token_estimate = estimated
        return optimized
