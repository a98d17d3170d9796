"""Database models using SQLModel."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _uuid() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite returns them without an offset)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class PredictionType(str, Enum):
    """Betting markets a selection can be placed on."""

    MATCH_RESULT = "match_result"
    OVER_UNDER = "over_under"
    BOTH_TEAMS_TO_SCORE = "both_teams_to_score"
    DOUBLE_CHANCE = "double_chance"
    HANDICAP = "handicap"
    CORRECT_SCORE = "correct_score"
    FIRST_GOAL_SCORER = "first_goal_scorer"
    ANY_OTHER = "any_other"


class CompetitionType(str, Enum):
    WEEKEND_LEAGUE = "weekend_league"
    CHAMPIONS_LEAGUE = "champions_league"
    EUROPA_LEAGUE = "europa_league"
    AFCON = "afcon"
    COPA_AMERICA = "copa_america"
    EUROS = "euros"
    UEFA_NATIONS_LEAGUE = "uefa_nations_league"
    INTERNATIONAL_FRIENDLY = "international_friendly"
    INTERNATIONAL_QUALIFIER = "international_qualifier"
    OTHER = "other"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"


class TipStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    VOID = "void"


# ═══════════════════════════════════════════════════════════════
# Match data (owned by the match-sync collaborator, read-only here)
# ═══════════════════════════════════════════════════════════════


class Team(SQLModel, table=True):
    """Team model for both national teams and clubs."""

    __tablename__ = "teams"

    id: str = Field(default_factory=_uuid, primary_key=True)
    name: str = Field(max_length=255, description="Team name")
    country: Optional[str] = Field(default=None, max_length=100)


class League(SQLModel, table=True):
    """Competition a match belongs to."""

    __tablename__ = "leagues"

    id: str = Field(default_factory=_uuid, primary_key=True)
    external_id: Optional[str] = Field(default=None, max_length=100, index=True, description="e.g. soccer_epl")
    name: str = Field(max_length=255)
    country: Optional[str] = Field(default=None, max_length=100)
    competition_type: str = Field(max_length=50, default=CompetitionType.OTHER.value)
    is_active: bool = Field(default=True)


class Match(SQLModel, table=True):
    """Match model for storing fixture data."""

    __tablename__ = "match_data"

    id: str = Field(default_factory=_uuid, primary_key=True)
    external_id: Optional[str] = Field(default=None, max_length=100, unique=True, index=True)
    league_id: Optional[str] = Field(default=None, foreign_key="leagues.id", index=True)
    home_team_id: str = Field(foreign_key="teams.id", index=True)
    away_team_id: str = Field(foreign_key="teams.id", index=True)
    match_datetime: datetime = Field(
        index=True, sa_type=DateTime(timezone=True), description="Kickoff time (UTC)"
    )
    status: str = Field(max_length=20, default=MatchStatus.SCHEDULED.value, index=True)
    venue: Optional[str] = Field(default=None, max_length=255)
    round: Optional[str] = Field(default=None, max_length=100)
    season: Optional[str] = Field(default=None, max_length=50)
    odds: Optional[dict] = Field(
        default=None, sa_column=Column(JSON), description="Bookmaker odds blob from match sync"
    )


class TeamStatistics(SQLModel, table=True):
    """Aggregated per-team, per-league statistics."""

    __tablename__ = "team_statistics"
    __table_args__ = (
        UniqueConstraint("team_id", "league_id", "season", name="uk_team_stats_team_league_season"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True)
    team_id: str = Field(foreign_key="teams.id", index=True)
    league_id: Optional[str] = Field(default=None, foreign_key="leagues.id", index=True)
    season: Optional[str] = Field(default=None, max_length=50)

    matches_played: int = Field(default=0)
    wins: int = Field(default=0)
    draws: int = Field(default=0)
    losses: int = Field(default=0)
    goals_scored: int = Field(default=0)
    goals_conceded: int = Field(default=0)
    recent_form: Optional[str] = Field(default=None, max_length=5, description="Last 5: e.g. 'WWDLW'")

    home_matches: int = Field(default=0)
    home_wins: int = Field(default=0)
    home_draws: int = Field(default=0)
    home_losses: int = Field(default=0)
    away_matches: int = Field(default=0)
    away_wins: int = Field(default=0)
    away_draws: int = Field(default=0)
    away_losses: int = Field(default=0)

    avg_goals_scored: Optional[float] = Field(default=None)
    avg_goals_conceded: Optional[float] = Field(default=None)
    league_position: Optional[int] = Field(default=None)


class TeamHeadToHead(SQLModel, table=True):
    """Head-to-head aggregate, team A is the home side of the upcoming match."""

    __tablename__ = "team_head_to_head"
    __table_args__ = (
        UniqueConstraint("team_a_id", "team_b_id", "league_id", name="uk_h2h_teams_league"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True)
    team_a_id: str = Field(foreign_key="teams.id", index=True)
    team_b_id: str = Field(foreign_key="teams.id", index=True)
    league_id: Optional[str] = Field(default=None, foreign_key="leagues.id", index=True)

    total_matches: int = Field(default=0)
    team_a_wins: int = Field(default=0)
    team_b_wins: int = Field(default=0)
    draws: int = Field(default=0)
    recent_matches: Optional[list] = Field(
        default=None,
        sa_column=Column(JSON),
        description="[{date, homeTeam, awayTeam, homeScore, awayScore, result}] newest first",
    )
    team_a_home_wins: int = Field(default=0)
    team_b_home_wins: int = Field(default=0)


class DataMaturityScore(SQLModel, table=True):
    """How much reliable history exists for a team in a league (0-100)."""

    __tablename__ = "data_maturity_scores"
    __table_args__ = (
        UniqueConstraint("team_id", "league_id", name="uk_maturity_team_league"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True)
    team_id: str = Field(foreign_key="teams.id", index=True)
    league_id: Optional[str] = Field(default=None, foreign_key="leagues.id", index=True)
    score: int = Field(description="Maturity score (0-100)")
    confidence: str = Field(max_length=10, default="low", description="low, medium, high")


class TeamImportanceRating(SQLModel, table=True):
    __tablename__ = "team_importance_ratings"
    __table_args__ = (
        UniqueConstraint("team_id", "league_id", name="uk_team_importance_team_league"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True)
    team_id: str = Field(foreign_key="teams.id", index=True)
    league_id: Optional[str] = Field(default=None, foreign_key="leagues.id", index=True)
    importance_score: float = Field(description="Team importance score (0-100)")


class MatchPredictabilityScore(SQLModel, table=True):
    __tablename__ = "match_predictability_scores"

    id: str = Field(default_factory=_uuid, primary_key=True)
    match_id: str = Field(foreign_key="match_data.id", unique=True, index=True)
    competition_type: str = Field(max_length=50, default=CompetitionType.OTHER.value)
    predictability_score: float = Field(description="How predictable this match is (0-100)")
    combined_importance_score: float = Field(description="Combined importance of both teams")
    predictability_factors: Optional[dict] = Field(
        default=None,
        sa_column=Column(JSON),
        description="teamFormConsistency, headToHeadPattern, homeAdvantage, oddsClarity (0-100)",
    )


# ═══════════════════════════════════════════════════════════════
# Tips (written by the generation pipeline)
# ═══════════════════════════════════════════════════════════════


class Tipster(SQLModel, table=True):
    """Tip author. Exactly one row has is_ai=True."""

    __tablename__ = "tipsters"

    id: str = Field(default_factory=_uuid, primary_key=True)
    is_ai: bool = Field(default=False, index=True)
    bio: Optional[str] = Field(default=None)
    is_verified: bool = Field(default=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class Tip(SQLModel, table=True):
    """A betting recommendation made of one or more selections."""

    __tablename__ = "tips"

    id: str = Field(default_factory=_uuid, primary_key=True)
    tipster_id: str = Field(foreign_key="tipsters.id", index=True)
    is_ai: bool = Field(default=False, index=True)
    title: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    price: float = Field(default=0.0)
    total_odds: Optional[float] = Field(default=None)
    status: str = Field(max_length=20, default=TipStatus.PENDING.value, index=True)
    is_published: bool = Field(default=False, index=True)
    published_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    earliest_match_date: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime(timezone=True))

    # AI provenance
    ai_confidence_score: Optional[float] = Field(default=None)
    ai_reasoning: Optional[str] = Field(default=None)
    ai_model_version: Optional[str] = Field(default=None, max_length=100)
    ai_prompt_version: Optional[str] = Field(default=None, max_length=20)
    data_maturity_score: Optional[int] = Field(default=None)
    auto_generated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    generation_batch_id: Optional[str] = Field(default=None, max_length=100, index=True)

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class TipSelection(SQLModel, table=True):
    """One prediction (market + value + odds) within a tip."""

    __tablename__ = "tip_selections"
    __table_args__ = (
        UniqueConstraint(
            "tip_id", "match_id", "prediction_type", "prediction_value", name="uk_tip_selections"
        ),
    )

    id: str = Field(default_factory=_uuid, primary_key=True)
    tip_id: str = Field(foreign_key="tips.id", index=True)
    match_id: str = Field(foreign_key="match_data.id", index=True)
    position: int = Field(default=0, description="Order within the tip, 0-based")
    prediction_type: str = Field(max_length=50, index=True)
    prediction_value: str = Field(max_length=100)
    odds: Optional[float] = Field(default=None)
    ai_confidence: Optional[float] = Field(default=None)
    ai_reasoning: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
