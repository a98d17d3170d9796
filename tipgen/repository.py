"""
Read-only lookups against match and statistics tables.

These are the upstream data collaborators of the tip pipeline: each lookup
returns at most one row or None, never raises for a missing row.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from tipgen.models import (
    DataMaturityScore,
    League,
    Match,
    MatchPredictabilityScore,
    MatchStatus,
    Team,
    TeamHeadToHead,
    TeamImportanceRating,
    TeamStatistics,
    as_utc,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchFacts:
    """Immutable view of a match as the tip pipeline sees it."""

    id: str
    home_team_id: str
    home_team: str
    away_team_id: str
    away_team: str
    kickoff: datetime
    status: str = "scheduled"
    league_id: Optional[str] = None
    league: Optional[str] = None
    country: Optional[str] = None
    venue: Optional[str] = None
    round: Optional[str] = None
    season: Optional[str] = None
    odds: Optional[dict] = field(default=None, hash=False, compare=False)


@dataclass
class MatchRecords:
    """Optional related records for one match. Every field may be None."""

    home_stats: Optional[TeamStatistics] = None
    away_stats: Optional[TeamStatistics] = None
    head_to_head: Optional[TeamHeadToHead] = None
    maturity: Optional[DataMaturityScore] = None
    home_importance: Optional[TeamImportanceRating] = None
    away_importance: Optional[TeamImportanceRating] = None
    predictability: Optional[MatchPredictabilityScore] = None


def _league_filter(column, league_id: Optional[str]):
    if league_id is None:
        return column.is_(None)
    return column == league_id


async def get_match_facts(session: AsyncSession, match_ids: list[str]) -> list[MatchFacts]:
    """Load matches with team and league names, ordered by kickoff."""
    if not match_ids:
        return []

    home = aliased(Team)
    away = aliased(Team)
    stmt = (
        select(Match, home.name, away.name, League.name, League.country)
        .join(home, home.id == Match.home_team_id)
        .join(away, away.id == Match.away_team_id)
        .outerjoin(League, League.id == Match.league_id)
        .where(Match.id.in_(match_ids))
        .order_by(Match.match_datetime)
    )
    result = await session.execute(stmt)

    facts = []
    for match, home_name, away_name, league_name, country in result.all():
        facts.append(
            MatchFacts(
                id=match.id,
                home_team_id=match.home_team_id,
                home_team=home_name,
                away_team_id=match.away_team_id,
                away_team=away_name,
                kickoff=as_utc(match.match_datetime),
                status=match.status,
                league_id=match.league_id,
                league=league_name,
                country=country,
                venue=match.venue,
                round=match.round,
                season=match.season,
                odds=match.odds,
            )
        )
    return facts


async def get_match(session: AsyncSession, match_id: str) -> Optional[Match]:
    return await session.get(Match, match_id)


async def get_team_statistics(
    session: AsyncSession, team_id: str, league_id: Optional[str]
) -> Optional[TeamStatistics]:
    stmt = (
        select(TeamStatistics)
        .where(TeamStatistics.team_id == team_id)
        .where(_league_filter(TeamStatistics.league_id, league_id))
        .order_by(TeamStatistics.season.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_head_to_head(
    session: AsyncSession, home_team_id: str, away_team_id: str, league_id: Optional[str]
) -> Optional[TeamHeadToHead]:
    stmt = (
        select(TeamHeadToHead)
        .where(TeamHeadToHead.team_a_id == home_team_id)
        .where(TeamHeadToHead.team_b_id == away_team_id)
        .where(_league_filter(TeamHeadToHead.league_id, league_id))
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_maturity_score(
    session: AsyncSession, team_id: str, league_id: Optional[str]
) -> Optional[DataMaturityScore]:
    stmt = (
        select(DataMaturityScore)
        .where(DataMaturityScore.team_id == team_id)
        .where(_league_filter(DataMaturityScore.league_id, league_id))
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_importance_rating(
    session: AsyncSession, team_id: str, league_id: Optional[str]
) -> Optional[TeamImportanceRating]:
    stmt = (
        select(TeamImportanceRating)
        .where(TeamImportanceRating.team_id == team_id)
        .where(_league_filter(TeamImportanceRating.league_id, league_id))
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_predictability_score(
    session: AsyncSession, match_id: str
) -> Optional[MatchPredictabilityScore]:
    stmt = select(MatchPredictabilityScore).where(MatchPredictabilityScore.match_id == match_id)
    return (await session.execute(stmt)).scalars().first()


async def load_match_records(session: AsyncSession, match: MatchFacts) -> MatchRecords:
    """
    Fetch all optional records feeding the context of one match.

    Maturity is keyed on the home team, matching how scores are computed upstream.
    Queries run sequentially: one AsyncSession cannot serve concurrent statements.
    """
    league_id = match.league_id
    return MatchRecords(
        home_stats=await get_team_statistics(session, match.home_team_id, league_id),
        away_stats=await get_team_statistics(session, match.away_team_id, league_id),
        head_to_head=await get_head_to_head(session, match.home_team_id, match.away_team_id, league_id),
        maturity=await get_maturity_score(session, match.home_team_id, league_id),
        home_importance=await get_importance_rating(session, match.home_team_id, league_id),
        away_importance=await get_importance_rating(session, match.away_team_id, league_id),
        predictability=await get_predictability_score(session, match.id),
    )


async def get_scheduled_match_facts(
    session: AsyncSession,
    competition_type: str,
    start: datetime,
    end: datetime,
    limit: int = 5,
) -> list[MatchFacts]:
    """Earliest scheduled matches of active leagues of one competition type in [start, end]."""
    competition_type = getattr(competition_type, "value", competition_type)
    stmt = (
        select(Match.id)
        .join(League, League.id == Match.league_id)
        .where(League.competition_type == competition_type)
        .where(League.is_active.is_(True))
        .where(Match.status == MatchStatus.SCHEDULED.value)
        .where(Match.match_datetime >= start)
        .where(Match.match_datetime <= end)
        .order_by(Match.match_datetime)
        .limit(limit)
    )
    match_ids = list((await session.execute(stmt)).scalars().all())
    return await get_match_facts(session, match_ids)
