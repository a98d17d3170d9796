"""Shared fixtures: isolated settings and a temp-file SQLite database."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import tipgen.models  # noqa: F401  (registers tables on SQLModel.metadata)
from tipgen.config import Settings
from tipgen.models import (
    CompetitionType,
    DataMaturityScore,
    League,
    Match,
    Team,
)
from tipgen.repository import MatchFacts, get_match_facts

KICKOFF_M1 = datetime(2026, 11, 7, 15, 0, tzinfo=timezone.utc)
KICKOFF_M2 = datetime(2026, 11, 7, 17, 30, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Settings that ignore the environment and .env."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite:///:memory:",
        OLLAMA_URL="http://ollama.test:11434",
        OLLAMA_MODEL="llama3.1:8b-instruct-q5_0",
        AI_TIP_VERIFY_MODEL_ON_START=False,
        SENTRY_DSN="",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh database per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tipgen_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def weekend_batch(session_factory) -> list[MatchFacts]:
    """
    M1 Arsenal v Chelsea (home maturity 80), M2 Liverpool v Everton (home maturity 20).
    """
    async with session_factory() as session:
        league = League(id="EPL", name="Premier League", country="England",
                        competition_type=CompetitionType.WEEKEND_LEAGUE.value)
        teams = {
            name: Team(id=name.upper(), name=name, country="England")
            for name in ("Arsenal", "Chelsea", "Liverpool", "Everton")
        }
        session.add(league)
        session.add_all(teams.values())
        session.add_all([
            Match(id="M1", league_id="EPL", home_team_id="ARSENAL", away_team_id="CHELSEA",
                  match_datetime=KICKOFF_M1, venue="Emirates Stadium",
                  odds={"match_result": {"home_win": 1.8, "draw": 3.6, "away_win": 4.2},
                        "over_under": {"over_2_5": 1.7, "under_2_5": 2.1}}),
            Match(id="M2", league_id="EPL", home_team_id="LIVERPOOL", away_team_id="EVERTON",
                  match_datetime=KICKOFF_M2,
                  odds={"match_result": {"home_win": 1.4, "draw": 4.8, "away_win": 7.5}}),
            DataMaturityScore(team_id="ARSENAL", league_id="EPL", score=80, confidence="high"),
            DataMaturityScore(team_id="LIVERPOOL", league_id="EPL", score=20, confidence="low"),
        ])
        await session.commit()
        return await get_match_facts(session, ["M1", "M2"])
