"""
Scheduled AI tip generation per competition.

Each CompetitionJob selects matches for a date window and runs one tip batch
per competition type. A failing batch is logged and reported, then the next
one runs: run_tip_batch() never raises.

Run standalone:
    python -m tipgen.jobs
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from tipgen.config import Settings, get_settings
from tipgen.database import AsyncSessionLocal, close_db, init_db
from tipgen.llm.tip_generator import GenerationOptions, GenerationResult, TipGenerator
from tipgen.models import CompetitionType, utc_now
from tipgen.repository import MatchFacts, get_scheduled_match_facts
from tipgen.telemetry.metrics import record_job_run
from tipgen.telemetry.sentry import capture_exception, init_sentry, sentry_job_context

logger = logging.getLogger(__name__)

MAX_MATCHES_PER_BATCH = 5

# (competition_type, window_start, window_end) -> matches for one batch
MatchSelector = Callable[[CompetitionType, datetime, datetime], Awaitable[list[MatchFacts]]]


@dataclass(frozen=True)
class CompetitionJob:
    job_id: str
    name: str
    cron: str  # crontab, server time
    competition_types: tuple
    start_offset_days: int
    end_offset_days: int
    batch_prefix: Optional[str] = None  # None: competition type value


COMPETITION_JOBS = (
    CompetitionJob(
        job_id="weekend_league_tips",
        name="Weekend League Tips (Thu 18:00)",
        cron="0 18 * * 4",
        competition_types=(CompetitionType.WEEKEND_LEAGUE,),
        start_offset_days=0,
        end_offset_days=3,
        batch_prefix="weekend",
    ),
    CompetitionJob(
        job_id="champions_league_tips",
        name="Champions League Tips (Mon 18:00)",
        cron="0 18 * * 1",
        competition_types=(CompetitionType.CHAMPIONS_LEAGUE,),
        start_offset_days=1,
        end_offset_days=3,
        batch_prefix="ucl",
    ),
    CompetitionJob(
        job_id="europa_league_tips",
        name="Europa League Tips (Mon 19:00)",
        cron="0 19 * * 1",
        competition_types=(CompetitionType.EUROPA_LEAGUE,),
        start_offset_days=1,
        end_offset_days=3,
        batch_prefix="uel",
    ),
    CompetitionJob(
        job_id="international_tips",
        name="International Competition Tips (daily 08:00)",
        cron="0 8 * * *",
        competition_types=(
            CompetitionType.AFCON,
            CompetitionType.COPA_AMERICA,
            CompetitionType.EUROS,
            CompetitionType.UEFA_NATIONS_LEAGUE,
            CompetitionType.INTERNATIONAL_FRIENDLY,
            CompetitionType.INTERNATIONAL_QUALIFIER,
        ),
        start_offset_days=0,
        end_offset_days=7,
    ),
)

TITLE_TEMPLATES = {
    CompetitionType.WEEKEND_LEAGUE: "Weekend Acca",
    CompetitionType.CHAMPIONS_LEAGUE: "Champions League Picks",
    CompetitionType.EUROPA_LEAGUE: "Europa League Picks",
    CompetitionType.AFCON: "AFCON Picks",
    CompetitionType.COPA_AMERICA: "Copa America Picks",
    CompetitionType.EUROS: "European Championship Picks",
    CompetitionType.UEFA_NATIONS_LEAGUE: "UEFA Nations League Picks",
    CompetitionType.INTERNATIONAL_FRIENDLY: "International Friendly Picks",
    CompetitionType.INTERNATIONAL_QUALIFIER: "Qualifier Picks",
}
DEFAULT_TITLE_TEMPLATE = "Match Picks"


def make_batch_id(prefix: str, now_ms: Optional[int] = None) -> str:
    """'<prefix>-<epoch_ms>', e.g. 'ucl-1700000000000'."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{now_ms}"


def selection_window(job: CompetitionJob, now: datetime) -> tuple[datetime, datetime]:
    """Whole days from now+start_offset 00:00 to now+end_offset 23:59:59."""
    start = (now + timedelta(days=job.start_offset_days)).replace(hour=0, minute=0, second=0, microsecond=0)
    end = (now + timedelta(days=job.end_offset_days)).replace(
        hour=23, minute=59, second=59, microsecond=999999
    )
    return start, end


async def select_matches_for_competition(
    competition_type: CompetitionType, start: datetime, end: datetime
) -> list[MatchFacts]:
    """Default selector: earliest scheduled matches of the competition in the window."""
    async with AsyncSessionLocal() as session:
        return await get_scheduled_match_facts(
            session, competition_type, start, end, limit=MAX_MATCHES_PER_BATCH
        )


async def run_tip_batch(
    generator: TipGenerator,
    matches: list[MatchFacts],
    options: GenerationOptions,
    job_id: str,
) -> Optional[GenerationResult]:
    """
    Generate one tip; isolation boundary for a single batch.

    Any failure is logged with its latency, reported to Sentry and swallowed
    so the caller can continue with the next batch.
    """
    start = time.time()
    try:
        result = await generator.generate_tip_for_matches(matches, options)
    except Exception as e:
        latency_ms = int((time.time() - start) * 1000)
        logger.error(
            f"[{job_id}] Tip batch {options.batch_id} failed after {latency_ms}ms: "
            f"{type(e).__name__}: {e}"
        )
        capture_exception(e, job_id=job_id, batch_id=options.batch_id, latency_ms=latency_ms)
        record_job_run(job_id, "error")
        return None

    if result is None:
        record_job_run(job_id, "empty")
        return None

    logger.info(f"[{job_id}] Tip generated: {result.tip.id} (batch {options.batch_id}, {result.latency_ms}ms)")
    record_job_run(job_id, "ok")
    return result


async def run_competition_job(
    job: CompetitionJob,
    generator: TipGenerator,
    select_matches: MatchSelector = select_matches_for_competition,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> list[GenerationResult]:
    """Run every competition type of a job. Returns the tips that were created."""
    settings = settings or get_settings()
    if not settings.AI_TIP_GENERATION_CRON_ENABLED:
        logger.debug(f"[{job.job_id}] AI tip generation cron disabled, skipping")
        record_job_run(job.job_id, "skipped")
        return []

    start, end = selection_window(job, now or utc_now())
    logger.info(f"[{job.job_id}] Generating tips for {start.isoformat()} to {end.isoformat()}")

    results = []
    with sentry_job_context(job.job_id):
        for competition_type in job.competition_types:
            try:
                matches = await select_matches(competition_type, start, end)
            except Exception as e:
                logger.error(f"[{job.job_id}] Match selection failed for {competition_type.value}: {e}")
                capture_exception(e, job_id=job.job_id, competition=competition_type.value)
                record_job_run(job.job_id, "error")
                continue

            if not matches:
                logger.debug(f"[{job.job_id}] No {competition_type.value} matches found in date range")
                continue

            logger.info(
                f"[{job.job_id}] Selected {len(matches)} {competition_type.value} matches for tip generation"
            )
            options = GenerationOptions(
                competition_type=competition_type,
                title_template=TITLE_TEMPLATES.get(competition_type, DEFAULT_TITLE_TEMPLATE),
                auto_publish=True,
                batch_id=make_batch_id(job.batch_prefix or competition_type.value),
            )
            result = await run_tip_batch(generator, matches, options, job.job_id)
            if result is not None:
                results.append(result)

    return results


def register_jobs(
    scheduler: AsyncIOScheduler,
    generator: TipGenerator,
    select_matches: MatchSelector = select_matches_for_competition,
    settings: Optional[Settings] = None,
) -> None:
    """Add one cron job per competition job to the scheduler."""
    for job in COMPETITION_JOBS:
        scheduler.add_job(
            run_competition_job,
            trigger=CronTrigger.from_crontab(job.cron),
            id=job.job_id,
            name=job.name,
            kwargs={
                "job": job,
                "generator": generator,
                "select_matches": select_matches,
                "settings": settings,
            },
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    logger.info(f"Registered {len(COMPETITION_JOBS)} AI tip generation jobs")


async def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_sentry(settings)
    await init_db()

    logger.info(f"AI_TIP_GENERATION_CRON_ENABLED: {settings.AI_TIP_GENERATION_CRON_ENABLED}")
    if not settings.AI_TIP_GENERATION_CRON_ENABLED:
        logger.warning("AI tip generation cron is disabled. Jobs will run as no-ops.")

    generator = TipGenerator(settings)
    if not await generator.ollama_client.health_check():
        logger.warning(f"Ollama not reachable at {generator.ollama_client.base_url}")

    scheduler = AsyncIOScheduler()
    register_jobs(scheduler, generator, settings=settings)
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await generator.ollama_client.close()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
