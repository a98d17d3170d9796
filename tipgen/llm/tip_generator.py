"""
AI tip generation orchestrator.

One call of generate_tip_for_matches() is one generation attempt:

1. Build an OptimizedContext per match (concurrently, one session each)
2. Merge them into a single accumulator context
3. Render prompts and call Ollama once (the client owns retries)
4. Parse + validate the output; any blocking error aborts the attempt
5. Write Tip + TipSelections in a single transaction

Every outcome is logged as a [TIP_GEN] line with latency_ms.
"""

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tipgen.config import Settings, get_settings
from tipgen.database import AsyncSessionLocal, TipWriteSessionLocal
from tipgen.llm.context_optimizer import (
    ContextMetadata,
    ContextOptimizer,
    ImportanceInfo,
    MatchInfo,
    MaturityInfo,
    OptimizedContext,
    PredictabilityInfo,
    data_quality_tier,
)
from tipgen.llm.ollama_client import OllamaClient, OllamaError
from tipgen.llm.prompt_templates import PromptBuilder
from tipgen.llm.tip_validator import (
    CandidateTip,
    FREE_TEXT_TYPES,
    TipGenerationError,
    TipParseError,
    TipValidationError,
    TipValidator,
    ValidationResult,
    parse_candidate_tip,
)
from tipgen.models import (
    CompetitionType,
    PredictionType,
    Tip,
    TipSelection,
    Tipster,
    TipStatus,
    as_utc,
    utc_now,
)
from tipgen.repository import MatchFacts, get_match, load_match_records
from tipgen.telemetry.metrics import record_tip_generation, record_validation_issues

logger = logging.getLogger(__name__)

AI_TIPSTER_BIO = "AI-powered tipster using advanced machine learning models"
MAX_TITLE_LENGTH = 255


class TipPersistenceError(TipGenerationError):
    """Tip write failed and was rolled back."""

    status = "persistence_error"


@dataclass
class GenerationOptions:
    competition_type: Union[CompetitionType, str] = CompetitionType.OTHER
    title_template: Optional[str] = None
    auto_publish: bool = False
    batch_id: Optional[str] = None


@dataclass
class GenerationResult:
    """Persisted tip plus the context it was generated from."""

    tip: Tip
    context: OptimizedContext
    latency_ms: int
    selections: list[TipSelection] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (round() would give banker's rounding)."""
    return int(math.floor(value + 0.5))


def _average(values: list) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def overall_data_quality(contexts: list[OptimizedContext]) -> str:
    """Majority vote: high if >1/2 high, medium if high+medium >1/2, else low."""
    qualities = [c.metadata.data_quality for c in contexts]
    high = qualities.count("high")
    medium = qualities.count("medium")
    if high > len(qualities) / 2:
        return "high"
    if high + medium > len(qualities) / 2:
        return "medium"
    return "low"


def merge_contexts(contexts: list[OptimizedContext]) -> OptimizedContext:
    """
    Combine per-match contexts into one accumulator context.

    token_estimate is the sum of the parts, maturity the rounded mean with
    its tier re-derived. A single context is returned unchanged.
    """
    if len(contexts) == 1:
        return contexts[0]

    maturity_score = round_half_up(sum(c.maturity.score for c in contexts) / len(contexts))
    leagues = {c.match.league for c in contexts}

    return OptimizedContext(
        match=MatchInfo(
            id="combined",
            home_team=f"{len(contexts)} matches",
            away_team="Accumulator",
            league=leagues.pop() if len(leagues) == 1 else "Multiple Leagues",
            date=min(c.match.date for c in contexts),
        ),
        importance=ImportanceInfo(
            combined_importance=_average([c.importance.combined_importance for c in contexts])
        ),
        predictability=PredictabilityInfo(
            score=_average([c.predictability.score for c in contexts])
        ),
        maturity=MaturityInfo(score=maturity_score, confidence=data_quality_tier(maturity_score)),
        metadata=ContextMetadata(
            token_estimate=sum(c.metadata.token_estimate for c in contexts),
            data_quality=overall_data_quality(contexts),
        ),
        matches=list(contexts),
    )


def render_title(model_title: str, template: Optional[str], match_count: int) -> str:
    """Apply the caller's title template, falling back to the model title."""
    title = model_title.strip()
    if template:
        try:
            title = template.format(title=title, matches=match_count)
        except (KeyError, IndexError, ValueError) as e:
            logger.warning(f"Invalid title template {template!r} ({e}), using it verbatim")
            title = template
    return title[:MAX_TITLE_LENGTH]


def _as_float(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def log_tip_generation(
    batch_id: Optional[str],
    competition_type: str,
    match_count: int,
    status: str,
    latency_ms: int,
    tip_id: Optional[str] = None,
    maturity_score: Optional[int] = None,
    token_estimate: Optional[int] = None,
    validation: Optional[ValidationResult] = None,
    error: Optional[BaseException] = None,
) -> None:
    """One structured line per generation attempt."""
    log_data = {
        "batch_id": batch_id,
        "competition": competition_type,
        "matches": match_count,
        "status": status,
        "latency_ms": latency_ms,
    }
    if tip_id:
        log_data["tip_id"] = tip_id
    if maturity_score is not None:
        log_data["maturity_score"] = maturity_score
    if token_estimate is not None:
        log_data["token_estimate"] = token_estimate
    if validation is not None:
        log_data["validation_errors"] = len(validation.errors)
        log_data["validation_warnings"] = len(validation.warnings)
    if error is not None:
        log_data["error_class"] = type(error).__name__
        log_data["error"] = str(error)[:500]

    if status == "ok":
        logger.info(f"[TIP_GEN] {json.dumps(log_data)}")
    else:
        logger.error(f"[TIP_GEN] {json.dumps(log_data)}")


class TipGenerator:
    """Coordinates context building, the LLM call, validation and persistence."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ollama_client: Optional[OllamaClient] = None,
        session_factory: Optional[async_sessionmaker] = None,
        write_session_factory: Optional[async_sessionmaker] = None,
    ):
        self.settings = settings or get_settings()
        self.ollama_client = ollama_client or OllamaClient(self.settings)
        self.session_factory = session_factory or AsyncSessionLocal
        self.write_session_factory = write_session_factory or session_factory or TipWriteSessionLocal
        self.context_optimizer = ContextOptimizer(self.settings)
        self.prompt_builder = PromptBuilder(self.settings)
        self._model_checked = not self.settings.AI_TIP_VERIFY_MODEL_ON_START

    async def generate_tip_for_matches(
        self, matches: list[MatchFacts], options: GenerationOptions
    ) -> Optional[GenerationResult]:
        """
        Generate and persist one tip for a batch of matches.

        Returns:
            GenerationResult, or None for an empty batch.

        Raises:
            OllamaError: backend failed after all retries.
            TipParseError / TipValidationError / TipPersistenceError.
        """
        competition = getattr(options.competition_type, "value", options.competition_type)
        if not matches:
            logger.warning("No matches provided for tip generation")
            record_tip_generation("empty", 0)
            return None

        start = time.time()
        maturity_score = None
        merged = None
        validation = None

        try:
            logger.info(
                f"Generating AI tip for {len(matches)} match(es) - Competition: {competition}, "
                f"batch={options.batch_id}"
            )
            await self._verify_model_once()

            contexts = await asyncio.gather(*(self.build_context_for_match(m) for m in matches))
            merged = merge_contexts(list(contexts))
            maturity_score = merged.maturity.score

            system_prompt = self.prompt_builder.system_prompt(maturity_score)
            user_prompt = self.prompt_builder.user_prompt(merged, options.competition_type)

            response = await self.ollama_client.generate(user_prompt, system=system_prompt)

            candidate = parse_candidate_tip(response.text)

            async with self.session_factory() as session:
                validator = TipValidator(lambda match_id: get_match(session, match_id), self.settings)
                validation = await validator.validate_tip(candidate, [m.id for m in matches])
            record_validation_issues(len(validation.errors), len(validation.warnings))

            if not validation.is_valid:
                raise TipValidationError(validation)
            if validation.warnings:
                logger.warning(f"Validation warnings: {'; '.join(validation.warnings)}")

            tip, selections = await self.save_tip(
                candidate,
                matches,
                options,
                maturity_score,
                model_version=response.model or self.ollama_client.model,
            )
        except Exception as e:
            latency_ms = int((time.time() - start) * 1000)
            status = self._status_for(e)
            if isinstance(e, TipParseError):
                logger.debug(f"Response preview: {e.preview}")
            log_tip_generation(
                options.batch_id,
                competition,
                len(matches),
                status,
                latency_ms,
                maturity_score=maturity_score,
                token_estimate=merged.metadata.token_estimate if merged is not None else None,
                validation=validation,
                error=e,
            )
            record_tip_generation(status, latency_ms)
            raise

        latency_ms = int((time.time() - start) * 1000)
        log_tip_generation(
            options.batch_id,
            competition,
            len(matches),
            "ok",
            latency_ms,
            tip_id=tip.id,
            maturity_score=maturity_score,
            token_estimate=merged.metadata.token_estimate,
            validation=validation,
        )
        record_tip_generation("ok", latency_ms)
        logger.info(f"AI tip generated successfully - Tip ID: {tip.id}, Latency: {latency_ms}ms")

        return GenerationResult(
            tip=tip,
            context=merged,
            latency_ms=latency_ms,
            selections=selections,
            warnings=list(validation.warnings),
        )

    @staticmethod
    def _status_for(error: Exception) -> str:
        if isinstance(error, OllamaError):
            return "llm_error"
        if isinstance(error, TipGenerationError):
            return error.status
        return "error"

    async def _verify_model_once(self) -> None:
        if self._model_checked:
            return
        self._model_checked = True
        await self.ollama_client.verify_model()

    async def build_context_for_match(self, match: MatchFacts) -> OptimizedContext:
        """Load related records in a dedicated session and build the context."""
        async with self.session_factory() as session:
            records = await load_match_records(session, match)
        return self.context_optimizer.build_optimized_context(match, records)

    async def save_tip(
        self,
        candidate: CandidateTip,
        matches: list[MatchFacts],
        options: GenerationOptions,
        maturity_score: int,
        model_version: Optional[str] = None,
    ) -> tuple[Tip, list[TipSelection]]:
        """
        Write the tip graph in one transaction.

        A selection whose match is not part of the batch aborts the whole
        write; nothing is left behind.

        Raises:
            TipPersistenceError: on any failure, after rollback.
        """
        batch = {m.id: m for m in matches}
        now = utc_now()

        async with self.write_session_factory() as session:
            try:
                async with session.begin():
                    tipster = await self._get_or_create_ai_tipster(session)

                    tip = Tip(
                        tipster_id=tipster.id,
                        is_ai=True,
                        title=render_title(str(candidate.title), options.title_template, len(matches)),
                        description=candidate.description or candidate.reasoning,
                        price=0.0,
                        total_odds=_as_float(candidate.total_odds),
                        status=TipStatus.PENDING.value,
                        is_published=bool(options.auto_publish),
                        published_at=now if options.auto_publish else None,
                        earliest_match_date=as_utc(min(m.kickoff for m in matches)) if matches else None,
                        ai_confidence_score=_as_float(candidate.confidence),
                        ai_reasoning=candidate.reasoning,
                        ai_model_version=model_version or self.ollama_client.model,
                        ai_prompt_version=self.prompt_builder.prompt_version,
                        data_maturity_score=maturity_score,
                        auto_generated_at=now,
                        generation_batch_id=options.batch_id,
                    )
                    session.add(tip)
                    await session.flush()

                    selections = []
                    for position, candidate_selection in enumerate(candidate.selections):
                        match = batch.get(candidate_selection.match_id)
                        if match is None:
                            raise TipPersistenceError(
                                f"Selection {position + 1} references match "
                                f"{candidate_selection.match_id} outside batch {options.batch_id}"
                            )
                        prediction_type = PredictionType(
                            str(candidate_selection.prediction_type).strip().lower()
                        )
                        value = str(candidate_selection.prediction_value).strip()
                        if prediction_type.value not in FREE_TEXT_TYPES:
                            value = value.lower()
                        selection = TipSelection(
                            tip_id=tip.id,
                            match_id=match.id,
                            position=position,
                            prediction_type=prediction_type.value,
                            prediction_value=value,
                            odds=_as_float(candidate_selection.odds),
                            ai_confidence=_as_float(candidate_selection.confidence),
                            ai_reasoning=candidate_selection.reasoning,
                        )
                        session.add(selection)
                        selections.append(selection)

                    if not selections:
                        raise TipPersistenceError("Refusing to save a tip without selections")
                    await session.flush()
            except TipPersistenceError as e:
                logger.error(f"Tip write rolled back: {e}")
                raise
            except (SQLAlchemyError, ValueError) as e:
                logger.error(f"Tip write rolled back: {e}")
                raise TipPersistenceError(f"Failed to persist tip: {e}") from e

        logger.info(f"Saved tip {tip.id} with {len(selections)} selection(s), batch={options.batch_id}")
        return tip, selections

    async def _get_or_create_ai_tipster(self, session: AsyncSession) -> Tipster:
        """Fetch the singleton AI tipster, creating it inside the current transaction."""
        result = await session.execute(select(Tipster).where(Tipster.is_ai.is_(True)).limit(1))
        tipster = result.scalars().first()
        if tipster is None:
            tipster = Tipster(is_ai=True, is_verified=True, is_active=True, bio=AI_TIPSTER_BIO)
            session.add(tipster)
            await session.flush()
            logger.info("Created AI tipster entity")
        return tipster
