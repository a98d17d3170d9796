"""
Prompt rendering for AI tip generation.

Pure text templating: system prompt chosen by data maturity tier, user prompt
built from an OptimizedContext (single match or merged accumulator).
"""

import json
import logging
from typing import Optional, Union

from tipgen.config import Settings, get_settings
from tipgen.llm.context_optimizer import (
    HistoricalInfo,
    ImportanceInfo,
    OptimizedContext,
    data_quality_tier,
)
from tipgen.models import CompetitionType

logger = logging.getLogger(__name__)

MIN_SELECTIONS = 1
MAX_SELECTIONS = 5
MIN_SUGGESTED_ODDS = 1.5
MAX_SUGGESTED_ODDS = 50.0

_SYSTEM_PREAMBLE = """You are an expert sports betting analyst with extensive knowledge of football teams, leagues, and betting markets.

Your task is to analyze football matches and provide accurate betting predictions.
"""

_SYSTEM_FOOTER = "\nAlways output valid JSON in the exact format specified."

LOW_MATURITY_SYSTEM_PROMPT = (
    _SYSTEM_PREAMBLE
    + """
When you receive match data with limited historical statistics, you should:
1. Rely on your extensive training data knowledge about teams, leagues, and competitions
2. Use general patterns and trends you know about similar matchups
3. Consider team reputations, league characteristics, and historical patterns
4. Apply your knowledge of betting markets and odds interpretation

Provide detailed, well-reasoned predictions based on your knowledge, even when specific historical data is limited.
"""
    + _SYSTEM_FOOTER
)

MEDIUM_MATURITY_SYSTEM_PROMPT = (
    _SYSTEM_PREAMBLE
    + """
When you receive match data with some historical statistics:
1. Prioritize the provided historical data as your primary source
2. Supplement gaps in the data with your general knowledge
3. Use your knowledge to provide context and explain patterns
4. Combine statistical analysis with your understanding of team dynamics

Provide detailed, well-reasoned predictions that blend statistical analysis with expert knowledge.
"""
    + _SYSTEM_FOOTER
)

HIGH_MATURITY_SYSTEM_PROMPT = (
    _SYSTEM_PREAMBLE
    + """
You will receive comprehensive historical data. Your approach should be:
1. Use the provided historical data as your PRIMARY source of analysis
2. Apply statistical analysis and pattern recognition to the data
3. Use your knowledge primarily to interpret and explain the data patterns
4. Base predictions primarily on data-driven insights

Provide detailed, data-driven predictions with clear statistical reasoning.
"""
    + _SYSTEM_FOOTER
)

_SYSTEM_PROMPTS = {
    "low": LOW_MATURITY_SYSTEM_PROMPT,
    "medium": MEDIUM_MATURITY_SYSTEM_PROMPT,
    "high": HIGH_MATURITY_SYSTEM_PROMPT,
}

_MATURITY_NOTES = {
    "low": (
        "DATA QUALITY: LOW (Score: {score}/100)\n"
        "Limited historical data available. Please rely on your extensive knowledge of these teams, "
        "their typical playing styles, league characteristics, and historical patterns. "
        "Use the provided data as supplementary information."
    ),
    "medium": (
        "DATA QUALITY: MEDIUM (Score: {score}/100)\n"
        "Some historical data is available. Prioritize the provided data, but supplement with "
        "your knowledge where data is missing or incomplete."
    ),
    "high": (
        "DATA QUALITY: HIGH (Score: {score}/100)\n"
        "Comprehensive historical data is available. Base your analysis primarily on this data, "
        "using your knowledge to interpret patterns and provide context."
    ),
}

COMPETITION_CONTEXTS = {
    CompetitionType.WEEKEND_LEAGUE: "This is a domestic league match. Consider league standings, form, and home/away records.",
    CompetitionType.CHAMPIONS_LEAGUE: "This is a UEFA Champions League match. Consider European form, knockout stage dynamics, and team motivation.",
    CompetitionType.EUROPA_LEAGUE: "This is a UEFA Europa League match. Consider European competition experience and team depth.",
    CompetitionType.AFCON: "This is an Africa Cup of Nations match. Consider international form, team chemistry, and tournament dynamics.",
    CompetitionType.COPA_AMERICA: "This is a Copa America match. Consider South American football styles and tournament intensity.",
    CompetitionType.EUROS: "This is a European Championship match. Consider international form and tournament pressure.",
    CompetitionType.UEFA_NATIONS_LEAGUE: "This is a UEFA Nations League match. Consider recent international form and competition format.",
    CompetitionType.INTERNATIONAL_FRIENDLY: "This is an international friendly. Consider that teams may experiment with lineups and tactics.",
    CompetitionType.INTERNATIONAL_QUALIFIER: "This is a qualification match. Consider high stakes and team motivation.",
}
GENERIC_COMPETITION_CONTEXT = "Analyze this match considering the competition context."

LIMITED_DATA_NOTE = (
    "Note: Limited historical data available. "
    "Rely on your general knowledge of these teams and the competition."
)

OUTPUT_SCHEMA_EXAMPLE = """{
  "title": "Tip title (e.g., 'Weekend Acca', 'Champions League Picks')",
  "description": "Brief description of the tip and reasoning",
  "confidence": 75,
  "reasoning": "Overall analysis and reasoning for these predictions",
  "selections": [
    {
      "matchId": "match-id-here",
      "predictionType": "match_result",
      "predictionValue": "home_win",
      "odds": 2.10,
      "confidence": 80,
      "reasoning": "Home team has strong form and home advantage"
    }
  ],
  "totalOdds": 4.20
}"""

REQUIREMENTS_BLOCK = f"""REQUIREMENTS:
1. Analyze the match considering all provided data
2. Provide {MIN_SELECTIONS}-{MAX_SELECTIONS} betting predictions (selections) with reasoning
3. Each prediction must include:
   - Match ID (matchId, exactly as given above)
   - Prediction type (match_result, over_under, both_teams_to_score, double_chance, handicap, correct_score)
   - Prediction value (e.g., "home_win", "over_2.5", "yes", "home_draw", "home_-1.5", "2-1")
   - Odds (from provided odds data)
   - Confidence level (0-100)
   - Brief reasoning (1-2 sentences)

4. Provide an overall tip title and description
5. Calculate total odds (multiply all selection odds)
6. Only suggest predictions with odds between {MIN_SUGGESTED_ODDS} and {MAX_SUGGESTED_ODDS}

OUTPUT FORMAT (JSON):
{OUTPUT_SCHEMA_EXAMPLE}

Ensure all predictions are well-reasoned and based on the provided data."""


def get_competition_context(competition_type: Union[CompetitionType, str, None]) -> str:
    """Framing sentence for a competition type, generic for unmapped types."""
    try:
        key = CompetitionType(competition_type)
    except ValueError:
        return GENERIC_COMPETITION_CONTEXT
    return COMPETITION_CONTEXTS.get(key, GENERIC_COMPETITION_CONTEXT)


def get_maturity_note(score: int) -> str:
    return _MATURITY_NOTES[data_quality_tier(score)].format(score=score)


def format_context_for_prompt(context: OptimizedContext) -> str:
    """Context as indented JSON without metadata."""
    return json.dumps(context.to_dict(include_metadata=False), indent=2, ensure_ascii=False)


def format_historical_data(historical: HistoricalInfo) -> str:
    parts = []
    if historical.home_team_stats:
        parts.append(f"Home Team: {historical.home_team_stats}")
    if historical.away_team_stats:
        parts.append(f"Away Team: {historical.away_team_stats}")
    if historical.head_to_head:
        parts.append(f"Head-to-Head: {historical.head_to_head}")
    if historical.home_team_form:
        parts.append(f"Home Team Form (last 5): {historical.home_team_form}")
    if historical.away_team_form:
        parts.append(f"Away Team Form (last 5): {historical.away_team_form}")
    return "\n".join(parts)


def format_importance(importance: ImportanceInfo) -> str:
    parts = []
    if importance.home_team_importance:
        parts.append(f"Home Team: {importance.home_team_importance:.0f}/100")
    if importance.away_team_importance:
        parts.append(f"Away Team: {importance.away_team_importance:.0f}/100")
    if importance.combined_importance:
        parts.append(f"Combined: {importance.combined_importance:.0f}/100")
    return " | ".join(parts)


def _render_match_sections(context: OptimizedContext) -> list[str]:
    """MATCH / ODDS / HISTORICAL / IMPORTANCE / PREDICTABILITY blocks for one context."""
    data = context.to_dict(include_metadata=False)
    sections = ["MATCH INFORMATION:\n" + json.dumps(data["match"], indent=2, ensure_ascii=False)]

    odds = data.get("odds")
    if odds:
        sections.append("CURRENT ODDS:\n" + json.dumps(odds, indent=2, ensure_ascii=False))

    historical = format_historical_data(context.historical)
    sections.append(f"HISTORICAL DATA:\n{historical}" if historical else LIMITED_DATA_NOTE)

    importance = context.importance
    if importance.home_team_importance or importance.away_team_importance:
        sections.append(f"TEAM IMPORTANCE:\n{format_importance(importance)}")

    predictability = context.predictability
    if predictability.score:
        block = f"PREDICTABILITY SCORE: {predictability.score:.0f}/100"
        if predictability.factors:
            block += f"\nFactors: {predictability.factors}"
        sections.append(block)

    return sections


class PromptBuilder:
    """Renders system and user prompts. Deterministic, no I/O."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.prompt_version = self.settings.AI_PROMPT_VERSION
        logger.debug(f"Prompt builder initialized - version {self.prompt_version}")

    def system_prompt(self, maturity_score: int) -> str:
        return _SYSTEM_PROMPTS[data_quality_tier(maturity_score)]

    def user_prompt(
        self,
        context: OptimizedContext,
        competition_type: Union[CompetitionType, str, None],
    ) -> str:
        """
        Render the user prompt.

        A merged accumulator context (one carrying `matches`) lists every
        match in kickoff order (ties keep batch order) so the model can
        reference each match id.
        """
        if context.matches:
            intro = f"Analyze the following {len(context.matches)} matches and provide betting predictions for an accumulator tip."
        else:
            intro = "Analyze the following match and provide betting predictions."

        blocks = [
            intro,
            get_competition_context(competition_type),
            get_maturity_note(context.maturity.score),
        ]

        if context.matches:
            ordered = sorted(context.matches, key=lambda sub: sub.match.date or "")
            for index, sub in enumerate(ordered, start=1):
                blocks.append(f"=== MATCH {index} (matchId: {sub.match.id}) ===")
                blocks.extend(_render_match_sections(sub))
        else:
            blocks.extend(_render_match_sections(context))

        blocks.append(REQUIREMENTS_BLOCK)
        return "\n\n".join(blocks)
