"""
Parsing and validation of LLM-generated tips.

The model output is untrusted. parse_candidate_tip() extracts the JSON
object; TipValidator.validate_tip() runs every check and collects errors
(blocking) and warnings (advisory) into a ValidationResult. Nothing here
raises for a bad tip except the parse step.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from tipgen.config import Settings, get_settings
from tipgen.models import MatchStatus, PredictionType

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_PREDICTION_VALUE_LENGTH = 100
MAX_REASONING_LENGTH = 500
MIN_ODDS = 1.0
HIGH_SELECTION_ODDS = 100
HIGH_TOTAL_ODDS = 1000
TOTAL_ODDS_TOLERANCE = 0.1
PREVIEW_CHARS = 500

# Markets whose values are names or prose; case is kept
FREE_TEXT_TYPES = frozenset({PredictionType.FIRST_GOAL_SCORER.value, PredictionType.ANY_OTHER.value})

# Returns the match row (anything with a `status`) or None
MatchLookup = Callable[[str], Awaitable[Optional[Any]]]


class TipGenerationError(Exception):
    """Base error for a failed tip generation attempt."""

    status = "error"


class TipParseError(TipGenerationError):
    """Model output is not a usable JSON tip."""

    status = "parse_error"

    def __init__(self, message: str, preview: str = ""):
        super().__init__(message)
        self.preview = preview[:PREVIEW_CHARS]


class TipValidationError(TipGenerationError):
    """One or more blocking validation errors. Carries the full result."""

    status = "validation_error"

    def __init__(self, result: "ValidationResult"):
        self.result = result
        super().__init__(
            f"Tip validation failed with {len(result.errors)} error(s): " + "; ".join(result.errors)
        )


@dataclass
class CandidateSelection:
    match_id: Any = None
    prediction_type: Any = None
    prediction_value: Any = None
    odds: Any = None
    confidence: Any = None
    reasoning: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> "CandidateSelection":
        if not isinstance(data, dict):
            return cls()
        return cls(
            match_id=data.get("matchId", data.get("match_id")),
            prediction_type=data.get("predictionType", data.get("prediction_type")),
            prediction_value=data.get("predictionValue", data.get("prediction_value")),
            odds=data.get("odds"),
            confidence=data.get("confidence"),
            reasoning=data.get("reasoning"),
        )

    @property
    def key(self) -> tuple:
        """Identity as stored: type stripped and lowercased, value too unless free text."""
        prediction_type = self.prediction_type
        value = self.prediction_value
        if isinstance(prediction_type, str):
            prediction_type = prediction_type.strip().lower()
        if isinstance(value, str):
            value = value.strip()
            if prediction_type not in FREE_TEXT_TYPES:
                value = value.lower()
        return (self.match_id, prediction_type, value)


@dataclass
class CandidateTip:
    """Tip as proposed by the model, before validation."""

    title: Any = None
    description: Any = None
    confidence: Any = None
    reasoning: Any = None
    total_odds: Any = None
    selections: list[CandidateSelection] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "CandidateTip":
        raw_selections = data.get("selections")
        selections = (
            [CandidateSelection.from_dict(s) for s in raw_selections]
            if isinstance(raw_selections, list)
            else []
        )
        return cls(
            title=data.get("title"),
            description=data.get("description"),
            confidence=data.get("confidence"),
            reasoning=data.get("reasoning"),
            total_odds=data.get("totalOdds", data.get("total_odds")),
            selections=selections,
        )


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def extract_json_object(text: str) -> Optional[dict]:
    """
    Return the first balanced {...} object in text, or None.

    Markdown fences and surrounding prose are skipped. Braces inside JSON
    strings do not count toward nesting.
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]

    start = text.find("{")
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(start, len(text)):
            char = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = i + 1
                    break
        if end < 0:
            return None
        try:
            parsed = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            logger.debug(f"JSON candidate at offset {start} did not parse: {e}")
        else:
            if isinstance(parsed, dict):
                return parsed
        start = text.find("{", start + 1)
    return None


def parse_candidate_tip(text: str) -> CandidateTip:
    """
    Parse raw model output into a CandidateTip.

    Raises:
        TipParseError: no JSON object, or `title` / `selections` missing.
    """
    data = extract_json_object(text or "")
    if data is None:
        raise TipParseError("No valid JSON object found in model response", preview=text or "")
    missing = [key for key in ("title", "selections") if key not in data]
    if missing:
        raise TipParseError(
            f"Model response is missing required field(s): {', '.join(missing)}", preview=text
        )
    return CandidateTip.from_dict(data)


def _number(value: Any) -> Optional[float]:
    """Numeric value or None. Strings and bools are not numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


_VALUE_SETS = {
    PredictionType.MATCH_RESULT: (
        {"home_win", "away_win", "draw"},
        "Match result must be 'home_win', 'away_win', or 'draw'",
    ),
    PredictionType.BOTH_TEAMS_TO_SCORE: ({"yes", "no"}, "BTTS must be 'yes' or 'no'"),
    PredictionType.DOUBLE_CHANCE: (
        {"home_draw", "home_away", "away_draw"},
        "Double chance must be 'home_draw', 'home_away', or 'away_draw'",
    ),
}

_VALUE_PATTERNS = {
    PredictionType.OVER_UNDER: (
        re.compile(r"^(over|under)_\d+(\.\d)?$"),
        "Over/Under must be in format 'over_X' or 'under_X' (e.g., 'over_2.5')",
    ),
    PredictionType.HANDICAP: (
        re.compile(r"^(home|away)_[+-]?\d+(\.\d)?$"),
        "Handicap must be in format 'home_X' or 'away_X' (e.g., 'home_-1.5')",
    ),
    PredictionType.CORRECT_SCORE: (
        re.compile(r"^\d+-\d+$"),
        "Correct score must be in format 'X-Y' (e.g., '2-1')",
    ),
}


def validate_prediction_value(prediction_type: PredictionType, value: str) -> Optional[str]:
    """Error message when value does not fit the grammar of its type, else None."""
    normalized = value.strip().lower()
    if prediction_type in _VALUE_SETS:
        allowed, message = _VALUE_SETS[prediction_type]
        return None if normalized in allowed else message
    if prediction_type in _VALUE_PATTERNS:
        pattern, message = _VALUE_PATTERNS[prediction_type]
        return None if pattern.match(normalized) else message
    # first_goal_scorer, any_other: free text
    return None


def _prediction_type(value: Any) -> Optional[PredictionType]:
    if not isinstance(value, str):
        return None
    try:
        return PredictionType(value.strip().lower())
    except ValueError:
        return None


class TipValidator:
    """Fail-closed acceptance gate for candidate tips."""

    def __init__(self, match_lookup: MatchLookup, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.match_lookup = match_lookup
        self.max_selections = settings.TIP_MAX_SELECTIONS

    async def validate_tip(self, tip: CandidateTip, match_ids: list[str]) -> ValidationResult:
        """
        Run all checks in order and collect every finding.

        Returns:
            ValidationResult; is_valid iff no errors (warnings ignored).
        """
        result = ValidationResult()
        errors, warnings = result.errors, result.warnings

        # Structure
        if not isinstance(tip.title, str) or not tip.title.strip():
            errors.append("Title is required")
        elif len(tip.title) > MAX_TITLE_LENGTH:
            errors.append(f"Title must not exceed {MAX_TITLE_LENGTH} characters")

        if not tip.selections:
            errors.append("At least one selection is required")
        elif len(tip.selections) > self.max_selections:
            errors.append(f"Maximum {self.max_selections} selections allowed")

        # Overall confidence
        if tip.confidence is None:
            warnings.append("Confidence score not provided")
        else:
            confidence = _number(tip.confidence)
            if confidence is None or not 0 <= confidence <= 100:
                errors.append("Confidence score must be between 0 and 100")

        # Total odds
        if tip.total_odds is not None:
            self._check_total_odds(tip, errors, warnings)

        # Selections
        valid_ids = set(match_ids)
        for index, selection in enumerate(tip.selections, start=1):
            await self._check_selection(selection, valid_ids, index, errors, warnings)

        # Duplicates
        seen = set()
        duplicates = []
        for selection in tip.selections:
            key = selection.key
            try:
                if key in seen:
                    duplicates.append(f"{key[0]}-{key[1]}-{key[2]}")
                seen.add(key)
            except TypeError:
                # Unhashable values were already reported as errors
                continue
        if duplicates:
            errors.append(f"Duplicate selections found: {', '.join(duplicates)}")

        if errors:
            logger.warning(f"Tip validation failed: {len(errors)} error(s), {len(warnings)} warning(s)")
        elif warnings:
            logger.info(f"Tip validation passed with {len(warnings)} warning(s): {'; '.join(warnings)}")
        return result

    @staticmethod
    def _check_total_odds(tip: CandidateTip, errors: list, warnings: list) -> None:
        total_odds = _number(tip.total_odds)
        if total_odds is None:
            errors.append("Total odds must be a number")
            return
        if total_odds < MIN_ODDS:
            errors.append("Total odds must be at least 1.0")
        elif total_odds > HIGH_TOTAL_ODDS:
            warnings.append(f"Total odds is very high (>{HIGH_TOTAL_ODDS})")

        calculated = 1.0
        for selection in tip.selections:
            odds = _number(selection.odds)
            calculated *= odds if odds else 1.0
        if abs(calculated - total_odds) > TOTAL_ODDS_TOLERANCE:
            warnings.append(
                f"Total odds ({total_odds:g}) doesn't match calculated odds ({calculated:.2f})"
            )

    async def _check_selection(
        self,
        selection: CandidateSelection,
        valid_ids: set,
        index: int,
        errors: list,
        warnings: list,
    ) -> None:
        prefix = f"Selection {index}"

        # Match reference
        match_id = selection.match_id
        if match_id is None or match_id == "":
            errors.append(f"{prefix}: Match ID is required")
        elif not isinstance(match_id, str) or match_id not in valid_ids:
            errors.append(f"{prefix}: Match ID {match_id} is not in the provided matches")
        else:
            match = await self.match_lookup(match_id)
            if match is None:
                errors.append(f"{prefix}: Match not found")
            elif match.status != MatchStatus.SCHEDULED.value:
                errors.append(f"{prefix}: Match is not scheduled (status: {match.status})")

        # Prediction type
        prediction_type = _prediction_type(selection.prediction_type)
        if not selection.prediction_type:
            errors.append(f"{prefix}: Prediction type is required")
        elif prediction_type is None:
            errors.append(f"{prefix}: Invalid prediction type: {selection.prediction_type}")

        # Prediction value
        value = selection.prediction_value
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{prefix}: Prediction value is required")
        elif len(value) > MAX_PREDICTION_VALUE_LENGTH:
            errors.append(
                f"{prefix}: Prediction value must not exceed {MAX_PREDICTION_VALUE_LENGTH} characters"
            )
        elif prediction_type is not None:
            grammar_error = validate_prediction_value(prediction_type, value)
            if grammar_error:
                errors.append(f"{prefix}: {grammar_error}")

        # Odds
        if selection.odds is None:
            errors.append(f"{prefix}: Odds are required")
        else:
            odds = _number(selection.odds)
            if odds is None or odds < MIN_ODDS:
                errors.append(f"{prefix}: Odds must be at least 1.0")
            elif odds > HIGH_SELECTION_ODDS:
                warnings.append(f"{prefix}: Odds are very high (>{HIGH_SELECTION_ODDS})")

        # Confidence
        if selection.confidence is None:
            warnings.append(f"{prefix}: Confidence not provided")
        else:
            confidence = _number(selection.confidence)
            if confidence is None or not 0 <= confidence <= 100:
                errors.append(f"{prefix}: Confidence must be between 0 and 100")

        # Reasoning
        reasoning = selection.reasoning
        if not isinstance(reasoning, str) or not reasoning.strip():
            warnings.append(f"{prefix}: Reasoning not provided")
        elif len(reasoning) > MAX_REASONING_LENGTH:
            warnings.append(f"{prefix}: Reasoning is very long (>{MAX_REASONING_LENGTH} characters)")
