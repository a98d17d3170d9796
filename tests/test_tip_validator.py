"""Tests for parsing and validating model output."""

import json
from types import SimpleNamespace

import pytest

from tipgen.llm.tip_validator import (
    CandidateTip,
    TipParseError,
    TipValidationError,
    TipValidator,
    ValidationResult,
    extract_json_object,
    parse_candidate_tip,
    validate_prediction_value,
)
from tipgen.models import PredictionType

WEEKEND_PICKS = {
    "title": "Weekend Picks",
    "description": "Arsenal at home against a leaky Chelsea defence",
    "confidence": 70,
    "reasoning": "Strong home form",
    "totalOdds": 1.8,
    "selections": [
        {
            "matchId": "M1",
            "predictionType": "match_result",
            "predictionValue": "home_win",
            "odds": 1.8,
            "confidence": 70,
            "reasoning": "Arsenal unbeaten at home in 8",
        }
    ],
}

MATCHES = {
    "M1": SimpleNamespace(id="M1", status="scheduled"),
    "M2": SimpleNamespace(id="M2", status="scheduled"),
    "M9": SimpleNamespace(id="M9", status="finished"),
}


async def lookup(match_id):
    return MATCHES.get(match_id)


def candidate(**overrides) -> CandidateTip:
    data = json.loads(json.dumps(WEEKEND_PICKS))
    selection_overrides = overrides.pop("selection", None)
    if selection_overrides:
        data["selections"][0].update(selection_overrides)
    data.update(overrides)
    return CandidateTip.from_dict(data)


@pytest.fixture
def validator(settings):
    return TipValidator(lookup, settings)


class TestParse:
    """JSON extraction from raw model text."""

    def test_plain_json(self):
        tip = parse_candidate_tip(json.dumps(WEEKEND_PICKS))
        assert tip.title == "Weekend Picks"
        assert tip.total_odds == 1.8
        assert tip.selections[0].match_id == "M1"
        assert tip.selections[0].prediction_value == "home_win"

    def test_fenced_with_prose(self):
        text = "Here is my analysis:\n```json\n" + json.dumps(WEEKEND_PICKS) + "\n```\nGood luck!"
        assert parse_candidate_tip(text).title == "Weekend Picks"

    def test_braces_inside_strings(self):
        text = 'Note {not json} then {"title": "Odd {braces}", "selections": []}'
        assert extract_json_object(text) == {"title": "Odd {braces}", "selections": []}

    def test_no_json(self):
        with pytest.raises(TipParseError) as exc_info:
            parse_candidate_tip("I cannot help with that.")
        assert exc_info.value.status == "parse_error"
        assert exc_info.value.preview == "I cannot help with that."

    def test_truncated_json(self):
        with pytest.raises(TipParseError):
            parse_candidate_tip('{"title": "Weekend Picks", "selections": [')

    def test_missing_required_fields(self):
        with pytest.raises(TipParseError, match="selections"):
            parse_candidate_tip('{"title": "Weekend Picks"}')

    def test_preview_truncated(self):
        with pytest.raises(TipParseError) as exc_info:
            parse_candidate_tip("x" * 2000)
        assert len(exc_info.value.preview) == 500

    def test_snake_case_keys(self):
        tip = CandidateTip.from_dict({
            "title": "T",
            "total_odds": 2.0,
            "selections": [{"match_id": "M1", "prediction_type": "btts", "prediction_value": "yes"}],
        })
        assert tip.total_odds == 2.0
        assert tip.selections[0].match_id == "M1"


class TestPredictionValueGrammar:
    """Per-market value grammar."""

    @pytest.mark.parametrize("prediction_type,value", [
        (PredictionType.MATCH_RESULT, "home_win"),
        (PredictionType.MATCH_RESULT, "draw"),
        (PredictionType.OVER_UNDER, "over_2.5"),
        (PredictionType.OVER_UNDER, "under_3"),
        (PredictionType.BOTH_TEAMS_TO_SCORE, "no"),
        (PredictionType.DOUBLE_CHANCE, "away_draw"),
        (PredictionType.HANDICAP, "home_-1.5"),
        (PredictionType.HANDICAP, "away_+2"),
        (PredictionType.CORRECT_SCORE, "2-1"),
        (PredictionType.FIRST_GOAL_SCORER, "Bukayo Saka"),
        (PredictionType.ANY_OTHER, "Over 9.5 corners"),
    ])
    def test_accepted(self, prediction_type, value):
        assert validate_prediction_value(prediction_type, value) is None

    @pytest.mark.parametrize("prediction_type,value", [
        (PredictionType.MATCH_RESULT, "sideways"),
        (PredictionType.OVER_UNDER, "over_2.55"),
        (PredictionType.OVER_UNDER, "over2.5"),
        (PredictionType.BOTH_TEAMS_TO_SCORE, "maybe"),
        (PredictionType.DOUBLE_CHANCE, "draw_draw"),
        (PredictionType.HANDICAP, "draw_-1"),
        (PredictionType.CORRECT_SCORE, "2:1"),
    ])
    def test_rejected(self, prediction_type, value):
        assert validate_prediction_value(prediction_type, value) is not None

    def test_case_and_whitespace_tolerated(self):
        assert validate_prediction_value(PredictionType.MATCH_RESULT, " Home_Win ") is None


class TestValidateTip:
    """Full validation pass."""

    @pytest.mark.asyncio
    async def test_weekend_picks_valid(self, validator):
        result = await validator.validate_tip(candidate(), ["M1", "M2"])
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_bad_grammar_is_error(self, validator):
        result = await validator.validate_tip(candidate(selection={"predictionValue": "sideways"}), ["M1"])
        assert not result.is_valid
        assert result.errors == [
            "Selection 1: Match result must be 'home_win', 'away_win', or 'draw'"
        ]

    @pytest.mark.asyncio
    async def test_unknown_prediction_type(self, validator):
        result = await validator.validate_tip(candidate(selection={"predictionType": "corners"}), ["M1"])
        assert result.errors == ["Selection 1: Invalid prediction type: corners"]

    @pytest.mark.asyncio
    async def test_match_outside_batch(self, validator):
        result = await validator.validate_tip(candidate(selection={"matchId": "M2"}), ["M1"])
        assert result.errors == ["Selection 1: Match ID M2 is not in the provided matches"]

    @pytest.mark.asyncio
    async def test_match_missing_from_store(self, validator):
        result = await validator.validate_tip(candidate(selection={"matchId": "M404"}), ["M404"])
        assert result.errors == ["Selection 1: Match not found"]

    @pytest.mark.asyncio
    async def test_match_not_scheduled(self, validator):
        result = await validator.validate_tip(candidate(selection={"matchId": "M9"}), ["M9"])
        assert result.errors == ["Selection 1: Match is not scheduled (status: finished)"]

    @pytest.mark.asyncio
    async def test_missing_fields(self, validator):
        tip = candidate(title="  ", selection={"matchId": None, "odds": None, "predictionValue": ""})
        result = await validator.validate_tip(tip, ["M1"])
        assert "Title is required" in result.errors
        assert "Selection 1: Match ID is required" in result.errors
        assert "Selection 1: Odds are required" in result.errors
        assert "Selection 1: Prediction value is required" in result.errors

    @pytest.mark.asyncio
    async def test_no_selections(self, validator):
        result = await validator.validate_tip(candidate(selections=[], totalOdds=None), ["M1"])
        assert result.errors == ["At least one selection is required"]

    @pytest.mark.asyncio
    async def test_too_many_selections(self, validator):
        selections = [
            {"matchId": "M1", "predictionType": "correct_score", "predictionValue": f"{n}-0",
             "odds": 8.0, "confidence": 20, "reasoning": "r"}
            for n in range(51)
        ]
        result = await validator.validate_tip(candidate(selections=selections, totalOdds=None), ["M1"])
        assert result.errors == ["Maximum 50 selections allowed"]

    @pytest.mark.asyncio
    async def test_out_of_range_numbers(self, validator):
        tip = candidate(confidence=140, totalOdds=0.5, selection={"odds": 0.9, "confidence": -1})
        result = await validator.validate_tip(tip, ["M1"])
        assert "Confidence score must be between 0 and 100" in result.errors
        assert "Total odds must be at least 1.0" in result.errors
        assert "Selection 1: Odds must be at least 1.0" in result.errors
        assert "Selection 1: Confidence must be between 0 and 100" in result.errors

    @pytest.mark.asyncio
    async def test_string_odds_rejected(self, validator):
        result = await validator.validate_tip(candidate(selection={"odds": "1.8"}), ["M1"])
        assert "Selection 1: Odds must be at least 1.0" in result.errors

    @pytest.mark.asyncio
    async def test_duplicates(self, validator):
        selection = dict(WEEKEND_PICKS["selections"][0])
        result = await validator.validate_tip(
            candidate(selections=[selection, dict(selection)], totalOdds=3.24), ["M1"]
        )
        assert result.errors == ["Duplicate selections found: M1-match_result-home_win"]

    @pytest.mark.asyncio
    async def test_case_variant_duplicates(self, validator):
        first = dict(WEEKEND_PICKS["selections"][0])
        second = dict(first, predictionType=" Match_Result", predictionValue="HOME_WIN ")
        result = await validator.validate_tip(
            candidate(selections=[first, second], totalOdds=3.24), ["M1"]
        )
        assert result.errors == ["Duplicate selections found: M1-match_result-home_win"]

    @pytest.mark.asyncio
    async def test_scorer_names_keep_case(self, validator):
        scorer = {"matchId": "M1", "predictionType": "first_goal_scorer", "predictionValue": "Saka",
                  "odds": 1.8, "confidence": 40, "reasoning": "On penalties"}
        result = await validator.validate_tip(
            candidate(selections=[scorer, dict(scorer, predictionValue="SAKA")], totalOdds=3.24), ["M1"]
        )
        assert result.errors == []


class TestWarnings:
    """Advisory findings never block."""

    @pytest.mark.asyncio
    async def test_total_odds_mismatch(self, validator):
        result = await validator.validate_tip(candidate(totalOdds=4.2), ["M1"])
        assert result.is_valid
        assert result.warnings == ["Total odds (4.2) doesn't match calculated odds (1.80)"]

    @pytest.mark.asyncio
    async def test_missing_confidence_and_reasoning(self, validator):
        tip = candidate(confidence=None, selection={"confidence": None, "reasoning": None})
        result = await validator.validate_tip(tip, ["M1"])
        assert result.is_valid
        assert result.warnings == [
            "Confidence score not provided",
            "Selection 1: Confidence not provided",
            "Selection 1: Reasoning not provided",
        ]

    @pytest.mark.asyncio
    async def test_very_high_odds(self, validator):
        result = await validator.validate_tip(candidate(totalOdds=150.0, selection={"odds": 150.0}), ["M1"])
        assert result.is_valid
        assert result.warnings == ["Selection 1: Odds are very high (>100)"]

    @pytest.mark.asyncio
    async def test_long_reasoning(self, validator):
        result = await validator.validate_tip(candidate(selection={"reasoning": "x" * 501}), ["M1"])
        assert result.is_valid
        assert result.warnings == ["Selection 1: Reasoning is very long (>500 characters)"]


class TestValidationError:
    def test_message_lists_errors(self):
        error = TipValidationError(ValidationResult(errors=["Title is required", "At least one selection is required"]))
        assert error.status == "validation_error"
        assert str(error) == (
            "Tip validation failed with 2 error(s): Title is required; At least one selection is required"
        )
