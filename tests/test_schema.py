"""
Model output validation: analysis, persona and reply schemas.
"""
import copy
import json

import pytest

from adapters.errors import SchemaValidationError
from adapters.schema import parse_analysis, parse_persona, parse_reply
from journal_core.models import MarkerLevel

from conftest import VALID_ANALYSIS, VALID_PERSONA


def analysis(**changes):
    data = copy.deepcopy(VALID_ANALYSIS)
    data.update(changes)
    return data


class TestAnalysis:
    def test_valid_dict(self):
        """Test parsing a valid analysis dict."""
        result = parse_analysis(VALID_ANALYSIS)

        assert result.topics == ["work", "workload"]
        assert result.domain_markers()[0].level == MarkerLevel.MEDIUM
        assert result.feedback_text.startswith("That sounds")

    def test_valid_json_string(self):
        """Test parsing a valid analysis JSON string."""
        result = parse_analysis(json.dumps(VALID_ANALYSIS))
        assert len(result.emotions) == 3

    def test_integer_score_accepted(self):
        """Test that integer scores are accepted."""
        result = parse_analysis(analysis(emotions=[{"name": "calm", "score": 1}, {"name": "joy", "score": 0}]))
        assert [e.score for e in result.domain_emotions()] == [1.0, 0.0]

    @pytest.mark.parametrize("changes", [
        {"emotions": [{"name": "stress", "score": 0.8}]},
        {"emotions": [{"name": f"e{i}", "score": 0.1} for i in range(5)]},
        {"emotions": [{"name": "stress", "score": 1.3}, {"name": "calm", "score": 0.1}]},
        {"emotions": [{"name": "stress", "score": "0.8"}, {"name": "calm", "score": 0.1}]},
        {"topics": ["work"]},
        {"topics": ["a", "b", "c", "d"]},
        {"psychMarkers": []},
        {"psychMarkers": [{"name": "x", "level": "extreme", "description": "d"}]},
        {"summary": ""},
        {"feedbackText": 42},
    ])
    def test_invalid_rejected(self, changes):
        """Test that invalid analyses are rejected."""
        with pytest.raises(SchemaValidationError):
            parse_analysis(analysis(**changes))

    def test_missing_field(self):
        """Test that a missing field is rejected."""
        data = copy.deepcopy(VALID_ANALYSIS)
        del data["feedbackText"]

        with pytest.raises(SchemaValidationError) as exc_info:
            parse_analysis(data, provider="openai")

        assert exc_info.value.provider == "openai"
        assert "feedbackText" in exc_info.value.message

    def test_not_json(self):
        """Test that non-JSON content is rejected."""
        with pytest.raises(SchemaValidationError, match="not valid JSON"):
            parse_analysis("Here is your analysis: ...")

    def test_json_array(self):
        """Test that a JSON array is rejected."""
        with pytest.raises(SchemaValidationError, match="not an object"):
            parse_analysis("[1, 2]")


class TestPersona:
    def test_valid(self):
        """Test parsing a valid generated persona."""
        persona = parse_persona(VALID_PERSONA)

        assert persona.name == "Coach Maya"
        assert persona.feedback_style.startswith("Short")

    def test_system_prompt_alias(self):
        """Test the systemPrompt alias for instruction text."""
        data = dict(VALID_PERSONA)
        data["systemPrompt"] = data.pop("instructionText")

        assert parse_persona(data).instruction_text == VALID_PERSONA["instructionText"]

    def test_blank_name(self):
        """Test that a blank persona name is rejected."""
        with pytest.raises(SchemaValidationError):
            parse_persona(dict(VALID_PERSONA, name=""))


class TestReply:
    def test_stripped(self):
        """Test that replies are stripped."""
        assert parse_reply("  Hello.\n") == "Hello."

    @pytest.mark.parametrize("content", ["", "   ", None, 12])
    def test_empty_or_not_text(self, content):
        """Test that empty or non-text replies are rejected."""
        with pytest.raises(SchemaValidationError):
            parse_reply(content)
