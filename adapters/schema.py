"""
Response schemas for language-model output.

Model output is dynamically shaped JSON; it is validated here, at the
adapter boundary, and rejected as a whole when it does not match. Values
are never coerced: a score of "0.8" (string) or 1.3 is an error, as is a
missing field or an out-of-range list length.
"""
from __future__ import annotations

import json
from typing import Any, List, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictFloat, StrictStr, ValidationError

from journal_core.models import Emotion, MarkerLevel, PsychMarker

from .errors import SchemaValidationError


class EmotionModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: StrictStr = Field(min_length=1)
    score: StrictFloat = Field(ge=0.0, le=1.0)


class PsychMarkerModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: StrictStr = Field(min_length=1)
    level: Literal["low", "medium", "high"]
    description: StrictStr


class InsightAnalysis(BaseModel):
    """Structured insight for one transcript."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    summary: StrictStr = Field(min_length=1)
    emotions: List[EmotionModel] = Field(min_length=2, max_length=4)
    topics: List[StrictStr] = Field(min_length=2, max_length=3)
    psych_markers: List[PsychMarkerModel] = Field(alias="psychMarkers", min_length=1, max_length=3)
    feedback_text: StrictStr = Field(alias="feedbackText", min_length=1)

    def domain_emotions(self) -> List[Emotion]:
        return [Emotion(name=e.name, score=float(e.score)) for e in self.emotions]

    def domain_markers(self) -> List[PsychMarker]:
        return [
            PsychMarker(name=m.name, level=MarkerLevel(m.level), description=m.description)
            for m in self.psych_markers
        ]


class GeneratedPersona(BaseModel):
    """Persona fields produced from a free-text description."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: StrictStr = Field(min_length=1)
    personality: StrictStr = Field(min_length=1)
    instruction_text: StrictStr = Field(
        validation_alias=AliasChoices("instructionText", "systemPrompt", "instruction_text"),
        min_length=1,
    )
    feedback_style: StrictStr = Field(
        validation_alias=AliasChoices("feedbackStyle", "feedback_style"),
        min_length=1,
    )


def _load_json_object(content: Union[str, dict], provider: str) -> dict:
    if isinstance(content, dict):
        return content
    try:
        parsed = json.loads(content)
    except (TypeError, json.JSONDecodeError) as e:
        raise SchemaValidationError(provider, f"response is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise SchemaValidationError(provider, "response JSON is not an object")
    return parsed


def _summarize(error: ValidationError) -> str:
    parts = []
    for issue in error.errors():
        loc = ".".join(str(p) for p in issue.get("loc", ()))
        parts.append(f"{loc or '<root>'}: {issue.get('msg')}")
    return "; ".join(parts)


def parse_analysis(content: Union[str, dict], provider: str = "analysis") -> InsightAnalysis:
    """Parse and validate an analysis response, raising SchemaValidationError."""
    data = _load_json_object(content, provider)
    try:
        return InsightAnalysis.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(provider, f"analysis schema invalid: {_summarize(e)}") from e


def parse_persona(content: Union[str, dict], provider: str = "persona_generation") -> GeneratedPersona:
    """Parse and validate a generated persona, raising SchemaValidationError."""
    data = _load_json_object(content, provider)
    try:
        return GeneratedPersona.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(provider, f"persona schema invalid: {_summarize(e)}") from e


def parse_reply(content: Any, provider: str = "conversation") -> str:
    """A conversational reply must be a non-empty string."""
    if not isinstance(content, str) or not content.strip():
        raise SchemaValidationError(provider, "empty conversational reply")
    return content.strip()
