"""
Adapter contracts.

Each external AI capability is one Protocol. Implementations raise
AdapterError with the upstream status and message verbatim; they never
return placeholder values on failure.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Protocol, runtime_checkable

from journal_core.models import AudioPayload

from .errors import AdapterError, SchemaValidationError
from .schema import GeneratedPersona, InsightAnalysis

__all__ = [
    "AdapterError",
    "SchemaValidationError",
    "VoicePreview",
    "ConversationContext",
    "Transcriber",
    "Analyst",
    "SpeechSynthesizer",
    "VoiceDesigner",
]


@dataclass(frozen=True)
class VoicePreview:
    """A designed, not yet permanent, voice."""

    preview_voice_id: str
    audio: AudioPayload


@dataclass
class ConversationContext:
    """Bounded context handed to the conversational model for one reply."""

    transcript: str
    emotions: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    history: List[Dict[str, str]] = field(default_factory=list)


@runtime_checkable
class Transcriber(Protocol):
    async def transcribe(self, audio: AudioPayload) -> str: ...


@runtime_checkable
class Analyst(Protocol):
    async def analyze(self, transcript: str, instruction_text: str, feedback_style: str) -> InsightAnalysis: ...

    async def converse(self, instruction_text: str, context: ConversationContext, user_text: str) -> str: ...

    async def generate_persona(self, description: str) -> GeneratedPersona: ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: str) -> AudioPayload: ...


@runtime_checkable
class VoiceDesigner(Protocol):
    async def design_voice(self, description: str, sample_text: str) -> VoicePreview: ...

    async def finalize_voice(self, preview_voice_id: str, name: str, description: str) -> str: ...
