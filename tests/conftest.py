"""
Shared fixtures: in-memory store, fixed clock and fakes for every adapter.

The fakes run model output through the real schema parsers, so analysis
validation behaves exactly as it does against the live service.
"""
import copy
from datetime import datetime, timedelta, timezone

import pytest

from adapters.base import AdapterError, VoicePreview
from adapters.schema import parse_analysis, parse_persona, parse_reply
from journal_core.conversation import ConversationOrchestrator
from journal_core.entitlement import EntitlementGate
from journal_core.models import AudioPayload, ConversationTurn, Emotion, JournalEntry, TurnRole
from journal_core.personas import PersonaRegistry
from journal_core.pipeline import InsightPipeline
from journal_core.store import EntryStore, MemoryBackend
from observability.event_store import EventStore
from observability.events import Component as ObsComponent, EventEmitter


SCOTT_VOICE = "keLVje3aBMuRpxuu0bqO"
OLD_AMERICAN_VOICE = "hUCL5yChll0oZqA0wCKH"

VALID_ANALYSIS = {
    "summary": "Work has felt overwhelming and there is little time to recover.",
    "emotions": [
        {"name": "stress", "score": 0.8},
        {"name": "frustration", "score": 0.5},
        {"name": "hope", "score": 0.2},
    ],
    "topics": ["work", "workload"],
    "psychMarkers": [
        {"name": "rumination", "level": "medium", "description": "Replaying the workday at night."},
    ],
    "feedbackText": "That sounds like a heavy week. Noticing it is already a first step.",
}

VALID_PERSONA = {
    "name": "Coach Maya",
    "personality": "A bright, fast-talking running coach in her forties",
    "instructionText": "You are Coach Maya. Read the journal entry and respond like a coach.",
    "feedbackStyle": "Short, punchy encouragement with one concrete next step",
}


CREATED = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_entry(entry_id="e1", turns=0, voice_id=SCOTT_VOICE):
    conversation = [
        ConversationTurn(role=TurnRole.ASSISTANT, text=f"turn {i}", timestamp=CREATED)
        for i in range(turns)
    ]
    return JournalEntry(
        id=entry_id,
        created_at=CREATED,
        transcript="I feel overwhelmed at work",
        summary="Work is a lot.",
        emotions=[Emotion("stress", 0.8), Emotion("stress", 0.4)],
        topics=["work", "sleep"],
        psych_markers=[],
        feedback_text="That sounds heavy.",
        feedback_audio_ref="audio:guest/a.mp3",
        original_audio_ref="audio:guest/b.webm",
        voice_id=voice_id,
        conversation=conversation,
    )


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeTranscriber:
    def __init__(self, text: str = "I feel overwhelmed at work"):
        self.texts = [text]
        self.error = None
        self.calls = []

    async def transcribe(self, audio: AudioPayload) -> str:
        self.calls.append(audio)
        if self.error:
            raise self.error
        if len(self.texts) > 1:
            return self.texts.pop(0)
        return self.texts[0]


class FakeAnalyst:
    def __init__(self):
        self.analysis = copy.deepcopy(VALID_ANALYSIS)
        self.persona = copy.deepcopy(VALID_PERSONA)
        self.reply = "I hear you. What would make tomorrow a little lighter?"
        self.analyze_error = None
        self.converse_error = None
        self.persona_error = None
        self.analyze_calls = []
        self.converse_calls = []
        self.persona_calls = []

    async def analyze(self, transcript, instruction_text, feedback_style):
        self.analyze_calls.append((transcript, instruction_text, feedback_style))
        if self.analyze_error:
            raise self.analyze_error
        return parse_analysis(self.analysis, provider="fake")

    async def converse(self, instruction_text, context, user_text):
        self.converse_calls.append((instruction_text, context, user_text))
        if self.converse_error:
            raise self.converse_error
        return parse_reply(self.reply, provider="fake")

    async def generate_persona(self, description):
        self.persona_calls.append(description)
        if self.persona_error:
            raise self.persona_error
        return parse_persona(self.persona, provider="fake")


class FakeSynthesizer:
    def __init__(self):
        self.error = None
        self.calls = []

    async def synthesize(self, text, voice_id):
        self.calls.append((text, voice_id))
        if self.error:
            raise self.error
        return AudioPayload(data=b"ID3" + text.encode("utf-8")[:16], media_type="audio/mpeg")


class FakeVoiceDesigner:
    def __init__(self):
        self.design_error = None
        self.finalize_errors = []
        self.design_calls = []
        self.finalize_calls = []
        self.permanent_voice_id = "voice-permanent-1"

    async def design_voice(self, description, sample_text):
        self.design_calls.append((description, sample_text))
        if self.design_error:
            raise self.design_error
        return VoicePreview(
            preview_voice_id="preview-voice-1",
            audio=AudioPayload(data=b"preview-audio", media_type="audio/mpeg"),
        )

    async def finalize_voice(self, preview_voice_id, name, description):
        self.finalize_calls.append((preview_voice_id, name, description))
        if self.finalize_errors:
            raise self.finalize_errors.pop(0)
        return self.permanent_voice_id


class FailingDocumentBackend(MemoryBackend):
    """Memory backend whose document writes fail for keys with a given prefix."""

    def __init__(self):
        super().__init__()
        self.fail_prefix = None

    def write(self, key, value):
        if self.fail_prefix and key.startswith(self.fail_prefix):
            raise OSError(f"disk full writing {key}")
        super().write(key, value)


def upstream_error(status=503, message="service unavailable", provider="fake"):
    return AdapterError(provider, message, status=status)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return EntryStore(backend)


@pytest.fixture
def registry(store):
    return PersonaRegistry(store)


@pytest.fixture
def event_store():
    return EventStore()


@pytest.fixture
def gate(store, clock, event_store):
    return EntitlementGate(
        store,
        limit=3,
        now=clock,
        emitter=EventEmitter(ObsComponent.ENTITLEMENT, store=event_store),
    )


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def analyst():
    return FakeAnalyst()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def designer():
    return FakeVoiceDesigner()


@pytest.fixture
def pipeline(transcriber, analyst, synthesizer, registry, store, gate, event_store, clock):
    return InsightPipeline(
        transcriber,
        analyst,
        synthesizer,
        registry,
        store,
        gate,
        emitter=EventEmitter(ObsComponent.INSIGHT_PIPELINE, store=event_store),
        now=clock,
    )


@pytest.fixture
def orchestrator(transcriber, analyst, synthesizer, registry, store, event_store, clock):
    return ConversationOrchestrator(
        transcriber,
        analyst,
        synthesizer,
        registry,
        store,
        emitter=EventEmitter(ObsComponent.CONVERSATION, store=event_store),
        now=clock,
    )


@pytest.fixture
def audio():
    return AudioPayload(data=b"\x1aE\xdf\xa3webm-bytes", media_type="audio/webm")
