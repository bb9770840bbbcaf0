"""
Spoken follow-up conversation anchored to a journal entry.

A round is: user audio -> transcript -> persona reply -> reply audio,
appended as a user turn followed by an assistant turn. The entry is
persisted by whole replacement only after the reply audio exists, so a
failed round leaves the stored conversation untouched.

Entries recorded before conversations existed have no turns; the first
round seeds them with the entry's own feedback as the opening assistant
turn.
"""
import time
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from adapters.base import (
    AdapterError,
    Analyst,
    ConversationContext,
    SchemaValidationError,
    SpeechSynthesizer,
    Transcriber,
)
from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter

from .errors import (
    AnalysisFailed,
    AnalysisSchemaInvalid,
    EmptyRecording,
    ErrorHandler,
    JournalError,
    PipelineStage,
    RoundInFlight,
    SynthesisFailed,
    TranscriptionFailed,
)
from .models import AudioPayload, ConversationTurn, JournalEntry, TurnRole, utc_now
from .personas import PersonaRegistry
from .store import EntryStore, StoreError


logger = get_logger(Component.CONVERSATION)


def build_history(turns: List[ConversationTurn]) -> List[Dict[str, str]]:
    return [{"role": turn.role.value, "content": turn.text} for turn in turns]


def build_context(entry: JournalEntry) -> ConversationContext:
    """Context for the next reply: the entry itself plus every prior turn."""
    return ConversationContext(
        transcript=entry.transcript,
        emotions=[e.name for e in entry.emotions],
        topics=list(entry.topics),
        history=build_history(entry.conversation),
    )


class ConversationOrchestrator:
    def __init__(
        self,
        transcriber: Transcriber,
        analyst: Analyst,
        synthesizer: SpeechSynthesizer,
        registry: PersonaRegistry,
        store: EntryStore,
        emitter: Optional[EventEmitter] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.transcriber = transcriber
        self.analyst = analyst
        self.synthesizer = synthesizer
        self.registry = registry
        self.store = store
        self.emitter = emitter or EventEmitter(ObsComponent.CONVERSATION)
        self.now = now
        self._in_flight: Set[Tuple[str, str]] = set()

    def seed_conversation(self, identity: str, entry: JournalEntry) -> JournalEntry:
        """
        Give an entry its opening assistant turn (the original feedback).

        Idempotent: an entry that already has turns is returned unchanged.
        The seeded entry is persisted immediately.
        """
        if entry.conversation:
            return entry

        seeded = entry.with_conversation([
            ConversationTurn(
                role=TurnRole.ASSISTANT,
                text=entry.feedback_text,
                timestamp=entry.created_at,
                audio_ref=entry.feedback_audio_ref or None,
            )
        ])
        self.store.replace_entry(identity, seeded)
        self.emitter.emit("conversation.seeded", identity, correlation_id=entry.id, entry_id=entry.id)
        logger.debug("Conversation seeded", identity=identity, entry_id=entry.id)
        return seeded

    def is_in_flight(self, identity: str, entry_id: str) -> bool:
        return (identity, entry_id) in self._in_flight

    async def append_turn(self, identity: str, entry: JournalEntry, audio_reply: AudioPayload) -> JournalEntry:
        """
        Run one conversation round and return the updated, persisted entry.

        Raises RoundInFlight when a round for the same entry is still running.
        """
        key = (identity, entry.id)
        if key in self._in_flight:
            raise RoundInFlight(f"a round for entry {entry.id} is already running")

        self._in_flight.add(key)
        try:
            return await self._round(identity, entry, audio_reply)
        finally:
            self._in_flight.discard(key)

    async def _round(self, identity: str, entry: JournalEntry, audio_reply: AudioPayload) -> JournalEntry:
        round_id = str(uuid.uuid4())
        log = logger.with_identity(identity)

        try:
            if audio_reply is None or audio_reply.is_empty:
                raise EmptyRecording("reply recording contains no audio")

            # Always continue from the stored copy; the caller's may be stale
            stored = self.store.get_entry(identity, entry.id)
            if stored is None:
                raise StoreError(f"entry {entry.id} not found for identity")
            current = self.seed_conversation(identity, stored)

            started = time.monotonic()
            try:
                user_text = await self.transcriber.transcribe(audio_reply)
            except AdapterError as e:
                raise TranscriptionFailed.from_adapter(e) from e
            user_at = self.now()
            self._stage_done(identity, round_id, PipelineStage.TRANSCRIBING, started)
            log.debug_pii("User turn transcribed", user_text=user_text)

            context = build_context(current)
            resolved = self.registry.resolve_for_entry(identity, current)

            started = time.monotonic()
            try:
                reply = await self.analyst.converse(resolved.instruction_text, context, user_text)
            except SchemaValidationError as e:
                raise AnalysisSchemaInvalid.from_adapter(e) from e
            except AdapterError as e:
                raise AnalysisFailed.from_adapter(e) from e
            if not reply or not reply.strip():
                raise AnalysisSchemaInvalid("empty conversational reply")
            self._stage_done(identity, round_id, PipelineStage.ANALYZING, started)

            started = time.monotonic()
            try:
                reply_audio = await self.synthesizer.synthesize(reply, current.voice_id)
            except AdapterError as e:
                raise SynthesisFailed.from_adapter(e) from e
            self._stage_done(identity, round_id, PipelineStage.SYNTHESIZING, started)
        except JournalError as e:
            self._fail(identity, entry.id, round_id, e)
            raise

        refs = []
        try:
            refs.append(self.store.save_audio(identity, audio_reply))
            refs.append(self.store.save_audio(identity, reply_audio))
            user_ref, reply_ref = refs
            turns = list(current.conversation) + [
                ConversationTurn(role=TurnRole.USER, text=user_text, timestamp=user_at, audio_ref=user_ref),
                ConversationTurn(role=TurnRole.ASSISTANT, text=reply.strip(), timestamp=self.now(), audio_ref=reply_ref),
            ]
            updated = current.with_conversation(turns)
            self.store.replace_entry(identity, updated)
        except Exception:
            self.store.delete_audio(*refs)
            raise

        self.emitter.emit(
            "conversation.turn_appended",
            identity,
            correlation_id=round_id,
            entry_id=entry.id,
            turns=len(turns),
            persona_fallback=resolved.is_fallback,
        )
        log.info("Conversation round completed", entry_id=entry.id, turns=len(turns))
        return updated

    def _stage_done(self, identity: str, round_id: str, stage: PipelineStage, started: float) -> None:
        latency_ms = int((time.monotonic() - started) * 1000)
        self.emitter.stage_latency(identity, round_id, stage.value, latency_ms, prefix="conversation")

    def _fail(self, identity: str, entry_id: str, round_id: str, error: JournalError) -> None:
        described = ErrorHandler.describe(error)
        self.emitter.workflow_failed(
            identity,
            round_id,
            kind=described["kind"],
            stage=described["stage"],
            category=described["category"],
            detail=described["detail"],
            prefix="conversation",
        )
        logger.warning(
            "Conversation round failed",
            identity=identity,
            entry_id=entry_id,
            kind=described["kind"],
            status=described["status"],
        )
