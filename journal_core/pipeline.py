"""
Insight pipeline: recording -> transcript -> structured insight -> spoken
reflection -> persisted JournalEntry.

Each call to process() owns one PipelineRun with explicit, monotonic
states:

    idle -> transcribing -> analyzing -> synthesizing -> complete
    any non-terminal state -> failed

Nothing is written before the final commit: on any failure the identity's
entries, audio blobs and entitlement count are exactly as they were.
A failed run is not resumed; retrying is a new call.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from adapters.base import AdapterError, Analyst, SchemaValidationError, SpeechSynthesizer, Transcriber
from adapters.schema import InsightAnalysis
from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter

from .entitlement import EntitlementGate
from .errors import (
    AnalysisFailed,
    AnalysisSchemaInvalid,
    EmptyRecording,
    ErrorHandler,
    InvalidTransition,
    JournalError,
    PipelineStage,
    SynthesisFailed,
    TranscriptionFailed,
)
from .models import AudioPayload, JournalEntry, utc_now
from .personas import PersonaRegistry, ResolvedPersona, VoiceSelection
from .store import EntryStore


logger = get_logger(Component.INSIGHT_PIPELINE)


class PipelineState(str, Enum):
    """Pipeline run states (monotonic progression)."""
    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    FAILED = "failed"


_NEXT = {
    PipelineState.IDLE: PipelineState.TRANSCRIBING,
    PipelineState.TRANSCRIBING: PipelineState.ANALYZING,
    PipelineState.ANALYZING: PipelineState.SYNTHESIZING,
    PipelineState.SYNTHESIZING: PipelineState.COMPLETE,
}


@dataclass
class PipelineRun:
    """One invocation of the insight pipeline."""

    run_id: str
    identity: str
    state: PipelineState = PipelineState.IDLE
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    failure: Optional[JournalError] = None
    entry_id: Optional[str] = None

    def transition_to(self, new_state: PipelineState) -> PipelineState:
        """
        Transition to the next state (monotonic).
        Returns the previous state.
        """
        old_state = self.state
        if self.is_terminal():
            raise InvalidTransition(f"run {self.run_id} already {old_state.value}")
        if new_state != PipelineState.FAILED and _NEXT.get(old_state) != new_state:
            raise InvalidTransition(f"cannot go from {old_state.value} to {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        if self.is_terminal():
            self.finished_at = utc_now()
        return old_state

    def is_terminal(self) -> bool:
        return self.state in (PipelineState.COMPLETE, PipelineState.FAILED)


class InsightPipeline:
    """Sequences transcription, analysis and synthesis into one JournalEntry."""

    def __init__(
        self,
        transcriber: Transcriber,
        analyst: Analyst,
        synthesizer: SpeechSynthesizer,
        registry: PersonaRegistry,
        store: EntryStore,
        gate: EntitlementGate,
        emitter: Optional[EventEmitter] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.transcriber = transcriber
        self.analyst = analyst
        self.synthesizer = synthesizer
        self.registry = registry
        self.store = store
        self.gate = gate
        self.emitter = emitter or EventEmitter(ObsComponent.INSIGHT_PIPELINE)
        self.now = now
        self.last_run: Optional[PipelineRun] = None

    def _advance(self, run: PipelineRun, new_state: PipelineState) -> None:
        old_state = run.transition_to(new_state)
        self.emitter.state_changed(run.identity, run.run_id, old_state.value, new_state.value)

    def _stage_done(self, run: PipelineRun, stage: PipelineStage, started: float) -> None:
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.debug("Stage completed", identity=run.identity, stage=stage.value, latency_ms=latency_ms)
        self.emitter.stage_latency(run.identity, run.run_id, stage.value, latency_ms)

    async def process(self, audio: AudioPayload, selection: VoiceSelection, identity: str) -> JournalEntry:
        """
        Run the full pipeline for one recording.

        Raises a JournalError subclass on failure. Callers check entitlement
        before calling; the pipeline itself never refuses a run.
        """
        run = PipelineRun(run_id=str(uuid.uuid4()), identity=identity)
        self.last_run = run
        log = logger.with_identity(identity)
        log.info("Pipeline started", run_id=run.run_id, audio_bytes=audio.size if audio else 0)

        try:
            resolved = self.registry.resolve(selection, identity)
            if audio is None or audio.is_empty:
                raise EmptyRecording("recording contains no audio")

            self._advance(run, PipelineState.TRANSCRIBING)
            transcript = await self._transcribe(run, audio)

            self._advance(run, PipelineState.ANALYZING)
            analysis = await self._analyze(run, transcript, resolved)

            self._advance(run, PipelineState.SYNTHESIZING)
            feedback_audio = await self._synthesize(run, analysis.feedback_text, resolved.voice_id)

            entry = self._commit(run, audio, transcript, analysis, feedback_audio, resolved)
            self._advance(run, PipelineState.COMPLETE)
        except JournalError as e:
            self._fail(run, e)
            raise
        except Exception:
            log.exception("Pipeline crashed", run_id=run.run_id, state=run.state.value)
            if not run.is_terminal():
                self._advance(run, PipelineState.FAILED)
            raise

        self.emitter.emit(
            "pipeline.completed",
            identity,
            correlation_id=run.run_id,
            entry_id=entry.id,
            voice_id=entry.voice_id,
            persona_id=entry.persona_id,
            persona_fallback=resolved.is_fallback,
        )
        log.info("Pipeline completed", run_id=run.run_id, entry_id=entry.id)
        return entry

    async def _transcribe(self, run: PipelineRun, audio: AudioPayload) -> str:
        started = time.monotonic()
        try:
            transcript = await self.transcriber.transcribe(audio)
        except AdapterError as e:
            raise TranscriptionFailed.from_adapter(e) from e
        self._stage_done(run, PipelineStage.TRANSCRIBING, started)

        if not transcript.strip():
            # Passed on to analysis unchanged
            logger.warning("Empty transcript", identity=run.identity, run_id=run.run_id)
        logger.with_identity(run.identity).debug_pii("Transcript received", transcript=transcript)
        return transcript

    async def _analyze(self, run: PipelineRun, transcript: str, resolved: ResolvedPersona) -> InsightAnalysis:
        started = time.monotonic()
        try:
            analysis = await self.analyst.analyze(transcript, resolved.instruction_text, resolved.feedback_style)
        except SchemaValidationError as e:
            raise AnalysisSchemaInvalid.from_adapter(e) from e
        except AdapterError as e:
            raise AnalysisFailed.from_adapter(e) from e
        self._stage_done(run, PipelineStage.ANALYZING, started)
        return analysis

    async def _synthesize(self, run: PipelineRun, text: str, voice_id: str) -> AudioPayload:
        started = time.monotonic()
        try:
            audio = await self.synthesizer.synthesize(text, voice_id)
        except AdapterError as e:
            raise SynthesisFailed.from_adapter(e) from e
        self._stage_done(run, PipelineStage.SYNTHESIZING, started)
        return audio

    def _commit(
        self,
        run: PipelineRun,
        audio: AudioPayload,
        transcript: str,
        analysis: InsightAnalysis,
        feedback_audio: AudioPayload,
        resolved: ResolvedPersona,
    ) -> JournalEntry:
        """The single write point: audio blobs, the entry, then the counter."""
        refs = []
        try:
            refs.append(self.store.save_audio(run.identity, audio))
            refs.append(self.store.save_audio(run.identity, feedback_audio))
            original_ref, feedback_ref = refs

            entry = JournalEntry(
                id=str(uuid.uuid4()),
                created_at=self.now(),
                transcript=transcript,
                summary=analysis.summary,
                emotions=analysis.domain_emotions(),
                topics=list(analysis.topics),
                psych_markers=analysis.domain_markers(),
                feedback_text=analysis.feedback_text,
                feedback_audio_ref=feedback_ref,
                original_audio_ref=original_ref,
                voice_id=resolved.voice_id,
                persona_id=resolved.persona_id,
                persona_name=resolved.persona_name,
                conversation=[],
            )
            self.store.add_entry(run.identity, entry)
        except Exception:
            # Blobs without a document are unreachable
            self.store.delete_audio(*refs)
            raise
        self.gate.record_creation(run.identity)
        run.entry_id = entry.id
        return entry

    def _fail(self, run: PipelineRun, error: JournalError) -> None:
        run.failure = error
        if not run.is_terminal():
            self._advance(run, PipelineState.FAILED)

        described = ErrorHandler.describe(error)
        self.emitter.workflow_failed(
            run.identity,
            run.run_id,
            kind=described["kind"],
            stage=described["stage"],
            category=described["category"],
            detail=described["detail"],
        )
        logger.warning(
            "Pipeline failed",
            identity=run.identity,
            run_id=run.run_id,
            kind=described["kind"],
            stage=described["stage"],
            status=described["status"],
            category=described["category"],
        )
