"""
Failure taxonomy for the insight pipeline, persona workflow and conversation.

Every stage failure is raised as a JournalError subclass carrying the stage
it happened in, the upstream status (when an external service answered) and
the upstream message verbatim. Upstream statuses are additionally mapped to
stable categories so callers can pick a user message without parsing text.
"""
import re
from enum import Enum
from typing import Any, Dict, Optional


class FailureKind:
    """Stable failure kinds."""

    EMPTY_RECORDING = "EmptyRecording"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    ANALYSIS_SCHEMA_INVALID = "AnalysisSchemaInvalid"
    ANALYSIS_FAILED = "AnalysisFailed"
    SYNTHESIS_FAILED = "SynthesisFailed"
    EMPTY_PROMPT = "EmptyPrompt"
    PERSONA_GENERATION_FAILED = "PersonaGenerationFailed"
    VOICE_GENERATION_FAILED = "VoiceGenerationFailed"
    VOICE_FINALIZATION_FAILED = "VoiceFinalizationFailed"
    ENTITLEMENT_EXCEEDED = "EntitlementExceeded"
    ROUND_IN_FLIGHT = "RoundInFlight"


class PipelineStage(str, Enum):
    """Where a failure happened."""

    PRE_CHECK = "pre_check"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    PERSONA_GENERATION = "persona_generation"
    VOICE_DESIGN = "voice_design"
    VOICE_FINALIZATION = "voice_finalization"
    ENTITLEMENT = "entitlement"


class UpstreamCategory:
    """Stable categories for upstream (external service) failures."""

    NONE = "none"  # local failure, no upstream involved

    AUTH_FAILED = "upstream.auth_failed"
    BAD_REQUEST = "upstream.bad_request"
    NETWORK_ERROR = "upstream.network_error"
    RATE_LIMITED = "upstream.rate_limited"
    QUOTA_EXCEEDED = "upstream.quota_exceeded"
    CAPACITY_LIMITED = "upstream.capacity_limited"
    INVALID_RESPONSE = "upstream.invalid_response"
    UNKNOWN_ERROR = "upstream.unknown_error"


class InvalidTransition(RuntimeError):
    """A workflow operation was called from a state that does not allow it."""


class JournalError(Exception):
    """Base class for typed workflow failures."""

    kind: str = "JournalError"
    default_stage: PipelineStage = PipelineStage.PRE_CHECK
    upstream: bool = False

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[PipelineStage] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.status = status

    @classmethod
    def from_adapter(cls, error: Exception, *, stage: Optional[PipelineStage] = None) -> "JournalError":
        """Wrap an adapter failure, keeping its status and message verbatim."""
        return cls(
            getattr(error, "message", None) or str(error),
            stage=stage,
            status=getattr(error, "status", None),
        )

    @property
    def category(self) -> str:
        if not self.upstream:
            return UpstreamCategory.NONE
        return ErrorHandler.classify_upstream(self.status, self.message)

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.kind} at {self.stage.value}: {self.status} {self.message}"
        return f"{self.kind} at {self.stage.value}: {self.message}"


class EmptyRecording(JournalError):
    kind = FailureKind.EMPTY_RECORDING
    default_stage = PipelineStage.PRE_CHECK


class TranscriptionFailed(JournalError):
    kind = FailureKind.TRANSCRIPTION_FAILED
    default_stage = PipelineStage.TRANSCRIBING
    upstream = True


class AnalysisSchemaInvalid(JournalError):
    kind = FailureKind.ANALYSIS_SCHEMA_INVALID
    default_stage = PipelineStage.ANALYZING


class AnalysisFailed(JournalError):
    kind = FailureKind.ANALYSIS_FAILED
    default_stage = PipelineStage.ANALYZING
    upstream = True


class SynthesisFailed(JournalError):
    kind = FailureKind.SYNTHESIS_FAILED
    default_stage = PipelineStage.SYNTHESIZING
    upstream = True


class EmptyPrompt(JournalError):
    kind = FailureKind.EMPTY_PROMPT
    default_stage = PipelineStage.PRE_CHECK


class PersonaGenerationFailed(JournalError):
    kind = FailureKind.PERSONA_GENERATION_FAILED
    default_stage = PipelineStage.PERSONA_GENERATION
    upstream = True


class VoiceGenerationFailed(JournalError):
    kind = FailureKind.VOICE_GENERATION_FAILED
    default_stage = PipelineStage.VOICE_DESIGN
    upstream = True


class VoiceFinalizationFailed(JournalError):
    kind = FailureKind.VOICE_FINALIZATION_FAILED
    default_stage = PipelineStage.VOICE_FINALIZATION
    upstream = True


class EntitlementExceeded(JournalError):
    kind = FailureKind.ENTITLEMENT_EXCEEDED
    default_stage = PipelineStage.ENTITLEMENT


class RoundInFlight(JournalError):
    kind = FailureKind.ROUND_IN_FLIGHT
    default_stage = PipelineStage.PRE_CHECK


_SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9_\-]{6,}|xi-api-key\S*|bearer\s+\S+)", re.IGNORECASE)


class ErrorHandler:
    """Classification, redaction and user messages for JournalError."""

    @staticmethod
    def classify_upstream(status: Optional[int], message: Optional[str] = None) -> str:
        """
        Classify an upstream failure into a stable category.
        Status codes win; the message is only consulted without one.
        """
        text = (message or "").lower()

        if status in (401, 403):
            return UpstreamCategory.AUTH_FAILED
        if status == 429:
            if "quota" in text:
                return UpstreamCategory.QUOTA_EXCEEDED
            return UpstreamCategory.RATE_LIMITED
        if status == 402:
            return UpstreamCategory.QUOTA_EXCEEDED
        if status in (400, 404, 413, 415, 422):
            return UpstreamCategory.BAD_REQUEST
        if status in (500, 502, 503, 504):
            return UpstreamCategory.CAPACITY_LIMITED
        if status is not None and 200 <= status < 300:
            return UpstreamCategory.INVALID_RESPONSE

        if status is None:
            if "timeout" in text or "timed out" in text or "connection" in text or "network" in text:
                return UpstreamCategory.NETWORK_ERROR
            if "quota" in text:
                return UpstreamCategory.QUOTA_EXCEEDED

        return UpstreamCategory.UNKNOWN_ERROR

    @staticmethod
    def redact(detail: str) -> str:
        """Strip anything that looks like a credential from a detail string."""
        return _SECRET_PATTERN.sub("[redacted]", detail)

    @staticmethod
    def describe(error: JournalError) -> Dict[str, Any]:
        """Serializable, redacted description of a failure for events and APIs."""
        return {
            "kind": error.kind,
            "stage": error.stage.value,
            "status": error.status,
            "category": error.category,
            "detail": ErrorHandler.redact(error.message),
        }

    @staticmethod
    def get_user_message(kind: str) -> str:
        """Short, non-technical message for a failure kind."""
        messages = {
            FailureKind.EMPTY_RECORDING: "We didn't catch any audio. Please record for at least a second.",
            FailureKind.TRANSCRIPTION_FAILED: "We couldn't make out your recording. Please try again.",
            FailureKind.ANALYSIS_SCHEMA_INVALID: "We couldn't put your reflection together this time. Please try again.",
            FailureKind.ANALYSIS_FAILED: "We couldn't reflect on your entry right now. Please try again.",
            FailureKind.SYNTHESIS_FAILED: "We couldn't voice the reflection right now. Please try again.",
            FailureKind.EMPTY_PROMPT: "Please describe the companion you'd like to create.",
            FailureKind.PERSONA_GENERATION_FAILED: "We couldn't create that personality. Try rephrasing it.",
            FailureKind.VOICE_GENERATION_FAILED: "We couldn't create a voice for that personality. Please try again.",
            FailureKind.VOICE_FINALIZATION_FAILED: "We couldn't save that voice yet. Please confirm again.",
            FailureKind.ENTITLEMENT_EXCEEDED: "You've used all your free entries. Upgrade to keep journaling.",
            FailureKind.ROUND_IN_FLIGHT: "Still replying to your last message.",
        }
        return messages.get(kind, "Something went wrong. Please try again.")
