"""
Journal domain records.

Plain dataclasses with explicit to_dict / from_dict so the persisted layout
stays stable (camelCase keys, ISO timestamps) regardless of attribute names.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


UNBOUNDED = float("inf")

DEFAULT_MEDIA_TYPE = "audio/webm"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class MarkerLevel(str, Enum):
    """Psychological marker severity (display ordering only)."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class AudioPayload:
    """Binary audio plus its declared media type."""

    data: bytes
    media_type: str = DEFAULT_MEDIA_TYPE

    @property
    def is_empty(self) -> bool:
        return len(self.data) == 0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Emotion:
    name: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "score": self.score}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Emotion":
        return cls(name=data["name"], score=float(data["score"]))


@dataclass
class PsychMarker:
    name: str
    level: MarkerLevel
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "level": self.level.value, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PsychMarker":
        return cls(
            name=data["name"],
            level=MarkerLevel(data["level"]),
            description=data.get("description", ""),
        )


@dataclass
class ConversationTurn:
    role: TurnRole
    text: str
    timestamp: datetime
    audio_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "role": self.role.value,
            "text": self.text,
            "timestamp": _format_ts(self.timestamp),
        }
        if self.audio_ref:
            data["audioUrl"] = self.audio_ref
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationTurn":
        return cls(
            role=TurnRole(data["role"]),
            text=data.get("text", ""),
            timestamp=_parse_ts(data["timestamp"]),
            audio_ref=data.get("audioUrl"),
        )


@dataclass
class JournalEntry:
    """One completed voice-journal record, owned by a single identity."""

    id: str
    created_at: datetime
    transcript: str
    summary: str
    emotions: List[Emotion]
    topics: List[str]
    psych_markers: List[PsychMarker]
    feedback_text: str
    feedback_audio_ref: str
    original_audio_ref: str
    voice_id: str
    persona_id: Optional[str] = None
    persona_name: Optional[str] = None
    conversation: List[ConversationTurn] = field(default_factory=list)

    def with_conversation(self, turns: List[ConversationTurn]) -> "JournalEntry":
        """Copy of this entry with a new turn sequence (the entry itself is not touched)."""
        return replace(self, conversation=list(turns))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": _format_ts(self.created_at),
            "transcript": self.transcript,
            "summary": self.summary,
            "emotions": [e.to_dict() for e in self.emotions],
            "topics": list(self.topics),
            "psychMarkers": [m.to_dict() for m in self.psych_markers],
            "feedbackText": self.feedback_text,
            "feedbackAudioUrl": self.feedback_audio_ref,
            "originalAudioUrl": self.original_audio_ref,
            "voiceId": self.voice_id,
            "personaId": self.persona_id,
            "personaName": self.persona_name,
            "conversation": [t.to_dict() for t in self.conversation],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalEntry":
        # Legacy records have no "conversation" key at all
        return cls(
            id=data["id"],
            created_at=_parse_ts(data["createdAt"]),
            transcript=data.get("transcript", ""),
            summary=data.get("summary", ""),
            emotions=[Emotion.from_dict(e) for e in data.get("emotions", [])],
            topics=list(data.get("topics", [])),
            psych_markers=[PsychMarker.from_dict(m) for m in data.get("psychMarkers", [])],
            feedback_text=data.get("feedbackText", ""),
            feedback_audio_ref=data.get("feedbackAudioUrl", ""),
            original_audio_ref=data.get("originalAudioUrl", ""),
            voice_id=data["voiceId"],
            persona_id=data.get("personaId"),
            persona_name=data.get("personaName"),
            conversation=[ConversationTurn.from_dict(t) for t in data.get("conversation") or []],
        )


@dataclass
class Persona:
    """A named analytical/conversational style bound to a synthesized voice."""

    id: str
    name: str
    personality: str
    instruction_text: str
    feedback_style: str
    voice_id: str
    created_at: datetime
    is_custom: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "personality": self.personality,
            "systemPrompt": self.instruction_text,
            "feedbackStyle": self.feedback_style,
            "voiceId": self.voice_id,
            "createdAt": _format_ts(self.created_at),
            "isCustom": self.is_custom,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Persona":
        return cls(
            id=data["id"],
            name=data["name"],
            personality=data.get("personality", ""),
            instruction_text=data.get("systemPrompt", ""),
            feedback_style=data.get("feedbackStyle", ""),
            voice_id=data["voiceId"],
            created_at=_parse_ts(data.get("createdAt")) or utc_now(),
            is_custom=bool(data.get("isCustom", True)),
        )


@dataclass
class EntitlementState:
    """Per-identity usage counter and subscription record."""

    identity: str
    entry_count: int = 0
    is_premium: bool = False
    premium_expires_at: Optional[datetime] = None
    premium_activated_at: Optional[datetime] = None

    def remaining_free(self, limit: int) -> Union[int, float]:
        if self.is_premium:
            return UNBOUNDED
        return max(0, limit - self.entry_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "entryCount": self.entry_count,
            "isPremium": self.is_premium,
            "expiresAt": _format_ts(self.premium_expires_at),
            "activatedAt": _format_ts(self.premium_activated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntitlementState":
        return cls(
            identity=data["identity"],
            entry_count=int(data.get("entryCount", 0)),
            is_premium=bool(data.get("isPremium", False)),
            premium_expires_at=_parse_ts(data.get("expiresAt")),
            premium_activated_at=_parse_ts(data.get("activatedAt")),
        )
