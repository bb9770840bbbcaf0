"""
Persona registry: built-in personas (YAML) plus per-identity custom personas.

Built-ins are process-wide constants keyed by a fixed voice id and live in
journal_core/builtin_personas/*.yaml. Custom personas are persisted through
the EntryStore and are only visible to the identity that created them.

Resolution turns a VoiceSelection into the concrete instruction text,
feedback style and voice id used for one workflow run. Anything that can't
be resolved falls back to the generic analyst instruction; the voice then
falls back to the default built-in voice, so every entry still carries a
voice that exists.
"""
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from adapters.prompts import GENERIC_FEEDBACK_STYLE, GENERIC_INSTRUCTION
from logging_setup import get_logger, Component

from .models import JournalEntry, Persona, utc_now
from .store import EntryStore


logger = get_logger(Component.PERSONA_REGISTRY)

REQUIRED_FIELDS = ("id", "name", "voice_id", "personality", "instruction_text", "feedback_style")


@dataclass(frozen=True)
class BuiltIn:
    """Select a persona by its bound voice id."""
    voice_id: str


@dataclass(frozen=True)
class Custom:
    """Select a custom persona by id."""
    persona_id: str


VoiceSelection = Union[BuiltIn, Custom]


@dataclass(frozen=True)
class ResolvedPersona:
    """Instruction text, feedback style and voice chosen once per run."""

    instruction_text: str
    feedback_style: str
    voice_id: str
    persona_id: Optional[str] = None
    persona_name: Optional[str] = None
    is_fallback: bool = False

    @classmethod
    def from_persona(cls, persona: Persona) -> "ResolvedPersona":
        return cls(
            instruction_text=persona.instruction_text,
            feedback_style=persona.feedback_style,
            voice_id=persona.voice_id,
            persona_id=persona.id,
            persona_name=persona.name,
        )

    @classmethod
    def generic(cls, voice_id: str) -> "ResolvedPersona":
        return cls(
            instruction_text=GENERIC_INSTRUCTION,
            feedback_style=GENERIC_FEEDBACK_STYLE,
            voice_id=voice_id,
            is_fallback=True,
        )


def _get_builtin_dir() -> Path:
    """Get the built-in personas directory path."""
    return Path(__file__).parent / "builtin_personas"


def _load_file(path: Path) -> Dict[str, Any]:
    """Load one persona file with YAML safe_load (pure JSON parses too)."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Persona file {path} must contain a mapping at top-level")
        return data


def load_builtin_personas(directory: Path) -> List[Persona]:
    """Load every *.yaml / *.yml / *.json persona file, ordered by their 'order' key."""
    files = []
    for pattern in ("*.yaml", "*.yml", "*.json"):
        files.extend(sorted(directory.glob(pattern)))

    loaded = []
    for path in files:
        data = _load_file(path)
        missing = [key for key in REQUIRED_FIELDS if not data.get(key)]
        if missing:
            raise ValueError(f"Persona file {path} is missing: {', '.join(missing)}")
        persona = Persona(
            id=str(data["id"]),
            name=str(data["name"]).strip(),
            personality=str(data["personality"]).strip(),
            instruction_text=str(data["instruction_text"]).strip(),
            feedback_style=str(data["feedback_style"]).strip(),
            voice_id=str(data["voice_id"]),
            created_at=utc_now(),
            is_custom=False,
        )
        loaded.append((int(data.get("order", 100)), persona))

    loaded.sort(key=lambda item: item[0])
    return [persona for _, persona in loaded]


class PersonaRegistry:
    """Lookup and resolution over built-in and custom personas."""

    def __init__(
        self,
        store: EntryStore,
        builtin_dir: Optional[Path] = None,
    ):
        self.store = store
        self._builtins = load_builtin_personas(builtin_dir or _get_builtin_dir())
        if not self._builtins:
            raise ValueError("At least one built-in persona is required")
        logger.debug("Built-in personas loaded", count=len(self._builtins))

    @property
    def default_voice_id(self) -> str:
        return self._builtins[0].voice_id

    def builtin_personas(self) -> List[Persona]:
        return list(self._builtins)

    def get_builtin(self, voice_id: str) -> Optional[Persona]:
        for persona in self._builtins:
            if persona.voice_id == voice_id:
                return persona
        return None

    def _builtin_by_id(self, persona_id: str) -> Optional[Persona]:
        for persona in self._builtins:
            if persona.id == persona_id:
                return persona
        return None

    def list_custom(self, identity: str) -> List[Persona]:
        return self.store.list_personas(identity)

    def list_personas(self, identity: str) -> List[Persona]:
        """Built-ins first, then the identity's custom personas (newest first)."""
        return self.builtin_personas() + self.list_custom(identity)

    def get_custom(self, identity: str, persona_id: str) -> Optional[Persona]:
        for persona in self.list_custom(identity):
            if persona.id == persona_id:
                return persona
        return None

    def add_custom(self, identity: str, persona: Persona) -> Persona:
        if not persona.is_custom:
            raise ValueError("Only custom personas can be added")
        self.store.add_persona(identity, persona)
        return persona

    def delete_custom(self, identity: str, persona_id: str) -> bool:
        """Remove a custom persona. Entries that used it keep their snapshot."""
        return self.store.remove_persona(identity, persona_id)

    def find_by_voice(self, identity: str, voice_id: str) -> Optional[Persona]:
        return self.get_builtin(voice_id) or next(
            (p for p in self.list_custom(identity) if p.voice_id == voice_id), None
        )

    def resolve(self, selection: VoiceSelection, identity: str) -> ResolvedPersona:
        """Resolve a selection into a snapshot, falling back to the generic analyst."""
        persona = None
        if isinstance(selection, BuiltIn):
            persona = self.find_by_voice(identity, selection.voice_id)
        elif isinstance(selection, Custom):
            persona = self.get_custom(identity, selection.persona_id)
        else:
            raise TypeError(f"Unsupported voice selection: {selection!r}")

        if persona is None:
            logger.warning(
                "Persona selection not resolvable, using generic analyst",
                identity=identity,
                selection=repr(selection),
            )
            return ResolvedPersona.generic(self.default_voice_id)
        return ResolvedPersona.from_persona(persona)

    def resolve_for_entry(self, identity: str, entry: JournalEntry) -> ResolvedPersona:
        """
        Resolve the persona bound to an existing entry.

        The persona snapshot id wins, then a lookup by the entry's voice.
        The entry's voice is always kept, even on the generic fallback.
        """
        persona = None
        if entry.persona_id:
            persona = self._builtin_by_id(entry.persona_id) or self.get_custom(identity, entry.persona_id)
        if persona is None:
            persona = self.find_by_voice(identity, entry.voice_id)
        if persona is None:
            return ResolvedPersona.generic(entry.voice_id)

        resolved = ResolvedPersona.from_persona(persona)
        if resolved.voice_id != entry.voice_id:
            resolved = replace(resolved, voice_id=entry.voice_id)
        return resolved
