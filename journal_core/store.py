"""
Identity-scoped persistence for entries, custom personas, entitlement state
and audio blobs.

Collections are whole JSON documents keyed by identity:
    entries_<identity>, personas_<identity>, entitlement_<identity>
Every successful mutation writes the whole collection back. The file
backend replaces documents atomically (temp file + os.replace), so readers
never observe a torn write.
"""
from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from logging_setup import get_logger, Component

from .models import AudioPayload, EntitlementState, JournalEntry, Persona


logger = get_logger(Component.ENTRY_STORE)

AUDIO_REF_PREFIX = "audio:"

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/m4a": "m4a",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/webm": "webm",
}
_MEDIA_TYPES = {ext: mime for mime, ext in _EXTENSIONS.items()}
_MEDIA_TYPES["mp3"] = "audio/mpeg"

_SAFE = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")


def safe_key(identity: str) -> str:
    """Filesystem-safe form of an identity; hashed when it has unsafe characters."""
    if _SAFE.match(identity) and not identity.startswith("."):
        return identity
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:32]
    return f"id_{digest}"


def extension_for(media_type: str) -> str:
    base = (media_type or "").split(";")[0].strip().lower()
    return _EXTENSIONS.get(base, "bin")


class StoreError(RuntimeError):
    """A persisted document could not be read or an update was refused."""


class KeyValueBackend(Protocol):
    def read(self, key: str) -> Optional[Any]: ...

    def write(self, key: str, value: Any) -> None: ...

    def write_blob(self, path: str, data: bytes) -> None: ...

    def read_blob(self, path: str) -> Optional[bytes]: ...

    def delete_blob(self, path: str) -> None: ...


class MemoryBackend:
    """Process-local backend. Values are JSON round-tripped to mimic the file backend."""

    def __init__(self):
        self._documents: Dict[str, str] = {}
        self._blobs: Dict[str, bytes] = {}

    def read(self, key: str) -> Optional[Any]:
        raw = self._documents.get(key)
        return json.loads(raw) if raw is not None else None

    def write(self, key: str, value: Any) -> None:
        self._documents[key] = json.dumps(value, ensure_ascii=False)

    def write_blob(self, path: str, data: bytes) -> None:
        self._blobs[path] = bytes(data)

    def read_blob(self, path: str) -> Optional[bytes]:
        return self._blobs.get(path)

    def delete_blob(self, path: str) -> None:
        self._blobs.pop(path, None)

    def keys(self) -> List[str]:
        return sorted(self._documents)


class JSONFileBackend:
    """One JSON file per key under root; blobs under root/audio."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            quarantine = path.with_suffix(".json.corrupt")
            os.replace(path, quarantine)
            logger.warning(
                "Corrupt document moved aside, starting fresh",
                key=key,
                quarantined_to=str(quarantine),
                error=str(e),
            )
            return None

    def _atomic_write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def write(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, indent=2).encode("utf-8")
        self._atomic_write(self._path(key), payload)

    def _blob_path(self, path: str) -> Path:
        audio_root = (self.root / "audio").resolve()
        full = (audio_root / path).resolve()
        if not full.is_relative_to(audio_root):
            raise StoreError(f"blob path escapes audio directory: {path}")
        return full

    def write_blob(self, path: str, data: bytes) -> None:
        self._atomic_write(self._blob_path(path), data)

    def read_blob(self, path: str) -> Optional[bytes]:
        full = self._blob_path(path)
        if not full.exists():
            return None
        return full.read_bytes()

    def delete_blob(self, path: str) -> None:
        self._blob_path(path).unlink(missing_ok=True)


class EntryStore:
    """
    Identity-scoped collections.

    Entries are kept newest first. Custom personas are stored per identity
    and never visible to another identity.
    """

    def __init__(self, backend: KeyValueBackend):
        self.backend = backend

    # ── Entries ──────────────────────────────────────────────────

    def _entries_key(self, identity: str) -> str:
        return f"entries_{safe_key(identity)}"

    def list_entries(self, identity: str) -> List[JournalEntry]:
        raw = self.backend.read(self._entries_key(identity)) or []
        return [JournalEntry.from_dict(item) for item in raw]

    def get_entry(self, identity: str, entry_id: str) -> Optional[JournalEntry]:
        for entry in self.list_entries(identity):
            if entry.id == entry_id:
                return entry
        return None

    def _write_entries(self, identity: str, entries: List[JournalEntry]) -> None:
        self.backend.write(self._entries_key(identity), [e.to_dict() for e in entries])

    def add_entry(self, identity: str, entry: JournalEntry) -> None:
        entries = self.list_entries(identity)
        if any(e.id == entry.id for e in entries):
            raise StoreError(f"entry {entry.id} already exists")
        entries.insert(0, entry)
        self._write_entries(identity, entries)
        logger.info("Entry added", identity=identity, entry_id=entry.id, total_entries=len(entries))

    def replace_entry(self, identity: str, entry: JournalEntry) -> None:
        """
        Replace an entry in place.

        The conversation of an entry only ever grows; a replacement that
        would shorten it is refused.
        """
        entries = self.list_entries(identity)
        for index, existing in enumerate(entries):
            if existing.id == entry.id:
                if len(entry.conversation) < len(existing.conversation):
                    raise StoreError(
                        f"refusing to shrink conversation of entry {entry.id} "
                        f"({len(existing.conversation)} -> {len(entry.conversation)} turns)"
                    )
                entries[index] = entry
                self._write_entries(identity, entries)
                logger.debug(
                    "Entry replaced",
                    identity=identity,
                    entry_id=entry.id,
                    turns=len(entry.conversation),
                )
                return
        raise StoreError(f"entry {entry.id} not found for identity")

    # ── Personas ─────────────────────────────────────────────────

    def _personas_key(self, identity: str) -> str:
        return f"personas_{safe_key(identity)}"

    def list_personas(self, identity: str) -> List[Persona]:
        raw = self.backend.read(self._personas_key(identity)) or []
        return [Persona.from_dict(item) for item in raw]

    def add_persona(self, identity: str, persona: Persona) -> None:
        personas = self.list_personas(identity)
        personas.insert(0, persona)
        self.backend.write(self._personas_key(identity), [p.to_dict() for p in personas])
        logger.info("Persona added", identity=identity, persona_id=persona.id)

    def remove_persona(self, identity: str, persona_id: str) -> bool:
        personas = self.list_personas(identity)
        kept = [p for p in personas if p.id != persona_id]
        if len(kept) == len(personas):
            return False
        self.backend.write(self._personas_key(identity), [p.to_dict() for p in kept])
        logger.info("Persona removed", identity=identity, persona_id=persona_id)
        return True

    # ── Entitlement ──────────────────────────────────────────────

    def _entitlement_key(self, identity: str) -> str:
        return f"entitlement_{safe_key(identity)}"

    def load_entitlement(self, identity: str) -> EntitlementState:
        raw = self.backend.read(self._entitlement_key(identity))
        if raw is None:
            return EntitlementState(identity=identity)
        return EntitlementState.from_dict(raw)

    def save_entitlement(self, state: EntitlementState) -> None:
        self.backend.write(self._entitlement_key(state.identity), state.to_dict())

    # ── Audio ────────────────────────────────────────────────────

    def save_audio(self, identity: str, audio: AudioPayload) -> str:
        """Store an audio blob and return its reference."""
        path = f"{safe_key(identity)}/{uuid.uuid4().hex}.{extension_for(audio.media_type)}"
        self.backend.write_blob(path, audio.data)
        return f"{AUDIO_REF_PREFIX}{path}"

    @staticmethod
    def _blob_path_for(ref: str) -> Optional[str]:
        if not ref or not ref.startswith(AUDIO_REF_PREFIX):
            return None
        path = ref[len(AUDIO_REF_PREFIX):]
        if Path(path).is_absolute() or ".." in Path(path).parts:
            raise StoreError("invalid audio reference")
        return path

    def load_audio(self, ref: str) -> Optional[AudioPayload]:
        path = self._blob_path_for(ref)
        if path is None:
            return None
        data = self.backend.read_blob(path)
        if data is None:
            return None
        ext = path.rsplit(".", 1)[-1]
        return AudioPayload(data=data, media_type=_MEDIA_TYPES.get(ext, "application/octet-stream"))

    def delete_audio(self, *refs: str) -> None:
        """Remove blobs written for a document update that did not land."""
        for ref in refs:
            path = self._blob_path_for(ref)
            if path is not None:
                self.backend.delete_blob(path)
