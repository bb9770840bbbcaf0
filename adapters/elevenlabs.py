"""
ElevenLabs speech services via REST API.

Covers speech-to-text (Scribe), text-to-speech and voice design
(preview generation + saving a preview as a permanent voice).
"""
import base64
from typing import Optional

import aiohttp

from journal_core.models import AudioPayload
from logging_setup import get_logger, Component

from .base import VoicePreview
from .config import AdapterConfig
from .errors import AdapterError
from .http import HTTPAdapter


def filename_for_media_type(media_type: Optional[str]) -> str:
    """
    Pick an upload filename whose extension matches the recorded format.

    The speech-to-text endpoint sniffs the container from the extension.
    """
    mime = (media_type or "audio/webm").lower()
    if "mp4" in mime or "m4a" in mime:
        return "recording.mp4"
    if "ogg" in mime:
        return "recording.ogg"
    if "mpeg" in mime or "mp3" in mime:
        return "recording.mp3"
    if "wav" in mime:
        return "recording.wav"
    return "recording.webm"


class ElevenLabsClient(HTTPAdapter):
    """Implements Transcriber, SpeechSynthesizer and VoiceDesigner."""

    provider = "elevenlabs"
    component = Component.TTS

    def __init__(self, config: AdapterConfig, *, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(config, session=session)
        if not config.elevenlabs_api_key:
            raise ValueError("ElevenLabs requires a valid API key in ELEVENLABS_API_KEY")
        self.stt_logger = get_logger(Component.STT)
        self.design_logger = get_logger(Component.VOICE_DESIGN)

    @property
    def _headers(self) -> dict:
        return {"xi-api-key": self.config.elevenlabs_api_key}

    def _url(self, path: str) -> str:
        return f"{self.config.elevenlabs_base_url}{path}"

    async def transcribe(self, audio: AudioPayload) -> str:
        media_type = audio.media_type or "audio/webm"
        self.stt_logger.debug("STT call started", audio_bytes=audio.size, media_type=media_type)

        form = aiohttp.FormData()
        form.add_field(
            "file",
            audio.data,
            filename=filename_for_media_type(media_type),
            content_type=media_type,
        )
        form.add_field("model_id", self.config.elevenlabs_stt_model)

        data = await self._request(
            "POST",
            self._url("/v1/speech-to-text"),
            operation="speech_to_text",
            headers=self._headers,
            data=form,
        )
        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise AdapterError(self.provider, "no text field in speech-to-text response", status=200)
        return text

    async def synthesize(self, text: str, voice_id: str) -> AudioPayload:
        payload = {
            "text": text,
            "model_id": self.config.elevenlabs_tts_model,
            "voice_settings": {
                "stability": self.config.elevenlabs_stability,
                "similarity_boost": self.config.elevenlabs_similarity_boost,
            },
        }
        self.logger.debug("TTS call started", voice_id=voice_id, text_length=len(text))

        audio = await self._request(
            "POST",
            self._url(f"/v1/text-to-speech/{voice_id}"),
            operation="text_to_speech",
            expect="bytes",
            headers={**self._headers, "Accept": "audio/mpeg"},
            json=payload,
        )
        if not audio:
            raise AdapterError(self.provider, "empty audio in text-to-speech response", status=200)
        return AudioPayload(data=audio, media_type="audio/mpeg")

    async def design_voice(self, description: str, sample_text: str) -> VoicePreview:
        self.design_logger.debug("Voice design started", description_length=len(description))
        data = await self._request(
            "POST",
            self._url("/v1/text-to-voice/create-previews"),
            operation="voice_design",
            headers=self._headers,
            json={"voice_description": description, "text": sample_text},
        )
        previews = data.get("previews") if isinstance(data, dict) else None
        if not previews or not isinstance(previews, list):
            raise AdapterError(self.provider, "no voice previews returned", status=200)

        first = previews[0]
        if not isinstance(first, dict):
            raise AdapterError(self.provider, "voice preview is not an object", status=200)
        voice_id = first.get("generated_voice_id")
        audio_b64 = first.get("audio_base_64")
        if not voice_id or not audio_b64:
            raise AdapterError(self.provider, "voice preview is missing its id or audio", status=200)

        try:
            audio = base64.b64decode(audio_b64)
        except (ValueError, TypeError) as e:
            raise AdapterError(self.provider, f"voice preview audio is not base64: {e}", status=200) from e

        return VoicePreview(
            preview_voice_id=voice_id,
            audio=AudioPayload(data=audio, media_type=first.get("media_type") or "audio/mpeg"),
        )

    async def finalize_voice(self, preview_voice_id: str, name: str, description: str) -> str:
        self.design_logger.debug("Voice finalization started", preview_voice_id=preview_voice_id)
        data = await self._request(
            "POST",
            self._url("/v1/text-to-voice/create-voice-from-preview"),
            operation="voice_finalization",
            headers=self._headers,
            json={
                "voice_name": name,
                "voice_description": description,
                "generated_voice_id": preview_voice_id,
            },
        )
        voice_id = data.get("voice_id") if isinstance(data, dict) else None
        if not voice_id:
            raise AdapterError(self.provider, "no voice_id in create-voice response", status=200)
        return voice_id
