"""
REST adapter tests against local fake services (aiohttp test servers).

Verifies request shapes, response decoding and that every failure surfaces
as AdapterError with the upstream status and message verbatim.
"""
import asyncio
import base64
import json
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from adapters.base import ConversationContext
from adapters.config import AdapterConfig
from adapters.elevenlabs import ElevenLabsClient, filename_for_media_type
from adapters.errors import AdapterError, SchemaValidationError
from adapters.openai_llm import OpenAIAnalyst
from journal_core.errors import ErrorHandler, UpstreamCategory
from journal_core.models import AudioPayload

from conftest import VALID_ANALYSIS, VALID_PERSONA


@asynccontextmanager
async def serve(app: web.Application):
    server = TestServer(app)
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}"
    finally:
        await server.close()


def make_config(base_url: str, **overrides) -> AdapterConfig:
    values = dict(
        openai_api_key="sk-test-key",
        elevenlabs_api_key="xi-test-key",
        openai_base_url=f"{base_url}/v1",
        elevenlabs_base_url=base_url,
        total_timeout=2.0,
        connect_timeout=1.0,
    )
    values.update(overrides)
    return AdapterConfig(**values)


class FakeElevenLabs:
    def __init__(self):
        self.requests = []
        self.fail_status = None
        self.fail_text = "quota exceeded for this key"
        self.previews = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/speech-to-text", self.speech_to_text)
        app.router.add_post("/v1/text-to-speech/{voice_id}", self.text_to_speech)
        app.router.add_post("/v1/text-to-voice/create-previews", self.create_previews)
        app.router.add_post("/v1/text-to-voice/create-voice-from-preview", self.create_voice)
        return app

    async def speech_to_text(self, request):
        form = await request.post()
        upload = form["file"]
        self.requests.append({
            "key": request.headers.get("xi-api-key"),
            "filename": upload.filename,
            "model_id": form["model_id"],
            "audio": upload.file.read(),
        })
        if self.fail_status:
            return web.Response(status=self.fail_status, text=self.fail_text)
        return web.json_response({"text": "I feel overwhelmed at work", "language_code": "en"})

    async def text_to_speech(self, request):
        body = await request.json()
        self.requests.append({"voice_id": request.match_info["voice_id"], "body": body})
        if self.fail_status:
            return web.Response(status=self.fail_status, text=self.fail_text)
        return web.Response(body=b"ID3-mp3-bytes", content_type="audio/mpeg")

    async def create_previews(self, request):
        body = await request.json()
        self.requests.append(body)
        if self.fail_status:
            return web.Response(status=self.fail_status, text=self.fail_text)
        if self.previews is not None:
            return web.json_response({"previews": self.previews})
        return web.json_response({
            "previews": [
                {
                    "generated_voice_id": "gen-1",
                    "audio_base_64": base64.b64encode(b"preview-mp3").decode("ascii"),
                    "media_type": "audio/mpeg",
                },
                {"generated_voice_id": "gen-2", "audio_base_64": ""},
            ]
        })

    async def create_voice(self, request):
        body = await request.json()
        self.requests.append(body)
        if self.fail_status:
            return web.Response(status=self.fail_status, text=self.fail_text)
        return web.json_response({"voice_id": "permanent-voice-9"})


class FakeOpenAI:
    def __init__(self):
        self.requests = []
        self.content = json.dumps(VALID_ANALYSIS)
        self.fail_status = None
        self.delay = 0.0

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/chat/completions", self.chat)
        return app

    async def chat(self, request):
        self.requests.append({"auth": request.headers.get("Authorization"), "body": await request.json()})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_status:
            return web.json_response({"error": {"message": "Rate limit reached"}}, status=self.fail_status)
        return web.json_response({"choices": [{"message": {"role": "assistant", "content": self.content}}]})


@pytest.fixture
def elevenlabs_fake():
    return FakeElevenLabs()


@pytest.fixture
def openai_fake():
    return FakeOpenAI()


class TestElevenLabs:
    @pytest.mark.asyncio
    async def test_transcribe(self, elevenlabs_fake):
        """Test speech-to-text upload and transcript decoding."""
        async with serve(elevenlabs_fake.app()) as base_url:
            client = ElevenLabsClient(make_config(base_url))
            try:
                text = await client.transcribe(AudioPayload(b"webm-bytes", "audio/webm;codecs=opus"))
            finally:
                await client.aclose()

        assert text == "I feel overwhelmed at work"
        request = elevenlabs_fake.requests[0]
        assert request["key"] == "xi-test-key"
        assert request["filename"] == "recording.webm"
        assert request["model_id"] == "scribe_v1"
        assert request["audio"] == b"webm-bytes"

    @pytest.mark.asyncio
    async def test_synthesize(self, elevenlabs_fake):
        """Test text-to-speech request body and audio response."""
        async with serve(elevenlabs_fake.app()) as base_url:
            client = ElevenLabsClient(make_config(base_url))
            try:
                audio = await client.synthesize("That sounds heavy.", "voice-abc")
            finally:
                await client.aclose()

        assert audio.data == b"ID3-mp3-bytes"
        assert audio.media_type == "audio/mpeg"
        request = elevenlabs_fake.requests[0]
        assert request["voice_id"] == "voice-abc"
        assert request["body"]["text"] == "That sounds heavy."
        assert request["body"]["voice_settings"] == {"stability": 0.5, "similarity_boost": 0.75}

    @pytest.mark.asyncio
    async def test_design_and_finalize(self, elevenlabs_fake):
        """Test voice design followed by finalization of the first preview."""
        async with serve(elevenlabs_fake.app()) as base_url:
            client = ElevenLabsClient(make_config(base_url))
            try:
                preview = await client.design_voice("A calm librarian", "Hello there.")
                voice_id = await client.finalize_voice(preview.preview_voice_id, "Libby", "A calm librarian")
            finally:
                await client.aclose()

        assert preview.preview_voice_id == "gen-1"
        assert preview.audio.data == b"preview-mp3"
        assert voice_id == "permanent-voice-9"
        assert elevenlabs_fake.requests[0] == {"voice_description": "A calm librarian", "text": "Hello there."}
        assert elevenlabs_fake.requests[1]["generated_voice_id"] == "gen-1"
        assert elevenlabs_fake.requests[1]["voice_name"] == "Libby"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("previews", [
        ["gen-1", "gen-2"],
        [None],
        "gen-1",
        [{"generated_voice_id": "gen-1"}],
    ])
    async def test_malformed_previews(self, elevenlabs_fake, previews):
        """Test that unusable voice previews surface as AdapterError."""
        elevenlabs_fake.previews = previews

        async with serve(elevenlabs_fake.app()) as base_url:
            client = ElevenLabsClient(make_config(base_url))
            try:
                with pytest.raises(AdapterError) as exc_info:
                    await client.design_voice("A calm librarian", "Hello there.")
            finally:
                await client.aclose()

        assert exc_info.value.status == 200

    @pytest.mark.asyncio
    async def test_upstream_error_is_verbatim(self, elevenlabs_fake):
        """Test that an upstream error keeps its status and body verbatim."""
        elevenlabs_fake.fail_status = 429

        async with serve(elevenlabs_fake.app()) as base_url:
            client = ElevenLabsClient(make_config(base_url))
            try:
                with pytest.raises(AdapterError) as exc_info:
                    await client.synthesize("hi", "voice-abc")
            finally:
                await client.aclose()

        error = exc_info.value
        assert error.status == 429
        assert error.message == "quota exceeded for this key"
        assert error.provider == "elevenlabs"
        assert ErrorHandler.classify_upstream(error.status, error.message) == UpstreamCategory.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test that an unreachable service surfaces as a network AdapterError."""
        client = ElevenLabsClient(make_config("http://127.0.0.1:1"))
        try:
            with pytest.raises(AdapterError) as exc_info:
                await client.transcribe(AudioPayload(b"x", "audio/webm"))
        finally:
            await client.aclose()

        assert exc_info.value.status is None
        assert "connection error" in exc_info.value.message

    def test_missing_key_rejected(self):
        """Test that a client without an API key is refused."""
        with pytest.raises(ValueError):
            ElevenLabsClient(make_config("http://localhost", elevenlabs_api_key=""))

    @pytest.mark.parametrize("media_type, filename", [
        ("audio/webm", "recording.webm"),
        ("audio/mp4", "recording.mp4"),
        ("audio/x-m4a", "recording.mp4"),
        ("audio/ogg; codecs=opus", "recording.ogg"),
        ("audio/mpeg", "recording.mp3"),
        ("audio/wav", "recording.wav"),
        (None, "recording.webm"),
    ])
    def test_upload_filename(self, media_type, filename):
        """Test upload filenames derived from media types."""
        assert filename_for_media_type(media_type) == filename


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_analyze(self, openai_fake):
        """Test analysis request in JSON mode and schema parsing."""
        async with serve(openai_fake.app()) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url))
            try:
                analysis = await analyst.analyze("I feel overwhelmed", "You are Scott.", "Warm and direct")
            finally:
                await analyst.aclose()

        assert analysis.summary == VALID_ANALYSIS["summary"]
        assert [e.name for e in analysis.domain_emotions()] == ["stress", "frustration", "hope"]
        request = openai_fake.requests[0]
        assert request["auth"] == "Bearer sk-test-key"
        assert request["body"]["response_format"] == {"type": "json_object"}
        assert request["body"]["messages"][0]["role"] == "system"
        assert "You are Scott." in request["body"]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_analysis_schema_rejected(self, openai_fake):
        """Test that a schema-invalid analysis raises SchemaValidationError."""
        invalid = dict(VALID_ANALYSIS, emotions=[{"name": "stress", "score": 0.8}])
        openai_fake.content = json.dumps(invalid)

        async with serve(openai_fake.app()) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url))
            try:
                with pytest.raises(SchemaValidationError) as exc_info:
                    await analyst.analyze("text", "instruction", "style")
            finally:
                await analyst.aclose()

        assert "emotions" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_converse_plain_text(self, openai_fake):
        """Test conversational reply returned as plain text."""
        openai_fake.content = "What would make tomorrow lighter?"
        context = ConversationContext(
            transcript="I feel overwhelmed",
            emotions=["stress"],
            topics=["work"],
            history=[{"role": "assistant", "content": "That sounds heavy."}],
        )

        async with serve(openai_fake.app()) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url))
            try:
                reply = await analyst.converse("You are Scott.", context, "It really is")
            finally:
                await analyst.aclose()

        assert reply == "What would make tomorrow lighter?"
        body = openai_fake.requests[0]["body"]
        assert "response_format" not in body
        assert body["messages"][-1] == {"role": "user", "content": "It really is"}

    @pytest.mark.asyncio
    async def test_generate_persona(self, openai_fake):
        """Test persona generation from a description."""
        openai_fake.content = json.dumps(VALID_PERSONA)

        async with serve(openai_fake.app()) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url))
            try:
                persona = await analyst.generate_persona("A running coach")
            finally:
                await analyst.aclose()

        assert persona.name == "Coach Maya"
        assert persona.instruction_text == VALID_PERSONA["instructionText"]

    @pytest.mark.asyncio
    async def test_rate_limited(self, openai_fake):
        """Test that a 429 keeps the upstream message."""
        openai_fake.fail_status = 429

        async with serve(openai_fake.app()) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url))
            try:
                with pytest.raises(AdapterError) as exc_info:
                    await analyst.converse("i", ConversationContext(transcript="t"), "u")
            finally:
                await analyst.aclose()

        assert exc_info.value.status == 429
        assert "Rate limit reached" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout(self, openai_fake):
        """Test that a slow response surfaces as a timeout AdapterError."""
        openai_fake.delay = 1.0

        async with serve(openai_fake.app()) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url, total_timeout=0.2))
            try:
                with pytest.raises(AdapterError) as exc_info:
                    await analyst.analyze("t", "i", "s")
            finally:
                await analyst.aclose()

        assert exc_info.value.status is None
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, openai_fake):
        """Test that a response without choices is rejected."""
        async def empty_choices(request):
            return web.json_response({"choices": []})

        app = web.Application()
        app.router.add_post("/v1/chat/completions", empty_choices)

        async with serve(app) as base_url:
            analyst = OpenAIAnalyst(make_config(base_url))
            try:
                with pytest.raises(AdapterError) as exc_info:
                    await analyst.generate_persona("x")
            finally:
                await analyst.aclose()

        assert exc_info.value.status == 200
