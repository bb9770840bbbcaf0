"""
Adapter configuration.

Loads provider credentials and HTTP tuning from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _strip_comment(value: Optional[str]) -> Optional[str]:
    """Drop inline comments ("300  # five minutes" -> "300") and whitespace."""
    if value is None:
        return None
    if "#" in value:
        value = value.split("#")[0]
    return value.strip() or None


def _parse_int_env(key: str, default: int) -> int:
    value = _strip_comment(os.environ.get(key))
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _strip_comment(os.environ.get(key))
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


DEFAULT_SAMPLE_TEXT = (
    "Thank you for sharing that with me. Let's take a moment to sit with how "
    "you're feeling, and then look at it together, one small step at a time."
)


@dataclass
class AdapterConfig:
    """External AI service configuration."""

    # OpenAI (analysis, conversation, persona generation)
    openai_api_key: str
    elevenlabs_api_key: str

    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_temperature: float = 0.7

    # ElevenLabs (speech-to-text, text-to-speech, voice design)
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    elevenlabs_stt_model: str = "scribe_v1"
    elevenlabs_tts_model: str = "eleven_monolingual_v1"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.75
    voice_sample_text: str = DEFAULT_SAMPLE_TEXT

    # HTTP tuning (timeouts are owned here, not by the orchestrators)
    connect_timeout: float = 5.0
    total_timeout: float = 60.0
    pool_size: int = 10

    @classmethod
    def from_env(cls) -> "AdapterConfig":
        """Load configuration from environment variables."""
        return cls(
            openai_api_key=os.environ["OPENAI_API_KEY"],
            elevenlabs_api_key=os.environ["ELEVENLABS_API_KEY"],
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            openai_temperature=_parse_float_env("OPENAI_TEMPERATURE", 0.7),
            elevenlabs_base_url=os.environ.get("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io").rstrip("/"),
            elevenlabs_stt_model=os.environ.get("ELEVENLABS_STT_MODEL", "scribe_v1"),
            elevenlabs_tts_model=os.environ.get("ELEVENLABS_TTS_MODEL", "eleven_monolingual_v1"),
            elevenlabs_stability=_parse_float_env("ELEVENLABS_STABILITY", 0.5),
            elevenlabs_similarity_boost=_parse_float_env("ELEVENLABS_SIMILARITY_BOOST", 0.75),
            voice_sample_text=os.environ.get("ELEVENLABS_VOICE_SAMPLE_TEXT") or DEFAULT_SAMPLE_TEXT,
            connect_timeout=_parse_float_env("ADAPTER_CONNECT_TIMEOUT", 5.0),
            total_timeout=_parse_float_env("ADAPTER_TOTAL_TIMEOUT", 60.0),
            pool_size=_parse_int_env("ADAPTER_POOL_SIZE", 10),
        )


def get_config() -> AdapterConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = AdapterConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[AdapterConfig] = None
