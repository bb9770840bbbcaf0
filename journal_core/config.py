"""
Journal core configuration.
Loads from environment variables with sensible defaults.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from adapters.config import _parse_int_env


ROOT = Path(__file__).parent.parent


def load_local_env() -> None:
    """
    Load .env_local / .env.local for local development.
    Never overrides variables that are already exported.
    """
    for name in (".env_local", ".env.local"):
        path = ROOT / name
        if path.exists():
            load_dotenv(path, override=False)


@dataclass
class CoreConfig:
    """Journal core configuration."""

    free_entry_limit: int = 3
    default_premium_months: int = 12

    # Persistence
    data_dir: Path = ROOT / "data"
    store_backend: str = "json"  # "json" | "memory"

    # Billing webhook (control API)
    billing_webhook_secret: Optional[str] = None
    billing_tolerance_seconds: int = 300

    log_level: str = "INFO"
    log_pii: bool = False

    def __post_init__(self):
        if self.free_entry_limit < 0:
            raise ValueError("FREE_ENTRY_LIMIT must be >= 0")
        if self.default_premium_months < 1:
            raise ValueError("DEFAULT_PREMIUM_MONTHS must be >= 1")
        if self.store_backend not in ("json", "memory"):
            raise ValueError("JOURNAL_STORE_BACKEND must be 'json' or 'memory'")

    @classmethod
    def from_env(cls) -> "CoreConfig":
        """Load configuration from environment variables."""
        data_dir = os.environ.get("JOURNAL_DATA_DIR")
        return cls(
            free_entry_limit=_parse_int_env("FREE_ENTRY_LIMIT", 3),
            default_premium_months=_parse_int_env("DEFAULT_PREMIUM_MONTHS", 12),
            data_dir=Path(data_dir) if data_dir else ROOT / "data",
            store_backend=os.environ.get("JOURNAL_STORE_BACKEND", "json").lower(),
            billing_webhook_secret=os.environ.get("BILLING_WEBHOOK_SECRET") or None,
            billing_tolerance_seconds=_parse_int_env("BILLING_TOLERANCE_SECONDS", 300),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_pii=os.environ.get("LOG_PII", "").lower() in ("1", "true", "yes"),
        )


def get_config() -> CoreConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        load_local_env()
        _config = CoreConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[CoreConfig] = None
