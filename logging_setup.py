"""
Shared logging infrastructure for the MindPebbles journal core.

Used by the journal core, the adapters and the control API so that every
log line carries the same structure.

Features:
- JSON-formatted structured logs, one object per line
- Identity correlation across all logs
- Component tagging
- PII-aware logging helpers: transcripts, replies and persona prompts are
  logged only through debug_pii / info_pii, and their values are dropped
  by the formatter unless PII logging is switched on (LOG_PII=1)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Component(str, Enum):
    """System components for log tagging."""
    INSIGHT_PIPELINE = "insight_pipeline"
    CONVERSATION = "conversation"
    PERSONA_WORKFLOW = "persona_workflow"
    PERSONA_REGISTRY = "persona_registry"
    ENTITLEMENT = "entitlement"
    ENTRY_STORE = "entry_store"
    CONTROL_API = "control_api"
    STT = "stt"
    LLM = "llm"
    TTS = "tts"
    VOICE_DESIGN = "voice_design"
    SERVICES = "services"


# LogRecord attributes that are never copied into the JSON payload
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "component", "identity", "message", "pii",
])


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record: timestamp, severity, component, message,
    identity (when bound), extra fields and the formatted exception.

    PII fields arrive under record.pii. With include_pii off only their
    names are written, as pii_redacted.
    """

    def __init__(self, include_pii: bool = False):
        super().__init__()
        self.include_pii = include_pii

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        if hasattr(record, "identity"):
            log_data["identity"] = record.identity

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        pii = getattr(record, "pii", None)
        if pii:
            if self.include_pii:
                log_data["pii"] = pii
            else:
                log_data["pii_redacted"] = sorted(pii)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that passes keyword fields as extras.

    Usage:
        logger = StructuredLogger("insight_pipeline", identity="user_42")
        logger.info("Stage completed", stage="transcribing", latency_ms=812)
        logger.debug_pii("Transcript received", transcript="...")
    """

    def __init__(
        self,
        component: str | Component,
        identity: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.identity = identity
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(
        self,
        level: int,
        message: str,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", None)
        stacklevel = kwargs.pop("stacklevel", 1)

        extra = {"component": self.component, **kwargs}
        if self.identity:
            extra["identity"] = self.identity
        if pii:
            extra["pii"] = pii

        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            stack_info=stack_info,
            stacklevel=stacklevel,
            extra=extra
        )

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at error level with exception info, like logging.Logger.exception."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)

    def debug_pii(self, message: str, **pii_fields):
        """
        Log debug with every keyword marked as PII.

        Example:
            logger.debug_pii("Transcript received", transcript="I feel ...")
        """
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        self._log(logging.INFO, message, pii=pii_fields)

    def with_identity(self, identity: str) -> "StructuredLogger":
        """Same component and logger, bound to an identity."""
        return StructuredLogger(
            self.component,
            identity=identity,
            logger_name=self.logger.name
        )


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    include_pii: bool = False,
) -> None:
    """
    Configure the root logger. Call once at process startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        use_json: JSON lines (True) or plain text for local reading (False)
        include_pii: write PII field values instead of only their names
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if use_json:
        formatter = JSONFormatter(include_pii=include_pii)
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(component)s - %(message)s",
            defaults={"component": "unknown"},
        )
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(
    component: str | Component,
    identity: Optional[str] = None
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.INSIGHT_PIPELINE, identity="guest")
        logger.info("Run started")
    """
    return StructuredLogger(component, identity=identity)
