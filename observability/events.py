"""
Structured JSON event emission (shared).

Used by the insight pipeline, the conversation orchestrator, the persona
workflow, the entitlement gate and the control API. Every event carries the
same envelope: ts, identity, component, event_type, severity,
correlation_id and pii.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import EventStore


class Component(str, Enum):
    """Event source components."""

    INSIGHT_PIPELINE = "insight_pipeline"
    CONVERSATION = "conversation"
    PERSONA_WORKFLOW = "persona_workflow"
    ENTITLEMENT = "entitlement"
    CONTROL_API = "control_api"
    ADAPTER = "adapter"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """Emits structured JSON events to stdout and, optionally, an EventStore."""

    def __init__(self, component: Component, store: Optional[EventStore] = None):
        self.component = component
        self.store = store

    def emit(
        self,
        event_type: str,
        identity: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event.

        Args:
            event_type: Stable event type string (e.g. "pipeline.state_changed")
            identity: Identity bucket the event belongs to
            severity: Event severity level
            correlation_id: Run / workflow / round id; defaults to identity
            pii: PII metadata dict with contains_pii, fields, handling
            **kwargs: Additional event-specific fields
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "identity": identity,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or identity,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        if self.store is not None:
            self.store.store(event)
        return event

    def state_changed(
        self,
        identity: str,
        correlation_id: str,
        from_state: str,
        to_state: str,
        prefix: str = "pipeline",
    ) -> None:
        """Emit <prefix>.state_changed."""
        self.emit(
            f"{prefix}.state_changed",
            identity,
            correlation_id=correlation_id,
            from_state=from_state,
            to_state=to_state,
        )

    def workflow_failed(
        self,
        identity: str,
        correlation_id: str,
        kind: str,
        stage: str,
        category: str,
        detail: Optional[str] = None,
        prefix: str = "pipeline",
    ) -> None:
        """Emit <prefix>.failed with the failure classification."""
        self.emit(
            f"{prefix}.failed",
            identity,
            severity=Severity.WARN if category == "none" else Severity.ERROR,
            correlation_id=correlation_id,
            kind=kind,
            stage=stage,
            category=category,
            detail=detail,
        )

    def stage_latency(
        self,
        identity: str,
        correlation_id: str,
        stage: str,
        latency_ms: int,
        prefix: str = "pipeline",
    ) -> None:
        """Emit <prefix>.stage_completed with the external call latency."""
        self.emit(
            f"{prefix}.stage_completed",
            identity,
            correlation_id=correlation_id,
            stage=stage,
            latency_ms=latency_ms,
        )
