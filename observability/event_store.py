"""
Event store for querying journal events by identity.

In-memory, bounded. Events are diagnostics, not domain state: losing them
on restart is acceptable.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from dataclasses import dataclass


ENVELOPE_KEYS = ("ts", "identity", "component", "event_type", "severity", "correlation_id", "pii")


@dataclass
class StoredEvent:
    """An event envelope stored in memory."""

    ts: datetime
    identity: str
    component: str
    event_type: str
    severity: str
    correlation_id: str
    pii: Dict[str, Any]
    payload: Dict[str, Any]  # All other event fields

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "ts": self.ts.isoformat(),
            "identity": self.identity,
            "component": self.component,
            "event_type": self.event_type,
            "severity": self.severity,
            "correlation_id": self.correlation_id,
            "pii": self.pii,
        }
        result.update(self.payload)
        return result


class EventStore:
    """
    In-memory event store.

    Stores events in a bounded deque (FIFO) so memory stays flat.
    Default max size: 10,000 events.
    """

    def __init__(self, max_events: int = 10000):
        self._events: deque[StoredEvent] = deque(maxlen=max_events)
        self._max_events = max_events

    def store(self, event: Dict[str, Any]) -> None:
        """Store an event envelope dict (as produced by EventEmitter.emit)."""
        ts_str = event.get("ts")
        if isinstance(ts_str, str):
            ts = datetime.fromisoformat(ts_str.replace("Z", "+00:00"))
        else:
            ts = datetime.now(timezone.utc)

        identity = event.get("identity", "")
        payload = {k: v for k, v in event.items() if k not in ENVELOPE_KEYS}

        self._events.append(StoredEvent(
            ts=ts,
            identity=identity,
            component=event.get("component", "unknown"),
            event_type=event.get("event_type", "unknown"),
            severity=event.get("severity", "info"),
            correlation_id=event.get("correlation_id", identity),
            pii=event.get("pii", {"contains_pii": False, "fields": [], "handling": "none"}),
            payload=payload,
        ))

    def query(
        self,
        identity: Optional[str] = None,
        event_type: Optional[str] = None,
        component: Optional[str] = None,
        correlation_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query events with optional filters.

        Returns a list of event dicts, oldest first.
        """
        results: List[StoredEvent] = []

        for event in self._events:
            if identity and event.identity != identity:
                continue
            if event_type and event.event_type != event_type:
                continue
            if component and event.component != component:
                continue
            if correlation_id and event.correlation_id != correlation_id:
                continue
            if since and event.ts < since:
                continue
            if until and event.ts > until:
                continue

            results.append(event)

            if limit and len(results) >= limit:
                break

        return [e.to_dict() for e in results]

    def clear(self) -> None:
        self._events.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_events": len(self._events),
            "max_events": self._max_events,
            "oldest_event_ts": self._events[0].ts.isoformat() if self._events else None,
            "newest_event_ts": self._events[-1].ts.isoformat() if self._events else None,
        }
