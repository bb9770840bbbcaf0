"""
Event emission tests.
Tests the structured JSON event envelope and the in-memory event store.
"""
import json
import sys
from io import StringIO
from datetime import datetime, timedelta, timezone

from observability.events import EventEmitter, Component, Severity
from observability.event_store import EventStore


class TestEventFormat:
    """Envelope format."""

    def test_required_fields(self):
        """Test event envelope required fields."""
        old_stdout = sys.stdout
        sys.stdout = captured_output = StringIO()

        try:
            emitter = EventEmitter(Component.INSIGHT_PIPELINE)
            emitter.emit(
                event_type="test.event",
                identity="user_123",
                severity=Severity.INFO,
            )

            event = json.loads(captured_output.getvalue().strip())

            for key in ("ts", "identity", "component", "event_type", "severity", "correlation_id", "pii"):
                assert key in event

            assert event["identity"] == "user_123"
            assert event["component"] == "insight_pipeline"
            assert event["event_type"] == "test.event"
            assert event["severity"] == "info"
            assert event["correlation_id"] == "user_123"

        finally:
            sys.stdout = old_stdout

    def test_timestamp_format(self, capsys):
        """Test event timestamp format."""
        emitter = EventEmitter(Component.CONVERSATION)
        emitter.emit(event_type="test.event", identity="guest")

        event = json.loads(capsys.readouterr().out.strip())
        datetime.fromisoformat(event["ts"].replace("Z", "+00:00"))

    def test_pii_field(self, capsys):
        """Test PII marker on events."""
        emitter = EventEmitter(Component.CONVERSATION)
        emitter.emit(
            event_type="test.event",
            identity="guest",
            pii={"contains_pii": True, "fields": ["transcript"], "handling": "restricted"},
        )

        event = json.loads(capsys.readouterr().out.strip())
        assert event["pii"]["contains_pii"] is True
        assert "transcript" in event["pii"]["fields"]

    def test_optional_fields(self, capsys):
        """Test optional envelope fields."""
        emitter = EventEmitter(Component.ADAPTER)
        emitter.emit(
            event_type="test.event",
            identity="guest",
            provider={"name": "elevenlabs"},
            latency_ms=42,
        )

        event = json.loads(capsys.readouterr().out.strip())
        assert event["provider"]["name"] == "elevenlabs"
        assert event["latency_ms"] == 42


class TestEventTaxonomy:

    def test_state_changed(self, capsys):
        """Test state changed event."""
        emitter = EventEmitter(Component.INSIGHT_PIPELINE)
        emitter.state_changed("guest", "run_1", "idle", "transcribing")

        event = json.loads(capsys.readouterr().out.strip())
        assert event["event_type"] == "pipeline.state_changed"
        assert event["correlation_id"] == "run_1"
        assert event["from_state"] == "idle"
        assert event["to_state"] == "transcribing"

    def test_state_changed_prefix(self, capsys):
        """Test state changed event with a custom prefix."""
        emitter = EventEmitter(Component.PERSONA_WORKFLOW)
        emitter.state_changed("guest", "wf_1", "input", "generating", prefix="persona")

        event = json.loads(capsys.readouterr().out.strip())
        assert event["event_type"] == "persona.state_changed"

    def test_workflow_failed_severity(self, capsys):
        """Test failure event severity by category."""
        emitter = EventEmitter(Component.INSIGHT_PIPELINE)
        emitter.workflow_failed("guest", "run_1", "EmptyRecording", "pre_check", "none")
        emitter.workflow_failed("guest", "run_2", "SynthesisFailed", "synthesizing", "upstream.capacity_limited")

        lines = capsys.readouterr().out.strip().split("\n")
        first, second = (json.loads(line) for line in lines)
        assert first["severity"] == "warn"
        assert second["severity"] == "error"
        assert second["category"] == "upstream.capacity_limited"


class TestEventStore:

    def test_emitter_stores_events(self, capsys):
        """Test that emitted events are retained in the store."""
        store = EventStore()
        emitter = EventEmitter(Component.ENTITLEMENT, store=store)
        emitter.emit("entitlement.recorded", "user_a", entry_count=1)
        emitter.emit("entitlement.recorded", "user_b", entry_count=1)

        events = store.query(identity="user_a")
        assert len(events) == 1
        assert events[0]["entry_count"] == 1
        assert events[0]["component"] == "entitlement"

    def test_query_filters(self):
        """Test event store query filters."""
        store = EventStore()
        now = datetime.now(timezone.utc)
        for i, event_type in enumerate(["a.one", "a.two", "a.one"]):
            store.store({
                "ts": (now + timedelta(seconds=i)).isoformat(),
                "identity": "guest",
                "component": "conversation",
                "event_type": event_type,
                "severity": "info",
                "correlation_id": f"c{i}",
                "pii": {"contains_pii": False, "fields": [], "handling": "none"},
            })

        assert len(store.query(event_type="a.one")) == 2
        assert len(store.query(correlation_id="c1")) == 1
        assert len(store.query(since=now + timedelta(seconds=1))) == 2
        assert len(store.query(limit=1)) == 1

    def test_bounded(self):
        """Test that the event store drops the oldest events when full."""
        store = EventStore(max_events=2)
        for i in range(3):
            store.store({"identity": "guest", "event_type": f"e{i}"})

        stats = store.get_stats()
        assert stats["total_events"] == 2
        assert [e["event_type"] for e in store.query()] == ["e1", "e2"]
