"""
Billing webhook handling.

The payment processor posts signed JSON events:

    Billing-Signature: t=<unix ts>,v1=<hex hmac>

where the HMAC is SHA-256 over "<ts>.<raw body>" keyed with
BILLING_WEBHOOK_SECRET. Events older (or newer) than the tolerance window
are rejected so a captured request can't be replayed later.

Handled event types:
- checkout.completed      -> activate premium for data.object.client_reference_id
- subscription.cancelled  -> deactivate premium for the same identity
Anything else is acknowledged and ignored.
"""
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

from journal_core.entitlement import EntitlementGate
from logging_setup import get_logger, Component
from observability.events import EventEmitter


SIGNATURE_HEADER = "Billing-Signature"
DEFAULT_MONTHS = 12

logger = get_logger(Component.CONTROL_API)


class WebhookSignatureError(ValueError):
    """Signature header missing, malformed, stale or not matching."""


class WebhookPayloadError(ValueError):
    """Signed body is not a usable billing event."""


def compute_signature(secret: str, timestamp: int, body: bytes) -> str:
    signed = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign_payload(secret: str, body: bytes, timestamp: Optional[int] = None) -> str:
    """Build a Billing-Signature header value (used by tests and local tooling)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(secret, timestamp, body)}"


def parse_signature_header(header: str) -> Tuple[int, list]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("invalid signature timestamp")
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("malformed signature header")
    return timestamp, signatures


def _parse_months(value: Any) -> Optional[int]:
    """Whole months as a JSON integer or a digit string (metadata values are strings)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class BillingWebhookHandler:
    """Verifies billing events and applies them to the entitlement gate."""

    def __init__(
        self,
        gate: EntitlementGate,
        secret: Optional[str],
        emitter: EventEmitter,
        tolerance_seconds: int = 300,
        default_months: int = DEFAULT_MONTHS,
        clock: Callable[[], float] = time.time,
    ):
        self.gate = gate
        self.secret = secret
        self.emitter = emitter
        self.tolerance_seconds = tolerance_seconds
        self.default_months = default_months
        self.clock = clock

    def verify(self, body: bytes, header: Optional[str]) -> None:
        """Raise WebhookSignatureError unless the body is signed with our secret."""
        if not self.secret:
            raise WebhookSignatureError("billing webhook secret not configured")
        if not header:
            raise WebhookSignatureError(f"missing {SIGNATURE_HEADER} header")

        timestamp, signatures = parse_signature_header(header)
        if abs(self.clock() - timestamp) > self.tolerance_seconds:
            raise WebhookSignatureError("signature timestamp outside tolerance")

        expected = compute_signature(self.secret, timestamp, body)
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise WebhookSignatureError("signature mismatch")

    def handle(self, body: bytes, header: Optional[str]) -> Dict[str, Any]:
        self.verify(body, header)

        try:
            event = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise WebhookPayloadError(f"invalid JSON: {e}")
        if not isinstance(event, dict):
            raise WebhookPayloadError("event must be a JSON object")

        event_type = event.get("type")
        data = event.get("data") or {}
        if not isinstance(data, dict):
            raise WebhookPayloadError("data must be a JSON object")
        obj = data.get("object") or {}
        if not isinstance(obj, dict):
            raise WebhookPayloadError("data.object must be a JSON object")

        if event_type == "checkout.completed":
            return self._checkout_completed(event, obj)
        if event_type == "subscription.cancelled":
            return self._subscription_cancelled(event, obj)

        logger.debug("Billing event ignored", event_type=event_type)
        return {"status": "ignored", "type": event_type}

    def _identity(self, obj: Dict[str, Any]) -> str:
        identity = obj.get("client_reference_id")
        if not isinstance(identity, str) or not identity.strip():
            raise WebhookPayloadError("client_reference_id is required")
        return identity.strip()

    def _checkout_completed(self, event: Dict[str, Any], obj: Dict[str, Any]) -> Dict[str, Any]:
        identity = self._identity(obj)
        metadata = obj.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise WebhookPayloadError("metadata must be a JSON object")
        months_raw = metadata.get("months", self.default_months)
        months = _parse_months(months_raw)
        if months is None or months < 1:
            raise WebhookPayloadError(f"invalid months: {months_raw!r}")

        state = self.gate.activate_premium(identity, duration_months=months)
        self.emitter.emit(
            "billing.premium_activated",
            identity,
            correlation_id=event.get("id"),
            months=months,
            expires_at=state.premium_expires_at,
        )
        return {
            "status": "ok",
            "type": "checkout.completed",
            "identity": identity,
            "expires_at": state.premium_expires_at.isoformat(),
        }

    def _subscription_cancelled(self, event: Dict[str, Any], obj: Dict[str, Any]) -> Dict[str, Any]:
        identity = self._identity(obj)
        self.gate.deactivate_premium(identity)
        self.emitter.emit(
            "billing.premium_deactivated",
            identity,
            correlation_id=event.get("id"),
        )
        return {"status": "ok", "type": "subscription.cancelled", "identity": identity}
