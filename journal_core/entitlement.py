"""
Entitlement gate: free-tier entry limit and premium subscription state.

Policy:
- free identities may create entries while entry_count < limit
- premium identities are unbounded until premium_expires_at
- an expired premium record is cleared (and persisted) on first read
- guests share a single bucket, distinct from every signed-in identity

The gate never blocks the pipeline itself; callers run ensure_can_create()
before starting one. record_creation() is the only place the count moves.
"""
import calendar
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter

from .errors import EntitlementExceeded
from .models import UNBOUNDED, EntitlementState, utc_now
from .store import EntryStore


GUEST_IDENTITY = "guest"

logger = get_logger(Component.ENTITLEMENT)


def resolve_identity(user_id: Optional[str]) -> str:
    """Identity bucket for an (optional) authenticated user id."""
    if user_id:
        return f"user_{user_id}"
    return GUEST_IDENTITY


def add_months(start: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


@dataclass
class SubscriptionInfo:
    is_premium: bool
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "is_premium": self.is_premium,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "days_remaining": self.days_remaining,
        }


class EntitlementGate:
    def __init__(
        self,
        store: EntryStore,
        limit: int = 3,
        now: Callable[[], datetime] = utc_now,
        emitter: Optional[EventEmitter] = None,
    ):
        if limit < 0:
            raise ValueError("limit must be >= 0")
        self.store = store
        self.limit = limit
        self.now = now
        self.emitter = emitter or EventEmitter(ObsComponent.ENTITLEMENT)

    def _load(self, identity: str) -> EntitlementState:
        """Load state, clearing an expired premium record on the way."""
        state = self.store.load_entitlement(identity)
        if state.is_premium and (
            state.premium_expires_at is None or state.premium_expires_at <= self.now()
        ):
            expired_at = state.premium_expires_at
            state.is_premium = False
            state.premium_expires_at = None
            state.premium_activated_at = None
            self.store.save_entitlement(state)
            logger.info("Premium expired, cleared", identity=identity, expired_at=expired_at)
            self.emitter.emit("entitlement.premium_expired", identity, expired_at=expired_at)
        return state

    def state(self, identity: str) -> EntitlementState:
        return self._load(identity)

    def is_premium(self, identity: str) -> bool:
        return self._load(identity).is_premium

    def can_create(self, identity: str) -> bool:
        state = self._load(identity)
        return state.is_premium or state.entry_count < self.limit

    def remaining(self, identity: str) -> Union[int, float]:
        """Free entries left, or UNBOUNDED for premium identities."""
        return self._load(identity).remaining_free(self.limit)

    def ensure_can_create(self, identity: str) -> None:
        """Raise EntitlementExceeded when a new entry is not allowed."""
        state = self._load(identity)
        if state.is_premium or state.entry_count < self.limit:
            return
        logger.info(
            "Entry creation refused",
            identity=identity,
            entry_count=state.entry_count,
            limit=self.limit,
        )
        raise EntitlementExceeded(
            f"free entry limit reached ({state.entry_count}/{self.limit})",
        )

    def record_creation(self, identity: str) -> EntitlementState:
        """Count one successfully created entry."""
        state = self._load(identity)
        state.entry_count += 1
        self.store.save_entitlement(state)
        logger.debug("Entry counted", identity=identity, entry_count=state.entry_count)
        return state

    def activate_premium(self, identity: str, duration_months: int = 12) -> EntitlementState:
        if duration_months < 1:
            raise ValueError("duration_months must be >= 1")
        now = self.now()
        state = self.store.load_entitlement(identity)
        state.is_premium = True
        state.premium_activated_at = now
        state.premium_expires_at = add_months(now, duration_months)
        self.store.save_entitlement(state)
        logger.info(
            "Premium activated",
            identity=identity,
            duration_months=duration_months,
            expires_at=state.premium_expires_at,
        )
        return state

    def deactivate_premium(self, identity: str) -> EntitlementState:
        """Drop premium immediately; the entry count is kept."""
        state = self.store.load_entitlement(identity)
        state.is_premium = False
        state.premium_expires_at = None
        state.premium_activated_at = None
        self.store.save_entitlement(state)
        logger.info("Premium deactivated", identity=identity)
        return state

    def subscription_info(self, identity: str) -> SubscriptionInfo:
        state = self._load(identity)
        if not state.is_premium or state.premium_expires_at is None:
            return SubscriptionInfo(is_premium=False)
        seconds = (state.premium_expires_at - self.now()).total_seconds()
        days = max(0, math.ceil(seconds / 86400))
        return SubscriptionInfo(
            is_premium=True,
            expires_at=state.premium_expires_at,
            days_remaining=days,
        )
