"""
Control API routes.

- Read API: entitlement, entries and events per identity
- Billing webhook: premium activation / deactivation

The API never creates entries; recording intake stays with the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel

from journal_core.services import Services
from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent

from .billing import BillingWebhookHandler, WebhookPayloadError, WebhookSignatureError


router = APIRouter()
logger = get_logger(Component.CONTROL_API)


def get_services(request: Request) -> Services:
    return request.app.state.get_services()


class EntitlementResponse(BaseModel):
    identity: str
    entry_count: int
    free_entry_limit: int
    is_premium: bool
    expires_at: Optional[str] = None
    days_remaining: Optional[int] = None
    remaining: Optional[int] = None  # None = unbounded (premium)
    can_create: bool


class EntrySummary(BaseModel):
    id: str
    created_at: str
    summary: str
    voice_id: str
    persona_name: Optional[str] = None
    turns: int


def _parse_ts(value: Optional[str], name: str) -> Optional[datetime]:
    """Parse an ISO timestamp query parameter; naive values are taken as UTC."""
    if not value:
        return None
    try:
        # A literal + may arrive as a space
        clean = value.replace(" ", "+").replace("Z", "+00:00")
        if "+" not in clean and "-" not in clean[-6:]:
            clean += "+00:00"
        return datetime.fromisoformat(clean)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp: {value}")


@router.get("/identities/{identity}/entitlement", response_model=EntitlementResponse)
async def get_entitlement(identity: str, services: Services = Depends(get_services)) -> EntitlementResponse:
    gate = services.gate
    state = gate.state(identity)
    info = gate.subscription_info(identity)
    remaining = state.remaining_free(gate.limit)
    return EntitlementResponse(
        identity=identity,
        entry_count=state.entry_count,
        free_entry_limit=gate.limit,
        is_premium=info.is_premium,
        expires_at=info.expires_at.isoformat() if info.expires_at else None,
        days_remaining=info.days_remaining,
        remaining=None if info.is_premium else int(remaining),
        can_create=info.is_premium or state.entry_count < gate.limit,
    )


@router.get("/identities/{identity}/entries", response_model=List[EntrySummary])
async def list_entries(
    identity: str,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Max entries to return (newest first)"),
    services: Services = Depends(get_services),
) -> List[EntrySummary]:
    entries = services.store.list_entries(identity)
    if limit:
        entries = entries[:limit]
    return [
        EntrySummary(
            id=e.id,
            created_at=e.created_at.isoformat(),
            summary=e.summary,
            voice_id=e.voice_id,
            persona_name=e.persona_name,
            turns=len(e.conversation),
        )
        for e in entries
    ]


@router.get("/identities/{identity}/entries/{entry_id}")
async def get_entry(identity: str, entry_id: str, services: Services = Depends(get_services)) -> dict:
    entry = services.store.get_entry(identity, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry.to_dict()


@router.get("/identities/{identity}/events")
async def get_events(
    identity: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    component: Optional[str] = Query(None, description="Filter by component"),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
    services: Services = Depends(get_services),
) -> dict:
    events = services.event_store.query(
        identity=identity,
        event_type=event_type,
        component=component,
        since=_parse_ts(since, "since"),
        until=_parse_ts(until, "until"),
        limit=limit,
    )
    return {"identity": identity, "events": events, "count": len(events)}


@router.post("/billing/webhook")
async def billing_webhook(
    request: Request,
    billing_signature: Optional[str] = Header(None, alias="Billing-Signature"),
    services: Services = Depends(get_services),
) -> dict:
    body = await request.body()
    handler = BillingWebhookHandler(
        services.gate,
        services.config.billing_webhook_secret,
        services.emitter(ObsComponent.CONTROL_API),
        tolerance_seconds=services.config.billing_tolerance_seconds,
        default_months=services.config.default_premium_months,
    )

    try:
        result = handler.handle(body, billing_signature)
    except WebhookSignatureError as e:
        logger.warning("Billing webhook rejected", reason=str(e), body_size=len(body))
        raise HTTPException(status_code=401, detail="invalid_signature")
    except WebhookPayloadError as e:
        logger.warning("Billing webhook payload invalid", reason=str(e))
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Billing webhook processed", event_type=result.get("type"), status=result.get("status"))
    return result
