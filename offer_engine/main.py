"""
Offer Lifecycle Engine - API
============================
FastAPI application for customer responses, manual overrides,
sweep triggering and audit reads
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from offer_engine.actions.customer_actions import CustomerActionHandler
from offer_engine.config import EngineSettings, get_settings
from offer_engine.core.errors import (
    AlreadyResolved,
    IllegalTransition,
    InvalidAction,
    OfferEngineError,
    OfferNotFound,
    StoreUnavailable,
    VersionConflict,
)
from offer_engine.core.offer_fsm import HistoryEntry, Offer
from offer_engine.core.offer_states import OfferStatus
from offer_engine.db.database import get_session_factory
from offer_engine.db.offer_store import SqlOfferStore
from offer_engine.notify.notifier import Notifier, build_notifier
from offer_engine.sweep.orchestrator import SweepOrchestrator

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Offer Lifecycle Engine",
    description="Offer follow-up, escalation and expiry with an audit trail",
    version="1.0.0"
)


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_store() -> SqlOfferStore:
    return SqlOfferStore(get_session_factory())


def get_notifier(settings: EngineSettings = Depends(get_settings)) -> Notifier:
    return build_notifier(settings, get_session_factory())


def get_action_handler(
    store: SqlOfferStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    settings: EngineSettings = Depends(get_settings),
) -> CustomerActionHandler:
    return CustomerActionHandler(store, notifier, settings)


def get_orchestrator(
    store: SqlOfferStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    settings: EngineSettings = Depends(get_settings),
) -> SweepOrchestrator:
    return SweepOrchestrator(store, notifier, settings)


# ── Errors ────────────────────────────────────────────────────────────────────

ERROR_STATUS_CODES = {
    OfferNotFound: 404,
    AlreadyResolved: 409,
    VersionConflict: 412,
    IllegalTransition: 422,
    InvalidAction: 422,
    StoreUnavailable: 503,
}


@app.exception_handler(OfferEngineError)
async def offer_engine_error_handler(request: Request, exc: OfferEngineError):
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": str(exc)},
    )


# ── Request Models ────────────────────────────────────────────────────────────

class CustomerActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["accept", "reject"]
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    note: Optional[str] = None


class ManualOverrideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: OfferStatus
    actor_id: str = Field(alias="actorId")
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")
    note: Optional[str] = None


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


def _offer_to_dict(offer: Offer) -> dict:
    return {
        "id": offer.id,
        "title": offer.title,
        "customerName": offer.customer_name,
        "amount": str(offer.amount) if offer.amount is not None else None,
        "currency": offer.currency,
        "status": offer.status.value,
        "sentAt": offer.sent_at.isoformat() if offer.sent_at else None,
        "lastTransitionAt": offer.last_transition_at.isoformat() if offer.last_transition_at else None,
        "notificationsSent": sorted(offer.notifications_sent),
        "assignedOwnerId": offer.assigned_owner_id,
        "customerContactId": offer.customer_contact_id,
        "version": offer.version,
        "createdAt": offer.created_at.isoformat() if offer.created_at else None,
    }


def _history_to_dict(entry: HistoryEntry) -> dict:
    return {
        "fromStatus": entry.from_status.value,
        "toStatus": entry.to_status.value,
        "trigger": entry.trigger.value,
        "actorId": entry.actor_id,
        "note": entry.note,
        "occurredAt": entry.occurred_at.isoformat(),
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": "Offer Lifecycle Engine",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.get("/offers")
async def list_offers(
    limit: int = 50,
    status: Optional[OfferStatus] = None,
    store: SqlOfferStore = Depends(get_store),
):
    """List offers with optional status filter"""
    offers = await store.list_offers(status=status, limit=limit)
    return {
        "count": len(offers),
        "offers": [_offer_to_dict(o) for o in offers],
    }


@app.get("/offers/{offer_id}")
async def get_offer(offer_id: str, store: SqlOfferStore = Depends(get_store)):
    """Get current state of an offer"""
    return _offer_to_dict(await store.get_offer(offer_id))


@app.get("/offers/{offer_id}/history")
async def get_offer_history(offer_id: str, store: SqlOfferStore = Depends(get_store)):
    """Get full status history for an offer (audit trail)"""
    offer = await store.get_offer(offer_id)
    history = await store.get_history(offer_id)
    return {
        "offerId": offer_id,
        "currentStatus": offer.status.value,
        "entryCount": len(history),
        "entries": [_history_to_dict(e) for e in history],
    }


@app.post("/offers/{offer_id}/respond")
async def respond_to_offer(
    offer_id: str,
    request: CustomerActionRequest,
    handler: CustomerActionHandler = Depends(get_action_handler),
):
    """
    Customer accepts or rejects an offer.

    409 already_resolved: the offer was already decided.
    412 version_conflict: the customer saw stale data and should reload.
    """
    result = await handler.apply_customer_action(
        offer_id,
        request.action,
        expected_version=request.expected_version,
        actor_id=request.customer_id,
        note=request.note,
    )
    return {"status": result.status.value, "version": result.version}


@app.post("/offers/{offer_id}/override")
async def override_offer_status(
    offer_id: str,
    request: ManualOverrideRequest,
    handler: CustomerActionHandler = Depends(get_action_handler),
):
    """Staff moves an offer along the lifecycle by hand"""
    result = await handler.apply_manual_override(
        offer_id,
        request.status,
        actor_id=request.actor_id,
        expected_version=request.expected_version,
        note=request.note,
    )
    return result.to_dict()


@app.post("/sweeps")
async def trigger_sweep(
    request: Optional[SweepRequest] = None,
    orchestrator: SweepOrchestrator = Depends(get_orchestrator),
):
    """Run a sweep now. 503 if the run was aborted so the caller can retry."""
    report = await orchestrator.run_sweep(request.now if request else None)
    return JSONResponse(
        status_code=503 if report.failed else 200,
        content=report.to_dict(),
    )


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=get_settings().log_level)
    uvicorn.run(app, host="0.0.0.0", port=8000)
