"""
Assistant API — direct HTTP access to the turn pipeline and reminders.

Endpoints:
  POST   /api/assistant/messages                               Process one message, wait for the reply
  GET    /api/assistant/status                                 Queue + channel info
  GET    /api/assistant/health                                 Detailed gateway health
  GET    /api/assistant/metrics                                Processing metrics
  GET    /api/assistant/users/{user_id}                        Read a user's state
  GET    /api/assistant/users/{user_id}/alerts                 Emergency alerts for a user
  POST   /api/assistant/users/{user_id}/medications            Add a medication
  GET    /api/assistant/users/{user_id}/medications            List medications
  DELETE /api/assistant/users/{user_id}/medications/{med_id}   Deactivate a medication
  GET    /api/assistant/users/{user_id}/adherence              Daily or weekly adherence report
  POST   /api/assistant/tick                                   Run one reminder tick now
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from healthbot.gateway.events import EventEnvelope
from healthbot.gateway.medications import MedicationInput, MedicationValidationError
from healthbot.gateway.records import Channel, normalize_phone
from healthbot.gateway.store import MedicationNotFoundError, UserNotFoundError

logger = logging.getLogger("gateway.api")

router = APIRouter(prefix="/api/assistant", tags=["assistant"])


# ── Request / Response Models ──


class MessageRequest(BaseModel):
    """Request body for POST /api/assistant/messages."""

    phone: str
    text: str = ""
    channel: Channel = Channel.WHATSAPP
    message_id: Optional[str] = None


class StatusResponse(BaseModel):
    status: str = "ok"
    active_queues: int = 0
    active_users: list[str] = Field(default_factory=list)
    registered_channels: list[str] = Field(default_factory=list)
    scheduler_running: bool = False


class TickRequest(BaseModel):
    now: Optional[datetime] = None


def _require_gateway():
    from healthbot.gateway.setup import get_gateway

    gateway = get_gateway()
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")
    return gateway


def _require_scheduler():
    from healthbot.gateway.setup import get_scheduler

    scheduler = get_scheduler()
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


# ── Conversation ──


@router.post("/messages")
async def post_message(request: MessageRequest):
    """
    Process one inbound message through the per-user queue and return the
    turn outcome.  A duplicate message_id returns ``{"duplicate": true}``.
    """
    from healthbot.gateway.setup import get_queue_manager

    gateway = _require_gateway()
    envelope = EventEnvelope.user_message(
        request.phone,
        request.text,
        channel=request.channel,
        message_id=request.message_id,
        source="api",
    )

    queue_manager = get_queue_manager()
    if queue_manager is not None:
        result = await queue_manager.process(envelope)
    else:
        result = await gateway.process_inbound_message(envelope)

    if result is None:
        return {"user_id": envelope.user_id, "duplicate": True}
    return result.to_dict()


@router.get("/status", response_model=StatusResponse)
async def assistant_status():
    """Active queue info for the Gateway."""
    from healthbot.gateway.setup import (
        get_dispatcher_registry,
        get_gateway,
        get_queue_manager,
        get_scheduler,
    )

    if get_gateway() is None:
        return StatusResponse(status="not_initialized")

    queue_manager = get_queue_manager()
    dispatcher_registry = get_dispatcher_registry()
    scheduler = get_scheduler()
    return StatusResponse(
        status="ok",
        active_queues=queue_manager.active_count if queue_manager else 0,
        active_users=queue_manager.active_users if queue_manager else [],
        registered_channels=(
            dispatcher_registry.registered_channels if dispatcher_registry else []
        ),
        scheduler_running=scheduler.is_running if scheduler else False,
    )


@router.get("/health")
async def assistant_health():
    from healthbot.gateway.setup import get_gateway

    gateway = get_gateway()
    if gateway is None:
        return {"healthy": False, "reason": "Gateway not initialized"}
    return gateway.health_check()


@router.get("/metrics")
async def assistant_metrics():
    return _require_gateway().get_metrics()


# ── Users ──


@router.get("/users/{user_id}")
async def get_user(user_id: str):
    gateway = _require_gateway()
    try:
        state, version = await asyncio.to_thread(
            gateway.store.load_user, normalize_phone(user_id)
        )
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown user {user_id}")
    data = state.model_dump(mode="json")
    data["version"] = version
    return data


@router.get("/users/{user_id}/alerts")
async def get_alerts(user_id: str):
    gateway = _require_gateway()
    uid = normalize_phone(user_id)
    alerts = await asyncio.to_thread(gateway.store.list_alerts, uid)
    return {
        "user_id": uid,
        "count": len(alerts),
        "alerts": [a.model_dump(mode="json") for a in alerts],
    }


# ── Medications ──


@router.post("/users/{user_id}/medications", status_code=201)
async def add_medication(user_id: str, request_body: MedicationInput):
    scheduler = _require_scheduler()
    try:
        med = await scheduler.add_medication(normalize_phone(user_id), request_body)
    except MedicationValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return med.model_dump(mode="json")


@router.get("/users/{user_id}/medications")
async def list_medications(user_id: str, active_only: bool = False):
    scheduler = _require_scheduler()
    uid = normalize_phone(user_id)
    meds = await scheduler.list_medications(uid, active_only=active_only)
    return {
        "user_id": uid,
        "count": len(meds),
        "medications": [m.model_dump(mode="json") for m in meds],
    }


@router.delete("/users/{user_id}/medications/{medication_id}")
async def deactivate_medication(user_id: str, medication_id: str):
    scheduler = _require_scheduler()
    try:
        med = await scheduler.deactivate_medication(
            normalize_phone(user_id), medication_id, "removed via api"
        )
    except MedicationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown medication {medication_id}")
    return med.model_dump(mode="json")


@router.get("/users/{user_id}/adherence")
async def adherence_report(user_id: str, period: str = "daily"):
    scheduler = _require_scheduler()
    uid = normalize_phone(user_id)
    if period == "weekly":
        report = await scheduler.weekly_review_for(uid)
    elif period == "daily":
        report = await scheduler.daily_report_for(uid)
    else:
        raise HTTPException(status_code=400, detail="period must be 'daily' or 'weekly'")
    return {"user_id": uid, "period": period, "report": report}


@router.post("/tick")
async def run_tick(request: TickRequest | None = None):
    """Run one reminder tick immediately (ops / testing)."""
    scheduler = _require_scheduler()
    report = await scheduler.run_tick(request.now if request else None)
    return report.to_dict()

