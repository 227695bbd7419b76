"""
Channel Webhooks — inbound messages from WhatsApp Cloud API and Twilio.

Endpoints:
  GET  /webhook/whatsapp     Meta verification handshake
  POST /webhook/whatsapp     WhatsApp Cloud API notifications
  POST /webhook/sms          Twilio incoming SMS / WhatsApp-via-Twilio

Both POST endpoints acknowledge immediately; replies go out through the
channel dispatchers once the per-user queue has processed the turn.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response

from healthbot import settings
from healthbot.gateway.events import EventEnvelope
from healthbot.gateway.ingest.twilio_ingest import TwilioSMSIngest
from healthbot.gateway.ingest.whatsapp_ingest import WhatsAppIngest

logger = logging.getLogger("gateway.webhooks")

router = APIRouter(prefix="/webhook", tags=["webhooks"])

EMPTY_TWIML = "<?xml version=\"1.0\" encoding=\"UTF-8\"?><Response></Response>"

_whatsapp_ingest = WhatsAppIngest()
_twilio_ingest = TwilioSMSIngest()


def _consume_result(future) -> None:
    if not future.cancelled():
        future.exception()


async def _submit_all(envelopes: list[EventEnvelope]) -> int:
    from healthbot.gateway.setup import get_queue_manager

    queue_manager = get_queue_manager()
    if queue_manager is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")

    for envelope in envelopes:
        # The queue worker logs any processing error
        future = await queue_manager.submit(envelope)
        future.add_done_callback(_consume_result)
    return len(envelopes)


@router.get("/whatsapp")
async def verify_whatsapp(
    hub_mode: str = Query("", alias="hub.mode"),
    hub_verify_token: str = Query("", alias="hub.verify_token"),
    hub_challenge: str = Query("", alias="hub.challenge"),
):
    """Echo the challenge when Meta presents our verify token."""
    if (
        hub_mode == "subscribe"
        and settings.WHATSAPP_VERIFY_TOKEN
        and hub_verify_token == settings.WHATSAPP_VERIFY_TOKEN
    ):
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(hub_challenge)
    logger.warning("WhatsApp webhook verification failed (mode=%s)", hub_mode)
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp")
async def whatsapp_webhook(request_body: dict[str, Any]):
    """
    WhatsApp Cloud API webhook.

    Status notifications and unsupported message types produce no
    envelopes and are acknowledged without processing.
    """
    try:
        envelopes = _whatsapp_ingest.to_envelopes(request_body)
    except Exception as exc:
        logger.error("WhatsApp ingest error: %s", exc, exc_info=True)
        # Always 200 so Meta does not retry a payload we cannot parse
        return {"status": "ignored"}

    accepted = await _submit_all(envelopes)
    return {"status": "ok", "accepted": accepted}


@router.post("/sms")
async def twilio_webhook(request: Request):
    """
    Twilio incoming SMS/WhatsApp webhook.

    Twilio posts form-encoded parameters; JSON bodies are accepted too.
    Returns empty TwiML — replies are sent via the TwilioSMSDispatcher.
    """
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            raw = await request.json()
        else:
            form = await request.form()
            raw = {key: value for key, value in form.items()}
        envelopes = _twilio_ingest.to_envelopes(raw)
    except Exception as exc:
        logger.error("Twilio ingest error: %s", exc, exc_info=True)
        # Don't send an error to the user's phone
        return Response(content=EMPTY_TWIML, media_type="application/xml")

    await _submit_all(envelopes)
    return Response(content=EMPTY_TWIML, media_type="application/xml")
