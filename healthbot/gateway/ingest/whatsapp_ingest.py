"""
WhatsApp Ingest — converts WhatsApp Cloud API webhook notifications into
EventEnvelopes.

Meta batches notifications, so one POST may carry several messages:

{
  "object": "whatsapp_business_account",
  "entry": [{
    "changes": [{
      "field": "messages",
      "value": {
        "contacts": [{"profile": {"name": "Asha"}, "wa_id": "919812345678"}],
        "messages": [{
          "from": "919812345678",
          "id": "wamid.HBgM...",
          "timestamp": "1700000000",
          "type": "text",
          "text": {"body": "I have a fever"}
        }],
        "statuses": [...]
      }
    }]
  }]
}

Status updates (sent/delivered/read) produce no envelopes.
"""

from __future__ import annotations

import logging
from typing import Any

from healthbot.gateway.channels import ChannelIngest
from healthbot.gateway.events import EventEnvelope
from healthbot.gateway.records import Channel

logger = logging.getLogger("gateway.ingest.whatsapp")

MEDIA_TYPES = ("image", "audio", "video", "document", "sticker")


class WhatsAppIngest(ChannelIngest):
    """Converts a WhatsApp Cloud API webhook body into EventEnvelopes."""

    channel_name = "whatsapp"

    def to_envelopes(self, raw_input: dict[str, Any]) -> list[EventEnvelope]:
        envelopes: list[EventEnvelope] = []
        for entry in raw_input.get("entry", []) or []:
            for change in entry.get("changes", []) or []:
                value = change.get("value", {}) or {}
                names = {
                    c.get("wa_id", ""): (c.get("profile") or {}).get("name")
                    for c in value.get("contacts", []) or []
                }
                for message in value.get("messages", []) or []:
                    envelope = self._message_to_envelope(message, names)
                    if envelope is not None:
                        envelopes.append(envelope)
        return envelopes

    def _message_to_envelope(
        self, message: dict[str, Any], names: dict[str, Any]
    ) -> EventEnvelope | None:
        sender = str(message.get("from", "") or "")
        if not sender:
            return None
        message_id = message.get("id") or None
        message_type = message.get("type", "text")

        if message_type == "text":
            body = (message.get("text") or {}).get("body", "")
            return EventEnvelope.user_message(
                sender,
                body,
                channel=Channel.WHATSAPP,
                message_id=message_id,
                sender_name=names.get(sender),
                source="whatsapp",
            )

        if message_type == "button":
            body = (message.get("button") or {}).get("text", "")
            return EventEnvelope.user_message(
                sender, body,
                channel=Channel.WHATSAPP,
                message_id=message_id,
                source="whatsapp",
            )

        if message_type == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            return EventEnvelope.user_message(
                sender, reply.get("title", ""),
                channel=Channel.WHATSAPP,
                message_id=message_id,
                source="whatsapp",
            )

        if message_type in MEDIA_TYPES:
            media = message.get(message_type) or {}
            return EventEnvelope.media_message(
                sender,
                message_type=message_type,
                channel=Channel.WHATSAPP,
                media_urls=[media["id"]] if media.get("id") else [],
                caption=media.get("caption", "") or "",
                message_id=message_id,
                source="whatsapp",
            )

        logger.info("Unsupported WhatsApp message type '%s' from %s", message_type, sender)
        return None
