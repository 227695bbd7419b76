"""
Twilio Ingest — converts Twilio SMS/WhatsApp webhook bodies into
EventEnvelopes for the Gateway.

Twilio sends a POST with form data for each incoming message.

Expected webhook body (Twilio incoming message):
{
  "MessageSid": "SM...",
  "From": "+919812345678",       # or "whatsapp:+919812345678"
  "To": "+14155550100",          # your Twilio number
  "Body": "Message text",
  "NumMedia": "1",
  "MediaUrl0": "https://...",
  "MediaContentType0": "image/jpeg"
}

Delivery status callbacks carry ``MessageStatus`` and no ``Body``; they
produce no envelopes.
"""

from __future__ import annotations

import logging
from typing import Any

from healthbot.gateway.channels import ChannelIngest
from healthbot.gateway.events import EventEnvelope
from healthbot.gateway.records import Channel

logger = logging.getLogger("gateway.ingest.twilio")


class TwilioSMSIngest(ChannelIngest):
    """Converts Twilio incoming SMS/WhatsApp webhook into EventEnvelope."""

    channel_name = "sms"

    def to_envelopes(self, raw_input: dict[str, Any]) -> list[EventEnvelope]:
        from_number = str(raw_input.get("From", "") or "")
        if not from_number:
            logger.warning("Twilio webhook without 'From' — ignored")
            return []

        if "MessageStatus" in raw_input and "Body" not in raw_input:
            logger.debug(
                "Twilio status callback %s: %s",
                raw_input.get("MessageSid", ""), raw_input.get("MessageStatus"),
            )
            return []

        channel = Channel.WHATSAPP if from_number.startswith("whatsapp:") else Channel.SMS
        text = str(raw_input.get("Body", "") or "")
        message_sid = raw_input.get("MessageSid") or None

        num_media = int(raw_input.get("NumMedia", "0") or "0")
        media_urls = []
        for i in range(num_media):
            url = raw_input.get(f"MediaUrl{i}", "")
            if url:
                media_urls.append(url)

        if media_urls and not text.strip():
            content_type = str(raw_input.get("MediaContentType0", "") or "")
            return [
                EventEnvelope.media_message(
                    from_number,
                    message_type=content_type.split("/")[0] or "media",
                    channel=channel,
                    media_urls=media_urls,
                    message_id=message_sid,
                    source="twilio",
                )
            ]

        return [
            EventEnvelope.user_message(
                from_number,
                text,
                channel=channel,
                message_id=message_sid,
                source="twilio",
            )
        ]
