"""
Event Envelope — Universal inbound message format for the HealthBot Gateway.

Every message that reaches the turn pipeline (WhatsApp webhook, Twilio
SMS webhook, direct API call) is wrapped in the same EventEnvelope,
keyed by the sender's normalized phone number.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from healthbot.gateway.records import Channel, normalize_phone


class EventType(str, Enum):
    """All event types recognised by the Gateway."""

    USER_MESSAGE = "USER_MESSAGE"
    MEDIA_MESSAGE = "MEDIA_MESSAGE"  # image / audio / document without usable text


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EventEnvelope(BaseModel):
    """Universal event wrapper — the only object that enters the Gateway."""

    event_id: str = Field(default_factory=_new_uuid)
    event_type: EventType = EventType.USER_MESSAGE
    user_id: str
    channel: Channel = Channel.WHATSAPP
    payload: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    # Provider message id (WhatsApp wamid / Twilio MessageSid), used for dedupe
    message_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)

    model_config = {"use_enum_values": False}

    @property
    def text(self) -> str:
        return str(self.payload.get("text", "") or "")

    @property
    def phone(self) -> str:
        return str(self.payload.get("phone", "") or self.user_id)

    # ── Convenience factories ──

    @classmethod
    def user_message(
        cls,
        phone: str,
        text: str,
        *,
        channel: Channel = Channel.WHATSAPP,
        message_id: str | None = None,
        sender_name: str | None = None,
        source: str = "",
    ) -> EventEnvelope:
        user_id = normalize_phone(phone)
        return cls(
            event_type=EventType.USER_MESSAGE,
            user_id=user_id,
            channel=channel,
            payload={
                "text": text,
                "phone": user_id,
                "sender_name": sender_name,
                "message_type": "text",
            },
            source=source or channel.value,
            message_id=message_id,
        )

    @classmethod
    def media_message(
        cls,
        phone: str,
        *,
        message_type: str,
        channel: Channel = Channel.WHATSAPP,
        media_urls: list[str] | None = None,
        caption: str = "",
        message_id: str | None = None,
        source: str = "",
    ) -> EventEnvelope:
        user_id = normalize_phone(phone)
        return cls(
            event_type=EventType.MEDIA_MESSAGE,
            user_id=user_id,
            channel=channel,
            payload={
                "text": caption,
                "phone": user_id,
                "message_type": message_type,
                "attachments": media_urls or [],
            },
            source=source or channel.value,
            message_id=message_id,
        )
