"""
Twilio SMS Dispatcher — delivers messages via the Twilio SMS API.

Also used for emergency-contact alerts, which always go out by SMS.

Configuration (environment variables):
  TWILIO_ACCOUNT_SID   — Twilio account SID
  TWILIO_AUTH_TOKEN    — Twilio auth token
  TWILIO_FROM_NUMBER   — Twilio phone number (e.g., "+14155550100")

Without credentials the dispatcher runs in stub mode: messages are
logged and reported as delivered.
"""

from __future__ import annotations

import asyncio
import logging

from twilio.rest import Client

from healthbot import settings
from healthbot.gateway.channels import (
    AgentResponse,
    ChannelDispatcher,
    DeliveryResult,
)

logger = logging.getLogger("gateway.dispatchers.twilio")

# Concatenated SMS limit; Twilio splits into segments itself
MAX_SMS_LENGTH = 1600


class TwilioSMSDispatcher(ChannelDispatcher):
    """Delivers responses via Twilio SMS API."""

    channel_name = "sms"

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
    ) -> None:
        self._account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self._auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self._from_number = from_number or settings.TWILIO_FROM_NUMBER
        self._client: Client | None = None

    @property
    def stub_mode(self) -> bool:
        return not (self._account_sid and self._auth_token)

    def _get_client(self) -> Client | None:
        """Lazy-initialize the Twilio client."""
        if self._client is None and not self.stub_mode:
            self._client = Client(self._account_sid, self._auth_token)
            logger.info("Twilio client initialized")
        return self._client

    async def send(self, response: AgentResponse) -> DeliveryResult:
        """Send an SMS via Twilio."""
        to_number = response.metadata.get("phone", "")

        if not to_number:
            logger.warning("Twilio dispatch: no 'phone' in metadata")
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=response.recipient,
                error="No recipient phone number",
            )

        message_text = response.message
        if len(message_text) > MAX_SMS_LENGTH:
            message_text = message_text[:MAX_SMS_LENGTH - 3] + "..."

        if self.stub_mode:
            logger.info("Twilio stub: SMS → %s: %s", to_number, message_text[:80])
            return DeliveryResult(
                success=True,
                channel=self.channel_name,
                recipient=response.recipient,
                error="stub_mode",
            )

        try:
            client = self._get_client()
            # twilio-python is synchronous
            sms = await asyncio.to_thread(
                client.messages.create,
                body=message_text,
                from_=self._from_number,
                to=to_number,
            )
            logger.info("Twilio SMS sent: SID=%s → %s", sms.sid, to_number)
            return DeliveryResult(
                success=True,
                channel=self.channel_name,
                recipient=response.recipient,
            )
        except Exception as exc:
            logger.error("Twilio SMS send error: %s", exc)
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=response.recipient,
                error=str(exc),
            )
