"""
WhatsApp Dispatcher — delivers text messages via the WhatsApp Cloud API
(Meta Graph API).

Configuration (environment variables):
  WHATSAPP_TOKEN            — permanent or system-user access token
  WHATSAPP_PHONE_NUMBER_ID  — sender phone-number id
  WHATSAPP_API_VERSION      — Graph API version (default "v17.0")

Without a token the dispatcher runs in stub mode.
"""

from __future__ import annotations

import logging

import httpx

from healthbot import settings
from healthbot.gateway.channels import (
    AgentResponse,
    ChannelDispatcher,
    DeliveryResult,
)

logger = logging.getLogger("gateway.dispatchers.whatsapp")

GRAPH_API_BASE = "https://graph.facebook.com"
MAX_WHATSAPP_LENGTH = 4096


class WhatsAppDispatcher(ChannelDispatcher):
    """Delivers responses as WhatsApp text messages."""

    channel_name = "whatsapp"

    def __init__(
        self,
        token: str | None = None,
        phone_number_id: str | None = None,
        api_version: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token if token is not None else settings.WHATSAPP_TOKEN
        self._phone_number_id = phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID
        self._api_version = api_version or settings.WHATSAPP_API_VERSION
        self._client = http_client

    @property
    def stub_mode(self) -> bool:
        return not (self._token and self._phone_number_id)

    @property
    def url(self) -> str:
        return f"{GRAPH_API_BASE}/{self._api_version}/{self._phone_number_id}/messages"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, response: AgentResponse) -> DeliveryResult:
        phone = response.metadata.get("phone", "")
        if not phone:
            logger.warning("WhatsApp dispatch: no 'phone' in metadata")
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=response.recipient,
                error="No recipient phone number",
            )

        body = response.message
        if len(body) > MAX_WHATSAPP_LENGTH:
            body = body[:MAX_WHATSAPP_LENGTH - 3] + "..."

        if self.stub_mode:
            logger.info("WhatsApp stub: → %s: %s", phone, body[:80])
            return DeliveryResult(
                success=True,
                channel=self.channel_name,
                recipient=response.recipient,
                error="stub_mode",
            )

        payload = {
            "messaging_product": "whatsapp",
            "to": phone.lstrip("+"),
            "type": "text",
            "text": {"body": body},
        }
        headers = {"Authorization": f"Bearer {self._token}"}

        try:
            resp = await self._get_client().post(self.url, json=payload, headers=headers)
            resp.raise_for_status()
            logger.info("WhatsApp message sent → %s", phone)
            return DeliveryResult(
                success=True,
                channel=self.channel_name,
                recipient=response.recipient,
            )
        except httpx.HTTPStatusError as exc:
            logger.error(
                "WhatsApp API error %s for %s: %s",
                exc.response.status_code, phone, exc.response.text[:200],
            )
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=response.recipient,
                error=f"HTTP {exc.response.status_code}",
            )
        except httpx.HTTPError as exc:
            logger.error("WhatsApp send error for %s: %s", phone, exc)
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=response.recipient,
                error=str(exc),
            )
