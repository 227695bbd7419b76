"""
Channel Abstractions — Inbound ingestion and outbound dispatch.

These ABCs decouple the Gateway and scheduler from any specific
messaging provider.  Adding a channel is:
  1. Implement a ChannelDispatcher subclass
  2. Implement a ChannelIngest subclass
  3. Add a webhook endpoint
  4. Register the dispatcher in setup.py

Outbound delivery is best-effort: a failed send is logged and counted,
never retried here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from healthbot.gateway.events import EventEnvelope

logger = logging.getLogger("gateway.channels")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  OUTBOUND — delivering messages to users
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AgentResponse(BaseModel):
    """A message the assistant wants to send to one phone number."""

    recipient: str          # user id, or "contact:<phone>" for emergency contacts
    channel: str            # Must match a registered ChannelDispatcher.channel_name
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    # e.g. {"phone": "+9198...", "kind": "reminder"}


class DeliveryResult(BaseModel):
    """Outcome of a single message delivery attempt."""

    success: bool
    channel: str
    recipient: str
    error: Optional[str] = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class ChannelDispatcher(ABC):
    """Abstract outbound channel — delivers AgentResponses to a channel."""

    channel_name: str = ""  # overridden by subclasses

    @abstractmethod
    async def send(self, response: AgentResponse) -> DeliveryResult:
        """Deliver a single response. Must not raise — return DeliveryResult."""


class DispatcherRegistry:
    """
    Registry of active ChannelDispatchers.

    The Gateway and scheduler call ``dispatch()`` — they never talk to a
    specific provider directly.
    """

    def __init__(self) -> None:
        self._dispatchers: dict[str, ChannelDispatcher] = {}
        self.failure_count = 0

    def register(self, dispatcher: ChannelDispatcher) -> None:
        name = dispatcher.channel_name
        self._dispatchers[name] = dispatcher
        logger.info("Registered channel dispatcher: %s", name)

    def unregister(self, channel_name: str) -> None:
        self._dispatchers.pop(channel_name, None)

    def get(self, channel_name: str) -> ChannelDispatcher | None:
        return self._dispatchers.get(channel_name)

    @property
    def registered_channels(self) -> list[str]:
        return list(self._dispatchers.keys())

    async def dispatch(self, response: AgentResponse) -> DeliveryResult:
        """Route one response to the correct dispatcher.  Single attempt."""
        dispatcher = self.get(response.channel)
        if dispatcher is None:
            logger.warning(
                "No dispatcher for channel '%s' — message to %s dropped",
                response.channel, response.recipient,
            )
            self.failure_count += 1
            return DeliveryResult(
                success=False,
                channel=response.channel,
                recipient=response.recipient,
                error=f"No dispatcher registered for channel '{response.channel}'",
            )
        try:
            result = await dispatcher.send(response)
        except Exception as exc:
            logger.error(
                "Dispatcher '%s' raised for %s: %s",
                response.channel, response.recipient, exc,
            )
            result = DeliveryResult(
                success=False,
                channel=response.channel,
                recipient=response.recipient,
                error=str(exc),
            )
        if not result.success:
            self.failure_count += 1
            logger.warning(
                "Delivery failed on %s to %s: %s",
                response.channel, response.recipient, result.error,
            )
        return result

    async def dispatch_all(
        self, responses: list[AgentResponse]
    ) -> list[DeliveryResult]:
        """Dispatch every response in order."""
        results: list[DeliveryResult] = []
        for response in responses:
            results.append(await self.dispatch(response))
        return results


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  INBOUND — converting provider webhooks into EventEnvelopes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ChannelIngest(ABC):
    """Abstract inbound channel — converts a raw webhook body into envelopes."""

    channel_name: str = ""

    @abstractmethod
    def to_envelopes(self, raw_input: dict[str, Any]) -> list[EventEnvelope]:
        """Parse provider data into zero or more EventEnvelopes.

        Status callbacks and other non-message payloads yield an empty list.
        """
