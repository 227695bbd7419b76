"""
In-Memory Dispatcher — records responses instead of delivering them.

Registered for every channel when ``HEALTHBOT_DISPATCH_MODE=memory`` so
the assistant can run locally and in tests without provider credentials.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from healthbot.gateway.channels import (
    AgentResponse,
    ChannelDispatcher,
    DeliveryResult,
)

logger = logging.getLogger("gateway.dispatchers.memory")


class InMemoryDispatcher(ChannelDispatcher):
    """Stores responses in memory, keyed by recipient."""

    def __init__(self, channel_name: str = "whatsapp", fail: bool = False) -> None:
        self.channel_name = channel_name
        self.fail = fail
        self.sent: list[AgentResponse] = []
        self._by_recipient: dict[str, list[AgentResponse]] = defaultdict(list)

    async def send(self, response: AgentResponse) -> DeliveryResult:
        if self.fail:
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=response.recipient,
                error="simulated failure",
            )
        self.sent.append(response)
        self._by_recipient[response.recipient].append(response)
        logger.debug(
            "Memory dispatcher stored %s message for %s",
            self.channel_name, response.recipient,
        )
        return DeliveryResult(
            success=True,
            channel=self.channel_name,
            recipient=response.recipient,
        )

    def messages_for(self, recipient: str) -> list[str]:
        return [r.message for r in self._by_recipient.get(recipient, [])]

    def clear(self, recipient: str | None = None) -> None:
        """Clear stored responses. If recipient is None, clear everything."""
        if recipient:
            self._by_recipient.pop(recipient, None)
            self.sent = [r for r in self.sent if r.recipient != recipient]
        else:
            self._by_recipient.clear()
            self.sent.clear()
