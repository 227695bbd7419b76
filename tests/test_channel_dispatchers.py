"""
Tests for Channel Dispatchers — WhatsApp Cloud API, Twilio SMS, in-memory.

Tests cover:
  - Stub mode (no credentials) — dispatchers succeed gracefully
  - Live sends against a mocked transport/client
  - SMS truncation (Twilio)
  - Error handling for missing recipients and provider errors
  - DispatcherRegistry routing and failure counting
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from healthbot import settings
from healthbot.gateway.channels import AgentResponse, DispatcherRegistry
from healthbot.gateway.dispatchers.memory_dispatcher import InMemoryDispatcher
from healthbot.gateway.dispatchers.twilio_dispatcher import (
    MAX_SMS_LENGTH,
    TwilioSMSDispatcher,
)
from healthbot.gateway.dispatchers.whatsapp_dispatcher import WhatsAppDispatcher

PHONE = "+919812345678"


def response(channel, message="Hello from HealthBot", phone=PHONE):
    metadata = {"phone": phone} if phone else {}
    return AgentResponse(recipient=PHONE, channel=channel, message=message, metadata=metadata)


@pytest.fixture
def no_twilio_credentials(monkeypatch):
    monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", "")
    monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  WhatsApp Dispatcher
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestWhatsAppDispatcher:

    @pytest.mark.asyncio
    async def test_stub_mode_succeeds(self):
        d = WhatsAppDispatcher(token="", phone_number_id="")
        assert d.stub_mode
        result = await d.send(response("whatsapp"))
        assert result.success is True
        assert result.error == "stub_mode"

    @pytest.mark.asyncio
    async def test_missing_phone(self):
        d = WhatsAppDispatcher(token="", phone_number_id="")
        result = await d.send(response("whatsapp", phone=""))
        assert result.success is False
        assert "phone" in result.error

    @pytest.mark.asyncio
    async def test_live_send_posts_graph_payload(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"messages": [{"id": "wamid.out"}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        d = WhatsAppDispatcher(
            token="TOKEN", phone_number_id="12345", api_version="v17.0", http_client=client
        )
        result = await d.send(response("whatsapp"))
        await d.aclose()

        assert result.success is True
        assert captured["url"] == "https://graph.facebook.com/v17.0/12345/messages"
        assert captured["auth"] == "Bearer TOKEN"
        assert captured["body"]["to"] == "919812345678"
        assert captured["body"]["text"]["body"] == "Hello from HealthBot"

    @pytest.mark.asyncio
    async def test_api_error_reported(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad token"))
        )
        d = WhatsAppDispatcher(token="TOKEN", phone_number_id="12345", http_client=client)
        result = await d.send(response("whatsapp"))
        await d.aclose()
        assert result.success is False
        assert result.error == "HTTP 401"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Twilio SMS Dispatcher
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTwilioDispatcher:

    def test_channel_name(self):
        assert TwilioSMSDispatcher().channel_name == "sms"

    @pytest.mark.asyncio
    async def test_stub_mode_succeeds(self, no_twilio_credentials):
        d = TwilioSMSDispatcher()
        assert d.stub_mode
        result = await d.send(response("sms"))
        assert result.success is True
        assert result.error == "stub_mode"

    @pytest.mark.asyncio
    async def test_missing_phone(self, no_twilio_credentials):
        result = await TwilioSMSDispatcher().send(response("sms", phone=""))
        assert result.success is False

    @pytest.mark.asyncio
    async def test_live_send_truncates(self):
        d = TwilioSMSDispatcher(account_sid="AC123", auth_token="secret", from_number="+14155550100")
        client = MagicMock()
        client.messages.create.return_value = MagicMock(sid="SM999")
        d._client = client

        result = await d.send(response("sms", message="x" * 2000))
        assert result.success is True
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["to"] == PHONE
        assert kwargs["from_"] == "+14155550100"
        assert len(kwargs["body"]) == MAX_SMS_LENGTH
        assert kwargs["body"].endswith("...")

    @pytest.mark.asyncio
    async def test_provider_error_reported(self):
        d = TwilioSMSDispatcher(account_sid="AC123", auth_token="secret", from_number="+1")
        client = MagicMock()
        client.messages.create.side_effect = RuntimeError("unreachable")
        d._client = client

        result = await d.send(response("sms"))
        assert result.success is False
        assert "unreachable" in result.error


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Registry + in-memory dispatcher
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRegistry:

    @pytest.mark.asyncio
    async def test_routes_by_channel(self):
        whatsapp = InMemoryDispatcher("whatsapp")
        sms = InMemoryDispatcher("sms")
        registry = DispatcherRegistry()
        registry.register(whatsapp)
        registry.register(sms)

        await registry.dispatch(response("sms", message="via sms"))
        assert sms.messages_for(PHONE) == ["via sms"]
        assert whatsapp.messages_for(PHONE) == []

    @pytest.mark.asyncio
    async def test_unknown_channel_fails(self):
        registry = DispatcherRegistry()
        result = await registry.dispatch(response("telegram"))
        assert result.success is False
        assert registry.failure_count == 1

    @pytest.mark.asyncio
    async def test_raising_dispatcher_is_contained(self):
        class Broken(InMemoryDispatcher):
            async def send(self, response):
                raise ConnectionError("down")

        registry = DispatcherRegistry()
        registry.register(Broken("whatsapp"))
        result = await registry.dispatch(response("whatsapp"))
        assert result.success is False
        assert result.error == "down"
        assert registry.failure_count == 1

    @pytest.mark.asyncio
    async def test_dispatch_all_keeps_order(self):
        memory = InMemoryDispatcher("whatsapp")
        registry = DispatcherRegistry()
        registry.register(memory)
        results = await registry.dispatch_all(
            [response("whatsapp", message="one"), response("whatsapp", message="two")]
        )
        assert all(r.success for r in results)
        assert memory.messages_for(PHONE) == ["one", "two"]

    @pytest.mark.asyncio
    async def test_memory_clear(self):
        memory = InMemoryDispatcher("whatsapp")
        await memory.send(response("whatsapp"))
        memory.clear(PHONE)
        assert memory.messages_for(PHONE) == []
        assert memory.sent == []

    def test_unregister(self):
        registry = DispatcherRegistry()
        registry.register(InMemoryDispatcher("sms"))
        registry.unregister("sms")
        assert registry.registered_channels == []
