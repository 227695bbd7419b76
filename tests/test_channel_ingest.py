"""
Tests for Channel Ingest — WhatsApp Cloud API and Twilio webhooks.

Tests cover:
  - Envelope creation from raw webhook data
  - Phone normalisation (wa_id, whatsapp: prefix)
  - Event type determination (USER_MESSAGE vs MEDIA_MESSAGE)
  - Status callbacks produce nothing
  - WhatsApp vs SMS detection (Twilio)
"""

from healthbot.gateway.events import EventType
from healthbot.gateway.ingest.twilio_ingest import TwilioSMSIngest
from healthbot.gateway.ingest.whatsapp_ingest import WhatsAppIngest
from healthbot.gateway.records import Channel


def whatsapp_body(*messages, contacts=None, statuses=None):
    value = {"messaging_product": "whatsapp"}
    if messages:
        value["messages"] = list(messages)
    if contacts:
        value["contacts"] = contacts
    if statuses:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}],
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  WhatsApp Ingest
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestWhatsAppIngest:

    def test_text_message(self):
        body = whatsapp_body(
            {
                "from": "919812345678",
                "id": "wamid.1",
                "type": "text",
                "text": {"body": "I have a fever"},
            },
            contacts=[{"profile": {"name": "Asha"}, "wa_id": "919812345678"}],
        )
        [envelope] = WhatsAppIngest().to_envelopes(body)
        assert envelope.user_id == "+919812345678"
        assert envelope.channel == Channel.WHATSAPP
        assert envelope.event_type == EventType.USER_MESSAGE
        assert envelope.text == "I have a fever"
        assert envelope.message_id == "wamid.1"
        assert envelope.payload["sender_name"] == "Asha"
        assert envelope.source == "whatsapp"

    def test_batched_messages(self):
        body = whatsapp_body(
            {"from": "919812345678", "id": "a", "type": "text", "text": {"body": "hi"}},
            {"from": "919800000000", "id": "b", "type": "text", "text": {"body": "help"}},
        )
        envelopes = WhatsAppIngest().to_envelopes(body)
        assert [e.message_id for e in envelopes] == ["a", "b"]

    def test_status_update_ignored(self):
        body = whatsapp_body(statuses=[{"id": "wamid.1", "status": "delivered"}])
        assert WhatsAppIngest().to_envelopes(body) == []

    def test_image_with_caption(self):
        body = whatsapp_body({
            "from": "919812345678",
            "id": "wamid.2",
            "type": "image",
            "image": {"id": "MEDIA1", "caption": "rash on my arm"},
        })
        [envelope] = WhatsAppIngest().to_envelopes(body)
        assert envelope.event_type == EventType.MEDIA_MESSAGE
        assert envelope.text == "rash on my arm"
        assert envelope.payload["attachments"] == ["MEDIA1"]

    def test_button_reply(self):
        body = whatsapp_body({
            "from": "919812345678",
            "id": "wamid.3",
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "t", "title": "TAKEN"}},
        })
        [envelope] = WhatsAppIngest().to_envelopes(body)
        assert envelope.text == "TAKEN"

    def test_unsupported_type_dropped(self):
        body = whatsapp_body({"from": "919812345678", "id": "x", "type": "location"})
        assert WhatsAppIngest().to_envelopes(body) == []

    def test_empty_body(self):
        assert WhatsAppIngest().to_envelopes({}) == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Twilio Ingest
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTwilioIngest:

    def test_sms(self):
        [envelope] = TwilioSMSIngest().to_envelopes({
            "MessageSid": "SM123",
            "From": "+91 98123 45678",
            "Body": "chest pain",
            "NumMedia": "0",
        })
        assert envelope.user_id == "+919812345678"
        assert envelope.channel == Channel.SMS
        assert envelope.text == "chest pain"
        assert envelope.message_id == "SM123"
        assert envelope.source == "twilio"

    def test_whatsapp_prefix(self):
        [envelope] = TwilioSMSIngest().to_envelopes({
            "MessageSid": "SM124",
            "From": "whatsapp:+919812345678",
            "Body": "hi",
        })
        assert envelope.channel == Channel.WHATSAPP
        assert envelope.user_id == "+919812345678"

    def test_media_without_body(self):
        [envelope] = TwilioSMSIngest().to_envelopes({
            "MessageSid": "MM1",
            "From": "+919812345678",
            "Body": "",
            "NumMedia": "1",
            "MediaUrl0": "https://api.twilio.com/media/1",
            "MediaContentType0": "image/jpeg",
        })
        assert envelope.event_type == EventType.MEDIA_MESSAGE
        assert envelope.payload["message_type"] == "image"
        assert envelope.payload["attachments"] == ["https://api.twilio.com/media/1"]

    def test_status_callback_ignored(self):
        assert TwilioSMSIngest().to_envelopes({
            "MessageSid": "SM123",
            "From": "+919812345678",
            "MessageStatus": "delivered",
        }) == []

    def test_missing_from(self):
        assert TwilioSMSIngest().to_envelopes({"Body": "hi"}) == []
