"""
Centralized configuration for HealthBot.
All env-based constants live here; modules import `settings` and read attributes.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Storage ---
# "memory" keeps everything in-process (dev / tests); "gcs" persists to a bucket
STORE_BACKEND = os.getenv("HEALTHBOT_STORE_BACKEND", "memory").lower()
GCS_BUCKET_NAME = os.getenv("GCS_BUCKET_NAME", "healthbot_dev")

# --- WhatsApp Cloud API ---
WHATSAPP_TOKEN = os.getenv("WHATSAPP_TOKEN", "")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN", "")
WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v17.0")

# --- Twilio SMS ---
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER", "")

# --- Gemini (translation) ---
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
TRANSLATION_MODEL = os.getenv("TRANSLATION_MODEL", "gemini-2.0-flash")

# --- Conversation ---
TIMEZONE = os.getenv("HEALTHBOT_TIMEZONE", "Asia/Kolkata")
SESSION_TIMEOUT_MINUTES = int(os.getenv("SESSION_TIMEOUT_MINUTES", "30"))

# --- Medication reminders ---
REMINDER_LOOKBACK_MINUTES = int(os.getenv("REMINDER_LOOKBACK_MINUTES", "30"))
SNOOZE_MINUTES = int(os.getenv("SNOOZE_MINUTES", "15"))
DAILY_DIGEST_TIME = os.getenv("DAILY_DIGEST_TIME", "20:00")
WEEKLY_REVIEW_DAY = int(os.getenv("WEEKLY_REVIEW_DAY", "6"))  # Monday=0 ... Sunday=6
WEEKLY_REVIEW_TIME = os.getenv("WEEKLY_REVIEW_TIME", "10:00")
SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")

# --- Delivery ---
# "live" uses WhatsApp + Twilio; "memory" records outbound messages in-process
DISPATCH_MODE = os.getenv("HEALTHBOT_DISPATCH_MODE", "live").lower()

# --- Server ---
PORT = int(os.getenv("PORT", "8080"))
