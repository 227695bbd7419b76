"""
Profile updates from free text — "I am 45 years old", "I live in Pune",
"I have diabetes", "allergic to penicillin", "emergency contact Ravi
+91 98123 45678 brother", "notifications off".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from healthbot.gateway.handlers.directory import normalize_city
from healthbot.gateway.records import EmergencyContact, UserProfile, normalize_phone

logger = logging.getLogger("gateway.handlers.profile")

MAX_EMERGENCY_CONTACTS = 5

CONDITION_ALIASES = {
    "diabetic": "diabetes",
    "pregnant": "pregnancy",
    "high blood pressure": "hypertension",
}

_NAME_RE = re.compile(r"\bmy name is\s+([a-z][a-z .'-]{0,40}?)(?:[,.!]|\s+and\b|$)", re.IGNORECASE)
_GENDER_RE = re.compile(r"\b(?:i am|i'm)\s+(?:a\s+)?(male|female|man|woman|boy|girl)\b", re.IGNORECASE)
_CITY_RE = re.compile(r"\b(?:i live in|my city is|i am from|i'm from)\s+([a-z][a-z ]{1,30}?)(?:[,.!]|\s+and\b|$)", re.IGNORECASE)
_ALLERGY_RE = re.compile(r"\b(?:allergic to|my allerg(?:y|ies) (?:is|are))\s+([a-z ,]+)", re.IGNORECASE)
_CONTACT_RE = re.compile(r"\bemergency contact\b\s*(?:is\s*)?:?\s*", re.IGNORECASE)
_PHONE_RE = re.compile(r"\+?\d[\d\s-]{7,}\d")
_NOTIFY_OFF_RE = re.compile(r"\bnotifications?\s+off\b|\b(?:turn|switch)\s+off\s+notifications?\b", re.IGNORECASE)
_NOTIFY_ON_RE = re.compile(r"\bnotifications?\s+on\b|\b(?:turn|switch)\s+on\s+notifications?\b", re.IGNORECASE)

_GENDERS = {"male": "male", "man": "male", "boy": "male", "female": "female", "woman": "female", "girl": "female"}


@dataclass
class ProfileChange:
    field: str
    value: str


def _split_list(raw: str) -> list[str]:
    parts = re.split(r",|\band\b", raw)
    return [p.strip().lower() for p in parts if p.strip()]


def _add_unique(items: list[str], values: Iterable[str]) -> list[str]:
    added = []
    for value in values:
        if value and value not in items:
            items.append(value)
            added.append(value)
    return added


def _parse_contact(text: str) -> EmergencyContact | None:
    head = _CONTACT_RE.search(text)
    if not head:
        return None
    rest = text[head.end():]
    phone = _PHONE_RE.search(rest)
    if not phone:
        return None
    name = rest[:phone.start()].strip(" ,:-").strip()
    relationship = rest[phone.end():].strip(" ,()-.").strip()
    return EmergencyContact(
        name=name.title(),
        phone=normalize_phone(phone.group(0)),
        relationship=relationship.lower(),
    )


def apply_profile_update(
    profile: UserProfile,
    text: str,
    entities: dict[str, list[str]] | None = None,
) -> list[ProfileChange]:
    """Apply every profile fact found in ``text``; returns what changed."""
    entities = entities or {}
    changes: list[ProfileChange] = []
    demographics = profile.demographics
    medical = profile.medical_profile

    m = _NAME_RE.search(text)
    if m:
        profile.name = m.group(1).strip().title()
        changes.append(ProfileChange("name", profile.name))

    ages = entities.get("age") or []
    if ages:
        demographics.age = int(ages[0])
        changes.append(ProfileChange("age", ages[0]))

    m = _GENDER_RE.search(text)
    if m:
        demographics.gender = _GENDERS[m.group(1).lower()]
        changes.append(ProfileChange("gender", demographics.gender))

    city = (entities.get("city") or [None])[0]
    if city is None:
        m = _CITY_RE.search(text)
        if m:
            city = m.group(1)
    if city:
        demographics.city = normalize_city(city)
        changes.append(ProfileChange("city", demographics.city.title()))

    conditions = [CONDITION_ALIASES.get(c, c) for c in entities.get("condition") or []]
    for added in _add_unique(medical.conditions, conditions):
        changes.append(ProfileChange("condition", added))

    m = _ALLERGY_RE.search(text)
    if m:
        for added in _add_unique(medical.allergies, _split_list(m.group(1))):
            changes.append(ProfileChange("allergy", added))

    contact = _parse_contact(text)
    if contact is not None:
        existing = [c for c in medical.emergency_contacts if c.phone != contact.phone]
        medical.emergency_contacts = (existing + [contact])[-MAX_EMERGENCY_CONTACTS:]
        changes.append(ProfileChange("emergency_contact", contact.name or contact.phone))

    if _NOTIFY_OFF_RE.search(text):
        profile.preferences.notifications = False
        changes.append(ProfileChange("notifications", "off"))
    elif _NOTIFY_ON_RE.search(text):
        profile.preferences.notifications = True
        changes.append(ProfileChange("notifications", "on"))

    if changes:
        logger.info(
            "Profile update for %s: %s",
            profile.user_id, ", ".join(c.field for c in changes),
        )
    return changes


_LABELS = {
    "name": "Name",
    "age": "Age",
    "gender": "Gender",
    "city": "City",
    "condition": "Health condition",
    "allergy": "Allergy",
    "emergency_contact": "Emergency contact",
    "notifications": "Reminders & notifications",
}


def profile_update_reply(changes: list[ProfileChange]) -> str:
    if not changes:
        return (
            "I couldn't find anything to update. You can tell me things like:\n"
            "• I am 45 years old\n"
            "• I live in Chennai\n"
            "• I have diabetes\n"
            "• I am allergic to penicillin\n"
            "• Emergency contact Ravi +919812345678 brother\n"
            "• Notifications off"
        )
    lines = ["✅ *Profile updated*", ""]
    lines.extend(f"• {_LABELS.get(c.field, c.field)}: {c.value}" for c in changes)
    if any(c.field == "emergency_contact" for c in changes):
        lines.extend(["", "In an emergency I will also alert your emergency contacts by SMS."])
    return "\n".join(lines)
