"""
Tests for the single-turn handlers — profile updates, health education
and the hospital directory.
"""

import pytest

from healthbot.gateway.handlers.directory import (
    HospitalDirectory,
    format_emergency_numbers,
    format_hospitals,
    normalize_city,
)
from healthbot.gateway.handlers.education import (
    EDUCATION_DISCLAIMER,
    GENERAL_TIPS,
    SEASONAL_TIPS,
    UNKNOWN_TOPIC,
    disease_fact_sheet,
    find_topic,
    health_tips,
)
from healthbot.gateway.handlers.profile import (
    MAX_EMERGENCY_CONTACTS,
    apply_profile_update,
    profile_update_reply,
)
from healthbot.gateway.records import UserState


@pytest.fixture
def profile():
    return UserState.create_new("+919812345678").profile


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Profile updates
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestProfileUpdate:

    def test_name_and_city_from_text(self, profile):
        changes = apply_profile_update(profile, "my name is asha and I live in Bombay")
        assert profile.name == "Asha"
        assert profile.demographics.city == "mumbai"
        assert [c.field for c in changes] == ["name", "city"]

    def test_entities_take_precedence(self, profile):
        apply_profile_update(
            profile, "I am 45 and diabetic",
            {"age": ["45"], "condition": ["diabetic"]},
        )
        assert profile.demographics.age == 45
        assert profile.medical_profile.conditions == ["diabetes"]

    def test_conditions_not_duplicated(self, profile):
        apply_profile_update(profile, "x", {"condition": ["asthma"]})
        changes = apply_profile_update(profile, "x", {"condition": ["asthma"]})
        assert changes == []
        assert profile.medical_profile.conditions == ["asthma"]

    def test_gender(self, profile):
        apply_profile_update(profile, "I'm a woman")
        assert profile.demographics.gender == "female"

    def test_allergies(self, profile):
        apply_profile_update(profile, "I am allergic to penicillin and peanuts")
        assert profile.medical_profile.allergies == ["penicillin", "peanuts"]

    def test_emergency_contact(self, profile):
        apply_profile_update(profile, "emergency contact: meena +91 98111-22222 (sister)")
        [contact] = profile.medical_profile.emergency_contacts
        assert contact.name == "Meena"
        assert contact.phone == "+919811122222"
        assert contact.relationship == "sister"

    def test_same_contact_phone_replaced(self, profile):
        apply_profile_update(profile, "emergency contact Ravi +919811111111")
        apply_profile_update(profile, "emergency contact Ravi Kumar +919811111111 brother")
        [contact] = profile.medical_profile.emergency_contacts
        assert contact.name == "Ravi Kumar"

    def test_contact_limit(self, profile):
        for i in range(MAX_EMERGENCY_CONTACTS + 2):
            apply_profile_update(profile, f"emergency contact +91981111111{i}")
        contacts = profile.medical_profile.emergency_contacts
        assert len(contacts) == MAX_EMERGENCY_CONTACTS
        assert contacts[-1].phone == f"+91981111111{MAX_EMERGENCY_CONTACTS + 1}"

    def test_notifications_toggle(self, profile):
        apply_profile_update(profile, "turn off notifications")
        assert profile.preferences.notifications is False
        apply_profile_update(profile, "notifications on")
        assert profile.preferences.notifications is True

    def test_reply_lists_changes(self, profile):
        reply = profile_update_reply(
            apply_profile_update(profile, "emergency contact Ravi +919811111111")
        )
        assert "Profile updated" in reply
        assert "Emergency contact: Ravi" in reply
        assert "SMS" in reply

    def test_reply_without_changes_gives_examples(self):
        assert "I couldn't find anything to update" in profile_update_reply([])


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Health education
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestEducation:

    @pytest.mark.parametrize(
        "text, topic",
        [
            ("what is dengue?", "dengue"),
            ("tell me about sugar", "diabetes"),
            ("I have BP problems", "hypertension"),
            ("what is tb", "tuberculosis"),
            ("what is lupus", None),
        ],
    )
    def test_find_topic(self, text, topic):
        assert find_topic(text) == topic

    def test_fact_sheet(self):
        sheet = disease_fact_sheet("malaria")
        assert "Common symptoms" in sheet
        assert "Prevention" in sheet
        assert sheet.endswith(EDUCATION_DISCLAIMER)

    def test_unknown_fact_sheet(self):
        assert disease_fact_sheet("lupus") == UNKNOWN_TOPIC

    def test_tips(self):
        assert health_tips("monsoon tips please") == SEASONAL_TIPS
        assert health_tips("health tips") == GENERAL_TIPS


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Hospital directory
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestDirectory:

    def test_city_alias(self):
        assert normalize_city(" Bengaluru ") == "bangalore"
        assert normalize_city(None) == ""

    def test_find_by_city(self):
        hospitals = HospitalDirectory().find("Madras")
        assert len(hospitals) == 3
        assert all(h.city == "chennai" for h in hospitals)

    def test_find_by_specialty(self):
        [hospital] = HospitalDirectory().find("bangalore", "psychiatry")
        assert hospital.name == "NIMHANS"

    def test_unknown_city(self):
        assert HospitalDirectory().find("pune") == []
        assert HospitalDirectory().find(None) == []

    def test_formatting(self):
        text = format_hospitals(HospitalDirectory().find("delhi", limit=1))
        assert text == "🏥 AIIMS Delhi (011-26588500)"
        assert "112" in format_emergency_numbers()
