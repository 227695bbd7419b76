"""
User Records — persisted state for every person talking to the assistant.

One UserState document per phone number (profile + active session), one
Medication document per course of medicine, one EmergencyAlert per
detected emergency.  The stores in ``store.py`` persist these as JSON.

Storage paths (GCS backend):
  users/user_{id}/state.json
  medications/user_{id}/{medication_id}.json
  alerts/user_{id}/{alert_id}.json
"""

from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def normalize_phone(raw: str) -> str:
    """Canonical user key: ``+`` followed by digits only.

    Strips channel prefixes (``whatsapp:``), spaces, dashes and brackets.
    """
    cleaned = (raw or "").strip()
    if ":" in cleaned:
        cleaned = cleaned.split(":", 1)[1]
    digits = re.sub(r"\D", "", cleaned)
    return f"+{digits}" if digits else ""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    SMS = "sms"


class FlowKind(str, Enum):
    NONE = "none"
    SYMPTOM_ASSESSMENT = "symptom_assessment"
    MEDICATION_SETUP = "medication_setup"


class Urgency(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class Frequency(str, Enum):
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    THRICE_DAILY = "thrice_daily"
    WEEKLY = "weekly"
    AS_NEEDED = "as_needed"


class FoodInstruction(str, Enum):
    BEFORE_FOOD = "before_food"
    AFTER_FOOD = "after_food"
    WITH_FOOD = "with_food"
    EMPTY_STOMACH = "empty_stomach"
    NO_SPECIFIC = "no_specific"


class AdherenceStatus(str, Enum):
    TAKEN = "taken"
    SKIPPED = "skipped"
    LATE = "late"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Profile sub-models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Demographics(BaseModel):
    age: Optional[int] = None
    gender: Optional[str] = None
    city: Optional[str] = None


class EmergencyContact(BaseModel):
    name: str = ""
    phone: str
    relationship: str = ""


class MedicalProfile(BaseModel):
    conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)


class NotificationPreferences(BaseModel):
    notifications: bool = True
    emergency_alerts: bool = True
    health_tips: bool = True


class ConversationEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    direction: str = ""  # "USER→BOT" or "BOT→USER"
    message: str = ""
    intent: str = ""
    delivery_status: str = "delivered"  # delivered, failed


class AssessmentRecord(BaseModel):
    """A completed (or emergency-terminated) symptom assessment."""

    completed: datetime = Field(default_factory=_now)
    flow: str = ""
    severity: int = 1
    urgency: Urgency = Urgency.LOW
    emergency: bool = False
    responses: dict[str, str] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Flow state — tagged union stored on the session
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AssessmentFlowState(BaseModel):
    kind: Literal["symptom_assessment"] = "symptom_assessment"
    flow_name: str = "general"
    step: int = 0
    responses: dict[str, str] = Field(default_factory=dict)
    started: datetime = Field(default_factory=_now)


class MedicationSetupState(BaseModel):
    kind: Literal["medication_setup"] = "medication_setup"
    step: str = "name"  # name → dosage → times → duration
    name: str = ""
    dosage: str = ""
    times: list[str] = Field(default_factory=list)
    frequency: Frequency = Frequency.DAILY
    started: datetime = Field(default_factory=_now)


FlowState = Annotated[
    Union[AssessmentFlowState, MedicationSetupState],
    Field(discriminator="kind"),
]


class ConversationSession(BaseModel):
    session_id: str = Field(default_factory=_new_id)
    user_id: str
    channel: Channel = Channel.WHATSAPP
    flow: Optional[FlowState] = None
    last_interaction: datetime = Field(default_factory=_now)
    is_active: bool = True

    @property
    def current_flow(self) -> FlowKind:
        if self.flow is None:
            return FlowKind.NONE
        return FlowKind(self.flow.kind)

    def clear_flow(self) -> None:
        self.flow = None

    def is_expired(self, now: datetime, timeout_minutes: int) -> bool:
        return now - self.last_interaction > timedelta(minutes=timeout_minutes)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  User profile + persisted state
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class UserProfile(BaseModel):
    user_id: str
    phone: str
    channel: Channel = Channel.WHATSAPP
    name: Optional[str] = None
    preferred_language: str = "english"
    demographics: Demographics = Field(default_factory=Demographics)
    medical_profile: MedicalProfile = Field(default_factory=MedicalProfile)
    preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    conversation_history: list[ConversationEntry] = Field(default_factory=list)
    assessments: list[AssessmentRecord] = Field(default_factory=list)
    processed_message_ids: list[str] = Field(default_factory=list)
    reply_cursor: int = 0
    created: datetime = Field(default_factory=_now)
    last_active: datetime = Field(default_factory=_now)
    is_active: bool = True

    MAX_CONVERSATION_HISTORY: ClassVar[int] = 50
    MAX_ASSESSMENTS: ClassVar[int] = 20
    MAX_PROCESSED_IDS: ClassVar[int] = 100

    def add_conversation(self, entry: ConversationEntry) -> None:
        self.conversation_history.append(entry)
        if len(self.conversation_history) > self.MAX_CONVERSATION_HISTORY:
            self.conversation_history = self.conversation_history[-self.MAX_CONVERSATION_HISTORY:]

    def add_assessment(self, record: AssessmentRecord) -> None:
        self.assessments.append(record)
        if len(self.assessments) > self.MAX_ASSESSMENTS:
            self.assessments = self.assessments[-self.MAX_ASSESSMENTS:]

    def has_processed(self, message_id: str) -> bool:
        return bool(message_id) and message_id in self.processed_message_ids

    def mark_processed(self, message_id: str) -> None:
        if not message_id or message_id in self.processed_message_ids:
            return
        self.processed_message_ids.append(message_id)
        if len(self.processed_message_ids) > self.MAX_PROCESSED_IDS:
            self.processed_message_ids = self.processed_message_ids[-self.MAX_PROCESSED_IDS:]

    def next_reply_index(self, pool_size: int) -> int:
        """Round-robin index into a pool of canned replies."""
        if pool_size <= 0:
            return 0
        index = self.reply_cursor % pool_size
        self.reply_cursor += 1
        return index


class UserState(BaseModel):
    """The unit persisted per user: profile plus the active session."""

    profile: UserProfile
    session: Optional[ConversationSession] = None
    last_updated: datetime = Field(default_factory=_now)

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    def touch(self) -> None:
        self.last_updated = datetime.now(timezone.utc)

    @classmethod
    def create_new(cls, phone: str, channel: Channel = Channel.WHATSAPP) -> UserState:
        user_id = normalize_phone(phone)
        return cls(
            profile=UserProfile(user_id=user_id, phone=user_id, channel=channel),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Medication + adherence
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AdherenceRecord(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    status: AdherenceStatus
    scheduled_time: Optional[str] = None  # "HH:MM" slot the reply answered

    model_config = {"frozen": True}


class Medication(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    name: str
    dosage: str = ""
    frequency: Frequency = Frequency.DAILY
    times: list[str] = Field(default_factory=lambda: ["09:00"])
    start_date: date = Field(default_factory=lambda: date.today())
    end_date: Optional[date] = None
    instructions: str = ""
    food_instructions: FoodInstruction = FoodInstruction.NO_SPECIFIC
    side_effects: list[str] = Field(default_factory=list)
    interactions: list[str] = Field(default_factory=list)
    is_active: bool = True
    created: datetime = Field(default_factory=_now)
    adherence_score: int = 100
    adherence_log: list[AdherenceRecord] = Field(default_factory=list)
    last_prompted_at: Optional[datetime] = None
    last_prompted_slot: Optional[str] = None
    # slot "HH:MM" → ISO local date it last fired
    fired_slots: dict[str, str] = Field(default_factory=dict)
    deactivation_reason: Optional[str] = None

    def has_fired(self, slot: str, local_day: date) -> bool:
        return self.fired_slots.get(slot) == local_day.isoformat()

    def mark_fired(self, slot: str, local_day: date) -> None:
        self.fired_slots[slot] = local_day.isoformat()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Emergency alerts
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class EmergencyAlert(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    severity: str
    message: str = ""
    event: dict[str, Any] = Field(default_factory=dict)
    created: datetime = Field(default_factory=_now)
    contacts_notified: int = 0
