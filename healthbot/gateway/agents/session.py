"""
Conversation Manager — advances one user's session by one message.

The Gateway calls ``manager.advance(state, text, intent_result, now)`` and
receives a ``SessionTurn`` with the updated UserState, the reply text and
any follow-up actions.  The manager never persists or dispatches; the
Gateway does both after the turn.

Multi-turn flows (symptom assessment, medication setup) live on
``session.flow``.  Every other intent is answered in a single turn and
leaves the flow untouched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from healthbot.gateway.agents.assessment import (
    AssessmentEngine,
    AssessmentResult,
    StepStatus,
)
from healthbot.gateway.agents.emergency_classifier import (
    EmergencyEvent,
    format_emergency_response,
    risk_score,
)
from healthbot.gateway.agents.intent_router import (
    FLOW_FOR_INTENT,
    Intent,
    IntentResult,
    parse_frequency,
    parse_times,
)
from healthbot.gateway.handlers import education
from healthbot.gateway.handlers.directory import (
    HospitalDirectory,
    format_emergency_numbers,
    format_hospitals,
)
from healthbot.gateway.handlers.profile import apply_profile_update, profile_update_reply
from healthbot.gateway.languages import LANGUAGE_CODES, is_supported
from healthbot.gateway.medications import (
    DEFAULT_TIMES,
    MedicationInput,
    MedicationValidationError,
    added_message,
    list_message,
)
from healthbot.gateway.records import (
    AssessmentRecord,
    ConversationSession,
    FlowKind,
    Frequency,
    MedicationSetupState,
    Urgency,
    UserState,
)

logger = logging.getLogger("gateway.agents.session")


class FollowUpAction(str, Enum):
    EMERGENCY_ALERT = "emergency_alert"
    NOTIFY_EMERGENCY_CONTACTS = "notify_emergency_contacts"
    HEALTH_TIPS = "health_tips"


@dataclass
class SessionTurn:
    """Everything one call to ``advance()`` produced."""

    state: UserState
    reply: str
    intent: Intent
    follow_ups: list[FollowUpAction] = field(default_factory=list)
    urgency: Optional[Urgency] = None
    assessment: Optional[AssessmentResult] = None
    emergency: Optional[EmergencyEvent] = None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Canned texts
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

WELCOME_MESSAGE = (
    "🙏 *Welcome to HealthBot!*\n\n"
    "I'm your health assistant on WhatsApp and SMS. I give general health "
    "guidance; I am not a doctor.\n"
    "In an emergency, call *112* straight away."
)

HELP_MENU = (
    "*What I can do:*\n\n"
    "🩺 *check symptoms* - a short symptom check\n"
    "💊 *add medication* - set up medicine reminders\n"
    "📋 *my meds* - list your reminders\n"
    "📊 *report* - today's medication report\n"
    "📚 *what is dengue* - learn about a disease\n"
    "🌟 *health tips* - prevention tips\n"
    "🏥 *hospital in Delhi* - find a hospital\n"
    "🌍 *language hindi* - change language\n"
    "👤 *I am 45 years old* - update your profile\n\n"
    "Reply *cancel* at any time to stop the current step."
)

GREETINGS = [
    "Hello{name}! 👋 How can I help with your health today?",
    "Namaste{name}! 🙏 What would you like help with today?",
    "Hi{name}! 😊 Tell me how you are feeling or what you need.",
]

RESET_REPLY = "🔄 Okay, I've cleared that. Let's start fresh.\n\n"

MEDICATION_MENU = (
    "💊 *Medication reminders*\n\n"
    "• *add medication* - set up a new reminder\n"
    "• *my meds* - list your reminders\n"
    "• *remove <name>* - stop a reminder\n"
    "• *report* - today's adherence report\n\n"
    "When a reminder arrives, reply TAKEN, SNOOZE, SKIP or INFO."
)

SETUP_PROMPTS = {
    "name": "💊 Let's set up a medication reminder.\n\nWhat is the name of the medicine?",
    "dosage": "What dose do you take? (e.g. 500mg or 1 tablet)\nReply *skip* if you are not sure.",
    "times": (
        "When should I remind you?\n"
        "Send times like *08:00, 20:00* or *8am*, or say "
        "*once daily*, *twice daily* or *three times daily*."
    ),
    "duration": "For how many days should I remind you? Reply a number, or *ongoing*.",
}

_DURATION_RE = re.compile(r"(\d+)\s*(day|days|week|weeks|month|months)?")
_ONGOING_WORDS = ("ongoing", "no end", "forever", "continue", "long term", "always", "lifelong")
_DOSAGE_IN_NAME_RE = re.compile(
    r"^(.*?)\s+(\d+(?:\.\d+)?\s*(?:mg|mcg|g|ml|iu|units?|tablets?|capsules?))$", re.IGNORECASE
)

_TIMES_TO_FREQUENCY = {
    1: Frequency.DAILY,
    2: Frequency.TWICE_DAILY,
    3: Frequency.THRICE_DAILY,
}


def parse_duration_days(text: str) -> int | None | str:
    """Days as int, "ongoing", or None when unparseable."""
    lowered = (text or "").lower().strip()
    if any(w in lowered for w in _ONGOING_WORDS):
        return "ongoing"
    m = _DURATION_RE.search(lowered)
    if not m:
        return None
    value = int(m.group(1))
    unit = m.group(2) or "days"
    if unit.startswith("week"):
        value *= 7
    elif unit.startswith("month"):
        value *= 30
    return value if value > 0 else None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Manager
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConversationManager:
    """
    Routes an intent to a flow step or single-turn handler.

    ``scheduler`` is the MedicationReminderScheduler; medication intents
    reply with a short apology when it is not configured.
    """

    def __init__(
        self,
        assessment_engine: AssessmentEngine | None = None,
        scheduler=None,
        directory: HospitalDirectory | None = None,
    ) -> None:
        self._engine = assessment_engine or AssessmentEngine()
        self._scheduler = scheduler
        self._directory = directory or HospitalDirectory()

        self._handlers: dict[Intent, Callable[..., Awaitable[str]]] = {
            Intent.GREETING: self._greeting,
            Intent.HELP: self._help,
            Intent.HEALTH_EDUCATION: self._education,
            Intent.HEALTH_TIPS: self._tips,
            Intent.DOCTOR_CONSULTATION: self._doctor,
            Intent.LANGUAGE_CHANGE: self._language,
            Intent.PROFILE_UPDATE: self._profile,
            Intent.MEDICATION_REMINDER: self._medication_command,
            Intent.MEDICATION_RESPONSE: self._medication_response,
            Intent.GENERAL_QUERY: self._general,
        }

    @property
    def directory(self) -> HospitalDirectory:
        return self._directory

    async def advance(
        self,
        state: UserState,
        text: str,
        intent_result: IntentResult,
        now: datetime | None = None,
    ) -> SessionTurn:
        now = now or datetime.now(timezone.utc)
        state = state.model_copy(deep=True)
        if state.session is None:
            state.session = ConversationSession(
                user_id=state.user_id, channel=state.profile.channel
            )
        session = state.session
        intent = intent_result.intent
        turn = SessionTurn(state=state, reply="", intent=intent)

        if intent == Intent.RESET:
            if session.current_flow != FlowKind.NONE:
                logger.info("Flow %s reset by %s", session.current_flow.value, state.user_id)
            session.clear_flow()
            turn.reply = RESET_REPLY + HELP_MENU

        elif intent in FLOW_FOR_INTENT:
            family = FLOW_FOR_INTENT[intent]
            if session.current_flow != family:
                self._start_flow(turn, family, now)
            elif family == FlowKind.SYMPTOM_ASSESSMENT:
                self._assessment_step(turn, text)
            else:
                await self._setup_step(turn, text)

        else:
            handler = self._handlers.get(intent, self._general)
            turn.reply = await handler(state, text, intent_result, now)

        session.last_interaction = now
        return turn

    # ── Flows ──

    def _start_flow(self, turn: SessionTurn, family: FlowKind, now: datetime) -> None:
        session = turn.state.session
        if session.current_flow != FlowKind.NONE:
            logger.info(
                "Replacing flow %s with %s for %s",
                session.current_flow.value, family.value, turn.state.user_id,
            )
        if family == FlowKind.SYMPTOM_ASSESSMENT:
            flow_state, turn.reply = self._engine.start()
            flow_state.started = now
            session.flow = flow_state
        else:
            session.flow = MedicationSetupState(started=now)
            turn.reply = SETUP_PROMPTS["name"]
        logger.info("Started %s flow for %s", family.value, turn.state.user_id)

    def _assessment_step(self, turn: SessionTurn, text: str) -> None:
        state = turn.state
        session = state.session
        profile = state.profile
        risk = risk_score(profile.demographics, profile.medical_profile)

        outcome = self._engine.answer(session.flow, text, risk=risk)

        if outcome.status == StepStatus.IN_PROGRESS:
            session.flow = outcome.state
            turn.reply = outcome.reply
            return

        session.clear_flow()
        result = outcome.result
        turn.assessment = result
        turn.urgency = result.urgency
        profile.add_assessment(
            AssessmentRecord(
                flow=result.flow,
                severity=result.severity,
                urgency=result.urgency,
                emergency=outcome.status == StepStatus.EMERGENCY,
                responses=dict(result.responses),
                recommendations=list(result.recommendations),
            )
        )

        if outcome.status == StepStatus.EMERGENCY:
            event = outcome.emergency
            turn.emergency = event
            hospitals = self._directory.find(profile.demographics.city)
            turn.reply = format_emergency_response(event, hospitals)
            turn.follow_ups.append(FollowUpAction.EMERGENCY_ALERT)
            if event.is_immediate:
                turn.follow_ups.append(FollowUpAction.NOTIFY_EMERGENCY_CONTACTS)
            return

        turn.reply = outcome.reply
        if result.urgency == Urgency.LOW and profile.preferences.health_tips:
            turn.follow_ups.append(FollowUpAction.HEALTH_TIPS)

    async def _setup_step(self, turn: SessionTurn, text: str) -> None:
        session = turn.state.session
        flow: MedicationSetupState = session.flow.model_copy(deep=True)
        answer = (text or "").strip()

        if flow.step == "name":
            if not answer or len(answer) > 60:
                turn.reply = "Please send just the medicine name (e.g. Metformin)."
                return
            m = _DOSAGE_IN_NAME_RE.match(answer)
            if m:
                flow.name, flow.dosage = m.group(1).strip(), m.group(2).replace(" ", "")
                flow.step = "times"
            else:
                flow.name = answer
                flow.step = "dosage"
            session.flow = flow
            turn.reply = SETUP_PROMPTS[flow.step]
            return

        if flow.step == "dosage":
            flow.dosage = "" if answer.lower() in ("skip", "not sure", "-") else answer
            flow.step = "times"
            session.flow = flow
            turn.reply = SETUP_PROMPTS["times"]
            return

        if flow.step == "times":
            times = parse_times(answer)
            frequency = parse_frequency(answer)
            if times:
                flow.times = times
                flow.frequency = frequency or _TIMES_TO_FREQUENCY.get(len(times), Frequency.DAILY)
            elif frequency is not None:
                flow.frequency = frequency
                flow.times = list(DEFAULT_TIMES[frequency])
            else:
                turn.reply = "I couldn't read those times. " + SETUP_PROMPTS["times"]
                return
            flow.step = "duration"
            session.flow = flow
            turn.reply = SETUP_PROMPTS["duration"]
            return

        duration = parse_duration_days(answer)
        if duration is None:
            turn.reply = "Sorry, I didn't get that. " + SETUP_PROMPTS["duration"]
            return

        session.clear_flow()
        data = MedicationInput(
            name=flow.name,
            dosage=flow.dosage,
            frequency=flow.frequency,
            times=flow.times,
            duration_days=None if duration == "ongoing" else duration,
        )
        turn.reply = await self._add_medication(turn.state, data)

    async def _add_medication(self, state: UserState, data: MedicationInput) -> str:
        if self._scheduler is None:
            return "Medication reminders are not available right now. Please try again later."
        try:
            med = await self._scheduler.add_medication(state.user_id, data)
        except MedicationValidationError as exc:
            logger.info("Medication rejected for %s: %s", state.user_id, exc)
            return f"I couldn't add that medication: {exc}"
        names = state.profile.medical_profile.medications
        if med.name not in names:
            names.append(med.name)
        return added_message(med)

    # ── Single-turn handlers ──

    async def _greeting(self, state, text, intent_result, now) -> str:
        template = GREETINGS[state.profile.next_reply_index(len(GREETINGS))]
        name = f" {state.profile.name}" if state.profile.name else ""
        return template.format(name=name) + "\n\n" + HELP_MENU

    async def _help(self, state, text, intent_result, now) -> str:
        return HELP_MENU

    async def _education(self, state, text, intent_result, now) -> str:
        topic = education.find_topic(text)
        if topic is None:
            for value in intent_result.entities_of("health_topic"):
                topic = education.find_topic(value)
                if topic:
                    break
        if topic is None:
            return education.UNKNOWN_TOPIC
        return education.disease_fact_sheet(topic)

    async def _tips(self, state, text, intent_result, now) -> str:
        return education.health_tips(text)

    async def _doctor(self, state, text, intent_result, now) -> str:
        demographics = state.profile.demographics
        city = intent_result.entity("city")
        if city:
            demographics.city = city
        city = city or demographics.city
        if not city:
            return (
                "🏥 Which city are you in? Reply for example *hospital in Chennai*.\n"
                f"I know hospitals in: {', '.join(c.title() for c in self._directory.cities)}.\n\n"
                + format_emergency_numbers()
            )

        specialty = intent_result.entity("specialty")
        hospitals = self._directory.find(city, specialty)
        heading = f"🏥 *Hospitals in {city.title()}*"
        if specialty and hospitals:
            heading += f" ({specialty})"
        elif specialty:
            hospitals = self._directory.find(city)
            heading += f"\nNo {specialty} listing found; general hospitals:"
        if not hospitals:
            return (
                f"I don't have a hospital list for {city.title()} yet. "
                "Visit your nearest government hospital or primary health centre.\n\n"
                + format_emergency_numbers()
            )
        return "\n".join([
            heading, "", format_hospitals(hospitals), "",
            "In an emergency call 📞 112 or 📞 102 for an ambulance.",
        ])

    async def _language(self, state, text, intent_result, now) -> str:
        languages = intent_result.entities_of("language")
        if not languages or not is_supported(languages[-1]):
            return (
                "🌍 I can reply in: "
                + ", ".join(lang.title() for lang in LANGUAGE_CODES)
                + ".\nReply for example *language hindi*."
            )
        language = languages[-1]
        state.profile.preferred_language = language
        logger.info("Language for %s set to %s", state.user_id, language)
        return f"✅ Language changed to {language.title()}. I'll reply in {language.title()} from now on."

    async def _profile(self, state, text, intent_result, now) -> str:
        entities = {
            t: intent_result.entities_of(t) for t in ("age", "city", "condition")
        }
        changes = apply_profile_update(state.profile, text, entities)
        return profile_update_reply(changes)

    async def _medication_command(self, state, text, intent_result, now) -> str:
        if self._scheduler is None:
            return "Medication reminders are not available right now. Please try again later."

        action = intent_result.entity("medication_action")
        if action == "add":
            name = intent_result.entity("medication_name")
            if not name:
                return MEDICATION_MENU
            lowered = text.lower()
            frequency = parse_frequency(lowered)
            times = intent_result.entities_of("time")
            duration = parse_duration_days(lowered.split(" for ", 1)[1]) if " for " in lowered else None
            if frequency is None:
                frequency = _TIMES_TO_FREQUENCY.get(len(times), Frequency.DAILY)
            data = MedicationInput(
                name=name,
                dosage=intent_result.entity("dosage") or "",
                frequency=frequency,
                times=times,
                duration_days=duration if isinstance(duration, int) else None,
            )
            return await self._add_medication(state, data)

        if action == "list":
            return list_message(await self._scheduler.list_medications(state.user_id))

        if action == "remove":
            name = intent_result.entity("medication_name")
            if not name:
                return "Which medicine should I stop reminding you about? Reply *remove <name>*."
            med = await self._scheduler.remove_medication(state.user_id, name)
            if med is None:
                return f"I couldn't find an active medicine called {name}. Reply *my meds* to see your list."
            names = state.profile.medical_profile.medications
            if med.name in names:
                names.remove(med.name)
            return f"🗑️ Stopped reminders for {med.name}."

        if action == "report":
            if "week" in text.lower():
                return await self._scheduler.weekly_review_for(state.user_id)
            return await self._scheduler.daily_report_for(state.user_id, now)

        return MEDICATION_MENU

    async def _medication_response(self, state, text, intent_result, now) -> str:
        if self._scheduler is None:
            return "Medication reminders are not available right now. Please try again later."
        return await self._scheduler.record_adherence_response(state.user_id, text, now)

    async def _general(self, state, text, intent_result, now) -> str:
        replies = education.GENERAL_REPLIES
        return replies[state.profile.next_reply_index(len(replies))]
