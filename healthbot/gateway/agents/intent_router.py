"""
Intent Router — keyword/regex intent classification with entity extraction.

Maps one normalized message to a fixed set of intents.  When a multi-turn
flow is active, anything that is not an explicit command is routed as a
continuation of that flow, so an answer like "8" or "2 tablets" is never
mistaken for a new top-level request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from healthbot.gateway.agents.emergency_classifier import NLPSignal
from healthbot.gateway.handlers.directory import CITY_ALIASES, KNOWN_CITIES
from healthbot.gateway.languages import LANGUAGE_CODES
from healthbot.gateway.records import FlowKind, Frequency

logger = logging.getLogger("gateway.agents.intent_router")


class Intent(str, Enum):
    SYMPTOM_ASSESSMENT = "symptom_assessment"
    MEDICATION_REMINDER = "medication_reminder"
    MEDICATION_SETUP = "medication_setup"
    MEDICATION_RESPONSE = "medication_response"
    HEALTH_EDUCATION = "health_education"
    HEALTH_TIPS = "health_tips"
    DOCTOR_CONSULTATION = "doctor_consultation"
    EMERGENCY_HELP = "emergency_help"
    LANGUAGE_CHANGE = "language_change"
    PROFILE_UPDATE = "profile_update"
    GREETING = "greeting"
    HELP = "help"
    RESET = "reset"
    GENERAL_QUERY = "general_query"


# Intents that run as a multi-turn flow, and the flow each one owns
FLOW_FOR_INTENT: dict[Intent, FlowKind] = {
    Intent.SYMPTOM_ASSESSMENT: FlowKind.SYMPTOM_ASSESSMENT,
    Intent.MEDICATION_SETUP: FlowKind.MEDICATION_SETUP,
}
INTENT_FOR_FLOW: dict[FlowKind, Intent] = {v: k for k, v in FLOW_FOR_INTENT.items()}


@dataclass(frozen=True)
class Entity:
    type: str
    value: str


@dataclass
class IntentResult:
    intent: Intent
    confidence: float = 0.6
    entities: list[Entity] = field(default_factory=list)
    continuation: bool = False
    sentiment: str = "neutral"
    sentiment_confidence: float = 0.0
    # Classified intent before flow continuation overrides it
    raw_intent: Intent | None = None

    def entity(self, entity_type: str) -> str | None:
        for e in self.entities:
            if e.type == entity_type:
                return e.value
        return None

    def entities_of(self, entity_type: str) -> list[str]:
        return [e.value for e in self.entities if e.type == entity_type]

    def to_nlp_signal(self) -> NLPSignal:
        return NLPSignal(
            intent=(self.raw_intent or self.intent).value,
            entity_types=[e.type for e in self.entities],
            sentiment=self.sentiment,
            sentiment_confidence=self.sentiment_confidence,
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Vocabularies
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

SYMPTOM_TERMS = [
    "fever", "headache", "cough", "cold", "pain", "ache", "aching", "vomiting",
    "vomit", "nausea", "diarrhea", "diarrhoea", "rash", "itching", "itchy",
    "dizzy", "dizziness", "fatigue", "tired", "sore throat", "breathless",
    "chills", "weakness", "swelling", "bleeding", "cramps", "sneezing",
    "runny nose", "constipation", "anxiety", "insomnia", "hurt", "hurts",
    "hurting", "burning", "wheezing", "palpitations",
]

CONDITION_TERMS = [
    "diabetes", "diabetic", "hypertension", "high blood pressure", "dengue",
    "malaria", "tuberculosis", "asthma", "covid", "typhoid", "heart disease",
    "kidney disease", "cancer", "thyroid", "pregnancy", "pregnant",
    "arthritis", "migraine", "immunocompromised",
]

BODY_PARTS = [
    "head", "chest", "stomach", "abdomen", "back", "throat", "leg", "arm",
    "eye", "ear", "neck", "knee", "skin", "tooth", "joint", "shoulder", "foot",
]

SPECIALTY_TERMS: dict[str, str] = {
    "cardiologist": "cardiology", "heart doctor": "cardiology", "cardiology": "cardiology",
    "neurologist": "neurology", "neurology": "neurology",
    "oncologist": "oncology", "cancer": "oncology",
    "psychiatrist": "psychiatry", "mental health": "psychiatry",
    "kidney": "nephrology", "nephrologist": "nephrology",
    "lung": "pulmonology", "pulmonologist": "pulmonology",
    "trauma": "trauma", "accident": "trauma",
}

NEGATIVE_WORDS = [
    "terrible", "worst", "unbearable", "awful", "scared", "worried", "afraid",
    "dying", "getting worse", "worsening", "not improving", "panic", "desperate",
]

MEDICATION_WORDS = r"(?:medications?|medicines?|meds?|pills?|tablets?|capsules?|reminders?|doses?)"

_RESET_WORDS = {"cancel", "stop", "reset", "restart", "exit", "quit", "menu", "start over"}
_HELP_WORDS = {"help", "?", "options", "commands"}
_MED_RESPONSE_WORDS = {"taken", "skip", "skipped", "snooze", "info"}
_GREETINGS = [
    "hi", "hello", "hey", "hii", "namaste", "namaskar", "vanakkam", "hola",
    "good morning", "good afternoon", "good evening",
]
_EDUCATION_PHRASES = [
    "what is", "what are", "tell me about", "information about", "info about",
    "learn about", "explain", "symptoms of", "causes of", "how to treat",
]
_TIP_WORDS = [
    "tip", "tips", "prevent", "prevention", "healthy", "diet", "exercise",
    "immunity", "hygiene", "monsoon", "summer", "winter", "seasonal",
]
_DOCTOR_WORDS = [
    "doctor", "hospital", "clinic", "consult", "appointment", "specialist",
    "nearby", "pharmacy", "cardiologist", "neurologist", "oncologist",
    "psychiatrist", "nephrologist", "pulmonologist", "heart doctor",
]
_EMERGENCY_WORDS = ["emergency", "ambulance", "urgent help", "need help now", "help me now"]
_SYMPTOM_PHRASES = [
    "symptom", "check symptoms", "not feeling well", "unwell", "sick",
    "feel bad", "feeling bad", "assessment", "health check",
]
_ASSESSMENT_START = ["check symptoms", "symptom check", "start assessment", "new assessment", "check my symptoms"]

_FREQUENCY_PATTERNS: list[tuple[str, Frequency]] = [
    (r"\b(?:thrice|three times|3 times|tds|tid)\b", Frequency.THRICE_DAILY),
    (r"\b(?:twice|two times|2 times|bd|bid)\b", Frequency.TWICE_DAILY),
    (r"\b(?:weekly|once a week|every week)\b", Frequency.WEEKLY),
    (r"\b(?:as needed|when needed|prn|sos)\b", Frequency.AS_NEEDED),
    (r"\b(?:once daily|once a day|daily|every day|everyday|od)\b", Frequency.DAILY),
]

_DOSAGE_RE = re.compile(
    r"\b(\d+(?:\.\d+)?\s*(?:mg|mcg|g|ml|iu|units?|tablets?|tabs?|capsules?|drops?|puffs?))\b"
)
_TIME_24_RE = re.compile(r"\b([01]?\d|2[0-3])[:.]([0-5]\d)\b(?!\s*(?:am|pm))")
_TIME_12_RE = re.compile(r"\b(1[0-2]|0?[1-9])(?:[:.]([0-5]\d))?\s*(am|pm)\b")
_AGE_RE = re.compile(
    r"\b(?:i am|i'm|im|age is|my age is|aged?)\s*(\d{1,3})\b|\b(\d{1,3})\s*(?:years? old|yrs? old|y/o)\b"
)
_NAME_STOP_WORDS = {
    "at", "every", "daily", "twice", "thrice", "once", "for", "with", "before",
    "after", "two", "three", "times", "a", "day", "in", "the", "morning",
    "evening", "night", "weekly", "and", "to", "from", "as", "needed",
}


def _contains_word(text: str, term: str) -> bool:
    return re.search(rf"(?<![a-z]){re.escape(term)}(?![a-z])", text) is not None


def _find_terms(text: str, terms: list[str]) -> list[str]:
    return [t for t in terms if _contains_word(text, t)]


def parse_times(text: str) -> list[str]:
    """Extract clock times as zero-padded "HH:MM", sorted, de-duplicated.

    Dosages are removed first so "0.25 mg" is not read as 00:25.
    """
    lowered = _DOSAGE_RE.sub(" ", text.lower())
    found: set[str] = set()
    for m in _TIME_12_RE.finditer(lowered):
        hour = int(m.group(1)) % 12
        if m.group(3) == "pm":
            hour += 12
        minute = int(m.group(2) or 0)
        found.add(f"{hour:02d}:{minute:02d}")
    for m in _TIME_24_RE.finditer(lowered):
        found.add(f"{int(m.group(1)):02d}:{m.group(2)}")
    return sorted(found)


def parse_frequency(text: str) -> Frequency | None:
    lowered = text.lower()
    for pattern, frequency in _FREQUENCY_PATTERNS:
        if re.search(pattern, lowered):
            return frequency
    return None


def _medication_name_after(lowered: str, pattern: str) -> str | None:
    m = re.search(pattern, lowered)
    if not m:
        return None
    tokens = lowered[m.end():].replace(",", " ").split()
    name_tokens = []
    for token in tokens:
        if token in _NAME_STOP_WORDS or _DOSAGE_RE.match(token) or re.match(r"^\d", token):
            break
        name_tokens.append(token)
        if len(name_tokens) == 3:
            break
    if not name_tokens:
        return None
    return " ".join(name_tokens).title()


def _medication_action(lowered: str) -> tuple[str, str | None] | None:
    """Returns (action, medication name) for medication commands."""
    if re.search(rf"\b(?:add|new|start|set up|setup|set)\b\s+(?:a\s+)?(?:new\s+)?{MEDICATION_WORDS}", lowered) \
            or re.search(r"^add\s+med\b", lowered):
        name = _medication_name_after(
            lowered,
            rf"\b(?:add|new|start|set up|setup|set)\b\s+(?:a\s+)?(?:new\s+)?{MEDICATION_WORDS}\s*:?",
        )
        return "add", name
    if re.search(rf"\b(?:list|show|view)\b.*{MEDICATION_WORDS}", lowered) \
            or re.search(rf"\bmy\s+{MEDICATION_WORDS}\b", lowered) or lowered == "list meds":
        return "list", None
    if re.search(r"\b(?:remove|delete|stop taking|discontinue)\b", lowered):
        name = _medication_name_after(
            lowered, rf"\b(?:remove|delete|stop taking|discontinue)\b\s*(?:{MEDICATION_WORDS}\s*)?:?"
        )
        if name or re.search(MEDICATION_WORDS, lowered):
            return "remove", name
    if lowered in {"report", "adherence", "my report"} or re.search(
        rf"\b(?:adherence|{MEDICATION_WORDS}\s+report)\b", lowered
    ):
        return "report", None
    return None


def extract_entities(text: str) -> list[Entity]:
    """Typed entities from keyword tables and regular expressions."""
    lowered = text.lower().strip()
    entities: list[Entity] = []

    for term in _find_terms(lowered, SYMPTOM_TERMS):
        entities.append(Entity("symptom", term))
    for term in _find_terms(lowered, CONDITION_TERMS):
        entities.append(Entity("condition", term))
        entities.append(Entity("health_topic", term))
    for term in _find_terms(lowered, BODY_PARTS):
        entities.append(Entity("body_part", term))

    for term, specialty in SPECIALTY_TERMS.items():
        if _contains_word(lowered, term):
            entities.append(Entity("specialty", specialty))
            break

    for city in KNOWN_CITIES + list(CITY_ALIASES):
        if _contains_word(lowered, city):
            entities.append(Entity("city", CITY_ALIASES.get(city, city)))
            break

    for language in LANGUAGE_CODES:
        if _contains_word(lowered, language):
            entities.append(Entity("language", language))

    age = _AGE_RE.search(lowered)
    if age:
        value = int(age.group(1) or age.group(2))
        if 0 < value < 120:
            entities.append(Entity("age", str(value)))

    action = _medication_action(lowered)
    if action:
        entities.append(Entity("medication_action", action[0]))
        if action[1]:
            entities.append(Entity("medication_name", action[1]))

    dosage = _DOSAGE_RE.search(lowered)
    if dosage:
        entities.append(Entity("dosage", dosage.group(1).replace(" ", "")))
    frequency = parse_frequency(lowered)
    if frequency:
        entities.append(Entity("frequency", frequency.value))
    for t in parse_times(lowered):
        entities.append(Entity("time", t))

    return entities


def _sentiment(lowered: str) -> tuple[str, float]:
    hits = _find_terms(lowered, NEGATIVE_WORDS)
    if not hits:
        return "neutral", 0.0
    return "negative", min(1.0, 0.6 + 0.15 * len(hits))


class IntentRouter:
    """Deterministic intent classification in fixed priority order."""

    def route(self, text: str, active_flow: FlowKind = FlowKind.NONE) -> IntentResult:
        lowered = re.sub(r"\s+", " ", (text or "").lower()).strip()
        entities = extract_entities(lowered)
        sentiment, sentiment_conf = _sentiment(lowered)

        intent, confidence = self._classify(lowered, entities)

        if active_flow != FlowKind.NONE and not self._interrupts(intent, lowered, active_flow):
            flow_intent = INTENT_FOR_FLOW[active_flow]
            logger.debug("Continuation of %s (raw intent %s)", active_flow.value, intent.value)
            return IntentResult(
                intent=flow_intent,
                confidence=1.0,
                entities=entities,
                continuation=True,
                sentiment=sentiment,
                sentiment_confidence=sentiment_conf,
                raw_intent=intent,
            )

        return IntentResult(
            intent=intent,
            confidence=confidence,
            entities=entities,
            sentiment=sentiment,
            sentiment_confidence=sentiment_conf,
        )

    # ── Internal ──

    def _classify(self, lowered: str, entities: list[Entity]) -> tuple[Intent, float]:
        types = {e.type for e in entities}
        words = lowered.split()
        first = words[0].strip(".!,") if words else ""

        if not lowered:
            return Intent.GENERAL_QUERY, 0.1
        if lowered.strip(".!") in _RESET_WORDS:
            return Intent.RESET, 1.0
        if first in _MED_RESPONSE_WORDS and len(words) <= 2:
            return Intent.MEDICATION_RESPONSE, 0.95
        if lowered.strip(".!") in _HELP_WORDS:
            return Intent.HELP, 1.0
        if re.search(r"\blanguage\b", lowered) or "language" in types and (
            re.search(r"\b(?:switch|change|speak|reply|talk)\b", lowered)
            or lowered in LANGUAGE_CODES
        ):
            return Intent.LANGUAGE_CHANGE, 0.9
        if "medication_action" in types:
            action = next(e.value for e in entities if e.type == "medication_action")
            if action == "add" and "medication_name" not in types:
                return Intent.MEDICATION_SETUP, 0.9
            return Intent.MEDICATION_REMINDER, 0.9
        if self._is_profile_update(lowered, types):
            return Intent.PROFILE_UPDATE, 0.8
        if any(_contains_word(lowered, w) for w in _EMERGENCY_WORDS):
            return Intent.EMERGENCY_HELP, 0.9
        if "health_topic" in types and any(p in lowered for p in _EDUCATION_PHRASES):
            return Intent.HEALTH_EDUCATION, 0.85
        if "symptom" in types or any(p in lowered for p in _SYMPTOM_PHRASES):
            return Intent.SYMPTOM_ASSESSMENT, 0.8
        if any(_contains_word(lowered, w) for w in _DOCTOR_WORDS):
            return Intent.DOCTOR_CONSULTATION, 0.8
        if "health_topic" in types or any(p in lowered for p in _EDUCATION_PHRASES):
            return Intent.HEALTH_EDUCATION, 0.7
        if any(_contains_word(lowered, w) for w in _TIP_WORDS):
            return Intent.HEALTH_TIPS, 0.7
        if re.search(rf"\b{MEDICATION_WORDS}\b", lowered):
            return Intent.MEDICATION_REMINDER, 0.6
        if any(lowered.startswith(g) for g in _GREETINGS) and len(words) <= 4:
            return Intent.GREETING, 0.9
        return Intent.GENERAL_QUERY, 0.3

    @staticmethod
    def _is_profile_update(lowered: str, types: set[str]) -> bool:
        if re.search(r"\b(?:my name is|my city is|i live in|i am from|i'm from|allergic to|my allerg|emergency contact)\b", lowered):
            return True
        if "age" in types and re.search(r"\b(?:years? old|my age|age is|i am \d|i'm \d)", lowered):
            return True
        if re.search(r"\b(?:i am|i'm)\s+(?:male|female|a man|a woman)\b", lowered):
            return True
        if "condition" in types and re.search(r"\b(?:i have|i suffer from|diagnosed with|i am|i'm)\b", lowered) \
                and "symptom" not in types:
            return True
        if re.search(r"\bnotifications?\s+(?:on|off)\b|\b(?:turn|switch)\s+(?:on|off)\s+notifications?\b", lowered):
            return True
        return False

    @staticmethod
    def _interrupts(intent: Intent, lowered: str, active_flow: FlowKind) -> bool:
        """Does this message break out of the active flow?"""
        if intent == Intent.MEDICATION_RESPONSE:
            # "skip" answers the optional dosage question during setup
            return not (active_flow == FlowKind.MEDICATION_SETUP and lowered.strip(".!") == "skip")
        if intent in (Intent.RESET, Intent.HELP):
            return True
        if intent == Intent.MEDICATION_SETUP:
            return active_flow != FlowKind.MEDICATION_SETUP
        if intent == Intent.MEDICATION_REMINDER:
            # explicit commands only ("list meds", "add medication X")
            return bool(re.search(r"\b(?:add|list|show|remove|delete|report)\b", lowered))
        if intent == Intent.SYMPTOM_ASSESSMENT and active_flow != FlowKind.SYMPTOM_ASSESSMENT:
            return any(p in lowered for p in _ASSESSMENT_START)
        return False
