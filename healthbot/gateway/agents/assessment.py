"""
Assessment Flow Engine — decision-tree symptom interviews.

A flow is an ordered tuple of AssessmentQuestions.  Every interview starts
in the ``general`` flow; the primary-concern answer branches into a
specialist flow, which then re-asks the shared duration / severity /
impact questions so scoring always has its inputs.

Per answer:
  1. Normalize + record the answer
  2. Emergency check over everything collected so far (classifier plus
     the interview red flags: high fever, severity ≥ 8)
  3. Branch if the question owns a branching function
  4. Otherwise advance; past the last question → completed

Terminal states: ``emergency`` (flow aborted) and ``completed`` (scored).
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from healthbot.gateway.agents.emergency_classifier import (
    EmergencyClassifier,
    EmergencyEvent,
    EmergencyLevel,
    format_emergency_response,
)
from healthbot.gateway.records import AssessmentFlowState, Urgency

logger = logging.getLogger("gateway.agents.assessment")


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    MULTI_SELECT = "multi_select"
    SCALE = "scale"
    FREE_TEXT = "free_text"


class StepStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class AssessmentQuestion:
    id: str
    prompt: str
    type: QuestionType
    options: tuple[str, ...] = ()
    next_flow: Optional[Callable[[str], str]] = None


@dataclass
class AssessmentResult:
    flow: str
    severity: int
    urgency: Urgency
    recommendations: list[str] = field(default_factory=list)
    self_care: list[str] = field(default_factory=list)
    seek_help: list[str] = field(default_factory=list)
    risk_score: int = 0
    responses: dict[str, str] = field(default_factory=dict)
    emergency: Optional[EmergencyEvent] = None


@dataclass
class StepOutcome:
    status: StepStatus
    reply: str
    state: AssessmentFlowState
    result: Optional[AssessmentResult] = None
    emergency: Optional[EmergencyEvent] = None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Question bank
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

# primary-concern option → specialist flow
CONCERN_FLOWS: dict[str, str] = {
    "Fever or feeling hot": "fever_assessment",
    "Pain (headache, body ache, etc.)": "pain_assessment",
    "Breathing problems": "respiratory_assessment",
    "Stomach/digestive issues": "digestive_assessment",
    "Skin problems": "skin_assessment",
    "Mental health concerns": "mental_health_assessment",
    "Other symptoms": "general_symptoms",
}

# free-text fallbacks when the answer is not one of the options
_CONCERN_KEYWORDS: list[tuple[str, str]] = [
    ("fever", "fever_assessment"),
    ("hot", "fever_assessment"),
    ("pain", "pain_assessment"),
    ("ache", "pain_assessment"),
    ("breath", "respiratory_assessment"),
    ("cough", "respiratory_assessment"),
    ("stomach", "digestive_assessment"),
    ("digest", "digestive_assessment"),
    ("skin", "skin_assessment"),
    ("rash", "skin_assessment"),
    ("mental", "mental_health_assessment"),
    ("anxi", "mental_health_assessment"),
]


def route_primary_concern(answer: str) -> str:
    if answer in CONCERN_FLOWS:
        return CONCERN_FLOWS[answer]
    lowered = answer.lower()
    for keyword, flow in _CONCERN_KEYWORDS:
        if keyword in lowered:
            return flow
    return "general_symptoms"


PRIMARY_CONCERN = AssessmentQuestion(
    id="primary_concern",
    prompt="What is your main health concern today?",
    type=QuestionType.SINGLE_CHOICE,
    options=tuple(CONCERN_FLOWS),
    next_flow=route_primary_concern,
)

SYMPTOM_DURATION = AssessmentQuestion(
    id="symptom_duration",
    prompt="How long have you had these symptoms?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "Less than 24 hours",
        "1-3 days",
        "4-7 days",
        "1-2 weeks",
        "More than 2 weeks",
        "Comes and goes",
    ),
)

SEVERITY_LEVEL = AssessmentQuestion(
    id="severity_level",
    prompt="On a scale of 1 to 10, how severe are your symptoms? (1 = very mild, 10 = worst imaginable)",
    type=QuestionType.SCALE,
)

IMPACT_ACTIVITIES = AssessmentQuestion(
    id="impact_activities",
    prompt="How much are these symptoms affecting your daily activities?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "No impact on daily activities",
        "Slight difficulty with daily activities",
        "Moderate difficulty with daily activities",
        "Significant impact on daily activities",
        "Unable to do normal activities",
        "Need to stay in bed/rest",
    ),
)

FEVER_TEMPERATURE = AssessmentQuestion(
    id="fever_temperature",
    prompt="What is your temperature? You can pick an option or type the reading (e.g. 101°F).",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "Normal temperature but feeling hot",
        "99-100°F (37.2-37.8°C)",
        "101-102°F (38.3-38.9°C)",
        "103°F (39.4°C) or higher",
        "Haven't measured but feeling very hot",
        "Chills and shivering",
    ),
)

FEVER_SYMPTOMS = AssessmentQuestion(
    id="fever_symptoms",
    prompt="Do you have any of these along with the fever?",
    type=QuestionType.MULTI_SELECT,
    options=(
        "Headache",
        "Body aches",
        "Chills",
        "Sweating",
        "Loss of appetite",
        "Fatigue",
        "Rash",
        "Neck stiffness",
    ),
)

FEVER_EXPOSURE = AssessmentQuestion(
    id="fever_exposure",
    prompt="Have you had any of these recently?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "Recent travel",
        "Contact with someone who is sick",
        "Mosquito bites (dengue or malaria area)",
        "Contaminated food or water",
        "None of these",
    ),
)

PAIN_LOCATION = AssessmentQuestion(
    id="pain_location",
    prompt="Where is the pain?",
    type=QuestionType.SINGLE_CHOICE,
    options=("Head", "Chest", "Abdomen/stomach", "Back", "Joints or muscles", "Other"),
)

PAIN_TYPE = AssessmentQuestion(
    id="pain_type",
    prompt="How would you describe the pain?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "Sharp/stabbing",
        "Dull/aching",
        "Burning",
        "Throbbing",
        "Cramping",
        "Pressure/tightness",
    ),
)

PAIN_TRIGGERS = AssessmentQuestion(
    id="pain_triggers",
    prompt="What makes the pain worse?",
    type=QuestionType.MULTI_SELECT,
    options=(
        "Movement or activity",
        "Eating",
        "Breathing deeply",
        "Rest/lying down",
        "No clear trigger",
    ),
)

BREATHING_DIFFICULTY = AssessmentQuestion(
    id="breathing_difficulty",
    prompt="Which best describes your breathing problem?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "Breathless with activity",
        "Difficulty breathing at rest",
        "Wheezing",
        "Persistent cough",
        "Chest tightness",
    ),
)

RESPIRATORY_TRIGGERS = AssessmentQuestion(
    id="respiratory_triggers",
    prompt="Does anything seem to trigger it?",
    type=QuestionType.MULTI_SELECT,
    options=(
        "Exercise",
        "Dust, smoke or pollen",
        "Cold air",
        "Lying flat",
        "Started with a cold or flu",
        "No clear trigger",
    ),
)

DIGESTIVE_SYMPTOMS = AssessmentQuestion(
    id="digestive_symptoms",
    prompt="Which of these do you have?",
    type=QuestionType.MULTI_SELECT,
    options=(
        "Nausea",
        "Vomiting",
        "Diarrhoea",
        "Constipation",
        "Abdominal pain",
        "Bloating",
        "Blood in stool or vomit",
    ),
)

DIGESTIVE_PATTERN = AssessmentQuestion(
    id="digestive_pattern",
    prompt="When is it worst?",
    type=QuestionType.SINGLE_CHOICE,
    options=("After eating", "Constant", "Comes and goes", "Worse at night", "Not sure"),
)

SKIN_SYMPTOMS = AssessmentQuestion(
    id="skin_symptoms",
    prompt="What are you noticing on your skin?",
    type=QuestionType.MULTI_SELECT,
    options=("Rash", "Itching", "Swelling", "Blisters", "Redness or warmth", "Hives"),
)

SKIN_SPREAD = AssessmentQuestion(
    id="skin_spread",
    prompt="Is it spreading?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "Staying in one place",
        "Slowly spreading",
        "Spreading quickly",
        "Swelling of face, lips or tongue",
    ),
)

MOOD_SYMPTOMS = AssessmentQuestion(
    id="mood_symptoms",
    prompt="Which of these have you been experiencing?",
    type=QuestionType.MULTI_SELECT,
    options=(
        "Low mood",
        "Anxiety or worry",
        "Trouble sleeping",
        "Loss of interest in things",
        "Feeling hopeless",
        "Panic attacks",
    ),
)

MOOD_SAFETY = AssessmentQuestion(
    id="mood_safety",
    prompt="Have you had any thoughts of harming yourself?",
    type=QuestionType.SINGLE_CHOICE,
    options=(
        "No",
        "Sometimes, but I would not act on them",
        "Yes, I have thoughts of suicide or self harm",
    ),
)

SYMPTOM_DESCRIPTION = AssessmentQuestion(
    id="symptom_description",
    prompt="Please describe your main symptoms in a few words.",
    type=QuestionType.FREE_TEXT,
)

_SHARED_TAIL = (SEVERITY_LEVEL, IMPACT_ACTIVITIES)

ASSESSMENT_FLOWS: dict[str, tuple[AssessmentQuestion, ...]] = {
    # Entry point only; primary_concern always branches to a specialist flow
    "general": (PRIMARY_CONCERN,),
    "fever_assessment": (SYMPTOM_DURATION, FEVER_TEMPERATURE, FEVER_SYMPTOMS, FEVER_EXPOSURE) + _SHARED_TAIL,
    "pain_assessment": (SYMPTOM_DURATION, PAIN_LOCATION, PAIN_TYPE, PAIN_TRIGGERS) + _SHARED_TAIL,
    "respiratory_assessment": (SYMPTOM_DURATION, BREATHING_DIFFICULTY, RESPIRATORY_TRIGGERS) + _SHARED_TAIL,
    "digestive_assessment": (SYMPTOM_DURATION, DIGESTIVE_SYMPTOMS, DIGESTIVE_PATTERN) + _SHARED_TAIL,
    "skin_assessment": (SYMPTOM_DURATION, SKIN_SYMPTOMS, SKIN_SPREAD) + _SHARED_TAIL,
    "mental_health_assessment": (SYMPTOM_DURATION, MOOD_SYMPTOMS, MOOD_SAFETY) + _SHARED_TAIL,
    "general_symptoms": (SYMPTOM_DESCRIPTION, SYMPTOM_DURATION) + _SHARED_TAIL,
}

# Answers that read as a classifier phrase in context, e.g. pain + "Chest".
# (question id, option) → phrase added to the emergency-check text
ANSWER_CONTEXT: dict[tuple[str, str], str] = {
    ("pain_location", "Chest"): "chest pain",
    ("skin_spread", "Swelling of face, lips or tongue"): "severe allergic reaction",
}

# ── Guidance keyed by primary-concern keyword ──
# (keyword, recommendations, self-care, seek help if)
CONCERN_GUIDANCE: list[tuple[str, list[str], list[str], list[str]]] = [
    ("fever",
     ["Monitor your temperature every 4-6 hours", "Drink plenty of fluids", "Get adequate rest"],
     ["Paracetamol as directed on the pack can reduce fever", "Use a damp cloth on your forehead", "Wear light clothing"],
     ["Fever lasts more than 3 days", "Temperature above 103°F (39.4°C)", "Rash, stiff neck or confusion"]),
    ("pain",
     ["Apply a hot or cold pack to the area", "Avoid activities that make the pain worse"],
     ["Over-the-counter pain relievers as directed", "Gentle stretching if comfortable"],
     ["Pain is severe or getting worse", "Pain after an injury", "Numbness or weakness"]),
    ("breathing",
     ["Rest in an upright position", "Avoid smoke, dust and other triggers"],
     ["Use your prescribed inhaler if you have one", "Steam inhalation may ease congestion"],
     ["Breathlessness at rest", "Lips or face turning blue", "Chest pain or tightness"]),
    ("stomach",
     ["Sip water or oral rehydration solution often", "Eat small, bland meals"],
     ["Avoid spicy or oily food and alcohol", "Rest your stomach for a few hours after vomiting"],
     ["Blood in stool or vomit", "Passing very little urine", "Severe abdominal pain"]),
    ("skin",
     ["Keep the area clean and dry", "Avoid scratching"],
     ["Calamine lotion or a cool compress can ease itching", "Avoid new soaps or cosmetics"],
     ["Rash spreads quickly", "Fever with a rash", "Swelling of face, lips or tongue"]),
    ("mental",
     ["Talk to someone you trust about how you feel", "Keep a regular sleep routine"],
     ["Short walks and daylight can lift mood", "Limit alcohol and caffeine"],
     ["Thoughts of harming yourself", "Low mood lasting more than 2 weeks", "Mental health helpline: 1800-599-0019"]),
]

GENERAL_RECOMMENDATIONS = ["Keep a note of your symptoms and when they change"]
GENERAL_SELF_CARE = ["Stay hydrated and get enough rest"]
GENERAL_SEEK_HELP = ["Symptoms get worse or new symptoms appear", "You feel very unwell"]

URGENCY_BADGES = {Urgency.LOW: "🟢", Urgency.MODERATE: "🟡", Urgency.HIGH: "🔴"}

DISCLAIMER = (
    "⚕️ This is general guidance, not a medical diagnosis. "
    "Please consult a healthcare professional for proper evaluation."
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Pure helpers — normalization, scoring
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_INT_RE = re.compile(r"\d+")
_TEMP_RE = re.compile(r"(\d{2,3}(?:\.\d+)?)\s*°?\s*(?:([fc])(?![a-z]))?", re.IGNORECASE)


def _first_int(value: str | None) -> int | None:
    if not value:
        return None
    m = _INT_RE.search(value)
    return int(m.group()) if m else None


def normalize_answer(question: AssessmentQuestion, raw: str) -> str:
    """Map a reply to the stored answer.  Unparseable input is kept as-is."""
    text = (raw or "").strip()

    if question.type == QuestionType.SCALE:
        value = _first_int(text)
        if value is not None and 1 <= value <= 10:
            return str(value)
        return text

    if question.type == QuestionType.FREE_TEXT or not question.options:
        return text

    if question.type == QuestionType.SINGLE_CHOICE:
        if text.isdigit() and 1 <= int(text) <= len(question.options):
            return question.options[int(text) - 1]
        return _match_option(question.options, text) or text

    # multi-select: "1,3,5" / "1 3 5" / "1 and 3"
    tokens = [t for t in re.split(r"[,\s]+|\band\b", text) if t]
    if tokens and all(t.isdigit() and 1 <= int(t) <= len(question.options) for t in tokens):
        labels: list[str] = []
        for t in tokens:
            label = question.options[int(t) - 1]
            if label not in labels:
                labels.append(label)
        return ", ".join(labels)
    return _match_option(question.options, text) or text


def _match_option(options: tuple[str, ...], text: str) -> str | None:
    lowered = text.lower()
    for option in options:
        if option.lower() == lowered:
            return option
    if len(lowered) >= 3:
        partial = [o for o in options if lowered in o.lower()]
        if len(partial) == 1:
            return partial[0]
    return None


def calculate_severity(responses: dict[str, str]) -> int:
    """Severity 1–10 from the severity answer, duration and impact."""
    score = _first_int(responses.get("severity_level")) or 1

    duration = (responses.get("symptom_duration") or "").lower()
    if "more than 2 weeks" in duration:
        score += 3
    elif "1-2 weeks" in duration:
        score += 2
    elif "4-7 days" in duration:
        score += 1

    impact = (responses.get("impact_activities") or "").lower()
    if "unable to do" in impact or "stay in bed" in impact:
        score += 4
    elif "significant impact" in impact:
        score += 3
    elif "moderate difficulty" in impact:
        score += 2
    elif "slight difficulty" in impact:
        score += 1

    # round half up
    return max(1, min(10, math.floor(score / 2 + 0.5)))


def derive_urgency(responses: dict[str, str]) -> Urgency:
    level = _first_int(responses.get("severity_level")) or 1
    impact = (responses.get("impact_activities") or "").lower()
    duration = (responses.get("symptom_duration") or "").lower()

    if level >= 7 or "unable to do" in impact or "stay in bed" in impact:
        urgency = Urgency.HIGH
    elif level >= 5 or "significant impact" in impact:
        urgency = Urgency.MODERATE
    else:
        urgency = Urgency.LOW

    if "more than 2 weeks" in duration and urgency == Urgency.LOW:
        urgency = Urgency.MODERATE
    return urgency


def is_high_fever(answer: str) -> bool:
    """≥ 103°F / 39.4°C, or described as very hot."""
    lowered = (answer or "").lower()
    if "very hot" in lowered:
        return True
    for m in _TEMP_RE.finditer(lowered):
        value = float(m.group(1))
        unit = m.group(2) or ("c" if value < 50 else "f")
        if unit == "c" and 34 <= value < 50 and value >= 39.4:
            return True
        if unit == "f" and 90 <= value <= 115 and value >= 103:
            return True
    return False


def format_question(question: AssessmentQuestion) -> str:
    lines = [question.prompt]
    if question.options:
        lines.append("")
        for i, option in enumerate(question.options, 1):
            lines.append(f"{i}. {option}")
        lines.append("")
        if question.type == QuestionType.MULTI_SELECT:
            lines.append("Reply with numbers separated by commas (e.g., 1,3,5).")
        else:
            lines.append("Please reply with the number of your choice.")
    elif question.type == QuestionType.SCALE:
        lines.extend(["", "Please reply with a number from 1 to 10."])
    return "\n".join(lines)


def format_result(result: AssessmentResult) -> str:
    badge = URGENCY_BADGES.get(result.urgency, "")
    lines = [
        "📋 *Symptom Assessment Summary*",
        "",
        f"Severity: {result.severity}/10",
        f"Urgency: {result.urgency.value.upper()} {badge}",
    ]
    for title, items in (
        ("*Recommendations:*", result.recommendations),
        ("*Self-care:*", result.self_care),
        ("*Seek medical help if:*", result.seek_help),
    ):
        if items:
            lines.extend(["", title])
            lines.extend(f"• {item}" for item in items)
    lines.extend(["", DISCLAIMER])
    return "\n".join(lines)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Engine
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AssessmentEngine:
    """Runs one interview step at a time over an AssessmentFlowState."""

    INTRO = (
        "Let's check your symptoms. I'll ask a few quick questions.\n"
        "Reply *cancel* at any time to stop.\n\n"
    )

    def __init__(self, classifier: EmergencyClassifier | None = None) -> None:
        self._classifier = classifier or EmergencyClassifier()

    def start(self) -> tuple[AssessmentFlowState, str]:
        state = AssessmentFlowState(flow_name="general", step=0)
        return state, self.INTRO + format_question(self.current_question(state))

    @staticmethod
    def current_question(state: AssessmentFlowState) -> AssessmentQuestion:
        flow = ASSESSMENT_FLOWS.get(state.flow_name, ASSESSMENT_FLOWS["general"])
        return flow[min(state.step, len(flow) - 1)]

    def answer(
        self,
        state: AssessmentFlowState,
        text: str,
        risk: int = 0,
    ) -> StepOutcome:
        state = state.model_copy(deep=True)
        if state.flow_name not in ASSESSMENT_FLOWS:
            logger.warning("Unknown flow '%s' — restarting at general", state.flow_name)
            state.flow_name, state.step = "general", 0

        question = self.current_question(state)
        answer = normalize_answer(question, text)
        state.responses[question.id] = answer

        event = self._emergency_check(state, text)
        if event is not None:
            logger.warning(
                "Assessment interrupted by emergency at %s/%s: %s",
                state.flow_name, question.id, event.method,
            )
            result = self._build_result(state, risk, emergency=event)
            return StepOutcome(
                status=StepStatus.EMERGENCY,
                reply=format_emergency_response(event),
                state=state,
                result=result,
                emergency=event,
            )

        target = question.next_flow(answer) if question.next_flow else None
        if target and target != state.flow_name and target in ASSESSMENT_FLOWS:
            state.flow_name, state.step = target, 0
        else:
            state.step += 1

        if state.step >= len(ASSESSMENT_FLOWS[state.flow_name]):
            result = self._build_result(state, risk)
            logger.info(
                "Assessment completed: flow=%s severity=%d urgency=%s",
                state.flow_name, result.severity, result.urgency.value,
            )
            return StepOutcome(
                status=StepStatus.COMPLETED,
                reply=format_result(result),
                state=state,
                result=result,
            )

        return StepOutcome(
            status=StepStatus.IN_PROGRESS,
            reply=format_question(self.current_question(state)),
            state=state,
        )

    # ── Internal ──

    def _emergency_check(self, state: AssessmentFlowState, raw: str) -> EmergencyEvent | None:
        parts = [raw]
        for qid, answer in state.responses.items():
            parts.append(answer)
            for label in {answer, *answer.split(", ")}:
                phrase = ANSWER_CONTEXT.get((qid, label))
                if phrase:
                    parts.append(phrase)
        event = self._classifier.classify(" | ".join(parts))
        if event is not None:
            return event

        temperature = state.responses.get("fever_temperature")
        if temperature and is_high_fever(temperature):
            return EmergencyEvent(
                level=EmergencyLevel.URGENT,
                score=8,
                method="red_flag: high fever",
                category="fever",
                symptoms=["high fever"],
                confidence=0.9,
                recommendations=[
                    "See a doctor today or go to the nearest hospital",
                    "Take paracetamol as directed and keep drinking fluids",
                ],
            )

        level = _first_int(state.responses.get("severity_level"))
        if level is not None and 8 <= level <= 10:
            return EmergencyEvent(
                level=EmergencyLevel.URGENT,
                score=8,
                method="red_flag: severity",
                category="severe_symptoms",
                symptoms=[f"severity {level}/10"],
                confidence=0.8,
                recommendations=["Seek medical attention today"],
            )
        return None

    def _build_result(
        self,
        state: AssessmentFlowState,
        risk: int,
        emergency: EmergencyEvent | None = None,
    ) -> AssessmentResult:
        responses = dict(state.responses)
        severity = calculate_severity(responses)
        urgency = Urgency.HIGH if emergency else derive_urgency(responses)

        recommendations: list[str] = []
        self_care: list[str] = []
        seek_help: list[str] = []

        if urgency == Urgency.HIGH:
            recommendations.append("Please see a doctor today")
        elif urgency == Urgency.MODERATE:
            recommendations.append("Consider seeing a doctor within 1-2 days")

        concern = (responses.get("primary_concern") or "").lower()
        for keyword, recs, care, help_if in CONCERN_GUIDANCE:
            if keyword in concern:
                recommendations.extend(recs)
                self_care.extend(care)
                seek_help.extend(help_if)

        if "more than 2 weeks" in (responses.get("symptom_duration") or "").lower():
            recommendations.append("Chronic symptoms require medical evaluation")
        if risk >= 4:
            recommendations.append(
                "Given your health profile, consult a doctor sooner rather than later"
            )

        recommendations.extend(GENERAL_RECOMMENDATIONS)
        self_care.extend(GENERAL_SELF_CARE)
        seek_help.extend(GENERAL_SEEK_HELP)

        return AssessmentResult(
            flow=state.flow_name,
            severity=severity,
            urgency=urgency,
            recommendations=recommendations,
            self_care=self_care,
            seek_help=seek_help,
            risk_score=risk,
            responses=responses,
            emergency=emergency,
        )
