"""
Emergency Classifier — Deterministic emergency triage over free text.

Runs before anything else on every inbound message and again inside
symptom assessments.  Pure and stateless: the same text always yields
the same event.

Checking order:
  1. Critical symptom categories (first category with a phrase hit wins)
  2. Generic immediate keywords
  3. Urgent keywords (all hits accumulate)
  4. Symptom combinations (AND-rules, evaluated regardless of prior hits)
  5. NLP signal boost (intent / entities / sentiment), if supplied

Final score ≥ 9 → immediate, ≥ 7 → urgent, otherwise no emergency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from healthbot.gateway.handlers.directory import format_emergency_numbers
from healthbot.gateway.records import MedicalProfile, Demographics

logger = logging.getLogger("gateway.agents.emergency")


class EmergencyLevel(str, Enum):
    IMMEDIATE = "immediate"
    URGENT = "urgent"


@dataclass
class NLPSignal:
    """Optional hints from the intent router."""

    intent: str | None = None
    entity_types: list[str] = field(default_factory=list)
    sentiment: str | None = None  # "positive" / "neutral" / "negative"
    sentiment_confidence: float = 0.0


@dataclass
class EmergencyEvent:
    """Outcome of emergency classification."""

    level: EmergencyLevel
    score: int
    method: str  # "category: cardiovascular", "keyword: chest pain", "combination", "nlp"
    category: str = "general_emergency"
    protocol: str = "general_emergency"
    symptoms: list[str] = field(default_factory=list)
    confidence: float = 0.95
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_immediate(self) -> bool:
        return self.level == EmergencyLevel.IMMEDIATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "score": self.score,
            "method": self.method,
            "category": self.category,
            "protocol": self.protocol,
            "symptoms": list(self.symptoms),
            "confidence": self.confidence,
            "recommendations": list(self.recommendations),
        }


# ── Critical symptom categories ──
# (category, phrases, score, protocol), checked in table order
CRITICAL_CATEGORIES: list[tuple[str, list[str], int, str]] = [
    ("cardiovascular", [
        "chest pain with radiation to arm", "chest pain with radiation to jaw",
        "crushing chest pain", "chest pain with sweating", "chest pain with nausea",
        "severe shortness of breath", "rapid irregular heartbeat",
    ], 10, "cardiac_emergency"),
    ("respiratory", [
        "cannot speak in full sentences", "blue lips", "blue face",
        "severe wheezing", "choking", "stopped breathing",
    ], 10, "respiratory_emergency"),
    ("neurological", [
        "sudden severe headache", "face drooping", "arm weakness",
        "speech difficulty", "confusion", "seizure", "unconscious",
    ], 10, "neurological_emergency"),
    ("trauma", [
        "severe bleeding", "head injury", "broken bone", "severe burn", "deep cut",
    ], 9, "trauma_emergency"),
    ("poisoning", [
        "overdose", "poisoning", "chemical exposure", "severe nausea after eating",
    ], 9, "poisoning_emergency"),
    ("mental_health", [
        "thoughts of suicide", "want to hurt myself", "want to die",
        "severe depression", "psychotic episode",
    ], 10, "mental_health_emergency"),
]

# ── Generic immediate keywords ──
# (keyword, protocol)
IMMEDIATE_KEYWORDS: list[tuple[str, str]] = [
    ("chest pain", "cardiac_emergency"),
    ("heart attack", "cardiac_emergency"),
    ("can't breathe", "respiratory_emergency"),
    ("cannot breathe", "respiratory_emergency"),
    ("difficulty breathing", "respiratory_emergency"),
    ("shortness of breath", "respiratory_emergency"),
    ("unresponsive", "neurological_emergency"),
    ("stroke", "neurological_emergency"),
    ("heavy bleeding", "trauma_emergency"),
    ("severe allergic reaction", "general_emergency"),
    ("anaphylaxis", "general_emergency"),
    ("suicide", "mental_health_emergency"),
    ("self harm", "mental_health_emergency"),
    ("kill myself", "mental_health_emergency"),
]

URGENT_KEYWORDS: list[str] = [
    "severe pain", "high fever", "persistent vomiting", "severe headache",
    "disorientation", "severe dizziness", "fainting", "rapid heartbeat",
    "chest tightness", "severe abdominal pain", "difficulty swallowing",
    "severe dehydration",
]

# ── Symptom combinations ──
# (label, required parts, score)
SYMPTOM_COMBINATIONS: list[tuple[str, list[str], int]] = [
    ("chest pain + shortness of breath", ["chest pain", "shortness of breath"], 10),
    ("fever + severe headache + neck stiffness", ["fever", "severe headache", "neck stiffness"], 9),
    ("abdominal pain + vomiting + fever", ["abdominal pain", "vomiting", "fever"], 7),
    ("headache + vision changes + confusion", ["headache", "vision changes", "confusion"], 9),
]

MEDICAL_ENTITY_TYPES = {"symptom", "condition", "body_part"}

PROTOCOL_ACTIONS: dict[str, list[str]] = {
    "cardiac_emergency": [
        "Call 112 immediately",
        "Chew an aspirin if you are not allergic",
        "Sit down, stay calm and loosen tight clothing",
    ],
    "respiratory_emergency": [
        "Call 112 immediately",
        "Sit upright and try to breathe slowly",
        "Use your inhaler if one has been prescribed",
    ],
    "neurological_emergency": [
        "Call 112 immediately",
        "Note the time the symptoms started",
        "Do not give food or water",
    ],
    "trauma_emergency": [
        "Call 112 immediately",
        "Apply firm pressure to any bleeding wound",
        "Do not move the person if a spinal injury is possible",
    ],
    "poisoning_emergency": [
        "Call 112 immediately",
        "Do not induce vomiting unless told to by a doctor",
        "Keep the substance or container to show the medical team",
    ],
    "mental_health_emergency": [
        "Call 112 or the mental health helpline 1800-599-0019 now",
        "Stay with someone you trust",
        "Move away from anything you could use to hurt yourself",
    ],
}

DEFAULT_ACTIONS: list[str] = [
    "Call 112 immediately",
    "Seek immediate medical attention",
    "Do not delay emergency care",
]

URGENT_ACTIONS: list[str] = ["Seek medical attention within 24 hours"]

# ── Advisory risk profile ──
CHRONIC_CONDITION_WEIGHTS: dict[str, int] = {
    "heart disease": 3,
    "kidney disease": 3,
    "cancer": 3,
    "immunocompromised": 3,
    "diabetes": 2,
    "hypertension": 2,
    "asthma": 2,
}


def _normalize(text: str) -> str:
    return (text or "").lower().replace("’", "'").replace("‘", "'")


def actions_for_protocol(protocol: str) -> list[str]:
    return list(PROTOCOL_ACTIONS.get(protocol, DEFAULT_ACTIONS))


def _level_for(score: int) -> EmergencyLevel | None:
    if score >= 9:
        return EmergencyLevel.IMMEDIATE
    if score >= 7:
        return EmergencyLevel.URGENT
    return None


class EmergencyClassifier:
    """Keyword/rule emergency triage.  No I/O, no state."""

    def classify(self, text: str, nlp: NLPSignal | None = None) -> EmergencyEvent | None:
        lowered = _normalize(text)
        if not lowered.strip() and nlp is None:
            return None

        # 1. Critical categories
        for category, phrases, score, protocol in CRITICAL_CATEGORIES:
            hits = [p for p in phrases if p in lowered]
            if hits:
                logger.warning("Emergency category '%s' matched: %s", category, hits)
                return EmergencyEvent(
                    level=EmergencyLevel.IMMEDIATE,
                    score=10,
                    method=f"category: {category}",
                    category=category,
                    protocol=protocol,
                    symptoms=hits,
                    confidence=0.95,
                    recommendations=actions_for_protocol(protocol),
                )

        # 2. Generic immediate keywords
        for keyword, protocol in IMMEDIATE_KEYWORDS:
            if keyword in lowered:
                logger.warning("Immediate emergency keyword matched: %s", keyword)
                return EmergencyEvent(
                    level=EmergencyLevel.IMMEDIATE,
                    score=10,
                    method=f"keyword: {keyword}",
                    category=protocol.replace("_emergency", ""),
                    protocol=protocol,
                    symptoms=[keyword],
                    confidence=0.95,
                    recommendations=actions_for_protocol(protocol),
                )

        score = 0
        level: EmergencyLevel | None = None
        method = ""
        confidence = 0.0
        symptoms: list[str] = []

        # 3. Urgent keywords
        urgent_hits = [k for k in URGENT_KEYWORDS if k in lowered]
        if urgent_hits:
            score, level, method, confidence = 7, EmergencyLevel.URGENT, "urgent_keyword", 0.8
            symptoms.extend(urgent_hits)

        # 4. Combinations
        best_label, best_score = "", 0
        for label, parts, combo_score in SYMPTOM_COMBINATIONS:
            if all(part in lowered for part in parts) and combo_score > best_score:
                best_label, best_score = label, combo_score
        if best_score > score:
            score = best_score
            level = _level_for(best_score)
            method = f"combination: {best_label}"
            confidence = 0.85
            symptoms.append(best_label)

        # 5. NLP boost
        if nlp is not None:
            nlp_score = 0
            if nlp.intent == "emergency_help":
                nlp_score = 8
            medical = [t for t in nlp.entity_types if t in MEDICAL_ENTITY_TYPES]
            if len(medical) >= 3:
                nlp_score += 2
            if nlp.sentiment == "negative" and nlp.sentiment_confidence > 0.8:
                nlp_score += 1
            if nlp_score > score:
                score = nlp_score
                level = _level_for(nlp_score)
                method = "nlp"
                confidence = 0.7

        if level is None:
            return None

        protocol = "general_emergency"
        recommendations = (
            list(DEFAULT_ACTIONS) if level == EmergencyLevel.IMMEDIATE else list(URGENT_ACTIONS)
        )
        logger.info("Emergency classified: level=%s score=%d method=%s", level.value, score, method)
        return EmergencyEvent(
            level=level,
            score=min(score, 10),
            method=method,
            protocol=protocol,
            symptoms=symptoms,
            confidence=confidence,
            recommendations=recommendations,
        )


# ── Risk profile ──


def risk_score(demographics: Demographics, medical: MedicalProfile) -> int:
    """Advisory risk score from age, chronic conditions and pregnancy."""
    score = 0
    age = demographics.age
    if age is not None:
        if age <= 5 or age >= 65:
            score += 2
        elif age <= 17 or 50 <= age <= 64:
            score += 1

    conditions = [c.lower() for c in medical.conditions]
    for condition in conditions:
        for name, weight in CHRONIC_CONDITION_WEIGHTS.items():
            if name in condition:
                score += weight
                break

    if any("pregnan" in c for c in conditions):
        score += 2
    return score


# ── Formatting ──


def format_emergency_response(event: EmergencyEvent, hospitals: Sequence[Any] = ()) -> str:
    """Reply text for a detected emergency.  Always names 112."""
    if event.is_immediate:
        lines = [
            "🚨 *MEDICAL EMERGENCY DETECTED* 🚨",
            "",
            "What you describe may need immediate medical attention.",
        ]
    else:
        lines = [
            "⚠️ *URGENT MEDICAL ATTENTION NEEDED*",
            "",
            "What you describe should be checked by a doctor soon.",
        ]

    if event.symptoms:
        lines.append(f"Detected: {', '.join(event.symptoms)}")

    lines.extend(["", "*What to do now:*"])
    actions = event.recommendations or (
        DEFAULT_ACTIONS if event.is_immediate else URGENT_ACTIONS
    )
    for i, action in enumerate(actions, 1):
        lines.append(f"{i}. {action}")
    if not any("112" in a for a in actions):
        lines.append(f"{len(actions) + 1}. If symptoms get worse, call 112 immediately")

    lines.extend(["", "*Emergency numbers:*", format_emergency_numbers()])

    if hospitals:
        lines.extend(["", "*Nearby hospitals:*"])
        for h in list(hospitals)[:3]:
            phone = getattr(h, "phone", "")
            lines.append(f"🏥 {h.name}" + (f" ({phone})" if phone else ""))

    lines.extend(["", "Please do not wait. Get help now."])
    return "\n".join(lines)
