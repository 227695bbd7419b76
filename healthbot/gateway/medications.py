"""
Medication helpers — adherence maths, reply matching and message texts.

Pure functions only; the scheduler owns every read/write of Medication
records and calls into this module for the domain rules.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from healthbot.gateway.records import (
    AdherenceRecord,
    AdherenceStatus,
    FoodInstruction,
    Frequency,
    Medication,
)


class MedicationValidationError(ValueError):
    pass


DEFAULT_TIMES: dict[Frequency, list[str]] = {
    Frequency.DAILY: ["09:00"],
    Frequency.TWICE_DAILY: ["08:00", "20:00"],
    Frequency.THRICE_DAILY: ["08:00", "14:00", "20:00"],
    Frequency.WEEKLY: ["09:00"],
    Frequency.AS_NEEDED: [],
}

FOOD_TEXT: dict[FoodInstruction, str] = {
    FoodInstruction.BEFORE_FOOD: "Take before food",
    FoodInstruction.AFTER_FOOD: "Take after food",
    FoodInstruction.WITH_FOOD: "Take with food",
    FoodInstruction.EMPTY_STOMACH: "Take on an empty stomach",
    FoodInstruction.NO_SPECIFIC: "",
}

FREQUENCY_TEXT: dict[Frequency, str] = {
    Frequency.DAILY: "once daily",
    Frequency.TWICE_DAILY: "twice daily",
    Frequency.THRICE_DAILY: "three times daily",
    Frequency.WEEKLY: "once a week",
    Frequency.AS_NEEDED: "as needed",
}

# Used when the user does not supply side effects
COMMON_SIDE_EFFECTS: dict[str, list[str]] = {
    "metformin": ["nausea", "diarrhoea", "stomach upset"],
    "amlodipine": ["ankle swelling", "dizziness", "flushing"],
    "atorvastatin": ["muscle pain", "headache"],
    "losartan": ["dizziness", "tiredness"],
    "amoxicillin": ["diarrhoea", "rash"],
    "aspirin": ["stomach upset", "bleeding gums"],
    "paracetamol": ["rash (rare)"],
    "ibuprofen": ["stomach pain", "heartburn"],
}

NO_RECENT_REMINDER = "No recent medication reminders found."

RESPONSE_HELP = (
    "I didn't understand that reply.\n\n"
    "For medication reminders, reply:\n"
    "✅ TAKEN, ⏰ SNOOZE, ❌ SKIP or ℹ️ INFO\n\n"
    "Other commands: REPORT, ADD MED, LIST MEDS"
)

RESPONSE_COMMANDS = {"TAKEN", "SKIP", "SKIPPED", "SNOOZE", "INFO"}

WEEKLY_TIPS = [
    "Keep your medicines where you will see them at dose time",
    "Use a weekly pill organiser",
    "Refill prescriptions before you run out",
]


class MedicationInput(BaseModel):
    """Validated request to add a medication."""

    name: str
    dosage: str = ""
    frequency: Frequency = Frequency.DAILY
    times: list[str] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_days: Optional[int] = None
    instructions: str = ""
    food_instructions: FoodInstruction = FoodInstruction.NO_SPECIFIC
    side_effects: list[str] = Field(default_factory=list)
    interactions: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_present(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("medication name is required")
        return value

    @field_validator("times")
    @classmethod
    def _valid_times(cls, value: list[str]) -> list[str]:
        cleaned = []
        for t in value:
            normalized = normalize_time(t)
            if normalized is None:
                raise ValueError(f"invalid reminder time '{t}' (expected HH:MM)")
            if normalized not in cleaned:
                cleaned.append(normalized)
        return sorted(cleaned)


def normalize_time(value: str) -> str | None:
    """Normalize "8:00" / "08.00" / "0800" to "08:00"; None when not a clock time."""
    raw = (value or "").strip().replace(".", ":")
    if ":" not in raw and raw.isdigit() and len(raw) in (3, 4):
        raw = f"{raw[:-2]}:{raw[-2:]}"
    parts = raw.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return f"{hour:02d}:{minute:02d}"


def build_medication(user_id: str, data: MedicationInput, today: date) -> Medication:
    times = list(data.times) or list(DEFAULT_TIMES[data.frequency])
    start = data.start_date or today
    end = data.end_date
    if end is None and data.duration_days:
        end = start + timedelta(days=data.duration_days - 1)
    if end is not None and end < start:
        raise MedicationValidationError("end date is before start date")
    side_effects = list(data.side_effects) or list(
        COMMON_SIDE_EFFECTS.get(data.name.lower().split()[0], [])
    )
    return Medication(
        user_id=user_id,
        name=data.name,
        dosage=data.dosage,
        frequency=data.frequency,
        times=times,
        start_date=start,
        end_date=end,
        instructions=data.instructions,
        food_instructions=data.food_instructions,
        side_effects=side_effects,
        interactions=list(data.interactions),
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Adherence
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

TAKEN_STATUSES = {AdherenceStatus.TAKEN, AdherenceStatus.LATE}


def _taken_rate(records: list[AdherenceRecord]) -> float:
    return sum(1 for r in records if r.status in TAKEN_STATUSES) / len(records)


def adherence_score(records: list[AdherenceRecord]) -> int:
    """Percent of recorded doses taken (late counts as taken).  100 when empty."""
    if not records:
        return 100
    return math.floor(_taken_rate(records) * 100 + 0.5)


def adherence_trend(records: list[AdherenceRecord]) -> tuple[str, float]:
    """Last 7 records vs the 7 before: (improving|declining|stable, delta)."""
    if len(records) < 7:
        return "stable", 0.0
    recent = records[-7:]
    previous = records[-14:-7]
    if not previous:
        return "stable", 0.0
    delta = _taken_rate(recent) - _taken_rate(previous)
    if delta > 0.1:
        return "improving", delta
    if delta < -0.1:
        return "declining", delta
    return "stable", delta


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Scheduling helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def slot_on(slot: str, day: date, tz: tzinfo) -> datetime:
    hour, minute = (int(p) for p in slot.split(":"))
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)


def latest_occurrence(slot: str, local_now: datetime) -> datetime:
    """Most recent datetime of ``slot`` at or before ``local_now``."""
    today = slot_on(slot, local_now.date(), local_now.tzinfo)
    if today <= local_now:
        return today
    return today - timedelta(days=1)


def scheduled_today(med: Medication, day: date) -> bool:
    if not med.is_active or med.frequency == Frequency.AS_NEEDED:
        return False
    if day < med.start_date:
        return False
    if med.end_date is not None and day > med.end_date:
        return False
    if med.frequency == Frequency.WEEKLY:
        return day.weekday() == med.start_date.weekday()
    return True


def _answered(med: Medication, slot: str | None, since: datetime) -> bool:
    """A TAKEN/SKIP for this slot was already recorded after ``since``."""
    return any(
        r.scheduled_time == slot and r.timestamp >= since
        for r in med.adherence_log
        if r.status in (AdherenceStatus.TAKEN, AdherenceStatus.SKIPPED, AdherenceStatus.LATE)
    )


def find_due_medication(
    meds: list[Medication],
    now: datetime,
    tz: tzinfo,
    lookback_minutes: int = 30,
    name: str | None = None,
) -> tuple[Medication, str | None] | None:
    """
    The medication a TAKEN/SKIP/SNOOZE/INFO reply most likely refers to.

    Candidates are active medications prompted (or scheduled) within the
    lookback window.  A name in the reply narrows the candidates; then the
    most recently prompted wins, then the latest scheduled slot, then
    name and id for a stable tie-break.
    """
    local_now = now.astimezone(tz)
    window_start = now - timedelta(minutes=lookback_minutes)
    wanted = (name or "").strip().lower()

    ranked: list[tuple[tuple, Medication, str | None]] = []
    for med in meds:
        if not med.is_active:
            continue
        if wanted and wanted not in med.name.lower():
            continue

        prompted = med.last_prompted_at
        if prompted is not None and window_start <= prompted <= now:
            slot = med.last_prompted_slot
            since = latest_occurrence(slot, local_now) if slot else prompted
            if not _answered(med, slot, since):
                key = (0, -prompted.timestamp(), med.name.lower(), med.id)
                ranked.append((key, med, slot))
            continue

        best_slot, best_at = None, None
        for slot in med.times:
            occurred = latest_occurrence(slot, local_now)
            if not scheduled_today(med, occurred.date()):
                continue
            if _answered(med, slot, occurred):
                continue
            if window_start <= occurred <= now and (best_at is None or occurred > best_at):
                best_slot, best_at = slot, occurred
        if best_at is not None:
            key = (1, -best_at.timestamp(), med.name.lower(), med.id)
            ranked.append((key, med, best_slot))

    if not ranked:
        return None
    ranked.sort(key=lambda item: item[0])
    _, med, slot = ranked[0]
    return med, slot


def find_by_name(meds: list[Medication], name: str) -> Medication | None:
    wanted = (name or "").strip().lower()
    if not wanted:
        return None
    exact = [m for m in meds if m.name.lower() == wanted]
    if exact:
        return exact[0]
    partial = [m for m in meds if wanted in m.name.lower()]
    return partial[0] if partial else None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Message texts
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _label(med: Medication) -> str:
    return f"*{med.name}*" + (f" ({med.dosage})" if med.dosage else "")


def reminder_message(med: Medication, snoozed: bool = False, snooze_minutes: int = 15) -> str:
    lines = ["⏰ *Snoozed Reminder*" if snoozed else "💊 *Medication Reminder*", ""]
    lines.append(f"Time to take {_label(med)}")
    food = FOOD_TEXT.get(med.food_instructions, "")
    if food:
        lines.append(f"🍽️ {food}")
    if med.instructions:
        lines.append(f"📝 {med.instructions}")
    lines.extend([
        "",
        "Reply:",
        "✅ TAKEN - if you've taken it",
        f"⏰ SNOOZE - remind me in {snooze_minutes} minutes",
        "❌ SKIP - if you're skipping this dose",
        "ℹ️ INFO - medication details",
    ])
    return "\n".join(lines)


def taken_message(med: Medication, late: bool = False) -> str:
    lines = [f"✅ Great! {med.name} marked as taken" + (" (late)." if late else ".")]
    lines.append(f"Your adherence score: {med.adherence_score}%")
    if med.side_effects:
        lines.extend(["", "Watch for these side effects:"])
        lines.extend(f"• {s}" for s in med.side_effects)
        lines.append("Contact your doctor if you notice anything unusual.")
    return "\n".join(lines)


def skip_message(med: Medication) -> str:
    return (
        f"❌ Dose of {med.name} marked as skipped.\n"
        f"Your adherence score: {med.adherence_score}%\n\n"
        "Missing doses can make treatment less effective. You can:\n"
        "1. Talk to your doctor if side effects are the problem\n"
        "2. Ask your pharmacist about a simpler schedule\n"
        "3. Reply LIST MEDS to review your reminders\n\n"
        "Do not take a double dose to make up for a missed one unless your doctor says so."
    )


def snooze_message(med: Medication, minutes: int) -> str:
    return f"⏰ OK, I'll remind you about {med.name} again in {minutes} minutes."


def info_message(med: Medication) -> str:
    lines = [f"ℹ️ *{med.name}*"]
    if med.dosage:
        lines.append(f"Dosage: {med.dosage}")
    lines.append(f"Frequency: {FREQUENCY_TEXT.get(med.frequency, med.frequency.value)}")
    if med.times:
        lines.append(f"Reminder times: {', '.join(med.times)}")
    food = FOOD_TEXT.get(med.food_instructions, "")
    if food:
        lines.append(food)
    if med.instructions:
        lines.append(f"Instructions: {med.instructions}")
    if med.side_effects:
        lines.append(f"Possible side effects: {', '.join(med.side_effects)}")
    if med.interactions:
        lines.append(f"Avoid combining with: {', '.join(med.interactions)}")
    if med.end_date:
        lines.append(f"Course ends: {med.end_date.isoformat()}")
    lines.append(f"Adherence score: {med.adherence_score}%")
    return "\n".join(lines)


def added_message(med: Medication) -> str:
    times = ", ".join(med.times) if med.times else "no fixed times (as needed)"
    lines = [
        "✅ *Medication added*",
        "",
        f"{_label(med)}",
        f"Reminders: {times}",
    ]
    if med.end_date:
        lines.append(f"Until: {med.end_date.isoformat()}")
    lines.extend(["", "I'll message you at each reminder time. Reply LIST MEDS to see all your medicines."])
    return "\n".join(lines)


def list_message(meds: list[Medication]) -> str:
    active = [m for m in meds if m.is_active]
    if not active:
        return "You have no active medication reminders. Reply ADD MED to set one up."
    lines = ["💊 *Your medications*", ""]
    for i, med in enumerate(active, 1):
        times = ", ".join(med.times) if med.times else "as needed"
        lines.append(f"{i}. {_label(med)} at {times} (adherence {med.adherence_score}%)")
    lines.extend(["", "To stop one, reply: remove <name>"])
    return "\n".join(lines)


def completion_message(med: Medication) -> str:
    return (
        "🎉 *Medication Course Completed*\n\n"
        f"You've finished your course of {med.name}. "
        f"Final adherence score: {med.adherence_score}%.\n"
        "Please check with your doctor whether any follow-up is needed."
    )


def daily_report(meds: list[Medication], day: date, tz: tzinfo) -> str:
    lines = ["📊 *Today's Medication Report*", ""]
    expected_total = taken_total = 0
    for med in meds:
        if not med.is_active:
            continue
        expected = len(med.times) if scheduled_today(med, day) else 0
        taken = sum(
            1 for r in med.adherence_log
            if r.status in TAKEN_STATUSES and r.timestamp.astimezone(tz).date() == day
        )
        expected_total += expected
        taken_total += min(taken, expected) if expected else 0
        lines.append(f"• {med.name}: {taken}/{expected} doses taken")

    pct = 100 if expected_total == 0 else math.floor(taken_total / expected_total * 100 + 0.5)
    lines.extend(["", f"Today's adherence: {pct}%"])
    if pct == 100:
        lines.append("🎉 Perfect adherence today! Keep it up!")
    elif pct < 80:
        lines.append("⚠️ You missed some doses today. Setting an alarm can help you stay on track.")
    return "\n".join(lines)


def weekly_review(meds: list[Medication]) -> str:
    active = [m for m in meds if m.is_active]
    average = (
        math.floor(sum(m.adherence_score for m in active) / len(active) + 0.5) if active else 100
    )
    if average >= 90:
        verdict = "🌟 Excellent adherence this week!"
    elif average >= 80:
        verdict = "👍 Good adherence this week."
    else:
        verdict = "⚠️ Your adherence needs attention."

    lines = ["📅 *Weekly Medication Review*", "", f"Average adherence: {average}%", verdict, ""]
    arrows = {"improving": "📈", "declining": "📉", "stable": "➡️"}
    for med in active:
        trend, _ = adherence_trend(med.adherence_log)
        lines.append(f"• {med.name}: {med.adherence_score}% {arrows[trend]} {trend}")
    lines.extend(["", "*Tips:*"])
    lines.extend(f"• {tip}" for tip in WEEKLY_TIPS)
    return "\n".join(lines)
