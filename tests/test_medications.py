"""
Tests for the medication helpers — validation, adherence maths, reply
matching and report texts.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from healthbot.gateway.medications import (
    MedicationInput,
    MedicationValidationError,
    adherence_score,
    adherence_trend,
    build_medication,
    daily_report,
    find_by_name,
    find_due_medication,
    normalize_time,
    scheduled_today,
    weekly_review,
)
from healthbot.gateway.records import (
    AdherenceRecord,
    AdherenceStatus,
    Frequency,
    Medication,
)

UTC = timezone.utc
TODAY = date(2025, 1, 6)  # Monday
USER = "+919812345678"


def make_med(name="Metformin", times=("08:00", "20:00"), **kwargs) -> Medication:
    kwargs.setdefault("start_date", TODAY)
    return Medication(user_id=USER, name=name, times=list(times), **kwargs)


def records(*statuses) -> list[AdherenceRecord]:
    base = datetime(2025, 1, 1, tzinfo=UTC)
    return [
        AdherenceRecord(timestamp=base + timedelta(hours=i), status=s)
        for i, s in enumerate(statuses)
    ]


T, S, L = AdherenceStatus.TAKEN, AdherenceStatus.SKIPPED, AdherenceStatus.LATE


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Input validation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestMedicationInput:

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            MedicationInput(name="   ")

    def test_invalid_time_rejected(self):
        with pytest.raises(ValidationError):
            MedicationInput(name="Metformin", times=["25:00"])

    def test_times_normalized_sorted_deduped(self):
        data = MedicationInput(name="Metformin", times=["20:00", "8:00", "08.00"])
        assert data.times == ["08:00", "20:00"]

    @pytest.mark.parametrize(
        "raw, expected",
        [("8:00", "08:00"), ("0830", "08:30"), ("930", "09:30"), ("21.15", "21:15"),
         ("24:00", None), ("noon", None), ("", None)],
    )
    def test_normalize_time(self, raw, expected):
        assert normalize_time(raw) == expected


class TestBuildMedication:

    def test_default_times_from_frequency(self):
        med = build_medication(USER, MedicationInput(name="Amlodipine", frequency=Frequency.TWICE_DAILY), TODAY)
        assert med.times == ["08:00", "20:00"]
        assert med.start_date == TODAY
        assert med.adherence_score == 100
        assert med.is_active

    def test_duration_sets_end_date(self):
        med = build_medication(USER, MedicationInput(name="Amoxicillin", duration_days=5), TODAY)
        assert med.end_date == TODAY + timedelta(days=4)

    def test_end_before_start_rejected(self):
        data = MedicationInput(name="Amoxicillin", end_date=TODAY - timedelta(days=1))
        with pytest.raises(MedicationValidationError):
            build_medication(USER, data, TODAY)

    def test_common_side_effects_filled_in(self):
        med = build_medication(USER, MedicationInput(name="Metformin 500"), TODAY)
        assert "nausea" in med.side_effects

    def test_user_side_effects_kept(self):
        med = build_medication(USER, MedicationInput(name="Metformin", side_effects=["headache"]), TODAY)
        assert med.side_effects == ["headache"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Adherence
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAdherence:

    def test_empty_log_is_100(self):
        assert adherence_score([]) == 100

    def test_half_taken(self):
        assert adherence_score(records(T, S)) == 50

    def test_late_counts_as_taken(self):
        assert adherence_score(records(T, L, S)) == 67

    @pytest.mark.parametrize("taken, total", [(1, 3), (2, 3), (5, 8), (7, 9), (0, 4)])
    def test_score_is_rounded_percentage(self, taken, total):
        log = records(*([T] * taken + [S] * (total - taken)))
        assert adherence_score(log) == int(taken / total * 100 + 0.5)

    def test_short_log_is_stable(self):
        assert adherence_trend(records(T, S, T)) == ("stable", 0.0)

    def test_seven_records_without_history_is_stable(self):
        assert adherence_trend(records(*[T] * 7)) == ("stable", 0.0)

    def test_improving(self):
        trend, delta = adherence_trend(records(*([S] * 7 + [T] * 7)))
        assert trend == "improving"
        assert delta == pytest.approx(1.0)

    def test_declining(self):
        trend, _ = adherence_trend(records(*([T] * 7 + [S] * 7)))
        assert trend == "declining"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Reply matching
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestFindDueMedication:

    def test_slot_within_lookback(self):
        med = make_med()
        now = datetime(2025, 1, 6, 8, 10, tzinfo=UTC)
        assert find_due_medication([med], now, UTC, 30) == (med, "08:00")

    def test_slot_outside_lookback(self):
        med = make_med()
        now = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)
        assert find_due_medication([med], now, UTC, 30) is None

    def test_answered_slot_not_matched_again(self):
        med = make_med()
        med.adherence_log.append(
            AdherenceRecord(
                timestamp=datetime(2025, 1, 6, 8, 5, tzinfo=UTC),
                status=T,
                scheduled_time="08:00",
            )
        )
        now = datetime(2025, 1, 6, 8, 10, tzinfo=UTC)
        assert find_due_medication([med], now, UTC, 30) is None

    def test_most_recently_prompted_wins(self):
        first = make_med("Metformin", times=["08:00"])
        second = make_med("Amlodipine", times=["08:00"])
        first.last_prompted_at = datetime(2025, 1, 6, 8, 0, tzinfo=UTC)
        first.last_prompted_slot = "08:00"
        second.last_prompted_at = datetime(2025, 1, 6, 8, 2, tzinfo=UTC)
        second.last_prompted_slot = "08:00"
        now = datetime(2025, 1, 6, 8, 10, tzinfo=UTC)
        med, _ = find_due_medication([first, second], now, UTC, 30)
        assert med.name == "Amlodipine"

    def test_name_narrows_candidates(self):
        first = make_med("Metformin", times=["08:00"])
        second = make_med("Amlodipine", times=["08:00"])
        now = datetime(2025, 1, 6, 8, 10, tzinfo=UTC)
        med, _ = find_due_medication([first, second], now, UTC, 30, name="metformin")
        assert med.name == "Metformin"

    def test_inactive_ignored(self):
        med = make_med(is_active=False)
        now = datetime(2025, 1, 6, 8, 10, tzinfo=UTC)
        assert find_due_medication([med], now, UTC, 30) is None

    def test_find_by_name(self):
        meds = [make_med("Metformin XR"), make_med("Metformin")]
        assert find_by_name(meds, "metformin").name == "Metformin"
        assert find_by_name(meds, "xr").name == "Metformin XR"
        assert find_by_name(meds, "aspirin") is None
        assert find_by_name(meds, "") is None


class TestScheduledToday:

    def test_weekly_only_on_start_weekday(self):
        med = make_med(times=["09:00"], frequency=Frequency.WEEKLY)
        assert scheduled_today(med, TODAY + timedelta(days=7))
        assert not scheduled_today(med, TODAY + timedelta(days=3))

    def test_not_before_start_or_after_end(self):
        med = make_med(end_date=TODAY + timedelta(days=2))
        assert not scheduled_today(med, TODAY - timedelta(days=1))
        assert scheduled_today(med, TODAY + timedelta(days=2))
        assert not scheduled_today(med, TODAY + timedelta(days=3))

    def test_as_needed_never_scheduled(self):
        assert not scheduled_today(make_med(times=[], frequency=Frequency.AS_NEEDED), TODAY)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Reports
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestReports:

    def test_weekly_review_without_medications(self):
        text = weekly_review([])
        assert "Average adherence: 100%" in text
        assert "Excellent adherence" in text

    def test_weekly_review_new_medication_is_stable(self):
        text = weekly_review([make_med()])
        assert "Average adherence: 100%" in text
        assert "• Metformin: 100% ➡️ stable" in text

    def test_weekly_review_needs_attention(self):
        med = make_med(adherence_score=50)
        text = weekly_review([med])
        assert "Average adherence: 50%" in text
        assert "needs attention" in text

    def test_daily_report_half_taken(self):
        med = make_med()
        med.adherence_log.append(
            AdherenceRecord(timestamp=datetime(2025, 1, 6, 8, 5, tzinfo=UTC), status=T, scheduled_time="08:00")
        )
        text = daily_report([med], TODAY, UTC)
        assert "• Metformin: 1/2 doses taken" in text
        assert "Today's adherence: 50%" in text
        assert "missed some doses" in text

    def test_daily_report_nothing_scheduled(self):
        text = daily_report([], TODAY, UTC)
        assert "Today's adherence: 100%" in text
