"""
Tests for the MedicationReminderScheduler — reminders, replies, snoozes,
course completion and digests, driven through run_tick(now).
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from healthbot.gateway import scheduler as scheduler_module
from healthbot.gateway.medications import NO_RECENT_REMINDER, MedicationValidationError
from healthbot.gateway.records import AdherenceStatus, Channel, UserState
from healthbot.gateway.scheduler import MedicationReminderScheduler
from healthbot.gateway.store import StoreConcurrencyError

USER_PHONE = "+919812345678"

METFORMIN = {
    "name": "Metformin",
    "dosage": "500mg",
    "frequency": "twice_daily",
    "times": ["08:00", "20:00"],
}


def at(hour, minute=0, day=6):
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Reminder firing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestReminders:

    @pytest.mark.asyncio
    async def test_reminder_sent_at_slot(self, scheduler, whatsapp):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        report = await scheduler.run_tick(at(8, 0))
        assert report.reminders_sent == 1
        message = whatsapp.messages_for(USER_PHONE)[-1]
        assert "Time to take *Metformin* (500mg)" in message
        assert "TAKEN" in message

    @pytest.mark.asyncio
    async def test_reminder_offers_configured_snooze(self, store, registry, clock, whatsapp):
        scheduler = MedicationReminderScheduler(
            store, registry, tz=timezone.utc, clock=clock, snooze_minutes=10
        )
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        message = whatsapp.messages_for(USER_PHONE)[-1]
        assert "remind me in 10 minutes" in message
        assert "15 minutes" not in message

    @pytest.mark.asyncio
    async def test_tick_is_idempotent(self, scheduler, whatsapp):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        again = await scheduler.run_tick(at(8, 1))
        assert again.reminders_sent == 0
        assert len(whatsapp.messages_for(USER_PHONE)) == 1

    @pytest.mark.asyncio
    async def test_catch_up_window(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        assert (await scheduler.run_tick(at(8, 4))).reminders_sent == 1

    @pytest.mark.asyncio
    async def test_missed_window_not_sent(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        assert (await scheduler.run_tick(at(8, 5))).reminders_sent == 0

    @pytest.mark.asyncio
    async def test_fires_again_next_day(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        assert (await scheduler.run_tick(at(8, 0, day=7))).reminders_sent == 1

    @pytest.mark.asyncio
    async def test_local_timezone(self, store, registry, clock, whatsapp):
        scheduler = MedicationReminderScheduler(
            store, registry, tz=ZoneInfo("Asia/Kolkata"), clock=clock,
        )
        await scheduler.add_medication(USER_PHONE, {"name": "Losartan", "times": ["08:00"]})
        # 08:00 IST
        report = await scheduler.run_tick(at(2, 30))
        assert report.reminders_sent == 1

    @pytest.mark.asyncio
    async def test_profile_channel_used(self, scheduler, store, sms, whatsapp):
        store.save_user(UserState.create_new(USER_PHONE, Channel.SMS), 0)
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        assert len(sms.messages_for(USER_PHONE)) == 1
        assert whatsapp.sent == []

    @pytest.mark.asyncio
    async def test_notifications_off(self, scheduler, store, whatsapp):
        state = UserState.create_new(USER_PHONE)
        state.profile.preferences.notifications = False
        store.save_user(state, 0)
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        report = await scheduler.run_tick(at(8, 0))
        assert report.reminders_sent == 0
        assert report.reminders_failed == 1
        assert whatsapp.sent == []

    @pytest.mark.asyncio
    async def test_dispatch_failure_counted(self, scheduler, registry, whatsapp):
        whatsapp.fail = True
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        report = await scheduler.run_tick(at(8, 0))
        assert report.reminders_failed == 1
        assert registry.failure_count == 1
        # slot was claimed before sending
        assert (await scheduler.run_tick(at(8, 1))).reminders_failed == 0

    @pytest.mark.asyncio
    async def test_version_conflict_retried(self, scheduler, store, monkeypatch):
        monkeypatch.setattr(scheduler_module, "RETRY_BACKOFF", (0, 0, 0))
        await scheduler.add_medication(USER_PHONE, METFORMIN)

        original = store.save_medication
        calls = {"n": 0}

        def flaky(med, version=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StoreConcurrencyError("conflict")
            return original(med, version)

        monkeypatch.setattr(store, "save_medication", flaky)
        report = await scheduler.run_tick(at(8, 0))
        assert report.reminders_sent == 1
        assert calls["n"] == 2


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Adherence replies
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAdherenceReplies:

    @pytest.mark.asyncio
    async def test_taken_then_skip_scores_fifty(self, scheduler, store):
        med = await scheduler.add_medication(USER_PHONE, METFORMIN)

        await scheduler.run_tick(at(8, 0))
        reply = await scheduler.record_adherence_response(USER_PHONE, "TAKEN", at(8, 5))
        assert "Metformin marked as taken." in reply
        assert "100%" in reply

        await scheduler.run_tick(at(20, 0))
        reply = await scheduler.record_adherence_response(USER_PHONE, "SKIP", at(20, 10))
        assert "marked as skipped" in reply
        assert "50%" in reply

        stored, _ = store.load_medication(USER_PHONE, med.id)
        assert stored.adherence_score == 50
        assert [r.status for r in stored.adherence_log] == [
            AdherenceStatus.TAKEN,
            AdherenceStatus.SKIPPED,
        ]
        assert [r.scheduled_time for r in stored.adherence_log] == ["08:00", "20:00"]

    @pytest.mark.asyncio
    async def test_no_recent_reminder(self, scheduler):
        reply = await scheduler.record_adherence_response(USER_PHONE, "TAKEN", at(8, 5))
        assert reply == NO_RECENT_REMINDER

    @pytest.mark.asyncio
    async def test_second_taken_has_nothing_to_match(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        await scheduler.record_adherence_response(USER_PHONE, "TAKEN", at(8, 5))
        reply = await scheduler.record_adherence_response(USER_PHONE, "TAKEN", at(8, 6))
        assert reply == NO_RECENT_REMINDER

    @pytest.mark.asyncio
    async def test_info(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        reply = await scheduler.record_adherence_response(USER_PHONE, "info", at(8, 2))
        assert "Reminder times: 08:00, 20:00" in reply
        assert "nausea" in reply

    @pytest.mark.asyncio
    async def test_snooze_fires_once_and_late_taken(self, scheduler, whatsapp, store):
        med = await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))

        reply = await scheduler.record_adherence_response(USER_PHONE, "SNOOZE", at(8, 5))
        assert "15 minutes" in reply
        assert len(scheduler.pending_snoozes) == 1

        assert (await scheduler.run_tick(at(8, 19))).snoozes_fired == 0
        assert (await scheduler.run_tick(at(8, 20))).snoozes_fired == 1
        assert (await scheduler.run_tick(at(8, 21))).snoozes_fired == 0
        assert "Snoozed Reminder" in whatsapp.messages_for(USER_PHONE)[-1]

        reply = await scheduler.record_adherence_response(USER_PHONE, "TAKEN", at(8, 35))
        assert "(late)" in reply
        stored, _ = store.load_medication(USER_PHONE, med.id)
        assert stored.adherence_log[-1].status == AdherenceStatus.LATE
        assert stored.adherence_score == 100

    @pytest.mark.asyncio
    async def test_snooze_lost_on_restart(self, scheduler, store, registry, clock):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        await scheduler.record_adherence_response(USER_PHONE, "SNOOZE", at(8, 5))

        restarted = MedicationReminderScheduler(store, registry, tz=timezone.utc, clock=clock)
        assert restarted.pending_snoozes == []
        assert (await restarted.run_tick(at(8, 20))).snoozes_fired == 0

    @pytest.mark.asyncio
    async def test_taken_cancels_snooze(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        await scheduler.run_tick(at(8, 0))
        await scheduler.record_adherence_response(USER_PHONE, "SNOOZE", at(8, 5))
        await scheduler.record_adherence_response(USER_PHONE, "TAKEN", at(8, 10))
        assert scheduler.pending_snoozes == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Medication management
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestManagement:

    @pytest.mark.asyncio
    async def test_add_uses_clock_date(self, scheduler):
        med = await scheduler.add_medication(USER_PHONE, METFORMIN)
        assert med.start_date.isoformat() == "2025-01-06"
        assert med.adherence_score == 100

    @pytest.mark.asyncio
    async def test_add_invalid_raises(self, scheduler):
        with pytest.raises(MedicationValidationError):
            await scheduler.add_medication(USER_PHONE, {"name": ""})

    @pytest.mark.asyncio
    async def test_remove_stops_reminders(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        removed = await scheduler.remove_medication(USER_PHONE, "metformin")
        assert removed is not None
        assert not removed.is_active
        assert await scheduler.list_medications(USER_PHONE, active_only=True) == []
        assert (await scheduler.run_tick(at(8, 0))).reminders_sent == 0

    @pytest.mark.asyncio
    async def test_remove_unknown_returns_none(self, scheduler):
        assert await scheduler.remove_medication(USER_PHONE, "aspirin") is None

    @pytest.mark.asyncio
    async def test_course_completes_after_end_date(self, scheduler, whatsapp):
        med = await scheduler.add_medication(
            USER_PHONE, {"name": "Amoxicillin", "times": ["08:00"], "duration_days": 1}
        )
        assert med.end_date.isoformat() == "2025-01-06"
        assert (await scheduler.run_tick(at(8, 0))).reminders_sent == 1

        report = await scheduler.run_tick(at(8, 0, day=7))
        assert report.courses_completed == 1
        assert report.reminders_sent == 0
        assert "Course Completed" in whatsapp.messages_for(USER_PHONE)[-1]
        meds = await scheduler.list_medications(USER_PHONE)
        assert meds[0].deactivation_reason == "course completed"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Digests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestDigests:

    @pytest.mark.asyncio
    async def test_daily_report_once_per_day(self, scheduler, whatsapp):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        assert (await scheduler.run_tick(at(21, 0))).daily_reports == 1
        assert (await scheduler.run_tick(at(21, 1))).daily_reports == 0
        assert "Today's Medication Report" in whatsapp.messages_for(USER_PHONE)[-1]

    @pytest.mark.asyncio
    async def test_weekly_review_on_configured_day(self, store, registry, clock, whatsapp):
        scheduler = MedicationReminderScheduler(
            store, registry, tz=timezone.utc, clock=clock,
            daily_digest_time="21:00", weekly_review_day=0, weekly_review_time="10:00",
        )
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        assert (await scheduler.run_tick(at(10, 0))).weekly_reviews == 1
        assert (await scheduler.run_tick(at(10, 2))).weekly_reviews == 0
        text = whatsapp.messages_for(USER_PHONE)[-1]
        assert "Weekly Medication Review" in text
        assert "• Metformin: 100% ➡️ stable" in text

    @pytest.mark.asyncio
    async def test_user_without_medications_gets_no_digest(self, scheduler, whatsapp):
        assert (await scheduler.run_tick(at(21, 0))).daily_reports == 0
        assert whatsapp.sent == []

    @pytest.mark.asyncio
    async def test_report_helpers(self, scheduler):
        await scheduler.add_medication(USER_PHONE, METFORMIN)
        daily = await scheduler.daily_report_for(USER_PHONE, at(12, 0))
        assert "Metformin: 0/2 doses taken" in daily
        weekly = await scheduler.weekly_review_for(USER_PHONE)
        assert "Average adherence: 100%" in weekly
