"""
Medication Reminder Scheduler — fires reminders, snoozes and adherence
digests, and records TAKEN / SKIP / SNOOZE / INFO replies.

Features:
  - Host-driven ``run_tick(now)``; ``start()`` wraps it in a minute loop
  - Reminder idempotence via the persisted ``fired_slots`` map, claimed
    with a versioned save before the message goes out
  - Course completion when a medication's end date has passed
  - Daily report and weekly review, once per day / week per instance
  - Snoozes are one-shot timers held in memory (lost on restart)

Scaling path: swap the loop for Cloud Scheduler hitting /api/assistant/tick.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from healthbot import settings
from healthbot.gateway.channels import AgentResponse, DispatcherRegistry
from healthbot.gateway.medications import (
    NO_RECENT_REMINDER,
    RESPONSE_HELP,
    MedicationInput,
    MedicationValidationError,
    adherence_score,
    build_medication,
    completion_message,
    daily_report,
    find_by_name,
    find_due_medication,
    info_message,
    latest_occurrence,
    reminder_message,
    scheduled_today,
    skip_message,
    slot_on,
    snooze_message,
    taken_message,
    weekly_review,
)
from healthbot.gateway.records import (
    AdherenceRecord,
    AdherenceStatus,
    Channel,
    Medication,
)
from healthbot.gateway.store import (
    StateStore,
    StoreConcurrencyError,
    UserNotFoundError,
)
from healthbot.gateway.translation import NullTranslator, Translator

logger = logging.getLogger("gateway.scheduler")

# Delays between reload-and-retry attempts after a version conflict
RETRY_BACKOFF = (0.1, 0.3, 0.9)

TICK_INTERVAL = 60  # seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Snooze:
    user_id: str
    medication_id: str
    due_at: datetime
    slot: str | None = None


@dataclass
class TickReport:
    """What one scheduler tick did."""

    now: datetime
    reminders_sent: int = 0
    reminders_failed: int = 0
    snoozes_fired: int = 0
    courses_completed: int = 0
    daily_reports: int = 0
    weekly_reviews: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "now": self.now.isoformat(),
            "reminders_sent": self.reminders_sent,
            "reminders_failed": self.reminders_failed,
            "snoozes_fired": self.snoozes_fired,
            "courses_completed": self.courses_completed,
            "daily_reports": self.daily_reports,
            "weekly_reviews": self.weekly_reviews,
            "errors": self.errors,
        }


@dataclass
class _Window:
    """A daily clock time that fires within [time, time + catch_up)."""

    at: str
    catch_up: timedelta = field(default_factory=lambda: timedelta(minutes=5))

    def contains(self, local_now: datetime) -> bool:
        start = slot_on(self.at, local_now.date(), local_now.tzinfo)
        return start <= local_now < start + self.catch_up


class MedicationReminderScheduler:
    """
    Owns every read/write of Medication records.

    Usage:
        scheduler = MedicationReminderScheduler(store, registry, translator)
        await scheduler.start()          # minute loop
        report = await scheduler.run_tick()   # or drive it directly

    On shutdown:
        await scheduler.stop()
    """

    def __init__(
        self,
        store: StateStore,
        registry: DispatcherRegistry,
        translator: Translator | None = None,
        *,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] = _utcnow,
        lookback_minutes: int | None = None,
        snooze_minutes: int | None = None,
        catch_up_minutes: int = 5,
        daily_digest_time: str | None = None,
        weekly_review_day: int | None = None,
        weekly_review_time: str | None = None,
        tick_interval: int = TICK_INTERVAL,
    ) -> None:
        self._store = store
        self._registry = registry
        self._translator = translator or NullTranslator()
        self._tz = tz or ZoneInfo(settings.TIMEZONE)
        self._clock = clock
        self._lookback = (
            lookback_minutes if lookback_minutes is not None
            else settings.REMINDER_LOOKBACK_MINUTES
        )
        self._snooze_minutes = (
            snooze_minutes if snooze_minutes is not None else settings.SNOOZE_MINUTES
        )
        self._catch_up = timedelta(minutes=catch_up_minutes)
        self._daily = _Window(daily_digest_time or settings.DAILY_DIGEST_TIME, self._catch_up)
        self._weekly = _Window(weekly_review_time or settings.WEEKLY_REVIEW_TIME, self._catch_up)
        self._weekly_day = (
            weekly_review_day if weekly_review_day is not None else settings.WEEKLY_REVIEW_DAY
        )
        self._tick_interval = tick_interval

        # (user_id, medication_id) → pending snooze
        self._snoozes: dict[tuple[str, str], Snooze] = {}
        self._last_daily: date | None = None
        self._last_weekly: tuple[int, int] | None = None

        self._task: asyncio.Task | None = None
        self._running = False
        self._tick_lock = asyncio.Lock()

    @property
    def pending_snoozes(self) -> list[Snooze]:
        return sorted(self._snoozes.values(), key=lambda s: s.due_at)

    @property
    def is_running(self) -> bool:
        return self._running

    def now(self) -> datetime:
        return self._clock()

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the minute loop."""
        if self._running:
            logger.warning("MedicationReminderScheduler already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._tick_loop())
        logger.info(
            "MedicationReminderScheduler started (tz=%s, interval=%ds)",
            self._tz, self._tick_interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("MedicationReminderScheduler stopped")

    async def _tick_loop(self) -> None:
        while self._running:
            try:
                await self.run_tick()
                await asyncio.sleep(self._tick_interval)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Scheduler loop error: %s", exc, exc_info=True)
                await asyncio.sleep(self._tick_interval)

    # ── Medication management ──

    async def add_medication(self, user_id: str, data: MedicationInput | dict) -> Medication:
        """Validate and persist a new medication (adherence score 100)."""
        if not isinstance(data, MedicationInput):
            try:
                data = MedicationInput.model_validate(data)
            except ValidationError as exc:
                raise MedicationValidationError(str(exc)) from exc
        today = self.now().astimezone(self._tz).date()
        med = build_medication(user_id, data, today)
        await asyncio.to_thread(self._store.save_medication, med, 0)
        logger.info(
            "Added medication %s (%s) for %s at %s",
            med.id, med.name, user_id, ", ".join(med.times) or "as needed",
        )
        return med

    async def list_medications(
        self, user_id: str, active_only: bool = False
    ) -> list[Medication]:
        meds = await asyncio.to_thread(self._store.list_medications, user_id)
        if active_only:
            meds = [m for m in meds if m.is_active]
        return meds

    async def deactivate_medication(
        self, user_id: str, medication_id: str, reason: str = "removed"
    ) -> Medication:
        def mutate(med: Medication) -> bool:
            if not med.is_active:
                return False
            med.is_active = False
            med.deactivation_reason = reason
            return True

        med = await self._update_medication(user_id, medication_id, mutate)
        self._snoozes.pop((user_id, medication_id), None)
        logger.info("Deactivated medication %s for %s (%s)", medication_id, user_id, reason)
        return med

    async def remove_medication(self, user_id: str, name: str) -> Medication | None:
        """Deactivate the active medication matching ``name``; None if no match."""
        med = find_by_name(await self.list_medications(user_id, active_only=True), name)
        if med is None:
            return None
        return await self.deactivate_medication(user_id, med.id, "removed by user")

    # ── Adherence replies ──

    async def record_adherence_response(
        self, user_id: str, text: str, now: datetime | None = None
    ) -> str:
        """Handle a TAKEN / SKIP / SNOOZE / INFO reply and return the answer text."""
        now = now or self.now()
        words = (text or "").strip().split()
        command = words[0].upper() if words else ""
        name = " ".join(words[1:]) if len(words) > 1 else None

        meds = await self.list_medications(user_id, active_only=True)
        match = find_due_medication(meds, now, self._tz, self._lookback, name=name)
        if match is None and name:
            # "taken please": the extra words were not a medication name
            match = find_due_medication(meds, now, self._tz, self._lookback)
        if match is None:
            return NO_RECENT_REMINDER
        med, slot = match

        if command == "TAKEN":
            late = self._is_late(slot, now)
            status = AdherenceStatus.LATE if late else AdherenceStatus.TAKEN
            med = await self._record(user_id, med.id, status, slot, now)
            self._snoozes.pop((user_id, med.id), None)
            return taken_message(med, late=late)

        if command in ("SKIP", "SKIPPED"):
            med = await self._record(user_id, med.id, AdherenceStatus.SKIPPED, slot, now)
            self._snoozes.pop((user_id, med.id), None)
            return skip_message(med)

        if command == "SNOOZE":
            self._snoozes[(user_id, med.id)] = Snooze(
                user_id=user_id,
                medication_id=med.id,
                due_at=now + timedelta(minutes=self._snooze_minutes),
                slot=slot,
            )
            logger.info(
                "Snoozed %s for %s by %d min", med.name, user_id, self._snooze_minutes
            )
            return snooze_message(med, self._snooze_minutes)

        if command == "INFO":
            return info_message(med)

        return RESPONSE_HELP

    def _is_late(self, slot: str | None, now: datetime) -> bool:
        if not slot:
            return False
        occurred = latest_occurrence(slot, now.astimezone(self._tz))
        return now - occurred > timedelta(minutes=self._lookback)

    async def _record(
        self,
        user_id: str,
        medication_id: str,
        status: AdherenceStatus,
        slot: str | None,
        now: datetime,
    ) -> Medication:
        def mutate(med: Medication) -> bool:
            med.adherence_log.append(
                AdherenceRecord(timestamp=now, status=status, scheduled_time=slot)
            )
            med.adherence_score = adherence_score(med.adherence_log)
            return True

        med = await self._update_medication(user_id, medication_id, mutate)
        logger.info(
            "Adherence %s for %s/%s — score %d%%",
            status.value, user_id, med.name, med.adherence_score,
        )
        return med

    async def _update_medication(
        self,
        user_id: str,
        medication_id: str,
        mutate: Callable[[Medication], bool],
    ) -> Medication:
        """
        Load → mutate → versioned save, reloading on a version conflict.

        ``mutate`` returns False to leave the record unchanged (nothing is
        written).  Raises StoreConcurrencyError once every retry failed.
        """
        for attempt in range(len(RETRY_BACKOFF) + 1):
            med, version = await asyncio.to_thread(
                self._store.load_medication, user_id, medication_id
            )
            if not mutate(med):
                return med
            try:
                await asyncio.to_thread(self._store.save_medication, med, version)
                return med
            except StoreConcurrencyError:
                if attempt == len(RETRY_BACKOFF):
                    raise
                logger.warning(
                    "Version conflict on medication %s (attempt %d) — retrying",
                    medication_id, attempt + 1,
                )
                await asyncio.sleep(RETRY_BACKOFF[attempt])
        raise StoreConcurrencyError(f"Medication {medication_id} update failed")

    # ── Reports ──

    async def daily_report_for(self, user_id: str, now: datetime | None = None) -> str:
        now = now or self.now()
        meds = await self.list_medications(user_id, active_only=True)
        return daily_report(meds, now.astimezone(self._tz).date(), self._tz)

    async def weekly_review_for(self, user_id: str) -> str:
        return weekly_review(await self.list_medications(user_id, active_only=True))

    # ── Tick ──

    async def run_tick(self, now: datetime | None = None) -> TickReport:
        """Fire everything due at ``now``.  Safe to call repeatedly."""
        now = now or self.now()
        report = TickReport(now=now)
        async with self._tick_lock:
            local_now = now.astimezone(self._tz)
            user_ids = await asyncio.to_thread(self._store.list_medication_user_ids)

            for user_id in user_ids:
                try:
                    await self._tick_user(user_id, now, local_now, report)
                except Exception as exc:
                    report.errors += 1
                    logger.error(
                        "Reminder tick failed for %s: %s", user_id, exc, exc_info=True
                    )

            await self._fire_snoozes(now, report)
            await self._fire_digests(user_ids, local_now, report)

        if report.reminders_sent or report.snoozes_fired or report.errors:
            logger.info("Scheduler tick: %s", report.to_dict())
        return report

    async def _tick_user(
        self, user_id: str, now: datetime, local_now: datetime, report: TickReport
    ) -> None:
        today = local_now.date()
        for med in await self.list_medications(user_id, active_only=True):
            due = [slot for slot in med.times if self._slot_due(med, slot, local_now)]

            if med.end_date is not None and today > med.end_date:
                if due or not med.times:
                    await self._complete_course(med, report)
                continue

            for slot in due:
                await self._fire_reminder(med, slot, now, today, report)

    def _slot_due(self, med: Medication, slot: str, local_now: datetime) -> bool:
        start = slot_on(slot, local_now.date(), self._tz)
        if not (start <= local_now < start + self._catch_up):
            return False
        return not med.has_fired(slot, local_now.date())

    async def _fire_reminder(
        self,
        med: Medication,
        slot: str,
        now: datetime,
        today: date,
        report: TickReport,
    ) -> None:
        if not scheduled_today(med, today):
            return

        claimed = False

        def claim(current: Medication) -> bool:
            nonlocal claimed
            if not current.is_active or current.has_fired(slot, today):
                return False
            current.mark_fired(slot, today)
            current.last_prompted_at = now
            current.last_prompted_slot = slot
            claimed = True
            return True

        med = await self._update_medication(med.user_id, med.id, claim)
        if not claimed:
            return

        text = reminder_message(med, snooze_minutes=self._snooze_minutes)
        if await self._send(med.user_id, text, kind="reminder"):
            report.reminders_sent += 1
        else:
            report.reminders_failed += 1

    async def _complete_course(self, med: Medication, report: TickReport) -> None:
        med = await self.deactivate_medication(med.user_id, med.id, "course completed")
        report.courses_completed += 1
        await self._send(med.user_id, completion_message(med), kind="course_completed")

    async def _fire_snoozes(self, now: datetime, report: TickReport) -> None:
        for key, snooze in list(self._snoozes.items()):
            if snooze.due_at > now:
                continue
            self._snoozes.pop(key, None)

            def prompt(current: Medication) -> bool:
                if not current.is_active:
                    return False
                current.last_prompted_at = now
                if snooze.slot:
                    current.last_prompted_slot = snooze.slot
                return True

            try:
                med = await self._update_medication(
                    snooze.user_id, snooze.medication_id, prompt
                )
            except Exception as exc:
                report.errors += 1
                logger.error("Snooze for %s failed: %s", snooze.user_id, exc)
                continue
            if not med.is_active:
                continue
            text = reminder_message(med, snoozed=True, snooze_minutes=self._snooze_minutes)
            if await self._send(med.user_id, text, kind="snooze"):
                report.snoozes_fired += 1
            else:
                report.reminders_failed += 1

    async def _fire_digests(
        self, user_ids: list[str], local_now: datetime, report: TickReport
    ) -> None:
        today = local_now.date()
        daily_due = self._daily.contains(local_now) and self._last_daily != today
        week = today.isocalendar()[:2]
        weekly_due = (
            today.weekday() == self._weekly_day
            and self._weekly.contains(local_now)
            and self._last_weekly != week
        )
        if not (daily_due or weekly_due):
            return
        if daily_due:
            self._last_daily = today
        if weekly_due:
            self._last_weekly = week

        for user_id in user_ids:
            meds = await self.list_medications(user_id, active_only=True)
            if not meds:
                continue
            if daily_due:
                text = daily_report(meds, today, self._tz)
                if await self._send(user_id, text, kind="daily_report"):
                    report.daily_reports += 1
            if weekly_due:
                if await self._send(user_id, weekly_review(meds), kind="weekly_review"):
                    report.weekly_reviews += 1

    # ── Delivery ──

    async def _send(self, user_id: str, text: str, kind: str) -> bool:
        """Translate and dispatch one scheduler message.  False if not delivered."""
        phone, channel, language = user_id, Channel.WHATSAPP.value, "english"
        try:
            state, _ = await asyncio.to_thread(self._store.load_user, user_id)
            if not state.profile.preferences.notifications:
                logger.info("Notifications off for %s — %s not sent", user_id, kind)
                return False
            phone = state.profile.phone
            channel = state.profile.channel.value
            language = state.profile.preferred_language
        except UserNotFoundError:
            logger.debug("No profile for %s — sending %s to the key number", user_id, kind)

        message = await self._translator.translate(text, language)
        result = await self._registry.dispatch(
            AgentResponse(
                recipient=user_id,
                channel=channel,
                message=message,
                metadata={"phone": phone, "kind": kind},
            )
        )
        return result.success
