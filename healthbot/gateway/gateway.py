"""
Gateway — the per-message turn pipeline.

Deterministic, no LLM in the decision path.  For each inbound
EventEnvelope the Gateway:
  1. Loads (or creates) the user's state and drops duplicate deliveries
  2. Applies the per-user rate limit and input size limit
  3. Runs emergency preemption, then routes and advances the session
  4. Saves the UserState with its version (abort + apology on conflict)
  5. Translates and dispatches the reply
  6. Executes follow-up actions (alerts, emergency contacts, tips)

Per-user ordering is the caller's job (UserQueueManager); the Gateway
itself keeps no per-user state besides the rate limiter.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from healthbot import settings
from healthbot.gateway.agents.assessment import AssessmentResult
from healthbot.gateway.agents.emergency_classifier import (
    EmergencyClassifier,
    EmergencyEvent,
    format_emergency_response,
)
from healthbot.gateway.agents.intent_router import IntentRouter
from healthbot.gateway.agents.session import (
    WELCOME_MESSAGE,
    ConversationManager,
    FollowUpAction,
    SessionTurn,
)
from healthbot.gateway.channels import (
    AgentResponse,
    DeliveryResult,
    DispatcherRegistry,
)
from healthbot.gateway.events import EventEnvelope, EventType
from healthbot.gateway.handlers.education import QUICK_TIPS
from healthbot.gateway.languages import DEFAULT_LANGUAGE, detect_language
from healthbot.gateway.records import (
    Channel,
    ConversationEntry,
    EmergencyAlert,
    FlowKind,
    Urgency,
    UserState,
)
from healthbot.gateway.store import (
    StateStore,
    StoreConcurrencyError,
    UserNotFoundError,
)
from healthbot.gateway.translation import NullTranslator, Translator

logger = logging.getLogger("gateway.core")

# Per-user rate limiting
RATE_LIMIT_WINDOW_SECONDS = 60  # sliding window
RATE_LIMIT_MAX_MESSAGES = 30    # max user messages per window

# Input size limit; longer messages are truncated
MAX_MESSAGE_LENGTH = 4_000

# Stored copy of each message in conversation history
HISTORY_MESSAGE_LENGTH = 500

RATE_LIMIT_REPLY = (
    "You're sending messages quite quickly. Please wait a moment before "
    "sending another one. In an emergency, call 112."
)
MEDIA_NOTICE = (
    "I can only read text messages for now. Please type your question or "
    "symptoms. In an emergency, call 112."
)
PERSISTENCE_APOLOGY = (
    "Sorry, I couldn't save that just now. Please send your message again "
    "in a moment."
)
FALLBACK_REPLY = (
    "I'm sorry, something went wrong while handling your message.\n\n"
    "If you feel unwell, please consult a doctor or visit your nearest "
    "health centre. In an emergency, call 112."
)
CONTACT_ALERT = (
    "🚨 HealthBot alert: {name} ({phone}) reported a possible medical "
    "emergency ({summary}). Please contact them now. If you cannot reach "
    "them, call 112."
)


@dataclass
class TurnResult:
    """Outcome of one inbound message."""

    user_id: str
    reply: str
    status: str = "ok"  # ok, rate_limited, persistence_error, error
    intent: Optional[str] = None
    urgency: Optional[Urgency] = None
    emergency: Optional[EmergencyEvent] = None
    assessment: Optional[AssessmentResult] = None
    follow_ups: list[FollowUpAction] = field(default_factory=list)
    deliveries: list[DeliveryResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "reply": self.reply,
            "status": self.status,
            "intent": self.intent,
            "urgency": self.urgency.value if self.urgency else None,
            "emergency": self.emergency.to_dict() if self.emergency else None,
            "severity": self.assessment.severity if self.assessment else None,
            "follow_ups": [f.value for f in self.follow_ups],
            "delivered": all(d.success for d in self.deliveries) if self.deliveries else False,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Gateway:
    """
    Turn pipeline for inbound user messages.

    Emergency preemption runs before session routing on every message, so
    a red-flag message is answered with emergency guidance whatever flow
    the user is in.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        dispatcher_registry: DispatcherRegistry,
        manager: ConversationManager | None = None,
        router: IntentRouter | None = None,
        classifier: EmergencyClassifier | None = None,
        translator: Translator | None = None,
        clock: Callable[[], datetime] = _utcnow,
        session_timeout_minutes: int | None = None,
        rate_limit_max: int = RATE_LIMIT_MAX_MESSAGES,
    ) -> None:
        self._store = store
        self._dispatchers = dispatcher_registry
        self._manager = manager or ConversationManager()
        self._router = router or IntentRouter()
        self._classifier = classifier or EmergencyClassifier()
        self._translator = translator or NullTranslator()
        self._clock = clock
        self._session_timeout = (
            session_timeout_minutes if session_timeout_minutes is not None
            else settings.SESSION_TIMEOUT_MINUTES
        )
        self._rate_limit_max = rate_limit_max
        # user_id → monotonic timestamps in the current window
        self._rate_limiter: dict[str, list[float]] = {}
        self._metrics: dict[str, Any] = {
            "messages_processed": 0,
            "messages_failed": 0,
            "messages_duplicate": 0,
            "messages_rate_limited": 0,
            "emergencies_detected": 0,
            "persistence_failures": 0,
            "dispatch_failures": 0,
            "turn_times": [],
        }

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def manager(self) -> ConversationManager:
        return self._manager

    # ── Main Entry Point ──

    async def process_inbound_message(self, event: EventEnvelope) -> TurnResult | None:
        """
        Handle one inbound message end to end.

        Returns None for duplicate deliveries; otherwise a TurnResult whose
        reply has already been dispatched.
        """
        t0 = time.monotonic()
        now = self._clock()
        user_id = event.user_id
        logger.info(
            "Inbound %s from %s via %s (message_id=%s)",
            event.event_type.value, user_id, event.channel.value, event.message_id,
        )

        # 1. Load or create state; drop duplicates
        try:
            state, version, is_new = await self._load_or_create(event)
        except Exception as exc:
            logger.error("State load failed for %s: %s", user_id, exc, exc_info=True)
            self._metrics["messages_failed"] += 1
            return await self._reply_only(event, FALLBACK_REPLY, "error", urgency=Urgency.MODERATE)

        if event.message_id and state.profile.has_processed(event.message_id):
            logger.info("Duplicate message %s for %s — skipping", event.message_id, user_id)
            self._metrics["messages_duplicate"] += 1
            return None

        # 2. Rate limit
        if self._is_rate_limited(user_id):
            logger.warning("Rate limit exceeded for %s — message dropped", user_id)
            self._metrics["messages_rate_limited"] += 1
            return await self._reply_only(
                event, RATE_LIMIT_REPLY, "rate_limited",
                language=state.profile.preferred_language,
            )

        # 3. Input size
        text = event.text
        if len(text) > MAX_MESSAGE_LENGTH:
            logger.warning(
                "Truncating oversized message for %s (%d chars → %d)",
                user_id, len(text), MAX_MESSAGE_LENGTH,
            )
            text = text[:MAX_MESSAGE_LENGTH]

        # 4. Refresh profile and session
        profile = state.profile
        profile.channel = event.channel
        profile.last_active = now
        if profile.preferred_language == DEFAULT_LANGUAGE:
            detected = detect_language(text)
            if detected != DEFAULT_LANGUAGE:
                logger.info("Detected %s for %s", detected, user_id)
                profile.preferred_language = detected
        if state.session is not None and state.session.is_expired(now, self._session_timeout):
            logger.info(
                "Session %s for %s expired — starting fresh",
                state.session.session_id, user_id,
            )
            state.session = None

        before_turn = state.model_copy(deep=True)

        # 5-7. Decide the reply
        status = "ok"
        try:
            turn = await self._run_turn(event, state, text, now)
        except Exception as exc:
            logger.error("Turn failed for %s: %s", user_id, exc, exc_info=True)
            self._metrics["messages_failed"] += 1
            status = "error"
            turn = SessionTurn(
                state=before_turn,
                reply=FALLBACK_REPLY,
                intent=None,
                urgency=Urgency.MODERATE,
            )

        reply = turn.reply
        if is_new:
            reply = WELCOME_MESSAGE + "\n\n" + reply

        # 8. History + persist
        state = turn.state
        intent_value = turn.intent.value if turn.intent else ""
        state.profile.add_conversation(
            ConversationEntry(
                timestamp=now, direction="USER→BOT",
                message=text[:HISTORY_MESSAGE_LENGTH], intent=intent_value,
            )
        )
        state.profile.add_conversation(
            ConversationEntry(
                timestamp=now, direction="BOT→USER",
                message=reply[:HISTORY_MESSAGE_LENGTH], intent=intent_value,
            )
        )
        if event.message_id:
            state.profile.mark_processed(event.message_id)

        follow_ups = list(turn.follow_ups)
        try:
            await asyncio.to_thread(self._store.save_user, state, version)
        except Exception as exc:
            self._metrics["persistence_failures"] += 1
            status = "persistence_error"
            if isinstance(exc, StoreConcurrencyError):
                logger.warning("Concurrent update of %s — turn dropped", user_id)
            else:
                logger.error("Saving state for %s failed: %s", user_id, exc, exc_info=True)
            if turn.emergency is None:
                # The turn is dropped; emergency guidance is still sent
                reply = PERSISTENCE_APOLOGY
                follow_ups = [
                    f for f in follow_ups if f != FollowUpAction.HEALTH_TIPS
                ]
                state = before_turn

        # 9. Translate + dispatch, then follow-ups
        deliveries = [
            await self._send(state, event.channel.value, reply, kind="reply", intent=intent_value)
        ]
        if turn.emergency is not None:
            await self._emergency_follow_ups(state, turn.emergency, text, follow_ups)
        if FollowUpAction.HEALTH_TIPS in follow_ups:
            tip = QUICK_TIPS[len(state.profile.assessments) % len(QUICK_TIPS)]
            deliveries.append(
                await self._send(state, event.channel.value, tip, kind="health_tip")
            )

        if status == "ok":
            self._metrics["messages_processed"] += 1
        self._record_time(time.monotonic() - t0)

        return TurnResult(
            user_id=user_id,
            reply=reply,
            status=status,
            intent=intent_value or None,
            urgency=turn.urgency,
            emergency=turn.emergency,
            assessment=turn.assessment,
            follow_ups=follow_ups,
            deliveries=deliveries,
        )

    # ── Turn logic ──

    async def _run_turn(
        self, event: EventEnvelope, state: UserState, text: str, now: datetime
    ) -> SessionTurn:
        if event.event_type == EventType.MEDIA_MESSAGE and not text.strip():
            return SessionTurn(state=state, reply=MEDIA_NOTICE, intent=None)

        active_flow = state.session.current_flow if state.session else FlowKind.NONE
        routed = self._router.route(text, active_flow)

        emergency = self._classifier.classify(text, routed.to_nlp_signal())
        if emergency is not None:
            return self._emergency_turn(state, routed.intent, emergency, now)

        return await self._manager.advance(state, text, routed, now)

    def _emergency_turn(
        self, state: UserState, intent, event: EmergencyEvent, now: datetime
    ) -> SessionTurn:
        self._metrics["emergencies_detected"] += 1
        logger.warning(
            "EMERGENCY (%s, score %d, %s) for %s",
            event.level.value, event.score, event.method, state.user_id,
        )
        if state.session is not None:
            if state.session.flow is not None:
                logger.info(
                    "Emergency preempts %s flow for %s",
                    state.session.current_flow.value, state.user_id,
                )
            state.session.clear_flow()
            state.session.last_interaction = now
        hospitals = self._manager.directory.find(state.profile.demographics.city)
        return SessionTurn(
            state=state,
            reply=format_emergency_response(event, hospitals),
            intent=intent,
            follow_ups=[
                FollowUpAction.EMERGENCY_ALERT,
                FollowUpAction.NOTIFY_EMERGENCY_CONTACTS,
            ],
            urgency=Urgency.HIGH,
            emergency=event,
        )

    async def _emergency_follow_ups(
        self,
        state: UserState,
        event: EmergencyEvent,
        text: str,
        follow_ups: list[FollowUpAction],
    ) -> None:
        profile = state.profile
        notified = 0
        if (
            FollowUpAction.NOTIFY_EMERGENCY_CONTACTS in follow_ups
            and profile.preferences.emergency_alerts
        ):
            summary = ", ".join(event.symptoms) or event.category.replace("_", " ")
            for contact in profile.medical_profile.emergency_contacts:
                message = CONTACT_ALERT.format(
                    name=profile.name or "A HealthBot user",
                    phone=profile.phone,
                    summary=summary,
                )
                result = await self._dispatchers.dispatch(
                    AgentResponse(
                        recipient=f"contact:{contact.phone}",
                        channel=Channel.SMS.value,
                        message=message,
                        metadata={"phone": contact.phone, "kind": "emergency_contact"},
                    )
                )
                if result.success:
                    notified += 1
                else:
                    self._metrics["dispatch_failures"] += 1
            logger.info(
                "Notified %d/%d emergency contacts for %s",
                notified, len(profile.medical_profile.emergency_contacts), profile.user_id,
            )

        if FollowUpAction.EMERGENCY_ALERT in follow_ups:
            alert = EmergencyAlert(
                user_id=profile.user_id,
                severity=event.level.value,
                message=text[:HISTORY_MESSAGE_LENGTH],
                event=event.to_dict(),
                contacts_notified=notified,
            )
            try:
                await asyncio.to_thread(self._store.save_alert, alert)
            except Exception as exc:
                logger.error("Saving emergency alert for %s failed: %s", profile.user_id, exc)

    # ── Helpers ──

    async def _load_or_create(self, event: EventEnvelope) -> tuple[UserState, int, bool]:
        try:
            state, version = await asyncio.to_thread(self._store.load_user, event.user_id)
            return state, version, False
        except UserNotFoundError:
            logger.info("New user %s via %s", event.user_id, event.channel.value)
            # version 0: the save fails if another writer created the user first
            return UserState.create_new(event.phone, event.channel), 0, True

    async def _send(
        self,
        state: UserState,
        channel: str,
        message: str,
        kind: str,
        intent: str = "",
    ) -> DeliveryResult:
        text = await self._translator.translate(message, state.profile.preferred_language)
        result = await self._dispatchers.dispatch(
            AgentResponse(
                recipient=state.user_id,
                channel=channel,
                message=text,
                metadata={"phone": state.profile.phone, "kind": kind, "intent": intent},
            )
        )
        if not result.success:
            self._metrics["dispatch_failures"] += 1
        return result

    async def _reply_only(
        self,
        event: EventEnvelope,
        message: str,
        status: str,
        language: str = DEFAULT_LANGUAGE,
        urgency: Urgency | None = None,
    ) -> TurnResult:
        """Send a reply without touching persisted state."""
        text = await self._translator.translate(message, language)
        result = await self._dispatchers.dispatch(
            AgentResponse(
                recipient=event.user_id,
                channel=event.channel.value,
                message=text,
                metadata={"phone": event.phone, "kind": status},
            )
        )
        if not result.success:
            self._metrics["dispatch_failures"] += 1
        return TurnResult(
            user_id=event.user_id,
            reply=message,
            status=status,
            urgency=urgency,
            deliveries=[result],
        )

    def _record_time(self, elapsed: float) -> None:
        times = self._metrics["turn_times"]
        times.append(elapsed)
        if len(times) > 200:
            self._metrics["turn_times"] = times[-100:]

    # ── Observability ──

    def get_metrics(self) -> dict[str, Any]:
        metrics = {k: v for k, v in self._metrics.items() if k != "turn_times"}
        times = self._metrics["turn_times"]
        if times:
            metrics["turn_time_summary"] = {
                "count": len(times),
                "avg_ms": round(sum(times) / len(times) * 1000, 1),
                "max_ms": round(max(times) * 1000, 1),
            }
        metrics["dispatcher_failure_count"] = self._dispatchers.failure_count
        return metrics

    def health_check(self) -> dict[str, Any]:
        checks: dict[str, Any] = {
            "store_available": self._store is not None,
            "channels_registered": len(self._dispatchers.registered_channels) > 0,
            "channel_names": self._dispatchers.registered_channels,
            "messages_processed": self._metrics["messages_processed"],
            "messages_failed": self._metrics["messages_failed"],
        }
        checks["healthy"] = checks["store_available"] and checks["channels_registered"]
        return checks

    # ── Rate Limiting ──

    def _is_rate_limited(self, user_id: str) -> bool:
        """Sliding window: True once a user exceeds the per-window maximum."""
        now = time.monotonic()
        cutoff = now - RATE_LIMIT_WINDOW_SECONDS
        timestamps = [t for t in self._rate_limiter.get(user_id, []) if t > cutoff]

        if len(timestamps) >= self._rate_limit_max:
            self._rate_limiter[user_id] = timestamps
            return True

        timestamps.append(now)
        self._rate_limiter[user_id] = timestamps
        return False
