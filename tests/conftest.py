"""
Shared fixtures for the HealthBot test suite.

Everything runs in-process: InMemoryStore for persistence, InMemoryDispatcher
for both channels, NullTranslator for replies.  No network access.
"""

from datetime import datetime, timezone

import pytest

from healthbot.gateway.agents.session import ConversationManager
from healthbot.gateway.channels import DispatcherRegistry
from healthbot.gateway.dispatchers.memory_dispatcher import InMemoryDispatcher
from healthbot.gateway.gateway import Gateway
from healthbot.gateway.scheduler import MedicationReminderScheduler
from healthbot.gateway.store import InMemoryStore

class FakeClock:
    """Settable clock injected into the gateway and scheduler."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, *args: int) -> datetime:
        self.now = datetime(*args, tzinfo=timezone.utc)
        return self.now


@pytest.fixture
def clock():
    # Monday 6 January 2025, 07:00 UTC
    return FakeClock(datetime(2025, 1, 6, 7, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def whatsapp():
    return InMemoryDispatcher(channel_name="whatsapp")


@pytest.fixture
def sms():
    return InMemoryDispatcher(channel_name="sms")


@pytest.fixture
def registry(whatsapp, sms):
    reg = DispatcherRegistry()
    reg.register(whatsapp)
    reg.register(sms)
    return reg


@pytest.fixture
def scheduler(store, registry, clock):
    return MedicationReminderScheduler(
        store,
        registry,
        tz=timezone.utc,
        clock=clock,
        lookback_minutes=30,
        snooze_minutes=15,
        daily_digest_time="21:00",
        weekly_review_day=6,
        weekly_review_time="10:00",
    )


@pytest.fixture
def gateway(store, registry, scheduler, clock):
    return Gateway(
        store=store,
        dispatcher_registry=registry,
        manager=ConversationManager(scheduler=scheduler),
        clock=clock,
        session_timeout_minutes=30,
    )
