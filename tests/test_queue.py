"""
Tests for UserQueueManager — per-user FIFO ordering and idle cleanup.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from healthbot.gateway.events import EventEnvelope
from healthbot.gateway.queue import UserQueueManager


def event(phone, text):
    return EventEnvelope.user_message(phone, text)


class Recorder:
    """Processor that records the order events finish in."""

    def __init__(self, delay=0.01):
        self.delay = delay
        self.finished: list[tuple[str, str]] = []
        self.active: dict[str, int] = {}
        self.max_concurrent_per_user = 0

    async def __call__(self, ev):
        uid = ev.user_id
        self.active[uid] = self.active.get(uid, 0) + 1
        self.max_concurrent_per_user = max(self.max_concurrent_per_user, self.active[uid])
        await asyncio.sleep(self.delay)
        self.active[uid] -= 1
        self.finished.append((uid, ev.text))
        return ev.text.upper()


class TestOrdering:

    @pytest.mark.asyncio
    async def test_same_user_fifo(self):
        recorder = Recorder()
        mgr = UserQueueManager(processor=recorder)
        futures = [await mgr.submit(event("+911111111111", t)) for t in ("a", "b", "c")]
        results = await asyncio.gather(*futures)
        await mgr.stop()

        assert results == ["A", "B", "C"]
        assert [t for _, t in recorder.finished] == ["a", "b", "c"]
        assert recorder.max_concurrent_per_user == 1

    @pytest.mark.asyncio
    async def test_users_run_in_parallel(self):
        recorder = Recorder(delay=0.05)
        mgr = UserQueueManager(processor=recorder)
        futures = [
            await mgr.submit(event("+911111111111", "a")),
            await mgr.submit(event("+912222222222", "b")),
        ]
        await asyncio.gather(*futures)
        assert mgr.active_count == 2
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_process_waits_for_result(self):
        mgr = UserQueueManager(processor=Recorder())
        assert await mgr.process(event("+911111111111", "hi")) == "HI"
        await mgr.stop()


class TestErrors:

    @pytest.mark.asyncio
    async def test_exception_reaches_caller_and_worker_survives(self):
        async def processor(ev):
            if ev.text == "bad":
                raise ValueError("bad input")
            return "ok"

        mgr = UserQueueManager(processor=processor)
        with pytest.raises(ValueError):
            await mgr.process(event("+911111111111", "bad"))
        assert await mgr.process(event("+911111111111", "good")) == "ok"
        await mgr.stop()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_idle_queue_cleaned_up(self):
        mgr = UserQueueManager(processor=Recorder(), idle_timeout_seconds=60)
        await mgr.process(event("+911111111111", "hi"))
        assert mgr.active_users == ["+911111111111"]

        assert await mgr.cleanup_idle() == 0
        later = datetime.now(timezone.utc) + timedelta(seconds=120)
        assert await mgr.cleanup_idle(now=later) == 1
        assert mgr.active_count == 0
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self):
        blocker = asyncio.Event()

        async def processor(ev):
            await blocker.wait()
            return ev.text

        mgr = UserQueueManager(processor=processor)
        first = await mgr.submit(event("+911111111111", "one"))
        second = await mgr.submit(event("+911111111111", "two"))
        await asyncio.sleep(0)
        assert mgr.queue_depth("+911111111111") >= 1

        await mgr.stop()
        assert first.cancelled()
        assert second.cancelled()
        assert mgr.active_count == 0

    @pytest.mark.asyncio
    async def test_queue_depth_unknown_user(self):
        mgr = UserQueueManager(processor=Recorder())
        assert mgr.queue_depth("+919999999999") == 0
