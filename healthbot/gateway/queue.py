"""
Per-User Event Queue — serialises turns for each user.

One asyncio.Queue per active user.  Messages from the same user are
processed FIFO, one at a time, so two quick messages never race on the
same UserState.  Different users run in parallel.

Idle queues are torn down after a configurable timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from healthbot.gateway.events import EventEnvelope

logger = logging.getLogger("gateway.queue")

# Type for the callback the queue calls to process each event
EventProcessor = Callable[[EventEnvelope], Awaitable[Any]]

SLOW_TURN_SECONDS = 30


class UserQueueManager:
    """
    Manages one asyncio.Queue per user_id.

    Usage:
        mgr = UserQueueManager(processor=gateway.process_inbound_message)
        await mgr.start()
        future = await mgr.submit(event)
        result = await future          # TurnResult (or None for a duplicate)

    A worker task is spawned for each user on their first event and torn
    down after idle_timeout_seconds without traffic.
    """

    def __init__(
        self,
        processor: EventProcessor,
        idle_timeout_seconds: int = 1800,
        cleanup_interval_seconds: float = 60,
    ) -> None:
        self._processor = processor
        self._idle_timeout = idle_timeout_seconds
        self._cleanup_interval = cleanup_interval_seconds

        self._queues: dict[str, asyncio.Queue[tuple[EventEnvelope, asyncio.Future]]] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._last_activity: dict[str, datetime] = {}
        self._in_flight: set[str] = set()
        self._cleanup_task: asyncio.Task | None = None
        self._running = False

    # ── Public API ──

    async def start(self) -> None:
        """Start the idle-cleanup background loop."""
        if self._running:
            return
        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("UserQueueManager started (idle timeout=%ds)", self._idle_timeout)

    async def stop(self) -> None:
        """Stop all workers.  Pending futures are cancelled."""
        self._running = False
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None

        for uid in list(self._workers.keys()):
            await self._destroy_queue(uid)

        logger.info("UserQueueManager stopped")

    async def submit(self, event: EventEnvelope) -> asyncio.Future:
        """Queue an event for its user; the returned future resolves with the turn result."""
        if not self._running:
            await self.start()

        uid = event.user_id
        if uid not in self._queues:
            self._create_queue(uid)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._last_activity[uid] = datetime.now(timezone.utc)
        await self._queues[uid].put((event, future))
        logger.debug(
            "Enqueued %s for user %s (depth=%d)",
            event.event_type.value, uid, self._queues[uid].qsize(),
        )
        return future

    async def process(self, event: EventEnvelope) -> Any:
        """Submit and wait for the result."""
        future = await self.submit(event)
        return await future

    @property
    def active_users(self) -> list[str]:
        return list(self._queues.keys())

    @property
    def active_count(self) -> int:
        return len(self._queues)

    def queue_depth(self, user_id: str) -> int:
        """Number of pending events for a user.  Returns 0 if no queue."""
        q = self._queues.get(user_id)
        return q.qsize() if q else 0

    # ── Internal ──

    def _create_queue(self, user_id: str) -> None:
        q: asyncio.Queue[tuple[EventEnvelope, asyncio.Future]] = asyncio.Queue()
        self._queues[user_id] = q
        self._last_activity[user_id] = datetime.now(timezone.utc)
        self._workers[user_id] = asyncio.create_task(self._worker_loop(user_id, q))
        logger.debug("Created queue + worker for user %s", user_id)

    async def _worker_loop(
        self,
        user_id: str,
        q: asyncio.Queue[tuple[EventEnvelope, asyncio.Future]],
    ) -> None:
        """Process events for a single user, one at a time."""
        while True:
            try:
                event, future = await q.get()
            except asyncio.CancelledError:
                break

            self._in_flight.add(user_id)
            try:
                self._last_activity[user_id] = datetime.now(timezone.utc)
                t0 = time.monotonic()
                # No wait_for here: cancelling a to_thread store call leaves
                # the thread running against the store.
                result = await self._processor(event)
                elapsed = time.monotonic() - t0
                if elapsed > SLOW_TURN_SECONDS:
                    logger.warning("Slow turn for %s took %.1fs", user_id, elapsed)
                if not future.done():
                    future.set_result(result)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                q.task_done()
                break
            except Exception as exc:
                logger.error(
                    "Error processing %s for user %s: %s",
                    event.event_type.value, user_id, exc,
                    exc_info=True,
                )
                if not future.done():
                    future.set_exception(exc)
            finally:
                self._in_flight.discard(user_id)
                self._last_activity[user_id] = datetime.now(timezone.utc)

            q.task_done()

    async def _destroy_queue(self, user_id: str) -> None:
        worker = self._workers.pop(user_id, None)
        if worker and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        q = self._queues.pop(user_id, None)
        if q is not None:
            while not q.empty():
                _, future = q.get_nowait()
                if not future.done():
                    future.cancel()
        self._last_activity.pop(user_id, None)
        logger.debug("Destroyed queue for user %s", user_id)

    def _idle_users(self, now: datetime) -> list[str]:
        idle = []
        for uid, last in list(self._last_activity.items()):
            q = self._queues.get(uid)
            busy = uid in self._in_flight or (q is not None and not q.empty())
            if (now - last).total_seconds() > self._idle_timeout and not busy:
                idle.append(uid)
        return idle

    async def cleanup_idle(self, now: datetime | None = None) -> int:
        """Tear down idle queues now; returns how many were removed."""
        idle = self._idle_users(now or datetime.now(timezone.utc))
        for uid in idle:
            logger.info("Cleaning up idle queue for user %s", uid)
            await self._destroy_queue(uid)
        return len(idle)

    async def _cleanup_loop(self) -> None:
        """Periodically destroy idle queues."""
        while self._running:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self.cleanup_idle()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Queue cleanup error: %s", exc)
