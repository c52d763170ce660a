"""
PURPOSE: Hand task completion records from relay sessions to the caller waiting on them.
SRP and DRY check: Pass - owns the task id to TaskResult map, exactly-once consumption,
                   the bounded wait, and eviction of records nobody consumed.

Records are consumed exactly once: reading a record removes it. A record nobody reads expires
after ``ttl_seconds`` and is evicted by ``purge_expired()``, which the housekeeping task runs
periodically. When a waiter gives up, the task id is marked abandoned for the same TTL so a late
completion for it is dropped instead of stored.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from relay_api.errors import TaskTimeout
from relay_api.models import TaskResult

logger = logging.getLogger(__name__)


@dataclass
class _PendingResult:
    result: TaskResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TaskCorrelator:
    """Holds at most one unconsumed TaskResult per task id."""

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._results: Dict[str, _PendingResult] = {}
        self._abandoned: Dict[str, float] = {}
        self._signals: Dict[str, asyncio.Event] = {}
        self._lock = threading.Lock()
        self._housekeeping_task: Optional[asyncio.Task] = None

    def record(self, task_id: str, result: TaskResult) -> bool:
        """
        Store the completion record for a task, replacing any unconsumed one, and wake its waiter.
        Returns False when the record was dropped because its waiter already timed out.
        """
        now = self._clock()
        with self._lock:
            abandoned_until = self._abandoned.get(task_id)
            if abandoned_until is not None and now < abandoned_until:
                logger.warning(f"Dropping late completion for task {task_id}: the waiter already timed out")
                return False
            if task_id in self._results:
                logger.info(f"Replacing unconsumed completion for task {task_id}")
            self._results[task_id] = _PendingResult(result=result, expires_at=now + self._ttl)
            signal = self._signals.get(task_id)
        if signal is not None:
            signal.set()
        logger.info(f"Recorded completion for task {task_id}")
        return True

    def try_consume(self, task_id: str) -> Optional[TaskResult]:
        """Remove and return the record for a task, or None when there is none."""
        with self._lock:
            pending = self._results.pop(task_id, None)
        if pending is None:
            return None
        if pending.is_expired(self._clock()):
            logger.info(f"Discarding expired completion for task {task_id}")
            return None
        return pending.result

    def abandon(self, task_id: str) -> None:
        """Discard any record for the task and drop completions that arrive for it later."""
        with self._lock:
            discarded = self._results.pop(task_id, None)
            self._abandoned[task_id] = self._clock() + self._ttl
        if discarded is not None:
            logger.info(f"Discarded completion for abandoned task {task_id}")

    def pending_count(self) -> int:
        """Number of records that try_consume would still return. Expired records are not counted."""
        now = self._clock()
        with self._lock:
            return sum(1 for pending in self._results.values() if not pending.is_expired(now))

    def purge_expired(self) -> int:
        """Evict expired records and abandoned markers. Returns the number of records evicted."""
        now = self._clock()
        with self._lock:
            expired = [task_id for task_id, pending in self._results.items() if pending.is_expired(now)]
            for task_id in expired:
                del self._results[task_id]
            stale_markers = [task_id for task_id, until in self._abandoned.items() if now >= until]
            for task_id in stale_markers:
                del self._abandoned[task_id]
        if expired:
            logger.info(f"Purged {len(expired)} unconsumed completions: {expired}")
        return len(expired)

    async def wait_for_result(self, task_id: str, timeout: float, poll_interval: float = 1.0) -> TaskResult:
        """
        Suspend until a completion for the task is recorded or the timeout elapses.

        A recorded completion wakes the waiter immediately. The store is also probed every
        ``poll_interval`` seconds, so a result is picked up at most one interval after it lands.
        On timeout the task is abandoned and TaskTimeout is raised.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        signal = asyncio.Event()
        with self._lock:
            self._signals[task_id] = signal
        try:
            while True:
                signal.clear()
                result = self.try_consume(task_id)
                if result is not None:
                    return result
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self.abandon(task_id)
                    raise TaskTimeout(f"No completion for task {task_id} within {timeout} seconds")
                try:
                    await asyncio.wait_for(signal.wait(), timeout=min(poll_interval, remaining))
                except asyncio.TimeoutError:
                    pass
        finally:
            with self._lock:
                if self._signals.get(task_id) is signal:
                    del self._signals[task_id]

    async def start_housekeeping(self, interval_seconds: float) -> None:
        """Start the background task that evicts expired records"""
        if self._housekeeping_task is not None:
            return
        self._housekeeping_task = asyncio.create_task(self._housekeeping_loop(interval_seconds))
        logger.info(f"Task correlator housekeeping started, interval: {interval_seconds} seconds")

    async def stop_housekeeping(self) -> None:
        if self._housekeeping_task is not None:
            self._housekeeping_task.cancel()
            try:
                await self._housekeeping_task
            except asyncio.CancelledError:
                pass
            self._housekeeping_task = None
            logger.info("Task correlator housekeeping stopped")

    async def _housekeeping_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.purge_expired()
            except Exception as e:
                logger.error(f"Task correlator housekeeping error: {e}")
