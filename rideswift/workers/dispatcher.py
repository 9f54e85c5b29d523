"""
Background Side-Effect Dispatcher
=================================

Notifications, receipts and carbon bookkeeping never run on the request
path.  Services ``submit`` a named job (a zero-argument coroutine
factory) and return immediately; a small pool of worker tasks drains the
queue.

Failure policy
--------------
* Each job is retried up to ``side_effect_max_attempts`` times with
  exponential backoff (``backoff x 2^(attempt-1)``).
* After the last attempt the failure is logged as ``DependencyFailure``
  and dropped.  It never reaches the transition that queued it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from rideswift.config import settings
from rideswift.domain.errors import DependencyFailure

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class SideEffectDispatcher:
    def __init__(
        self,
        workers: int = settings.side_effect_workers,
        max_attempts: int = settings.side_effect_max_attempts,
        backoff_seconds: float = settings.side_effect_backoff_seconds,
    ):
        self.workers = workers
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    # ── Public API ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"side-effects-{i}")
            for i in range(self.workers)
        ]
        logger.info("Side-effect dispatcher started (workers=%d)", self.workers)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        if self._tasks:
            try:
                await asyncio.wait_for(self.drain(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Dropping %d pending side effects on shutdown", self._queue.qsize()
                )
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Side-effect dispatcher stopped")

    def submit(self, name: str, job: Job) -> None:
        """Queue *job*; never blocks and never raises into the caller."""
        self._queue.put_nowait((name, job))

    async def drain(self) -> None:
        """Wait until every queued job has finished (or given up)."""
        await self._queue.join()

    # ── Internals ─────────────────────────────────────────────────────

    async def _worker(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await self._run(name, job)
            finally:
                self._queue.task_done()

    async def _run(self, name: str, job: Job) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await job()
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt == self.max_attempts:
                    failure = DependencyFailure(
                        f"{name} failed after {attempt} attempts: {exc}"
                    )
                    logger.error("%s", failure.message)
                    return
                delay = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    name, attempt, self.max_attempts, delay, exc,
                )
                await asyncio.sleep(delay)
