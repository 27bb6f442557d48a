import asyncio
from typing import Awaitable, Callable, List, Optional, Set

from optrack.config import settings
from optrack.core.logger import logger

class PeriodicTask:
    """
    Fires `fn` every `interval` seconds after an initial `start_delay`.

    Firings are fixed-rate: a slow tick does not push the next firing back.
    With allow_overlap=False a firing that finds the previous tick still
    running is skipped; with allow_overlap=True ticks may run concurrently.
    A tick that raises is logged and the schedule carries on.
    """
    def __init__(self, name: str, fn: Callable[[], Awaitable], interval: float,
                 start_delay: float = 0.0, allow_overlap: bool = False):
        self.name = name
        self.fn = fn
        self.interval = interval
        self.start_delay = start_delay
        self.allow_overlap = allow_overlap
        self.is_running = False
        self.ticks_started = 0
        self.ticks_skipped = 0
        self.ticks_failed = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    def start(self):
        if self.is_running:
            return
        self.is_running = True
        self._loop_task = asyncio.create_task(self._run())
        logger.info(f"[SCHEDULER] {self.name} every {self.interval}s (first in {self.start_delay}s)")

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + self.start_delay
        while self.is_running:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            if not self.is_running:
                break
            self._fire()
            next_fire += self.interval

    def _fire(self):
        if self._inflight and not self.allow_overlap:
            self.ticks_skipped += 1
            logger.warning(f"[SCHEDULER] {self.name} tick skipped: previous tick still running")
            return
        self.ticks_started += 1
        task = asyncio.create_task(self.fn())
        self._inflight.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task):
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.ticks_failed += 1
            logger.error(f"[SCHEDULER] {self.name} tick failed: {exc}", exc_info=exc)

    async def stop(self):
        """Stop firing and cancel any tick in flight"""
        self.is_running = False
        tasks = [t for t in [self._loop_task, *self._inflight] if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None

class CollectorScheduler:
    """One independent PeriodicTask per collector"""
    def __init__(self, allow_overlap: Optional[bool] = None):
        self.allow_overlap = settings.ALLOW_OVERLAPPING_TICKS if allow_overlap is None else allow_overlap
        self.tasks: List[PeriodicTask] = []

    def add(self, collector, interval: Optional[float] = None, start_delay: float = 0.0) -> PeriodicTask:
        task = PeriodicTask(
            name=collector.name,
            fn=collector.tick,
            interval=settings.POLL_INTERVAL if interval is None else interval,
            start_delay=start_delay,
            allow_overlap=self.allow_overlap,
        )
        self.tasks.append(task)
        return task

    def start(self):
        for task in self.tasks:
            task.start()

    async def stop(self):
        for task in self.tasks:
            await task.stop()
        logger.info(f"[SCHEDULER] Stopped {len(self.tasks)} task(s)")
