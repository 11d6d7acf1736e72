"""Due-task scheduler -- time-based triggering of scheduled automations.

Detects automations whose next due time has elapsed and hands them, batched
per tick, to a callback. It executes nothing itself, and rescheduling is
left to whoever handles the callback.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from autopilot.logging import get_logger
from autopilot.models import ScheduledAutomation

logger = get_logger(__name__)

AutomationProvider = Callable[[], Awaitable[list[ScheduledAutomation]]]
DueCallback = Callable[[list[ScheduledAutomation]], Awaitable[None]]


class DueTaskScheduler:
    """Polls an automation provider and reports the ones that are due.

    Args:
        on_due: Awaited with every non-empty batch of due automations.
        interval: Seconds between evaluations.
        clock: Returns the current Unix time; injectable for tests.
    """

    def __init__(
        self,
        on_due: DueCallback,
        interval: float = 20.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._on_due = on_due
        self._interval = interval
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._dispatching = False

    async def start(self, get_automations: AutomationProvider) -> None:
        """Evaluate immediately, then once per interval, in the background."""
        if self._running:
            logger.warning("scheduler_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(get_automations), name="due_task_scheduler")
        logger.info("scheduler_started", interval=self._interval)

    async def stop(self) -> None:
        """Cancel the interval. Safe to call repeatedly or before start().

        A batch already handed to ``on_due`` is awaited to completion; only a
        sleeping or loading loop is cancelled.
        """
        self._running = False
        if self._task is not None and self._task is not asyncio.current_task():
            if not self._dispatching:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self, get_automations: AutomationProvider) -> None:
        while self._running:
            try:
                await self.tick(get_automations)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("scheduler_tick_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._interval)

    async def tick(self, get_automations: AutomationProvider) -> list[ScheduledAutomation]:
        """Run one evaluation and return the due batch (possibly empty)."""
        automations = await get_automations()
        now = self._clock()
        due = [a for a in automations if a.is_due(now)]
        if due:
            logger.info("due_automations_found", count=len(due), ids=[a.id for a in due])
            self._dispatching = True
            try:
                await self._on_due(due)
            finally:
                self._dispatching = False
        return due
