"""Abstract scheduled-automation store.

The scheduler only reads from it; the coordinator advances or deactivates
rows after a successful dispatch.
"""

import time
from abc import ABC, abstractmethod

from autopilot.logging import get_logger
from autopilot.models import Frequency, ScheduledAutomation
from autopilot.scheduling.frequency import next_execution

logger = get_logger(__name__)


class ScheduledAutomationStore(ABC):
    """Abstract base class for persistence of scheduled automations."""

    @abstractmethod
    async def list_active(self) -> list[ScheduledAutomation]:
        """Return every active automation."""
        ...

    @abstractmethod
    async def list_due(self, now: float) -> list[ScheduledAutomation]:
        """Return active automations whose next_execute_at is at or before ``now``."""
        ...

    @abstractmethod
    async def advance(self, automation_id: str, next_execute_at: float) -> None:
        """Move an automation's next due time forward."""
        ...

    @abstractmethod
    async def deactivate(self, automation_id: str) -> None:
        """Mark an automation inactive and clear its next due time."""
        ...


async def reschedule(store: ScheduledAutomationStore, automation: ScheduledAutomation) -> float | None:
    """Advance a recurring automation after a successful run, or retire a one-off.

    Returns:
        The new next_execute_at, or None when the automation was deactivated.
    """
    if automation.frequency is None or automation.frequency is Frequency.ONCE:
        await store.deactivate(automation.id)
        logger.info("automation_completed", automation_id=automation.id)
        return None

    base = automation.next_execute_at if automation.next_execute_at is not None else time.time()
    next_at = next_execution(base, automation.frequency)
    await store.advance(automation.id, next_at)
    logger.info(
        "automation_rescheduled",
        automation_id=automation.id,
        frequency=automation.frequency.value,
        next_execute_at=next_at,
    )
    return next_at
