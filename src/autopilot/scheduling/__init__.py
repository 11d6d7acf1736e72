"""Scheduling layer -- due-task detection, recurrence, and the automation store."""

from autopilot.scheduling.frequency import next_execution
from autopilot.scheduling.scheduler import DueTaskScheduler
from autopilot.scheduling.sqlite_store import SqliteAutomationStore
from autopilot.scheduling.store import ScheduledAutomationStore, reschedule

__all__ = [
    "DueTaskScheduler",
    "ScheduledAutomationStore",
    "SqliteAutomationStore",
    "next_execution",
    "reschedule",
]
