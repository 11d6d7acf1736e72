"""Execution layer -- executor interface and the paper executor."""

from autopilot.execution.executor import Executor
from autopilot.execution.paper_executor import PaperExecutor

__all__ = ["Executor", "PaperExecutor"]
