"""Abstract executor interface.

The rule engine, scheduler and coordinator hand matched work to this
interface and never sign or broadcast anything themselves. A paper executor
and any real wallet-backed executor implement the same ABC.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from autopilot.models import AutomationRule, ExecutionResult, ScheduledAutomation


class Executor(ABC):
    """Abstract base class for action executors.

    Expected business failures (insufficient funds, no liquidity) are
    returned as ``ExecutionResult(success=False, error=...)``. Only
    unexpected faults are raised.
    """

    @abstractmethod
    async def execute(self, rule: AutomationRule, current_price: Decimal) -> ExecutionResult:
        """Carry out a rule's conversion of ``rule.amount`` source units.

        Args:
            rule: The rule whose condition matched.
            current_price: USD price of the source asset that triggered it.

        Returns:
            ExecutionResult describing the outcome.
        """
        ...

    @abstractmethod
    async def execute_automation(self, automation: ScheduledAutomation) -> ExecutionResult:
        """Carry out a scheduled payment or a triggered swap automation."""
        ...
