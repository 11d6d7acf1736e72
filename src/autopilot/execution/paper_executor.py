"""Paper executor with simulated fills.

Fills at the cached market price minus the tiered slippage estimate and
tracks virtual balances per asset. Business failures are returned as failed
results, never raised.
"""

import time
from decimal import Decimal
from uuid import uuid4

from autopilot.engine.slippage import estimate_slippage
from autopilot.execution.executor import Executor
from autopilot.logging import get_logger
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.models import AutomationKind, AutomationRule, ExecutionResult, ScheduledAutomation

logger = get_logger(__name__)


class PaperExecutor(Executor):
    """Simulated executor for paper trading.

    Balances are only enforced once at least one balance has been set;
    an executor without balances fills everything.

    Args:
        statistics: Price cache used to value the target leg of a conversion.
        initial_balances: Starting virtual balances keyed by asset code.
    """

    def __init__(
        self,
        statistics: AssetStatisticsStore,
        initial_balances: dict[str, Decimal] | None = None,
    ) -> None:
        self._statistics = statistics
        self._virtual_balances: dict[str, Decimal] = dict(initial_balances or {})

    def set_initial_balance(self, asset: str, amount: Decimal) -> None:
        self._virtual_balances[asset] = amount

    def get_virtual_balance(self) -> dict[str, Decimal]:
        """Return a copy of the current virtual balances."""
        return dict(self._virtual_balances)

    async def execute(self, rule: AutomationRule, current_price: Decimal) -> ExecutionResult:
        return self._convert(
            source=rule.source_asset,
            target=rule.target_asset,
            amount=rule.amount,
            source_price=current_price,
            reference=rule.id,
        )

    async def execute_automation(self, automation: ScheduledAutomation) -> ExecutionResult:
        if automation.kind is AutomationKind.PAYMENT:
            return self._pay(automation)

        if automation.kind is AutomationKind.SWAP:
            if (
                automation.asset_from is None
                or automation.asset_to is None
                or automation.amount_from is None
            ):
                return self._failure(automation.id, "swap automation is missing assets or amount")
            source_price = self._statistics.get_cached_price(automation.asset_from)
            if source_price is None:
                return self._failure(automation.id, f"no price for {automation.asset_from}")
            return self._convert(
                source=automation.asset_from,
                target=automation.asset_to,
                amount=automation.amount_from,
                source_price=source_price,
                reference=automation.id,
            )

        return self._failure(automation.id, f"unsupported automation kind {automation.kind.value}")

    def _pay(self, automation: ScheduledAutomation) -> ExecutionResult:
        if automation.asset is None or automation.amount is None:
            return self._failure(automation.id, "payment automation is missing asset or amount")
        if not self._has_funds(automation.asset, automation.amount):
            return self._failure(automation.id, f"insufficient {automation.asset} balance")

        if self._virtual_balances:
            self._virtual_balances[automation.asset] -= automation.amount

        tx_ref = f"paper_{uuid4().hex[:12]}"
        logger.info(
            "paper_payment_sent",
            tx_ref=tx_ref,
            automation_id=automation.id,
            asset=automation.asset,
            amount=str(automation.amount),
            recipient=automation.recipient,
        )
        return ExecutionResult(success=True, tx_ref=tx_ref, timestamp=time.time())

    def _convert(
        self,
        source: str,
        target: str,
        amount: Decimal,
        source_price: Decimal,
        reference: str,
    ) -> ExecutionResult:
        target_price = self._statistics.get_cached_price(target)
        if target_price is None or target_price <= 0:
            return self._failure(reference, f"no price for {target}")
        if not self._has_funds(source, amount):
            return self._failure(reference, f"insufficient {source} balance")

        slippage = estimate_slippage(amount * source_price)
        fill_price = source_price * (Decimal("1") - slippage / Decimal("100"))
        received = amount * fill_price / target_price

        if self._virtual_balances:
            self._virtual_balances[source] -= amount
            self._virtual_balances[target] = (
                self._virtual_balances.get(target, Decimal("0")) + received
            )

        tx_ref = f"paper_{uuid4().hex[:12]}"
        logger.info(
            "paper_conversion_filled",
            tx_ref=tx_ref,
            reference=reference,
            source=source,
            target=target,
            amount=str(amount),
            fill_price=str(fill_price),
            received=str(received),
            slippage_percent=str(slippage),
        )
        return ExecutionResult(
            success=True,
            tx_ref=tx_ref,
            executed_price=fill_price,
            realized_slippage_percent=slippage,
            timestamp=time.time(),
        )

    def _has_funds(self, asset: str, amount: Decimal) -> bool:
        if not self._virtual_balances:
            return True
        return self._virtual_balances.get(asset, Decimal("0")) >= amount

    @staticmethod
    def _failure(reference: str, error: str) -> ExecutionResult:
        logger.info("paper_execution_rejected", reference=reference, error=error)
        return ExecutionResult(success=False, error=error, timestamp=time.time())
