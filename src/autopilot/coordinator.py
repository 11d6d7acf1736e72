"""Orchestration coordinator -- wires polling, rules and scheduling together.

Owns the aggregate lifecycle:
  1. SCHEDULE: the DueTaskScheduler reports due payment automations, which
     are dispatched to the executor and then rescheduled in the store.
  2. SUBSCRIBE: the price feed polls every asset referenced by configured
     assets, enabled rules and active swap or rule-kind automations.
  3. EVALUATE: each price change is routed to the rule engine, then every
     active swap automation is re-checked against the latest prices of both
     of its legs.

Failures are isolated per asset and per automation; only stop() ends the
coordinator.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from decimal import Decimal

from autopilot.config import AppSettings
from autopilot.engine.rule_engine import AutomationRuleEngine
from autopilot.engine.slippage import within_budget
from autopilot.exceptions import ExecutionError
from autopilot.execution.executor import Executor
from autopilot.logging import get_logger
from autopilot.market_data.price_feed import PriceFeedPoller
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.models import (
    AssetKind,
    AutomationKind,
    AutomationRule,
    ExecutionResult,
    PriceChangeEvent,
    PriceErrorEvent,
    ScheduledAutomation,
    SwapCondition,
)
from autopilot.scheduling.scheduler import AutomationProvider, DueTaskScheduler
from autopilot.scheduling.store import ScheduledAutomationStore, reschedule

logger = get_logger(__name__)

_RECENT_DISPATCHES = 100


class OrchestrationCoordinator:
    """Starts and stops the poller and scheduler together and routes their events.

    Args:
        settings: Application-wide settings.
        poller: Price feed shared with the rule engine's assets.
        statistics: Asset registry and price history.
        rule_engine: Receives every price change.
        executor: Carries out due payments and triggered swaps.
        store: Reschedules payments after a successful run; optional.
    """

    def __init__(
        self,
        settings: AppSettings,
        poller: PriceFeedPoller,
        statistics: AssetStatisticsStore,
        rule_engine: AutomationRuleEngine,
        executor: Executor,
        store: ScheduledAutomationStore | None = None,
    ) -> None:
        self._settings = settings
        self._poller = poller
        self._statistics = statistics
        self._rule_engine = rule_engine
        self._executor = executor
        self._store = store
        self._scheduler = DueTaskScheduler(
            self._dispatch_due, interval=settings.scheduler.interval
        )
        self._get_automations: AutomationProvider | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._swap_lock = asyncio.Lock()
        self._recent: deque[tuple[str, ExecutionResult]] = deque(maxlen=_RECENT_DISPATCHES)
        self._running = False

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self, get_automations: AutomationProvider) -> None:
        """Start the scheduler and price subscriptions."""
        if self._running:
            logger.info("coordinator_already_running")
            return
        self._running = True
        self._get_automations = get_automations

        await self._scheduler.start(get_automations)
        self._unsubscribers.append(
            self._poller.add_listener(self._on_price_change, self._on_price_error)
        )

        assets = set(self._settings.monitored_assets) | self._rule_engine.referenced_assets()
        try:
            automations = await get_automations()
        except Exception:
            logger.warning("initial_automation_load_failed", exc_info=True)
            automations = []
        assets |= self._price_assets(automations)

        await self._ensure_monitored(assets)
        logger.info("coordinator_started", assets=sorted(assets))

    async def stop(self) -> None:
        """Stop the scheduler and drop every price subscription.

        Safe to call even if start() was never called.
        """
        self._running = False
        await self._scheduler.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self._poller.stop_monitoring()
        logger.info("coordinator_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def add_rule(self, rule: AutomationRule) -> None:
        """Add a rule and, while running, start polling its assets."""
        await self._rule_engine.add_rule(rule)
        if self._running:
            await self._ensure_monitored({rule.source_asset, rule.target_asset})

    async def _ensure_monitored(self, assets: set[str]) -> None:
        monitored = set(self._poller.monitored_assets)
        for asset in assets:
            kind = (
                AssetKind.NATIVE
                if asset in self._settings.native_assets
                else AssetKind.OTHER
            )
            self._statistics.ensure_registered(asset, kind)
        new_assets = sorted(assets - monitored)
        if new_assets:
            await self._poller.start_monitoring(new_assets)

    @staticmethod
    def _price_assets(automations: list[ScheduledAutomation]) -> set[str]:
        assets: set[str] = set()
        for a in automations:
            if a.active and a.kind in (AutomationKind.SWAP, AutomationKind.RULE):
                assets.update(x for x in (a.asset_from, a.asset_to) if x)
        return assets

    # ──────────────────────────────────────────────
    # Price events
    # ──────────────────────────────────────────────

    async def _on_price_change(self, event: PriceChangeEvent) -> None:
        if not self._running:
            return
        await self._rule_engine.on_price_change(event.asset, event.new_price, event.old_price)
        await self._check_price_triggered()

    async def _on_price_error(self, event: PriceErrorEvent) -> None:
        logger.warning("price_feed_error", asset=event.asset, error=str(event.error))

    async def _check_price_triggered(self) -> None:
        """Re-evaluate every active swap automation against the latest prices."""
        if self._get_automations is None:
            return
        async with self._swap_lock:
            try:
                automations = await self._get_automations()
            except Exception:
                logger.warning("automation_load_failed", exc_info=True)
                return

            await self._ensure_monitored(self._price_assets(automations))

            for automation in automations:
                if not automation.active or automation.kind is not AutomationKind.SWAP:
                    continue
                if self.swap_condition_met(automation):
                    await self._dispatch(automation)

    def swap_condition_met(self, automation: ScheduledAutomation) -> bool:
        """Check a swap's condition on the ratio of its two legs' latest prices.

        ``price_increase``/``price_decrease`` compare ``from / to`` against
        ``1 ± value/100``; ``price_target`` compares the from-leg USD price
        against the value. A match must also fit the swap's slippage ceiling.
        """
        if (
            automation.asset_from is None
            or automation.asset_to is None
            or automation.condition is None
            or automation.condition_value is None
        ):
            return False

        from_price = self._poller.get_latest(automation.asset_from)
        to_price = self._poller.get_latest(automation.asset_to)
        if from_price is None or to_price is None or to_price == 0:
            return False

        value = automation.condition_value
        ratio = from_price / to_price
        if automation.condition is SwapCondition.PRICE_INCREASE:
            matched = ratio >= Decimal("1") + value / Decimal("100")
        elif automation.condition is SwapCondition.PRICE_DECREASE:
            matched = ratio <= Decimal("1") - value / Decimal("100")
        else:
            matched = from_price >= value
        if not matched:
            return False

        if automation.amount_from is not None:
            allowed, estimated = within_budget(
                automation.amount_from, from_price, automation.slippage
            )
            if not allowed:
                logger.info(
                    "slippage_exceeded",
                    automation_id=automation.id,
                    estimated=str(estimated),
                    maximum=str(automation.slippage),
                )
                return False
        return True

    # ──────────────────────────────────────────────
    # Scheduled automations
    # ──────────────────────────────────────────────

    async def _dispatch_due(self, due: list[ScheduledAutomation]) -> None:
        """Dispatch due payments; reschedule the ones that succeeded."""
        for automation in due:
            if automation.kind is not AutomationKind.PAYMENT:
                continue
            result = await self._dispatch(automation)
            if not result.success or self._store is None:
                continue
            try:
                await reschedule(self._store, automation)
            except Exception:
                logger.error(
                    "automation_reschedule_failed",
                    automation_id=automation.id,
                    exc_info=True,
                )

    async def _dispatch(self, automation: ScheduledAutomation) -> ExecutionResult:
        try:
            result = await self._executor.execute_automation(automation)
        except Exception as e:
            error = ExecutionError(f"automation {automation.id}", e)
            logger.error(
                "automation_execution_error",
                automation_id=automation.id,
                error=str(error),
                exc_info=True,
            )
            result = ExecutionResult(success=False, error=str(error))

        self._recent.append((automation.id, result))
        logger.info(
            "automation_dispatched",
            automation_id=automation.id,
            kind=automation.kind.value,
            success=result.success,
            tx_ref=result.tx_ref,
            error=result.error,
        )
        return result

    # ──────────────────────────────────────────────
    # Status
    # ──────────────────────────────────────────────

    def get_recent_dispatches(self) -> list[tuple[str, ExecutionResult]]:
        """Return (automation_id, result) pairs, oldest first."""
        return list(self._recent)

    def get_status(self) -> dict:
        """Return a snapshot of the coordinator's state.

        Returns:
            Dict with: running, scheduler_running, monitored_assets,
            rules_total, rules_active, cached_prices, recent_dispatches.
        """
        return {
            "running": self._running,
            "scheduler_running": self._scheduler.is_running,
            "monitored_assets": sorted(self._poller.monitored_assets),
            "rules_total": len(self._rule_engine.get_rules()),
            "rules_active": len(self._rule_engine.get_active_rules()),
            "cached_prices": self._statistics.get_all_cached_prices(),
            "recent_dispatches": len(self._recent),
        }
