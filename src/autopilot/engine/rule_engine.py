"""Automation rule engine -- condition evaluation and slippage-gated dispatch.

On each price change the engine evaluates every enabled rule whose source
asset moved. A matching rule is dispatched to the executor only if the
estimated slippage for its notional fits within the rule's ceiling;
otherwise it is skipped silently and waits for the next trigger.

Rules are multi-shot: a successful execution records history and updates
``last_executed_at`` but leaves the rule enabled.

The rule table is guarded by an asyncio.Lock. Evaluation works on a snapshot
taken under the lock, so executor awaits never hold it and add/remove calls
are never interleaved with a snapshot or a bookkeeping update.
"""

import asyncio
import time
from collections import deque
from decimal import Decimal

from autopilot.config import EngineSettings
from autopilot.engine.conditions import evaluate_condition
from autopilot.engine.slippage import within_budget
from autopilot.exceptions import (
    AutomationError,
    ExecutionError,
    PriceValidationError,
    RuleNotFoundError,
    SlippageExceeded,
)
from autopilot.execution.executor import Executor
from autopilot.logging import get_logger
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.models import AutomationRule, ExecutionResult, ExecutionStats
from autopilot.sources.price_source import PriceSource

logger = get_logger(__name__)


class AutomationRuleEngine:
    """Holds the active rule set and dispatches matching rules.

    Args:
        statistics: Asset registry and price history; receives manually
            fetched prices once they pass validation.
        executor: Carries out matched rules.
        price_source: Used by manual execution to fetch a fresh price.
        settings: Execution history cap.
    """

    def __init__(
        self,
        statistics: AssetStatisticsStore,
        executor: Executor,
        price_source: PriceSource | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._statistics = statistics
        self._executor = executor
        self._price_source = price_source
        self._settings = settings or EngineSettings()
        self._rules: dict[str, AutomationRule] = {}
        self._history: dict[str, deque[ExecutionResult]] = {}
        self._lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Rule table
    # ──────────────────────────────────────────────

    async def add_rule(self, rule: AutomationRule) -> None:
        """Add or replace a rule and register both of its assets."""
        async with self._lock:
            self._rules[rule.id] = rule
        self._statistics.ensure_registered(rule.source_asset)
        self._statistics.ensure_registered(rule.target_asset)
        logger.info(
            "rule_added",
            rule_id=rule.id,
            rule_type=rule.type.value,
            source=rule.source_asset,
            target=rule.target_asset,
        )

    async def remove_rule(self, rule_id: str) -> bool:
        """Remove a rule. Its execution history stays queryable.

        Returns:
            True if the rule existed.
        """
        async with self._lock:
            removed = self._rules.pop(rule_id, None)
        if removed is not None:
            logger.info("rule_removed", rule_id=rule_id)
        return removed is not None

    async def set_rule_enabled(self, rule_id: str, enabled: bool) -> AutomationRule:
        """Enable or disable a rule.

        Raises:
            RuleNotFoundError: If no rule has this id.
        """
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)
            rule.enabled = enabled
        logger.info("rule_toggled", rule_id=rule_id, enabled=enabled)
        return rule

    def get_rule(self, rule_id: str) -> AutomationRule | None:
        return self._rules.get(rule_id)

    def get_rules(self) -> list[AutomationRule]:
        return list(self._rules.values())

    def get_active_rules(self) -> list[AutomationRule]:
        return [r for r in self._rules.values() if r.enabled]

    def referenced_assets(self) -> set[str]:
        """Source and target assets of all enabled rules."""
        assets: set[str] = set()
        for r in self._rules.values():
            if r.enabled:
                assets.update((r.source_asset, r.target_asset))
        return assets

    # ──────────────────────────────────────────────
    # Evaluation
    # ──────────────────────────────────────────────

    async def on_price_change(
        self, asset: str, new_price: Decimal, base_price: Decimal | None = None
    ) -> list[ExecutionResult]:
        """Evaluate every enabled rule on ``asset`` against ``new_price``.

        Args:
            asset: Asset whose price moved.
            new_price: The price just fetched.
            base_price: Baseline for percentage-change rules, normally the
                previous fetch. Percentage rules never match without one.

        Returns:
            Results of the rules that were dispatched.
        """

        async with self._lock:
            candidates = [
                r for r in self._rules.values() if r.enabled and r.source_asset == asset
            ]

        results: list[ExecutionResult] = []
        for rule in candidates:
            try:
                matched = evaluate_condition(rule, new_price, base_price)
            except ValueError:
                logger.error("rule_evaluation_failed", rule_id=rule.id, exc_info=True)
                continue
            if not matched:
                continue

            logger.info(
                "rule_condition_met",
                rule_id=rule.id,
                asset=asset,
                price=str(new_price),
                base_price=str(base_price),
            )
            allowed, estimated = within_budget(rule.amount, new_price, rule.max_slippage_percent)
            if not allowed:
                logger.info(
                    "slippage_exceeded",
                    rule_id=rule.id,
                    estimated=str(estimated),
                    maximum=str(rule.max_slippage_percent),
                )
                continue

            results.append(await self._execute_and_record(rule, new_price))
        return results

    async def execute_rule_manually(self, rule_id: str) -> ExecutionResult:
        """Execute a rule now, bypassing its condition but not the slippage gate.

        Raises:
            RuleNotFoundError: If no rule has this id.
            FetchError: If the fresh price cannot be fetched.
            PriceValidationError: If the fetched price is rejected.
            SlippageExceeded: If the estimate is above the rule's ceiling.
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if self._price_source is None:
            raise AutomationError("Manual execution requires a price source")

        sample = await self._price_source.fetch_price(rule.source_asset)
        if not self._statistics.validate_price(rule.source_asset, sample):
            raise PriceValidationError(rule.source_asset, sample.price_usd)
        self._statistics.record_sample(rule.source_asset, sample)

        allowed, estimated = within_budget(rule.amount, sample.price_usd, rule.max_slippage_percent)
        if not allowed:
            raise SlippageExceeded(estimated, rule.max_slippage_percent)

        logger.info("rule_manual_execution", rule_id=rule_id, price=str(sample.price_usd))
        return await self._execute_and_record(rule, sample.price_usd)

    async def _execute_and_record(
        self, rule: AutomationRule, price: Decimal
    ) -> ExecutionResult:
        try:
            result = await self._executor.execute(rule, price)
        except Exception as e:
            error = ExecutionError(f"rule {rule.id}", e)
            logger.error("rule_execution_error", rule_id=rule.id, error=str(error), exc_info=True)
            result = ExecutionResult(success=False, error=str(error), timestamp=time.time())

        async with self._lock:
            history = self._history.get(rule.id)
            if history is None:
                history = deque(maxlen=self._settings.max_execution_history)
                self._history[rule.id] = history
            history.append(result)
            if result.success:
                current = self._rules.get(rule.id)
                if current is not None:
                    current.last_executed_at = result.timestamp

        if result.success:
            logger.info(
                "rule_executed",
                rule_id=rule.id,
                tx_ref=result.tx_ref,
                executed_price=str(result.executed_price),
                slippage=str(result.realized_slippage_percent),
            )
        else:
            logger.warning("rule_execution_failed", rule_id=rule.id, error=result.error)
        return result

    # ──────────────────────────────────────────────
    # History
    # ──────────────────────────────────────────────

    def get_execution_history(self, rule_id: str) -> list[ExecutionResult]:
        """Return a rule's execution results, oldest first."""
        return list(self._history.get(rule_id, ()))

    def clear_execution_history(self, rule_id: str) -> None:
        self._history.pop(rule_id, None)

    def get_execution_stats(self, rule_id: str) -> ExecutionStats:
        """Aggregate a rule's history.

        ``average_slippage`` averages the results that report a realized
        slippage; it is 0 when none do.
        """
        history = list(self._history.get(rule_id, ()))
        successful = sum(1 for r in history if r.success)
        slippages = [
            r.realized_slippage_percent
            for r in history
            if r.realized_slippage_percent is not None
        ]
        average = (
            sum(slippages, Decimal("0")) / Decimal(len(slippages))
            if slippages
            else Decimal("0")
        )
        return ExecutionStats(
            total_executions=len(history),
            successful_executions=successful,
            failed_executions=len(history) - successful,
            average_slippage=average,
            last_execution=history[-1] if history else None,
        )
