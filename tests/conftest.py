"""Shared test fixtures for the price automation engine."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from autopilot.config import AppSettings, ExchangeSettings, PollerSettings, SchedulerSettings
from autopilot.execution.executor import Executor
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.models import AutomationRule, ConditionOperator, ExecutionResult, RuleType

NOW = 1_700_000_000.0


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (no API keys, no API server)."""
    return AppSettings(
        log_level="DEBUG",
        monitored_assets=["XLM", "USDC"],
        native_assets=["XLM"],
        exchange=ExchangeSettings(exchange_id="binance", quote_currency="USDT"),
        poller=PollerSettings(interval=3600.0),
        scheduler=SchedulerSettings(interval=3600.0),
    )


@pytest.fixture
def statistics() -> AssetStatisticsStore:
    """AssetStatisticsStore whose clock is pinned to NOW."""
    return AssetStatisticsStore(clock=lambda: NOW)


@pytest.fixture
def mock_executor() -> AsyncMock:
    """Executor mock that fills every request successfully."""
    executor = AsyncMock(spec=Executor)
    executor.execute.return_value = ExecutionResult(
        success=True,
        tx_ref="paper_000000000001",
        executed_price=Decimal("89000"),
        realized_slippage_percent=Decimal("0.5"),
        timestamp=NOW,
    )
    executor.execute_automation.return_value = ExecutionResult(
        success=True, tx_ref="paper_000000000002", timestamp=NOW
    )
    return executor


@pytest.fixture
def now() -> float:
    return NOW


@pytest.fixture
def make_rule():
    """Factory for a BTC->USDC stop-loss rule; keyword arguments override fields."""

    def _make(**overrides) -> AutomationRule:
        fields = {
            "id": "r1",
            "type": RuleType.STOP_LOSS,
            "source_asset": "BTC",
            "target_asset": "USDC",
            "amount": Decimal("0.01"),
            "condition_operator": ConditionOperator.LTE,
            "condition_value": Decimal("90000"),
            "max_slippage_percent": Decimal("1.0"),
        }
        fields.update(overrides)
        return AutomationRule(**fields)

    return _make
