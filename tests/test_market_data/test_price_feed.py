"""Tests for PriceFeedPoller.

All tests use a mocked PriceSource to avoid real API calls.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from autopilot.config import PollerSettings
from autopilot.engine.rule_engine import AutomationRuleEngine
from autopilot.exceptions import FetchError, PriceValidationError
from autopilot.market_data.price_feed import PriceFeedPoller
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.models import ExecutionResult, PriceChangeEvent, PriceErrorEvent, PriceSample


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def source() -> AsyncMock:
    src = AsyncMock()
    src.fetch_price = AsyncMock(return_value=PriceSample(Decimal("100"), timestamp=1.0))
    return src


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def poller(source: AsyncMock, events: list) -> PriceFeedPoller:
    p = PriceFeedPoller(source, PollerSettings(interval=3600.0))

    async def on_change(event: PriceChangeEvent) -> None:
        events.append(event)

    async def on_error(event: PriceErrorEvent) -> None:
        events.append(event)

    p.add_listener(on_change, on_error)
    return p


def _price(value: str) -> PriceSample:
    return PriceSample(Decimal(value), timestamp=2.0)


# ---------------------------------------------------------------------------
# Single poll
# ---------------------------------------------------------------------------


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_first_observation_emits_event(self, poller: PriceFeedPoller, events: list) -> None:
        await poller._poll_once("BTC")

        assert len(events) == 1
        event = events[0]
        assert isinstance(event, PriceChangeEvent)
        assert event.old_price is None
        assert event.new_price == Decimal("100")
        assert event.change_percent == Decimal("0")

    @pytest.mark.asyncio
    async def test_sub_threshold_move_is_suppressed_but_cached(
        self, poller: PriceFeedPoller, source: AsyncMock, events: list
    ) -> None:
        await poller._poll_once("BTC")
        source.fetch_price.return_value = _price("100.005")  # 0.005%
        await poller._poll_once("BTC")

        assert len(events) == 1
        assert poller.get_latest("BTC") == Decimal("100.005")

    @pytest.mark.asyncio
    async def test_every_accepted_sample_reaches_statistics(
        self, source: AsyncMock, statistics: AssetStatisticsStore, events: list
    ) -> None:
        poller = PriceFeedPoller(source, PollerSettings(), statistics)

        async def on_change(event: PriceChangeEvent) -> None:
            events.append(event)

        poller.add_listener(on_change)
        await poller._poll_once("BTC")
        source.fetch_price.return_value = _price("100.005")
        await poller._poll_once("BTC")

        assert len(events) == 1
        assert statistics.get_cached_price("BTC") == Decimal("100.005")
        history = statistics.get_price_history("BTC")
        assert [s.price_usd for s in history] == [Decimal("100"), Decimal("100.005")]

    @pytest.mark.asyncio
    async def test_event_carries_previous_fetch_as_old_price(
        self, source: AsyncMock, statistics: AssetStatisticsStore, events: list
    ) -> None:
        poller = PriceFeedPoller(source, PollerSettings(), statistics)

        async def on_change(event: PriceChangeEvent) -> None:
            events.append(event)

        poller.add_listener(on_change)
        for value in ("100", "100.005", "101"):
            source.fetch_price.return_value = _price(value)
            await poller._poll_once("BTC")

        # The middle fetch emitted nothing but is still the baseline
        assert events[-1].old_price == Decimal("100.005")
        assert events[-1].new_price == Decimal("101")

    @pytest.mark.asyncio
    async def test_significant_move_emits_event(
        self, poller: PriceFeedPoller, source: AsyncMock, events: list
    ) -> None:
        await poller._poll_once("BTC")
        source.fetch_price.return_value = _price("101")
        await poller._poll_once("BTC")

        event = events[-1]
        assert event.old_price == Decimal("100")
        assert event.new_price == Decimal("101")
        assert event.change_percent == Decimal("1")
        assert event.timestamp == 2.0

    @pytest.mark.asyncio
    async def test_fetch_error_emits_error_event(
        self, poller: PriceFeedPoller, source: AsyncMock, events: list
    ) -> None:
        source.fetch_price.side_effect = FetchError("BTC", "timeout")
        await poller._poll_once("BTC")

        assert len(events) == 1
        assert isinstance(events[0], PriceErrorEvent)
        assert isinstance(events[0].error, FetchError)
        assert poller.get_latest("BTC") is None

    @pytest.mark.asyncio
    async def test_rejected_sample_is_not_cached(self, source: AsyncMock, events: list) -> None:
        statistics = AssetStatisticsStore()
        poller = PriceFeedPoller(source, PollerSettings(), statistics)

        async def on_error(event: PriceErrorEvent) -> None:
            events.append(event)

        poller.add_listener(AsyncMock(), on_error)
        source.fetch_price.return_value = _price("0")
        await poller._poll_once("BTC")

        assert isinstance(events[0].error, PriceValidationError)
        assert poller.get_latest("BTC") is None

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_block_others(self, source: AsyncMock) -> None:
        poller = PriceFeedPoller(source)
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        poller.add_listener(failing)
        poller.add_listener(healthy)

        await poller._poll_once("BTC")

        failing.assert_awaited_once()
        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_listener(self, source: AsyncMock) -> None:
        poller = PriceFeedPoller(source)
        listener = AsyncMock()
        unsubscribe = poller.add_listener(listener)
        unsubscribe()
        unsubscribe()

        await poller._poll_once("BTC")
        listener.assert_not_awaited()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_start_polls_immediately_and_stop_is_idempotent(
        self, poller: PriceFeedPoller, events: list
    ) -> None:
        await poller.start_monitoring(["BTC", "BTC"])
        await asyncio.sleep(0.01)

        assert poller.is_running
        assert poller.monitored_assets == ["BTC"]
        assert len(events) == 1

        await poller.stop_monitoring()
        await poller.stop_monitoring()
        assert not poller.is_running
        assert poller.monitored_assets == []

    @pytest.mark.asyncio
    async def test_results_after_stop_are_dropped(
        self, poller: PriceFeedPoller, source: AsyncMock, events: list
    ) -> None:
        await poller.start_monitoring(["BTC"])
        await asyncio.sleep(0.01)
        await poller.stop_monitoring(["BTC"])

        source.fetch_price.return_value = _price("150")
        await poller._poll_once("BTC")

        assert len(events) == 1
        assert poller.get_latest("BTC") == Decimal("100")

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_dispatch(
        self,
        source: AsyncMock,
        statistics: AssetStatisticsStore,
        mock_executor: AsyncMock,
        make_rule,
    ) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_execute(rule, price) -> ExecutionResult:
            started.set()
            await release.wait()
            return ExecutionResult(success=True, tx_ref="paper_slow", executed_price=price)

        mock_executor.execute.side_effect = slow_execute
        source.fetch_price.return_value = _price("89000")
        engine = AutomationRuleEngine(statistics, mock_executor)
        await engine.add_rule(make_rule())

        poller = PriceFeedPoller(source, PollerSettings(interval=3600.0), statistics)

        async def on_change(event: PriceChangeEvent) -> None:
            await engine.on_price_change(event.asset, event.new_price, event.old_price)

        poller.add_listener(on_change)
        await poller.start_monitoring(["BTC"])
        await asyncio.wait_for(started.wait(), timeout=1.0)

        stopping = asyncio.create_task(poller.stop_monitoring())
        await asyncio.sleep(0.01)
        assert not stopping.done()

        release.set()
        await asyncio.wait_for(stopping, timeout=1.0)

        history = engine.get_execution_history("r1")
        assert len(history) == 1
        assert history[0].tx_ref == "paper_slow"
        assert engine.get_rule("r1").last_executed_at == history[0].timestamp
        assert poller.monitored_assets == []
        source.fetch_price.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_cancels_sleeping_and_fetching_tasks(self, source: AsyncMock) -> None:
        never = asyncio.Event()

        async def fetch(asset: str) -> PriceSample:
            if asset == "SLOW":
                await never.wait()
            return _price("1")

        source.fetch_price = AsyncMock(side_effect=fetch)
        poller = PriceFeedPoller(source, PollerSettings(interval=3600.0))
        poller.add_listener(AsyncMock())
        await poller.start_monitoring(["SLOW", "FAST"])
        await asyncio.sleep(0.01)

        # SLOW is stuck in its fetch, FAST is asleep until the next tick
        await asyncio.wait_for(poller.stop_monitoring(), timeout=1.0)
        assert poller.monitored_assets == []

    @pytest.mark.asyncio
    async def test_slow_asset_does_not_delay_others(self, source: AsyncMock, events: list) -> None:
        never = asyncio.Event()

        async def fetch(asset: str) -> PriceSample:
            if asset == "SLOW":
                await never.wait()
            return _price("1")

        source.fetch_price = AsyncMock(side_effect=fetch)
        poller = PriceFeedPoller(source, PollerSettings(interval=3600.0))

        async def on_change(event: PriceChangeEvent) -> None:
            events.append(event)

        poller.add_listener(on_change)
        await poller.start_monitoring(["SLOW", "FAST"])
        await asyncio.sleep(0.01)

        assert [e.asset for e in events] == ["FAST"]
        await poller.stop_monitoring()

    def test_per_asset_interval(self) -> None:
        settings = PollerSettings(interval=15.0, asset_intervals={"USDC": 30.0})
        assert settings.interval_for("XLM") == 15.0
        assert settings.interval_for("USDC") == 30.0

    def test_relative_change_with_zero_base(self) -> None:
        assert PriceFeedPoller.relative_change(Decimal("0"), Decimal("1")) is None
        assert PriceFeedPoller.relative_change(Decimal("100"), Decimal("99")) == Decimal("0.01")
