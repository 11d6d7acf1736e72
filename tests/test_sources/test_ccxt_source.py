"""Tests for CcxtPriceSource.

All tests use mocked ccxt exchange objects to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import ccxt.async_support as ccxt_async
import pytest

from autopilot.config import ExchangeSettings
from autopilot.exceptions import FetchError
from autopilot.sources.ccxt_source import CcxtPriceSource


@pytest.fixture
def exchange_settings() -> ExchangeSettings:
    return ExchangeSettings(exchange_id="binance", quote_currency="USDT")


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.fetch_ticker = AsyncMock(
        return_value={"symbol": "BTC/USDT", "last": 89000.5, "timestamp": 1_700_000_000_000}
    )
    exchange.load_markets = AsyncMock(return_value={"BTC/USDT": {}})
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def source(exchange_settings: ExchangeSettings, mock_exchange: MagicMock) -> CcxtPriceSource:
    """CcxtPriceSource with the ccxt exchange replaced by a mock."""
    src = CcxtPriceSource(exchange_settings)
    src._exchange = mock_exchange
    return src


class TestCcxtPriceSource:
    @pytest.mark.asyncio
    async def test_fetch_price_from_ticker(self, source: CcxtPriceSource, mock_exchange: MagicMock) -> None:
        sample = await source.fetch_price("BTC")

        mock_exchange.fetch_ticker.assert_awaited_once_with("BTC/USDT")
        assert sample.price_usd == Decimal("89000.5")
        assert sample.timestamp == 1_700_000_000.0

    @pytest.mark.asyncio
    async def test_quote_currency_is_one(self, source: CcxtPriceSource, mock_exchange: MagicMock) -> None:
        sample = await source.fetch_price("USDT")
        assert sample.price_usd == Decimal("1")
        mock_exchange.fetch_ticker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ccxt_error_becomes_fetch_error(
        self, source: CcxtPriceSource, mock_exchange: MagicMock
    ) -> None:
        mock_exchange.fetch_ticker.side_effect = ccxt_async.NetworkError("timeout")
        with pytest.raises(FetchError) as exc_info:
            await source.fetch_price("BTC")
        assert exc_info.value.asset == "BTC"

    @pytest.mark.asyncio
    async def test_missing_last_price(self, source: CcxtPriceSource, mock_exchange: MagicMock) -> None:
        mock_exchange.fetch_ticker.return_value = {"symbol": "BTC/USDT", "last": None}
        with pytest.raises(FetchError):
            await source.fetch_price("BTC")

    @pytest.mark.asyncio
    async def test_missing_timestamp_falls_back_to_now(
        self, source: CcxtPriceSource, mock_exchange: MagicMock
    ) -> None:
        mock_exchange.fetch_ticker.return_value = {"symbol": "BTC/USDT", "last": 1.0}
        sample = await source.fetch_price("BTC")
        assert sample.timestamp > 1_700_000_000

    @pytest.mark.asyncio
    async def test_connect_and_close(self, source: CcxtPriceSource, mock_exchange: MagicMock) -> None:
        await source.connect()
        await source.close()
        mock_exchange.load_markets.assert_awaited_once()
        mock_exchange.close.assert_awaited_once()

    def test_credentials_and_sandbox(self) -> None:
        settings = ExchangeSettings(
            exchange_id="binance",
            sandbox=True,
            api_key="test-key",  # type: ignore[arg-type]
            api_secret="test-secret",  # type: ignore[arg-type]
        )
        with patch.object(ccxt_async, "binance") as exchange_class:
            CcxtPriceSource(settings)

        config = exchange_class.call_args.args[0]
        assert config["apiKey"] == "test-key"
        assert config["secret"] == "test-secret"
        assert config["enableRateLimit"] is True
        exchange_class.return_value.set_sandbox_mode.assert_called_once_with(True)
