"""Price source backed by any ccxt exchange via the async API.

Prices are the ticker's last trade for ``{asset}/{quote}``. The quote
currency itself (a USD stablecoin by default) is priced at exactly 1.
"""

import time
from decimal import Decimal, InvalidOperation

import ccxt.async_support as ccxt_async

from autopilot.config import ExchangeSettings
from autopilot.exceptions import FetchError
from autopilot.logging import get_logger
from autopilot.models import PriceSample
from autopilot.sources.price_source import PriceSource

logger = get_logger(__name__)


class CcxtPriceSource(PriceSource):
    """Concrete price source using ccxt async tickers."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings

        config: dict = {"enableRateLimit": True}
        api_key = settings.api_key.get_secret_value()
        if api_key:
            config["apiKey"] = api_key
            config["secret"] = settings.api_secret.get_secret_value()

        exchange_class = getattr(ccxt_async, settings.exchange_id)
        self._exchange = exchange_class(config)
        if settings.sandbox:
            self._exchange.set_sandbox_mode(True)

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    def symbol_for(self, asset: str) -> str:
        return f"{asset}/{self._settings.quote_currency}"

    async def connect(self) -> None:
        """Load markets so symbol lookups are resolved locally."""
        logger.info("connecting_price_source", exchange=self._settings.exchange_id)
        markets = await self._exchange.load_markets()
        logger.info(
            "price_source_connected",
            exchange=self._settings.exchange_id,
            market_count=len(markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaking sessions."""
        await self._exchange.close()
        logger.info("price_source_closed", exchange=self._settings.exchange_id)

    async def fetch_price(self, asset: str) -> PriceSample:
        """Fetch the last traded price for ``asset`` against the quote currency.

        Raises:
            FetchError: On any ccxt error or when the ticker carries no price.
        """
        if asset == self._settings.quote_currency:
            return PriceSample(price_usd=Decimal("1"), timestamp=time.time())

        symbol = self.symbol_for(asset)
        try:
            ticker = await self._exchange.fetch_ticker(symbol)
        except ccxt_async.BaseError as e:
            raise FetchError(asset, f"{type(e).__name__}: {e}") from e

        last = ticker.get("last")
        if last is None:
            raise FetchError(asset, f"ticker {symbol} has no last price")
        try:
            price = Decimal(str(last))
        except InvalidOperation as e:
            raise FetchError(asset, f"unparseable price {last!r}") from e

        timestamp_ms = ticker.get("timestamp")
        timestamp = timestamp_ms / 1000 if timestamp_ms else time.time()
        return PriceSample(price_usd=price, timestamp=timestamp)
