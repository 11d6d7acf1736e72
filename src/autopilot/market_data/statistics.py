"""Per-asset price registry, bounded history, and derived statistics.

Owns the last-known-price cache and a FIFO-capped history per asset. The
poller consults it to validate incoming samples; the rule engine reads it for
percentage-change baselines.

All methods are synchronous: they never await, so on a single event loop
each call is atomic with respect to other coroutines.
"""

import time
from collections import deque
from collections.abc import Callable
from decimal import Decimal

from autopilot.config import StatisticsSettings
from autopilot.logging import get_logger
from autopilot.models import AssetConfig, AssetKind, PriceSample, PriceStats, Trend

logger = get_logger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


class AssetStatisticsStore:
    """Bounded price history and rolling statistics per asset.

    Args:
        settings: History cap, outlier and trend parameters.
        clock: Returns the current Unix time; injectable for tests.
    """

    def __init__(
        self,
        settings: StatisticsSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or StatisticsSettings()
        self._clock = clock
        self._assets: dict[str, AssetConfig] = {}
        self._cache: dict[str, PriceSample] = {}
        self._history: dict[str, deque[PriceSample]] = {}

    # ──────────────────────────────────────────────
    # Registry
    # ──────────────────────────────────────────────

    def register_asset(self, config: AssetConfig) -> None:
        """Register (or replace) an asset for price tracking."""
        self._assets[config.code] = config
        logger.info("asset_registered", asset=config.code, kind=config.kind.value)

    def register_assets(self, configs: list[AssetConfig]) -> None:
        for config in configs:
            self.register_asset(config)

    def ensure_registered(
        self, code: str, kind: AssetKind = AssetKind.OTHER
    ) -> AssetConfig:
        """Register ``code`` unless already known; return its config."""
        existing = self._assets.get(code)
        if existing is not None:
            return existing
        config = AssetConfig(code=code, kind=kind)
        self.register_asset(config)
        return config

    def unregister_asset(self, code: str) -> None:
        """Remove an asset together with its cached price and history."""
        self._assets.pop(code, None)
        self._cache.pop(code, None)
        self._history.pop(code, None)
        logger.info("asset_unregistered", asset=code)

    def get_registered_assets(self) -> list[AssetConfig]:
        return list(self._assets.values())

    def get_asset(self, code: str) -> AssetConfig | None:
        return self._assets.get(code)

    # ──────────────────────────────────────────────
    # Samples and cache
    # ──────────────────────────────────────────────

    def record_sample(self, asset: str, sample: PriceSample) -> None:
        """Append a sample to the asset's history and refresh its cached price.

        The oldest sample is evicted once the history reaches its cap.
        """
        history = self._history.get(asset)
        if history is None:
            history = deque(maxlen=self._settings.max_history_length)
            self._history[asset] = history
        history.append(sample)
        self._cache[asset] = sample

    def get_cached_price(self, asset: str) -> Decimal | None:
        """Return the most recently recorded price, or None."""
        sample = self._cache.get(asset)
        return sample.price_usd if sample is not None else None

    def get_all_cached_prices(self) -> dict[str, Decimal]:
        return {asset: s.price_usd for asset, s in self._cache.items()}

    def get_price_history(self, asset: str) -> list[PriceSample]:
        """Return a copy of the asset's history, oldest first."""
        return list(self._history.get(asset, ()))

    def clear_history(self, asset: str) -> None:
        self._history.pop(asset, None)

    def clear_all(self) -> None:
        """Drop every cached price and history; registrations are kept."""
        self._cache.clear()
        self._history.clear()

    # ──────────────────────────────────────────────
    # Derived statistics
    # ──────────────────────────────────────────────

    def get_stats(self, asset: str) -> PriceStats | None:
        """Compute statistics over the asset's full history.

        Volatility is the population standard deviation. ``change_24h`` is the
        percent move from the earliest sample inside the last 24 hours to the
        current price, 0 when no sample falls in that window.

        Returns:
            PriceStats, or None when the asset has no history.
        """
        history = self._history.get(asset)
        if not history:
            return None

        prices = [s.price_usd for s in history]
        current = prices[-1]
        count = Decimal(len(prices))
        avg = sum(prices, Decimal("0")) / count
        variance = sum(((p - avg) ** 2 for p in prices), Decimal("0")) / count
        volatility = variance.sqrt()

        window_start = self._clock() - _SECONDS_PER_DAY
        baseline = next((s for s in history if s.timestamp >= window_start), None)
        if baseline is not None and baseline.price_usd != 0:
            change_24h = (current - baseline.price_usd) / baseline.price_usd * 100
        else:
            change_24h = Decimal("0")

        return PriceStats(
            current=current,
            min=min(prices),
            max=max(prices),
            avg=avg,
            volatility=volatility,
            change_24h=change_24h,
        )

    def is_outlier(
        self, asset: str, price: Decimal, threshold_sigma: Decimal | None = None
    ) -> bool:
        """Whether ``price`` lies more than ``threshold_sigma`` deviations from the mean.

        A flat history (zero volatility) has no defined z-score and is never
        an outlier.
        """
        if threshold_sigma is None:
            threshold_sigma = self._settings.outlier_sigma
        stats = self.get_stats(asset)
        if stats is None or stats.volatility == 0:
            return False
        z_score = abs(price - stats.avg) / stats.volatility
        return z_score > threshold_sigma

    def validate_price(self, asset: str, sample: PriceSample) -> bool:
        """Gate a fetched sample before it is recorded.

        Rejects non-finite and non-positive prices. The outlier check only
        applies once the history holds ``outlier_min_samples`` samples.
        """
        price = sample.price_usd
        if not price.is_finite() or price <= 0:
            return False

        history = self._history.get(asset)
        if history is None or len(history) < self._settings.outlier_min_samples:
            return True

        if self.is_outlier(asset, price):
            logger.warning("price_outlier_detected", asset=asset, price=str(price))
            return False
        return True

    def get_trend(self, asset: str, lookback_periods: int | None = None) -> Trend:
        """Compare the first and last of the last ``lookback_periods`` samples.

        A move beyond ``trend_threshold`` is UP or DOWN. With fewer samples
        than the lookback the trend is STABLE.
        """
        if lookback_periods is None:
            lookback_periods = self._settings.trend_lookback
        history = self._history.get(asset)
        if history is None or len(history) < lookback_periods or lookback_periods < 2:
            return Trend.STABLE

        recent = list(history)[-lookback_periods:]
        first = recent[0].price_usd
        last = recent[-1].price_usd
        if first == 0:
            return Trend.STABLE
        change = (last - first) / first

        threshold = self._settings.trend_threshold
        if change > threshold:
            return Trend.UP
        if change < -threshold:
            return Trend.DOWN
        return Trend.STABLE
