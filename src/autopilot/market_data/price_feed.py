"""Price feed poller -- one independent polling task per monitored asset.

Each asset is fetched on its own interval, so a slow or failing fetch for
one asset never delays another. Within an asset, a sample is fully handled
(validated, cached, listeners awaited) before the next fetch starts, which
keeps per-asset processing in fetch order.

Fetch failures are reported to error listeners and retried on the next tick.

Stopping cancels a task only while it sleeps or fetches. A task that is
notifying listeners finishes that notification, and whatever it dispatched,
before it exits.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal

from autopilot.config import PollerSettings
from autopilot.exceptions import FetchError, PriceValidationError
from autopilot.logging import get_logger
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.models import PriceChangeEvent, PriceErrorEvent, PriceSample
from autopilot.sources.price_source import PriceSource

logger = get_logger(__name__)

ChangeListener = Callable[[PriceChangeEvent], Awaitable[None]]
ErrorListener = Callable[[PriceErrorEvent], Awaitable[None]]


class PriceFeedPoller:
    """Polls a PriceSource per asset and notifies listeners of significant moves.

    Args:
        source: External price source.
        settings: Intervals, noise threshold, and validation toggle.
        statistics: When given, receives every accepted sample. With validation
            enabled, samples are gated through ``validate_price`` first.
    """

    def __init__(
        self,
        source: PriceSource,
        settings: PollerSettings | None = None,
        statistics: AssetStatisticsStore | None = None,
    ) -> None:
        self._source = source
        self._settings = settings or PollerSettings()
        self._statistics = statistics
        self._latest: dict[str, PriceSample] = {}
        self._tasks: dict[str, asyncio.Task] = {}  # type: ignore[type-arg]
        self._change_listeners: list[ChangeListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._stopped: set[str] = set()
        self._emitting: set[str] = set()
        self._running = False

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def add_listener(
        self,
        on_change: ChangeListener,
        on_error: ErrorListener | None = None,
    ) -> Callable[[], None]:
        """Register listeners; returns a callable that removes them again."""
        self._change_listeners.append(on_change)
        if on_error is not None:
            self._error_listeners.append(on_error)

        def unsubscribe() -> None:
            if on_change in self._change_listeners:
                self._change_listeners.remove(on_change)
            if on_error is not None and on_error in self._error_listeners:
                self._error_listeners.remove(on_error)

        return unsubscribe

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start_monitoring(
        self, assets: list[str], interval: float | None = None
    ) -> None:
        """Start a polling task for every asset not already monitored.

        Each task fetches immediately, then once per interval. ``interval``
        overrides the configured interval for the assets in this call.
        """
        self._running = True
        for asset in assets:
            if asset in self._tasks:
                continue
            self._stopped.discard(asset)
            asset_interval = (
                interval if interval is not None else self._settings.interval_for(asset)
            )
            self._tasks[asset] = asyncio.create_task(
                self._poll_loop(asset, asset_interval),
                name=f"price_feed:{asset}",
            )
            logger.info("price_monitoring_started", asset=asset, interval=asset_interval)

    async def stop_monitoring(self, assets: list[str] | None = None) -> None:
        """Stop polling the given assets, or all of them. Idempotent.

        Sleeping or fetching tasks are cancelled. A task that is notifying
        listeners is awaited until that notification completes.
        """
        targets = list(self._tasks) if assets is None else [a for a in assets if a in self._tasks]
        if assets is None:
            self._running = False

        self._stopped.update(targets)
        tasks = [self._tasks.pop(asset) for asset in targets]
        for asset, task in zip(targets, tasks):
            if asset not in self._emitting:
                task.cancel()
        current = asyncio.current_task()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("price_monitoring_stopped", assets=targets)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def monitored_assets(self) -> list[str]:
        return list(self._tasks)

    def get_latest(self, asset: str) -> Decimal | None:
        """Return the last successfully fetched price, including sub-threshold ones."""
        sample = self._latest.get(asset)
        return sample.price_usd if sample is not None else None

    # ──────────────────────────────────────────────
    # Polling
    # ──────────────────────────────────────────────

    async def _poll_loop(self, asset: str, interval: float) -> None:
        while self._is_active(asset):
            try:
                await self._poll_once(asset)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("price_poll_unexpected_error", asset=asset, exc_info=True)
            if not self._is_active(asset):
                break
            await asyncio.sleep(interval)

    async def _poll_once(self, asset: str) -> None:
        """Fetch one sample for ``asset`` and notify listeners when it moved enough."""
        try:
            sample = await self._source.fetch_price(asset)
        except FetchError as e:
            if self._is_active(asset):
                logger.warning("price_fetch_failed", asset=asset, error=str(e))
                await self._emit_error(PriceErrorEvent(asset=asset, error=e))
            return

        # Results of fetches that were in flight when polling stopped are dropped
        if not self._is_active(asset):
            return

        if (
            self._settings.validate_samples
            and self._statistics is not None
            and not self._statistics.validate_price(asset, sample)
        ):
            error = PriceValidationError(asset, sample.price_usd)
            logger.warning("price_sample_rejected", asset=asset, price=str(sample.price_usd))
            await self._emit_error(PriceErrorEvent(asset=asset, error=error))
            return

        if self._statistics is not None:
            self._statistics.record_sample(asset, sample)

        previous = self._latest.get(asset)
        self._latest[asset] = sample

        if previous is None:
            change = Decimal("0")
        else:
            change = self.relative_change(previous.price_usd, sample.price_usd)
            if change is None or change <= self._settings.change_threshold:
                logger.debug("price_change_below_threshold", asset=asset, price=str(sample.price_usd))
                return

        event = PriceChangeEvent(
            asset=asset,
            old_price=previous.price_usd if previous is not None else None,
            new_price=sample.price_usd,
            change_percent=change * 100,
            timestamp=sample.timestamp,
        )
        logger.info(
            "price_changed",
            asset=asset,
            old_price=str(event.old_price),
            new_price=str(event.new_price),
            change_percent=str(event.change_percent),
        )
        await self._emit_change(event)

    @staticmethod
    def relative_change(old: Decimal, new: Decimal) -> Decimal | None:
        """|new - old| / old, or None when the old price is zero."""
        if old == 0:
            return None
        return abs(new - old) / old

    def _is_active(self, asset: str) -> bool:
        return asset not in self._stopped

    async def _emit_change(self, event: PriceChangeEvent) -> None:
        self._emitting.add(event.asset)
        try:
            for listener in list(self._change_listeners):
                try:
                    await listener(event)
                except Exception:
                    logger.error("price_listener_failed", asset=event.asset, exc_info=True)
        finally:
            self._emitting.discard(event.asset)

    async def _emit_error(self, event: PriceErrorEvent) -> None:
        self._emitting.add(event.asset)
        try:
            for listener in list(self._error_listeners):
                try:
                    await listener(event)
                except Exception:
                    logger.error("price_error_listener_failed", asset=event.asset, exc_info=True)
        finally:
            self._emitting.discard(event.asset)
