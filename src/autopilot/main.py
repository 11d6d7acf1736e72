"""Entry point for the price automation engine.

Wires all components together, optionally embeds the FastAPI control API,
and starts the coordinator. When the API is enabled (default), the engine
and the API share a single asyncio event loop via uvicorn's programmatic
API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. CcxtPriceSource (external prices)
4. AssetStatisticsStore (registry, cache, history)
5. PriceFeedPoller (per-asset polling)
6. PaperExecutor (simulated fills)
7. AutomationRuleEngine (rule evaluation and dispatch)
8. SqliteAutomationStore (scheduled payments and swaps)
9. OrchestrationCoordinator (lifecycle and event routing)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from autopilot.config import AppSettings
from autopilot.coordinator import OrchestrationCoordinator
from autopilot.engine.rule_engine import AutomationRuleEngine
from autopilot.execution.paper_executor import PaperExecutor
from autopilot.logging import get_logger, setup_logging
from autopilot.market_data.price_feed import PriceFeedPoller
from autopilot.market_data.statistics import AssetStatisticsStore
from autopilot.scheduling.sqlite_store import SqliteAutomationStore
from autopilot.sources.ccxt_source import CcxtPriceSource


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all engine components from settings.

    Note: Does NOT connect the price source or open the store -- that
    happens in the lifespan (API mode) or run() (headless mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    price_source = CcxtPriceSource(settings.exchange)
    statistics = AssetStatisticsStore(settings.statistics)
    poller = PriceFeedPoller(price_source, settings.poller, statistics)
    executor = PaperExecutor(statistics, settings.paper.initial_balances)
    rule_engine = AutomationRuleEngine(
        statistics,
        executor,
        price_source=price_source,
        settings=settings.engine,
    )
    store = SqliteAutomationStore(settings.store.db_path)
    coordinator = OrchestrationCoordinator(
        settings=settings,
        poller=poller,
        statistics=statistics,
        rule_engine=rule_engine,
        executor=executor,
        store=store,
    )

    return {
        "price_source": price_source,
        "statistics": statistics,
        "poller": poller,
        "executor": executor,
        "rule_engine": rule_engine,
        "store": store,
        "coordinator": coordinator,
    }


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to request a graceful stop.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("autopilot.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def _start(components: dict[str, Any]) -> None:
    await components["price_source"].connect()
    await components["store"].connect()
    await components["coordinator"].start(components["store"].list_active)


async def _shutdown(components: dict[str, Any]) -> None:
    await components["coordinator"].stop()
    await components["store"].close()
    await components["price_source"].close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage engine component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects the price source
    and store, starts the coordinator.

    On shutdown: stops the coordinator, closes the store and price source.
    """
    logger = get_logger("autopilot.main")
    components = app.state.components

    app.state.coordinator = components["coordinator"]
    app.state.rule_engine = components["rule_engine"]
    app.state.statistics = components["statistics"]

    await _start(components)
    logger.info("lifespan_started")

    yield

    await _shutdown(components)
    logger.info("price_autopilot_stopped")


async def run() -> None:
    """Run the price automation engine.

    When the API is enabled (API_ENABLED=true, the default), uvicorn serves
    the control API and the lifespan manages startup and shutdown; uvicorn
    installs its own SIGINT/SIGTERM handling.

    When the API is disabled, the engine runs until SIGINT/SIGTERM.
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("autopilot.main")

    # 3-9. Build all components
    components = _build_components(settings)

    if settings.api.enabled:
        from autopilot.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
            exchange=settings.exchange.exchange_id,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info(
            "starting_without_api",
            exchange=settings.exchange.exchange_id,
            assets=settings.monitored_assets,
        )

        try:
            await _start(components)
            await stop_event.wait()
        finally:
            await _shutdown(components)
            logger.info("price_autopilot_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
