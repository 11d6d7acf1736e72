"""FastAPI application factory for the status and control API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from autopilot.api import routes


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Route handlers read ``coordinator``, ``rule_engine`` and ``statistics``
    from ``app.state``; the caller (main.py lifespan or a test) sets them.

    Args:
        lifespan: Optional async context manager for application lifespan events.

    Returns:
        Configured FastAPI application with the JSON API mounted at /api.
    """
    app = FastAPI(
        title="Price Autopilot",
        lifespan=lifespan,
    )
    app.include_router(routes.router, prefix="/api")
    return app
