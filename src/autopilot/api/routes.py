"""JSON endpoints for engine status, rule administration and asset statistics."""

from __future__ import annotations

import dataclasses
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from autopilot.exceptions import (
    AutomationError,
    FetchError,
    PriceValidationError,
    RuleNotFoundError,
    SlippageExceeded,
)
from autopilot.models import AutomationRule, ConditionOperator, RuleType

log = structlog.get_logger(__name__)

router = APIRouter()


class RuleCreate(BaseModel):
    """Request body for POST /rules."""

    id: str | None = None
    type: RuleType
    source_asset: str
    target_asset: str
    amount: Decimal = Field(gt=0)
    condition_operator: ConditionOperator = ConditionOperator.GTE
    condition_value: Decimal
    max_slippage_percent: Decimal = Field(default=Decimal("1.0"), ge=0)
    enabled: bool = True


def _to_jsonable(obj: Any) -> Any:
    """Recursively convert Decimals to strings and dataclasses/enums to plain values."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, dict):
        return {k: _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(item) for item in obj]
    if isinstance(obj, Exception):
        return str(obj)
    return obj


def _not_found(rule_id: str) -> JSONResponse:
    return JSONResponse(content={"error": f"Rule {rule_id} not found"}, status_code=404)


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Coordinator status snapshot."""
    coordinator = request.app.state.coordinator
    return JSONResponse(content=_to_jsonable(coordinator.get_status()))


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@router.get("/rules")
async def list_rules(request: Request) -> JSONResponse:
    rule_engine = request.app.state.rule_engine
    return JSONResponse(content=_to_jsonable(rule_engine.get_rules()))


@router.post("/rules")
async def create_rule(request: Request, body: RuleCreate) -> JSONResponse:
    """Add a rule; its assets are registered and polled while running."""
    coordinator = request.app.state.coordinator
    rule = AutomationRule(
        id=body.id or uuid4().hex[:12],
        type=body.type,
        source_asset=body.source_asset,
        target_asset=body.target_asset,
        amount=body.amount,
        condition_operator=body.condition_operator,
        condition_value=body.condition_value,
        max_slippage_percent=body.max_slippage_percent,
        enabled=body.enabled,
    )
    await coordinator.add_rule(rule)
    log.info("rule_created_via_api", rule_id=rule.id)
    return JSONResponse(content=_to_jsonable(rule), status_code=201)


@router.delete("/rules/{rule_id}")
async def delete_rule(request: Request, rule_id: str) -> JSONResponse:
    rule_engine = request.app.state.rule_engine
    if not await rule_engine.remove_rule(rule_id):
        return _not_found(rule_id)
    return JSONResponse(content={"removed": rule_id})


@router.post("/rules/{rule_id}/enable")
async def enable_rule(request: Request, rule_id: str) -> JSONResponse:
    return await _set_enabled(request, rule_id, True)


@router.post("/rules/{rule_id}/disable")
async def disable_rule(request: Request, rule_id: str) -> JSONResponse:
    return await _set_enabled(request, rule_id, False)


async def _set_enabled(request: Request, rule_id: str, enabled: bool) -> JSONResponse:
    rule_engine = request.app.state.rule_engine
    try:
        rule = await rule_engine.set_rule_enabled(rule_id, enabled)
    except RuleNotFoundError:
        return _not_found(rule_id)
    return JSONResponse(content=_to_jsonable(rule))


@router.post("/rules/{rule_id}/execute")
async def execute_rule(request: Request, rule_id: str) -> JSONResponse:
    """Execute a rule now at a freshly fetched price.

    Status codes: 404 unknown rule, 409 slippage above the rule's ceiling,
    502 price fetch failed or the fetched price was rejected, 503 manual
    execution unavailable.
    """
    rule_engine = request.app.state.rule_engine
    try:
        result = await rule_engine.execute_rule_manually(rule_id)
    except RuleNotFoundError:
        return _not_found(rule_id)
    except SlippageExceeded as e:
        return JSONResponse(
            content={
                "error": str(e),
                "estimated": str(e.estimated),
                "maximum": str(e.maximum),
            },
            status_code=409,
        )
    except FetchError as e:
        log.warning("manual_execution_fetch_failed", rule_id=rule_id, error=str(e))
        return JSONResponse(content={"error": str(e)}, status_code=502)
    except PriceValidationError as e:
        log.warning("manual_execution_price_rejected", rule_id=rule_id, error=str(e))
        return JSONResponse(content={"error": str(e)}, status_code=502)
    except AutomationError as e:
        return JSONResponse(content={"error": str(e)}, status_code=503)
    return JSONResponse(content=_to_jsonable(result))


@router.get("/rules/{rule_id}/stats")
async def get_rule_stats(request: Request, rule_id: str) -> JSONResponse:
    rule_engine = request.app.state.rule_engine
    stats = rule_engine.get_execution_stats(rule_id)
    return JSONResponse(content=_to_jsonable(stats))


@router.get("/rules/{rule_id}/history")
async def get_rule_history(request: Request, rule_id: str) -> JSONResponse:
    rule_engine = request.app.state.rule_engine
    return JSONResponse(content=_to_jsonable(rule_engine.get_execution_history(rule_id)))


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


@router.get("/assets/{code}/stats")
async def get_asset_stats(request: Request, code: str) -> JSONResponse:
    """Price statistics and short-horizon trend for one asset."""
    statistics = request.app.state.statistics
    stats = statistics.get_stats(code)
    if stats is None:
        return JSONResponse(
            content={"error": f"No price history for {code}"}, status_code=404
        )
    payload = _to_jsonable(stats)
    payload["trend"] = statistics.get_trend(code).value
    payload["samples"] = len(statistics.get_price_history(code))
    return JSONResponse(content=payload)
