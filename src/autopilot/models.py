"""Shared data models for the price automation engine.

CRITICAL: All prices, amounts and percentages use Decimal. Timestamps are Unix
seconds as float.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class AssetKind(str, Enum):
    """Where an asset's price comes from."""

    NATIVE = "native"
    OTHER = "other"


class Trend(str, Enum):
    """Short-horizon price direction."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class RuleType(str, Enum):
    """Automation rule variants."""

    PRICE_TARGET = "price_target"
    PERCENTAGE_CHANGE = "percentage_change"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class ConditionOperator(str, Enum):
    """Comparison applied between an observed value and a rule's threshold."""

    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"


class AutomationKind(str, Enum):
    """Kinds of rows held by the scheduled automation store."""

    PAYMENT = "payment"
    SWAP = "swap"
    RULE = "rule"


class Frequency(str, Enum):
    """Recurrence of a scheduled automation."""

    ONCE = "once"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SwapCondition(str, Enum):
    """Price condition of a swap automation."""

    PRICE_INCREASE = "price_increase"
    PRICE_DECREASE = "price_decrease"
    PRICE_TARGET = "price_target"


@dataclass(frozen=True)
class AssetConfig:
    """A registered asset. Read-only after registration."""

    code: str
    kind: AssetKind = AssetKind.OTHER
    enabled: bool = True


@dataclass(frozen=True)
class PriceSample:
    """A single observed USD price."""

    price_usd: Decimal
    timestamp: float = field(default_factory=time.time)


@dataclass
class PriceStats:
    """Statistics derived on demand from an asset's price history."""

    current: Decimal
    min: Decimal
    max: Decimal
    avg: Decimal
    volatility: Decimal  # population standard deviation
    change_24h: Decimal  # percent


@dataclass
class AutomationRule:
    """A single condition-to-action mapping evaluated on price changes.

    ``max_slippage_percent`` and ``condition_value`` for percentage rules are
    expressed in percent (``Decimal("1.5")`` means 1.5%).
    """

    id: str
    type: RuleType
    source_asset: str
    target_asset: str
    amount: Decimal
    condition_operator: ConditionOperator
    condition_value: Decimal
    max_slippage_percent: Decimal
    enabled: bool = True
    created_at: float = field(default_factory=time.time)
    last_executed_at: float | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one dispatch to an executor. Immutable once created."""

    success: bool
    tx_ref: str | None = None
    executed_price: Decimal | None = None
    realized_slippage_percent: Decimal | None = None
    error: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ExecutionStats:
    """Aggregate over a rule's execution history, computed on demand."""

    total_executions: int
    successful_executions: int
    failed_executions: int
    average_slippage: Decimal
    last_execution: ExecutionResult | None


@dataclass
class ScheduledAutomation:
    """A row from the scheduled automation store.

    Payment rows use ``asset``/``amount``/``recipient``; swap rows use the
    ``asset_from``/``asset_to``/``amount_from``/``condition`` fields.
    """

    id: str
    kind: AutomationKind
    active: bool = True
    next_execute_at: float | None = None
    frequency: Frequency | None = None
    # payment
    asset: str | None = None
    amount: Decimal | None = None
    recipient: str | None = None
    memo: str | None = None
    # swap
    asset_from: str | None = None
    asset_to: str | None = None
    amount_from: Decimal | None = None
    condition: SwapCondition | None = None
    condition_value: Decimal | None = None
    slippage: Decimal = Decimal("0.5")  # percent

    def is_due(self, now: float) -> bool:
        """Active, scheduled, and the scheduled time has elapsed."""
        return (
            self.active
            and self.next_execute_at is not None
            and self.next_execute_at <= now
        )


@dataclass(frozen=True)
class PriceChangeEvent:
    """Emitted when an asset's price moves beyond the noise threshold.

    ``old_price`` is None for the first observation of an asset.
    """

    asset: str
    old_price: Decimal | None
    new_price: Decimal
    change_percent: Decimal
    timestamp: float


@dataclass(frozen=True)
class PriceErrorEvent:
    """Emitted when a fetch fails or a sample is rejected."""

    asset: str
    error: Exception
    timestamp: float = field(default_factory=time.time)
