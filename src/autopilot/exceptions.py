"""Custom exceptions for the price automation engine.

Failures are isolated per asset and per rule: background loops catch these,
log them and keep running. Only caller-initiated operations (manual
execution, API calls) see them raised.
"""

from decimal import Decimal


class AutomationError(Exception):
    """Base exception for all automation engine errors."""


class FetchError(AutomationError):
    """Raised when a price source cannot deliver a sample (transient)."""

    def __init__(self, asset: str, message: str) -> None:
        super().__init__(f"{asset}: {message}")
        self.asset = asset


class PriceValidationError(AutomationError):
    """Raised when a fetched sample is rejected as invalid or an outlier."""

    def __init__(self, asset: str, price: Decimal) -> None:
        super().__init__(f"Rejected price {price} for {asset}")
        self.asset = asset
        self.price = price


class SlippageExceeded(AutomationError):
    """Estimated slippage is above the configured ceiling.

    Expected outcome on the automatic path, where it is never raised.
    Manual execution raises it so the caller learns why nothing happened.
    """

    def __init__(self, estimated: Decimal, maximum: Decimal) -> None:
        super().__init__(
            f"Estimated slippage {estimated}% exceeds maximum {maximum}%"
        )
        self.estimated = estimated
        self.maximum = maximum


class ExecutionError(AutomationError):
    """Wraps an unexpected executor fault.

    Never propagates out of a background dispatch: its message becomes the
    ``error`` of the recorded failed result.
    """

    def __init__(self, reference: str, cause: Exception) -> None:
        super().__init__(f"Execution of {reference} failed: {type(cause).__name__}: {cause}")
        self.reference = reference
        self.cause = cause


class RuleNotFoundError(AutomationError):
    """Raised when an operation references an unknown rule id."""


class UnsupportedFrequencyError(AutomationError):
    """Raised when rescheduling an automation with an unknown frequency."""
