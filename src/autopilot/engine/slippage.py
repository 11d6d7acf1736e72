"""Tiered slippage estimate from trade notional.

Larger trades move thinner markets more, so the estimate steps up with the
USD value of the trade. Values are percentages.
"""

from decimal import Decimal

#: (exclusive upper bound on notional in USD, estimated slippage percent)
SLIPPAGE_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("1000"), Decimal("0.1")),
    (Decimal("10000"), Decimal("0.5")),
    (Decimal("100000"), Decimal("1.0")),
)

#: Estimate for any notional at or above the last tier bound.
MAX_TIER_SLIPPAGE = Decimal("2.0")


def estimate_slippage(notional: Decimal) -> Decimal:
    """Return the estimated slippage percent for a trade of ``notional`` USD."""
    for bound, slippage in SLIPPAGE_TIERS:
        if notional < bound:
            return slippage
    return MAX_TIER_SLIPPAGE


def within_budget(amount: Decimal, price: Decimal, max_slippage_percent: Decimal) -> tuple[bool, Decimal]:
    """Check a trade of ``amount`` units at ``price`` against a slippage ceiling.

    Returns:
        Tuple of (allowed, estimated slippage percent).
    """
    estimated = estimate_slippage(amount * price)
    return estimated <= max_slippage_percent, estimated
