"""Price source layer -- external USD price feeds."""

from autopilot.sources.ccxt_source import CcxtPriceSource
from autopilot.sources.price_source import PriceSource

__all__ = ["CcxtPriceSource", "PriceSource"]
