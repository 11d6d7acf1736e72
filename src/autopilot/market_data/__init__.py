"""Market data layer -- price polling, asset registry, and rolling statistics."""

from autopilot.market_data.price_feed import PriceFeedPoller
from autopilot.market_data.statistics import AssetStatisticsStore

__all__ = ["AssetStatisticsStore", "PriceFeedPoller"]
