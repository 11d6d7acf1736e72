"""Abstract price source interface.

The poller and rule engine depend only on this interface, keeping
oracle- or exchange-specific details in the concrete implementation.
"""

from abc import ABC, abstractmethod

from autopilot.models import PriceSample


class PriceSource(ABC):
    """Abstract base class for external USD price sources.

    Implementations must be safe to call concurrently for different assets.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connections and load any metadata."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def fetch_price(self, asset: str) -> PriceSample:
        """Fetch the current USD price for an asset.

        Raises:
            FetchError: If no price can be obtained.
        """
        ...
