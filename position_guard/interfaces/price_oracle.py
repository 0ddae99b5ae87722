"""Price oracle protocol: narrow read interface over a price feed.

Every method returns ``None`` when the feed has no data; callers decide
whether absence is fatal. Freshness is not checked here.
"""
from typing import Protocol

from ..models import AssetRef, PriceQuote


class PriceOracle(Protocol):
    """Abstract interface for reading asset prices."""

    async def spot(self, asset: AssetRef) -> PriceQuote | None: ...

    async def twap(self, asset: AssetRef, periods: int) -> int | None: ...

    async def cross(self, base: AssetRef, quote: AssetRef) -> PriceQuote | None: ...

    async def cross_twap(
        self, base: AssetRef, quote: AssetRef, periods: int
    ) -> int | None: ...

    async def history(
        self, asset: AssetRef, periods: int
    ) -> list[PriceQuote] | None: ...
