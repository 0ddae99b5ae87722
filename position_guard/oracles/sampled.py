"""Price gateway backed by a bounded window of recorded samples."""
from __future__ import annotations

import logging
from collections import deque

from ..models import AssetRef, PriceQuote

logger = logging.getLogger(__name__)


class SampledPriceOracle:
    """Serve spot, TWAP, cross and history reads from recorded samples.

    Samples are kept per asset key, oldest first, up to ``max_history``.
    Reads never raise for missing data; they return ``None``.
    """

    def __init__(self, decimals: int = 14, max_history: int = 20) -> None:
        self.decimals = decimals
        self.max_history = max_history
        self._samples: dict[str, deque[PriceQuote]] = {}

    def record(self, asset: AssetRef, price: int, timestamp: int) -> None:
        """Append a sample; a repeat of the newest timestamp replaces it."""
        window = self._samples.setdefault(asset.key, deque(maxlen=self.max_history))
        quote = PriceQuote(price=int(price), timestamp=int(timestamp))
        if window:
            newest = window[-1]
            if quote.timestamp == newest.timestamp:
                window[-1] = quote
                return
            if quote.timestamp < newest.timestamp:
                logger.debug(
                    "Ignoring out-of-order sample for %s (%d < %d)",
                    asset.key, quote.timestamp, newest.timestamp,
                )
                return
        window.append(quote)

    def assets(self) -> list[str]:
        return sorted(self._samples)

    def _window(self, asset: AssetRef) -> deque[PriceQuote]:
        return self._samples.get(asset.key, deque())

    async def spot(self, asset: AssetRef) -> PriceQuote | None:
        window = self._window(asset)
        return window[-1] if window else None

    async def history(self, asset: AssetRef, periods: int) -> list[PriceQuote] | None:
        window = self._window(asset)
        if periods <= 0 or len(window) < periods:
            return None
        return list(reversed(window))[:periods]

    async def twap(self, asset: AssetRef, periods: int) -> int | None:
        samples = await self.history(asset, periods)
        if samples is None:
            return None
        return sum(q.price for q in samples) // periods

    async def cross(self, base: AssetRef, quote: AssetRef) -> PriceQuote | None:
        base_quote = await self.spot(base)
        quote_quote = await self.spot(quote)
        if base_quote is None or quote_quote is None or quote_quote.price <= 0:
            return None
        return PriceQuote(
            price=base_quote.price * 10**self.decimals // quote_quote.price,
            timestamp=min(base_quote.timestamp, quote_quote.timestamp),
        )

    async def cross_twap(self, base: AssetRef, quote: AssetRef, periods: int) -> int | None:
        """Mean of the per-sample cross prices over the last ``periods`` pairs."""
        base_samples = await self.history(base, periods)
        quote_samples = await self.history(quote, periods)
        if base_samples is None or quote_samples is None:
            return None
        if any(q.price <= 0 for q in quote_samples):
            return None
        scale = 10**self.decimals
        crosses = [
            b.price * scale // q.price for b, q in zip(base_samples, quote_samples)
        ]
        return sum(crosses) // periods
