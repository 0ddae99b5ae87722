"""Pyth Network price gateway."""
from __future__ import annotations

import logging
import ssl

import aiohttp
import certifi

from ..config import PythConfig
from ..models import AssetRef, PriceQuote, parse_asset
from .sampled import SampledPriceOracle

logger = logging.getLogger(__name__)


def _normalize_feed_id(feed_id: str) -> str:
    return feed_id.lower().removeprefix("0x")


def to_fixed_point(price_raw: int, expo: int, decimals: int) -> int:
    """Convert a Pyth ``price * 10**expo`` pair to ``decimals`` fixed-point."""
    shift = decimals + expo
    if shift >= 0:
        return price_raw * 10**shift
    return price_raw // 10**-shift


class PythOracle(SampledPriceOracle):
    """Record Pyth Hermes prices as samples and serve gateway reads from them."""

    def __init__(
        self, config: PythConfig, decimals: int = 14, max_history: int = 20
    ) -> None:
        super().__init__(decimals=decimals, max_history=max_history)
        self.hermes_url = config.hermes_url
        self.price_feeds = {
            parse_asset(asset).key: _normalize_feed_id(feed_id)
            for asset, feed_id in config.feeds.items()
        }

    async def refresh(self, assets: list[AssetRef] | None = None) -> dict[str, PriceQuote]:
        """Fetch latest prices from Pyth Hermes and record one sample per feed.

        Args:
            assets: Optional assets to refresh. If None, refreshes all
                    configured feeds.
        """
        fetched: dict[str, PriceQuote] = {}

        feeds = self.price_feeds
        if assets is not None:
            wanted = {a.key for a in assets}
            feeds = {k: v for k, v in self.price_feeds.items() if k in wanted}

        feed_ids = sorted(set(feeds.values()))
        if not feed_ids:
            return fetched

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return fetched

                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return fetched

        # Reverse mapping from feed ID to asset keys
        id_to_assets: dict[str, list[str]] = {}
        for asset_key, feed_id in feeds.items():
            id_to_assets.setdefault(feed_id, []).append(asset_key)

        for item in data.get("parsed", []):
            feed_id = _normalize_feed_id(item.get("id", ""))
            if feed_id not in id_to_assets:
                continue
            price_data = item.get("price", {})
            try:
                price = to_fixed_point(
                    int(price_data.get("price", 0)),
                    int(price_data.get("expo", 0)),
                    self.decimals,
                )
                publish_time = int(price_data["publish_time"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Malformed Pyth price for feed %s: %s", feed_id, e)
                continue

            for asset_key in id_to_assets[feed_id]:
                self.record(parse_asset(asset_key), price, publish_time)
                fetched[asset_key] = PriceQuote(price=price, timestamp=publish_time)

        logger.info("Fetched %d prices from Pyth Network", len(fetched))
        for asset_key, quote in sorted(fetched.items()):
            logger.debug("  %s: %d @ %d", asset_key, quote.price, quote.timestamp)

        return fetched
