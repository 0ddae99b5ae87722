"""Route each asset to the price gateway responsible for its asset class."""
from __future__ import annotations

import logging
from enum import Enum

from ..config import PriceOracleConfig
from ..exceptions import OracleNotConfiguredError
from ..interfaces.price_oracle import PriceOracle
from ..models import AssetRef, NativeAsset, PriceQuote, SymbolAsset
from .pyth import PythOracle

logger = logging.getLogger(__name__)

USD = SymbolAsset("USD")


class AssetClass(str, Enum):
    CRYPTO = "crypto"
    NATIVE = "native"
    STABLECOIN = "stablecoin"
    FOREX = "forex"


def _bps_change(value: int, reference: int) -> int:
    """(value - reference) in bps of reference, truncated toward zero."""
    diff = (value - reference) * 10_000
    magnitude = abs(diff) // abs(reference)
    return magnitude if (diff >= 0) == (reference > 0) else -magnitude


class OracleRouter:
    """Price gateway that delegates to one gateway per asset class."""

    def __init__(
        self,
        gateways: dict[AssetClass, PriceOracle],
        stablecoins: tuple[str, ...] = (),
        forex: tuple[str, ...] = (),
    ) -> None:
        self._gateways = dict(gateways)
        self._stablecoins = {s.upper() for s in stablecoins}
        self._forex = {s.upper() for s in forex}

    @classmethod
    def from_config(cls, config: PriceOracleConfig) -> OracleRouter:
        """Build one Pyth gateway per configured source and wire the routes.

        With a single source and no explicit routes, every class uses it.
        """
        sources = {
            name: PythOracle(src, decimals=config.decimals, max_history=config.max_history)
            for name, src in config.sources.items()
        }
        routes = dict(config.routes)
        if not routes and len(sources) == 1:
            only = next(iter(sources))
            routes = {asset_class.value: only for asset_class in AssetClass}

        gateways = {
            AssetClass(asset_class): sources[source]
            for asset_class, source in routes.items()
        }
        return cls(gateways, stablecoins=config.stablecoins, forex=config.forex)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def classify(self, asset: AssetRef) -> AssetClass:
        if isinstance(asset, NativeAsset):
            return AssetClass.NATIVE
        if isinstance(asset, SymbolAsset):
            if asset.symbol in self._stablecoins:
                return AssetClass.STABLECOIN
            if asset.symbol in self._forex:
                return AssetClass.FOREX
            return AssetClass.CRYPTO
        raise TypeError(f"Unsupported asset reference: {asset!r}")

    def gateway_for(self, asset_class: AssetClass) -> PriceOracle:
        gateway = self._gateways.get(asset_class)
        if gateway is None:
            raise OracleNotConfiguredError(
                f"No price oracle configured for {asset_class.value} assets"
            )
        return gateway

    def _route(self, asset: AssetRef) -> PriceOracle:
        return self.gateway_for(self.classify(asset))

    # ------------------------------------------------------------------
    # PriceOracle interface
    # ------------------------------------------------------------------

    async def spot(self, asset: AssetRef) -> PriceQuote | None:
        return await self._route(asset).spot(asset)

    async def twap(self, asset: AssetRef, periods: int) -> int | None:
        return await self._route(asset).twap(asset, periods)

    async def history(self, asset: AssetRef, periods: int) -> list[PriceQuote] | None:
        return await self._route(asset).history(asset, periods)

    def _cross_gateway(self, base: AssetRef, quote: AssetRef) -> PriceOracle:
        """Native pairs use the native gateway; any other pair the external one."""
        if isinstance(base, NativeAsset) and isinstance(quote, NativeAsset):
            return self.gateway_for(AssetClass.NATIVE)
        return self.gateway_for(AssetClass.CRYPTO)

    async def cross(self, base: AssetRef, quote: AssetRef) -> PriceQuote | None:
        return await self._cross_gateway(base, quote).cross(base, quote)

    async def cross_twap(self, base: AssetRef, quote: AssetRef, periods: int) -> int | None:
        return await self._cross_gateway(base, quote).cross_twap(base, quote, periods)

    async def refresh(self) -> None:
        """Refresh every distinct gateway that fetches its own data."""
        seen: set[int] = set()
        for gateway in self._gateways.values():
            if id(gateway) in seen:
                continue
            seen.add(id(gateway))
            refresh = getattr(gateway, "refresh", None)
            if refresh is not None:
                await refresh()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def check_arbitrage(self, symbol: str) -> int | None:
        """Difference between the external and native feeds in bps of external."""
        asset = SymbolAsset(symbol)
        external = await self.gateway_for(AssetClass.CRYPTO).spot(asset)
        native = await self.gateway_for(AssetClass.NATIVE).spot(asset)
        if external is None or native is None or external.price == 0:
            return None

        spread = -_bps_change(native.price, external.price)
        logger.info(
            "Arbitrage check %s: external=%d native=%d diff=%dbps",
            asset.key, external.price, native.price, spread,
        )
        return spread

    async def check_stablecoin_peg(self, symbol: str) -> int | None:
        """Deviation of a stablecoin from the forex USD reference, in bps."""
        usd = await self.gateway_for(AssetClass.FOREX).spot(USD)
        stable = await self.gateway_for(AssetClass.CRYPTO).spot(SymbolAsset(symbol))
        if usd is None or stable is None or usd.price == 0:
            return None

        deviation = _bps_change(stable.price, usd.price)
        logger.info("Stablecoin %s peg deviation: %dbps", symbol.upper(), deviation)
        return deviation
