"""Price reads that turn gateway absence into engine errors."""
from __future__ import annotations

from ..exceptions import PriceUnavailableError
from ..interfaces.price_oracle import PriceOracle
from ..models import AssetRef
from .evaluator import ensure_fresh


async def require_spot(
    oracle: PriceOracle, asset: AssetRef, now: int, max_age: int
) -> int:
    """Fresh, positive spot price for ``asset``."""
    quote = await oracle.spot(asset)
    if quote is None or quote.price <= 0:
        raise PriceUnavailableError(f"Price not available for {asset.key}")
    ensure_fresh(quote, now, max_age, asset.key)
    return quote.price


async def require_twap(oracle: PriceOracle, asset: AssetRef, periods: int) -> int:
    price = await oracle.twap(asset, periods)
    if price is None or price <= 0:
        raise PriceUnavailableError(
            f"TWAP price not available for {asset.key} over {periods} periods"
        )
    return price


async def require_cross(
    oracle: PriceOracle, base: AssetRef, quote: AssetRef, now: int, max_age: int
) -> int:
    cross = await oracle.cross(base, quote)
    if cross is None or cross.price <= 0:
        raise PriceUnavailableError(
            f"Cross price not available for {base.key}/{quote.key}"
        )
    ensure_fresh(cross, now, max_age, f"{base.key}/{quote.key}")
    return cross.price
