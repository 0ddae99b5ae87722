"""Unit tests for the sampled gateway and the asset-class router."""
from __future__ import annotations

import pytest

from position_guard.config import PriceOracleConfig, PythConfig
from position_guard.exceptions import OracleNotConfiguredError
from position_guard.models import NativeAsset, PriceQuote, SymbolAsset
from position_guard.oracles import AssetClass, OracleRouter, PythOracle, SampledPriceOracle

BTC = SymbolAsset("BTC")
ETH = SymbolAsset("ETH")
USDC = SymbolAsset("USDC")
EUR = SymbolAsset("EUR")
XLM = NativeAsset("CXLM")
TOKEN = NativeAsset("CTOKEN")

ONE = 10**14


class TestSampledPriceOracle:
    @pytest.mark.asyncio
    async def test_spot_is_newest_sample(self) -> None:
        oracle = SampledPriceOracle()
        oracle.record(BTC, 100, 1)
        oracle.record(BTC, 110, 2)
        assert await oracle.spot(BTC) == PriceQuote(110, 2)
        assert await oracle.spot(ETH) is None

    @pytest.mark.asyncio
    async def test_same_timestamp_replaces_and_older_is_ignored(self) -> None:
        oracle = SampledPriceOracle()
        oracle.record(BTC, 100, 5)
        oracle.record(BTC, 105, 5)
        oracle.record(BTC, 1, 4)
        assert await oracle.history(BTC, 1) == [PriceQuote(105, 5)]
        assert await oracle.history(BTC, 2) is None

    @pytest.mark.asyncio
    async def test_history_newest_first_and_bounded(self) -> None:
        oracle = SampledPriceOracle(max_history=3)
        for ts, price in enumerate([10, 20, 30, 40]):
            oracle.record(BTC, price, ts)
        history = await oracle.history(BTC, 3)
        assert [q.price for q in history] == [40, 30, 20]
        assert await oracle.history(BTC, 4) is None
        assert await oracle.history(BTC, 0) is None

    @pytest.mark.asyncio
    async def test_twap_floors(self) -> None:
        oracle = SampledPriceOracle()
        for ts, price in enumerate([10, 10, 11]):
            oracle.record(BTC, price, ts)
        assert await oracle.twap(BTC, 3) == 10
        assert await oracle.twap(BTC, 4) is None

    @pytest.mark.asyncio
    async def test_cross_price(self) -> None:
        oracle = SampledPriceOracle(decimals=14)
        oracle.record(BTC, 60_000 * ONE, 10)
        oracle.record(ETH, 3_000 * ONE, 7)
        cross = await oracle.cross(BTC, ETH)
        assert cross == PriceQuote(20 * ONE, 7)

    @pytest.mark.asyncio
    async def test_cross_unavailable_for_non_positive_quote(self) -> None:
        oracle = SampledPriceOracle()
        oracle.record(BTC, 100, 1)
        oracle.record(ETH, 0, 1)
        assert await oracle.cross(BTC, ETH) is None
        assert await oracle.cross(BTC, USDC) is None

    @pytest.mark.asyncio
    async def test_cross_twap_averages_paired_samples(self) -> None:
        oracle = SampledPriceOracle(decimals=14)
        oracle.record(BTC, 60_000 * ONE, 1)
        oracle.record(BTC, 66_000 * ONE, 2)
        oracle.record(ETH, 3_000 * ONE, 1)
        oracle.record(ETH, 3_000 * ONE, 2)
        assert await oracle.cross_twap(BTC, ETH, 2) == 21 * ONE
        assert await oracle.cross_twap(BTC, ETH, 1) == 22 * ONE

    @pytest.mark.asyncio
    async def test_cross_twap_floors(self) -> None:
        oracle = SampledPriceOracle(decimals=0)
        for ts, (base, quote) in enumerate([(7, 2), (8, 2)]):
            oracle.record(BTC, base, ts)
            oracle.record(ETH, quote, ts)
        # per-sample crosses 3 and 4
        assert await oracle.cross_twap(BTC, ETH, 2) == 3

    @pytest.mark.asyncio
    async def test_cross_twap_unavailable(self) -> None:
        oracle = SampledPriceOracle()
        for ts in range(3):
            oracle.record(BTC, 100, ts)
        oracle.record(ETH, 10, 1)
        oracle.record(ETH, 0, 2)
        # quote window too short
        assert await oracle.cross_twap(BTC, ETH, 3) is None
        # a non-positive quote sample inside the window
        assert await oracle.cross_twap(BTC, ETH, 2) is None
        assert await oracle.cross_twap(BTC, USDC, 1) is None


def _router(*classes: AssetClass) -> tuple[OracleRouter, dict[AssetClass, SampledPriceOracle]]:
    gateways = {asset_class: SampledPriceOracle() for asset_class in classes}
    return OracleRouter(gateways, stablecoins=("usdc",), forex=("EUR", "USD")), gateways


class TestOracleRouter:
    def test_classify(self) -> None:
        router, _ = _router()
        assert router.classify(XLM) is AssetClass.NATIVE
        assert router.classify(USDC) is AssetClass.STABLECOIN
        assert router.classify(EUR) is AssetClass.FOREX
        assert router.classify(BTC) is AssetClass.CRYPTO

    @pytest.mark.asyncio
    async def test_routes_by_asset_class(self) -> None:
        router, gateways = _router(AssetClass.CRYPTO, AssetClass.NATIVE)
        gateways[AssetClass.CRYPTO].record(BTC, 100, 1)
        gateways[AssetClass.NATIVE].record(XLM, 7, 1)

        assert await router.spot(BTC) == PriceQuote(100, 1)
        assert await router.spot(XLM) == PriceQuote(7, 1)

    @pytest.mark.asyncio
    async def test_unconfigured_class_raises(self) -> None:
        router, _ = _router(AssetClass.CRYPTO)
        with pytest.raises(OracleNotConfiguredError, match="stablecoin"):
            await router.spot(USDC)
        assert OracleNotConfiguredError.retryable is False

    @pytest.mark.asyncio
    async def test_cross_gateway_selection(self) -> None:
        router, gateways = _router(AssetClass.CRYPTO, AssetClass.NATIVE)
        gateways[AssetClass.NATIVE].record(XLM, 2 * ONE, 1)
        gateways[AssetClass.NATIVE].record(TOKEN, 4 * ONE, 1)
        gateways[AssetClass.CRYPTO].record(BTC, 10 * ONE, 1)
        gateways[AssetClass.CRYPTO].record(ETH, 5 * ONE, 1)

        assert (await router.cross(XLM, TOKEN)).price == ONE // 2
        assert (await router.cross(BTC, ETH)).price == 2 * ONE

    @pytest.mark.asyncio
    async def test_cross_without_native_gateway_raises(self) -> None:
        router, _ = _router(AssetClass.CRYPTO)
        with pytest.raises(OracleNotConfiguredError):
            await router.cross(XLM, TOKEN)

    @pytest.mark.asyncio
    async def test_cross_twap_gateway_selection(self) -> None:
        router, gateways = _router(AssetClass.CRYPTO, AssetClass.NATIVE)
        native = gateways[AssetClass.NATIVE]
        native.record(XLM, 2 * ONE, 1)
        native.record(XLM, 4 * ONE, 2)
        native.record(TOKEN, 4 * ONE, 1)
        native.record(TOKEN, 4 * ONE, 2)

        assert await router.cross_twap(XLM, TOKEN, 2) == 3 * ONE // 4
        # Mixed pairs go to the external gateway, which has no XLM samples.
        gateways[AssetClass.CRYPTO].record(BTC, 10 * ONE, 1)
        assert await router.cross_twap(BTC, XLM, 1) is None

    @pytest.mark.asyncio
    async def test_cross_twap_without_native_gateway_raises(self) -> None:
        router, _ = _router(AssetClass.CRYPTO)
        with pytest.raises(OracleNotConfiguredError, match="native"):
            await router.cross_twap(XLM, TOKEN, 3)

    @pytest.mark.asyncio
    async def test_check_arbitrage(self) -> None:
        router, gateways = _router(AssetClass.CRYPTO, AssetClass.NATIVE)
        gateways[AssetClass.CRYPTO].record(BTC, 100 * ONE, 1)
        gateways[AssetClass.NATIVE].record(BTC, 99 * ONE, 1)
        assert await router.check_arbitrage("btc") == 100

        gateways[AssetClass.NATIVE].record(BTC, 101 * ONE, 2)
        assert await router.check_arbitrage("BTC") == -100

    @pytest.mark.asyncio
    async def test_check_arbitrage_missing_leg(self) -> None:
        router, gateways = _router(AssetClass.CRYPTO, AssetClass.NATIVE)
        gateways[AssetClass.CRYPTO].record(BTC, 100, 1)
        assert await router.check_arbitrage("BTC") is None

    @pytest.mark.asyncio
    async def test_stablecoin_peg(self) -> None:
        router, gateways = _router(AssetClass.CRYPTO, AssetClass.FOREX)
        gateways[AssetClass.FOREX].record(SymbolAsset("USD"), ONE, 1)
        gateways[AssetClass.CRYPTO].record(USDC, ONE * 995 // 1000, 1)
        assert await router.check_stablecoin_peg("usdc") == -50

    def test_from_config_single_source_routes_everything(self) -> None:
        config = PriceOracleConfig(sources={"pyth": PythConfig(feeds={"BTC": "aa"})})
        router = OracleRouter.from_config(config)
        gateway = router.gateway_for(AssetClass.CRYPTO)
        assert isinstance(gateway, PythOracle)
        for asset_class in AssetClass:
            assert router.gateway_for(asset_class) is gateway

    def test_from_config_explicit_routes(self) -> None:
        config = PriceOracleConfig(
            sources={"main": PythConfig(), "fx": PythConfig()},
            routes={"crypto": "main", "forex": "fx"},
        )
        router = OracleRouter.from_config(config)
        assert router.gateway_for(AssetClass.CRYPTO) is not router.gateway_for(AssetClass.FOREX)
        with pytest.raises(OracleNotConfiguredError):
            router.gateway_for(AssetClass.NATIVE)
