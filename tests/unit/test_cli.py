"""Unit tests for CLI argument parsing."""
from __future__ import annotations

import pytest

from position_guard.cli import _print_price, build_parser
from position_guard.config import AppConfig
from position_guard.models import SymbolAsset
from position_guard.oracles import AssetClass, OracleRouter, SampledPriceOracle

ONE = 10**14


class TestBuildParser:
    def test_check_command(self) -> None:
        args = build_parser().parse_args(["check"])
        assert args.command == "check"

    def test_report_command(self) -> None:
        args = build_parser().parse_args(["report"])
        assert args.command == "report"

    def test_settlements_command(self) -> None:
        args = build_parser().parse_args(["settlements"])
        assert args.command == "settlements"

    def test_monitor_command_default_interval(self) -> None:
        args = build_parser().parse_args(["monitor"])
        assert args.command == "monitor"
        assert args.interval is None

    def test_monitor_command_custom_interval(self) -> None:
        args = build_parser().parse_args(["monitor", "45"])
        assert args.interval == 45

    def test_price_command(self) -> None:
        args = build_parser().parse_args(["price", "native:CDLZ"])
        assert args.command == "price"
        assert args.asset == "native:CDLZ"
        assert args.twap is None
        assert args.quote is None

    def test_price_command_twap(self) -> None:
        args = build_parser().parse_args(["price", "BTC", "--twap", "5"])
        assert args.twap == 5

    def test_price_command_quote(self) -> None:
        args = build_parser().parse_args(["price", "BTC", "--quote", "ETH", "--twap", "3"])
        assert (args.asset, args.quote, args.twap) == ("BTC", "ETH", 3)

    def test_config_flag(self) -> None:
        args = build_parser().parse_args(["--config", "/tmp/c.yaml", "check"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "check"])
        assert args.log_level == "DEBUG"

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--log-level", "TRACE", "check"])


class TestPrintPrice:
    @pytest.fixture()
    def router(self) -> OracleRouter:
        gateway = SampledPriceOracle()
        for ts, (btc, eth) in enumerate([(60_000, 3_000), (66_000, 3_000)], start=1):
            gateway.record(SymbolAsset("BTC"), btc * ONE, ts)
            gateway.record(SymbolAsset("ETH"), eth * ONE, ts)
        return OracleRouter({AssetClass.CRYPTO: gateway})

    @pytest.mark.asyncio
    async def test_spot(self, app_config: AppConfig, router: OracleRouter, capsys) -> None:
        await _print_price(app_config, router, "BTC", None)
        assert capsys.readouterr().out.strip() == "BTC: 66000 (published 2)"

    @pytest.mark.asyncio
    async def test_cross_spot(self, app_config: AppConfig, router: OracleRouter, capsys) -> None:
        await _print_price(app_config, router, "BTC", None, "ETH")
        assert capsys.readouterr().out.strip() == "BTC/ETH: 22 (published 2)"

    @pytest.mark.asyncio
    async def test_cross_twap(self, app_config: AppConfig, router: OracleRouter, capsys) -> None:
        await _print_price(app_config, router, "BTC", 2, "ETH")
        assert capsys.readouterr().out.strip() == "BTC/ETH: TWAP(2) 21"

    @pytest.mark.asyncio
    async def test_twap_unavailable(
        self, app_config: AppConfig, router: OracleRouter, capsys
    ) -> None:
        await _print_price(app_config, router, "BTC", 3)
        assert capsys.readouterr().out.strip() == "BTC: TWAP over 3 samples unavailable"
