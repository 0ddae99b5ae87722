"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from position_guard.config import (
    AdminConfig,
    AppConfig,
    KeeperConfig,
    NotificationsConfig,
    PriceOracleConfig,
    PythConfig,
    TelegramConfig,
)
from position_guard.engine import LiquidationService, Signer, StopOrderService
from position_guard.oracles import SampledPriceOracle
from position_guard.storage import MemoryStore

START_TIME = 1_700_000_000


class FakeClock:
    """Manually advanced clock in whole seconds."""

    def __init__(self, now: int = START_TIME) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"BTC": "0xABC123", "ETH": "def456", "USDC": "ghi789"},
    )


@pytest.fixture()
def app_config(sample_pyth_config: PythConfig) -> AppConfig:
    return AppConfig(
        admin=AdminConfig(address="admin", fee_recipient="treasury"),
        keeper=KeeperConfig(check_interval_seconds=5, twap_periods=3),
        price_oracle=PriceOracleConfig(sources={"pyth": sample_pyth_config}),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture()
def oracle() -> SampledPriceOracle:
    return SampledPriceOracle(decimals=14, max_history=20)


@pytest.fixture()
def owner() -> Signer:
    return Signer.generate()


@pytest.fixture()
def stranger() -> Signer:
    return Signer.generate()


@pytest.fixture()
def keeper_signer() -> Signer:
    return Signer.generate()


@pytest.fixture()
def liquidations(
    store: MemoryStore, oracle: SampledPriceOracle, app_config: AppConfig, clock: FakeClock
) -> LiquidationService:
    return LiquidationService(store, oracle, app_config, clock=clock)


@pytest.fixture()
def orders(
    store: MemoryStore, oracle: SampledPriceOracle, app_config: AppConfig, clock: FakeClock
) -> StopOrderService:
    return StopOrderService(store, oracle, app_config, clock=clock)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    engine:
      liquidation_bonus_bps: 400
      protocol_fee_bps: 25
      max_price_age: 300
    storage:
      snapshot_path: "/tmp/guard-state.json"
      lease_ttl: 86400
    admin:
      address: "admin-key"
      fee_recipient: "${GUARD_FEE_RECIPIENT}"
    keeper:
      check_interval_seconds: 15
      secret_key: ""
    price_oracle:
      decimals: 8
      sources:
        pyth:
          hermes_url: "https://hermes.example.com"
          feeds: {BTC: "aaa", "native:CDLZ": "bbb"}
        backup:
          feeds: {ETH: "ccc"}
      routes:
        crypto: pyth
        native: pyth
        forex: backup
      stablecoins: [usdc]
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
