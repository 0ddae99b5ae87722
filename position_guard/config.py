"""Loads config.yaml into frozen dataclasses, expanding ${VAR} references from the environment."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    liquidation_bonus_bps: int = 500
    protocol_fee_bps: int = 10
    min_order_amount: int = 1_000_000
    max_orders_per_user: int = 100
    max_price_age: int = 600
    twap_min_periods: int = 3
    twap_max_periods: int = 20
    max_trailing_percent: int = 50


@dataclass(frozen=True)
class StorageConfig:
    snapshot_path: str = "state.json"
    max_lease: int = 31_536_000
    lease_ttl: int = 31_536_000


@dataclass(frozen=True)
class AdminConfig:
    address: str = ""
    fee_recipient: str = ""


@dataclass(frozen=True)
class KeeperConfig:
    check_interval_seconds: int = 30
    secret_key: str = ""
    twap_periods: int = 5


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    decimals: int = 14
    max_history: int = 20
    sources: dict[str, PythConfig] = field(default_factory=dict)
    routes: dict[str, str] = field(default_factory=dict)
    stablecoins: tuple[str, ...] = ()
    forex: tuple[str, ...] = ()


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


ASSET_CLASSES = ("crypto", "native", "stablecoin", "forex")

# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        liquidation_bonus_bps=int(
            raw.get("liquidation_bonus_bps", defaults.liquidation_bonus_bps)
        ),
        protocol_fee_bps=int(raw.get("protocol_fee_bps", defaults.protocol_fee_bps)),
        min_order_amount=int(raw.get("min_order_amount", defaults.min_order_amount)),
        max_orders_per_user=int(
            raw.get("max_orders_per_user", defaults.max_orders_per_user)
        ),
        max_price_age=int(raw.get("max_price_age", defaults.max_price_age)),
        twap_min_periods=int(raw.get("twap_min_periods", defaults.twap_min_periods)),
        twap_max_periods=int(raw.get("twap_max_periods", defaults.twap_max_periods)),
        max_trailing_percent=int(
            raw.get("max_trailing_percent", defaults.max_trailing_percent)
        ),
    )


def _build_storage(raw: dict[str, Any]) -> StorageConfig:
    defaults = StorageConfig()
    return StorageConfig(
        snapshot_path=raw.get("snapshot_path", defaults.snapshot_path),
        max_lease=int(raw.get("max_lease", defaults.max_lease)),
        lease_ttl=int(raw.get("lease_ttl", defaults.lease_ttl)),
    )


def _build_admin(raw: dict[str, Any]) -> AdminConfig:
    return AdminConfig(
        address=raw.get("address", ""),
        fee_recipient=raw.get("fee_recipient", ""),
    )


def _build_keeper(raw: dict[str, Any]) -> KeeperConfig:
    return KeeperConfig(
        check_interval_seconds=int(raw.get("check_interval_seconds", 30)),
        secret_key=raw.get("secret_key", ""),
        twap_periods=int(raw.get("twap_periods", 5)),
    )


def _build_pyth(raw: dict[str, Any]) -> PythConfig:
    return PythConfig(
        hermes_url=raw.get("hermes_url", PythConfig.hermes_url),
        feeds=dict(raw.get("feeds") or {}),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    sources = {
        name: _build_pyth(cfg or {}) for name, cfg in (raw.get("sources") or {}).items()
    }
    return PriceOracleConfig(
        decimals=int(raw.get("decimals", 14)),
        max_history=int(raw.get("max_history", 20)),
        sources=sources,
        routes=dict(raw.get("routes") or {}),
        stablecoins=tuple(s.upper() for s in raw.get("stablecoins", [])),
        forex=tuple(s.upper() for s in raw.get("forex", [])),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram") or {}
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine") or {}),
        storage=_build_storage(raw.get("storage") or {}),
        admin=_build_admin(raw.get("admin") or {}),
        keeper=_build_keeper(raw.get("keeper") or {}),
        price_oracle=_build_price_oracle(raw.get("price_oracle") or {}),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    engine = cfg.engine
    for name in ("liquidation_bonus_bps", "protocol_fee_bps"):
        value = getattr(engine, name)
        if not 0 <= value <= BPS_DENOMINATOR:
            raise ValueError(f"engine.{name} must be within [0, {BPS_DENOMINATOR}]")
    if engine.min_order_amount <= 0:
        raise ValueError("engine.min_order_amount must be positive")
    if engine.max_orders_per_user <= 0:
        raise ValueError("engine.max_orders_per_user must be positive")
    if engine.max_price_age <= 0:
        raise ValueError("engine.max_price_age must be positive")
    if not 0 < engine.twap_min_periods <= engine.twap_max_periods:
        raise ValueError("engine TWAP period range is invalid")
    if not 0 < engine.max_trailing_percent < 100:
        raise ValueError("engine.max_trailing_percent must be within (0, 100)")

    if cfg.storage.max_lease <= 0 or cfg.storage.lease_ttl <= 0:
        raise ValueError("storage leases must be positive")

    oracle = cfg.price_oracle
    if oracle.decimals < 0:
        raise ValueError("price_oracle.decimals must not be negative")
    if oracle.max_history < engine.twap_max_periods:
        raise ValueError(
            "price_oracle.max_history must cover engine.twap_max_periods"
        )
    for asset_class, source in oracle.routes.items():
        if asset_class not in ASSET_CLASSES:
            raise ValueError(f"Unknown asset class in routes: '{asset_class}'")
        if source not in oracle.sources:
            raise ValueError(
                f"Route '{asset_class}' references unknown source '{source}'"
            )
