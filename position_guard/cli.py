"""Command-line interface for the position guard keeper."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import AppConfig, load_config
from .engine import LiquidationService, Signer, StopOrderService
from .exceptions import StateError
from .logging_setup import configure_logging
from .models import parse_asset
from .oracles import OracleRouter
from .services import Keeper
from .services.keeper import build_notifiers, format_fixed
from .storage import MemoryStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="position-guard",
        description="Keeper for price-triggered liquidations and stop orders",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Single keeper pass over all loans and orders")
    sub.add_parser("report", help="Send a report of active positions")
    sub.add_parser("settlements", help="List executed orders awaiting settlement")

    monitor_parser = sub.add_parser("monitor", help="Continuous keeper loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in seconds (overrides config)",
    )

    price_parser = sub.add_parser("price", help="Fetch and print an asset price")
    price_parser.add_argument("asset", help="Symbol (e.g. BTC) or native:<address>")
    price_parser.add_argument(
        "--twap",
        type=int,
        default=None,
        metavar="N",
        help="Print the TWAP over the last N samples instead of the spot price",
    )
    price_parser.add_argument(
        "--quote",
        default=None,
        metavar="ASSET",
        help="Price the asset in units of ASSET instead of the feed currency",
    )

    return parser


def _load_signer(config: AppConfig) -> Signer:
    if config.keeper.secret_key:
        return Signer.from_seed_hex(config.keeper.secret_key)
    signer = Signer.generate()
    logger.warning(
        "keeper.secret_key not set; using ephemeral identity %s", signer.identity
    )
    return signer


async def _initialize(
    config: AppConfig,
    liquidations: LiquidationService,
    orders: StopOrderService,
    signer: Signer,
) -> None:
    admin = config.admin.address or signer.identity
    fee_recipient = config.admin.fee_recipient or admin
    try:
        await liquidations.initialize("pyth")
    except StateError:
        logger.debug("Liquidation service already initialized")
    try:
        await orders.initialize(admin, fee_recipient)
    except StateError:
        logger.debug("Stop-order service already initialized")


async def build_keeper(config: AppConfig) -> tuple[Keeper, MemoryStore, OracleRouter]:
    """Wire store, oracle, services and notifiers from configuration."""
    store = MemoryStore.load(config.storage.snapshot_path, max_lease=config.storage.max_lease)
    oracle = OracleRouter.from_config(config.price_oracle)
    liquidations = LiquidationService(store, oracle, config)
    orders = StopOrderService(store, oracle, config)
    signer = _load_signer(config)
    await _initialize(config, liquidations, orders, signer)

    keeper = Keeper(
        config,
        store,
        oracle,
        liquidations,
        orders,
        build_notifiers(config),
        signer,
    )
    return keeper, store, oracle


async def _print_price(
    config: AppConfig,
    oracle: OracleRouter,
    text: str,
    twap: int | None,
    quote_text: str | None = None,
) -> None:
    asset = parse_asset(text)
    quote = parse_asset(quote_text) if quote_text else None
    label = f"{asset.key}/{quote.key}" if quote else asset.key
    await oracle.refresh()
    decimals = config.price_oracle.decimals
    if twap is not None:
        if quote is None:
            price = await oracle.twap(asset, twap)
        else:
            price = await oracle.cross_twap(asset, quote, twap)
        if price is None:
            print(f"{label}: TWAP over {twap} samples unavailable")
        else:
            print(f"{label}: TWAP({twap}) {format_fixed(price, decimals)}")
        return

    if quote is None:
        spot = await oracle.spot(asset)
    else:
        spot = await oracle.cross(asset, quote)
    if spot is None:
        print(f"{label}: price unavailable")
    else:
        print(f"{label}: {format_fixed(spot.price, decimals)} (published {spot.timestamp})")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    keeper, store, oracle = await build_keeper(config)

    if args.command == "check":
        await keeper.run_once()
        store.save(config.storage.snapshot_path)
    elif args.command == "report":
        await keeper.generate_report()
    elif args.command == "settlements":
        for intent in keeper.pending_settlements():
            print(
                f"order {intent.order_id}: {intent.net_amount} {intent.asset.key} "
                f"to {intent.owner} (fee {intent.fee} to {intent.fee_recipient})"
            )
    elif args.command == "monitor":
        await keeper.run_continuous(args.interval)
    elif args.command == "price":
        await _print_price(config, oracle, args.asset, args.twap, args.quote)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
