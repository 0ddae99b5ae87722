"""Off-chain keeper: polls every live loan and order and fires due triggers."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..config import AppConfig
from ..engine.auth import Signer
from ..engine.liquidation import LiquidationService
from ..engine.orders import StopOrderService
from ..exceptions import ArchivedEntryError, EngineError
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.store import LeasedStore
from ..models import Loan, OrderType, SettlementIntent, StopOrder
from ..notifications import TelegramNotifier

logger = logging.getLogger(__name__)


@dataclass
class KeeperReport:
    """Outcome of one keeper pass."""

    checked: int = 0
    liquidated: list[int] = field(default_factory=list)
    executed: list[int] = field(default_factory=list)
    errors: int = 0

    def summary(self) -> str:
        return (
            f"checked {self.checked}, liquidated {len(self.liquidated)}, "
            f"executed {len(self.executed)}, errors {self.errors}"
        )


def build_notifiers(config: AppConfig) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))
    return notifiers


def format_fixed(value: int, decimals: int) -> str:
    """Render a fixed-point integer as a decimal string, e.g. 150000000000000 -> '1.5'."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    if not decimals or not frac:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{str(frac).rjust(decimals, '0').rstrip('0')}"


class Keeper:
    """Walks loan and order ids, liquidating and executing whatever is due.

    Trigger calls are signed by the keeper's own identity; the engine
    re-validates every precondition, so a record that changed state between
    the read and the call fails cleanly and is counted as an error.
    """

    def __init__(
        self,
        config: AppConfig,
        store: LeasedStore,
        oracle: PriceOracle,
        liquidations: LiquidationService,
        orders: StopOrderService,
        notifiers: list[Notifier],
        signer: Signer,
    ) -> None:
        self._config = config
        self._store = store
        self._oracle = oracle
        self._liquidations = liquidations
        self._orders = orders
        self._notifiers = notifiers
        self._signer = signer
        self._decimals = config.price_oracle.decimals

    @property
    def identity(self) -> str:
        return self._signer.identity

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _short(identity: str) -> str:
        if len(identity) > 16:
            return f"{identity[:10]}...{identity[-6:]}"
        return identity

    def pending_settlements(self) -> list[SettlementIntent]:
        return self._orders.pending_settlements()

    def _price(self, value: int | None) -> str:
        return "n/a" if value is None else format_fixed(value, self._decimals)

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Per-record checks
    # ------------------------------------------------------------------

    async def _check_loan(self, loan_id: int, report: KeeperReport) -> None:
        try:
            loan = self._liquidations.get_loan(loan_id)
        except ArchivedEntryError:
            logger.debug("Loan %d archived, skipping", loan_id)
            return
        if not loan.is_active:
            return

        report.checked += 1
        if not await self._liquidations.check_liquidation(loan_id):
            return

        params = {"loan_id": loan_id}
        proof = self._signer.authorize("liquidate_position", params)
        reward = await self._liquidations.liquidate_position(self.identity, proof, loan_id)
        report.liquidated.append(loan_id)
        await self._send_alert(
            f"Loan {loan_id} liquidated\n"
            f"\n"
            f"Owner: {self._short(loan.owner)}\n"
            f"Collateral: {loan.collateral_amount} {loan.collateral_asset.key}\n"
            f"Borrowed: {loan.borrowed_amount} {loan.borrowed_asset.key}\n"
            f"Keeper reward: {reward}\n"
            f"\n"
            f"{self._now_str()} UTC",
            subject="Liquidation executed",
        )

    async def _check_order(self, order_id: int, report: KeeperReport) -> None:
        try:
            order = self._orders.get_order_details(order_id)
        except ArchivedEntryError:
            logger.debug("Order %d archived, skipping", order_id)
            return
        if not order.is_active:
            return

        report.checked += 1
        if order.order_type is OrderType.TWAP_STOP:
            periods = self._config.keeper.twap_periods
            proof = self._signer.authorize(
                "check_and_execute_twap", {"order_id": order_id, "twap_periods": periods}
            )
        else:
            periods = None
            proof = self._signer.authorize("check_and_execute", {"order_id": order_id})
        result = await self._orders.execute_if_triggered(
            self.identity, proof, order_id, periods
        )
        if result is None:
            return

        report.executed.append(order_id)
        lines = [
            f"Order {order_id} ({order.order_type.value}) executed",
            "",
            f"Owner: {self._short(order.owner)}",
            f"Asset: {order.asset.key}",
            f"Reason: {result.reason}",
            f"Price: {self._price(result.execution_price)}",
            f"Amount: {order.amount} (fee {result.fee}, net {result.net_amount})",
            "",
            f"{self._now_str()} UTC",
        ]
        await self._send_alert("\n".join(lines), subject="Order executed")

    def _ids(self, kind: str, fetch) -> range:
        try:
            return fetch()
        except ArchivedEntryError as e:
            logger.warning("Skipping %s: %s", kind, e)
            return range(0)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def run_once(self) -> KeeperReport:
        """One pass over every loan and order id."""
        refresh = getattr(self._oracle, "refresh", None)
        if refresh is not None:
            await refresh()

        report = KeeperReport()
        for loan_id in self._ids("loans", self._liquidations.loan_ids):
            try:
                await self._check_loan(loan_id, report)
            except EngineError as e:
                report.errors += 1
                logger.warning("Loan %d check failed: %s", loan_id, e)

        for order_id in self._ids("orders", self._orders.order_ids):
            try:
                await self._check_order(order_id, report)
            except EngineError as e:
                report.errors += 1
                logger.warning("Order %d check failed: %s", order_id, e)

        logger.info("Keeper pass complete: %s", report.summary())
        await self._send_log(f"Keeper pass: {report.summary()}\n{self._now_str()} UTC")
        return report

    def _loan_line(self, loan_id: int, loan: Loan, ratio: str) -> str:
        return (
            f"Loan {loan_id} · {self._short(loan.owner)}\n"
            f"  Collateral: {loan.collateral_amount} {loan.collateral_asset.key}\n"
            f"  Borrowed: {loan.borrowed_amount} {loan.borrowed_asset.key}\n"
            f"  Ratio: {ratio} · Threshold: {loan.liquidation_threshold}bps"
        )

    def _order_line(self, order_id: int, order: StopOrder) -> str:
        line = (
            f"Order {order_id} · {order.order_type.value} · {order.asset.key}\n"
            f"  Amount: {order.amount} · Stop: {self._price(order.stop_price)}"
        )
        if order.take_profit_price is not None:
            line += f" · Take-profit: {self._price(order.take_profit_price)}"
        if order.trigger_asset is not None:
            line += f" · Trigger: {order.trigger_asset.key}"
        return line

    async def _loan_ratio(self, loan: Loan) -> str:
        collateral = await self._oracle.spot(loan.collateral_asset)
        borrowed = await self._oracle.spot(loan.borrowed_asset)
        if collateral is None or borrowed is None or borrowed.price <= 0:
            return "n/a"
        value = loan.collateral_amount * collateral.price
        debt = loan.borrowed_amount * borrowed.price
        return f"{value * 10_000 // debt}bps" if debt > 0 else "n/a"

    async def generate_report(self) -> str:
        """Send a report of every active loan and order; returns the text."""
        loan_lines: list[str] = []
        for loan_id in self._ids("loans", self._liquidations.loan_ids):
            try:
                loan = self._liquidations.get_loan(loan_id)
            except ArchivedEntryError:
                continue
            if loan.is_active:
                loan_lines.append(self._loan_line(loan_id, loan, await self._loan_ratio(loan)))

        order_lines: list[str] = []
        for order_id in self._ids("orders", self._orders.order_ids):
            try:
                order = self._orders.get_order_details(order_id)
            except ArchivedEntryError:
                continue
            if order.is_active:
                order_lines.append(self._order_line(order_id, order))

        sections = []
        if loan_lines:
            sections.append("━━ Loans ━━\n\n" + "\n\n".join(loan_lines))
        if order_lines:
            sections.append("━━ Orders ━━\n\n" + "\n\n".join(order_lines))
        pending = len(self.pending_settlements())
        if pending:
            sections.append(f"Pending settlements: {pending}")
        body = "\n\n".join(sections) if sections else "No active positions found."

        report = f"Position Report\n\n{body}\n\n{self._now_str()} UTC"
        await self._send_alert(report)
        logger.info(
            "Report sent (%d active loans, %d active orders)", len(loan_lines), len(order_lines)
        )
        return report

    async def run_continuous(self, interval_seconds: int | None = None) -> None:
        """Run keeper passes forever, snapshotting the store after each one."""
        interval = interval_seconds or self._config.keeper.check_interval_seconds
        snapshot_path = self._config.storage.snapshot_path
        logger.info("Starting keeper loop (every %d seconds)", interval)

        while True:
            try:
                await self.run_once()
                save = getattr(self._store, "save", None)
                if save is not None:
                    save(snapshot_path)
                await asyncio.sleep(interval)
            except Exception as e:
                logger.error("Error in keeper loop: %s", e)
                await asyncio.sleep(interval)
