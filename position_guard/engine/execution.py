"""Execution engine: irreversible state transitions and their reward/fee math.

Every method re-checks its own precondition against the record it is handed,
so a repeated call on a terminal record fails instead of applying twice.
No assets move here; executed orders leave a settlement intent behind.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from ..config import EngineConfig
from ..exceptions import NotTriggeredError, StateError, ValidationError
from ..models import (
    ExecutionResult,
    Loan,
    LoanStatus,
    OrderStatus,
    SettlementIntent,
    SettlementStatus,
    StopOrder,
    TriggerDecision,
)
from . import evaluator
from .evaluator import BPS
from .registry import PositionRegistry

logger = logging.getLogger(__name__)


def _require_active_loan(loan_id: int, loan: Loan) -> None:
    if not loan.is_active:
        raise StateError(f"Loan {loan_id} not active ({loan.status.value})")


def _require_active_order(order_id: int, order: StopOrder) -> None:
    if not order.is_active:
        raise StateError(f"Order {order_id} not active ({order.status.value})")


def _require_positive(amount: int, what: str) -> None:
    if amount <= 0:
        raise ValidationError(f"{what} must be positive, got {amount}")


class ExecutionEngine:
    """Applies liquidation, execution, repayment and cancellation."""

    def __init__(self, registry: PositionRegistry, config: EngineConfig) -> None:
        self._registry = registry
        self._config = config

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def liquidation_reward(self, loan: Loan) -> int:
        return loan.collateral_amount * self._config.liquidation_bonus_bps // BPS

    def liquidate(
        self,
        loan_id: int,
        loan: Loan,
        liquidator: str,
        collateral_price: int,
        borrowed_price: int,
    ) -> int:
        """Mark the loan Liquidated and credit the liquidator's reward."""
        _require_active_loan(loan_id, loan)
        if not evaluator.should_liquidate(loan, collateral_price, borrowed_price):
            raise NotTriggeredError(f"Loan {loan_id} not eligible for liquidation")

        reward = self.liquidation_reward(loan)
        self._registry.save_loan(loan_id, replace(loan, status=LoanStatus.LIQUIDATED))
        total = self._registry.add_reward(liquidator, reward)

        logger.info(
            "Loan %d liquidated by %s. Reward: %d (cumulative %d)",
            loan_id, liquidator, reward, total,
        )
        return reward

    def add_collateral(self, loan_id: int, loan: Loan, amount: int) -> Loan:
        _require_active_loan(loan_id, loan)
        _require_positive(amount, "Collateral amount")

        updated = replace(loan, collateral_amount=loan.collateral_amount + amount)
        self._registry.save_loan(loan_id, updated)
        logger.info("Added %d collateral to loan %d", amount, loan_id)
        return updated

    def repay(self, loan_id: int, loan: Loan, amount: int) -> Loan:
        """Reduce the debt; the loan closes once nothing is owed."""
        _require_active_loan(loan_id, loan)
        _require_positive(amount, "Repay amount")

        remaining = loan.borrowed_amount - amount
        updated = replace(loan, borrowed_amount=remaining)
        if remaining <= 0:
            updated = replace(updated, status=LoanStatus.CLOSED)
        self._registry.save_loan(loan_id, updated)

        logger.info("Repaid %d on loan %d (remaining %d)", amount, loan_id, remaining)
        if updated.status is LoanStatus.CLOSED:
            logger.info("Loan %d closed", loan_id)
        return updated

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def protocol_fee(self, amount: int) -> int:
        return amount * self._config.protocol_fee_bps // BPS

    def execute_order(
        self,
        order_id: int,
        order: StopOrder,
        decision: TriggerDecision,
        executor: str,
        fee_recipient: str,
        executed_at: int,
    ) -> ExecutionResult:
        """Mark the order Executed and queue its settlement intent."""
        _require_active_order(order_id, order)
        if not decision.should_execute:
            raise NotTriggeredError(f"Order {order_id} has no trigger condition met")

        fee = self.protocol_fee(order.amount)
        net_amount = order.amount - fee

        self._registry.save_order(order_id, replace(order, status=OrderStatus.EXECUTED))
        self._registry.save_settlement(
            SettlementIntent(
                order_id=order_id,
                owner=order.owner,
                asset=order.asset,
                amount=order.amount,
                fee=fee,
                net_amount=net_amount,
                execution_price=decision.price,
                fee_recipient=fee_recipient,
                executor=executor,
                executed_at=executed_at,
            )
        )

        logger.info(
            "Order %d executed at price %d: %s (fee %d, net %d)",
            order_id, decision.price, decision.reason, fee, net_amount,
        )
        return ExecutionResult(
            order_id=order_id,
            execution_price=decision.price,
            fee=fee,
            net_amount=net_amount,
            reason=decision.reason,
        )

    def cancel_order(self, order_id: int, order: StopOrder) -> StopOrder:
        _require_active_order(order_id, order)
        updated = replace(order, status=OrderStatus.CANCELLED)
        self._registry.save_order(order_id, updated)
        logger.info("Order %d cancelled", order_id)
        return updated

    def mark_settled(self, order_id: int) -> SettlementIntent:
        intent = self._registry.get_settlement(order_id)
        if intent.status is not SettlementStatus.PENDING:
            raise StateError(f"Settlement for order {order_id} already {intent.status.value}")
        settled = replace(intent, status=SettlementStatus.SETTLED)
        self._registry.save_settlement(settled)
        logger.info("Settlement for order %d acknowledged", order_id)
        return settled
