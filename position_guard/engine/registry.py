"""Position registry: keyed loan/order records, per-owner indexes, counters.

Persisted layout (one store entry per key):

    LoanCounter / OrderCounter        last issued id (ids start at 1)
    Loans:<id> / Orders:<id>          record dicts
    UserLoans:<owner> / UserOrders:<owner>   id lists
    LiquidationRewards:<liquidator>   cumulative reward
    Settlements:<order id>            settlement intents
    SettlementQueue                   order ids with a pending intent
    Config:<name>                     configuration singletons

Every write renews the lease of the entry it touches. Saving a loan or order
also renews its owner index and its id counter, so they never lapse before
a live record. Reading a required configuration singleton renews it as well.
"""
from __future__ import annotations

import logging
from typing import Any

from ..exceptions import RecordNotFoundError, StateError
from ..interfaces.store import LeasedStore
from ..models import Loan, SettlementIntent, SettlementStatus, StopOrder

logger = logging.getLogger(__name__)

LOAN_COUNTER = "LoanCounter"
ORDER_COUNTER = "OrderCounter"
SETTLEMENT_QUEUE = "SettlementQueue"


class PositionRegistry:
    """Sole owner of loan and order records."""

    def __init__(
        self, store: LeasedStore, lease_ttl: int, max_orders_per_user: int = 100
    ) -> None:
        self._store = store
        self._lease_ttl = lease_ttl
        self._max_orders_per_user = max_orders_per_user

    def _write(self, key: str, value: Any) -> None:
        self._store.set(key, value)
        self._store.extend_ttl(key, self._lease_ttl)

    def _renew(self, key: str) -> None:
        if self._store.get(key) is not None:
            self._store.extend_ttl(key, self._lease_ttl)

    def _next_id(self, counter_key: str) -> int:
        next_id = int(self._store.get(counter_key) or 0) + 1
        self._write(counter_key, next_id)
        return next_id

    # ------------------------------------------------------------------
    # Configuration singletons
    # ------------------------------------------------------------------

    def get_config(self, name: str) -> Any | None:
        return self._store.get(f"Config:{name}")

    def set_config(self, name: str, value: Any) -> None:
        self._write(f"Config:{name}", value)

    def require_config(self, name: str) -> Any:
        value = self.get_config(name)
        if value is None:
            raise StateError("Contract not initialized")
        self._renew(f"Config:{name}")
        return value

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def next_loan_id(self) -> int:
        return self._next_id(LOAN_COUNTER)

    def loan_count(self) -> int:
        return int(self._store.get(LOAN_COUNTER) or 0)

    def save_loan(self, loan_id: int, loan: Loan) -> None:
        self._write(f"Loans:{loan_id}", loan.to_dict())
        self._renew(f"UserLoans:{loan.owner}")
        self._renew(LOAN_COUNTER)

    def get_loan(self, loan_id: int) -> Loan:
        data = self._store.get(f"Loans:{loan_id}")
        if data is None:
            raise RecordNotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def add_user_loan(self, owner: str, loan_id: int) -> None:
        key = f"UserLoans:{owner}"
        self._write(key, [*(self._store.get(key) or []), loan_id])

    def user_loans(self, owner: str) -> list[int]:
        return list(self._store.get(f"UserLoans:{owner}") or [])

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def next_order_id(self) -> int:
        return self._next_id(ORDER_COUNTER)

    def order_count(self) -> int:
        return int(self._store.get(ORDER_COUNTER) or 0)

    def save_order(self, order_id: int, order: StopOrder) -> None:
        self._write(f"Orders:{order_id}", order.to_dict())
        self._renew(f"UserOrders:{order.owner}")
        self._renew(ORDER_COUNTER)

    def get_order(self, order_id: int) -> StopOrder:
        data = self._store.get(f"Orders:{order_id}")
        if data is None:
            raise RecordNotFoundError(f"Order {order_id} not found")
        return StopOrder.from_dict(data)

    def add_user_order(self, owner: str, order_id: int) -> None:
        """Append to the owner's index; rejects once the index is at capacity."""
        key = f"UserOrders:{owner}"
        current = self._store.get(key) or []
        if len(current) >= self._max_orders_per_user:
            raise StateError(
                f"Max orders per user exceeded ({self._max_orders_per_user})"
            )
        self._write(key, [*current, order_id])

    def user_orders(self, owner: str) -> list[int]:
        return list(self._store.get(f"UserOrders:{owner}") or [])

    # ------------------------------------------------------------------
    # Liquidation rewards
    # ------------------------------------------------------------------

    def reward_of(self, liquidator: str) -> int:
        return int(self._store.get(f"LiquidationRewards:{liquidator}") or 0)

    def add_reward(self, liquidator: str, amount: int) -> int:
        total = self.reward_of(liquidator) + amount
        self._write(f"LiquidationRewards:{liquidator}", total)
        return total

    # ------------------------------------------------------------------
    # Settlement intents
    # ------------------------------------------------------------------

    def save_settlement(self, intent: SettlementIntent) -> None:
        self._write(f"Settlements:{intent.order_id}", intent.to_dict())
        queue = [i for i in self.pending_settlement_ids() if i != intent.order_id]
        if intent.status is SettlementStatus.PENDING:
            queue.append(intent.order_id)
        self._write(SETTLEMENT_QUEUE, queue)

    def get_settlement(self, order_id: int) -> SettlementIntent:
        data = self._store.get(f"Settlements:{order_id}")
        if data is None:
            raise RecordNotFoundError(f"No settlement intent for order {order_id}")
        return SettlementIntent.from_dict(data)

    def pending_settlement_ids(self) -> list[int]:
        return list(self._store.get(SETTLEMENT_QUEUE) or [])
