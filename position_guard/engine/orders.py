"""Conditional exit orders: stop-loss, trailing, OCO, TWAP and cross-asset.

Every public call runs inside one store transaction. Trigger checks are
permissionless (the executor signs for itself); creation and cancellation
need the owner's proof.
"""
from __future__ import annotations

import logging
from typing import Any

from ..config import AppConfig
from ..exceptions import AuthorizationError, StateError, ValidationError
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.store import LeasedStore
from ..models import (
    AssetRef,
    AuthProof,
    ExecutionResult,
    OrderType,
    SettlementIntent,
    StopOrder,
)
from ..storage.memory import Clock, wall_clock
from . import evaluator, pricing
from .auth import Authorizer
from .execution import ExecutionEngine
from .registry import PositionRegistry

logger = logging.getLogger(__name__)


class StopOrderService:
    """Public order operations over the registry, evaluator and execution engine."""

    def __init__(
        self,
        store: LeasedStore,
        oracle: PriceOracle,
        config: AppConfig,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._oracle = oracle
        self._config = config.engine
        self._clock = clock or wall_clock
        lease_ttl = config.storage.lease_ttl
        self._registry = PositionRegistry(
            store, lease_ttl, max_orders_per_user=config.engine.max_orders_per_user
        )
        self._auth = Authorizer(store, lease_ttl)
        self._execution = ExecutionEngine(self._registry, config.engine)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self, admin: str, fee_recipient: str) -> None:
        async with self._store.transaction():
            if self._registry.get_config("admin") is not None:
                raise StateError("Already initialized")
            self._registry.set_config("admin", admin)
            self._registry.set_config("fee_recipient", fee_recipient)
        logger.info("Stop-order service initialized (fee recipient: %s)", fee_recipient)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _current_price(self, asset: AssetRef) -> int:
        return await pricing.require_spot(
            self._oracle, asset, self._clock(), self._config.max_price_age
        )

    def _validate_amount(self, amount: int) -> None:
        if amount < self._config.min_order_amount:
            raise ValidationError(
                f"Amount too small: {amount} < {self._config.min_order_amount}"
            )

    def _validate_periods(self, periods: int) -> None:
        low, high = self._config.twap_min_periods, self._config.twap_max_periods
        if not low <= periods <= high:
            raise ValidationError(f"TWAP periods must be between {low} and {high}")

    def _authorize_create(
        self, owner: str, proof: AuthProof | None, operation: str, params: dict[str, Any]
    ) -> None:
        self._auth.require_auth(owner, proof, operation, params)
        self._registry.require_config("admin")
        self._validate_amount(params["amount"])

    def _store_new_order(self, order: StopOrder) -> int:
        order_id = self._registry.next_order_id()
        self._registry.save_order(order_id, order)
        self._registry.add_user_order(order.owner, order_id)
        return order_id

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_stop_loss(
        self,
        owner: str,
        proof: AuthProof | None,
        asset: AssetRef,
        amount: int,
        stop_price: int,
    ) -> int:
        async with self._store.transaction():
            self._authorize_create(
                owner,
                proof,
                "create_stop_loss",
                {"asset": asset, "amount": amount, "stop_price": stop_price},
            )
            current_price = await self._current_price(asset)
            if not 0 < stop_price < current_price:
                raise ValidationError(
                    f"Stop price {stop_price} must be positive and below the current price {current_price}"
                )

            order_id = self._store_new_order(
                StopOrder(
                    owner=owner,
                    asset=asset,
                    amount=amount,
                    stop_price=stop_price,
                    highest_price=current_price,
                    created_at=self._clock(),
                    order_type=OrderType.STOP_LOSS,
                )
            )

        logger.info("Stop-loss order created: %d (stop %d)", order_id, stop_price)
        return order_id

    async def create_trailing_stop(
        self,
        owner: str,
        proof: AuthProof | None,
        asset: AssetRef,
        amount: int,
        trailing_percent: int,
    ) -> int:
        async with self._store.transaction():
            self._authorize_create(
                owner,
                proof,
                "create_trailing_stop",
                {"asset": asset, "amount": amount, "trailing_percent": trailing_percent},
            )
            if not 0 < trailing_percent <= self._config.max_trailing_percent:
                raise ValidationError(
                    f"Invalid trailing percent {trailing_percent}: "
                    f"must be within (0, {self._config.max_trailing_percent}]"
                )

            current_price = await self._current_price(asset)
            stop_price = evaluator.percent_below(current_price, trailing_percent)
            order_id = self._store_new_order(
                StopOrder(
                    owner=owner,
                    asset=asset,
                    amount=amount,
                    stop_price=stop_price,
                    highest_price=current_price,
                    created_at=self._clock(),
                    order_type=OrderType.TRAILING_STOP,
                    trailing_percent=trailing_percent,
                )
            )

        logger.info(
            "Trailing stop order created: %d (%d%% below %d, stop %d)",
            order_id, trailing_percent, current_price, stop_price,
        )
        return order_id

    async def create_oco_order(
        self,
        owner: str,
        proof: AuthProof | None,
        asset: AssetRef,
        amount: int,
        stop_price: int,
        take_profit_price: int,
    ) -> int:
        async with self._store.transaction():
            self._authorize_create(
                owner,
                proof,
                "create_oco_order",
                {
                    "asset": asset,
                    "amount": amount,
                    "stop_price": stop_price,
                    "take_profit_price": take_profit_price,
                },
            )
            current_price = await self._current_price(asset)
            if stop_price <= 0 or stop_price >= current_price or take_profit_price <= current_price:
                raise ValidationError(
                    f"Invalid price levels: need 0 < stop ({stop_price}) < "
                    f"current ({current_price}) < take-profit ({take_profit_price})"
                )

            order_id = self._store_new_order(
                StopOrder(
                    owner=owner,
                    asset=asset,
                    amount=amount,
                    stop_price=stop_price,
                    highest_price=current_price,
                    created_at=self._clock(),
                    order_type=OrderType.OCO,
                    take_profit_price=take_profit_price,
                )
            )

        logger.info(
            "OCO order created: %d (stop %d, take-profit %d)",
            order_id, stop_price, take_profit_price,
        )
        return order_id

    async def create_twap_stop(
        self,
        owner: str,
        proof: AuthProof | None,
        asset: AssetRef,
        amount: int,
        twap_periods: int,
        stop_percent: int,
    ) -> int:
        async with self._store.transaction():
            self._authorize_create(
                owner,
                proof,
                "create_twap_stop",
                {
                    "asset": asset,
                    "amount": amount,
                    "twap_periods": twap_periods,
                    "stop_percent": stop_percent,
                },
            )
            self._validate_periods(twap_periods)
            if not 0 < stop_percent < 100:
                raise ValidationError(f"Invalid stop percent {stop_percent}: must be within (0, 100)")

            twap_price = await pricing.require_twap(self._oracle, asset, twap_periods)
            stop_price = evaluator.percent_below(twap_price, stop_percent)
            order_id = self._store_new_order(
                StopOrder(
                    owner=owner,
                    asset=asset,
                    amount=amount,
                    stop_price=stop_price,
                    highest_price=twap_price,
                    created_at=self._clock(),
                    order_type=OrderType.TWAP_STOP,
                )
            )

        logger.info(
            "TWAP stop-loss created: %d (TWAP %d, stop %d)", order_id, twap_price, stop_price
        )
        return order_id

    async def create_cross_asset_stop(
        self,
        owner: str,
        proof: AuthProof | None,
        position_asset: AssetRef,
        trigger_asset: AssetRef,
        amount: int,
        trigger_price: int,
    ) -> int:
        """Stop a position in one asset when a different asset falls to a price."""
        async with self._store.transaction():
            self._authorize_create(
                owner,
                proof,
                "create_cross_asset_stop",
                {
                    "position_asset": position_asset,
                    "trigger_asset": trigger_asset,
                    "amount": amount,
                    "trigger_price": trigger_price,
                },
            )
            if position_asset == trigger_asset:
                raise ValidationError("Trigger asset must differ from the position asset")

            trigger_current = await self._current_price(trigger_asset)
            if not 0 < trigger_price < trigger_current:
                raise ValidationError(
                    f"Trigger price {trigger_price} must be positive and below "
                    f"the current {trigger_asset.key} price {trigger_current}"
                )
            cross_price = await pricing.require_cross(
                self._oracle,
                trigger_asset,
                position_asset,
                self._clock(),
                self._config.max_price_age,
            )

            order_id = self._store_new_order(
                StopOrder(
                    owner=owner,
                    asset=position_asset,
                    amount=amount,
                    stop_price=trigger_price,
                    highest_price=cross_price,
                    created_at=self._clock(),
                    order_type=OrderType.CROSS_ASSET,
                    trigger_asset=trigger_asset,
                )
            )

        logger.info(
            "Cross-asset stop created: %d (%s <= %d, cross price %d)",
            order_id, trigger_asset.key, trigger_price, cross_price,
        )
        return order_id

    # ------------------------------------------------------------------
    # Trigger checks
    # ------------------------------------------------------------------

    def _apply_price(
        self, order_id: int, order: StopOrder, price: int, executor: str
    ) -> ExecutionResult | None:
        """Ratchet, evaluate and execute at ``price``. Caller holds the transaction."""
        ratcheted = evaluator.ratchet_trailing_stop(order, price)
        if ratcheted != order:
            self._registry.save_order(order_id, ratcheted)
            if ratcheted.stop_price != order.stop_price:
                logger.info(
                    "Trailing stop for order %d adjusted: %d -> %d (high %d)",
                    order_id, order.stop_price, ratcheted.stop_price, ratcheted.highest_price,
                )
            order = ratcheted

        decision = evaluator.evaluate_triggers(order, price)
        logger.debug(
            "Order %d: %s price %d, stop %d, take-profit %s",
            order_id,
            evaluator.watched_price_source(order),
            price,
            order.stop_price,
            order.take_profit_price,
        )
        if not decision.should_execute:
            return None

        return self._execution.execute_order(
            order_id,
            order,
            decision,
            executor=executor,
            fee_recipient=self._registry.require_config("fee_recipient"),
            executed_at=self._clock(),
        )

    async def execute_if_triggered(
        self,
        executor: str,
        proof: AuthProof | None,
        order_id: int,
        twap_periods: int | None = None,
    ) -> ExecutionResult | None:
        """Evaluate an order and execute it when a trigger holds.

        Prices at the fresh spot of the watched asset, or at the TWAP over
        ``twap_periods`` samples when given. The proof must cover
        ``check_and_execute`` or ``check_and_execute_twap`` respectively.
        Returns the execution result, or None when nothing fired.
        """
        if twap_periods is None:
            operation, params = "check_and_execute", {"order_id": order_id}
        else:
            self._validate_periods(twap_periods)
            operation = "check_and_execute_twap"
            params = {"order_id": order_id, "twap_periods": twap_periods}

        async with self._store.transaction():
            self._auth.require_auth(executor, proof, operation, params)
            order = self._registry.get_order(order_id)
            if not order.is_active:
                raise StateError(f"Order {order_id} not active ({order.status.value})")

            if twap_periods is None:
                price = await self._current_price(order.watched_asset)
            else:
                price = await pricing.require_twap(
                    self._oracle, order.watched_asset, twap_periods
                )
            return self._apply_price(order_id, order, price, executor)

    async def check_and_execute(
        self, executor: str, proof: AuthProof | None, order_id: int
    ) -> bool:
        """Evaluate an order at the fresh spot price; True when it executed."""
        return await self.execute_if_triggered(executor, proof, order_id) is not None

    async def check_and_execute_twap(
        self, executor: str, proof: AuthProof | None, order_id: int, twap_periods: int
    ) -> bool:
        """Evaluate an order at the TWAP over ``twap_periods`` samples."""
        result = await self.execute_if_triggered(executor, proof, order_id, twap_periods)
        return result is not None

    # ------------------------------------------------------------------
    # Owner actions
    # ------------------------------------------------------------------

    async def cancel_order(self, owner: str, proof: AuthProof | None, order_id: int) -> None:
        async with self._store.transaction():
            self._auth.require_auth(owner, proof, "cancel_order", {"order_id": order_id})
            order = self._registry.get_order(order_id)
            if order.owner != owner:
                raise AuthorizationError(
                    f"Unauthorized: order {order_id} belongs to another owner"
                )
            self._execution.cancel_order(order_id, order)

    # ------------------------------------------------------------------
    # Settlement hand-off
    # ------------------------------------------------------------------

    def pending_settlements(self) -> list[SettlementIntent]:
        return [
            self._registry.get_settlement(order_id)
            for order_id in self._registry.pending_settlement_ids()
        ]

    async def mark_settled(self, admin: str, proof: AuthProof | None, order_id: int) -> None:
        async with self._store.transaction():
            self._auth.require_auth(admin, proof, "mark_settled", {"order_id": order_id})
            if admin != self._registry.require_config("admin"):
                raise AuthorizationError("Only the admin may acknowledge settlements")
            self._execution.mark_settled(order_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user_orders(self, user: str) -> list[int]:
        return self._registry.user_orders(user)

    def get_order_details(self, order_id: int) -> StopOrder:
        return self._registry.get_order(order_id)

    def order_ids(self) -> range:
        return range(1, self._registry.order_count() + 1)

    async def get_price_volatility(self, asset: AssetRef, periods: int) -> int | None:
        """Variance of the last ``periods`` prices; advisory only."""
        if periods <= 0:
            raise ValidationError("Volatility needs at least one period")
        samples = await self._oracle.history(asset, periods)
        if not samples:
            return None
        volatility = evaluator.price_variance([q.price for q in samples])
        logger.info("Price volatility for %s over %d periods: %d", asset.key, periods, volatility)
        return volatility
