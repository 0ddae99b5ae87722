"""Collateralized loan operations: creation, liquidation, top-up and repayment.

Every public call runs inside one store transaction; any error discards the
staged writes. Owner-scoped calls verify the owner's proof before touching
state; ``liquidate_position`` only needs the liquidator's own proof.
"""
from __future__ import annotations

import logging

from ..config import AppConfig
from ..exceptions import (
    AuthorizationError,
    OracleError,
    StateError,
    ValidationError,
)
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.store import LeasedStore
from ..models import AssetRef, AuthProof, Loan
from ..storage.memory import Clock, wall_clock
from . import evaluator, pricing
from .auth import Authorizer
from .evaluator import BPS
from .execution import ExecutionEngine
from .registry import PositionRegistry

logger = logging.getLogger(__name__)


class LiquidationService:
    """Public loan operations over the registry, evaluator and execution engine."""

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
        self._registry = PositionRegistry(store, lease_ttl)
        self._auth = Authorizer(store, lease_ttl)
        self._execution = ExecutionEngine(self._registry, config.engine)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self, oracle_name: str) -> None:
        async with self._store.transaction():
            if self._registry.get_config("liquidation_oracle") is not None:
                raise StateError("Already initialized")
            self._registry.set_config("liquidation_oracle", oracle_name)
        logger.info("Liquidation service initialized (oracle: %s)", oracle_name)

    # ------------------------------------------------------------------
    # Price helpers
    # ------------------------------------------------------------------

    async def _spot_pair(self, loan: Loan) -> tuple[int, int]:
        now = self._clock()
        max_age = self._config.max_price_age
        collateral_price = await pricing.require_spot(
            self._oracle, loan.collateral_asset, now, max_age
        )
        borrowed_price = await pricing.require_spot(
            self._oracle, loan.borrowed_asset, now, max_age
        )
        return collateral_price, borrowed_price

    def _validate_periods(self, periods: int) -> None:
        low, high = self._config.twap_min_periods, self._config.twap_max_periods
        if not low <= periods <= high:
            raise ValidationError(f"TWAP periods must be between {low} and {high}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_loan(
        self,
        owner: str,
        proof: AuthProof | None,
        collateral_asset: AssetRef,
        collateral_amount: int,
        borrowed_asset: AssetRef,
        borrowed_amount: int,
        liquidation_threshold: int,
    ) -> int:
        """Open a loan; the initial ratio must already meet the threshold."""
        async with self._store.transaction():
            self._auth.require_auth(
                owner,
                proof,
                "create_loan",
                {
                    "collateral_asset": collateral_asset,
                    "collateral_amount": collateral_amount,
                    "borrowed_asset": borrowed_asset,
                    "borrowed_amount": borrowed_amount,
                    "liquidation_threshold": liquidation_threshold,
                },
            )
            self._registry.require_config("liquidation_oracle")

            if liquidation_threshold <= BPS:
                raise ValidationError("Liquidation threshold must be > 100%")
            if collateral_amount <= 0 or borrowed_amount <= 0:
                raise ValidationError("Loan amounts must be positive")

            loan = Loan(
                owner=owner,
                collateral_asset=collateral_asset,
                collateral_amount=collateral_amount,
                borrowed_asset=borrowed_asset,
                borrowed_amount=borrowed_amount,
                liquidation_threshold=liquidation_threshold,
                created_at=self._clock(),
            )
            collateral_price, borrowed_price = await self._spot_pair(loan)
            ratio = evaluator.loan_ratio_bps(loan, collateral_price, borrowed_price)
            if ratio < liquidation_threshold:
                raise ValidationError(
                    f"Initial collateral insufficient: {ratio}bps < {liquidation_threshold}bps"
                )

            loan_id = self._registry.next_loan_id()
            self._registry.save_loan(loan_id, loan)
            self._registry.add_user_loan(owner, loan_id)

        logger.info("Loan created: id=%d, ratio=%dbps", loan_id, ratio)
        return loan_id

    async def check_liquidation(self, loan_id: int) -> bool:
        """True when the loan is Active and at or below its threshold.

        Missing or stale prices, and assets with no configured oracle, read as
        "not liquidatable".
        """
        async with self._store.transaction():
            loan = self._registry.get_loan(loan_id)
            if not loan.is_active:
                return False
            try:
                collateral_price, borrowed_price = await self._spot_pair(loan)
            except OracleError as e:
                logger.warning("Price data unusable for loan %d: %s", loan_id, e)
                return False

            ratio = evaluator.loan_ratio_bps(loan, collateral_price, borrowed_price)
            logger.info(
                "Loan %d collateral ratio: %dbps (threshold: %dbps)",
                loan_id, ratio, loan.liquidation_threshold,
            )
            triggered = ratio <= loan.liquidation_threshold

        if triggered:
            logger.warning("Liquidation triggered for loan %d", loan_id)
        return triggered

    async def liquidate_position(
        self, liquidator: str, proof: AuthProof | None, loan_id: int
    ) -> int:
        """Liquidate an eligible loan and return the liquidator's reward."""
        async with self._store.transaction():
            self._auth.require_auth(
                liquidator, proof, "liquidate_position", {"loan_id": loan_id}
            )
            loan = self._registry.get_loan(loan_id)
            if not loan.is_active:
                raise StateError(f"Loan {loan_id} not active ({loan.status.value})")

            collateral_price, borrowed_price = await self._spot_pair(loan)
            return self._execution.liquidate(
                loan_id, loan, liquidator, collateral_price, borrowed_price
            )

    async def get_health_factor_twap(self, loan_id: int, periods: int) -> int | None:
        """TWAP health factor in bps, or None for inactive loans / missing TWAPs."""
        self._validate_periods(periods)
        async with self._store.transaction():
            loan = self._registry.get_loan(loan_id)
            if not loan.is_active:
                return None

            collateral_twap = await self._oracle.twap(loan.collateral_asset, periods)
            borrowed_twap = await self._oracle.twap(loan.borrowed_asset, periods)
            if collateral_twap is None or borrowed_twap is None:
                logger.warning("TWAP unavailable for loan %d", loan_id)
                return None
            if collateral_twap <= 0 or borrowed_twap <= 0:
                logger.warning("Non-positive TWAP for loan %d", loan_id)
                return None

            health_factor = evaluator.health_factor_twap(loan, collateral_twap, borrowed_twap)

        logger.info("Loan %d health factor (TWAP %d): %d", loan_id, periods, health_factor)
        return health_factor

    async def add_collateral(
        self, owner: str, proof: AuthProof | None, loan_id: int, amount: int
    ) -> None:
        async with self._store.transaction():
            self._auth.require_auth(
                owner, proof, "add_collateral", {"loan_id": loan_id, "amount": amount}
            )
            loan = self._owned_loan(owner, loan_id)
            self._execution.add_collateral(loan_id, loan, amount)

    async def repay_loan(
        self, owner: str, proof: AuthProof | None, loan_id: int, amount: int
    ) -> None:
        async with self._store.transaction():
            self._auth.require_auth(
                owner, proof, "repay_loan", {"loan_id": loan_id, "amount": amount}
            )
            loan = self._owned_loan(owner, loan_id)
            self._execution.repay(loan_id, loan, amount)

    def _owned_loan(self, owner: str, loan_id: int) -> Loan:
        loan = self._registry.get_loan(loan_id)
        if loan.owner != owner:
            raise AuthorizationError(f"Unauthorized: loan {loan_id} belongs to another owner")
        return loan

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_loan(self, loan_id: int) -> Loan:
        return self._registry.get_loan(loan_id)

    def get_user_loans(self, user: str) -> list[int]:
        return self._registry.user_loans(user)

    def get_liquidation_rewards(self, user: str) -> int:
        return self._registry.reward_of(user)

    def loan_ids(self) -> range:
        return range(1, self._registry.loan_count() + 1)
