"""Domain records and value types; all frozen."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Union

# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

NATIVE_PREFIX = "native:"


@dataclass(frozen=True)
class NativeAsset:
    """Asset issued on the host ledger, identified by its contract address."""

    address: str

    @property
    def key(self) -> str:
        return f"{NATIVE_PREFIX}{self.address}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class SymbolAsset:
    """Off-ledger asset identified by ticker symbol (BTC, EUR, ...)."""

    symbol: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", self.symbol.upper())

    @property
    def key(self) -> str:
        return self.symbol

    def __str__(self) -> str:
        return self.key


AssetRef = Union[NativeAsset, SymbolAsset]


def parse_asset(text: str) -> AssetRef:
    """Parse ``native:<address>`` or a bare symbol into an asset reference."""
    text = text.strip()
    if not text:
        raise ValueError("Empty asset reference")
    if text.startswith(NATIVE_PREFIX):
        address = text[len(NATIVE_PREFIX):]
        if not address:
            raise ValueError(f"Native asset without address: {text!r}")
        return NativeAsset(address)
    return SymbolAsset(text)


def _asset_or_none(text: str | None) -> AssetRef | None:
    return parse_asset(text) if text else None


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceQuote:
    """Fixed-point price observed at ``timestamp`` (seconds)."""

    price: int
    timestamp: int


# ---------------------------------------------------------------------------
# Status enums
# ---------------------------------------------------------------------------


class LoanStatus(str, Enum):
    ACTIVE = "active"
    LIQUIDATED = "liquidated"
    CLOSED = "closed"


class OrderStatus(str, Enum):
    ACTIVE = "active"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    OCO = "oco"
    TWAP_STOP = "twap_stop"
    CROSS_ASSET = "cross_asset"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Loan:
    """Collateralized borrow position. ``liquidation_threshold`` is in bps."""

    owner: str
    collateral_asset: AssetRef
    collateral_amount: int
    borrowed_asset: AssetRef
    borrowed_amount: int
    liquidation_threshold: int
    created_at: int
    status: LoanStatus = LoanStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is LoanStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["collateral_asset"] = self.collateral_asset.key
        data["borrowed_asset"] = self.borrowed_asset.key
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Loan:
        return cls(
            owner=data["owner"],
            collateral_asset=parse_asset(data["collateral_asset"]),
            collateral_amount=int(data["collateral_amount"]),
            borrowed_asset=parse_asset(data["borrowed_asset"]),
            borrowed_amount=int(data["borrowed_amount"]),
            liquidation_threshold=int(data["liquidation_threshold"]),
            created_at=int(data["created_at"]),
            status=LoanStatus(data["status"]),
        )


@dataclass(frozen=True)
class StopOrder:
    """Conditional exit order.

    For cross-asset orders ``stop_price`` is a price of ``trigger_asset`` and
    ``highest_price`` only records the cross rate seen at creation.
    """

    owner: str
    asset: AssetRef
    amount: int
    stop_price: int
    highest_price: int
    created_at: int
    order_type: OrderType = OrderType.STOP_LOSS
    trailing_percent: int | None = None
    take_profit_price: int | None = None
    trigger_asset: AssetRef | None = None
    status: OrderStatus = OrderStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is OrderStatus.ACTIVE

    @property
    def watched_asset(self) -> AssetRef:
        """Asset whose price drives the trigger decision."""
        if self.order_type is OrderType.CROSS_ASSET and self.trigger_asset is not None:
            return self.trigger_asset
        return self.asset

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["asset"] = self.asset.key
        data["trigger_asset"] = self.trigger_asset.key if self.trigger_asset else None
        data["order_type"] = self.order_type.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StopOrder:
        trailing = data.get("trailing_percent")
        take_profit = data.get("take_profit_price")
        return cls(
            owner=data["owner"],
            asset=parse_asset(data["asset"]),
            amount=int(data["amount"]),
            stop_price=int(data["stop_price"]),
            highest_price=int(data["highest_price"]),
            created_at=int(data["created_at"]),
            order_type=OrderType(data.get("order_type", OrderType.STOP_LOSS.value)),
            trailing_percent=int(trailing) if trailing is not None else None,
            take_profit_price=int(take_profit) if take_profit is not None else None,
            trigger_asset=_asset_or_none(data.get("trigger_asset")),
            status=OrderStatus(data["status"]),
        )


# ---------------------------------------------------------------------------
# Evaluation / execution results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggerDecision:
    """Which exit conditions held for one evaluation."""

    price: int
    stop_hit: bool = False
    take_profit_hit: bool = False

    @property
    def should_execute(self) -> bool:
        return self.stop_hit or self.take_profit_hit

    @property
    def reason(self) -> str:
        if self.stop_hit and self.take_profit_hit:
            return "stop-loss and take-profit triggered"
        if self.take_profit_hit:
            return "take-profit triggered"
        if self.stop_hit:
            return "stop-loss triggered"
        return "not triggered"


@dataclass(frozen=True)
class ExecutionResult:
    order_id: int
    execution_price: int
    fee: int
    net_amount: int
    reason: str


@dataclass(frozen=True)
class SettlementIntent:
    """Hand-off record for the external settlement service."""

    order_id: int
    owner: str
    asset: AssetRef
    amount: int
    fee: int
    net_amount: int
    execution_price: int
    fee_recipient: str
    executor: str
    executed_at: int
    status: SettlementStatus = SettlementStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["asset"] = self.asset.key
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettlementIntent:
        return cls(
            order_id=int(data["order_id"]),
            owner=data["owner"],
            asset=parse_asset(data["asset"]),
            amount=int(data["amount"]),
            fee=int(data["fee"]),
            net_amount=int(data["net_amount"]),
            execution_price=int(data["execution_price"]),
            fee_recipient=data["fee_recipient"],
            executor=data["executor"],
            executed_at=int(data["executed_at"]),
            status=SettlementStatus(data["status"]),
        )


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthProof:
    """Detached Ed25519 signature over one operation call."""

    signer: str
    nonce: int
    signature: str
