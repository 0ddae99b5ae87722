"""Trigger evaluation: pure functions over records and price data, no I/O.

All arithmetic is on fixed-point integers. Ratios are expressed in basis
points (10000 bps = 100%).
"""
from __future__ import annotations

from dataclasses import replace

from ..exceptions import EngineArithmeticError, StalePriceError
from ..models import Loan, OrderType, PriceQuote, StopOrder, TriggerDecision

BPS = 10_000


def collateral_ratio_bps(collateral_value: int, borrowed_value: int) -> int:
    """Collateral value as a share of borrowed value, floored, in bps."""
    if borrowed_value == 0:
        raise EngineArithmeticError("Collateral ratio undefined for zero borrowed value")
    return collateral_value * BPS // borrowed_value


def loan_values(loan: Loan, collateral_price: int, borrowed_price: int) -> tuple[int, int]:
    return (
        collateral_price * loan.collateral_amount,
        borrowed_price * loan.borrowed_amount,
    )


def loan_ratio_bps(loan: Loan, collateral_price: int, borrowed_price: int) -> int:
    collateral_value, borrowed_value = loan_values(loan, collateral_price, borrowed_price)
    return collateral_ratio_bps(collateral_value, borrowed_value)


def should_liquidate(loan: Loan, collateral_price: int, borrowed_price: int) -> bool:
    """True when the loan's ratio has fallen to or below its threshold."""
    return loan_ratio_bps(loan, collateral_price, borrowed_price) <= loan.liquidation_threshold


def health_factor_twap(loan: Loan, collateral_twap: int, borrowed_twap: int) -> int:
    """Collateral value over threshold-scaled borrowed value, in bps.

    A result below 10000 means the position is under its threshold.
    """
    collateral_value, borrowed_value = loan_values(loan, collateral_twap, borrowed_twap)
    scaled_borrowed = borrowed_value * loan.liquidation_threshold // BPS
    if scaled_borrowed == 0:
        raise EngineArithmeticError("Health factor undefined for zero borrowed value")
    return collateral_value * BPS // scaled_borrowed


def percent_below(price: int, percent: int) -> int:
    """``price`` reduced by ``percent`` whole percent, floored."""
    return price * (100 - percent) // 100


def ratchet_trailing_stop(order: StopOrder, current_price: int) -> StopOrder:
    """Raise the watermark and stop price of a trailing order on a new high.

    Returns the order unchanged when it is not trailing or no new high was
    seen. The stop price never moves down.
    """
    if order.trailing_percent is None or current_price <= order.highest_price:
        return order

    updated = replace(order, highest_price=current_price)
    candidate = percent_below(current_price, order.trailing_percent)
    if candidate > order.stop_price:
        updated = replace(updated, stop_price=candidate)
    return updated


def evaluate_triggers(order: StopOrder, current_price: int) -> TriggerDecision:
    """Check stop and take-profit conditions at ``current_price``."""
    take_profit = order.take_profit_price
    return TriggerDecision(
        price=current_price,
        stop_hit=current_price <= order.stop_price,
        take_profit_hit=take_profit is not None and current_price >= take_profit,
    )


def watched_price_source(order: StopOrder) -> str:
    """Describe which price drives the trigger, for log lines."""
    if order.order_type is OrderType.CROSS_ASSET:
        return f"{order.watched_asset.key} (cross trigger)"
    return order.asset.key


def price_variance(prices: list[int]) -> int:
    """Mean squared deviation from the window mean (floored integer)."""
    if not prices:
        raise EngineArithmeticError("Variance undefined for an empty window")
    count = len(prices)
    mean = sum(prices) // count
    return sum((p - mean) ** 2 for p in prices) // count


def ensure_fresh(quote: PriceQuote, now: int, max_age: int, label: str = "") -> PriceQuote:
    """Reject quotes older than ``max_age`` seconds."""
    age = now - quote.timestamp
    if age > max_age:
        raise StalePriceError(
            f"Price{' for ' + label if label else ''} is stale: {age}s old (max {max_age}s)"
        )
    return quote
