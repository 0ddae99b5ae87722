"""Position risk engine: registry, trigger evaluation, execution and the public services."""
from .auth import Authorizer, Signer
from .execution import ExecutionEngine
from .liquidation import LiquidationService
from .orders import StopOrderService
from .registry import PositionRegistry

__all__ = [
    "Authorizer",
    "ExecutionEngine",
    "LiquidationService",
    "PositionRegistry",
    "Signer",
    "StopOrderService",
]
