"""Long-running services built on the engine."""
from .keeper import Keeper, KeeperReport

__all__ = ["Keeper", "KeeperReport"]
