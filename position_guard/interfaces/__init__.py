"""Protocol interfaces for the position engine."""
from .notifier import Notifier
from .price_oracle import PriceOracle
from .store import LeasedStore

__all__ = ["LeasedStore", "Notifier", "PriceOracle"]
