"""Price oracle gateways."""
from .pyth import PythOracle
from .router import AssetClass, OracleRouter
from .sampled import SampledPriceOracle

__all__ = ["AssetClass", "OracleRouter", "PythOracle", "SampledPriceOracle"]
