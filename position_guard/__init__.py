"""Price-triggered liquidation and stop-order engine with an off-chain keeper."""

__version__ = "0.1.0"
