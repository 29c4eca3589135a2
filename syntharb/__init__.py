"""Synthetic cross-market arbitrage engine."""

__version__ = "0.1.0"
