"""Multi-pair spot trading bot with adaptive risk control."""

__version__ = "0.1.0"
