"""Exchange collaborators: REST market data, order execution and paper fills."""

from __future__ import annotations


class ExchangeError(RuntimeError):
    """Transport or API failure talking to the exchange."""


__all__ = ["ExchangeError"]
