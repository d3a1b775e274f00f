"""
bollinger.py

Bollinger Bands: simple moving average +/- k population standard deviations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    bandwidth: float

    def to_dict(self) -> dict:
        return {
            "upper": self.upper,
            "middle": self.middle,
            "lower": self.lower,
            "bandwidth": self.bandwidth,
        }


def calculate_bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerBands:
    """
    Compute Bollinger Bands over the last ``period`` prices.

    ``bandwidth`` is ``(upper - lower) / middle`` (0 when the middle band is 0).

    Raises:
        ValueError: If fewer than ``period`` prices are supplied.
    """
    if period <= 0:
        raise ValueError(f"Bollinger: invalid period {period}")
    if prices is None or len(prices) < period:
        got = 0 if prices is None else len(prices)
        raise ValueError(f"Bollinger: insufficient data len={got} < {period}")

    window = np.asarray(list(prices), dtype=float)[-period:]
    middle = float(window.mean())
    spread = float(window.std(ddof=0)) * std_dev
    upper = middle + spread
    lower = middle - spread
    bandwidth = (upper - lower) / middle if middle else 0.0
    return BollingerBands(upper=upper, middle=middle, lower=lower, bandwidth=bandwidth)


__all__ = ["BollingerBands", "calculate_bollinger_bands"]
