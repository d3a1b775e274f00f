"""Technical indicators used by the strategies."""

from .bollinger import BollingerBands, calculate_bollinger_bands
from .rsi import RSIReading, calculate_rsi, read_rsi

__all__ = [
    "BollingerBands",
    "RSIReading",
    "calculate_bollinger_bands",
    "calculate_rsi",
    "read_rsi",
]
