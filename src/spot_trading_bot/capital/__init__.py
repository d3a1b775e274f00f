"""Capital allocation across watched pairs."""

from .distribution import (
    CapitalAllocation,
    CapitalDistributionEngine,
    available_capital,
    calculate_quantity,
    total_allocated,
)

__all__ = [
    "CapitalAllocation",
    "CapitalDistributionEngine",
    "available_capital",
    "calculate_quantity",
    "total_allocated",
]
