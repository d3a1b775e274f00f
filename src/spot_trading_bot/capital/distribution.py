"""
distribution.py

Turns a capital budget and a watch list into per-symbol allocations.

Two modes:
- fixed size: every symbol gets ``quantity_per_trade`` of quote currency
- automatic: ``total * capital_per_round`` minus the safety reserve, split
  evenly and capped at ``max_allocation_per_pair`` of total capital

Quantities are rounded to 8 decimals. Amounts stay plain floats.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence

from spot_trading_bot.config import RiskSettings
from spot_trading_bot.config.constants import QUANTITY_DECIMALS
from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("capital")

PriceLookup = Callable[[str], Optional[float]]


@dataclass(frozen=True)
class CapitalAllocation:
    symbol: str
    allocated_amount: float
    allocated_percent: float
    quantity: float
    price: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_quantity(amount: float, price: float) -> float:
    """Base-asset units purchasable with ``amount`` at ``price`` (8 decimals)."""
    if price is None or price <= 0:
        raise ValueError(f"price must be positive (got {price!r})")
    return round(amount / price, QUANTITY_DECIMALS)


def total_allocated(allocations: Mapping[str, CapitalAllocation]) -> float:
    return sum(a.allocated_amount for a in allocations.values())


def available_capital(total_capital: float, allocations: Mapping[str, CapitalAllocation]) -> float:
    return total_capital - total_allocated(allocations)


class CapitalDistributionEngine:
    """Computes allocations; stateless apart from its settings and price source."""

    def __init__(self, price_lookup: PriceLookup, risk: Optional[RiskSettings] = None) -> None:
        self._price_lookup = price_lookup
        self.risk = risk or RiskSettings()

    def is_allocation_valid(
        self,
        amount: float,
        total_capital: float,
        max_allocation_pct: Optional[float] = None,
    ) -> bool:
        """True when ``amount`` is positive and within the per-pair cap."""
        if total_capital <= 0:
            return False
        cap_pct = self.risk.max_allocation_per_pair_pct if max_allocation_pct is None else max_allocation_pct
        share = amount / total_capital
        return 0 < share <= cap_pct / 100.0 + 1e-12

    def per_pair_amount(
        self,
        total_capital: float,
        pair_count: int,
        quantity_per_trade: Optional[float] = None,
        max_allocation_pct: Optional[float] = None,
        safety_reserve_pct: Optional[float] = None,
    ) -> float:
        if pair_count <= 0 or total_capital <= 0:
            return 0.0
        cap_pct = self.risk.max_allocation_per_pair_pct if max_allocation_pct is None else max_allocation_pct
        cap = total_capital * cap_pct / 100.0
        if quantity_per_trade is not None and quantity_per_trade > 0:
            return min(quantity_per_trade, cap)
        reserve_pct = self.risk.safety_reserve_pct if safety_reserve_pct is None else safety_reserve_pct
        capital_per_round = total_capital * self.risk.capital_per_round_pct / 100.0
        available = capital_per_round * (1.0 - min(reserve_pct, 100.0) / 100.0)
        return min(available / pair_count, cap)

    def _allocate(self, symbol: str, amount: float, total_capital: float) -> Optional[CapitalAllocation]:
        try:
            price = self._price_lookup(symbol)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Price lookup failed for %s; skipping allocation: %s", symbol, exc)
            return None
        if price is None or price <= 0:
            logger.warning("No price for %s; skipping allocation", symbol)
            return None
        return CapitalAllocation(
            symbol=symbol,
            allocated_amount=amount,
            allocated_percent=amount / total_capital * 100.0,
            quantity=calculate_quantity(amount, price),
            price=float(price),
        )

    def distribute(
        self,
        total_capital: float,
        symbols: Sequence[str],
        quantity_per_trade: Optional[float] = None,
        *,
        max_allocation_pct: Optional[float] = None,
        safety_reserve_pct: Optional[float] = None,
    ) -> Dict[str, CapitalAllocation]:
        """Allocate capital across ``symbols``.

        A symbol whose price cannot be fetched is skipped; the others are still
        allocated. ``max_allocation_pct`` / ``safety_reserve_pct`` override the
        base settings (adaptive risk tiers pass tightened values).
        """
        allocations: Dict[str, CapitalAllocation] = {}
        if not symbols:
            logger.warning("No pairs to allocate capital to")
            return allocations

        amount = self.per_pair_amount(
            total_capital,
            len(symbols),
            quantity_per_trade,
            max_allocation_pct=max_allocation_pct,
            safety_reserve_pct=safety_reserve_pct,
        )
        if amount <= 0:
            return allocations

        mode = "fixed" if quantity_per_trade else "automatic"
        logger.info(
            "Distributing %.2f per pair across %d pairs (%s mode, total %.2f)",
            amount,
            len(symbols),
            mode,
            total_capital,
        )
        for symbol in symbols:
            allocation = self._allocate(symbol, amount, total_capital)
            if allocation is not None:
                allocations[symbol] = allocation
        return allocations

    def rebalance(
        self,
        total_capital: float,
        current_symbols: Iterable[str],
        existing: Mapping[str, CapitalAllocation],
        quantity_per_trade: Optional[float] = None,
        *,
        max_allocation_pct: Optional[float] = None,
        safety_reserve_pct: Optional[float] = None,
    ) -> Dict[str, CapitalAllocation]:
        """Release capital of removed symbols and split it across new ones.

        Symbols still present keep their allocation untouched. New symbols
        share the freed capital plus any unallocated room left in the round
        budget, each capped at the per-pair maximum. With a fixed
        ``quantity_per_trade`` new symbols simply get the fixed size.
        """
        current = list(dict.fromkeys(current_symbols))
        current_set = set(current)
        kept = {sym: alloc for sym, alloc in existing.items() if sym in current_set}
        freed = sum(alloc.allocated_amount for sym, alloc in existing.items() if sym not in current_set)
        new_symbols = [sym for sym in current if sym not in kept]

        if new_symbols and quantity_per_trade:
            amount = self.per_pair_amount(
                total_capital, len(current), quantity_per_trade, max_allocation_pct=max_allocation_pct
            )
            for symbol in new_symbols:
                allocation = self._allocate(symbol, amount, total_capital)
                if allocation is not None:
                    kept[symbol] = allocation
        elif new_symbols:
            round_budget = self.per_pair_amount(
                total_capital,
                1,
                max_allocation_pct=100.0,
                safety_reserve_pct=safety_reserve_pct,
            )
            room = max(0.0, round_budget - total_allocated(existing))
            pool = freed + room
            if pool > 0:
                cap_pct = self.risk.max_allocation_per_pair_pct if max_allocation_pct is None else max_allocation_pct
                amount = min(pool / len(new_symbols), total_capital * cap_pct / 100.0)
                for symbol in new_symbols:
                    allocation = self._allocate(symbol, amount, total_capital)
                    if allocation is not None:
                        kept[symbol] = allocation

        logger.info(
            "Rebalanced: %d pairs, %.2f released from removed pairs, %d new pairs",
            len(kept),
            freed,
            len(new_symbols),
        )
        return kept


__all__ = [
    "CapitalAllocation",
    "CapitalDistributionEngine",
    "available_capital",
    "calculate_quantity",
    "total_allocated",
]
