"""
price_oracle.py - Collateral price inputs for the lending engine

Provides the price of one unit of collateral, denominated in the loaned
asset, at a specific slot.

Classes:
- PriceOracle: Protocol defining the price interface
- StaticPriceOracle: Slot-independent plain price
- SlotSeriesPriceOracle: Slot-varying plain prices with historical data
- ConfidentialPriceOracle: Encrypted price feed

Prices are non-negative integers. Plain prices are normalised to
ConfidentialValue by the lending engine (as_confidential) before use, so the
loan arithmetic is the same whether or not the feed itself is confidential.
"""

from bisect import bisect_right
from typing import Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from .confidential import ConfidentialValue


Price = Union[ConfidentialValue, int]


class PriceUnavailable(LookupError):
    """Raised when an oracle has no price at or before the requested slot."""
    pass


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for collateral price sources.

    Implementations must provide price(slot).
    """

    def price(self, slot: int) -> Price:
        """Get the collateral price at a specific slot."""
        ...


def _check_price(price: int) -> int:
    if not isinstance(price, int) or isinstance(price, bool):
        raise TypeError(f"price must be int, got {type(price).__name__}")
    if price < 0:
        raise ValueError("price must be non-negative")
    return price


class StaticPriceOracle:
    """
    Oracle with a static price (slot-independent).

    A zero price is accepted here; the borrow path rejects it with
    DivisionByZero when it computes the collateral needed for a loan.
    """

    def __init__(self, price: int):
        self._price = _check_price(price)

    def price(self, slot: int) -> int:
        """Get static price (slot is ignored)."""
        return self._price

    def update_price(self, price: int):
        """Update the price."""
        self._price = _check_price(price)

    def __repr__(self):
        return "StaticPriceOracle()"


class SlotSeriesPriceOracle:
    """
    Oracle with slot-varying prices.

    Uses the most recent price at or before the requested slot.

    Examples:
        oracle = SlotSeriesPriceOracle([(0, 2), (1_000, 3)])
        oracle.price(999)    # 2
        oracle.add_price(2_000, 1)
    """

    def __init__(self, observations: Optional[List[Tuple[int, int]]] = None):
        self.history: List[Tuple[int, int]] = sorted(
            ((slot, _check_price(price)) for slot, price in (observations or [])),
            key=lambda x: x[0],
        )

    def add_price(self, slot: int, price: int):
        """Add a price observation at a slot."""
        self.history.append((slot, _check_price(price)))
        self.history.sort(key=lambda x: x[0])

    def price(self, slot: int) -> int:
        """
        Get price at or before the specified slot.

        Raises:
            PriceUnavailable: If there is no observation at or before slot
        """
        slots = [s for s, _ in self.history]
        idx = bisect_right(slots, slot)
        if idx == 0:
            raise PriceUnavailable(f"no price at or before slot {slot}")
        return self.history[idx - 1][1]

    def __repr__(self):
        return f"SlotSeriesPriceOracle({len(self.history)} observations)"


class ConfidentialPriceOracle:
    """Oracle whose price is itself encrypted; the engine never opens it."""

    def __init__(self, price: ConfidentialValue):
        if not isinstance(price, ConfidentialValue):
            raise TypeError("ConfidentialPriceOracle requires a ConfidentialValue")
        self._price = price

    def price(self, slot: int) -> ConfidentialValue:
        return self._price

    def update_price(self, price: ConfidentialValue):
        if not isinstance(price, ConfidentialValue):
            raise TypeError("ConfidentialPriceOracle requires a ConfidentialValue")
        self._price = price

    def __repr__(self):
        return f"ConfidentialPriceOracle(<{self._price.fingerprint}>)"


# Oracles keyed by pool id; used by LendingProtocol.
OracleMap = Dict[str, PriceOracle]
