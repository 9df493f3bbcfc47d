"""
rates.py - Exchange Rate Register

Holds the owner identity and the exchange rate used to size collateral at
match time. The rate has 3 implied decimals (5000 means 5.0 units of
collateral per unit of principal value). Only the owner may replace it.
"""
from __future__ import annotations
from typing import Tuple

from .core import Unauthorized


class ExchangeRateRegister:
    """Owner-gated, single-value exchange rate."""

    def __init__(self, owner: str, exchange_rate: int):
        if not owner:
            raise ValueError("owner cannot be empty")
        self._check_rate(exchange_rate)
        self._owner = owner
        self._rate = exchange_rate

    @staticmethod
    def _check_rate(rate: int) -> None:
        # Only the type is checked; a zero or extreme rate is the owner's call
        if isinstance(rate, bool) or not isinstance(rate, int):
            raise TypeError(f"exchange rate must be an int, got {type(rate).__name__}")
        if rate < 0:
            raise ValueError(f"exchange rate cannot be negative, got {rate}")

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def rate(self) -> int:
        return self._rate

    def update(self, caller: str, new_rate: int) -> Tuple[int, int]:
        """
        Replace the rate. Returns (old_rate, new_rate).

        Raises:
            Unauthorized: caller is not the owner
        """
        if caller != self._owner:
            raise Unauthorized(f"{caller} is not the owner")
        self._check_rate(new_rate)
        old_rate = self._rate
        self._rate = new_rate
        return old_rate, new_rate
