"""
terms.py - Loan Arithmetic

Pure calculation functions for lending agreements. All inputs are explicit
integers (base units, fixed-point rates, whole seconds); all divisions are
integer floor divisions, applied in the order shown. Changing the order
changes the rounding.

Key Formulas:
    collateral_amount = principal * COLLATERAL_RATIO * exchange_rate // EXCHANGE_RATE_DIVISOR
    interest          = (principal * interest_rate // INTEREST_RATE_DIVISOR) * lock_period
    total_due         = principal + interest
    months_elapsed    = (now - borrowing_timestamp).seconds // SECONDS_PER_MONTH
    lock expired      <=> months_elapsed >= lock_period
"""

from __future__ import annotations
from datetime import datetime, timedelta


# Default interest rate per month, divided by INTEREST_RATE_DIVISOR (5000 = 5%).
DEFAULT_INTEREST_RATE = 5000
INTEREST_RATE_DIVISOR = 100_000

# Exchange rate carries 3 implied decimals (5000 = 5.0 collateral per principal).
EXCHANGE_RATE_DIVISOR = 1000

# Collateral value required per unit of principal value.
COLLATERAL_RATIO = 2

# One lock-period month is a fixed 30 days.
SECONDS_PER_MONTH = 30 * 24 * 60 * 60


def _require_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")


def calculate_collateral_amount(principal: int, exchange_rate: int) -> int:
    """
    Collateral a borrower must post to match an offer of principal.

    Example:
        >>> calculate_collateral_amount(20, 5000)
        200
    """
    _require_int("principal", principal)
    _require_int("exchange_rate", exchange_rate)
    required_collateral_value = principal * COLLATERAL_RATIO
    return required_collateral_value * exchange_rate // EXCHANGE_RATE_DIVISOR


def calculate_interest(principal: int, interest_rate: int, lock_period: int) -> int:
    """
    Interest owed for the full term, whenever the loan is repaid.

    The per-month amount is truncated before multiplying by the term.

    Example:
        >>> calculate_interest(20, 5000, 6)
        6
        >>> calculate_interest(19, 5000, 6)   # 19*5000//100000 == 0
        0
    """
    _require_int("principal", principal)
    _require_int("interest_rate", interest_rate)
    _require_int("lock_period", lock_period)
    return (principal * interest_rate // INTEREST_RATE_DIVISOR) * lock_period


def calculate_total_due(principal: int, interest_rate: int, lock_period: int) -> int:
    """Principal plus full-term interest."""
    return principal + calculate_interest(principal, interest_rate, lock_period)


def elapsed_seconds(start: datetime, now: datetime) -> int:
    """Whole seconds from start to now (microseconds dropped)."""
    delta = now - start
    return delta.days * 86_400 + delta.seconds


def months_elapsed(borrowing_timestamp: datetime, now: datetime) -> int:
    """Whole 30-day months since borrowing_timestamp."""
    return elapsed_seconds(borrowing_timestamp, now) // SECONDS_PER_MONTH


def is_lock_expired(borrowing_timestamp: datetime, now: datetime, lock_period: int) -> bool:
    """True once lock_period whole months have elapsed (boundary inclusive)."""
    return months_elapsed(borrowing_timestamp, now) >= lock_period


def lock_expiry(borrowing_timestamp: datetime, lock_period: int) -> datetime:
    """Earliest time at which is_lock_expired() is True."""
    return borrowing_timestamp + timedelta(seconds=lock_period * SECONDS_PER_MONTH)
