"""
fixed_point.py - Checked integer fixed-point arithmetic

All ledger quantities are Python ints scaled by PRECISION (1e18). Python ints
never overflow, so the 256-bit domain is enforced explicitly: any value that
leaves it raises instead of wrapping.

Division is always floor division (toward negative infinity), including for
signed values.
"""

from __future__ import annotations

from .core import (
    MAX_UINT256, MIN_INT256, MAX_INT256,
    InvalidAmount, ArithmeticUnderflow, ArithmeticOverflow,
)


def mul_div(a: int, b: int, denominator: int) -> int:
    """Compute a * b // denominator with a single floor division."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    return a * b // denominator


def to_uint(value: int, what: str = "value") -> int:
    """
    Check that value fits the unsigned 256-bit domain.

    Raises:
        ArithmeticUnderflow: If value is negative
        ArithmeticOverflow: If value exceeds MAX_UINT256
    """
    if value < 0:
        raise ArithmeticUnderflow(f"{what} underflow: {value} < 0")
    if value > MAX_UINT256:
        raise ArithmeticOverflow(f"{what} overflow: {value} > MAX_UINT256")
    return value


def to_int(value: int, what: str = "value") -> int:
    """Check that value fits the signed 256-bit domain."""
    if value < MIN_INT256:
        raise ArithmeticUnderflow(f"{what} underflow: {value} < MIN_INT256")
    if value > MAX_INT256:
        raise ArithmeticOverflow(f"{what} overflow: {value} > MAX_INT256")
    return value


def checked_add(a: int, b: int, what: str = "value") -> int:
    return to_uint(a + b, what)


def checked_sub(a: int, b: int, what: str = "value") -> int:
    """Subtract b from a. A negative result is an underflow, never clamped."""
    return to_uint(a - b, what)


def nonzero(value: int) -> int:
    """Replace 0 with 1 so a degenerate input can never be a divisor."""
    return 1 if value == 0 else value


def require_positive_amount(amount: int, what: str = "amount") -> int:
    """
    Validate a user-supplied amount.

    Raises:
        InvalidAmount: If amount is not an int, is zero or negative, or is
            outside the unsigned domain.
    """
    # bool is an int subclass
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{what} must be an int, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"{what} must be positive, got {amount}")
    if amount > MAX_UINT256:
        raise InvalidAmount(f"{what} exceeds MAX_UINT256")
    return amount
