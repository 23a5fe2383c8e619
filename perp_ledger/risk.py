"""
risk.py - Pure PnL, fee, leverage and utilization calculations

Every function here is pure: it reads a TraderAccount or a LedgerState
snapshot plus the current price ratio and borrowing index, and returns a
number or a verdict. The same functions serve a single trader and the whole
market because both snapshots expose open_interest(), open_interest_in_tokens()
and principal() per side.

Formulas (r = reference price in collateral, PRECISION-scaled):

    long_pnl  = long_tokens * r // P - long_notional
    short_pnl = short_notional - short_tokens * r // P

    equity    = collateral + pnl - accrued_fee
    leverage  = open_interest * P // equity       (unbounded when equity <= 0)

    utilization valid iff
        (short_notional + long_tokens * r // P) * 100
            <= deposited_liquidity * max_utilization_percentage

The utilization rule is asymmetric: shorts are measured at entry notional
and longs at current value.
"""

from __future__ import annotations
from typing import Optional, Protocol

from .core import (
    PRECISION, MAX_LEVERAGE, MAX_UTILIZATION_PERCENTAGE,
    LedgerState, TraderAccount,
    LeverageExceeded, UtilizationExceeded,
)
from .borrowing import calculate_accrued_fee
from .fixed_point import mul_div, to_int


class PositionHolder(Protocol):
    """Anything with per-side open interest: a TraderAccount or a LedgerState."""

    def open_interest(self, is_long: Optional[bool] = None) -> int:
        ...

    def open_interest_in_tokens(self, is_long: bool) -> int:
        ...

    def principal(self, is_long: bool) -> int:
        ...


# ============================================================================
# PNL
# ============================================================================

def calculate_long_pnl(tokens: int, notional: int, price_ratio: int) -> int:
    return to_int(mul_div(tokens, price_ratio, PRECISION) - notional, "long pnl")


def calculate_short_pnl(tokens: int, notional: int, price_ratio: int) -> int:
    return to_int(notional - mul_div(tokens, price_ratio, PRECISION), "short pnl")


def calculate_side_pnl(holder: PositionHolder, price_ratio: int, is_long: bool) -> int:
    tokens = holder.open_interest_in_tokens(is_long)
    notional = holder.open_interest(is_long)
    if is_long:
        return calculate_long_pnl(tokens, notional, price_ratio)
    return calculate_short_pnl(tokens, notional, price_ratio)


def calculate_pnl(holder: PositionHolder, price_ratio: int, is_long: Optional[bool] = None) -> int:
    """
    Unrealized PnL of a trader or of the whole market.

    Args:
        holder: TraderAccount or LedgerState
        price_ratio: Reference price in collateral (PRECISION-scaled)
        is_long: Side to value, or None for long + short

    Returns:
        Signed PnL in collateral units
    """
    if is_long is None:
        return (calculate_side_pnl(holder, price_ratio, True)
                + calculate_side_pnl(holder, price_ratio, False))
    return calculate_side_pnl(holder, price_ratio, is_long)


# ============================================================================
# BORROWING FEE
# ============================================================================

def calculate_fee(holder: PositionHolder, index: int, is_long: Optional[bool] = None) -> int:
    """Accrued borrowing fee on one side, or the sum of both sides."""
    if is_long is None:
        return calculate_fee(holder, index, True) + calculate_fee(holder, index, False)
    return calculate_accrued_fee(holder.principal(is_long), holder.open_interest(is_long), index)


# ============================================================================
# LEVERAGE
# ============================================================================

def calculate_equity(account: TraderAccount, price_ratio: int, index: int) -> int:
    """Collateral plus unrealized PnL minus accrued fee. May be negative."""
    pnl = calculate_pnl(account, price_ratio)
    fee = calculate_fee(account, index)
    return to_int(account.collateral + pnl - fee, "equity")


def calculate_leverage(equity: int, open_interest: int) -> Optional[int]:
    """
    Leverage of open_interest against equity, PRECISION-scaled.

    Returns:
        None when equity is exhausted and there is exposure (unbounded),
        0 when there is no exposure, otherwise open_interest * P // equity.
    """
    if equity <= 0:
        return None if open_interest > 0 else 0
    return mul_div(open_interest, PRECISION, equity)


def is_leverage_valid(
    account: TraderAccount,
    open_interest: int,
    price_ratio: int,
    index: int,
    max_leverage: int = MAX_LEVERAGE,
) -> bool:
    """
    Check a candidate open interest against the trader's current equity.

    Valid iff leverage is bounded and strictly below max_leverage.
    """
    equity = calculate_equity(account, price_ratio, index)
    leverage = calculate_leverage(equity, open_interest)
    if leverage is None:
        return False
    return leverage < max_leverage * PRECISION


def enforce_leverage(
    trader: str,
    account: TraderAccount,
    open_interest: int,
    price_ratio: int,
    index: int,
    max_leverage: int = MAX_LEVERAGE,
) -> None:
    """Raise LeverageExceeded unless is_leverage_valid()."""
    if not is_leverage_valid(account, open_interest, price_ratio, index, max_leverage):
        equity = calculate_equity(account, price_ratio, index)
        raise LeverageExceeded(
            f"{trader}: open interest {open_interest} on equity {equity} "
            f"is not below {max_leverage}x"
        )


# ============================================================================
# UTILIZATION
# ============================================================================

def calculate_utilized_exposure(state: LedgerState, price_ratio: int) -> int:
    """Short notional plus the current value of long tokens."""
    return state.short_open_interest + mul_div(
        state.long_open_interest_in_tokens, price_ratio, PRECISION
    )


def is_utilization_valid(
    state: LedgerState,
    price_ratio: int,
    max_utilization_percentage: int = MAX_UTILIZATION_PERCENTAGE,
) -> bool:
    exposure = calculate_utilized_exposure(state, price_ratio)
    return exposure * 100 <= state.deposited_liquidity * max_utilization_percentage


def enforce_utilization(
    state: LedgerState,
    price_ratio: int,
    max_utilization_percentage: int = MAX_UTILIZATION_PERCENTAGE,
) -> None:
    """Raise UtilizationExceeded unless is_utilization_valid()."""
    if not is_utilization_valid(state, price_ratio, max_utilization_percentage):
        exposure = calculate_utilized_exposure(state, price_ratio)
        raise UtilizationExceeded(
            f"exposure {exposure} exceeds {max_utilization_percentage}% of "
            f"deposited liquidity {state.deposited_liquidity}"
        )
