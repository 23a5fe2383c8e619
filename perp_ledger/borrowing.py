"""
borrowing.py - Linear borrowing index

Open interest accrues a borrowing fee through a monotonically increasing
index. A position records its principal at open time:

    principal = notional * B // index(open)

and its accrued fee at any later time is the growth of that principal:

    fee = principal * index(now) // B - notional

    index(t) = B + (t - genesis) * B // RATE

With RATE = ten years of seconds the fee is a flat 10% of notional per year.
The clock stores nothing but the genesis time and the rate.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta

from .core import BORROWING_INDEX_PRECISION, BORROWING_RATE_SECONDS
from .fixed_point import mul_div, to_uint

_ONE_SECOND = timedelta(seconds=1)


def elapsed_seconds(genesis: datetime, now: datetime) -> int:
    """Whole seconds from genesis to now (floored)."""
    if now < genesis:
        raise ValueError(f"Time {now} is before genesis {genesis}")
    return (now - genesis) // _ONE_SECOND


def calculate_borrowing_index(
    genesis: datetime,
    now: datetime,
    rate_seconds: int = BORROWING_RATE_SECONDS,
) -> int:
    """
    Borrowing index at a point in time.

    Equals BORROWING_INDEX_PRECISION at genesis and is nondecreasing in time.
    Strictly increasing per whole elapsed second when RATE <= B (the default); sub-second
    differences do not move it.
    """
    if rate_seconds <= 0:
        raise ValueError(f"rate_seconds must be positive, got {rate_seconds}")
    elapsed = elapsed_seconds(genesis, now)
    return BORROWING_INDEX_PRECISION + mul_div(elapsed, BORROWING_INDEX_PRECISION, rate_seconds)


def calculate_principal(notional: int, index: int) -> int:
    """Normalize notional to genesis by dividing out the index."""
    return to_uint(mul_div(notional, BORROWING_INDEX_PRECISION, index), "principal")


def calculate_present_value(principal: int, index: int) -> int:
    return to_uint(mul_div(principal, index, BORROWING_INDEX_PRECISION), "present value")


def calculate_accrued_fee(principal: int, notional: int, index: int) -> int:
    """
    Borrowing fee accrued on a position or an aggregate.

    The principal round trip floors twice, so present value can land a few
    units under notional right after opening. That residue reports as zero.
    """
    return max(0, calculate_present_value(principal, index) - notional)


@dataclass(frozen=True, slots=True)
class BorrowingIndexClock:
    """Borrowing index bound to a market's genesis time."""
    genesis_time: datetime
    rate_seconds: int = BORROWING_RATE_SECONDS

    def __post_init__(self):
        if self.rate_seconds <= 0:
            raise ValueError(f"rate_seconds must be positive, got {self.rate_seconds}")

    def index_at(self, now: datetime) -> int:
        return calculate_borrowing_index(self.genesis_time, now, self.rate_seconds)

    def principal_for(self, notional: int, now: datetime) -> int:
        return calculate_principal(notional, self.index_at(now))

    def accrued_fee(self, principal: int, notional: int, now: datetime) -> int:
        return calculate_accrued_fee(principal, notional, self.index_at(now))
