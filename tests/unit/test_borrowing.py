"""
test_borrowing.py - Unit tests for the borrowing index

Tests:
- Index value at genesis and after whole years
- Monotonicity
- Principal / present value / accrued fee helpers
- Custom rates and invalid times
"""

import pytest
from datetime import datetime, timedelta
from hypothesis import given, settings
from hypothesis import strategies as st

from perp_ledger import (
    BORROWING_INDEX_PRECISION as B,
    SECONDS_PER_YEAR,
    BorrowingIndexClock,
    calculate_borrowing_index,
    calculate_principal,
    calculate_present_value,
    calculate_accrued_fee,
)

GENESIS = datetime(2025, 1, 1)


class TestIndex:

    def test_equals_precision_at_genesis(self):
        assert calculate_borrowing_index(GENESIS, GENESIS) == B

    def test_ten_percent_after_one_year(self):
        assert calculate_borrowing_index(GENESIS, GENESIS + timedelta(days=365)) == B + B // 10

    def test_doubles_after_ten_years(self):
        assert calculate_borrowing_index(GENESIS, GENESIS + timedelta(days=3650)) == 2 * B

    def test_before_genesis_raises(self):
        with pytest.raises(ValueError):
            calculate_borrowing_index(GENESIS, GENESIS - timedelta(seconds=1))

    def test_sub_second_elapsed_is_floored(self):
        assert calculate_borrowing_index(GENESIS, GENESIS + timedelta(milliseconds=999)) == B

    def test_moves_once_per_whole_second(self):
        five = calculate_borrowing_index(GENESIS, GENESIS + timedelta(seconds=5))
        assert calculate_borrowing_index(GENESIS, GENESIS + timedelta(seconds=5.5)) == five
        assert calculate_borrowing_index(GENESIS, GENESIS + timedelta(seconds=6)) > five

    def test_custom_rate(self):
        clock = BorrowingIndexClock(GENESIS, rate_seconds=SECONDS_PER_YEAR)
        assert clock.index_at(GENESIS + timedelta(days=365)) == 2 * B

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            BorrowingIndexClock(GENESIS, rate_seconds=0)

    @given(
        st.integers(min_value=0, max_value=100 * SECONDS_PER_YEAR),
        st.integers(min_value=0, max_value=100 * SECONDS_PER_YEAR),
    )
    @settings(max_examples=200)
    def test_monotone(self, a, b):
        lo, hi = sorted((a, b))
        i_lo = calculate_borrowing_index(GENESIS, GENESIS + timedelta(seconds=lo))
        i_hi = calculate_borrowing_index(GENESIS, GENESIS + timedelta(seconds=hi))
        assert B <= i_lo <= i_hi


class TestFeeHelpers:

    def test_principal_at_genesis_is_notional(self):
        assert calculate_principal(10 ** 22, B) == 10 ** 22

    def test_present_value_round_trip(self):
        principal = calculate_principal(10 ** 22, B)
        assert calculate_present_value(principal, B + B // 10) == 11 * 10 ** 21

    def test_fee_zero_immediately(self):
        index = B + 123_456_789
        notional = 7 * 10 ** 20 + 3
        principal = calculate_principal(notional, index)
        assert calculate_accrued_fee(principal, notional, index) == 0

    def test_fee_after_year(self):
        notional = 10_000 * 10 ** 18
        principal = calculate_principal(notional, B)
        assert calculate_accrued_fee(principal, notional, B + B // 10) == 1_000 * 10 ** 18

    def test_clock_accrued_fee(self):
        clock = BorrowingIndexClock(GENESIS)
        principal = clock.principal_for(10 ** 21, GENESIS)
        assert clock.accrued_fee(principal, 10 ** 21, GENESIS + timedelta(days=365)) == 10 ** 20

    @given(
        st.integers(min_value=1, max_value=10 ** 30),
        st.integers(min_value=0, max_value=5 * SECONDS_PER_YEAR),
        st.integers(min_value=0, max_value=5 * SECONDS_PER_YEAR),
    )
    @settings(max_examples=200)
    def test_fee_matches_index_growth(self, notional, open_after, held_for):
        opened = GENESIS + timedelta(seconds=open_after)
        now = opened + timedelta(seconds=held_for)
        i_open = calculate_borrowing_index(GENESIS, opened)
        i_now = calculate_borrowing_index(GENESIS, now)

        principal = calculate_principal(notional, i_open)
        assert calculate_accrued_fee(principal, notional, i_open) == 0

        fee = calculate_accrued_fee(principal, notional, i_now)
        expected = notional * i_now // i_open - notional
        # principal and present value each floor once
        assert abs(fee - expected) <= 2
