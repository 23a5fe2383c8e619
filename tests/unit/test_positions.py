"""
test_positions.py - Unit tests for pure position transitions

Tests call the apply_* functions directly with a hand-built MarketContext,
so no oracle or asset ledger is involved. Each test checks the candidate
state, the settlement moves and the emitted event.
"""

import pytest
from datetime import datetime

from perp_ledger import (
    PRECISION as P,
    BORROWING_INDEX_PRECISION as B,
    MarketConfig, LedgerState, TraderAccount, MarketContext,
    PositionAdded, PositionDecreased, CollateralAdded, LiquidityUpdated,
    LeverageExceeded, UtilizationExceeded, NotEnoughCollateral,
    NotEnoughTokensInPosition, NotEnoughLiquidity, ArithmeticUnderflow, InvalidAmount,
)
from perp_ledger.positions import (
    apply_add_collateral, apply_decrease_collateral, apply_open, apply_decrease,
    apply_deposit_liquidity, apply_withdraw_liquidity,
)

U = P
CONFIG = MarketConfig()


def ctx(price=10_000, index=B):
    return MarketContext(config=CONFIG, price_ratio=price * P, index=index)


def base_state(deposited=1_000_000 * U, collateral=1_000 * U):
    return LedgerState(
        genesis_time=datetime(2025, 1, 1),
        deposited_liquidity=deposited,
        total_collateral=collateral,
        traders={"alice": TraderAccount(collateral=collateral)},
    )


def opened(notional=10_000 * U, is_long=True, **kwargs):
    return apply_open(base_state(**kwargs), ctx(), "alice", notional, is_long).state


class TestCollateral:

    def test_add(self):
        t = apply_add_collateral(base_state(), ctx(), "bob", 50 * U)
        assert t.state.account("bob").collateral == 50 * U
        assert t.state.total_collateral == 1_050 * U
        (move,) = t.moves
        assert (move.source, move.dest, move.spender) == ("bob", "market", "market")
        assert t.events == (CollateralAdded(trader="bob", amount=50 * U),)

    def test_decrease_more_than_held(self):
        with pytest.raises(NotEnoughCollateral):
            apply_decrease_collateral(base_state(), ctx(), "alice", 1_001 * U)

    def test_decrease_checks_leverage_after_withdrawal(self):
        state = opened()
        # 10,000 notional needs equity above 666.67
        apply_decrease_collateral(state, ctx(), "alice", 333 * U)
        with pytest.raises(LeverageExceeded):
            apply_decrease_collateral(state, ctx(), "alice", 334 * U)

    def test_decrease_pushes_to_trader(self):
        t = apply_decrease_collateral(base_state(), ctx(), "alice", 100 * U)
        (move,) = t.moves
        assert (move.source, move.dest, move.quantity) == ("market", "alice", 100 * U)
        assert t.state.total_collateral == 900 * U


class TestOpen:

    def test_long_records_tokens_and_principal(self):
        t = apply_open(base_state(), ctx(), "alice", 10_000 * U, True)
        account = t.state.account("alice")
        assert account.long_open_interest == 10_000 * U
        assert account.long_open_interest_in_tokens == 1 * U
        assert account.long_principal == 10_000 * U
        assert t.state.long_open_interest_in_tokens == 1 * U
        assert t.moves == ()
        assert t.events == (PositionAdded(trader="alice", amount=10_000 * U, is_long=True),)

    def test_principal_divides_out_index(self):
        t = apply_open(base_state(), ctx(index=2 * B), "alice", 10_000 * U, False)
        assert t.state.account("alice").short_principal == 5_000 * U

    def test_leverage_uses_both_sides(self):
        state = opened(notional=10_000 * U)
        with pytest.raises(LeverageExceeded):
            apply_open(state, ctx(), "alice", 5_000 * U, False)

    def test_dust_notional_below_one_token_rejected(self):
        state = base_state()
        with pytest.raises(InvalidAmount):
            apply_open(state, ctx(), "alice", 9_999, False)
        # 10,000 wei buys exactly one token unit at 10,000
        t = apply_open(state, ctx(), "alice", 10_000, False)
        assert t.state.account("alice").short_open_interest_in_tokens == 1

    def test_utilization(self):
        with pytest.raises(UtilizationExceeded):
            apply_open(base_state(deposited=5_000 * U), ctx(), "alice", 6_000 * U, True)

    def test_input_state_untouched(self):
        state = base_state()
        apply_open(state, ctx(), "alice", 10_000 * U, True)
        assert state.account("alice").long_open_interest == 0
        assert state.long_open_interest == 0


class TestDecrease:

    def test_profit_paid_from_pool(self):
        state = opened()
        t, bad_debt = apply_decrease(state, ctx(price=11_000), "alice", 1 * U, True)
        assert bad_debt == 0
        assert t.state.deposited_liquidity == 999_000 * U
        assert t.state.account("alice").collateral == 1_000 * U
        (move,) = t.moves
        assert (move.source, move.dest, move.quantity) == ("market", "alice", 1_000 * U)
        assert t.events[0].realized_pnl == 1_000 * U

    def test_loss_moves_collateral_to_pool(self):
        state = opened()
        t, _ = apply_decrease(state, ctx(price=9_500), "alice", 1 * U, True)
        assert t.state.account("alice").collateral == 500 * U
        assert t.state.total_collateral == 500 * U
        assert t.state.deposited_liquidity == 1_000_500 * U
        assert t.moves == ()

    def test_fee_charged(self):
        state = opened()
        t, _ = apply_decrease(state, ctx(index=B + B // 10), "alice", 1 * U, True)
        assert t.state.account("alice").collateral == 0
        assert t.state.deposited_liquidity == 1_001_000 * U
        assert t.events[0].realized_fee == 1_000 * U

    def test_full_close_zeroes_side(self):
        state = opened()
        t, _ = apply_decrease(state, ctx(), "alice", 1 * U, True)
        account = t.state.account("alice")
        assert account.is_flat()
        assert account.long_principal == 0
        assert t.state.long_open_interest == 0
        assert t.state.long_principal == 0

    def test_partial_close_is_proportional(self):
        state = opened()
        t, _ = apply_decrease(state, ctx(price=11_000), "alice", U // 4, True)
        account = t.state.account("alice")
        assert account.long_open_interest == 7_500 * U
        assert account.long_open_interest_in_tokens == 3 * U // 4
        assert account.long_principal == 7_500 * U
        assert t.events[0] == PositionDecreased(
            trader="alice", token_amount=U // 4, realized_pnl=250 * U,
            realized_fee=0, is_long=True,
        )

    def test_too_many_tokens(self):
        with pytest.raises(NotEnoughTokensInPosition):
            apply_decrease(opened(), ctx(), "alice", U + 1, True)

    def test_wrong_side(self):
        with pytest.raises(NotEnoughTokensInPosition):
            apply_decrease(opened(), ctx(), "alice", 1, False)

    def test_loss_beyond_collateral_is_fatal(self):
        state = opened()
        with pytest.raises(NotEnoughCollateral):
            apply_decrease(state, ctx(price=8_000), "alice", 1 * U, True)

    def test_liquidation_mode_caps_loss(self):
        state = opened()
        t, bad_debt = apply_decrease(state, ctx(price=8_000), "alice", 1 * U, True, liquidation=True)
        assert bad_debt == 1_000 * U
        assert t.state.account("alice").collateral == 0
        assert t.state.deposited_liquidity == 1_001_000 * U

    def test_profit_larger_than_pool_underflows(self):
        state = opened(deposited=10_000 * U)
        with pytest.raises(ArithmeticUnderflow):
            apply_decrease(state, ctx(price=30_000), "alice", 1 * U, True)

    def test_voluntary_partial_close_rechecks_leverage(self):
        state = opened(notional=14_000 * U)
        # at 9,400 equity is 160 on 14,000 notional; closing a sliver leaves it far above 15x
        with pytest.raises(LeverageExceeded):
            apply_decrease(state, ctx(price=9_400), "alice", U // 100, True)

    def test_short_profit(self):
        state = opened(is_long=False)
        t, _ = apply_decrease(state, ctx(price=9_000), "alice", 1 * U, False)
        assert t.events[0].realized_pnl == 1_000 * U


class TestLiquidity:

    def test_deposit(self):
        t = apply_deposit_liquidity(base_state(), ctx(), "lp", 100 * U)
        assert t.state.deposited_liquidity == 1_000_100 * U
        assert t.events == (
            LiquidityUpdated(provider="lp", delta=100 * U, deposited_liquidity=1_000_100 * U),
        )
        assert t.moves[0].spender == "market"

    def test_withdraw_to_receiver(self):
        t = apply_withdraw_liquidity(base_state(), ctx(), "lp", 100 * U, receiver="carol")
        assert t.moves[0].dest == "carol"
        assert t.events[0].delta == -100 * U

    def test_withdraw_more_than_deposited(self):
        with pytest.raises(NotEnoughLiquidity):
            apply_withdraw_liquidity(base_state(deposited=10), ctx(), "lp", 11)

    def test_withdraw_checks_utilization(self):
        state = opened(deposited=20_000 * U)
        apply_withdraw_liquidity(state, ctx(), "lp", 10_000 * U)
        with pytest.raises(UtilizationExceeded):
            apply_withdraw_liquidity(state, ctx(), "lp", 10_000 * U + 1)
