"""
Tests for liquidation: eligibility, both-side closes, fee split, bad debt and
the keeper scan.
"""

import pytest
from datetime import timedelta

from perp_ledger import (
    PRECISION as P,
    Liquidated, PositionDecreased,
    SelfLiquidationForbidden, PositionNotLiquidatable, UtilizationExceeded, InvalidAmount,
    find_liquidatable,
)

from tests.builders import GENESIS, units, set_btc_price, snapshot
from tests.fake_view import FakeMarketView


@pytest.fixture
def levered(liquid_ledger):
    """alice: 1,000 collateral, 10,000 long at 10,000 (10x)."""
    liquid_ledger.add_collateral("alice", units(1_000))
    liquid_ledger.open_or_increase_position("alice", units(10_000), True)
    return liquid_ledger


class TestEligibility:

    def test_healthy_position_not_liquidatable(self, levered):
        assert not levered.is_liquidatable("alice")
        before = snapshot(levered)
        with pytest.raises(PositionNotLiquidatable):
            levered.liquidate("keeper", "alice")
        assert snapshot(levered) == before

    def test_self_liquidation_forbidden(self, levered, oracle):
        set_btc_price(oracle, 9_000)
        with pytest.raises(SelfLiquidationForbidden):
            levered.liquidate("alice", "alice")

    def test_becomes_liquidatable_on_price_drop(self, levered, oracle):
        set_btc_price(oracle, 9_500)
        assert levered.leverage("alice") == 20 * P
        assert levered.is_liquidatable("alice")

    def test_becomes_liquidatable_through_fees(self, levered):
        # fee reaches 1,000 after a year and wipes out equity
        levered.advance_time(GENESIS + timedelta(days=365))
        assert levered.leverage("alice") is None
        assert levered.is_liquidatable("alice")

    def test_flat_trader_never_liquidatable(self, liquid_ledger):
        assert not liquid_ledger.is_liquidatable("nobody")


class TestLiquidate:

    def test_fee_split(self, levered, oracle, assets):
        set_btc_price(oracle, 9_500)
        keeper_before = assets.get_balance("keeper")
        alice_before = assets.get_balance("alice")

        event = levered.liquidate("keeper", "alice")

        assert isinstance(event, Liquidated)
        assert event.fee == units(250)
        assert event.size_in_tokens == P
        assert event.bad_debt == 0
        assert assets.get_balance("keeper") == keeper_before + units(250)
        assert assets.get_balance("alice") == alice_before + units(250)
        assert levered.get_account("alice") == type(levered.get_account("alice"))()
        assert levered.deposited_liquidity == units(1_000_500)
        assert levered.verify_invariants()['valid']

    def test_event_order(self, levered, oracle):
        levered.open_or_increase_position("alice", units(1_000), False)
        set_btc_price(oracle, 9_400)
        levered.liquidate("keeper", "alice")
        tail = levered.event_log[-3:]
        assert [type(e) for e in tail] == [PositionDecreased, PositionDecreased, Liquidated]
        assert tail[0].is_long and not tail[1].is_long
        assert tail[2].size_in_tokens == tail[0].token_amount + tail[1].token_amount

    def test_bad_debt_recorded(self, levered, oracle, assets):
        set_btc_price(oracle, 8_000)
        event = levered.liquidate("keeper", "alice")
        assert event.bad_debt == units(1_000)
        assert event.fee == 0
        assert levered.get_account("alice").collateral == 0
        assert levered.deposited_liquidity == units(1_001_000)
        assert levered.verify_invariants()['valid']

    def test_smallest_short_leaves_trader_flat(self, liquid_ledger, oracle):
        liquid_ledger.add_collateral("alice", units(1_000))
        liquid_ledger.open_or_increase_position("alice", units(5_000), True)
        before = snapshot(liquid_ledger)
        with pytest.raises(InvalidAmount):
            liquid_ledger.open_or_increase_position("alice", 9_999, False)
        assert snapshot(liquid_ledger) == before

        liquid_ledger.open_or_increase_position("alice", 10_000, False)
        assert liquid_ledger.get_account("alice").short_open_interest_in_tokens == 1

        set_btc_price(oracle, 8_000)
        liquid_ledger.liquidate("keeper", "alice")
        account = liquid_ledger.get_account("alice")
        assert account.is_flat()
        assert account.long_principal == account.short_principal == 0
        assert liquid_ledger.open_interest() == 0
        assert liquid_ledger.verify_invariants()['valid']

    def test_other_traders_untouched(self, levered, oracle):
        levered.add_collateral("bob", units(5_000))
        levered.open_or_increase_position("bob", units(5_000), False)
        set_btc_price(oracle, 9_500)
        bob_before = levered.get_account("bob")
        levered.liquidate("keeper", "alice")
        assert levered.get_account("bob") == bob_before

    def test_utilization_still_checked(self, make_market):
        ledger, oracle, _ = make_market()
        ledger.deposit_liquidity("lp", units(65_000))
        ledger.add_collateral("bob", units(10_000))
        ledger.open_or_increase_position("bob", units(50_000), True)
        ledger.add_collateral("alice", units(1_100))
        ledger.open_or_increase_position("alice", units(5_000), True)
        ledger.open_or_increase_position("alice", units(10_000), False)
        assert ledger.is_utilization_valid()

        set_btc_price(oracle, 12_000)
        assert ledger.is_liquidatable("alice")
        # closing alice's long pays 1,000 out of the pool while her short
        # and bob's long still count against it
        before = snapshot(ledger)
        with pytest.raises(UtilizationExceeded):
            ledger.liquidate("keeper", "alice")
        assert snapshot(ledger) == before


class TestFindLiquidatable:

    def test_sorted_scan(self):
        view = FakeMarketView(traders=["carol", "alice", "bob"], liquidatable={"carol", "alice"})
        assert find_liquidatable(view) == ["alice", "carol"]

    def test_live_ledger(self, levered, oracle):
        levered.add_collateral("bob", units(1_000))
        levered.open_or_increase_position("bob", units(2_000), True)
        set_btc_price(oracle, 9_500)
        assert find_liquidatable(levered) == ["alice"]
