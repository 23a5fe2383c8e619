"""
test_core.py - Unit tests for core data structures

Tests:
- MarketConfig: defaults, validation, from_mapping
- TraderAccount / LedgerState: side accessors, immutability
- Events: stamping and string form
- Exception taxonomy
"""

import pytest
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta

from perp_ledger import (
    MarketConfig, TraderAccount, LedgerState, MarketView,
    PositionAdded, Liquidated,
    LedgerError, InvalidAmount, RiskPolicyViolation, LeverageExceeded, UtilizationExceeded,
    PositionNotLiquidatable, InvariantViolation, NotEnoughCollateral, ArithmeticFault,
    ArithmeticUnderflow, ArithmeticOverflow, CollaboratorError, InsufficientTransfer,
    OracleError, PriceUnavailable, StalePrice, UnsupportedPriceFeed,
    MAX_LEVERAGE, MAX_UTILIZATION_PERCENTAGE, LIQUIDATION_FEE_PERCENTAGE, BORROWING_RATE_SECONDS,
)
from perp_ledger.core import side_fields
from tests.fake_view import FakeMarketView


class TestMarketConfig:

    def test_defaults(self):
        config = MarketConfig()
        assert config.max_leverage == MAX_LEVERAGE == 15
        assert config.max_utilization_percentage == MAX_UTILIZATION_PERCENTAGE == 100
        assert config.liquidation_fee_percentage == LIQUIDATION_FEE_PERCENTAGE == 50
        assert config.borrowing_rate_seconds == BORROWING_RATE_SECONDS == 315_360_000
        assert config.max_price_age is None

    @pytest.mark.parametrize("kwargs", [
        dict(collateral_asset=""),
        dict(reference_asset="  "),
        dict(collateral_asset="WBTC", reference_asset="WBTC"),
        dict(market_wallet=""),
        dict(max_leverage=0),
        dict(max_utilization_percentage=0),
        dict(max_utilization_percentage=101),
        dict(liquidation_fee_percentage=-1),
        dict(liquidation_fee_percentage=101),
        dict(borrowing_rate_seconds=0),
        dict(max_price_age=timedelta(0)),
    ])
    def test_rejects_invalid_terms(self, kwargs):
        with pytest.raises(ValueError):
            MarketConfig(**kwargs)

    def test_is_frozen(self):
        config = MarketConfig()
        with pytest.raises(FrozenInstanceError):
            config.max_leverage = 20

    def test_from_mapping(self):
        config = MarketConfig.from_mapping({
            'collateral_asset': 'DAI',
            'reference_asset': 'WETH',
            'max_leverage': '10',
            'max_price_age': 3600,
        })
        assert config.collateral_asset == 'DAI'
        assert config.max_leverage == 10
        assert config.max_price_age == timedelta(hours=1)
        assert config.liquidation_fee_percentage == 50

    def test_from_mapping_keeps_timedelta(self):
        config = MarketConfig.from_mapping({'max_price_age': timedelta(minutes=5)})
        assert config.max_price_age == timedelta(minutes=5)

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="max_levrage"):
            MarketConfig.from_mapping({'max_levrage': 10})


class TestTraderAccount:

    def test_side_accessors(self):
        account = TraderAccount(
            collateral=5,
            long_open_interest=10, short_open_interest=20,
            long_open_interest_in_tokens=1, short_open_interest_in_tokens=2,
            long_principal=9, short_principal=19,
        )
        assert account.open_interest() == 30
        assert account.open_interest(True) == 10
        assert account.open_interest(False) == 20
        assert account.open_interest_in_tokens(False) == 2
        assert account.principal(True) == 9
        assert not account.is_flat()

    def test_collateral_only_account_is_flat(self):
        assert TraderAccount(collateral=100).is_flat()

    def test_side_fields(self):
        assert side_fields(True) == {
            'notional': 'long_open_interest',
            'tokens': 'long_open_interest_in_tokens',
            'principal': 'long_principal',
        }
        assert side_fields(False)['tokens'] == 'short_open_interest_in_tokens'


class TestLedgerState:

    def test_untouched_trader_gets_empty_account(self):
        state = LedgerState(genesis_time=datetime(2025, 1, 1))
        assert state.account("nobody") == TraderAccount()
        assert state.open_interest() == 0

    def test_aggregate_accessors(self):
        state = LedgerState(
            genesis_time=datetime(2025, 1, 1),
            long_open_interest=3, short_open_interest=4,
            long_principal=2, short_open_interest_in_tokens=7,
        )
        assert state.open_interest() == 7
        assert state.principal(True) == 2
        assert state.open_interest_in_tokens(False) == 7


class TestEvents:

    def test_stamped_copies(self):
        event = PositionAdded(trader="alice", amount=100, is_long=True)
        ts = datetime(2025, 1, 2)
        stamped = event.stamped(ts, 7)
        assert stamped.timestamp == ts
        assert stamped.sequence_number == 7
        assert event.sequence_number == -1
        assert stamped.trader == "alice"

    def test_str_omits_bookkeeping(self):
        event = Liquidated(trader="alice", caller="keeper", fee=5, size_in_tokens=1).stamped(
            datetime(2025, 1, 1), 3
        )
        assert str(event) == "Liquidated(trader=alice, caller=keeper, fee=5, size_in_tokens=1, bad_debt=0)"


class TestExceptions:

    @pytest.mark.parametrize("exc, parent", [
        (InvalidAmount, LedgerError),
        (InvalidAmount, ValueError),
        (LeverageExceeded, RiskPolicyViolation),
        (UtilizationExceeded, RiskPolicyViolation),
        (PositionNotLiquidatable, RiskPolicyViolation),
        (NotEnoughCollateral, InvariantViolation),
        (ArithmeticUnderflow, ArithmeticFault),
        (ArithmeticOverflow, ArithmeticFault),
        (ArithmeticFault, InvariantViolation),
        (InsufficientTransfer, CollaboratorError),
        (PriceUnavailable, OracleError),
        (StalePrice, OracleError),
        (UnsupportedPriceFeed, OracleError),
        (OracleError, CollaboratorError),
        (CollaboratorError, LedgerError),
    ])
    def test_hierarchy(self, exc, parent):
        assert issubclass(exc, parent)


def test_fake_view_satisfies_market_view():
    assert isinstance(FakeMarketView(), MarketView)
