"""
conftest.py - Shared pytest fixtures for position ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Funded asset ledger and static oracle
- Fresh market, and a market with pooled liquidity
- A factory for markets with custom prices or config
- A vault over the liquid market
"""

import pytest

from perp_ledger import LiquidityPoolVault, MarketConfig

from tests.builders import build_market, units, GENESIS


@pytest.fixture
def genesis():
    return GENESIS


@pytest.fixture
def market_parts():
    """(ledger, oracle, assets) for a fresh market with no liquidity."""
    return build_market()


@pytest.fixture
def ledger(market_parts):
    return market_parts[0]


@pytest.fixture
def oracle(market_parts):
    return market_parts[1]


@pytest.fixture
def assets(market_parts):
    return market_parts[2]


@pytest.fixture
def liquid_ledger(ledger):
    """Market with 1,000,000 USDC of pooled liquidity from lp."""
    ledger.deposit_liquidity("lp", units(1_000_000))
    return ledger


@pytest.fixture
def make_market():
    """Factory for markets with custom prices, config or wallets."""
    def _make(**kwargs):
        return build_market(**kwargs)
    return _make


@pytest.fixture
def vault(ledger):
    return LiquidityPoolVault(ledger)


@pytest.fixture
def default_config():
    return MarketConfig()
