"""
vault.py - Share accounting for liquidity providers

The vault sits in front of a PositionLedger's liquidity pool and issues
shares against the pool's net asset value:

    nav = max(0, deposited_liquidity - aggregate_pnl + aggregate_fee)

Trader profit is a liability of the pool and accrued borrowing fees are
income, so shares gain value when traders lose or pay fees and lose value
when traders win.

Shares are minted or burned only after the ledger side of a deposit or
withdrawal has succeeded.
"""

from __future__ import annotations
from typing import Dict, Optional

from .core import MarketView, InvalidAmount, NotEnoughShares
from .fixed_point import mul_div, nonzero, require_positive_amount
from .ledger import PositionLedger


def calculate_net_asset_value(view: MarketView) -> int:
    """Pool value after marking open positions and accrued fees."""
    nav = view.deposited_liquidity - view.total_pnl() + view.total_borrowing_fee()
    return max(0, nav)


class LiquidityPoolVault:
    """
    Share ledger over a market's liquidity pool.

    Not thread-safe; share balances are updated after the position ledger
    call returns.

    Example:
        vault = LiquidityPoolVault(ledger)
        shares = vault.deposit("lp", 1_000_000 * 10**18)
        vault.redeem("lp", shares)
    """

    def __init__(self, ledger: PositionLedger, name: str = "vault"):
        self.ledger = ledger
        self.name = name
        self.shares: Dict[str, int] = {}
        self._total_supply: int = 0
        self.verbose = ledger.verbose

    # ========================================================================
    # READ-ONLY
    # ========================================================================

    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, provider: str) -> int:
        return self.shares.get(provider, 0)

    def total_managed_assets(self) -> int:
        return calculate_net_asset_value(self.ledger)

    def convert_to_shares(self, assets: int) -> int:
        """Shares worth assets at the current NAV (floored)."""
        if self._total_supply == 0:
            return assets
        return mul_div(assets, self._total_supply, nonzero(self.total_managed_assets()))

    def convert_to_assets(self, shares: int) -> int:
        """Assets worth shares at the current NAV (floored)."""
        if self._total_supply == 0:
            return shares
        return mul_div(shares, self.total_managed_assets(), self._total_supply)

    def preview_deposit(self, assets: int) -> int:
        return self.convert_to_shares(assets)

    def preview_withdraw(self, assets: int) -> int:
        """Shares burned to withdraw assets: the share equivalent rounded up."""
        if self._total_supply == 0:
            return assets
        nav = nonzero(self.total_managed_assets())
        return -(-assets * self._total_supply // nav)

    def preview_redeem(self, shares: int) -> int:
        return self.convert_to_assets(shares)

    def max_withdraw(self, provider: str) -> int:
        """Assets provider could withdraw now, bounded by deposited liquidity."""
        return min(self.convert_to_assets(self.balance_of(provider)), self.ledger.deposited_liquidity)

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def deposit(self, provider: str, assets: int) -> int:
        """
        Deposit assets into the pool and mint shares to provider.

        Returns:
            Shares minted

        Raises:
            InvalidAmount: If assets is not positive or would mint no shares
        """
        require_positive_amount(assets, "assets")
        shares = self.preview_deposit(assets)
        if shares == 0:
            raise InvalidAmount(f"deposit of {assets} mints no shares")
        self.ledger.deposit_liquidity(provider, assets)
        self._mint(provider, shares)
        return shares

    def withdraw(self, provider: str, assets: int, receiver: Optional[str] = None) -> int:
        """
        Withdraw exactly assets from the pool, burning provider's shares.

        Returns:
            Shares burned

        Raises:
            NotEnoughShares: If provider holds fewer shares than required
        """
        require_positive_amount(assets, "assets")
        shares = self.preview_withdraw(assets)
        held = self.balance_of(provider)
        if shares > held:
            raise NotEnoughShares(f"{provider} needs {shares} shares, holds {held}")
        self.ledger.withdraw_liquidity(provider, assets, receiver)
        self._burn(provider, shares)
        return shares

    def redeem(self, provider: str, shares: int, receiver: Optional[str] = None) -> int:
        """
        Burn exactly shares and withdraw their asset value.

        Returns:
            Assets withdrawn

        Raises:
            NotEnoughShares: If provider holds fewer than shares
            InvalidAmount: If the shares are worth nothing
        """
        require_positive_amount(shares, "shares")
        held = self.balance_of(provider)
        if shares > held:
            raise NotEnoughShares(f"{provider} cannot redeem {shares} shares, holds {held}")
        assets = self.preview_redeem(shares)
        if assets == 0:
            raise InvalidAmount(f"{shares} shares redeem for nothing")
        self.ledger.withdraw_liquidity(provider, assets, receiver)
        self._burn(provider, shares)
        return assets

    def _mint(self, provider: str, shares: int) -> None:
        self.shares[provider] = self.shares.get(provider, 0) + shares
        self._total_supply += shares
        if self.verbose:
            print(f"✓ MINTED: {shares} {self.name} shares to {provider}")

    def _burn(self, provider: str, shares: int) -> None:
        self.shares[provider] -= shares
        self._total_supply -= shares
        if self.verbose:
            print(f"✓ BURNED: {shares} {self.name} shares from {provider}")

    def __repr__(self) -> str:
        return f"LiquidityPoolVault({self.name}, supply={self._total_supply}, providers={len(self.shares)})"
