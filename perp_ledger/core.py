"""
Core types for the perpetual-futures position ledger.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point scales and default risk parameters
2. MarketConfig: immutable market term sheet
3. Immutable state: TraderAccount and LedgerState (copy-on-write snapshots)
4. Exceptions: LedgerError and the typed error taxonomy
5. Protocols: MarketView for read-only access to a position ledger

Nothing in this module mutates ledger state. The PositionLedger in ledger.py
is the only object that swaps one LedgerState snapshot for the next.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Scale of every monetary and price quantity.
PRECISION = 10 ** 18

# Scale of the borrowing index.
BORROWING_INDEX_PRECISION = 10 ** 10

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Seconds needed to accrue a 100% borrowing fee on a unit of principal.
# Ten years to 100% is a flat 10% per year.
BORROWING_RATE_SECONDS = 10 * SECONDS_PER_YEAR

MAX_LEVERAGE = 15
MAX_UTILIZATION_PERCENTAGE = 100
LIQUIDATION_FEE_PERCENTAGE = 50

# Bounds of the integer domains the ledger works in.
MAX_UINT256 = 2 ** 256 - 1
MIN_INT256 = -(2 ** 255)
MAX_INT256 = 2 ** 255 - 1

# Wallet holding pooled liquidity and trader margin in the asset ledger.
MARKET_WALLET = "market"

# Reserved wallet for issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


# --- input validation -------------------------------------------------------

class InvalidAmount(LedgerError, ValueError):
    """Raised when an amount is zero, negative, or not an integer."""
    pass


class NotCallerOwned(LedgerError):
    """Raised when a caller acts on a position it does not own."""
    pass


class SelfLiquidationForbidden(LedgerError):
    """Raised when a trader attempts to liquidate itself."""
    pass


# --- risk policy --------------------------------------------------------------

class RiskPolicyViolation(LedgerError):
    """Base for leverage and utilization rejections."""
    pass


class LeverageExceeded(RiskPolicyViolation):
    """Raised when an operation would leave a trader at or above max leverage."""
    pass


class UtilizationExceeded(RiskPolicyViolation):
    """Raised when open exposure would exceed what the pool can cover."""
    pass


class PositionNotLiquidatable(RiskPolicyViolation):
    """Raised when liquidating a trader whose leverage is still valid."""
    pass


# --- invariants -----------------------------------------------------------------

class InvariantViolation(LedgerError):
    """Base for attempts to take more than is available. Never clamped."""
    pass


class NotEnoughCollateral(InvariantViolation):
    """Raised when a withdrawal, loss or fee exceeds the trader's collateral."""
    pass


class NotEnoughTokensInPosition(InvariantViolation):
    """Raised when decreasing more tokens than the position holds."""
    pass


class NotEnoughLiquidity(InvariantViolation):
    """Raised when a withdrawal exceeds deposited liquidity."""
    pass


class NotEnoughShares(InvariantViolation):
    """Raised when a provider burns more vault shares than it holds."""
    pass


class ArithmeticFault(InvariantViolation):
    """Raised when a fixed-point value leaves its integer domain."""
    pass


class ArithmeticUnderflow(ArithmeticFault):
    pass


class ArithmeticOverflow(ArithmeticFault):
    pass


# --- external collaborators -------------------------------------------------------

class CollaboratorError(LedgerError):
    """Base for failures reported by the oracle or the asset transfer layer."""
    pass


class InsufficientTransfer(CollaboratorError):
    """Raised when the asset ledger rejects a pull or push."""
    pass


class OracleError(CollaboratorError):
    pass


class PriceUnavailable(OracleError):
    """Raised when the oracle has no price for an asset."""
    pass


class StalePrice(OracleError):
    """Raised when a quote is older than the market's max price age."""
    pass


class UnsupportedPriceFeed(OracleError):
    """Raised when the two feeds declare different decimals."""
    pass


# ============================================================================
# MARKET CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class MarketConfig:
    """
    Immutable term sheet for a market - set at creation, never changes.

    Attributes:
        collateral_asset: Symbol of the asset posted as margin and pooled by LPs
        reference_asset: Symbol of the independently priced asset traded
        market_wallet: Asset-ledger wallet that custodies liquidity and margin
        max_leverage: Leverage cap (whole multiple, exclusive)
        max_utilization_percentage: Share of pooled liquidity open exposure may use
        liquidation_fee_percentage: Share of remaining collateral paid to the liquidator
        borrowing_rate_seconds: Seconds to accrue a 100% borrowing fee
        max_price_age: Reject quotes older than this (None disables the check)
    """
    collateral_asset: str = "USDC"
    reference_asset: str = "WBTC"
    market_wallet: str = MARKET_WALLET
    max_leverage: int = MAX_LEVERAGE
    max_utilization_percentage: int = MAX_UTILIZATION_PERCENTAGE
    liquidation_fee_percentage: int = LIQUIDATION_FEE_PERCENTAGE
    borrowing_rate_seconds: int = BORROWING_RATE_SECONDS
    max_price_age: Optional[timedelta] = None

    def __post_init__(self):
        if not self.collateral_asset or not self.collateral_asset.strip():
            raise ValueError("collateral_asset cannot be empty")
        if not self.reference_asset or not self.reference_asset.strip():
            raise ValueError("reference_asset cannot be empty")
        if self.collateral_asset == self.reference_asset:
            raise ValueError("collateral_asset and reference_asset must be different")
        if not self.market_wallet or not self.market_wallet.strip():
            raise ValueError("market_wallet cannot be empty")
        if self.max_leverage <= 0:
            raise ValueError(f"max_leverage must be positive, got {self.max_leverage}")
        if not 0 < self.max_utilization_percentage <= 100:
            raise ValueError(
                f"max_utilization_percentage must be in (0, 100], got {self.max_utilization_percentage}"
            )
        if not 0 <= self.liquidation_fee_percentage <= 100:
            raise ValueError(
                f"liquidation_fee_percentage must be in [0, 100], got {self.liquidation_fee_percentage}"
            )
        if self.borrowing_rate_seconds <= 0:
            raise ValueError(
                f"borrowing_rate_seconds must be positive, got {self.borrowing_rate_seconds}"
            )
        if self.max_price_age is not None and self.max_price_age <= timedelta(0):
            raise ValueError(f"max_price_age must be positive, got {self.max_price_age}")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> MarketConfig:
        """
        Build a config from a plain mapping (e.g. parsed JSON).

        Missing keys fall back to the defaults. max_price_age may be given
        as a timedelta or as a number of seconds.

        Raises:
            ValueError: On unknown keys or out-of-range values.
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown market config keys: {sorted(unknown)}")
        values = dict(raw)
        age = values.get('max_price_age')
        if age is not None and not isinstance(age, timedelta):
            values['max_price_age'] = timedelta(seconds=int(age))
        for key in ('max_leverage', 'max_utilization_percentage',
                    'liquidation_fee_percentage', 'borrowing_rate_seconds'):
            if key in values:
                values[key] = int(values[key])
        return cls(**values)


# ============================================================================
# LEDGER STATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class TraderAccount:
    """
    Immutable per-trader balances.

    Accounts are created lazily on first use and never deleted. An account
    with every field at zero is the terminal state after a full close or
    liquidation.
    """
    collateral: int = 0
    long_open_interest: int = 0
    short_open_interest: int = 0
    long_open_interest_in_tokens: int = 0
    short_open_interest_in_tokens: int = 0
    long_principal: int = 0
    short_principal: int = 0

    def open_interest(self, is_long: Optional[bool] = None) -> int:
        """Notional open interest on one side, or both when is_long is None."""
        if is_long is None:
            return self.long_open_interest + self.short_open_interest
        return self.long_open_interest if is_long else self.short_open_interest

    def open_interest_in_tokens(self, is_long: bool) -> int:
        return self.long_open_interest_in_tokens if is_long else self.short_open_interest_in_tokens

    def principal(self, is_long: bool) -> int:
        return self.long_principal if is_long else self.short_principal

    def is_flat(self) -> bool:
        """True when the account has no open exposure on either side."""
        return (
            self.long_open_interest_in_tokens == 0
            and self.short_open_interest_in_tokens == 0
            and self.long_open_interest == 0
            and self.short_open_interest == 0
        )


EMPTY_ACCOUNT = TraderAccount()

# Per-trader fields that must sum to the aggregate field of the same name.
POSITION_FIELDS = (
    'long_open_interest',
    'short_open_interest',
    'long_open_interest_in_tokens',
    'short_open_interest_in_tokens',
    'long_principal',
    'short_principal',
)


@dataclass(frozen=True, slots=True)
class LedgerState:
    """
    Immutable snapshot of the whole ledger.

    Every mutating operation builds a new snapshot with dataclasses.replace()
    and the PositionLedger swaps it in only after every check has passed.
    """
    genesis_time: datetime
    deposited_liquidity: int = 0
    total_collateral: int = 0
    long_open_interest: int = 0
    short_open_interest: int = 0
    long_open_interest_in_tokens: int = 0
    short_open_interest_in_tokens: int = 0
    long_principal: int = 0
    short_principal: int = 0
    traders: Mapping[str, TraderAccount] = field(default_factory=dict)

    def account(self, trader: str) -> TraderAccount:
        """Return the trader's account, or an empty one if never touched."""
        return self.traders.get(trader, EMPTY_ACCOUNT)

    def open_interest(self, is_long: Optional[bool] = None) -> int:
        if is_long is None:
            return self.long_open_interest + self.short_open_interest
        return self.long_open_interest if is_long else self.short_open_interest

    def open_interest_in_tokens(self, is_long: bool) -> int:
        return self.long_open_interest_in_tokens if is_long else self.short_open_interest_in_tokens

    def principal(self, is_long: bool) -> int:
        return self.long_principal if is_long else self.short_principal


def side_fields(is_long: bool) -> Dict[str, str]:
    """Map generic field roles to the attribute names for one side."""
    prefix = 'long' if is_long else 'short'
    return {
        'notional': f'{prefix}_open_interest',
        'tokens': f'{prefix}_open_interest_in_tokens',
        'principal': f'{prefix}_principal',
    }


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class MarketView(Protocol):
    """
    Read-only interface to a position ledger.

    The vault, the liquidation keeper and tests depend on this protocol
    rather than on PositionLedger, so they declare their read-only intent.
    """

    @property
    def current_time(self) -> datetime:
        ...

    @property
    def config(self) -> MarketConfig:
        ...

    @property
    def deposited_liquidity(self) -> int:
        ...

    def total_pnl(self, is_long: Optional[bool] = None) -> int:
        """Aggregate unrealized PnL (signed) at the current price."""
        ...

    def total_borrowing_fee(self, is_long: Optional[bool] = None) -> int:
        """Aggregate accrued borrowing fee at the current index."""
        ...

    def is_liquidatable(self, trader: str) -> bool:
        ...

    def list_traders(self) -> List[str]:
        ...
