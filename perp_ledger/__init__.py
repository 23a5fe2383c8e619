"""
perp_ledger - Leveraged Perpetual-Futures Position Ledger

Tracks trader collateral, long/short open interest and a shared liquidity
pool for a single collateral/reference market, with borrowing fees,
leverage and utilization limits, and liquidation.

Usage:
    from perp_ledger import (
        AssetLedger, MarketConfig, PositionLedger, StaticPriceOracle, UNLIMITED_ALLOWANCE,
    )

    assets = AssetLedger("USDC")
    for wallet in ("lp", "alice"):
        assets.register_wallet(wallet)
        assets.issue(wallet, 1_000_000 * 10**18)
        assets.approve(wallet, "market", UNLIMITED_ALLOWANCE)

    oracle = StaticPriceOracle({"USDC": 1 * 10**8, "WBTC": 10_000 * 10**8})
    ledger = PositionLedger("btc-perp", oracle, assets, MarketConfig())

    ledger.deposit_liquidity("lp", 500_000 * 10**18)
    ledger.add_collateral("alice", 1_000 * 10**18)
    ledger.open_or_increase_position("alice", 5_000 * 10**18, is_long=True)
"""

# Core types
from .core import (
    PRECISION,
    BORROWING_INDEX_PRECISION,
    SECONDS_PER_YEAR,
    BORROWING_RATE_SECONDS,
    MAX_LEVERAGE,
    MAX_UTILIZATION_PERCENTAGE,
    LIQUIDATION_FEE_PERCENTAGE,
    MAX_UINT256,
    MARKET_WALLET,
    SYSTEM_WALLET,
    MarketConfig,
    TraderAccount,
    LedgerState,
    MarketView,
    LedgerError,
    InvalidAmount,
    NotCallerOwned,
    SelfLiquidationForbidden,
    RiskPolicyViolation,
    LeverageExceeded,
    UtilizationExceeded,
    PositionNotLiquidatable,
    InvariantViolation,
    NotEnoughCollateral,
    NotEnoughTokensInPosition,
    NotEnoughLiquidity,
    NotEnoughShares,
    ArithmeticFault,
    ArithmeticUnderflow,
    ArithmeticOverflow,
    CollaboratorError,
    InsufficientTransfer,
    OracleError,
    PriceUnavailable,
    StalePrice,
    UnsupportedPriceFeed,
)

# Asset transfers
from .asset_ledger import (
    AssetLedger,
    AssetTransaction,
    Move,
    ExecuteResult,
    UNLIMITED_ALLOWANCE,
)

# Borrowing index
from .borrowing import (
    BorrowingIndexClock,
    calculate_borrowing_index,
    calculate_principal,
    calculate_present_value,
    calculate_accrued_fee,
)

# Pricing
from .pricing_source import (
    PriceQuote,
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
    PricePair,
    load_price_pair,
    reference_price_in_collateral,
    collateral_price_in_reference,
)

# Risk
from .risk import (
    calculate_pnl,
    calculate_fee,
    calculate_equity,
    calculate_leverage,
    is_leverage_valid,
    is_utilization_valid,
)

# Events
from .events import (
    LedgerEvent,
    LiquidityUpdated,
    CollateralAdded,
    CollateralDecreased,
    PositionAdded,
    PositionDecreased,
    Liquidated,
)

# Transitions
from .positions import MarketContext, Transition
from .liquidation import compute_liquidation, find_liquidatable

# Stateful components
from .ledger import PositionLedger
from .vault import LiquidityPoolVault, calculate_net_asset_value
from .engine import MarketEngine

# Simulation
from .simulation import generate_price_path, price_path_series

__all__ = [
    # Constants
    'PRECISION', 'BORROWING_INDEX_PRECISION', 'SECONDS_PER_YEAR', 'BORROWING_RATE_SECONDS',
    'MAX_LEVERAGE', 'MAX_UTILIZATION_PERCENTAGE', 'LIQUIDATION_FEE_PERCENTAGE',
    'MAX_UINT256', 'MARKET_WALLET', 'SYSTEM_WALLET', 'UNLIMITED_ALLOWANCE',
    # Config and state
    'MarketConfig', 'TraderAccount', 'LedgerState', 'MarketView',
    # Exceptions
    'LedgerError', 'InvalidAmount', 'NotCallerOwned', 'SelfLiquidationForbidden',
    'RiskPolicyViolation', 'LeverageExceeded', 'UtilizationExceeded', 'PositionNotLiquidatable',
    'InvariantViolation', 'NotEnoughCollateral', 'NotEnoughTokensInPosition',
    'NotEnoughLiquidity', 'NotEnoughShares',
    'ArithmeticFault', 'ArithmeticUnderflow', 'ArithmeticOverflow',
    'CollaboratorError', 'InsufficientTransfer',
    'OracleError', 'PriceUnavailable', 'StalePrice', 'UnsupportedPriceFeed',
    # Asset transfers
    'AssetLedger', 'AssetTransaction', 'Move', 'ExecuteResult',
    # Borrowing
    'BorrowingIndexClock', 'calculate_borrowing_index', 'calculate_principal',
    'calculate_present_value', 'calculate_accrued_fee',
    # Pricing
    'PriceQuote', 'PriceOracle', 'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'PricePair', 'load_price_pair', 'reference_price_in_collateral',
    'collateral_price_in_reference',
    # Risk
    'calculate_pnl', 'calculate_fee', 'calculate_equity', 'calculate_leverage',
    'is_leverage_valid', 'is_utilization_valid',
    # Events
    'LedgerEvent', 'LiquidityUpdated', 'CollateralAdded', 'CollateralDecreased',
    'PositionAdded', 'PositionDecreased', 'Liquidated',
    # Transitions
    'MarketContext', 'Transition', 'compute_liquidation', 'find_liquidatable',
    # Stateful components
    'PositionLedger', 'LiquidityPoolVault', 'calculate_net_asset_value', 'MarketEngine',
    # Simulation
    'generate_price_path', 'price_path_series',
]

__version__ = '1.0.0'
