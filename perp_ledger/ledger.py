"""
ledger.py - Stateful perpetual-futures position ledger

The PositionLedger is the only object in the package that mutates market
state. Every operation follows the same path:

    1. validate inputs
    2. read both prices and the borrowing index once (MarketContext)
    3. compute the candidate state, moves and events as a pure Transition
       (risk gates run on the candidate inside that computation)
    4. validate and execute the asset moves as one atomic batch
    5. swap the state snapshot and append the stamped events

A failure at any step raises before step 5, leaving state, asset balances and
the event log exactly as they were.

Key responsibilities:
    - Implements the MarketView protocol for read-only consumers
    - Serializes mutations with a lock; readers see whole snapshots only
    - Tracks logical time, which drives the borrowing index
    - Verifies the sum and custody invariants on demand
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import threading

from .core import (
    MarketConfig, LedgerState, TraderAccount, POSITION_FIELDS, SYSTEM_WALLET,
    LedgerError, NotCallerOwned, InsufficientTransfer,
)
from .asset_ledger import AssetLedger, ExecuteResult
from .borrowing import BorrowingIndexClock
from .events import LedgerEvent
from .fixed_point import require_positive_amount
from .liquidation import compute_liquidation, is_liquidatable as _is_liquidatable
from .positions import (
    MarketContext, Transition,
    apply_add_collateral, apply_decrease_collateral,
    apply_open, apply_decrease,
    apply_deposit_liquidity, apply_withdraw_liquidity,
)
from .pricing_source import (
    PriceOracle, PricePair, load_price_pair,
    reference_price_in_collateral, collateral_price_in_reference,
)
from .risk import (
    calculate_pnl, calculate_fee, calculate_equity, calculate_leverage,
    is_leverage_valid as _is_leverage_valid,
    is_utilization_valid as _is_utilization_valid,
)


class PositionLedger:
    """
    Leveraged long/short positions against a shared liquidity pool.

    Traders post collateral and open notional exposure to the reference
    asset. Liquidity providers fund the pool that pays trader profits and
    collects trader losses and borrowing fees.

    Thread Safety:
        Mutations are serialized by an internal lock. The state is an
        immutable snapshot replaced by a single assignment, so concurrent
        readers never observe a partial update.

    Example:
        assets = AssetLedger("USDC", verbose=False)
        oracle = StaticPriceOracle({"USDC": 1 * 10**8, "WBTC": 10_000 * 10**8})
        ledger = PositionLedger("btc-perp", oracle, assets, MarketConfig())

        ledger.deposit_liquidity("lp", 1_000_000 * 10**18)
        ledger.add_collateral("alice", 1_000 * 10**18)
        ledger.open_or_increase_position("alice", 10_000 * 10**18, is_long=True)
    """

    def __init__(
        self,
        name: str,
        oracle: PriceOracle,
        assets: AssetLedger,
        config: Optional[MarketConfig] = None,
        genesis_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a position ledger.

        Args:
            name: Market identifier
            oracle: Price source for both market assets
            assets: Balance book of the collateral asset
            config: Market parameters (default: MarketConfig())
            genesis_time: Borrowing index origin (default: the asset ledger's time)
            verbose: Print a receipt for every applied or rejected operation

        Raises:
            ValueError: If the asset ledger does not hold the collateral asset
        """
        self.name = name
        self.oracle = oracle
        self.assets = assets
        self.config = config or MarketConfig()
        if assets.symbol != self.config.collateral_asset:
            raise ValueError(
                f"Asset ledger holds {assets.symbol}, market collateral is "
                f"{self.config.collateral_asset}"
            )
        self.verbose = verbose

        genesis = genesis_time or assets.current_time
        self._current_time: datetime = genesis
        self.clock = BorrowingIndexClock(genesis, self.config.borrowing_rate_seconds)
        self._state = LedgerState(genesis_time=genesis)
        self._events: List[LedgerEvent] = []
        self._next_sequence: int = 0
        self._lock = threading.Lock()

        if not assets.is_registered(self.config.market_wallet):
            assets.register_wallet(self.config.market_wallet)

    # ========================================================================
    # MarketView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def state(self) -> LedgerState:
        """Current immutable state snapshot."""
        return self._state

    @property
    def current_time(self) -> datetime:
        return self._current_time

    @property
    def genesis_time(self) -> datetime:
        return self._state.genesis_time

    @property
    def deposited_liquidity(self) -> int:
        return self._state.deposited_liquidity

    @property
    def total_collateral(self) -> int:
        return self._state.total_collateral

    @property
    def event_log(self) -> Tuple[LedgerEvent, ...]:
        """Committed events in sequence order."""
        return tuple(self._events)

    def open_interest(self, is_long: Optional[bool] = None) -> int:
        return self._state.open_interest(is_long)

    def open_interest_in_tokens(self, is_long: bool) -> int:
        return self._state.open_interest_in_tokens(is_long)

    def principal(self, is_long: bool) -> int:
        return self._state.principal(is_long)

    def get_account(self, trader: str) -> TraderAccount:
        return self._state.account(trader)

    def list_traders(self) -> List[str]:
        return sorted(self._state.traders)

    def price_pair(self) -> PricePair:
        return load_price_pair(self.oracle, self.config, self._current_time)

    def price_ref_in_collateral(self) -> int:
        """Price of one reference token in collateral, PRECISION-scaled."""
        return reference_price_in_collateral(self.price_pair())

    def price_collateral_in_ref(self) -> int:
        """Price of one collateral unit in reference tokens, PRECISION-scaled."""
        return collateral_price_in_reference(self.price_pair())

    def borrowing_index(self) -> int:
        return self.clock.index_at(self._current_time)

    def trader_pnl(self, trader: str, is_long: Optional[bool] = None) -> int:
        return calculate_pnl(self._state.account(trader), self.price_ref_in_collateral(), is_long)

    def total_pnl(self, is_long: Optional[bool] = None) -> int:
        return calculate_pnl(self._state, self.price_ref_in_collateral(), is_long)

    def trader_borrowing_fee(self, trader: str, is_long: Optional[bool] = None) -> int:
        return calculate_fee(self._state.account(trader), self.borrowing_index(), is_long)

    def total_borrowing_fee(self, is_long: Optional[bool] = None) -> int:
        return calculate_fee(self._state, self.borrowing_index(), is_long)

    def equity(self, trader: str) -> int:
        ctx = self._context()
        return calculate_equity(self._state.account(trader), ctx.price_ratio, ctx.index)

    def leverage(self, trader: str, additional: int = 0) -> Optional[int]:
        """
        Leverage of the trader's open interest plus additional, PRECISION-scaled.

        Returns None when equity is exhausted while exposure remains.
        """
        account = self._state.account(trader)
        return calculate_leverage(self.equity(trader), account.open_interest() + additional)

    def is_leverage_valid(self, trader: str, additional: int = 0) -> bool:
        ctx = self._context()
        account = self._state.account(trader)
        return _is_leverage_valid(
            account, account.open_interest() + additional,
            ctx.price_ratio, ctx.index, self.config.max_leverage,
        )

    def is_utilization_valid(self) -> bool:
        return _is_utilization_valid(
            self._state, self.price_ref_in_collateral(), self.config.max_utilization_percentage
        )

    def is_liquidatable(self, trader: str) -> bool:
        return _is_liquidatable(self._state, self._context(), trader)

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Verify that per-trader fields sum to the aggregates exactly and that
        the market wallet holds deposited liquidity plus total collateral.

        The custody check assumes the market wallet is used by this market only.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every check holds
            - 'totals': Dict[str, int] - Sum over traders per field
            - 'discrepancies': List[Dict] - field, expected, actual, difference

        Example:
            result = ledger.verify_invariants()
            assert result['valid'], result['discrepancies']
        """
        state = self._state
        accounts = [state.traders[t] for t in sorted(state.traders)]
        discrepancies = []

        totals: Dict[str, int] = {}
        pairs = [(f, f) for f in POSITION_FIELDS] + [('collateral', 'total_collateral')]
        for per_trader, aggregate in pairs:
            total = sum(getattr(a, per_trader) for a in accounts)
            totals[per_trader] = total
            expected = getattr(state, aggregate)
            if total != expected:
                discrepancies.append({
                    'field': aggregate,
                    'expected': expected,
                    'actual': total,
                    'difference': total - expected,
                })

        for trader in sorted(state.traders):
            account = state.traders[trader]
            for per_trader, _ in pairs:
                if getattr(account, per_trader) < 0:
                    discrepancies.append({
                        'field': f'{trader}.{per_trader}',
                        'expected': 0,
                        'actual': getattr(account, per_trader),
                        'difference': getattr(account, per_trader),
                    })

        custody = self.assets.get_balance(self.config.market_wallet)
        owed = state.deposited_liquidity + state.total_collateral
        if custody != owed:
            discrepancies.append({
                'field': 'custody',
                'expected': owed,
                'actual': custody,
                'difference': custody - owed,
            })

        return {
            'valid': len(discrepancies) == 0,
            'totals': totals,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        with self._lock:
            self._current_time = new_time
            if new_time > self.assets.current_time:
                self.assets.advance_time(new_time)

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def add_collateral(self, trader: str, amount: int) -> LedgerEvent:
        """
        Pull amount of collateral asset from trader and credit it as margin.

        Raises:
            InvalidAmount: If amount is not a positive int
            InsufficientTransfer: If the pull is rejected
        """
        def check():
            self._require_participant(trader)
            require_positive_amount(amount)

        return self._apply(
            "add_collateral", check,
            lambda state, ctx: apply_add_collateral(state, ctx, trader, amount),
        )[-1]

    def decrease_collateral(self, trader: str, amount: int) -> LedgerEvent:
        """
        Return amount of margin to trader.

        Raises:
            InvalidAmount: If amount is not a positive int
            NotEnoughCollateral: If amount exceeds the trader's collateral
            LeverageExceeded: If the remaining margin cannot support open interest
        """
        def check():
            self._require_participant(trader)
            require_positive_amount(amount)

        return self._apply(
            "decrease_collateral", check,
            lambda state, ctx: apply_decrease_collateral(state, ctx, trader, amount),
        )[-1]

    def open_or_increase_position(self, trader: str, amount: int, is_long: bool) -> LedgerEvent:
        """
        Open or increase a long or short position by amount of notional.

        Raises:
            InvalidAmount: If amount is not a positive int
            LeverageExceeded: If the trader's equity cannot support the new size
            UtilizationExceeded: If the pool cannot cover the new exposure
        """
        def check():
            self._require_participant(trader)
            require_positive_amount(amount)

        return self._apply(
            "open_or_increase_position", check,
            lambda state, ctx: apply_open(state, ctx, trader, amount, bool(is_long)),
        )[-1]

    def decrease_position(self, caller: str, trader: str, token_amount: int, is_long: bool) -> LedgerEvent:
        """
        Close token_amount tokens of the caller's own position on one side.

        Realized profit is paid from the pool to the trader's wallet; realized
        loss and accrued fee are taken from collateral into the pool.

        Raises:
            NotCallerOwned: If caller is not trader
            InvalidAmount: If token_amount is not a positive int
            NotEnoughTokensInPosition: If token_amount exceeds the side's tokens
            NotEnoughCollateral: If collateral cannot pay the loss or fee
            LeverageExceeded: If a partial close leaves the trader over-leveraged
            UtilizationExceeded: If the close leaves the pool over-utilized
        """
        def check():
            if caller != trader:
                raise NotCallerOwned(f"{caller} cannot decrease a position owned by {trader}")
            self._require_participant(trader)
            require_positive_amount(token_amount, "token_amount")

        def build(state: LedgerState, ctx: MarketContext) -> Transition:
            transition, _ = apply_decrease(state, ctx, trader, token_amount, bool(is_long))
            return transition

        return self._apply("decrease_position", check, build)[-1]

    def liquidate(self, caller: str, target: str) -> LedgerEvent:
        """
        Close every position of an over-leveraged target.

        Returns:
            The Liquidated event (preceded in the log by one
            PositionDecreased per closed side)

        Raises:
            SelfLiquidationForbidden: If caller == target
            PositionNotLiquidatable: If target's leverage is still valid
        """
        def check():
            self._require_participant(caller)
            self._require_participant(target)

        return self._apply(
            "liquidate", check,
            lambda state, ctx: compute_liquidation(state, ctx, caller, target),
        )[-1]

    def deposit_liquidity(self, provider: str, amount: int) -> LedgerEvent:
        """
        Pull amount from provider into the liquidity pool.

        Raises:
            InvalidAmount: If amount is not a positive int
            InsufficientTransfer: If the pull is rejected
        """
        def check():
            self._require_participant(provider)
            require_positive_amount(amount)

        return self._apply(
            "deposit_liquidity", check,
            lambda state, ctx: apply_deposit_liquidity(state, ctx, provider, amount),
        )[-1]

    def withdraw_liquidity(self, provider: str, amount: int, receiver: Optional[str] = None) -> LedgerEvent:
        """
        Push amount from the liquidity pool to receiver (default: provider).

        Raises:
            InvalidAmount: If amount is not a positive int
            NotEnoughLiquidity: If amount exceeds deposited liquidity
            UtilizationExceeded: If the smaller pool no longer covers exposure
        """
        def check():
            self._require_participant(provider)
            if receiver is not None:
                self._require_participant(receiver)
            require_positive_amount(amount)

        return self._apply(
            "withdraw_liquidity", check,
            lambda state, ctx: apply_withdraw_liquidity(state, ctx, provider, amount, receiver),
        )[-1]

    # ========================================================================
    # COMMIT PATH
    # ========================================================================

    def _context(self) -> MarketContext:
        pair = self.price_pair()
        return MarketContext(
            config=self.config,
            price_ratio=reference_price_in_collateral(pair),
            index=self.clock.index_at(self._current_time),
        )

    def _require_participant(self, wallet: str) -> None:
        if not wallet or not wallet.strip():
            raise ValueError("participant cannot be empty")
        if wallet in (self.config.market_wallet, SYSTEM_WALLET):
            raise ValueError(f"{wallet} is a reserved wallet")

    def _apply(
        self,
        operation: str,
        check: Callable[[], None],
        build: Callable[[LedgerState, MarketContext], Transition],
    ) -> Tuple[LedgerEvent, ...]:
        """
        Run one operation through validate, compute, settle, commit.

        Rejections are printed when verbose and always re-raised.
        """
        with self._lock:
            try:
                check()
                ctx = self._context()
                transition = build(self._state, ctx)
                valid, reason = self.assets.validate(transition.moves)
                if not valid:
                    raise InsufficientTransfer(f"{operation}: {reason}")
                result = self.assets.execute(transition.moves, self._current_time)
                if result != ExecuteResult.APPLIED:
                    raise InsufficientTransfer(f"{operation}: asset moves rejected")
            except (LedgerError, ValueError) as e:
                if self.verbose:
                    print(f"✗ REJECTED: {operation}: {e}")
                raise

            self._state = transition.state
            stamped = []
            for event in transition.events:
                stamped.append(event.stamped(self._current_time, self._next_sequence))
                self._next_sequence += 1
            self._events.extend(stamped)

        if self.verbose:
            for event in stamped:
                print(f"✓ APPLIED: {event}")
        return tuple(stamped)

    def __repr__(self) -> str:
        return (
            f"PositionLedger({self.name}, traders={len(self._state.traders)}, "
            f"deposited={self._state.deposited_liquidity}, time={self._current_time})"
        )
