"""
positions.py - Pure position-ledger transitions

Each apply_* function takes the current LedgerState snapshot and a
MarketContext (prices and borrowing index read once at the start of the
operation) and returns a Transition: the candidate next state, the asset
moves that settle it, and the events it emits. Risk gates run on the
candidate inside these functions, so a Transition that comes back is one
the ledger may commit as-is.

Nothing here touches the asset ledger or the event log. The PositionLedger
validates the moves, executes them, and swaps the state in one step.

Settlement of a decrease, in order:
    1. positive PnL leaves deposited liquidity and is pushed to the trader
    2. negative PnL moves from collateral to deposited liquidity
    3. accrued fee moves from collateral to deposited liquidity
    4. notional, tokens and principal shrink by the same deltas on the
       trader and on the aggregate
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from .core import (
    PRECISION, MarketConfig, LedgerState, TraderAccount, side_fields,
    InvalidAmount, NotEnoughCollateral, NotEnoughTokensInPosition, NotEnoughLiquidity,
)
from .asset_ledger import Move
from .borrowing import calculate_principal
from .events import (
    LedgerEvent, LiquidityUpdated, CollateralAdded, CollateralDecreased,
    PositionAdded, PositionDecreased,
)
from .fixed_point import checked_add, checked_sub, mul_div, nonzero, to_uint
from .risk import calculate_fee, calculate_side_pnl, enforce_leverage, enforce_utilization


@dataclass(frozen=True, slots=True)
class MarketContext:
    """Market inputs read once per operation."""
    config: MarketConfig
    price_ratio: int
    index: int


@dataclass(frozen=True, slots=True)
class Transition:
    """Candidate state plus the moves and events that go with it."""
    state: LedgerState
    moves: Tuple[Move, ...] = ()
    events: Tuple[LedgerEvent, ...] = ()

    def then(self, other: Transition) -> Transition:
        """Compose with a transition computed from self.state."""
        return Transition(
            state=other.state,
            moves=self.moves + other.moves,
            events=self.events + other.events,
        )


def _with_account(state: LedgerState, trader: str, account: TraderAccount, **aggregates) -> LedgerState:
    traders = dict(state.traders)
    traders[trader] = account
    return replace(state, traders=traders, **aggregates)


def _enforce_leverage(trader: str, account: TraderAccount, open_interest: int, ctx: MarketContext) -> None:
    enforce_leverage(trader, account, open_interest, ctx.price_ratio, ctx.index,
                     ctx.config.max_leverage)


def _enforce_utilization(state: LedgerState, ctx: MarketContext) -> None:
    enforce_utilization(state, ctx.price_ratio, ctx.config.max_utilization_percentage)


# ============================================================================
# COLLATERAL
# ============================================================================

def apply_add_collateral(state: LedgerState, ctx: MarketContext, trader: str, amount: int) -> Transition:
    """Pull amount from the trader and credit it as collateral. No risk check."""
    account = state.account(trader)
    new_account = replace(account, collateral=checked_add(account.collateral, amount, "collateral"))
    new_state = _with_account(
        state, trader, new_account,
        total_collateral=checked_add(state.total_collateral, amount, "total collateral"),
    )
    market = ctx.config.market_wallet
    return Transition(
        state=new_state,
        moves=(Move(amount, trader, market, f"add_collateral_{trader}", spender=market),),
        events=(CollateralAdded(trader=trader, amount=amount),),
    )


def apply_decrease_collateral(state: LedgerState, ctx: MarketContext, trader: str, amount: int) -> Transition:
    """
    Withdraw collateral to the trader.

    Raises:
        NotEnoughCollateral: If amount exceeds the trader's collateral
        LeverageExceeded: If the remaining equity no longer supports the
            trader's open interest
    """
    account = state.account(trader)
    if amount > account.collateral:
        raise NotEnoughCollateral(
            f"{trader}: cannot withdraw {amount}, collateral is {account.collateral}"
        )
    new_account = replace(account, collateral=account.collateral - amount)
    _enforce_leverage(trader, new_account, new_account.open_interest(), ctx)

    new_state = _with_account(
        state, trader, new_account,
        total_collateral=checked_sub(state.total_collateral, amount, "total collateral"),
    )
    return Transition(
        state=new_state,
        moves=(Move(amount, ctx.config.market_wallet, trader, f"decrease_collateral_{trader}"),),
        events=(CollateralDecreased(trader=trader, amount=amount),),
    )


# ============================================================================
# POSITIONS
# ============================================================================

def apply_open(state: LedgerState, ctx: MarketContext, trader: str, amount: int, is_long: bool) -> Transition:
    """
    Open or increase a position by amount of notional.

    Leverage is checked on the pre-state equity against the enlarged open
    interest; utilization is checked on the candidate state.

    Raises:
        InvalidAmount: If amount buys less than one token unit at the current price
        LeverageExceeded: If the trader's equity cannot support the new size
        UtilizationExceeded: If the pool cannot cover the new exposure
    """
    tokens = to_uint(mul_div(amount, PRECISION, nonzero(ctx.price_ratio)), "tokens")
    # a side with notional but no tokens could never be closed
    if tokens == 0:
        raise InvalidAmount(f"{trader}: notional {amount} is below one token unit at the current price")

    account = state.account(trader)
    _enforce_leverage(trader, account, account.open_interest() + amount, ctx)

    principal = calculate_principal(amount, ctx.index)

    names = side_fields(is_long)
    account_changes: Dict[str, int] = {}
    aggregate_changes: Dict[str, int] = {}
    for role, delta in (('notional', amount), ('tokens', tokens), ('principal', principal)):
        attr = names[role]
        account_changes[attr] = checked_add(getattr(account, attr), delta, attr)
        aggregate_changes[attr] = checked_add(getattr(state, attr), delta, attr)

    new_state = _with_account(state, trader, replace(account, **account_changes), **aggregate_changes)
    _enforce_utilization(new_state, ctx)

    return Transition(
        state=new_state,
        events=(PositionAdded(trader=trader, amount=amount, is_long=is_long),),
    )


def _charge(amount: int, collateral: int, trader: str, what: str, liquidation: bool) -> Tuple[int, int]:
    """
    Take amount out of collateral.

    Returns:
        (charged, shortfall). Outside liquidation the shortfall is always 0.
    """
    if amount <= collateral:
        return amount, 0
    if not liquidation:
        raise NotEnoughCollateral(
            f"{trader}: {what} of {amount} exceeds collateral {collateral}"
        )
    return collateral, amount - collateral


def apply_decrease(
    state: LedgerState,
    ctx: MarketContext,
    trader: str,
    token_amount: int,
    is_long: bool,
    liquidation: bool = False,
) -> Tuple[Transition, int]:
    """
    Close token_amount tokens of one side of a trader's position.

    The closed slice realizes its proportional share of the side's PnL and
    accrued fee (floored). In liquidation mode the leverage re-check is
    skipped and any loss or fee beyond remaining collateral is capped at the
    collateral and returned as bad debt.

    Returns:
        (transition, bad_debt)

    Raises:
        NotEnoughTokensInPosition: If token_amount exceeds the side's tokens
        NotEnoughCollateral: If a voluntary close cannot pay its loss or fee
        ArithmeticUnderflow: If a profit exceeds deposited liquidity
        LeverageExceeded: If a voluntary partial close leaves the trader
            over-leveraged
        UtilizationExceeded: If the candidate state breaks utilization
    """
    account = state.account(trader)
    side_tokens = account.open_interest_in_tokens(is_long)
    if token_amount > side_tokens:
        raise NotEnoughTokensInPosition(
            f"{trader}: cannot close {token_amount} tokens, "
            f"{'long' if is_long else 'short'} side holds {side_tokens}"
        )

    side_pnl = calculate_side_pnl(account, ctx.price_ratio, is_long)
    side_fee = calculate_fee(account, ctx.index, is_long)
    realized_pnl = side_pnl * token_amount // side_tokens
    realized_fee = side_fee * token_amount // side_tokens

    market = ctx.config.market_wallet
    collateral = account.collateral
    deposited = state.deposited_liquidity
    moves = []
    bad_debt = 0

    if realized_pnl > 0:
        deposited = checked_sub(deposited, realized_pnl, "deposited liquidity")
        moves.append(Move(realized_pnl, market, trader, f"realized_pnl_{trader}"))
    elif realized_pnl < 0:
        loss, shortfall = _charge(-realized_pnl, collateral, trader, "loss", liquidation)
        collateral -= loss
        deposited += loss
        bad_debt += shortfall

    if realized_fee > 0:
        fee, shortfall = _charge(realized_fee, collateral, trader, "borrowing fee", liquidation)
        collateral -= fee
        deposited += fee
        bad_debt += shortfall

    names = side_fields(is_long)
    deltas = {
        names['notional']: mul_div(account.open_interest(is_long), token_amount, side_tokens),
        names['tokens']: token_amount,
        names['principal']: mul_div(account.principal(is_long), token_amount, side_tokens),
    }
    account_changes = {
        attr: checked_sub(getattr(account, attr), delta, attr) for attr, delta in deltas.items()
    }
    aggregate_changes = {
        attr: checked_sub(getattr(state, attr), delta, attr) for attr, delta in deltas.items()
    }

    new_account = replace(account, collateral=collateral, **account_changes)
    new_state = _with_account(
        state, trader, new_account,
        deposited_liquidity=to_uint(deposited, "deposited liquidity"),
        total_collateral=checked_sub(
            state.total_collateral, account.collateral - collateral, "total collateral"
        ),
        **aggregate_changes,
    )

    if not liquidation:
        _enforce_leverage(trader, new_account, new_account.open_interest(), ctx)
    _enforce_utilization(new_state, ctx)

    event = PositionDecreased(
        trader=trader,
        token_amount=token_amount,
        realized_pnl=realized_pnl,
        realized_fee=realized_fee,
        is_long=is_long,
    )
    return Transition(state=new_state, moves=tuple(moves), events=(event,)), bad_debt


# ============================================================================
# LIQUIDITY
# ============================================================================

def apply_deposit_liquidity(state: LedgerState, ctx: MarketContext, provider: str, amount: int) -> Transition:
    """Pull amount from the provider into the pool."""
    deposited = checked_add(state.deposited_liquidity, amount, "deposited liquidity")
    market = ctx.config.market_wallet
    return Transition(
        state=replace(state, deposited_liquidity=deposited),
        moves=(Move(amount, provider, market, f"deposit_liquidity_{provider}", spender=market),),
        events=(LiquidityUpdated(provider=provider, delta=amount, deposited_liquidity=deposited),),
    )


def apply_withdraw_liquidity(
    state: LedgerState,
    ctx: MarketContext,
    provider: str,
    amount: int,
    receiver: Optional[str] = None,
) -> Transition:
    """
    Push amount out of the pool to receiver (default: provider).

    Raises:
        NotEnoughLiquidity: If amount exceeds deposited liquidity
        UtilizationExceeded: If the smaller pool no longer covers exposure
    """
    if amount > state.deposited_liquidity:
        raise NotEnoughLiquidity(
            f"cannot withdraw {amount}, deposited liquidity is {state.deposited_liquidity}"
        )
    deposited = state.deposited_liquidity - amount
    new_state = replace(state, deposited_liquidity=deposited)
    _enforce_utilization(new_state, ctx)

    receiver = receiver or provider
    return Transition(
        state=new_state,
        moves=(Move(amount, ctx.config.market_wallet, receiver, f"withdraw_liquidity_{provider}"),),
        events=(LiquidityUpdated(provider=provider, delta=-amount, deposited_liquidity=deposited),),
    )
