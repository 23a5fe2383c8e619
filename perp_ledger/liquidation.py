"""
liquidation.py - Forced close of over-leveraged traders

A trader whose current leverage is no longer valid can be liquidated by any
other participant. Both sides are closed in full (long first) in liquidation
mode, then whatever collateral remains is split: the liquidation fee goes to
the caller and the rest back to the trader.
"""

from __future__ import annotations
from dataclasses import replace
from typing import List

from .core import (
    LedgerState, MarketView,
    SelfLiquidationForbidden, PositionNotLiquidatable,
)
from .asset_ledger import Move
from .events import Liquidated
from .fixed_point import checked_sub, mul_div
from .positions import MarketContext, Transition, apply_decrease
from .risk import is_leverage_valid


def is_liquidatable(state: LedgerState, ctx: MarketContext, trader: str) -> bool:
    """True when the trader's leverage on its current open interest is invalid."""
    account = state.account(trader)
    return not is_leverage_valid(
        account, account.open_interest(), ctx.price_ratio, ctx.index, ctx.config.max_leverage
    )


def compute_liquidation(state: LedgerState, ctx: MarketContext, caller: str, target: str) -> Transition:
    """
    Build the full liquidation of target as one transition.

    Emits one PositionDecreased per closed side followed by Liquidated.

    Raises:
        SelfLiquidationForbidden: If caller == target
        PositionNotLiquidatable: If target's leverage is still valid
        UtilizationExceeded: If a close leaves the pool over-utilized
    """
    if caller == target:
        raise SelfLiquidationForbidden(f"{caller} cannot liquidate itself")
    if not is_liquidatable(state, ctx, target):
        raise PositionNotLiquidatable(f"{target} is within leverage limits")

    transition = Transition(state=state)
    bad_debt = 0
    size_in_tokens = 0
    for is_long in (True, False):
        tokens = transition.state.account(target).open_interest_in_tokens(is_long)
        if tokens == 0:
            continue
        step, debt = apply_decrease(transition.state, ctx, target, tokens, is_long, liquidation=True)
        transition = transition.then(step)
        bad_debt += debt
        size_in_tokens += tokens

    after = transition.state
    account = after.account(target)
    remaining = account.collateral
    fee = mul_div(remaining, ctx.config.liquidation_fee_percentage, 100)
    refund = remaining - fee

    traders = dict(after.traders)
    traders[target] = replace(account, collateral=0)
    final_state = replace(
        after,
        traders=traders,
        total_collateral=checked_sub(after.total_collateral, remaining, "total collateral"),
    )

    market = ctx.config.market_wallet
    moves = []
    if fee > 0:
        moves.append(Move(fee, market, caller, f"liquidation_fee_{target}"))
    if refund > 0:
        moves.append(Move(refund, market, target, f"liquidation_refund_{target}"))

    event = Liquidated(
        trader=target,
        caller=caller,
        fee=fee,
        size_in_tokens=size_in_tokens,
        bad_debt=bad_debt,
    )
    return transition.then(Transition(state=final_state, moves=tuple(moves), events=(event,)))


def find_liquidatable(view: MarketView) -> List[str]:
    """Traders that can be liquidated right now, in sorted order."""
    return sorted(trader for trader in view.list_traders() if view.is_liquidatable(trader))
