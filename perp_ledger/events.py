"""
events.py - Append-only event records

Operations build events as part of their pure computation. The ledger stamps
each event with the commit time and a monotonically increasing sequence
number, then appends it to the event log. Events are records only; nothing
reads them back for control flow.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True, kw_only=True)
class LedgerEvent:
    timestamp: Optional[datetime] = None
    sequence_number: int = -1

    def stamped(self, timestamp: datetime, sequence_number: int) -> LedgerEvent:
        """Return a copy carrying the commit time and sequence number."""
        return replace(self, timestamp=timestamp, sequence_number=sequence_number)

    def __str__(self) -> str:
        body = ", ".join(
            f"{f.name}={getattr(self, f.name)}"
            for f in fields(self)
            if f.name not in ('timestamp', 'sequence_number')
        )
        return f"{type(self).__name__}({body})"


@dataclass(frozen=True, slots=True, kw_only=True)
class LiquidityUpdated(LedgerEvent):
    """delta is signed: positive on deposit, negative on withdrawal."""
    provider: str
    delta: int
    deposited_liquidity: int


@dataclass(frozen=True, slots=True, kw_only=True)
class CollateralAdded(LedgerEvent):
    trader: str
    amount: int


@dataclass(frozen=True, slots=True, kw_only=True)
class CollateralDecreased(LedgerEvent):
    trader: str
    amount: int


@dataclass(frozen=True, slots=True, kw_only=True)
class PositionAdded(LedgerEvent):
    trader: str
    amount: int
    is_long: bool


@dataclass(frozen=True, slots=True, kw_only=True)
class PositionDecreased(LedgerEvent):
    """
    realized_pnl is signed. Both realized values are the closed slice's
    share of the side's PnL and fee; any part collateral could not cover
    during a liquidation is reported as bad_debt on the Liquidated event.
    """
    trader: str
    token_amount: int
    realized_pnl: int
    realized_fee: int
    is_long: bool


@dataclass(frozen=True, slots=True, kw_only=True)
class Liquidated(LedgerEvent):
    """
    A forced close of every position a trader holds.

    fee is the share of remaining collateral paid to the caller,
    size_in_tokens the tokens closed across both sides, and bad_debt the
    loss and fee that remaining collateral could not cover.
    """
    trader: str
    caller: str
    fee: int
    size_in_tokens: int
    bad_debt: int = 0
