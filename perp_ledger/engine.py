"""
engine.py - Keeper engine for a position ledger

Drives a PositionLedger through time and sweeps it for liquidations.

Execution order each step():
1. Advance ledger time (the borrowing index moves with it)
2. Find every liquidatable trader at current prices
3. Liquidate them in sorted order, with the keeper as caller

The ledger's event log is the audit trail; the engine keeps no state of its own
beyond the keeper identity.
"""

from __future__ import annotations
from datetime import datetime
from typing import Callable, List, Optional

from .events import LedgerEvent
from .ledger import PositionLedger
from .liquidation import find_liquidatable


class MarketEngine:
    """
    Time-stepping liquidation keeper.

    Example:
        engine = MarketEngine(ledger, keeper="keeper")
        for ts, price in path:
            oracle.update_price("WBTC", price)
            engine.step(ts)
    """

    def __init__(self, ledger: PositionLedger, keeper: str):
        """
        Initialize engine.

        Args:
            ledger: The position ledger to operate on
            keeper: Wallet that calls liquidate() and collects liquidation fees
        """
        self.ledger = ledger
        self.keeper = keeper
        self.verbose = ledger.verbose

    def step(self, timestamp: datetime) -> List[LedgerEvent]:
        """
        Advance time and liquidate every trader that has become liquidatable.

        Returns:
            Liquidated events, one per liquidated trader

        Raises:
            LedgerError: If a liquidation fails
        """
        self.ledger.advance_time(timestamp)
        liquidated: List[LedgerEvent] = []

        for trader in find_liquidatable(self.ledger):
            # keeper's own positions are left to another keeper
            if trader == self.keeper:
                continue
            if self.verbose:
                print(f"[KEEPER] Liquidating {trader} at {timestamp}")
            liquidated.append(self.ledger.liquidate(self.keeper, trader))

        return liquidated

    def run(
        self,
        timestamps: List[datetime],
        on_step: Optional[Callable[[datetime], None]] = None,
    ) -> List[LedgerEvent]:
        """
        Run the engine through a sequence of timestamps.

        Args:
            timestamps: Timestamps to process, in order
            on_step: Called with each timestamp before its step, e.g. to
                     publish the price for that time

        Returns:
            All Liquidated events
        """
        all_events: List[LedgerEvent] = []
        for timestamp in timestamps:
            if on_step is not None:
                on_step(timestamp)
            all_events.extend(self.step(timestamp))
        return all_events
