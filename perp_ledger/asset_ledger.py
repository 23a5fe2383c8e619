"""
asset_ledger.py - Double-entry balance book for the collateral asset

The AssetLedger is the transfer primitive the position ledger settles
through. It holds integer balances of a single asset per wallet, supports
ERC-20 style allowances, and executes batches of moves atomically: every
move in a batch is applied or none is.

Key responsibilities:
    - Wallet registration and issuance from the system wallet
    - Push moves (source signs) and pull moves (a spender consumes allowance)
    - Validation before execution, with a human-readable rejection reason
    - A transaction log and double-entry verification
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .core import (
    MAX_UINT256, SYSTEM_WALLET,
    InsufficientTransfer, InvalidAmount,
)

# An allowance of MAX_UINT256 is never consumed.
UNLIMITED_ALLOWANCE = MAX_UINT256


class ExecuteResult(Enum):
    """
    Outcome of an execution attempt.

    APPLIED: Every move was validated and applied.
    REJECTED: Validation failed; no balance or allowance changed.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of the asset between two wallets.

    Attributes:
        quantity: Amount to transfer (positive int)
        source: Wallet debited
        dest: Wallet credited
        memo: Free-form description recorded in the log
        spender: When set, the move is a pull that consumes the allowance
                 source granted to spender
    """
    quantity: int
    source: str
    dest: str
    memo: str
    spender: Optional[str] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.spender else ""
        return f"Move({self.quantity}: {self.source} -> {self.dest}{via}, '{self.memo}')"


@dataclass(frozen=True, slots=True)
class AssetTransaction:
    """An executed batch of moves."""
    moves: Tuple[Move, ...]
    timestamp: datetime
    sequence_number: int


class AssetLedger:
    """
    Balance book for one asset with atomic batch execution.

    Example:
        assets = AssetLedger("USDC")
        assets.register_wallet("alice")
        assets.register_wallet("market")
        assets.issue("alice", 1_000 * 10**18)
        assets.approve("alice", "market", UNLIMITED_ALLOWANCE)
        assets.transfer_from("market", "alice", "market", 100 * 10**18)
    """

    def __init__(
        self,
        symbol: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create an asset ledger.

        Args:
            symbol: Asset symbol (e.g. "USDC")
            initial_time: Starting time for the log (default: 1970-01-01)
            verbose: Print a line for every applied or rejected batch
        """
        if not symbol or not symbol.strip():
            raise ValueError("symbol cannot be empty")
        self.symbol = symbol
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[AssetTransaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0
        self.verbose = verbose

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = 0

    # ========================================================================
    # READ-ONLY
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def get_balance(self, wallet_id: str) -> int:
        if wallet_id not in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} not registered")
        return self.balances[wallet_id]

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def total_supply(self) -> int:
        """Circulating supply: every wallet except the system wallet."""
        return sum(
            self.balances[w] for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET
        )

    def verify_double_entry(self, expected_supply: Optional[int] = None) -> Dict[str, Any]:
        """
        Verify conservation of the asset.

        Issuance debits the system wallet, so the sum over all wallets is
        always zero. If expected_supply is given, the circulating supply must
        equal it exactly.

        Returns:
            Dict with keys 'valid', 'supply' and 'discrepancies'
        """
        discrepancies = []
        supply = self.total_supply()
        net = supply + self.balances[SYSTEM_WALLET]
        if net != 0:
            discrepancies.append({
                'check': 'net balance',
                'expected': 0,
                'actual': net,
                'difference': net,
            })
        if expected_supply is not None and supply != expected_supply:
            discrepancies.append({
                'check': 'supply',
                'expected': expected_supply,
                'actual': supply,
                'difference': supply - expected_supply,
            })
        return {
            'valid': len(discrepancies) == 0,
            'supply': supply,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """Advance the log clock. Time can only move forward."""
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION AND ISSUANCE (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = 0
        return wallet_id

    def issue(self, wallet_id: str, amount: int) -> ExecuteResult:
        """Mint amount into a wallet from the system wallet."""
        return self.execute([Move(amount, SYSTEM_WALLET, wallet_id, f"issue_{self.symbol}")])

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Set the amount spender may pull from owner."""
        if owner not in self.registered_wallets:
            raise ValueError(f"Wallet {owner} not registered")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmount(f"allowance must be a non-negative int, got {amount!r}")
        self.allowances[(owner, spender)] = min(amount, UNLIMITED_ALLOWANCE)

    # ========================================================================
    # EXECUTION (Mutating)
    # ========================================================================

    def validate(self, moves: Sequence[Move]) -> Tuple[bool, str]:
        """
        Validate a batch against registration, balances and allowances.

        Balances are checked on the net effect of the whole batch, so a
        wallet may forward funds it receives within the same batch.

        Returns:
            Tuple of (success, reason). reason is empty on success.
        """
        deltas: Dict[str, int] = defaultdict(int)
        pulls: Dict[Tuple[str, str], int] = defaultdict(int)

        for move in moves:
            if move.source not in self.registered_wallets:
                return False, f"wallet not registered: {move.source}"
            if move.dest not in self.registered_wallets:
                return False, f"wallet not registered: {move.dest}"
            deltas[move.source] -= move.quantity
            deltas[move.dest] += move.quantity
            if move.spender is not None and move.spender != move.source:
                pulls[(move.source, move.spender)] += move.quantity

        for wallet in sorted(deltas):
            if wallet == SYSTEM_WALLET:
                continue
            if self.balances[wallet] + deltas[wallet] < 0:
                return False, (
                    f"insufficient {self.symbol} in {wallet}: "
                    f"has {self.balances[wallet]}, needs {-deltas[wallet]}"
                )

        for (owner, spender), amount in sorted(pulls.items()):
            allowed = self.allowance(owner, spender)
            if allowed < amount:
                return False, (
                    f"insufficient allowance {owner} -> {spender}: "
                    f"has {allowed}, needs {amount}"
                )

        return True, ""

    def execute(self, moves: Sequence[Move], timestamp: Optional[datetime] = None) -> ExecuteResult:
        """
        Execute a batch of moves atomically.

        Args:
            moves: Moves to apply
            timestamp: Time recorded in the log (default: current time)

        Returns:
            ExecuteResult.APPLIED if successful, ExecuteResult.REJECTED otherwise
        """
        moves = tuple(moves)
        if not moves:
            return ExecuteResult.APPLIED

        valid, reason = self.validate(moves)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        for move in moves:
            self.balances[move.source] -= move.quantity
            self.balances[move.dest] += move.quantity
            if move.spender is not None and move.spender != move.source:
                key = (move.source, move.spender)
                if self.allowances[key] != UNLIMITED_ALLOWANCE:
                    self.allowances[key] -= move.quantity

        tx = AssetTransaction(
            moves=moves,
            timestamp=timestamp or self._current_time,
            sequence_number=self._next_sequence,
        )
        self._next_sequence += 1
        self.transaction_log.append(tx)

        if self.verbose:
            for move in moves:
                print(f"✓ APPLIED: {self.symbol} {move!r}")
        return ExecuteResult.APPLIED

    def transfer(self, source: str, dest: str, amount: int, memo: str = "transfer") -> None:
        """
        Push amount from source to dest.

        Raises:
            InsufficientTransfer: If the move is rejected
        """
        self._execute_or_raise([Move(amount, source, dest, memo)])

    def transfer_from(
        self, spender: str, source: str, dest: str, amount: int, memo: str = "transfer_from"
    ) -> None:
        """
        Pull amount from source to dest on behalf of spender.

        Raises:
            InsufficientTransfer: If the move is rejected
        """
        self._execute_or_raise([Move(amount, source, dest, memo, spender=spender)])

    def _execute_or_raise(self, moves: List[Move]) -> None:
        valid, reason = self.validate(moves)
        if not valid:
            raise InsufficientTransfer(reason)
        self.execute(moves)

    def __repr__(self) -> str:
        return f"AssetLedger({self.symbol}, {len(self.registered_wallets)} wallets, supply={self.total_supply()})"
