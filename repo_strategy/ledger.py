"""
ledger.py - Settlement Book for the Simulated Host

Every balance the strategy touches lives here: the base asset it lends, the
repo tokens it wins or buys, the base asset locked behind auction offers, and
its yield-vault shares. Collaborators keep their own bookkeeping (auction
offer books, vault share supply, term-sheet data) in unit state on the same
ledger. One clone() therefore captures the whole host, and one restore()
undoes everything a failed strategy call did.

    register_unit / register_wallet   set up the host
    build_transaction + execute       the only way balances change outside tests
    clone / restore                   snapshot and in-place rollback

SYSTEM_WALLET issues every unit and may go negative; every other wallet is
held to its unit's min/max balance.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    Transaction, Unit, PendingTransaction, ExecuteResult,
    Positions, UnitState,
    QUANTITY_EPSILON, SYSTEM_WALLET,
    LedgerError, UnitNotRegistered, WalletNotRegistered, TransactionRejected,
    _freeze_state,
)


def _zero_balances(initial: Optional[Dict[str, Decimal]] = None) -> Dict[str, Decimal]:
    return defaultdict(lambda: Decimal("0"), initial or {})


class Ledger:
    """
    Double-entry book of wallets and units on a logical clock.

    Implements LedgerView, so registries and collaborators that only read
    can be handed the ledger itself or a FakeView.

    Not thread-safe; the strategy runs single-threaded by construction.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        ledger.register_unit(cash("USDC", "USD Coin", decimals=6))
        ledger.register_wallet("strategy")
        ledger.register_wallet("vault")

        tx = build_transaction(ledger, [
            Move(Decimal("1000000"), "USDC", "strategy", "vault", ledger.next_reference("deposit")),
        ])
        ledger.execute_or_raise(tx, "deposit")
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Args:
            name: Ledger identifier; snapshots only restore into the same name
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print registrations and execution results
            test_mode: Allow set_balance() to seed balances directly
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.last_rejection: str = ""
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._next_reference: int = 0
        # unit -> {wallet -> non-zero balance}
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = _zero_balances()

    # ========================================================================
    # READ-ONLY VIEW
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    def _require_unit(self, unit_symbol: str) -> Unit:
        unit = self.units.get(unit_symbol)
        if unit is None:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return unit

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Deep copy of a unit's state; callers may mutate it freely."""
        return copy.deepcopy(self._require_unit(unit_symbol).state)

    def get_positions(self, unit_symbol: str) -> Positions:
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def get_unit(self, symbol: str) -> Unit:
        return self._require_unit(symbol)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit's balances over every wallet, SYSTEM_WALLET included.

        Issuance debits SYSTEM_WALLET, so this stays at zero unless
        set_balance() seeded balances.
        """
        self._require_unit(unit_symbol)
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-9")
    ) -> Dict[str, Any]:
        """
        Compare each unit's total supply with what the caller expects.

        Units missing from expected_supplies are reported but not checked.

        Returns:
            Dict with keys:
            - 'valid': bool - every expected supply matched
            - 'supplies': unit -> current total supply
            - 'discrepancies': list of {unit, expected, actual, difference}
        """
        expected_supplies = expected_supplies or {}
        supplies = {symbol: self.total_supply(symbol) for symbol in self.units}
        discrepancies = []
        for symbol, expected in expected_supplies.items():
            actual = supplies.get(symbol, Decimal("0"))
            if symbol not in supplies or abs(actual - expected) > tolerance:
                discrepancies.append({
                    'unit': symbol,
                    'expected': expected,
                    'actual': actual,
                    'difference': abs(actual - expected),
                })
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # CLOCK
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # SETUP
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = _zero_balances()
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"[REGISTER] {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance without a counterparty. Test mode only.

        Raises:
            LedgerError: If the ledger was not created with test_mode=True
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() bypasses double entry and needs test_mode=True; "
                "use build_transaction() and execute() instead"
            )
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._index_position(wallet_id, unit_symbol, quantity)

    def update_unit_state(self, unit_symbol: str, state_updates: UnitState) -> None:
        """Merge state_updates into a unit's state outside any transaction."""
        unit = self._require_unit(unit_symbol)
        self.units[unit_symbol] = replace(unit, _frozen_state=_freeze_state({**unit.state, **state_updates}))

    def next_reference(self, prefix: str) -> str:
        """
        Fresh contract id '{prefix}:{n}'.

        Intent ids hash the moves, so two identical deposits would collide
        without a distinct contract id on each.
        """
        self._next_reference += 1
        return f"{prefix}:{self._next_reference}"

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a PendingTransaction atomically.

        Returns:
            APPLIED, ALREADY_APPLIED (intent id seen before), or REJECTED
            (reason kept in last_rejection)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED
        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"[ALREADY_APPLIED] intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        reason = self._rejection_reason(pending)
        if reason:
            self.last_rejection = reason
            if self.verbose:
                print(f"[REJECTED] {reason}")
            return ExecuteResult.REJECTED

        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            self._credit(move.source, unit, -move.quantity)
            self._credit(move.dest, unit, move.quantity)
        for sc in pending.state_changes:
            new_state = copy.deepcopy(sc.new_state) if isinstance(sc.new_state, dict) else {}
            self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            intent_id=pending.intent_id,
            sequence_number=self._next_sequence,
            executed_at=self._current_time,
        )
        self._next_sequence += 1
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)
        if self.verbose:
            print(f"[APPLIED] {tx}")
        return ExecuteResult.APPLIED

    def execute_or_raise(self, pending: PendingTransaction, what: str) -> None:
        """
        Execute a transaction that must apply.

        Raises:
            TransactionRejected: rejected, or an identical one was already applied
        """
        result = self.execute(pending)
        if result is ExecuteResult.REJECTED:
            raise TransactionRejected(f"{what}: {self.last_rejection}")
        if result is not ExecuteResult.APPLIED:
            raise TransactionRejected(f"{what}: ledger returned {result.value}")

    def _rejection_reason(self, pending: PendingTransaction) -> str:
        """Empty string when the transaction may apply."""
        if pending.timestamp > self._current_time:
            return "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return f"unit not registered: {move.unit_symbol}"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"
        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return f"unit not registered: {sc.unit}"

        # net first, so a wallet may pass on what it receives in the same transaction
        net: Dict[Tuple[str, str], Decimal] = defaultdict(lambda: Decimal("0"))
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            net[move.source, move.unit_symbol] = unit.round(net[move.source, move.unit_symbol] - move.quantity)
            net[move.dest, move.unit_symbol] = unit.round(net[move.dest, move.unit_symbol] + move.quantity)

        for (wallet, symbol), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[symbol]
            proposed = unit.round(self.balances[wallet][symbol] + delta)
            if proposed < unit.min_balance:
                return f"{wallet} {symbol}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return f"{wallet} {symbol}: {proposed} > max {unit.max_balance}"
        return ""

    def _credit(self, wallet_id: str, unit: Unit, quantity: Decimal) -> None:
        balance = unit.round(self.balances[wallet_id][unit.symbol] + quantity)
        self.balances[wallet_id][unit.symbol] = balance
        self._index_position(wallet_id, unit.symbol, balance)

    def _index_position(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        if abs(quantity) > QUANTITY_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Independent copy of this ledger.

        Units are frozen, so the unit table is copied shallowly.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.last_rejection = self.last_rejection
        cloned.units = dict(self.units)
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        cloned._next_reference = self._next_reference
        cloned.balances = {wallet: _zero_balances(bals) for wallet, bals in self.balances.items()}
        cloned._positions_by_unit = defaultdict(dict, {
            symbol: dict(positions) for symbol, positions in self._positions_by_unit.items()
        })
        return cloned

    def restore(self, snapshot: Ledger) -> None:
        """
        Reset this ledger in place to a clone() taken earlier.

        Collaborators holding this ledger see the rollback. The snapshot must
        not be used afterwards. The reference counter is not rewound.
        """
        if snapshot.name != self.name:
            raise LedgerError(f"Cannot restore {self.name} from snapshot of {snapshot.name}")
        self._current_time = snapshot._current_time
        self.units = snapshot.units
        self.registered_wallets = snapshot.registered_wallets
        self.seen_intent_ids = snapshot.seen_intent_ids
        self.transaction_log = snapshot.transaction_log
        self._next_sequence = snapshot._next_sequence
        self.balances = snapshot.balances
        self._positions_by_unit = snapshot._positions_by_unit
