"""
Core types and pure functions for the repo-token strategy.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only access to the settlement book
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the strategy's failure taxonomy
4. Constants: unit types, registry sentinels, day count
5. Unit factories: the base-asset cash unit

Helpers here only read through a LedgerView; changes reach the book
solely as PendingTransactions handed to Ledger.execute.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ---------------------------------------------------------------------------
# Decimal context
# ---------------------------------------------------------------------------
#
# Token amounts are integral counts of a token's smallest unit, but present
# values and ratios pass through fractional intermediates. The global context
# is configured once at import time so every module rounds identically.
#
# Nothing else in the package touches the global context after this.
#
_DECIMAL_CONTEXT = getcontext()
_DECIMAL_CONTEXT.prec = 50


# ---------------------------------------------------------------------------
# CONSTANTS
# ---------------------------------------------------------------------------

# Reserved wallet for issuance and burning. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit categories, kept as plain strings in unit definitions.
UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_REPO_TOKEN = "REPO_TOKEN"
UNIT_TYPE_TERM_AUCTION = "TERM_AUCTION"
UNIT_TYPE_VAULT_SHARE = "VAULT_SHARE"

# Moves smaller than this are rejected as zero.
QUANTITY_EPSILON = Decimal("1e-12")

# Simple-interest day count used for discounting (ACT/365 in seconds).
SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# End-of-chain marker for both registries.
NULL_NODE = None

# Discount rate reported for an instrument the repo-token registry does not track.
INVALID_DISCOUNT_RATE: Optional[Decimal] = None

# 100% expressed as a Decimal fraction.
ONE = Decimal("1")
ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# TYPE ALIASES
# ---------------------------------------------------------------------------

# wallet id -> balance of one unit
Positions = Dict[str, Decimal]

# Internal state for a unit (term sheet data, auction book, etc.).
UnitState = Dict[str, Any]


# ---------------------------------------------------------------------------
# PROTOCOLS
# ---------------------------------------------------------------------------

@runtime_checkable
class LedgerView(Protocol):
    """
    What registries and collaborators may read from the book.

    Registries and collaborators accept a LedgerView when they only need to
    read balances, unit state, or the logical clock. The Ledger class
    implements this protocol but also provides mutation methods. For testing,
    FakeView provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Logical clock of the book."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of `unit_symbol` held by `wallet_id`.

        Returns Decimal("0") if the wallet holds none of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Ids of every registered wallet."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Unit definition registered under `symbol`."""
        ...


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------

class ExecuteResult(Enum):
    """
    Result of Ledger.execute.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: the intent id was seen before, nothing changed.
    REJECTED: Transaction failed validation.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    STRATEGY = "strategy"                 # Strategy entry point (offer, sell, sweep)
    AUCTION = "auction"                   # Offer locking and auction clearing
    SERVICER = "servicer"                 # Repo token redemption
    VAULT = "vault"                       # Yield reserve deposits and withdrawals
    SYSTEM = "system"                     # Issuance, initial setup


class CallState(Enum):
    """Re-entrancy state of a strategy entry point."""
    IDLE = "idle"
    IN_PROGRESS = "in_progress"


# ---------------------------------------------------------------------------
# EXCEPTIONS
# ---------------------------------------------------------------------------

class LedgerError(Exception):
    """Base exception for all ledger and strategy errors."""
    pass


class InsufficientFunds(LedgerError):
    """Wallet holds too little to cover a withdrawal or payment."""
    pass


class UnitNotRegistered(LedgerError):
    """Symbol is not a registered unit."""
    pass


class WalletNotRegistered(LedgerError):
    """Wallet id is not registered."""
    pass


# --- validation failures: reported before anything moves -------------------

class ValidationFailure(LedgerError):
    """Request rejected by input or eligibility validation."""
    pass


class IneligibleInstrument(ValidationFailure):
    """Repo token is unknown, pays out in the wrong asset, or has weak collateral."""
    pass


class InstrumentBlacklisted(ValidationFailure):
    """Repo token is on the strategy's blacklist."""
    pass


class InvalidAuction(ValidationFailure):
    """Auction is not recognized by the eligibility oracle."""
    pass


class AuctionInstrumentMismatch(ValidationFailure):
    """Repo token does not belong to the auction's term repo."""
    pass


class AuctionNotOpen(ValidationFailure):
    """Auction is outside its offer window."""
    pass


class InvalidAmount(ValidationFailure):
    """Amount is zero or negative."""
    pass


# --- limit breaches: computed before assets move ----------------------------

class LimitBreach(LedgerError):
    """Action would push the portfolio past a configured risk limit."""
    pass


class ConcentrationTooHigh(LimitBreach):
    """Single repo token would exceed the concentration limit."""
    pass


class MaturityThresholdExceeded(LimitBreach):
    """Weighted time to maturity would exceed the configured threshold."""
    pass


class LiquidityBelowReserve(LimitBreach):
    """Liquid balance would drop below the required reserve ratio."""
    pass


class InsufficientLiquidity(LimitBreach):
    """Not enough liquid balance to fund the action."""
    pass


# --- collaborator failures: abort the whole operation -----------------------

class CollaboratorFailure(LedgerError):
    """An external collaborator could not complete a call."""
    pass


class NoValidDiscountRate(CollaboratorFailure):
    """No auction in the repo token's history has a valid clearing rate."""
    pass


class RedemptionFailed(CollaboratorFailure):
    """Servicer could not redeem repo tokens."""
    pass


class TransactionRejected(CollaboratorFailure):
    """The ledger rejected a transaction built by a collaborator."""
    pass


# --- access and call state --------------------------------------------------

class Unauthorized(LedgerError):
    """Caller lacks the role required by the entry point."""
    pass


class ReentrantCall(LedgerError):
    """Entry point invoked while another strategy call is still in progress."""
    pass


# ---------------------------------------------------------------------------
# TRANSACTION ORIGIN
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Who produced a transaction, kept on every log entry.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (strategy wallet, auction id, ...)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific event within the source (e.g., "LOCK", "REDEEM", "SELL")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ---------------------------------------------------------------------------
# UNIT STATE CHANGE
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


# ---------------------------------------------------------------------------
# CORE DATA STRUCTURES
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Move:
    """
    One debit/credit pair for a single unit.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The symbol of the unit being transferred (e.g., "USDC").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Stable text form of a state value.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Hash the content of a transaction into a short hex id.

    Based solely on the semantic content of the transaction, NOT on timestamps.
    Used for idempotency checking.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A proposed transaction before execution - represents INTENT.

    Created by collaborators and the strategy and submitted to the ledger.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(self.moves, self.state_changes, self.origin)
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves and no state deltas."""
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Assemble moves and unit state changes into a PendingTransaction.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to a SYSTEM origin)

    Returns:
        The transaction, stamped with the view's clock

    Example:
        tx = build_transaction(view, [
            Move(Decimal("1000000"), "USDC", "strategy", "vault", "deposit:7"),
        ])
    """
    if origin is None:
        origin = TransactionOrigin(origin_type=OriginType.SYSTEM, source_id="system")

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """
    PendingTransaction with nothing in it.

    Use this when a pure function has nothing to do.
    """
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An applied PendingTransaction as kept in the ledger's log - represents FACT.

    Attributes:
        moves: Value transfers that were applied
        state_changes: Unit state changes that were applied
        origin: Who/what created this transaction and why
        intent_id: Content hash carried over from the PendingTransaction
        sequence_number: Position in the ledger's log
        executed_at: Ledger time of execution
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    intent_id: str
    sequence_number: int
    executed_at: datetime

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")

    @property
    def contract_ids(self) -> FrozenSet[str]:
        return frozenset(m.contract_id for m in self.moves)

    def __repr__(self) -> str:
        return (
            f"Transaction(#{self.sequence_number}, {len(self.moves)} moves, "
            f"{len(self.state_changes)} deltas, {self.origin})"
        )


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a token (asset type) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "TR-2025-06").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (CASH, REPO_TOKEN, VAULT_SHARE, ...).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places kept in balances (None = no rounding).
        _frozen_state: Sorted (key, value) pairs backing `state`.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Get the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Truncate a value to this unit's decimal precision.

        Values pass through untouched when decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, rounding=ROUND_DOWN)


# ---------------------------------------------------------------------------
# UNIT FACTORIES
# ---------------------------------------------------------------------------

def cash(symbol: str, name: str, decimals: int = 6) -> Unit:
    """
    Create a base-asset cash unit.

    Balances are integral counts of the token's smallest unit; `decimals`
    records how many of those make one whole token (6 for USDC, 18 for DAI).

    Args:
        symbol: Token symbol (e.g., "USDC").
        name: Full name of the token.
        decimals: Native decimal precision of the token.

    Returns:
        A Unit that cannot go negative outside the system wallet.
    """
    if decimals < 0 or decimals > 36:
        raise ValueError(f"decimals must be between 0 and 36, got {decimals}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=0,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET, 'decimals': decimals}),
    )


def token_precision(view: LedgerView, symbol: str) -> int:
    """Return 10 ** decimals for a registered token."""
    return 10 ** int(view.get_unit_state(symbol).get('decimals', 0))
