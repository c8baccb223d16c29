"""
Core types and pure functions for the confidential account ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: AccountRef, Move, Record, RecordChange,
   PendingTransaction, Transaction
3. Exceptions: LedgerError and ledger-level error types
4. Canonicalization: deterministic content hashing of transaction intent

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.

Amounts are always ConfidentialValue handles. Nothing in this module can
open them; balance checks are delegated to the enclave by the ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)

from .confidential import ConfidentialValue


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved owner for issuance and redemption accounts.
# System accounts are exempt from balance validation; moves out of them
# create supply and moves into them destroy it.
SYSTEM_ACCOUNT = "system"

# Record type constants (strings, not enum, like unit types in the ledger).
RECORD_TYPE_LENDING_POOL = "LENDING_POOL"
RECORD_TYPE_LOAN = "LOAN"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Internal state for a record (pool configuration, loan lifecycle, ...).
RecordState = Dict[str, Any]


# ============================================================================
# ACCOUNTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountRef:
    """
    Reference to a confidential token account.

    Attributes:
        owner: Principal (or record id) that controls the account
        asset: Asset identifier held by the account
        label: Disambiguates several accounts of one owner and asset
    """
    owner: str
    asset: str
    label: str = "main"

    def __post_init__(self):
        if not self.owner or not self.owner.strip():
            raise ValueError("AccountRef owner cannot be empty")
        if not self.asset or not self.asset.strip():
            raise ValueError("AccountRef asset cannot be empty")
        if not self.label or not self.label.strip():
            raise ValueError("AccountRef label cannot be empty")

    @property
    def address(self) -> str:
        return f"{self.owner}/{self.asset}/{self.label}"

    @property
    def is_system(self) -> bool:
        return self.owner == SYSTEM_ACCOUNT

    def __str__(self) -> str:
        return self.address


def system_account(asset: str) -> AccountRef:
    """Return the issuance account for an asset."""
    return AccountRef(SYSTEM_ACCOUNT, asset, "issuance")


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pool and loan functions accept a LedgerView to declare that they only
    read. The ConfidentialLedger implements this protocol and also provides
    mutation methods; FakeView in the tests is a truly read-only version.
    """

    @property
    def current_slot(self) -> int:
        """Return the current slot supplied by the execution environment."""
        ...

    def read_balance(self, account: AccountRef) -> ConfidentialValue:
        """Return the encrypted balance of an open account."""
        ...

    def is_open(self, account: AccountRef) -> bool:
        """Return True if the account is currently open."""
        ...

    def has_record(self, record_id: str) -> bool:
        """Return True if a record with this id exists."""
        ...

    def get_record_state(self, record_id: str) -> RecordState:
        """Return a copy of a record's state dictionary."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Intent id was previously processed (idempotent behavior).
    REJECTED: Validation failed (insufficient funds, stale record, ...).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Direct account-holder transfer
    PROTOCOL = "protocol"                 # Lending protocol operation
    SYSTEM = "system"                     # Issuance / redemption


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class AccountNotRegistered(LedgerError):
    """Raised when operating on an account that is not open."""
    pass


class AccountAlreadyExists(LedgerError):
    """Raised when opening an account that is open or was closed before."""
    pass


class AccountNotEmpty(LedgerError):
    """Raised when closing an account whose balance is not zero."""
    pass


class RecordNotFound(LedgerError):
    """Raised when a record id is unknown."""
    pass


class StaleRecord(LedgerError):
    """Raised when a record changed after a transaction was built from it."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (principal, protocol name)
        record_id: Record that the operation acted on (if applicable)
        event_type: Operation name (e.g., "BORROW", "REPAY", "LIQUIDATE")
    """
    origin_type: OriginType
    source_id: str
    record_id: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.record_id:
            parts.append(f"record={self.record_id}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# RECORDS
# ============================================================================

def _freeze_state(state: Optional[RecordState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> RecordState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Record:
    """
    Persisted protocol record (a lending pool or a loan).

    The ledger is the single source of truth for records. They are read
    fresh at the start of every operation and written exactly once, at
    commit, through a RecordChange.

    Attributes:
        record_id: Unique identifier (derived address)
        record_type: RECORD_TYPE_LENDING_POOL or RECORD_TYPE_LOAN
        _frozen_state: Internal frozen state representation
    """
    record_id: str
    record_type: str
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> RecordState:
        """Return the record's state as a new dict."""
        return _thaw_state(self._frozen_state)


@dataclass(frozen=True, slots=True)
class RecordChange:
    """
    Before/after snapshot of a record change.

    old_state is the state the change was computed from. The ledger rejects
    the transaction if the stored record no longer matches it, so two
    operations built from the same snapshot can never both commit.
    """
    record_id: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# MOVES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single confidential transfer between two accounts.

    The amount is never inspected here: a move of an encrypted zero is
    indistinguishable from any other move, and sufficiency of the source
    balance is decided by the ledger through the enclave.

    Attributes:
        amount: Encrypted amount to transfer
        source: Account debited
        dest: Account credited
        contract_id: Identifier of the operation generating this move
        metadata: Optional additional information about the move
    """
    amount: ConfidentialValue
    source: AccountRef
    dest: AccountRef
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not isinstance(self.amount, ConfidentialValue):
            raise ValueError(f"Move amount must be ConfidentialValue, got {type(self.amount)}")
        if not isinstance(self.source, AccountRef) or not isinstance(self.dest, AccountRef):
            raise ValueError("Move source and dest must be AccountRef")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")
        if self.source.asset != self.dest.asset:
            raise ValueError(
                f"Move asset mismatch: {self.source.asset} -> {self.dest.asset}"
            )

    @property
    def asset(self) -> str:
        return self.source.asset

    def __repr__(self) -> str:
        return f"Move(<{self.amount.fingerprint}> {self.asset}: {self.source}→{self.dest})"


# ============================================================================
# CANONICALIZATION
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order. Confidential values
    are represented by their ciphertext digest.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, ConfidentialValue):
        return f"C:{value.digest}"
    if isinstance(value, AccountRef):
        return f"A:{value.address}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    record_changes: Tuple[RecordChange, ...],
    origin: TransactionOrigin,
    accounts_to_open: Tuple[AccountRef, ...] = (),
    accounts_to_close: Tuple[AccountRef, ...] = (),
    records_to_create: Tuple[Record, ...] = (),
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on semantic content, not on slots or ledger-specific data.
    Same inputs always produce the same intent_id.
    """
    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.record_id:
        content_parts.append(f"record:{origin.record_id}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for ref in sorted(accounts_to_open, key=lambda a: a.address):
        content_parts.append(f"open:{ref.address}")
    for record in sorted(records_to_create, key=lambda r: r.record_id):
        content_parts.append(
            f"record_create:{record.record_id}|{record.record_type}|{_canonicalize(record.state)}"
        )

    for m in sorted(moves, key=lambda m: (m.amount.digest, m.source.address, m.dest.address, m.contract_id)):
        content_parts.append(f"move:{m.amount.digest}|{m.source.address}|{m.dest.address}|{m.contract_id}")

    for rc in sorted(record_changes, key=lambda r: r.record_id):
        content_parts.append(
            f"record_change:{rc.record_id}|{_canonicalize(rc.old_state)}|{_canonicalize(rc.new_state)}"
        )

    for ref in sorted(accounts_to_close, key=lambda a: a.address):
        content_parts.append(f"close:{ref.address}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by pool and loan functions from a LedgerView and submitted to the
    ledger, which applies it all-or-nothing.

    Attributes:
        moves: Confidential transfers
        record_changes: Record updates (old_state and new_state)
        origin: Who/what created this transaction and why
        slot: Slot at which the intent was computed
        accounts_to_open: Accounts created before the moves apply
        accounts_to_close: Accounts closed after the moves apply (must end at zero)
        records_to_create: Records created before record changes apply
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    record_changes: Tuple[RecordChange, ...]
    origin: TransactionOrigin
    slot: int
    accounts_to_open: Tuple[AccountRef, ...] = ()
    accounts_to_close: Tuple[AccountRef, ...] = ()
    records_to_create: Tuple[Record, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.record_changes, self.origin,
                self.accounts_to_open, self.accounts_to_close, self.records_to_create,
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if nothing would change."""
        return not (
            self.moves or self.record_changes or self.accounts_to_open
            or self.accounts_to_close or self.records_to_create
        )

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.moves)} moves, "
            f"{len(self.record_changes)} changes, {self.origin})"
        )


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    record_changes: Optional[List[RecordChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    accounts_to_open: Optional[Tuple[AccountRef, ...]] = None,
    accounts_to_close: Optional[Tuple[AccountRef, ...]] = None,
    records_to_create: Optional[Tuple[Record, ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and record changes.

    This is the standard way to create transactions.

    Example:
        def compute_sweep(view, loan_id, intake, borrower_account):
            residual = view.read_balance(intake)
            moves = [Move(residual, intake, borrower_account, f"sweep_{loan_id}")]
            return build_transaction(view, moves)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.PROTOCOL,
            source_id="protocol",
        )

    copied_changes: Tuple[RecordChange, ...] = ()
    if record_changes:
        copied_changes = tuple(
            RecordChange(
                record_id=rc.record_id,
                old_state=copy.deepcopy(rc.old_state),
                new_state=copy.deepcopy(rc.new_state),
            )
            for rc in record_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        record_changes=copied_changes,
        origin=origin,
        slot=view.current_slot,
        accounts_to_open=tuple(accounts_to_open or ()),
        accounts_to_close=tuple(accounts_to_close or ()),
        records_to_create=tuple(records_to_create or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger changes - represents FACT.

    Attributes:
        moves: Confidential transfers applied
        record_changes: Record updates applied
        origin: Who/what created this transaction and why
        slot: Slot at which the intent was computed
        intent_id: Content hash from the PendingTransaction (for idempotency)
        exec_id: Unique execution identifier
        ledger_name: Name of the ledger that executed this
        execution_slot: Slot at which it was executed
        sequence_number: Monotonic sequence within the ledger
        accounts_opened / accounts_closed / records_created: lifecycle effects
        contract_ids: Set of contract ids from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    record_changes: Tuple[RecordChange, ...]
    origin: TransactionOrigin
    slot: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_slot: int
    sequence_number: int
    accounts_opened: Tuple[AccountRef, ...] = ()
    accounts_closed: Tuple[AccountRef, ...] = ()
    records_created: Tuple[Record, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not (self.moves or self.record_changes or self.accounts_opened
                or self.accounts_closed or self.records_created):
            raise ValueError("Transaction must change something")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   slot           : ' + str(self.slot))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   execution_slot : ' + str(self.execution_slot))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + repr(self.origin))}│",
        ]
        if self.accounts_opened or self.records_created:
            lines.append(f"├{bar}┤")
            for ref in self.accounts_opened:
                lines.append(f"│{pad('   open   ' + ref.address)}│")
            for record in self.records_created:
                lines.append(f"│{pad('   create ' + record.record_id + ' [' + record.record_type + ']')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] <{move.amount.fingerprint}> {move.asset}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.record_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Record Changes (' + str(len(self.record_changes)) + '):')}│")
            for rc in self.record_changes:
                lines.append(f"│{pad('   [' + rc.record_id + ']')}│")
                for field_name, (old_val, new_val) in rc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        if self.accounts_closed:
            lines.append(f"├{bar}┤")
            for ref in self.accounts_closed:
                lines.append(f"│{pad('   close  ' + ref.address)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
