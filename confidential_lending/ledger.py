"""
ledger.py - Confidential Token Account Ledger

The ConfidentialLedger is the central state manager of the lending engine.
It is the only module that mutates state, ensuring controlled and auditable
changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Holds encrypted balances for confidential token accounts
    - Holds protocol records (lending pools and loans)
    - Executes transactions atomically (every move, account lifecycle change
      and record change succeeds together or nothing happens)
    - Checks sufficiency of encrypted balances through the enclave, learning
      only an ordering, never an amount
    - Always validates and always logs
"""

from __future__ import annotations
from typing import Dict, List, Set, Optional, Tuple, Union
import copy

from .confidential import ConfidentialEnclave, ConfidentialValue, Ordering, as_confidential
from .core import (
    # Types
    AccountRef, Move, Record, Transaction,
    PendingTransaction, TransactionOrigin,
    ExecuteResult, OriginType, RecordState,
    # Constants
    SYSTEM_ACCOUNT, system_account,
    # Exceptions
    LedgerError, AccountNotRegistered, AccountAlreadyExists,
    AccountNotEmpty, RecordNotFound, StaleRecord,
    # Helper functions
    _freeze_state,
)
from .errors import ArithmeticFault, AuthorizationError, TransferFailed


class ConfidentialLedger:
    """
    Account ledger over encrypted balances with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    pool and loan functions that access only read-only methods.

    Design Principles:
        - Always validates: account registration, record freshness, slot
          ordering and balance sufficiency are checked for every transaction.
        - Always logs: every applied transaction is recorded in the audit trail.
        - Never decrypts: balance sufficiency is decided with
          compare_and_reveal; only reveal_balance opens a balance, and only
          for its owner.

    Thread Safety:
        Not thread-safe. The execution environment serializes mutators.

    Example:
        enclave = ConfidentialEnclave()
        ledger = ConfidentialLedger("main", enclave)
        alice = ledger.mint_account("alice", "USDC")
        bob = ledger.mint_account("bob", "USDC")
        ledger.issue(alice, 100)
        ledger.transfer_confidential(alice, bob, enclave.encrypt(40))
    """

    def __init__(
        self,
        name: str,
        enclave: Optional[ConfidentialEnclave] = None,
        initial_slot: int = 0,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            enclave: Enclave that seals every balance (default: a new one)
            initial_slot: Starting slot (default: 0)
            verbose: Print transaction summaries (default: True)
        """
        if initial_slot < 0:
            raise ValueError(f"initial_slot must be non-negative, got {initial_slot}")
        self.name = name
        self.enclave = enclave if enclave is not None else ConfidentialEnclave()
        self.balances: Dict[AccountRef, ConfidentialValue] = {}
        self.closed_accounts: Set[AccountRef] = set()
        self.records: Dict[str, Record] = {}
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[LedgerError] = None
        self.verbose = verbose
        self._current_slot = initial_slot
        self._next_sequence: int = 0
        # Encrypted amount issued per asset (moves out of system accounts)
        self._issued: Dict[str, ConfidentialValue] = {}

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_slot(self) -> int:
        """Current slot of the ledger."""
        return self._current_slot

    def read_balance(self, account: AccountRef) -> ConfidentialValue:
        """
        Return the encrypted balance of an open account.

        Raises:
            AccountNotRegistered: If the account is not open
        """
        if account not in self.balances:
            raise AccountNotRegistered(f"Account {account} is not open")
        return self.balances[account]

    def is_open(self, account: AccountRef) -> bool:
        return account in self.balances

    def has_record(self, record_id: str) -> bool:
        return record_id in self.records

    def get_record(self, record_id: str) -> Record:
        if record_id not in self.records:
            raise RecordNotFound(f"Record {record_id} not found")
        return self.records[record_id]

    def get_record_state(self, record_id: str) -> RecordState:
        """Return a deep copy of a record's state dictionary."""
        return copy.deepcopy(self.get_record(record_id).state)

    def list_records(self, record_type: Optional[str] = None) -> List[str]:
        """List record ids, optionally filtered by record type."""
        return sorted(
            rid for rid, record in self.records.items()
            if record_type is None or record.record_type == record_type
        )

    def list_accounts(self, owner: Optional[str] = None) -> List[AccountRef]:
        """List open accounts, optionally filtered by owner."""
        return sorted(
            (ref for ref in self.balances if owner is None or ref.owner == owner),
            key=lambda ref: ref.address,
        )

    def reveal_balance(self, account: AccountRef, principal: str) -> int:
        """
        Decrypt a balance for its owner.

        This is the owner view of a confidential account. Protocol logic
        never calls it.

        Raises:
            AuthorizationError: If principal does not own the account
            AccountNotRegistered: If the account is not open
        """
        if principal != account.owner:
            raise AuthorizationError(f"{principal} does not own account {account}")
        return self.enclave.decrypt(self.read_balance(account))

    # ========================================================================
    # SUPPLY
    # ========================================================================

    def total_supply(self, asset: str) -> ConfidentialValue:
        """
        Encrypted sum of all open balances of an asset.

        Accounts are summed in address order so the computation is
        deterministic.
        """
        total = self.enclave.zero()
        for ref in sorted(self.balances, key=lambda r: r.address):
            if ref.asset == asset:
                total = total.add(self.balances[ref])
        return total

    def issued(self, asset: str) -> ConfidentialValue:
        """Encrypted amount of an asset issued from its system account."""
        if asset in self._issued:
            return self._issued[asset]
        return self.enclave.zero()

    def verify_conservation(self) -> Dict[str, object]:
        """
        Verify that every asset's open balances add up to the issued amount.

        Only the equality bit of each comparison is revealed.

        Returns:
            Dict with keys:
            - 'valid': bool - True if conservation holds for every asset
            - 'assets': List[str] - Assets checked
            - 'discrepancies': List[str] - Assets whose supply differs from issuance

        Example:
            result = ledger.verify_conservation()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        assets = sorted({ref.asset for ref in self.balances} | set(self._issued))
        discrepancies = []
        for asset in assets:
            issued = self._issued.get(asset, self.enclave.zero())
            if self.total_supply(asset).compare_and_reveal(issued) is not Ordering.EQUAL:
                discrepancies.append(asset)
        return {
            'valid': len(discrepancies) == 0,
            'assets': assets,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_slot(self, new_slot: int) -> None:
        """
        Advance the ledger's slot.

        Slots only move forward.

        Raises:
            ValueError: If new_slot is before the current slot
        """
        if new_slot < self._current_slot:
            raise ValueError(
                f"Cannot move slot backwards: {new_slot} < {self._current_slot}"
            )
        self._current_slot = new_slot

    # ========================================================================
    # ACCOUNTS (Mutating)
    # ========================================================================

    def mint_account(self, owner: str, asset: str, label: str = "main") -> AccountRef:
        """
        Open a confidential token account with an encrypted zero balance.

        An account reference is never re-used once it has been closed.

        Raises:
            AccountAlreadyExists: If the account is open or was closed before
            ValueError: If owner is the reserved system owner
        """
        ref = AccountRef(owner, asset, label)
        if ref.is_system:
            raise ValueError(f"Owner {SYSTEM_ACCOUNT!r} is reserved")
        if ref in self.balances or ref in self.closed_accounts:
            raise AccountAlreadyExists(f"Account {ref} already exists")
        self.balances[ref] = self.enclave.zero()
        if self.verbose:
            print(f"📝 Opened: {ref}")
        return ref

    def close_account(self, account: AccountRef) -> None:
        """
        Close an account whose balance is zero.

        Raises:
            AccountNotRegistered: If the account is not open
            AccountNotEmpty: If the balance is not zero
        """
        balance = self.read_balance(account)
        if not balance.is_zero():
            raise AccountNotEmpty(f"Account {account} has a non-zero balance")
        del self.balances[account]
        self.closed_accounts.add(account)
        if self.verbose:
            print(f"📕 Closed: {account}")

    def issue(
        self,
        account: AccountRef,
        amount: Union[ConfidentialValue, int],
        contract_id: Optional[str] = None,
    ) -> ExecuteResult:
        """
        Create supply of an asset into an account.

        The amount moves out of the asset's system account, which is exempt
        from balance validation.
        """
        amount = as_confidential(self.enclave, amount)
        pending = PendingTransaction(
            moves=(Move(
                amount=amount,
                source=system_account(account.asset),
                dest=account,
                contract_id=contract_id or f"issue:{self.name}:{self._next_sequence}",
            ),),
            record_changes=(),
            origin=TransactionOrigin(OriginType.SYSTEM, SYSTEM_ACCOUNT, event_type="ISSUE"),
            slot=self._current_slot,
        )
        return self.execute(pending)

    def transfer_confidential(
        self,
        source: AccountRef,
        dest: AccountRef,
        amount: ConfidentialValue,
        contract_id: Optional[str] = None,
    ) -> Transaction:
        """
        Transfer an encrypted amount between two accounts.

        Returns:
            The executed Transaction

        Raises:
            TransferFailed: If the ledger rejects the transfer
                (insufficient funds, closed account, foreign ciphertext)
        """
        pending = PendingTransaction(
            moves=(Move(
                amount=amount,
                source=source,
                dest=dest,
                contract_id=contract_id or f"transfer:{self.name}:{self._next_sequence}",
            ),),
            record_changes=(),
            origin=TransactionOrigin(OriginType.USER_ACTION, source.owner, event_type="TRANSFER"),
            slot=self._current_slot,
        )
        result = self.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransferFailed(f"transfer {source} -> {dest} rejected: {self.last_rejection}")
        return self.find_transaction(pending.intent_id)

    def find_transaction(self, intent_id: str) -> Optional[Transaction]:
        """Return the logged transaction for an intent id, if any."""
        for tx in reversed(self.transaction_log):
            if tx.intent_id == intent_id:
                return tx
        return None

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{slot}
        """
        return f"exec:{self.name}:{sequence:012d}:{self._current_slot}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Everything is validated before anything is applied: opened accounts,
        created records, record freshness, moves and closed accounts succeed
        together or the ledger is left untouched.
        Execution is idempotent: a pending transaction with the same intent_id
        will not be applied twice.

        Args:
            pending: PendingTransaction to execute

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed (see last_rejection)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        # Idempotency check based on intent_id (content hash)
        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        try:
            new_balances, new_issued = self._validate_pending(pending)
        except LedgerError as e:
            self.last_rejection = e
            if self.verbose:
                print(f"✗ REJECTED: {e}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1
        exec_id = self._generate_exec_id(sequence)

        tx = Transaction(
            moves=pending.moves,
            record_changes=pending.record_changes,
            origin=pending.origin,
            slot=pending.slot,
            intent_id=pending.intent_id,
            exec_id=exec_id,
            ledger_name=self.name,
            execution_slot=self._current_slot,
            sequence_number=sequence,
            accounts_opened=pending.accounts_to_open,
            accounts_closed=pending.accounts_to_close,
            records_created=pending.records_to_create,
        )

        # Apply: open, create, move, update records, close
        self.balances.update(new_balances)
        self._issued.update(new_issued)
        for record in tx.records_created:
            self.records[record.record_id] = record
        for rc in tx.record_changes:
            old_record = self.records[rc.record_id]
            self.records[rc.record_id] = Record(
                record_id=old_record.record_id,
                record_type=old_record.record_type,
                _frozen_state=_freeze_state(copy.deepcopy(rc.new_state)),
            )
        for ref in tx.accounts_closed:
            del self.balances[ref]
            self.closed_accounts.add(ref)

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details followed by a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(
        self, pending: PendingTransaction
    ) -> Tuple[Dict[AccountRef, ConfidentialValue], Dict[str, ConfidentialValue]]:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Slot validation (transaction must not be from the future)
        2. Accounts to open are new, records to create are new
        3. Record changes apply to existing records whose state still equals old_state
        4. Move accounts are open (or opened by this transaction)
        5. Debits of every non-system account are covered by balance + credits
        6. Accounts to close end at zero

        Returns:
            (new_balances, new_issued) to apply if validation passes

        Raises:
            LedgerError: describing the first failed check
        """
        if pending.slot > self._current_slot:
            raise LedgerError("future slot")

        opening: Set[AccountRef] = set()
        for ref in pending.accounts_to_open:
            if ref.is_system:
                raise LedgerError(f"cannot open system account {ref}")
            if ref in self.balances or ref in self.closed_accounts or ref in opening:
                raise AccountAlreadyExists(f"account already exists: {ref}")
            opening.add(ref)

        creating: Dict[str, Record] = {}
        for record in pending.records_to_create:
            if record.record_id in self.records or record.record_id in creating:
                raise LedgerError(f"record already exists: {record.record_id}")
            creating[record.record_id] = record

        for rc in pending.record_changes:
            current = creating.get(rc.record_id) or self.records.get(rc.record_id)
            if current is None:
                raise RecordNotFound(f"record not found: {rc.record_id}")
            if rc.old_state is not None and rc.old_state != current.state:
                raise StaleRecord(f"stale record: {rc.record_id}")

        def is_usable(ref: AccountRef) -> bool:
            return ref.is_system or ref in self.balances or ref in opening

        credits: Dict[AccountRef, ConfidentialValue] = {}
        debits: Dict[AccountRef, ConfidentialValue] = {}
        try:
            for move in pending.moves:
                if move.amount.enclave is not self.enclave:
                    raise LedgerError(f"foreign ciphertext in {move.contract_id}")
                if not is_usable(move.source):
                    raise AccountNotRegistered(f"account not open: {move.source}")
                if not is_usable(move.dest):
                    raise AccountNotRegistered(f"account not open: {move.dest}")
                debits[move.source] = (
                    debits[move.source].add(move.amount) if move.source in debits else move.amount
                )
                credits[move.dest] = (
                    credits[move.dest].add(move.amount) if move.dest in credits else move.amount
                )

            new_balances: Dict[AccountRef, ConfidentialValue] = {
                ref: self.enclave.zero() for ref in pending.accounts_to_open
            }
            new_issued: Dict[str, ConfidentialValue] = {}
            touched = sorted(set(credits) | set(debits), key=lambda r: r.address)
            for ref in touched:
                if ref.is_system:
                    issued = new_issued.get(ref.asset, self._issued.get(ref.asset, self.enclave.zero()))
                    if ref in debits:
                        issued = issued.add(debits[ref])
                    if ref in credits:
                        if credits[ref].compare_and_reveal(issued) is Ordering.GREATER:
                            raise LedgerError(f"redemption exceeds issuance of {ref.asset}")
                        issued = issued.sub(credits[ref])
                    new_issued[ref.asset] = issued
                    continue
                balance = new_balances.get(ref, self.balances.get(ref))
                if ref in credits:
                    balance = balance.add(credits[ref])
                if ref in debits:
                    if debits[ref].compare_and_reveal(balance) is Ordering.GREATER:
                        raise LedgerError(f"insufficient funds: {ref}")
                    balance = balance.sub(debits[ref])
                new_balances[ref] = balance
        except ArithmeticFault as e:
            raise LedgerError(f"arithmetic fault: {type(e).__name__}") from e

        for ref in pending.accounts_to_close:
            if not is_usable(ref) or ref.is_system:
                raise AccountNotRegistered(f"account not open: {ref}")
            final = new_balances.get(ref, self.balances.get(ref))
            if not final.is_zero():
                raise AccountNotEmpty(f"account not empty: {ref}")

        return new_balances, new_issued

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> ConfidentialLedger:
        """
        Create an independent copy of this ledger.

        Balances and records are immutable values, so containers are copied
        and their contents shared. The clone shares the enclave.
        """
        cloned = ConfidentialLedger.__new__(ConfidentialLedger)
        cloned.name = self.name
        cloned.enclave = self.enclave
        cloned.balances = dict(self.balances)
        cloned.closed_accounts = set(self.closed_accounts)
        cloned.records = dict(self.records)
        cloned.seen_intent_ids = set(self.seen_intent_ids)
        cloned.transaction_log = list(self.transaction_log)
        cloned.last_rejection = self.last_rejection
        cloned.verbose = self.verbose
        cloned._current_slot = self._current_slot
        cloned._next_sequence = self._next_sequence
        cloned._issued = dict(self._issued)
        return cloned
