"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing pool and loan
functions without requiring a full ConfidentialLedger instance.
"""

from __future__ import annotations
import copy
from typing import Dict, Optional, Any

from confidential_lending import AccountRef, ConfidentialEnclave, ConfidentialValue
from confidential_lending.core import AccountNotRegistered, RecordNotFound


RecordState = Dict[str, Any]


class FakeView:
    """
    Minimal LedgerView implementation for testing pure functions.

    Balances are given in plaintext and sealed with the supplied enclave.

    Example:
        view = FakeView(
            enclave,
            balances={AccountRef('pool', 'USDC', 'vault'): 1000},
            records={'pool': {'owner_id': 'lender', ...}},
            slot=10,
        )
        view.read_balance(AccountRef('pool', 'USDC', 'vault'))  # ConfidentialValue
    """

    def __init__(
        self,
        enclave: ConfidentialEnclave,
        balances: Optional[Dict[AccountRef, int]] = None,
        records: Optional[Dict[str, RecordState]] = None,
        slot: int = 0,
    ):
        self.enclave = enclave
        self._balances: Dict[AccountRef, ConfidentialValue] = {
            ref: enclave.encrypt(amount) for ref, amount in (balances or {}).items()
        }
        self._records = records or {}
        self._slot = slot

    @property
    def current_slot(self) -> int:
        return self._slot

    def read_balance(self, account: AccountRef) -> ConfidentialValue:
        if account not in self._balances:
            raise AccountNotRegistered(f"Account {account} is not open")
        return self._balances[account]

    def is_open(self, account: AccountRef) -> bool:
        return account in self._balances

    def has_record(self, record_id: str) -> bool:
        return record_id in self._records

    def get_record_state(self, record_id: str) -> RecordState:
        if record_id not in self._records:
            raise RecordNotFound(f"Record {record_id} not found")
        return copy.deepcopy(self._records[record_id])

