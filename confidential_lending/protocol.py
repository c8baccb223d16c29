"""
protocol.py - Lending protocol surface

LendingProtocol is the entry point the execution environment calls. Each
operation:

    1. reads the pool and loan records fresh from the ledger
    2. builds one PendingTransaction with the pure pool/loan functions
    3. executes it on the ledger, all-or-nothing
    4. returns the executed Transaction, or raises

Precondition failures raise the LendingError subclass from the pure
function before anything is submitted. A ledger rejection surfaces as
TransferFailed (or StaleRecord when a record changed underneath).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Union

from .confidential import ConfidentialValue
from .core import AccountRef, ExecuteResult, PendingTransaction, StaleRecord, Transaction
from .errors import AuthorizationError, ConfigurationError, TransferFailed
from .fixed_point import SLOTS_PER_YEAR
from .ledger import ConfidentialLedger
from .liquidation import ThirdPartyLiquidate, compute_health_check, resolve_repay_role
from .price_oracle import OracleMap, PriceOracle
from .records.loan import (
    LoanRecord,
    compute_borrow, compute_close_loan, compute_deposit_collateral,
    compute_initialize_loan, compute_repay, compute_total_due,
    compute_withdraw_collateral, load_loan, loan_address,
)
from .records.pool import (
    LendingPoolTerms, MAX_BORROWERS,
    compute_deposit_liquidity, compute_withdraw_liquidity,
    create_lending_pool, load_lending_pool, pool_address,
)


Amount = Union[ConfidentialValue, int]


@dataclass(frozen=True, slots=True)
class AuthenticatedCaller:
    """A principal whose identity was verified by the execution environment."""
    principal: str

    def caller_is(self, principal: str) -> bool:
        return self.principal == principal


class LendingProtocol:
    """
    Confidential lending protocol over a ConfidentialLedger.

    Example:
        protocol = LendingProtocol(ledger)
        lender = AuthenticatedCaller("lender")
        protocol.initialize_lending_pool(
            lender, "USDC", "SOL", 1000, 5000, 8000, oracle=StaticPriceOracle(2)
        )
        pool_id = pool_address("lender", "USDC", "SOL")
    """

    def __init__(
        self,
        ledger: ConfidentialLedger,
        oracles: Optional[OracleMap] = None,
        slots_per_year: int = SLOTS_PER_YEAR,
    ):
        if slots_per_year <= 0:
            raise ConfigurationError(f"slots_per_year must be positive, got {slots_per_year}")
        self.ledger = ledger
        self.oracles: OracleMap = dict(oracles or {})
        self.slots_per_year = slots_per_year

    def __repr__(self) -> str:
        return f"LendingProtocol({self.ledger.name!r}, pools={len(self.oracles)})"

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _submit(self, pending: PendingTransaction) -> Transaction:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            reason = self.ledger.last_rejection
            if isinstance(reason, StaleRecord):
                raise reason
            raise TransferFailed(f"settlement rejected: {reason}") from reason
        return self.ledger.find_transaction(pending.intent_id)

    def _price(self, pool_id: str) -> Amount:
        if pool_id not in self.oracles:
            raise ConfigurationError(f"no price oracle for pool {pool_id}")
        return self.oracles[pool_id].price(self.ledger.current_slot)

    # ========================================================================
    # POOL OPERATIONS
    # ========================================================================

    def initialize_lending_pool(
        self,
        caller: AuthenticatedCaller,
        asset_id: str,
        collateral_id: str,
        interest_rate_bps: int,
        loan_to_value_bps: int,
        collateral_threshold_bps: int,
        oracle: Optional[PriceOracle] = None,
        max_borrowers: int = MAX_BORROWERS,
        owner_account: Optional[AccountRef] = None,
    ) -> Transaction:
        """Create a pool owned by caller; the pool id is pool_address(caller, asset, collateral)."""
        pending = create_lending_pool(
            self.ledger, caller.principal, asset_id, collateral_id,
            interest_rate_bps, loan_to_value_bps, collateral_threshold_bps,
            max_borrowers=max_borrowers, owner_account=owner_account,
        )
        tx = self._submit(pending)
        if oracle is not None:
            self.oracles[pool_address(caller.principal, asset_id, collateral_id)] = oracle
        return tx

    def set_oracle(self, pool_id: str, oracle: PriceOracle) -> None:
        load_lending_pool(self.ledger, pool_id)
        self.oracles[pool_id] = oracle

    def deposit_liquidity(
        self, caller: AuthenticatedCaller, pool_id: str, source: AccountRef, amount: Amount,
    ) -> Transaction:
        return self._submit(compute_deposit_liquidity(self.ledger, pool_id, caller.principal, source, amount))

    def withdraw_liquidity(
        self, caller: AuthenticatedCaller, pool_id: str, dest: AccountRef, amount: Amount,
    ) -> Transaction:
        return self._submit(compute_withdraw_liquidity(self.ledger, pool_id, caller.principal, dest, amount))

    # ========================================================================
    # LOAN OPERATIONS
    # ========================================================================

    def initialize_loan(self, caller: AuthenticatedCaller, pool_id: str) -> Transaction:
        return self._submit(compute_initialize_loan(self.ledger, pool_id, caller.principal))

    def deposit_collateral(
        self, caller: AuthenticatedCaller, pool_id: str, source: AccountRef, amount: Amount,
    ) -> Transaction:
        loan_id = loan_address(pool_id, caller.principal)
        return self._submit(compute_deposit_collateral(self.ledger, loan_id, caller.principal, source, amount))

    def withdraw_collateral(
        self, caller: AuthenticatedCaller, pool_id: str, dest: AccountRef, amount: Amount,
    ) -> Transaction:
        loan_id = loan_address(pool_id, caller.principal)
        return self._submit(compute_withdraw_collateral(self.ledger, loan_id, caller.principal, dest, amount))

    def borrow(
        self,
        caller: AuthenticatedCaller,
        pool_id: str,
        asset_dest: AccountRef,
        collateral_dest: AccountRef,
    ) -> Transaction:
        """Borrow against the caller's collateral at the oracle price."""
        loan_id = loan_address(pool_id, caller.principal)
        pending = compute_borrow(
            self.ledger, loan_id, caller.principal, asset_dest, collateral_dest, self._price(pool_id),
        )
        return self._submit(pending)

    def repay(
        self,
        caller: AuthenticatedCaller,
        pool_id: str,
        borrower_id: str,
        collateral_recipient: AccountRef,
        amount: Optional[Amount] = None,
        payer: Optional[AccountRef] = None,
    ) -> Transaction:
        """
        Repay a loan, as its borrower or as a liquidator.

        A caller other than the borrower is a liquidator and is admitted only
        while the loan's health factor is below one; the liquidator receives
        the collateral released by their repayment.

        Raises:
            NotLiquidatable: If a third party repays a healthy loan
        """
        loan = load_loan(self.ledger, loan_address(pool_id, borrower_id))
        role = resolve_repay_role(
            self.ledger, loan, caller.principal, self._price(pool_id), self.slots_per_year,
        )
        if isinstance(role, ThirdPartyLiquidate) and (amount is None or payer is None):
            raise ValueError("a liquidator must post the repayment from a payer account")
        pending = compute_repay(
            self.ledger, loan.loan_id, caller.principal, collateral_recipient,
            amount=amount, payer=payer, slots_per_year=self.slots_per_year,
        )
        return self._submit(pending)

    def close_loan(
        self,
        caller: AuthenticatedCaller,
        pool_id: str,
        asset_dest: AccountRef,
        collateral_dest: AccountRef,
    ) -> Transaction:
        loan_id = loan_address(pool_id, caller.principal)
        pending = compute_close_loan(
            self.ledger, loan_id, caller.principal, asset_dest, collateral_dest, self.slots_per_year,
        )
        return self._submit(pending)

    # ========================================================================
    # READ HELPERS
    # ========================================================================

    def health_factor_below_one(self, pool_id: str, borrower_id: str) -> bool:
        """Publicly observable risk bit of a loan at the current slot."""
        return compute_health_check(
            self.ledger, loan_address(pool_id, borrower_id), self._price(pool_id), self.slots_per_year,
        )

    def loan_state(self, pool_id: str, borrower_id: str) -> LoanRecord:
        return load_loan(self.ledger, loan_address(pool_id, borrower_id))

    def pool_terms(self, pool_id: str) -> LendingPoolTerms:
        terms, _ = load_lending_pool(self.ledger, pool_id)
        return terms

    def reveal_amount_due(self, caller: AuthenticatedCaller, pool_id: str, borrower_id: str) -> int:
        """
        Decrypt the amount due, interest included, for the borrower only.

        Raises:
            AuthorizationError: If caller is not the borrower
        """
        if not caller.caller_is(borrower_id):
            raise AuthorizationError(f"{caller.principal} may not view the loan of {borrower_id}")
        loan = self.loan_state(pool_id, borrower_id)
        terms = self.pool_terms(pool_id)
        due = compute_total_due(loan, terms.interest_rate_bps, self.ledger.current_slot, self.slots_per_year)
        return self.ledger.enclave.decrypt(due)
