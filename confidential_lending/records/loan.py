"""
loan.py - Loan lifecycle over confidential balances

This module provides the loan state machine using the same pure function
architecture as the pool module.

State machine:

    COLLATERAL_OPEN --borrow--> BORROWED --close_loan--> CLOSED
          |                                  ^
          +------------- close_loan ---------+

    A BORROWED loan with repayment_count > 0 is "repaying". A CLOSED loan
    may be re-opened with initialize_loan, which bumps its generation so
    that fresh accounts are used.

Each loan owns two confidential accounts:
    - collateral position (collateral asset), adjustable only in
      COLLATERAL_OPEN, locked from borrow until the loan is settled
    - repayment intake (loaned asset), receives repayments from the
      borrower or a liquidator before they are reconciled

Every compute_* function reads records fresh from the LedgerView and returns
a PendingTransaction. Nothing changes until the ledger executes it.

Key Formulas (all in basis points, multiply before divide):
    max_loan        = collateral * price * ltv / 10_000
    loan            = min(max_loan, vault)               (select, 1 bit revealed)
    loan_collateral = loan * 10_000 / (price * ltv)
    interest        = principal * rate * slots / (10_000 * slots_per_year)
    actual_repay    = min(repay_amount, principal + interest)
    release         = locked_collateral * actual_repay / total_due
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..confidential import ConfidentialValue, Ordering, as_confidential
from ..core import (
    AccountRef, LedgerView, Move, OriginType, PendingTransaction, Record, RecordChange,
    TransactionOrigin, RECORD_TYPE_LOAN,
    build_transaction, _freeze_state,
)
from ..errors import (
    AuthorizationError, CollateralLocked, InsufficientCollateral, InvalidLoanState,
    LoanAlreadyOpen, LoanClosed, LoanNotFound, LoanNotSettled, ZeroLiquidity,
)
from ..fixed_point import BPS_SCALE, SLOTS_PER_YEAR, checked_mul, checked_sub
from .pool import (
    LendingPoolTerms, compute_register_borrower, compute_release_borrower,
    load_lending_pool, reserve_for_borrow,
)

Amount = Union[ConfidentialValue, int]


class LoanState(Enum):
    COLLATERAL_OPEN = "collateral_open"
    BORROWED = "borrowed"
    CLOSED = "closed"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanRecord:
    """
    Immutable snapshot of a loan.

    encrypted_principal is the outstanding due: principal plus the interest
    folded in at each repayment. last_update_slot is the slot interest was
    last folded in.
    """
    loan_id: str
    borrower_id: str
    pool_id: str
    encrypted_principal: ConfidentialValue
    last_update_slot: int
    state: LoanState
    active: bool
    generation: int
    collateral_vault: AccountRef
    repay_intake: AccountRef
    repayment_count: int = 0

    @property
    def is_repaying(self) -> bool:
        return self.state is LoanState.BORROWED and self.repayment_count > 0


def loan_address(pool_id: str, borrower_id: str) -> str:
    """Deterministic loan id for a borrower in a pool."""
    return f"loan:{pool_id}:{borrower_id}"


def loan_accounts(loan_id: str, terms: LendingPoolTerms, generation: int) -> Tuple[AccountRef, AccountRef]:
    """(collateral position, repayment intake) for one generation of a loan."""
    return (
        AccountRef(loan_id, terms.collateral_id, f"collateral-{generation}"),
        AccountRef(loan_id, terms.asset_id, f"repay-{generation}"),
    )


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_loan(view: LedgerView, loan_id: str) -> LoanRecord:
    """
    Load a loan record as a typed frozen dataclass.

    Raises:
        LoanNotFound: If no loan record exists for loan_id
    """
    if not view.has_record(loan_id):
        raise LoanNotFound(f"loan {loan_id} not found")
    raw = view.get_record_state(loan_id)
    return LoanRecord(
        loan_id=loan_id,
        borrower_id=raw['borrower_id'],
        pool_id=raw['pool_id'],
        encrypted_principal=raw['encrypted_principal'],
        last_update_slot=raw['last_update_slot'],
        state=LoanState(raw['state']),
        active=raw.get('active', False),
        generation=raw.get('generation', 0),
        collateral_vault=raw['collateral_vault'],
        repay_intake=raw['repay_intake'],
        repayment_count=raw.get('repayment_count', 0),
    )


def to_state_dict(loan: LoanRecord) -> Dict[str, Any]:
    """Inverse of load_loan()."""
    return {
        'borrower_id': loan.borrower_id,
        'pool_id': loan.pool_id,
        'encrypted_principal': loan.encrypted_principal,
        'last_update_slot': loan.last_update_slot,
        'state': loan.state.value,
        'active': loan.active,
        'generation': loan.generation,
        'collateral_vault': loan.collateral_vault,
        'repay_intake': loan.repay_intake,
        'repayment_count': loan.repayment_count,
    }


def _loan_change(old: LoanRecord, new: LoanRecord) -> RecordChange:
    return RecordChange(record_id=old.loan_id, old_state=to_state_dict(old), new_state=to_state_dict(new))


def _loan_guard(loan: LoanRecord) -> RecordChange:
    """No-op change: makes the transaction stale if the loan moves on first."""
    state = to_state_dict(loan)
    return RecordChange(record_id=loan.loan_id, old_state=state, new_state=dict(state))


def _loan_origin(caller: str, loan_id: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.PROTOCOL,
        source_id=caller,
        record_id=loan_id,
        event_type=event_type,
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def compute_interest_accrued(
    principal: ConfidentialValue,
    interest_rate_bps: int,
    slots_elapsed: int,
    slots_per_year: int = SLOTS_PER_YEAR,
) -> ConfidentialValue:
    """
    Simple pro-rata interest on a confidential principal.

    interest = floor(principal * rate_bps * slots / (10_000 * slots_per_year))

    Interest is never accrued in the background; callers evaluate it at the
    slot they act in.
    """
    return principal.scale(
        checked_mul(interest_rate_bps, slots_elapsed),
        checked_mul(BPS_SCALE, slots_per_year),
    )


def compute_total_due(
    loan: LoanRecord,
    interest_rate_bps: int,
    current_slot: int,
    slots_per_year: int = SLOTS_PER_YEAR,
) -> ConfidentialValue:
    """Outstanding due including interest accrued up to current_slot."""
    slots_elapsed = checked_sub(current_slot, loan.last_update_slot)
    interest = compute_interest_accrued(
        loan.encrypted_principal, interest_rate_bps, slots_elapsed, slots_per_year
    )
    return loan.encrypted_principal.add(interest)


@dataclass(frozen=True, slots=True)
class RepaymentBreakdown:
    """Confidential outputs of a repayment reconciliation."""
    repay_amount: ConfidentialValue
    interest_accrued: ConfidentialValue
    total_due: ConfidentialValue
    actual_repay: ConfidentialValue
    overpayment: ConfidentialValue
    remaining_due: ConfidentialValue
    collateral_release: Optional[ConfidentialValue]


def calculate_repayment(
    principal: ConfidentialValue,
    repay_amount: ConfidentialValue,
    locked_collateral: ConfidentialValue,
    interest_rate_bps: int,
    slots_elapsed: int,
    slots_per_year: int = SLOTS_PER_YEAR,
) -> RepaymentBreakdown:
    """
    Reconcile a repayment against the outstanding due.

    PURE FUNCTION - nothing is decrypted except the zero test on total_due,
    which decides whether a proportional release is computed at all.

    Overpaying is never an error: the excess is reported as overpayment and
    left where it was posted.
    """
    interest = compute_interest_accrued(principal, interest_rate_bps, slots_elapsed, slots_per_year)
    total_due = principal.add(interest)
    actual = repay_amount.min(total_due)
    overpayment = repay_amount.sub(actual)
    remaining = total_due.sub(actual)
    if total_due.is_zero():
        release = None
    else:
        release = locked_collateral.scale_by_ratio(actual, total_due)
    return RepaymentBreakdown(
        repay_amount=repay_amount,
        interest_accrued=interest,
        total_due=total_due,
        actual_repay=actual,
        overpayment=overpayment,
        remaining_due=remaining,
        collateral_release=release,
    )


# ============================================================================
# PRECONDITIONS
# ============================================================================

def _require_borrower(loan: LoanRecord, caller: str) -> None:
    if caller != loan.borrower_id:
        raise AuthorizationError(f"{caller} is not the borrower of {loan.loan_id}")


def _require_owned(account: AccountRef, caller: str, asset: str) -> None:
    if account.owner != caller:
        raise AuthorizationError(f"{caller} does not own account {account}")
    if account.asset != asset:
        raise ValueError(f"account {account} does not hold {asset}")


def _require_collateral_open(loan: LoanRecord) -> None:
    if loan.state is LoanState.CLOSED:
        raise LoanClosed(f"loan {loan.loan_id} is closed")
    if loan.state is not LoanState.COLLATERAL_OPEN:
        raise CollateralLocked(f"collateral of {loan.loan_id} is locked")


def _require_borrowed(loan: LoanRecord) -> None:
    if loan.state is LoanState.CLOSED:
        raise LoanClosed(f"loan {loan.loan_id} is closed")
    if loan.state is not LoanState.BORROWED:
        raise InvalidLoanState(f"loan {loan.loan_id} is {loan.state.value}, not borrowed")


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_initialize_loan(view: LedgerView, pool_id: str, borrower_id: str) -> PendingTransaction:
    """
    Open a loan for a borrower in COLLATERAL_OPEN with zero principal.

    Opens a zero collateral position and a zero repayment intake, and
    registers the borrower with the pool. A CLOSED loan is re-opened under
    the next generation.

    Raises:
        LoanAlreadyOpen: If the borrower has a loan that is not CLOSED
        BorrowerLimitReached: If the pool has no free borrower slot
    """
    if not borrower_id or not borrower_id.strip():
        raise ValueError("borrower_id cannot be empty")
    terms, _ = load_lending_pool(view, pool_id)
    loan_id = loan_address(pool_id, borrower_id)

    previous: Optional[LoanRecord] = None
    generation = 0
    if view.has_record(loan_id):
        previous = load_loan(view, loan_id)
        if previous.state is not LoanState.CLOSED:
            raise LoanAlreadyOpen(f"{borrower_id} already has an open loan in {pool_id}")
        generation = previous.generation + 1

    collateral_vault, repay_intake = loan_accounts(loan_id, terms, generation)
    zero = view.read_balance(terms.asset_vault).enclave.zero()
    loan = LoanRecord(
        loan_id=loan_id,
        borrower_id=borrower_id,
        pool_id=pool_id,
        encrypted_principal=zero,
        last_update_slot=view.current_slot,
        state=LoanState.COLLATERAL_OPEN,
        active=False,
        generation=generation,
        collateral_vault=collateral_vault,
        repay_intake=repay_intake,
    )

    record_changes: List[RecordChange] = []
    records_to_create: Tuple[Record, ...] = ()
    if previous is None:
        records_to_create = (Record(
            record_id=loan_id,
            record_type=RECORD_TYPE_LOAN,
            _frozen_state=_freeze_state(to_state_dict(loan)),
        ),)
    else:
        record_changes.append(_loan_change(previous, loan))

    registration = compute_register_borrower(view, pool_id, borrower_id)
    if registration is not None:
        record_changes.append(registration)

    return build_transaction(
        view, [], record_changes,
        origin=_loan_origin(borrower_id, loan_id, "INITIALIZE_LOAN"),
        accounts_to_open=(collateral_vault, repay_intake),
        records_to_create=records_to_create,
    )


def compute_deposit_collateral(
    view: LedgerView,
    loan_id: str,
    caller: str,
    source: AccountRef,
    amount: Amount,
) -> PendingTransaction:
    """
    Move collateral from the borrower into the loan's collateral position.

    Raises:
        AuthorizationError: If caller is not the borrower or does not own source
        CollateralLocked: If the loan has borrowed
        LoanClosed: If the loan is closed
    """
    loan = load_loan(view, loan_id)
    _require_borrower(loan, caller)
    _require_collateral_open(loan)
    _require_owned(source, caller, loan.collateral_vault.asset)

    amount = as_confidential(loan.encrypted_principal.enclave, amount)
    moves = [Move(amount, source, loan.collateral_vault, f"deposit_collateral_{loan_id}")]
    return build_transaction(
        view, moves, [_loan_guard(loan)],
        origin=_loan_origin(caller, loan_id, "DEPOSIT_COLLATERAL"),
    )


def compute_withdraw_collateral(
    view: LedgerView,
    loan_id: str,
    caller: str,
    dest: AccountRef,
    amount: Amount,
) -> PendingTransaction:
    """
    Move collateral from the position back to the borrower.

    Raises:
        AuthorizationError: If caller is not the borrower or does not own dest
        CollateralLocked: If the loan has borrowed
        InsufficientCollateral: If amount exceeds the position (ordering revealed only)
    """
    loan = load_loan(view, loan_id)
    _require_borrower(loan, caller)
    _require_collateral_open(loan)
    _require_owned(dest, caller, loan.collateral_vault.asset)

    position = view.read_balance(loan.collateral_vault)
    amount = as_confidential(position.enclave, amount)
    if amount.compare_and_reveal(position) is Ordering.GREATER:
        raise InsufficientCollateral(f"withdrawal exceeds collateral of {loan_id}")

    moves = [Move(amount, loan.collateral_vault, dest, f"withdraw_collateral_{loan_id}")]
    return build_transaction(
        view, moves, [_loan_guard(loan)],
        origin=_loan_origin(caller, loan_id, "WITHDRAW_COLLATERAL"),
    )


def compute_borrow(
    view: LedgerView,
    loan_id: str,
    caller: str,
    asset_dest: AccountRef,
    collateral_dest: AccountRef,
    price: Amount,
) -> PendingTransaction:
    """
    Borrow against the collateral position.

    The loan is the smaller of the collateral's borrowing limit and the
    vault's liquidity. Collateral not needed to back the loan is returned,
    the rest is locked.

    Args:
        view: Read-only ledger access
        loan_id: Loan to borrow on
        caller: Authenticated principal (must be the borrower)
        asset_dest: Borrower account receiving the loan
        collateral_dest: Borrower account receiving excess collateral
        price: Collateral price in loaned-asset units (plain or confidential)

    Raises:
        CollateralLocked / LoanClosed: If the loan is not COLLATERAL_OPEN
        DivisionByZero: If price or loan_to_value_bps is zero
        ZeroLiquidity: If the reserved loan amount is zero
    """
    loan = load_loan(view, loan_id)
    _require_borrower(loan, caller)
    if loan.state is LoanState.BORROWED:
        raise InvalidLoanState(f"loan {loan_id} has already borrowed")
    _require_collateral_open(loan)
    terms, _ = load_lending_pool(view, loan.pool_id)
    _require_owned(asset_dest, caller, terms.asset_id)
    _require_owned(collateral_dest, caller, terms.collateral_id)

    vault = view.read_balance(terms.asset_vault)
    collateral = view.read_balance(loan.collateral_vault)
    price = as_confidential(vault.enclave, price)

    price_ltv = price.mul(terms.loan_to_value_bps)
    max_loan = collateral.scale(price_ltv, BPS_SCALE)
    loan_amount, _ = reserve_for_borrow(vault, max_loan)
    loan_collateral = loan_amount.scale(BPS_SCALE, price_ltv)
    if loan_amount.is_zero():
        raise ZeroLiquidity(f"nothing to lend for {loan_id}")
    collateral_excess = collateral.sub(loan_collateral)

    moves = [
        Move(loan_amount, terms.asset_vault, asset_dest, f"borrow_{loan_id}"),
        Move(collateral_excess, loan.collateral_vault, collateral_dest, f"collateral_excess_{loan_id}"),
    ]
    borrowed = replace(
        loan,
        encrypted_principal=loan_amount,
        last_update_slot=view.current_slot,
        state=LoanState.BORROWED,
        active=True,
    )
    return build_transaction(
        view, moves, [_loan_change(loan, borrowed)],
        origin=_loan_origin(caller, loan_id, "BORROW"),
    )


def compute_repay(
    view: LedgerView,
    loan_id: str,
    caller: str,
    collateral_recipient: AccountRef,
    amount: Optional[Amount] = None,
    payer: Optional[AccountRef] = None,
    slots_per_year: int = SLOTS_PER_YEAR,
) -> PendingTransaction:
    """
    Reconcile the repayment intake against the loan.

    If amount is given it is first posted from the payer account into the
    intake; the whole intake balance is then the repayment. Interest accrued
    since last_update_slot is folded into the due, actual_repay goes to the
    pool owner, a proportional share of the locked collateral goes to
    collateral_recipient and any overpayment stays in the intake until the
    loan is closed.

    This function does not decide who may repay; liquidation gating is
    applied by the caller (see liquidation.resolve_repay_role).

    Raises:
        LoanClosed: If the loan is closed
        InvalidLoanState: If the loan has not borrowed
        AuthorizationError: If caller does not own payer or collateral_recipient
    """
    loan = load_loan(view, loan_id)
    _require_borrowed(loan)
    terms, _ = load_lending_pool(view, loan.pool_id)
    _require_owned(collateral_recipient, caller, terms.collateral_id)

    enclave = loan.encrypted_principal.enclave
    intake = view.read_balance(loan.repay_intake)
    moves: List[Move] = []
    repay_amount = intake
    if amount is not None:
        if payer is None:
            raise ValueError("payer account is required to post a repayment")
        _require_owned(payer, caller, terms.asset_id)
        posted = as_confidential(enclave, amount)
        moves.append(Move(posted, payer, loan.repay_intake, f"post_repayment_{loan_id}"))
        repay_amount = intake.add(posted)

    current_slot = view.current_slot
    breakdown = calculate_repayment(
        principal=loan.encrypted_principal,
        repay_amount=repay_amount,
        locked_collateral=view.read_balance(loan.collateral_vault),
        interest_rate_bps=terms.interest_rate_bps,
        slots_elapsed=checked_sub(current_slot, loan.last_update_slot),
        slots_per_year=slots_per_year,
    )

    moves.append(Move(breakdown.actual_repay, loan.repay_intake, terms.owner_account, f"repay_{loan_id}"))
    if breakdown.collateral_release is not None:
        moves.append(Move(
            breakdown.collateral_release, loan.collateral_vault, collateral_recipient,
            f"collateral_release_{loan_id}",
        ))

    repaid = replace(
        loan,
        encrypted_principal=breakdown.remaining_due,
        last_update_slot=current_slot,
        active=not breakdown.remaining_due.is_zero(),
        repayment_count=loan.repayment_count + 1,
    )
    event_type = "REPAY" if caller == loan.borrower_id else "LIQUIDATE"
    return build_transaction(
        view, moves, [_loan_change(loan, repaid)],
        origin=_loan_origin(caller, loan_id, event_type),
    )


def compute_close_loan(
    view: LedgerView,
    loan_id: str,
    caller: str,
    asset_dest: AccountRef,
    collateral_dest: AccountRef,
    slots_per_year: int = SLOTS_PER_YEAR,
) -> PendingTransaction:
    """
    Close a settled loan.

    Sweeps the intake (overpayment) and any residual collateral to the
    borrower, closes both loan accounts, frees the borrower's pool slot and
    marks the loan CLOSED.

    Raises:
        LoanClosed: If the loan is already closed
        LoanNotSettled: If anything is still due, interest included
    """
    loan = load_loan(view, loan_id)
    _require_borrower(loan, caller)
    if loan.state is LoanState.CLOSED:
        raise LoanClosed(f"loan {loan_id} is already closed")
    terms, _ = load_lending_pool(view, loan.pool_id)
    _require_owned(asset_dest, caller, terms.asset_id)
    _require_owned(collateral_dest, caller, terms.collateral_id)

    remaining = compute_total_due(loan, terms.interest_rate_bps, view.current_slot, slots_per_year)
    if not remaining.is_zero():
        raise LoanNotSettled(f"loan {loan_id} still has an amount due")

    moves = [
        Move(view.read_balance(loan.repay_intake), loan.repay_intake, asset_dest, f"sweep_intake_{loan_id}"),
        Move(view.read_balance(loan.collateral_vault), loan.collateral_vault, collateral_dest,
             f"sweep_collateral_{loan_id}"),
    ]
    closed = replace(loan, last_update_slot=view.current_slot, state=LoanState.CLOSED, active=False)
    record_changes = [_loan_change(loan, closed)]
    release = compute_release_borrower(view, loan.pool_id, loan.borrower_id)
    if release is not None:
        record_changes.append(release)

    return build_transaction(
        view, moves, record_changes,
        origin=_loan_origin(caller, loan_id, "CLOSE_LOAN"),
        accounts_to_close=(loan.repay_intake, loan.collateral_vault),
    )
