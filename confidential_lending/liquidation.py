"""
liquidation.py - Health factor predicate and repay role resolution

A loan is liquidatable when its locked collateral, valued at the collateral
threshold, no longer covers what is due:

    locked * price * collateral_threshold_bps / 10_000  <  total_due

Only the boolean outcome is revealed. Liquidation is not a separate
settlement path: a third party repays through the ordinary repay logic and
receives the proportional collateral release, which is allowed only while
the predicate holds.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Union

from .confidential import ConfidentialValue, Ordering, as_confidential
from .core import LedgerView
from .errors import NotLiquidatable
from .fixed_point import BPS_SCALE, SLOTS_PER_YEAR
from .records.loan import LoanRecord, LoanState, compute_total_due, load_loan
from .records.pool import load_lending_pool


# ============================================================================
# PURE PREDICATE
# ============================================================================

def health_factor_below_one(
    locked_collateral: ConfidentialValue,
    total_due: ConfidentialValue,
    price: Union[ConfidentialValue, int],
    collateral_threshold_bps: int,
) -> bool:
    """
    Return True if the threshold-weighted collateral value is below the due.

    Example:
        # collateral 100, price 1, threshold 8000 -> 80 < 90
        health_factor_below_one(enc(100), enc(90), 1, 8000)  # True
    """
    price = as_confidential(locked_collateral.enclave, price)
    lhs = locked_collateral.scale(price.mul(collateral_threshold_bps), BPS_SCALE)
    return lhs.compare_and_reveal(total_due) is Ordering.LESS


def compute_health_check(
    view: LedgerView,
    loan_id: str,
    price: Union[ConfidentialValue, int],
    slots_per_year: int = SLOTS_PER_YEAR,
) -> bool:
    """
    Evaluate the health predicate for a loan at the view's current slot.

    The due includes interest accrued since the last repayment. A loan that
    has not borrowed, or is closed, is never liquidatable.
    """
    loan = load_loan(view, loan_id)
    if loan.state is not LoanState.BORROWED:
        return False
    terms, _ = load_lending_pool(view, loan.pool_id)
    total_due = compute_total_due(loan, terms.interest_rate_bps, view.current_slot, slots_per_year)
    return health_factor_below_one(
        view.read_balance(loan.collateral_vault),
        total_due,
        price,
        terms.collateral_threshold_bps,
    )


# ============================================================================
# REPAY ROLES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BorrowerRepay:
    """The borrower repays their own loan; always allowed."""
    borrower_id: str


@dataclass(frozen=True, slots=True)
class ThirdPartyLiquidate:
    """Anyone else repays; allowed only while the loan is liquidatable."""
    liquidator_id: str


RepayRole = Union[BorrowerRepay, ThirdPartyLiquidate]


def resolve_repay_role(
    view: LedgerView,
    loan: LoanRecord,
    caller: str,
    price: Union[ConfidentialValue, int],
    slots_per_year: int = SLOTS_PER_YEAR,
) -> RepayRole:
    """
    Decide in which role caller may repay the loan.

    Raises:
        NotLiquidatable: If caller is not the borrower and the loan's health
            factor is not below one
    """
    if caller == loan.borrower_id:
        return BorrowerRepay(caller)
    if not compute_health_check(view, loan.loan_id, price, slots_per_year):
        raise NotLiquidatable(f"loan {loan.loan_id} is not liquidatable")
    return ThirdPartyLiquidate(caller)
