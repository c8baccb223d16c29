"""
Records module - Lending pool and loan records.

Each record type follows the same layout: frozen dataclasses for typed
access, load_* / to_state_dict adapters, pure calculation functions, and
compute_* functions that return a PendingTransaction.
"""

from .pool import (
    MAX_BORROWERS,
    LendingPoolTerms,
    LendingPoolState,
    pool_address,
    vault_account,
    load_lending_pool,
    validate_pool_terms,
    reserve_for_borrow,
    register_borrower,
    release_borrower,
    free_borrower_slots,
    create_lending_pool,
    compute_deposit_liquidity,
    compute_withdraw_liquidity,
    compute_register_borrower,
    compute_release_borrower,
)
from .pool import to_state_dict as pool_to_state_dict

from .loan import (
    LoanState,
    LoanRecord,
    RepaymentBreakdown,
    loan_address,
    loan_accounts,
    load_loan,
    compute_interest_accrued,
    compute_total_due,
    calculate_repayment,
    compute_initialize_loan,
    compute_deposit_collateral,
    compute_withdraw_collateral,
    compute_borrow,
    compute_repay,
    compute_close_loan,
)
from .loan import to_state_dict as loan_to_state_dict
