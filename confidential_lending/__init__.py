"""
confidential_lending - Collateralized lending over confidential balances

Collateral and loan amounts stay encrypted for everyone but their owner.
The protocol enforces borrowing limits, interest, proportional collateral
release and liquidation using blind arithmetic and reveals of single
orderings or bits.

Usage:
    from confidential_lending import (
        ConfidentialEnclave, ConfidentialLedger, LendingProtocol,
        AuthenticatedCaller, StaticPriceOracle, pool_address,
    )

    enclave = ConfidentialEnclave()
    ledger = ConfidentialLedger("main", enclave)
    protocol = LendingProtocol(ledger)

    lender = AuthenticatedCaller("lender")
    lender_usdc = ledger.mint_account("lender", "USDC")
    ledger.issue(lender_usdc, 1_000)

    protocol.initialize_lending_pool(
        lender, "USDC", "SOL",
        interest_rate_bps=1000, loan_to_value_bps=5000, collateral_threshold_bps=8000,
        oracle=StaticPriceOracle(2),
    )
    pool_id = pool_address("lender", "USDC", "SOL")
    protocol.deposit_liquidity(lender, pool_id, lender_usdc, 1_000)
"""

# Fixed point arithmetic
from .fixed_point import (
    BPS_SCALE,
    SLOTS_PER_YEAR,
    U64_MAX,
    checked_add,
    checked_sub,
    checked_mul,
    checked_div,
    mul_div,
    bps_of,
    interest_for_slots,
)

# Confidential values
from .confidential import (
    ConfidentialEnclave,
    ConfidentialValue,
    ConfidentialBool,
    Ordering,
    ForeignCiphertext,
    confidential_select,
    as_confidential,
)

# Errors
from .errors import (
    LendingError,
    ConfigurationError,
    ArithmeticFault,
    DivisionByZero,
    ArithmeticOverflow,
    Underflow,
    StateError,
    CollateralLocked,
    LoanAlreadyOpen,
    LoanNotSettled,
    LoanClosed,
    LoanNotFound,
    PoolNotFound,
    PoolAlreadyExists,
    BorrowerLimitReached,
    InvalidLoanState,
    InsufficientCollateral,
    LiquidityError,
    InsufficientLiquidity,
    ZeroLiquidity,
    AuthorizationError,
    LiquidationError,
    NotLiquidatable,
    TransferFailed,
)

# Core types
from .core import (
    LedgerView,
    AccountRef,
    Move,
    Record,
    RecordChange,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    ExecuteResult,
    build_transaction,
    system_account,
    LedgerError,
    AccountNotRegistered,
    AccountAlreadyExists,
    AccountNotEmpty,
    RecordNotFound,
    StaleRecord,
    SYSTEM_ACCOUNT,
    RECORD_TYPE_LENDING_POOL,
    RECORD_TYPE_LOAN,
)

# Ledger
from .ledger import ConfidentialLedger

# Price oracles
from .price_oracle import (
    PriceOracle,
    PriceUnavailable,
    StaticPriceOracle,
    SlotSeriesPriceOracle,
    ConfidentialPriceOracle,
)

# Pools and loans
from .records import (
    MAX_BORROWERS,
    LendingPoolTerms,
    LendingPoolState,
    pool_address,
    load_lending_pool,
    reserve_for_borrow,
    create_lending_pool,
    compute_deposit_liquidity,
    compute_withdraw_liquidity,
    LoanState,
    LoanRecord,
    RepaymentBreakdown,
    loan_address,
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

# Liquidation
from .liquidation import (
    health_factor_below_one,
    compute_health_check,
    BorrowerRepay,
    ThirdPartyLiquidate,
    RepayRole,
    resolve_repay_role,
)

# Protocol
from .protocol import AuthenticatedCaller, LendingProtocol


__all__ = [
    # Fixed point
    'BPS_SCALE', 'SLOTS_PER_YEAR', 'U64_MAX',
    'checked_add', 'checked_sub', 'checked_mul', 'checked_div',
    'mul_div', 'bps_of', 'interest_for_slots',
    # Confidential values
    'ConfidentialEnclave', 'ConfidentialValue', 'ConfidentialBool', 'Ordering',
    'ForeignCiphertext', 'confidential_select', 'as_confidential',
    # Errors
    'LendingError', 'ConfigurationError',
    'ArithmeticFault', 'DivisionByZero', 'ArithmeticOverflow', 'Underflow',
    'StateError', 'CollateralLocked', 'LoanAlreadyOpen', 'LoanNotSettled', 'LoanClosed',
    'LoanNotFound', 'PoolNotFound', 'PoolAlreadyExists', 'BorrowerLimitReached',
    'InvalidLoanState', 'InsufficientCollateral',
    'LiquidityError', 'InsufficientLiquidity', 'ZeroLiquidity',
    'AuthorizationError', 'LiquidationError', 'NotLiquidatable', 'TransferFailed',
    # Core
    'LedgerView', 'AccountRef', 'Move', 'Record', 'RecordChange',
    'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType', 'ExecuteResult',
    'build_transaction', 'system_account',
    'LedgerError', 'AccountNotRegistered', 'AccountAlreadyExists', 'AccountNotEmpty',
    'RecordNotFound', 'StaleRecord',
    'SYSTEM_ACCOUNT', 'RECORD_TYPE_LENDING_POOL', 'RECORD_TYPE_LOAN',
    # Ledger
    'ConfidentialLedger',
    # Price oracles
    'PriceOracle', 'PriceUnavailable', 'StaticPriceOracle', 'SlotSeriesPriceOracle',
    'ConfidentialPriceOracle',
    # Pools
    'MAX_BORROWERS', 'LendingPoolTerms', 'LendingPoolState', 'pool_address', 'load_lending_pool',
    'reserve_for_borrow', 'create_lending_pool',
    'compute_deposit_liquidity', 'compute_withdraw_liquidity',
    # Loans
    'LoanState', 'LoanRecord', 'RepaymentBreakdown', 'loan_address', 'load_loan',
    'compute_interest_accrued', 'compute_total_due', 'calculate_repayment',
    'compute_initialize_loan', 'compute_deposit_collateral', 'compute_withdraw_collateral',
    'compute_borrow', 'compute_repay', 'compute_close_loan',
    # Liquidation
    'health_factor_below_one', 'compute_health_check',
    'BorrowerRepay', 'ThirdPartyLiquidate', 'RepayRole', 'resolve_repay_role',
    # Protocol
    'AuthenticatedCaller', 'LendingProtocol',
]

__version__ = '1.0.0'
