"""
errors.py - Error taxonomy for the lending engine

Every error is local and non-retriable within the operation that raised it.
Messages name accounts, records and lifecycle states only. They never carry
a decrypted amount.

Hierarchy:
    LendingError
    ├── ConfigurationError          invalid pool configuration
    ├── ArithmeticFault             DivisionByZero, ArithmeticOverflow, Underflow
    ├── StateError                  wrong lifecycle state for the action
    ├── LiquidityError              InsufficientLiquidity, ZeroLiquidity
    ├── AuthorizationError          caller is not the required principal
    ├── LiquidationError            NotLiquidatable
    └── TransferFailed              the ledger rejected the settlement
"""


class LendingError(Exception):
    """Base exception for all lending engine errors."""
    pass


# ============================================================================
# CONFIGURATION
# ============================================================================

class ConfigurationError(LendingError):
    """Raised when pool configuration fields are invalid."""
    pass


# ============================================================================
# ARITHMETIC
# ============================================================================

class ArithmeticFault(LendingError):
    """Base class for fixed point arithmetic failures."""
    pass


class DivisionByZero(ArithmeticFault):
    """Raised when a divisor is zero (e.g. price == 0)."""
    pass


class ArithmeticOverflow(ArithmeticFault):
    """Raised when an intermediate or result exceeds its integer width."""
    pass


class Underflow(ArithmeticFault):
    """Raised when a subtraction would produce a negative amount."""
    pass


# ============================================================================
# LIFECYCLE STATE
# ============================================================================

class StateError(LendingError):
    """Raised when a record is in the wrong lifecycle state for an action."""
    pass


class CollateralLocked(StateError):
    """Collateral can no longer be adjusted directly once borrowing began."""
    pass


class LoanAlreadyOpen(StateError):
    """The borrower already has a loan in this pool that is not closed."""
    pass


class LoanNotSettled(StateError):
    """The loan still has a non-zero remaining due."""
    pass


class LoanClosed(StateError):
    """The loan has already been closed."""
    pass


class LoanNotFound(StateError):
    """No loan exists for the borrower in this pool."""
    pass


class PoolNotFound(StateError):
    """No lending pool record exists for the id."""
    pass


class PoolAlreadyExists(StateError):
    """A pool already exists for this owner and asset pair."""
    pass


class BorrowerLimitReached(StateError):
    """The pool has no free borrower slots."""
    pass


class InvalidLoanState(StateError):
    """The loan is not in the state the operation requires."""
    pass


class InsufficientCollateral(StateError):
    """A collateral withdrawal exceeds the collateral position."""
    pass


# ============================================================================
# LIQUIDITY
# ============================================================================

class LiquidityError(LendingError):
    """Base class for vault liquidity failures."""
    pass


class InsufficientLiquidity(LiquidityError):
    """A withdrawal would drive the vault negative."""
    pass


class ZeroLiquidity(LiquidityError):
    """The pool had nothing to lend for this borrow."""
    pass


# ============================================================================
# AUTHORIZATION / LIQUIDATION / SETTLEMENT
# ============================================================================

class AuthorizationError(LendingError):
    """The caller is not the principal the operation requires."""
    pass


class LiquidationError(LendingError):
    """Base class for liquidation failures."""
    pass


class NotLiquidatable(LiquidationError):
    """A third party tried to repay a loan that is not below health factor one."""
    pass


class TransferFailed(LendingError):
    """The confidential ledger rejected the settlement transfers."""
    pass
