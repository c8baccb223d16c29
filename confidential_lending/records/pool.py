"""
pool.py - Lending pools: configuration, vault liquidity, borrower registry

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - LendingPoolTerms: pool configuration (set at creation, never changes)
   - LendingPoolState: registered borrowers (changes as loans open and close)

2. ADAPTER FUNCTIONS (load_lending_pool / to_state_dict):
   - The ONLY place that reads pool records from a LedgerView

3. PURE CALCULATION FUNCTIONS:
   - reserve_for_borrow, register_borrower, release_borrower

4. CONVENIENCE FUNCTIONS (create_* / compute_*):
   - Take (view, pool_id, ...), load, validate, return a PendingTransaction

The vault is a confidential account owned by the pool record. Its encrypted
balance is the pool's available liquidity and is re-read from the ledger at
the start of every operation; the pool record never caches it.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from ..confidential import ConfidentialValue, Ordering, as_confidential, confidential_select
from ..core import (
    AccountRef, LedgerView, Move, OriginType, PendingTransaction, Record, RecordChange,
    TransactionOrigin, RECORD_TYPE_LENDING_POOL,
    build_transaction, _freeze_state,
)
from ..errors import (
    AuthorizationError, BorrowerLimitReached, ConfigurationError,
    InsufficientLiquidity, PoolAlreadyExists, PoolNotFound,
)
from ..fixed_point import validate_bps


MAX_BORROWERS = 8

VAULT_LABEL = "vault"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LendingPoolTerms:
    """
    Immutable pool configuration.

    Invariant: loan_to_value_bps < collateral_threshold_bps <= 10_000.
    """
    pool_id: str
    owner_id: str
    asset_id: str
    collateral_id: str
    interest_rate_bps: int
    loan_to_value_bps: int
    collateral_threshold_bps: int
    asset_vault: AccountRef
    owner_account: AccountRef
    max_borrowers: int = MAX_BORROWERS


@dataclass(frozen=True, slots=True)
class LendingPoolState:
    """Borrowers currently holding an open loan in the pool."""
    borrowers: Tuple[str, ...] = ()


def pool_address(owner_id: str, asset_id: str, collateral_id: str) -> str:
    """Deterministic pool id for an (owner, asset, collateral) triple."""
    return f"pool:{owner_id}:{asset_id}:{collateral_id}"


def vault_account(pool_id: str, asset_id: str) -> AccountRef:
    return AccountRef(pool_id, asset_id, VAULT_LABEL)


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_lending_pool(view: LedgerView, pool_id: str) -> Tuple[LendingPoolTerms, LendingPoolState]:
    """
    Load a lending pool record as typed frozen dataclasses.

    Raises:
        PoolNotFound: If no pool record exists for pool_id
    """
    if not view.has_record(pool_id):
        raise PoolNotFound(f"pool {pool_id} not found")
    raw = view.get_record_state(pool_id)
    terms = LendingPoolTerms(
        pool_id=pool_id,
        owner_id=raw['owner_id'],
        asset_id=raw['asset_id'],
        collateral_id=raw['collateral_id'],
        interest_rate_bps=raw['interest_rate_bps'],
        loan_to_value_bps=raw['loan_to_value_bps'],
        collateral_threshold_bps=raw['collateral_threshold_bps'],
        asset_vault=raw['asset_vault'],
        owner_account=raw['owner_account'],
        max_borrowers=raw.get('max_borrowers', MAX_BORROWERS),
    )
    state = LendingPoolState(borrowers=tuple(raw.get('borrowers', ())))
    return terms, state


def to_state_dict(terms: LendingPoolTerms, state: LendingPoolState) -> Dict[str, Any]:
    """Inverse of load_lending_pool(), used to build record changes."""
    return {
        'owner_id': terms.owner_id,
        'asset_id': terms.asset_id,
        'collateral_id': terms.collateral_id,
        'interest_rate_bps': terms.interest_rate_bps,
        'loan_to_value_bps': terms.loan_to_value_bps,
        'collateral_threshold_bps': terms.collateral_threshold_bps,
        'asset_vault': terms.asset_vault,
        'owner_account': terms.owner_account,
        'max_borrowers': terms.max_borrowers,
        'borrowers': tuple(state.borrowers),
    }


# ============================================================================
# VALIDATION
# ============================================================================

def validate_pool_terms(
    owner_id: str,
    asset_id: str,
    collateral_id: str,
    interest_rate_bps: int,
    loan_to_value_bps: int,
    collateral_threshold_bps: int,
    max_borrowers: int,
) -> None:
    """
    Check pool configuration.

    Raises:
        ConfigurationError: If ids are empty or equal, a bps field is outside
            [0, 10_000], loan_to_value_bps >= collateral_threshold_bps, or
            max_borrowers is not positive
    """
    if not owner_id or not owner_id.strip():
        raise ConfigurationError("owner_id cannot be empty")
    if not asset_id or not asset_id.strip():
        raise ConfigurationError("asset_id cannot be empty")
    if not collateral_id or not collateral_id.strip():
        raise ConfigurationError("collateral_id cannot be empty")
    if asset_id == collateral_id:
        raise ConfigurationError("asset_id and collateral_id must be different")

    for name, value in (
        ('interest_rate_bps', interest_rate_bps),
        ('loan_to_value_bps', loan_to_value_bps),
        ('collateral_threshold_bps', collateral_threshold_bps),
    ):
        validate_bps(name, value)

    if loan_to_value_bps >= collateral_threshold_bps:
        raise ConfigurationError(
            f"loan_to_value_bps ({loan_to_value_bps}) must be below "
            f"collateral_threshold_bps ({collateral_threshold_bps})"
        )
    if not isinstance(max_borrowers, int) or isinstance(max_borrowers, bool) or max_borrowers <= 0:
        raise ConfigurationError(f"max_borrowers must be a positive integer, got {max_borrowers!r}")


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def reserve_for_borrow(
    vault_balance: ConfidentialValue,
    requested: ConfidentialValue,
) -> Tuple[ConfidentialValue, ConfidentialValue]:
    """
    Reserve min(requested, vault) for a borrow without decrypting either.

    Only the bit "requested > vault" is revealed; the chosen ciphertext is
    re-randomised so it cannot be matched against either operand.

    Returns:
        (reserved, vault_after) where vault_after = vault - reserved
    """
    over = requested.compare_and_reveal(vault_balance) is Ordering.GREATER
    reserved = confidential_select(over, vault_balance, requested)
    return reserved, vault_balance.sub(reserved)


def register_borrower(terms: LendingPoolTerms, state: LendingPoolState, borrower_id: str) -> LendingPoolState:
    """
    Add a borrower to the pool registry.

    Raises:
        BorrowerLimitReached: If every borrower slot is taken
    """
    if borrower_id in state.borrowers:
        return state
    if len(state.borrowers) >= terms.max_borrowers:
        raise BorrowerLimitReached(
            f"pool {terms.pool_id} has no free borrower slots ({terms.max_borrowers} in use)"
        )
    return LendingPoolState(borrowers=state.borrowers + (borrower_id,))


def release_borrower(state: LendingPoolState, borrower_id: str) -> LendingPoolState:
    """Free a borrower's slot once their loan is closed."""
    return LendingPoolState(borrowers=tuple(b for b in state.borrowers if b != borrower_id))


def free_borrower_slots(terms: LendingPoolTerms, state: LendingPoolState) -> int:
    return terms.max_borrowers - len(state.borrowers)


def _pool_origin(caller: str, pool_id: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.PROTOCOL,
        source_id=caller,
        record_id=pool_id,
        event_type=event_type,
    )


def _require_owner(terms: LendingPoolTerms, caller: str) -> None:
    if caller != terms.owner_id:
        raise AuthorizationError(f"{caller} is not the owner of pool {terms.pool_id}")


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def create_lending_pool(
    view: LedgerView,
    owner_id: str,
    asset_id: str,
    collateral_id: str,
    interest_rate_bps: int,
    loan_to_value_bps: int,
    collateral_threshold_bps: int,
    max_borrowers: int = MAX_BORROWERS,
    owner_account: Optional[AccountRef] = None,
) -> PendingTransaction:
    """
    Create a lending pool record and its empty asset vault.

    Args:
        view: Read-only ledger access
        owner_id: Pool owner (liquidity provider), receives repayments
        asset_id: Asset lent by the pool
        collateral_id: Asset accepted as collateral
        interest_rate_bps: Flat annual rate
        loan_to_value_bps: Maximum loan value as a share of collateral value
        collateral_threshold_bps: Liquidation threshold
        max_borrowers: Borrower slots (default: 8)
        owner_account: Account receiving repayments
            (default: the owner's "main" account of the asset)

    Returns:
        PendingTransaction creating the record and opening the vault

    Raises:
        ConfigurationError: If the configuration is invalid
        PoolAlreadyExists: If the pool was already created

    Example:
        pending = create_lending_pool(ledger, "lender", "USDC", "SOL", 1000, 5000, 8000)
        ledger.execute(pending)
    """
    validate_pool_terms(
        owner_id, asset_id, collateral_id,
        interest_rate_bps, loan_to_value_bps, collateral_threshold_bps,
        max_borrowers,
    )
    if owner_account is None:
        owner_account = AccountRef(owner_id, asset_id)
    if owner_account.asset != asset_id:
        raise ConfigurationError(
            f"owner_account holds {owner_account.asset}, pool lends {asset_id}"
        )
    pool_id = pool_address(owner_id, asset_id, collateral_id)
    if view.has_record(pool_id):
        raise PoolAlreadyExists(f"pool {pool_id} already exists")

    terms = LendingPoolTerms(
        pool_id=pool_id,
        owner_id=owner_id,
        asset_id=asset_id,
        collateral_id=collateral_id,
        interest_rate_bps=interest_rate_bps,
        loan_to_value_bps=loan_to_value_bps,
        collateral_threshold_bps=collateral_threshold_bps,
        asset_vault=vault_account(pool_id, asset_id),
        owner_account=owner_account,
        max_borrowers=max_borrowers,
    )
    record = Record(
        record_id=pool_id,
        record_type=RECORD_TYPE_LENDING_POOL,
        _frozen_state=_freeze_state(to_state_dict(terms, LendingPoolState())),
    )
    return build_transaction(
        view, [],
        origin=_pool_origin(owner_id, pool_id, "INITIALIZE_POOL"),
        accounts_to_open=(terms.asset_vault,),
        records_to_create=(record,),
    )


def compute_deposit_liquidity(
    view: LedgerView,
    pool_id: str,
    caller: str,
    source: AccountRef,
    amount: Union[ConfidentialValue, int],
) -> PendingTransaction:
    """
    Move liquidity from the owner's account into the pool vault.

    Raises:
        AuthorizationError: If caller is not the pool owner or does not own source
        ValueError: If source holds a different asset
    """
    terms, _ = load_lending_pool(view, pool_id)
    _require_owner(terms, caller)
    if source.owner != caller:
        raise AuthorizationError(f"{caller} does not own account {source}")
    if source.asset != terms.asset_id:
        raise ValueError(f"source asset {source.asset} does not match pool asset {terms.asset_id}")

    vault = view.read_balance(terms.asset_vault)
    amount = as_confidential(vault.enclave, amount)
    moves = [Move(amount, source, terms.asset_vault, f"deposit_liquidity_{pool_id}")]
    return build_transaction(view, moves, origin=_pool_origin(caller, pool_id, "DEPOSIT_LIQUIDITY"))


def compute_withdraw_liquidity(
    view: LedgerView,
    pool_id: str,
    caller: str,
    dest: AccountRef,
    amount: Union[ConfidentialValue, int],
) -> PendingTransaction:
    """
    Move liquidity from the pool vault back to the owner.

    Raises:
        AuthorizationError: If caller is not the pool owner
        InsufficientLiquidity: If amount exceeds the vault balance
            (only the ordering is revealed)
    """
    terms, _ = load_lending_pool(view, pool_id)
    _require_owner(terms, caller)
    if dest.asset != terms.asset_id:
        raise ValueError(f"dest asset {dest.asset} does not match pool asset {terms.asset_id}")

    vault = view.read_balance(terms.asset_vault)
    amount = as_confidential(vault.enclave, amount)
    if amount.compare_and_reveal(vault) is Ordering.GREATER:
        raise InsufficientLiquidity(f"withdrawal exceeds liquidity of pool {pool_id}")

    moves = [Move(amount, terms.asset_vault, dest, f"withdraw_liquidity_{pool_id}")]
    return build_transaction(view, moves, origin=_pool_origin(caller, pool_id, "WITHDRAW_LIQUIDITY"))


def compute_register_borrower(
    view: LedgerView,
    pool_id: str,
    borrower_id: str,
) -> Optional[RecordChange]:
    """
    Record change adding a borrower to the pool registry.

    Returns None if the borrower is already registered.
    """
    terms, state = load_lending_pool(view, pool_id)
    new_state = register_borrower(terms, state, borrower_id)
    if new_state == state:
        return None
    return RecordChange(
        record_id=pool_id,
        old_state=to_state_dict(terms, state),
        new_state=to_state_dict(terms, new_state),
    )


def compute_release_borrower(
    view: LedgerView,
    pool_id: str,
    borrower_id: str,
) -> Optional[RecordChange]:
    """Record change removing a borrower from the pool registry, if present."""
    terms, state = load_lending_pool(view, pool_id)
    if borrower_id not in state.borrowers:
        return None
    return RecordChange(
        record_id=pool_id,
        old_state=to_state_dict(terms, state),
        new_state=to_state_dict(terms, release_borrower(state, borrower_id)),
    )
