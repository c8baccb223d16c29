"""
conftest.py - Shared pytest fixtures for lending engine tests

Provides common fixtures used across unit, functional and conformance tests:
- Enclaves and empty ledgers
- A funded lending market (pool, liquidity, borrower collateral)
- Pool record helpers for FakeView based tests
"""

import pytest
from dataclasses import dataclass
from typing import Dict, Optional

from confidential_lending import (
    AccountRef,
    AuthenticatedCaller,
    ConfidentialEnclave,
    ConfidentialLedger,
    LendingPoolState,
    LendingPoolTerms,
    LendingProtocol,
    SLOTS_PER_YEAR,
    StaticPriceOracle,
    pool_address,
)
from confidential_lending.records import pool_to_state_dict, vault_account

from tests.fake_view import FakeView


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def reveal(ledger: ConfidentialLedger, account: AccountRef) -> int:
    """Open a balance with the ledger's enclave (test-only owner view)."""
    return ledger.enclave.decrypt(ledger.read_balance(account))


def balances_snapshot(ledger: ConfidentialLedger) -> Dict[AccountRef, int]:
    """Plaintext copy of every open balance."""
    return {ref: reveal(ledger, ref) for ref in ledger.list_accounts()}


def pool_record(
    owner_id: str = "lender",
    asset_id: str = "USDC",
    collateral_id: str = "SOL",
    interest_rate_bps: int = 1000,
    loan_to_value_bps: int = 5000,
    collateral_threshold_bps: int = 8000,
    max_borrowers: int = 8,
    borrowers: tuple = (),
) -> tuple:
    """Return (pool_id, terms, state dict) for seeding a FakeView."""
    pool_id = pool_address(owner_id, asset_id, collateral_id)
    terms = LendingPoolTerms(
        pool_id=pool_id,
        owner_id=owner_id,
        asset_id=asset_id,
        collateral_id=collateral_id,
        interest_rate_bps=interest_rate_bps,
        loan_to_value_bps=loan_to_value_bps,
        collateral_threshold_bps=collateral_threshold_bps,
        asset_vault=vault_account(pool_id, asset_id),
        owner_account=AccountRef(owner_id, asset_id),
        max_borrowers=max_borrowers,
    )
    return pool_id, terms, pool_to_state_dict(terms, LendingPoolState(borrowers=borrowers))


@dataclass
class Market:
    """A lending pool with liquidity and one borrower holding collateral."""
    ledger: ConfidentialLedger
    protocol: LendingProtocol
    oracle: StaticPriceOracle
    pool_id: str
    lender: AuthenticatedCaller
    borrower: AuthenticatedCaller
    lender_usdc: AccountRef
    borrower_usdc: AccountRef
    borrower_sol: AccountRef

    def reveal(self, account: AccountRef) -> int:
        return reveal(self.ledger, account)

    @property
    def loan(self):
        return self.protocol.loan_state(self.pool_id, self.borrower.principal)

    def open_loan(self, collateral: int) -> None:
        """Initialize the borrower's loan and post collateral."""
        self.protocol.initialize_loan(self.borrower, self.pool_id)
        self.protocol.deposit_collateral(self.borrower, self.pool_id, self.borrower_sol, collateral)

    def borrow(self) -> None:
        self.protocol.borrow(self.borrower, self.pool_id, self.borrower_usdc, self.borrower_sol)

    def add_participant(self, name: str, usdc: int = 0, sol: int = 0) -> tuple:
        """Open USDC and SOL accounts for a principal, optionally funded."""
        usdc_ref = self.ledger.mint_account(name, "USDC")
        sol_ref = self.ledger.mint_account(name, "SOL")
        if usdc:
            self.ledger.issue(usdc_ref, usdc)
        if sol:
            self.ledger.issue(sol_ref, sol)
        return AuthenticatedCaller(name), usdc_ref, sol_ref


def build_market(
    price: int = 2,
    liquidity: int = 1_000,
    borrower_sol: int = 50,
    borrower_usdc: int = 0,
    interest_rate_bps: int = 1000,
    loan_to_value_bps: int = 5000,
    collateral_threshold_bps: int = 8000,
    slots_per_year: int = SLOTS_PER_YEAR,
    max_borrowers: int = 8,
    enclave: Optional[ConfidentialEnclave] = None,
) -> Market:
    """Set up a pool owned by 'lender' and a borrower 'alice' with SOL."""
    ledger = ConfidentialLedger("test", enclave or ConfidentialEnclave(label="test"), verbose=False)
    protocol = LendingProtocol(ledger, slots_per_year=slots_per_year)
    oracle = StaticPriceOracle(price)

    lender = AuthenticatedCaller("lender")
    lender_usdc = ledger.mint_account("lender", "USDC")
    ledger.issue(lender_usdc, liquidity)

    protocol.initialize_lending_pool(
        lender, "USDC", "SOL",
        interest_rate_bps, loan_to_value_bps, collateral_threshold_bps,
        oracle=oracle, max_borrowers=max_borrowers,
    )
    pool_id = pool_address("lender", "USDC", "SOL")
    if liquidity:
        protocol.deposit_liquidity(lender, pool_id, lender_usdc, liquidity)

    borrower = AuthenticatedCaller("alice")
    alice_usdc = ledger.mint_account("alice", "USDC")
    alice_sol = ledger.mint_account("alice", "SOL")
    if borrower_sol:
        ledger.issue(alice_sol, borrower_sol)
    if borrower_usdc:
        ledger.issue(alice_usdc, borrower_usdc)

    return Market(
        ledger=ledger,
        protocol=protocol,
        oracle=oracle,
        pool_id=pool_id,
        lender=lender,
        borrower=borrower,
        lender_usdc=lender_usdc,
        borrower_usdc=alice_usdc,
        borrower_sol=alice_sol,
    )


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def enclave():
    """Fresh enclave with a random key."""
    return ConfidentialEnclave(label="test")


@pytest.fixture
def empty_ledger(enclave):
    """Fresh ledger with no accounts."""
    return ConfidentialLedger("test", enclave, verbose=False)


@pytest.fixture
def basic_ledger(empty_ledger):
    """Ledger with USDC accounts for alice and bob; alice holds 10,000."""
    alice = empty_ledger.mint_account("alice", "USDC")
    empty_ledger.mint_account("bob", "USDC")
    empty_ledger.issue(alice, 10_000)
    return empty_ledger


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market():
    """Pool(rate=1000, ltv=5000, threshold=8000), price 2, vault 1000, alice holds 50 SOL."""
    return build_market()


@pytest.fixture
def borrowed_market(market):
    """Market in which alice posted 50 SOL and borrowed 50 USDC."""
    market.open_loan(50)
    market.borrow()
    return market


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def pool_view(enclave):
    """FakeView holding one pool record and a vault of 1,000."""
    pool_id, terms, state = pool_record()
    return FakeView(
        enclave,
        balances={
            terms.asset_vault: 1_000,
            AccountRef("lender", "USDC"): 500,
        },
        records={pool_id: state},
        slot=0,
    )
