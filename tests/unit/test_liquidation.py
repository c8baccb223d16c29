"""
test_liquidation.py - Unit tests for the health predicate and liquidation

Tests:
- health_factor_below_one: threshold arithmetic and the single revealed bit
- compute_health_check: state gating, interest-driven deterioration
- resolve_repay_role: borrower vs third party
- Liquidation through LendingProtocol.repay
"""

import pytest

from confidential_lending import (
    BorrowerRepay, ConfidentialPriceOracle, LoanState, SLOTS_PER_YEAR, ThirdPartyLiquidate,
    compute_health_check, health_factor_below_one, loan_address, resolve_repay_role,
    AuthorizationError, NotLiquidatable,
)

from tests.conftest import build_market


def _underwater_market(**kwargs):
    """alice borrowed 100 USDC against 100 SOL at price 2; price then fell to 1."""
    market = build_market(borrower_sol=100, **kwargs)
    market.open_loan(100)
    market.borrow()
    market.oracle.update_price(1)
    return market


class TestHealthPredicate:

    def test_below_one(self, enclave):
        # 100 * 1 * 0.8 = 80 < 90
        assert health_factor_below_one(enclave.encrypt(100), enclave.encrypt(90), 1, 8000)

    def test_equal_is_healthy(self, enclave):
        assert not health_factor_below_one(enclave.encrypt(100), enclave.encrypt(80), 1, 8000)

    def test_healthy(self, enclave):
        assert not health_factor_below_one(enclave.encrypt(100), enclave.encrypt(100), 2, 8000)

    def test_zero_price_is_liquidatable(self, enclave):
        assert health_factor_below_one(enclave.encrypt(100), enclave.encrypt(1), 0, 8000)

    def test_zero_due_never_liquidatable(self, enclave):
        assert not health_factor_below_one(enclave.zero(), enclave.zero(), 0, 8000)

    def test_confidential_price(self, enclave):
        assert health_factor_below_one(enclave.encrypt(100), enclave.encrypt(90), enclave.encrypt(1), 8000)

    def test_reveals_one_bit(self, enclave):
        health_factor_below_one(enclave.encrypt(100), enclave.encrypt(90), 1, 8000)
        assert enclave.reveal_count == 1


class TestHealthCheck:

    def test_healthy_at_borrow_price(self):
        market = build_market(borrower_sol=100)
        market.open_loan(100)
        market.borrow()
        assert market.protocol.health_factor_below_one(market.pool_id, "alice") is False

    def test_price_drop(self):
        market = _underwater_market()
        assert market.protocol.health_factor_below_one(market.pool_id, "alice") is True

    def test_interest_alone(self):
        """At 100% a year the due doubles to 200, above 100 * 2 * 0.8 = 160."""
        market = build_market(borrower_sol=100, interest_rate_bps=10_000)
        market.open_loan(100)
        market.borrow()
        assert market.protocol.health_factor_below_one(market.pool_id, "alice") is False
        market.ledger.advance_slot(SLOTS_PER_YEAR)
        assert market.protocol.health_factor_below_one(market.pool_id, "alice") is True

    def test_not_borrowed_is_never_liquidatable(self, market):
        market.open_loan(50)
        loan_id = loan_address(market.pool_id, "alice")
        assert compute_health_check(market.ledger, loan_id, 0) is False

    def test_settled_loan_is_healthy(self):
        m = _underwater_market()
        m.protocol.repay(m.borrower, m.pool_id, "alice", m.borrower_sol, amount=100, payer=m.borrower_usdc)
        assert m.protocol.health_factor_below_one(m.pool_id, "alice") is False


class TestRepayRole:

    def test_borrower_role_needs_no_check(self, borrowed_market):
        m = borrowed_market
        before = m.ledger.enclave.reveal_count
        role = resolve_repay_role(m.ledger, m.loan, "alice", 2)
        assert role == BorrowerRepay("alice")
        assert m.ledger.enclave.reveal_count == before

    def test_third_party_on_healthy_loan(self, borrowed_market):
        m = borrowed_market
        with pytest.raises(NotLiquidatable):
            resolve_repay_role(m.ledger, m.loan, "carol", 2)

    def test_third_party_on_unhealthy_loan(self):
        m = _underwater_market()
        assert resolve_repay_role(m.ledger, m.loan, "carol", 1) == ThirdPartyLiquidate("carol")


class TestLiquidation:

    def test_partial_liquidation(self):
        m = _underwater_market()
        carol, carol_usdc, carol_sol = m.add_participant("carol", usdc=50)
        tx = m.protocol.repay(carol, m.pool_id, "alice", carol_sol, amount=50, payer=carol_usdc)

        assert tx.origin.event_type == "LIQUIDATE"
        assert tx.origin.source_id == "carol"
        assert m.reveal(carol_sol) == 50
        assert m.reveal(carol_usdc) == 0
        assert m.reveal(m.lender_usdc) == 50
        loan = m.loan
        assert m.ledger.enclave.decrypt(loan.encrypted_principal) == 50
        assert m.reveal(loan.collateral_vault) == 50
        assert loan.state is LoanState.BORROWED
        assert loan.active is True

    def test_full_liquidation(self):
        m = _underwater_market()
        carol, carol_usdc, carol_sol = m.add_participant("carol", usdc=100)
        m.protocol.repay(carol, m.pool_id, "alice", carol_sol, amount=100, payer=carol_usdc)
        assert m.reveal(carol_sol) == 100
        assert m.loan.active is False
        assert m.protocol.health_factor_below_one(m.pool_id, "alice") is False

    def test_healthy_loan_cannot_be_liquidated(self, borrowed_market):
        m = borrowed_market
        carol, carol_usdc, carol_sol = m.add_participant("carol", usdc=50)
        with pytest.raises(NotLiquidatable):
            m.protocol.repay(carol, m.pool_id, "alice", carol_sol, amount=50, payer=carol_usdc)
        assert m.reveal(carol_usdc) == 50

    def test_liquidator_must_post_payment(self):
        m = _underwater_market()
        carol, _, carol_sol = m.add_participant("carol")
        with pytest.raises(ValueError):
            m.protocol.repay(carol, m.pool_id, "alice", carol_sol)

    def test_liquidator_cannot_direct_collateral_elsewhere(self):
        m = _underwater_market()
        carol, carol_usdc, _ = m.add_participant("carol", usdc=50)
        with pytest.raises(AuthorizationError):
            m.protocol.repay(carol, m.pool_id, "alice", m.borrower_sol, amount=50, payer=carol_usdc)

    def test_liquidation_with_confidential_price(self):
        m = build_market(borrower_sol=100)
        m.open_loan(100)
        m.borrow()
        m.protocol.set_oracle(m.pool_id, ConfidentialPriceOracle(m.ledger.enclave.encrypt(1)))
        carol, carol_usdc, carol_sol = m.add_participant("carol", usdc=10)
        m.protocol.repay(carol, m.pool_id, "alice", carol_sol, amount=10, payer=carol_usdc)
        assert m.reveal(carol_sol) == 10

    def test_borrower_may_repay_while_underwater(self):
        m = _underwater_market()
        m.protocol.repay(m.borrower, m.pool_id, "alice", m.borrower_sol, amount=100, payer=m.borrower_usdc)
        assert m.reveal(m.borrower_sol) == 100
        assert m.loan.active is False
