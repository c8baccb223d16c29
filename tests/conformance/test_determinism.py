"""
Determinism Conformance Tests

INVARIANT: The same plaintext inputs produce the same plaintext outcomes.

    ∀ inputs I:
        run(I) on ledger A ≡ run(I) on ledger B   (balances, records, events)

Ciphertexts differ from run to run (fresh nonces); the amounts behind them,
the revealed bits and the record lifecycle do not.
"""

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from confidential_lending import (
    ConfidentialEnclave, SLOTS_PER_YEAR, LendingError,
    compute_interest_accrued, interest_for_slots, mul_div,
)

from tests.conftest import build_market, balances_snapshot


def _run(collateral, price, repay, elapsed):
    m = build_market(price=price, borrower_sol=collateral, borrower_usdc=repay)
    outcome = []
    try:
        m.open_loan(collateral)
        m.borrow()
        m.ledger.advance_slot(elapsed)
        m.protocol.repay(m.borrower, m.pool_id, "alice", m.borrower_sol, amount=repay, payer=m.borrower_usdc)
        m.protocol.close_loan(m.borrower, m.pool_id, m.borrower_usdc, m.borrower_sol)
    except LendingError as e:
        outcome.append(type(e).__name__)
    snapshot = {ref.address: amount for ref, amount in balances_snapshot(m.ledger).items()}
    events = [tx.origin.event_type for tx in m.ledger.transaction_log]
    loan = m.loan
    return snapshot, events, outcome, loan.state, loan.active, loan.repayment_count


class TestDeterminismProperties:

    @given(
        collateral=st.integers(0, 300),
        price=st.integers(0, 10),
        repay=st.integers(0, 400),
        elapsed=st.integers(0, 2 * SLOTS_PER_YEAR),
    )
    @settings(max_examples=20, deadline=None)
    def test_replay_matches(self, collateral, price, repay, elapsed):
        """
        PROPERTY: Two independent ledgers fed the same inputs agree exactly.
        """
        assert _run(collateral, price, repay, elapsed) == _run(collateral, price, repay, elapsed)

    @given(st.integers(0, 10**12), st.integers(0, 10_000), st.integers(0, 10**9))
    @settings(max_examples=50, deadline=None)
    def test_confidential_interest_matches_plaintext(self, principal, rate, slots):
        """
        PROPERTY: Interest on a ciphertext equals the integer formula.
        """
        enclave = ConfidentialEnclave()
        interest = compute_interest_accrued(enclave.encrypt(principal), rate, slots)
        assert enclave.decrypt(interest) == interest_for_slots(principal, rate, slots)

    @given(st.integers(0, 2**64 - 1), st.integers(0, 2**32), st.integers(1, 2**32))
    @settings(max_examples=50, deadline=None)
    def test_scale_matches_mul_div(self, value, numerator, denominator):
        enclave = ConfidentialEnclave()
        expected = (value * numerator) // denominator
        assume(expected < 2**64)
        scaled = enclave.encrypt(value).scale(numerator, denominator)
        assert enclave.decrypt(scaled) == expected == mul_div(value, numerator, denominator)
