#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Confidential Lending Step by Step

A walk through one lending market. Each step builds on the previous one.
Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation    - The enclave, confidential accounts, the pool
  4-6:  Borrowing     - Collateral, the borrow limit, declared reveals
  7-9:  Repayment     - Interest over slots, overpayment, closing the loan
  10-11: Liquidation  - Price drop, third-party repayment, conservation

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
import sys

from confidential_lending import (
    AuthenticatedCaller, ConfidentialEnclave, ConfidentialLedger, LendingError,
    LendingProtocol, NotLiquidatable, SLOTS_PER_YEAR, StaticPriceOracle, pool_address,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    liquidity: int = 1_000
    alice_sol: int = 50
    bob_sol: int = 100
    carol_usdc: int = 50
    sol_price: int = 2
    crashed_price: int = 1

    interest_rate_bps: int = 1000      # 10% per year
    loan_to_value_bps: int = 5000      # borrow up to 50% of collateral value
    collateral_threshold_bps: int = 8000


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_balances(ledger: ConfidentialLedger, *accounts):
    """Print each balance as its owner would see it."""
    for ref in accounts:
        if ledger.is_open(ref):
            print(f"    {str(ref):40} {ledger.reveal_balance(ref, ref.owner):>8,}")


@dataclass
class Market:
    ledger: ConfidentialLedger
    protocol: LendingProtocol
    oracle: StaticPriceOracle
    pool_id: str
    lender: AuthenticatedCaller
    lender_usdc: object


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_enclave():
    """Seal amounts and see what an observer sees."""
    step_header(1, "The Enclave",
        "Understand that amounts are ciphertexts and only orderings are revealed.")

    enclave = ConfidentialEnclave(label="tutorial")
    a = enclave.encrypt(40)
    b = enclave.encrypt(40)
    print(f">>> a = enclave.encrypt(40)   ->  {a!r}")
    print(f">>> b = enclave.encrypt(40)   ->  {b!r}")
    print(f"    a == b: {a == b}  (same amount, different ciphertexts)")

    section_header("Blind Arithmetic")
    total = a.add(b)
    print(f">>> total = a.add(b)          ->  {total!r}")
    print(f"    reveals so far: {enclave.reveal_count}")
    print(f">>> total.compare_and_reveal(100)  ->  {total.compare_and_reveal(100).name}")
    print(f"    reveals so far: {enclave.reveal_count}")
    return enclave


def step_02_accounts(enclave: ConfidentialEnclave):
    """Open accounts and issue supply."""
    step_header(2, "Confidential Accounts",
        "Open accounts on a ledger and issue the starting balances.")

    ledger = ConfidentialLedger("tutorial", enclave, verbose=True)
    lender_usdc = ledger.mint_account("lender", "USDC")
    ledger.issue(lender_usdc, CONFIG.liquidity)

    section_header("Owner View")
    show_balances(ledger, lender_usdc)
    print("""
    Only the owner may decrypt a balance. Everyone else, the protocol
    included, sees the ciphertext in the transaction log.
    """)
    return ledger, lender_usdc


def step_03_pool(ledger: ConfidentialLedger, lender_usdc) -> Market:
    """Create the pool and fund its vault."""
    step_header(3, "The Lending Pool",
        "Create a USDC pool taking SOL as collateral and fund its vault.")

    protocol = LendingProtocol(ledger)
    lender = AuthenticatedCaller("lender")
    oracle = StaticPriceOracle(CONFIG.sol_price)
    protocol.initialize_lending_pool(
        lender, "USDC", "SOL",
        CONFIG.interest_rate_bps, CONFIG.loan_to_value_bps, CONFIG.collateral_threshold_bps,
        oracle=oracle,
    )
    pool_id = pool_address("lender", "USDC", "SOL")
    protocol.deposit_liquidity(lender, pool_id, lender_usdc, CONFIG.liquidity)
    print(f"\n    pool terms: {protocol.pool_terms(pool_id)}")
    return Market(ledger, protocol, oracle, pool_id, lender, lender_usdc)


# ============================================================================
# PHASE 2: BORROWING (Steps 4-6)
# ============================================================================

def step_04_collateral(m: Market):
    """Open a loan and post collateral."""
    step_header(4, "Posting Collateral",
        "Alice opens a loan and posts SOL while the position is still open.")

    alice = AuthenticatedCaller("alice")
    usdc = m.ledger.mint_account("alice", "USDC")
    sol = m.ledger.mint_account("alice", "SOL")
    m.ledger.issue(sol, CONFIG.alice_sol)

    m.protocol.initialize_loan(alice, m.pool_id)
    m.protocol.deposit_collateral(alice, m.pool_id, sol, CONFIG.alice_sol)
    print(f"\n    loan state: {m.protocol.loan_state(m.pool_id, 'alice').state.value}")
    return alice, usdc, sol


def step_05_borrow(m: Market, alice, usdc, sol):
    """Borrow at the oracle price."""
    step_header(5, "Borrowing",
        "max_loan = collateral * price * ltv / 10000, capped by the vault.")

    before = m.ledger.enclave.reveal_count
    m.protocol.borrow(alice, m.pool_id, usdc, sol)

    section_header("Alice's View")
    show_balances(m.ledger, usdc, sol)
    print(f"    amount due: {m.protocol.reveal_amount_due(alice, m.pool_id, 'alice')}")
    print(f"\n    bits revealed by the borrow, ledger checks included: "
          f"{m.ledger.enclave.reveal_count - before}")


def step_06_locked(m: Market, alice, sol):
    """Collateral is locked once borrowed."""
    step_header(6, "Locked Collateral",
        "After a borrow the collateral position cannot be changed directly.")

    try:
        m.protocol.withdraw_collateral(alice, m.pool_id, sol, 1)
    except LendingError as e:
        print(f"    {type(e).__name__}: {e}")


# ============================================================================
# PHASE 3: REPAYMENT (Steps 7-9)
# ============================================================================

def step_07_interest(m: Market, alice):
    """Advance one year of slots."""
    step_header(7, "Interest Over Slots",
        "Interest is evaluated at the slot of each operation, never in the background.")

    m.ledger.advance_slot(SLOTS_PER_YEAR)
    print(f"    slot {m.ledger.current_slot:,}: amount due "
          f"{m.protocol.reveal_amount_due(alice, m.pool_id, 'alice')}")


def step_08_repay(m: Market, alice, usdc, sol):
    """Repay more than is due."""
    step_header(8, "Repayment",
        "actual = min(repay, due); the collateral released is proportional.")

    m.ledger.issue(usdc, 10)
    m.protocol.repay(alice, m.pool_id, "alice", sol, amount=60, payer=usdc)
    loan = m.protocol.loan_state(m.pool_id, "alice")
    show_balances(m.ledger, usdc, sol, m.lender_usdc, loan.repay_intake)
    print(f"\n    loan active: {loan.active}")


def step_09_close(m: Market, alice, usdc, sol):
    """Close the settled loan."""
    step_header(9, "Closing the Loan",
        "The overpayment and any residual collateral are swept back to the borrower.")

    m.protocol.close_loan(alice, m.pool_id, usdc, sol)
    show_balances(m.ledger, usdc, sol)
    print(f"\n    loan state: {m.protocol.loan_state(m.pool_id, 'alice').state.value}")


# ============================================================================
# PHASE 4: LIQUIDATION (Steps 10-11)
# ============================================================================

def step_10_liquidation(m: Market):
    """A price drop makes a loan liquidatable."""
    step_header(10, "Liquidation",
        "A third party may repay only while the health factor is below one.")

    bob = AuthenticatedCaller("bob")
    bob_usdc = m.ledger.mint_account("bob", "USDC")
    bob_sol = m.ledger.mint_account("bob", "SOL")
    m.ledger.issue(bob_sol, CONFIG.bob_sol)
    m.protocol.initialize_loan(bob, m.pool_id)
    m.protocol.deposit_collateral(bob, m.pool_id, bob_sol, CONFIG.bob_sol)
    m.protocol.borrow(bob, m.pool_id, bob_usdc, bob_sol)

    carol = AuthenticatedCaller("carol")
    carol_usdc = m.ledger.mint_account("carol", "USDC")
    carol_sol = m.ledger.mint_account("carol", "SOL")
    m.ledger.issue(carol_usdc, CONFIG.carol_usdc)

    section_header("Healthy Loan")
    try:
        m.protocol.repay(carol, m.pool_id, "bob", carol_sol, amount=CONFIG.carol_usdc, payer=carol_usdc)
    except NotLiquidatable as e:
        print(f"    NotLiquidatable: {e}")

    section_header("After the Price Drop")
    m.oracle.update_price(CONFIG.crashed_price)
    print(f"    liquidatable: {m.protocol.health_factor_below_one(m.pool_id, 'bob')}")
    m.protocol.repay(carol, m.pool_id, "bob", carol_sol, amount=CONFIG.carol_usdc, payer=carol_usdc)
    show_balances(m.ledger, carol_usdc, carol_sol)
    print(f"    bob still owes: {m.protocol.reveal_amount_due(bob, m.pool_id, 'bob')}")


def step_11_conservation(m: Market):
    """Every asset's balances add up to what was issued."""
    step_header(11, "Conservation",
        "Balances of each asset sum to its issuance; only equality bits are revealed.")

    result = m.ledger.verify_conservation()
    print(f"    assets checked: {result['assets']}")
    print(f"    valid:          {result['valid']}")
    print(f"    transactions:   {len(m.ledger.transaction_log)}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       CONFIDENTIAL LENDING - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    enclave = step_01_enclave()
    wait_for_enter()

    ledger, lender_usdc = step_02_accounts(enclave)
    wait_for_enter()

    market = step_03_pool(ledger, lender_usdc)
    wait_for_enter()

    alice, usdc, sol = step_04_collateral(market)
    wait_for_enter()

    step_05_borrow(market, alice, usdc, sol)
    wait_for_enter()

    step_06_locked(market, alice, sol)
    wait_for_enter()

    step_07_interest(market, alice)
    wait_for_enter()

    step_08_repay(market, alice, usdc, sol)
    wait_for_enter()

    step_09_close(market, alice, usdc, sol)
    wait_for_enter()

    step_10_liquidation(market)
    wait_for_enter()

    step_11_conservation(market)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See confidential_lending/records/ for pool and loan logic
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
