"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Balances of every asset add up to what was issued
2. atomicity.py - All-or-nothing transaction semantics
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible arithmetic and identifiers
5. canonicalization.py - Content-addressable identity
6. temporal.py - Slot ordering and interest over time
7. confidentiality.py - What each operation reveals
8. settlement.py - Borrow limits, repayment and release bounds

These tests use hypothesis for property-based testing.
"""
