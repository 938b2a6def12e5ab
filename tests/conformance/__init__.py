"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the M-Pesewa lending core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. calculation.py - Interest, penalty and default threshold arithmetic
2. ledger_invariants.py - Ledger status and repayment invariants
3. blacklist_invariants.py - One entry in force per borrower, admin-only removal
4. subscription_invariants.py - Expiry anchoring, proration and the access gate
5. atomicity.py - All-or-nothing operation semantics
6. determinism.py - Reproducible behavior

These tests use hypothesis for property-based testing.
"""
