"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the position ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_atomicity.py - A rejected operation leaves every observable unchanged
2. test_invariants.py - Aggregates, custody, utilization, PnL symmetry and
   borrowing index monotonicity

These tests use hypothesis for property-based testing.
"""
