"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Supply conservation and custody attribution
2. atomicity.py - All-or-nothing lending operations
3. idempotency.py - Replayed intents are never applied twice
4. determinism.py - Reproducible markets and gap-free agreement ids
5. canonicalization.py - Content-addressable identity
6. temporal.py - Clock monotonicity and lock expiry

These tests use hypothesis for property-based testing.
"""
