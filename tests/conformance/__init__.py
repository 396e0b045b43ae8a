"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lease pool.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Cash held by the pool equals accrued earnings; every
   unit nets to zero; record and custody agree
2. atomicity.py - Every pool operation is all-or-nothing, nested ones included

These tests use hypothesis for property-based testing.
"""
