"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the repo strategy.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. registry_invariants.py - Linked-list structure, maturity order, discounting
2. conservation.py - Unit sums across strategy calls
3. atomicity.py - All-or-nothing entry points, re-entrancy guard
4. sweep_stability.py - Rebalancing hits its target and conserves value

These tests use hypothesis for property-based testing.
"""
