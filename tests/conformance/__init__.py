"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the stablecoin engine.

The tests are organized by invariant:
1. test_solvency.py - System collateral covers outstanding liability
2. test_health_factor.py - No free mint, burning never hurts, liquidation improves
3. test_atomicity.py - Failed operations leave no trace
4. test_conversion.py - USD/token conversion round-trip bound

These tests use hypothesis for property-based testing.
"""
