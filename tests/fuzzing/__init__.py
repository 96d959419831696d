"""
Property-based tests for the staking pool.

Hypothesis drives random sequences of deposits, withdrawals, claims, rate
changes and clock moves, checking the accounting invariants after each step.
"""
