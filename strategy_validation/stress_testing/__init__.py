"""
Stress testing framework.

Tests strategies beyond a single historical path:
- Monte Carlo over shuffled/bootstrapped price histories
- Position size sensitivity
- Consistency, regime, sample size and overfit checks

A strategy that only works on one exact path is rejected.
"""
