"""
Strategy Validation - out-of-sample validation for backtested strategies.

This package assumes:
- In-sample backtests lie
- A strategy is guilty of overfitting until its folds prove otherwise
- Noise looks like edge when you only have a handful of folds

Every entry point is a pure function of (candles, config) -> result.
Nothing is persisted and nothing is shared between calls.
"""

__version__ = "0.1.0"
__author__ = "Market Maker Team"
