"""
Market regime detection module.

Segments a candle series into volatility/trend regimes:
- Volatility: rolling annualized stdev of log returns (20-bar window)
- Trend: net close-to-close change over the same window

Fold test returns are attributed to the regimes their test windows overlap.
"""

from strategy_validation.regime.detector import (
    MarketRegime,
    RegimeAnalysis,
    RegimeDetector,
    RegimePerformance,
    RegimeSegment,
)

__all__ = [
    "MarketRegime",
    "RegimeAnalysis",
    "RegimeDetector",
    "RegimePerformance",
    "RegimeSegment",
]
