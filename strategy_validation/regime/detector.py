"""
Market regime segmentation.

Splits the price history into volatility/trend regimes and attributes
fold performance to each one. A strategy that only makes money in a
low-vol bull market has not been validated; it has been lucky.

Classification (20-bar window ending before each bar):
- |trend| < half the trend threshold -> Sideways
- otherwise Bull or Bear by trend sign
- Bull/Bear split into Low Vol / High Vol at 20% annualized volatility

Consecutive bars with the same regime merge into one period. The first
20 bars are warm-up and belong to no regime.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
import structlog

import numpy as np
import pandas as pd

from strategy_validation.backtesting.metrics import FoldResult

logger = structlog.get_logger(__name__)


TRADING_DAYS_PER_YEAR = 252


class MarketRegime(Enum):
    """Trend/volatility regime."""
    LOW_VOL_BULL = "Low Vol Bull"
    HIGH_VOL_BULL = "High Vol Bull"
    LOW_VOL_BEAR = "Low Vol Bear"
    HIGH_VOL_BEAR = "High Vol Bear"
    SIDEWAYS = "Sideways"


class TrendDirection(Enum):
    """Overall direction of a regime's periods."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


@dataclass(frozen=True)
class RegimePeriod:
    """
    Contiguous run of bars in one regime.

    Bars start_index..end_index-1 belong to the period. end is the
    start of the next period (or the last timestamp for the final one),
    so period durations tile the classified part of the series.
    """
    start: datetime
    end: datetime
    start_index: int
    end_index: int
    last_bar: datetime

    @property
    def num_bars(self) -> int:
        return self.end_index - self.start_index

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Whether any bar of this period lies within [start, end]."""
        return self.start <= end and self.last_bar >= start

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "start_index": self.start_index,
            "end_index": self.end_index,
        }


@dataclass(frozen=True)
class RegimeCharacteristics:
    avg_volatility: float
    avg_return: float
    trend: TrendDirection


@dataclass(frozen=True)
class RegimeSegment:
    """All periods of one regime with their average character."""
    name: str
    periods: list[RegimePeriod]
    characteristics: RegimeCharacteristics

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "periods": [p.to_dict() for p in self.periods],
            "characteristics": {
                "avg_volatility": self.characteristics.avg_volatility,
                "avg_return": self.characteristics.avg_return,
                "trend": self.characteristics.trend.value,
            },
        }


@dataclass(frozen=True)
class RegimePerformance:
    """Strategy test performance across folds touching a regime."""
    regime: str
    return_percent: float
    sharpe: float
    win_rate: float
    trades: int
    fold_count: int

    def to_dict(self) -> dict:
        return {
            "regime": self.regime,
            "return_percent": self.return_percent,
            "sharpe": self.sharpe,
            "win_rate": self.win_rate,
            "trades": self.trades,
            "fold_count": self.fold_count,
        }


@dataclass(frozen=True)
class RegimeAnalysis:
    regimes: list[RegimeSegment] = field(default_factory=list)
    performance_by_regime: list[RegimePerformance] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "regimes": [r.to_dict() for r in self.regimes],
            "performance_by_regime": [p.to_dict() for p in self.performance_by_regime],
        }


class RegimeDetector:
    """
    Rolling-window regime detector.

    Design principles:
    - Volatility from log returns, annualized with sqrt(252)
    - Trend is the close-to-close return across the window
    - Every post-warm-up bar gets exactly one regime (periods partition)
    """

    def __init__(
        self,
        window_size: int = 20,
        volatility_threshold: float = 0.20,
        trend_threshold: float = 0.02,
    ):
        """
        Initialize regime detector.

        Args:
            window_size: Bars per rolling window (also the warm-up length)
            volatility_threshold: Annualized vol above this = High Vol
            trend_threshold: Window return threshold; half of it bounds Sideways
        """
        if window_size < 2:
            raise ValueError("window_size must be >= 2")

        self.window_size = window_size
        self.volatility_threshold = volatility_threshold
        self.trend_threshold = trend_threshold

    def classify(self, candles: pd.DataFrame) -> list[Optional[MarketRegime]]:
        """
        Regime label for every bar.

        Bars inside the warm-up window are None.
        """
        closes = candles["close"].to_numpy(dtype=float)
        n = len(closes)
        labels: list[Optional[MarketRegime]] = [None] * min(n, self.window_size)

        for i in range(self.window_size, n):
            window = closes[i - self.window_size:i]
            volatility = self._annualized_volatility(window)
            trend = (window[-1] - window[0]) / window[0]
            labels.append(self._classify_window(volatility, trend))

        return labels

    def detect(self, candles: pd.DataFrame) -> list[RegimeSegment]:
        """
        Segment the series into regimes.

        Returns:
            One RegimeSegment per regime that has at least one period,
            in fixed regime order
        """
        n = len(candles)
        if n <= self.window_size:
            logger.warning(
                "insufficient_data_for_regime",
                bars_count=n,
                required=self.window_size + 1,
            )
            return []

        labels = self.classify(candles)
        timestamps = candles["timestamp"]

        periods: dict[MarketRegime, list[RegimePeriod]] = {r: [] for r in MarketRegime}
        run_start = self.window_size
        for i in range(self.window_size + 1, n + 1):
            if i < n and labels[i] == labels[run_start]:
                continue
            end = timestamps.iloc[i] if i < n else timestamps.iloc[n - 1]
            periods[labels[run_start]].append(RegimePeriod(
                start=timestamps.iloc[run_start],
                end=end,
                start_index=run_start,
                end_index=i,
                last_bar=timestamps.iloc[i - 1],
            ))
            run_start = i

        segments = []
        for regime in MarketRegime:
            if not periods[regime]:
                continue
            segments.append(RegimeSegment(
                name=regime.value,
                periods=periods[regime],
                characteristics=self._characterize(candles, periods[regime]),
            ))

        logger.info(
            "regimes_detected",
            regimes=[s.name for s in segments],
            total_periods=sum(len(s.periods) for s in segments),
        )

        return segments

    def analyze(
        self,
        candles: pd.DataFrame,
        fold_results: list[FoldResult],
    ) -> RegimeAnalysis:
        """
        Detect regimes and attribute fold test performance to each.

        A fold counts toward a regime when its test period overlaps any
        of that regime's periods. Regimes no fold touches report zeros.
        """
        segments = self.detect(candles)

        performance = []
        for segment in segments:
            attributed = [
                r for r in fold_results
                if any(
                    p.overlaps(r.test_period.start, r.test_period.end)
                    for p in segment.periods
                )
            ]

            if attributed:
                performance.append(RegimePerformance(
                    regime=segment.name,
                    return_percent=float(np.mean([r.test_return for r in attributed])),
                    sharpe=float(np.mean([r.test_result.sharpe_ratio for r in attributed])),
                    win_rate=float(np.mean([r.test_result.win_rate for r in attributed])),
                    trades=int(sum(r.test_result.total_trades for r in attributed)),
                    fold_count=len(attributed),
                ))
            else:
                performance.append(RegimePerformance(
                    regime=segment.name,
                    return_percent=0.0,
                    sharpe=0.0,
                    win_rate=0.0,
                    trades=0,
                    fold_count=0,
                ))

        return RegimeAnalysis(regimes=segments, performance_by_regime=performance)

    def _annualized_volatility(self, closes: np.ndarray) -> float:
        """Annualized stddev of bar-to-bar log returns."""
        if len(closes) < 3:
            return 0.0
        log_returns = np.diff(np.log(closes))
        return float(np.std(log_returns, ddof=1) * np.sqrt(TRADING_DAYS_PER_YEAR))

    def _classify_window(self, volatility: float, trend: float) -> MarketRegime:
        if abs(trend) < self.trend_threshold * 0.5:
            return MarketRegime.SIDEWAYS

        high_vol = volatility > self.volatility_threshold
        if trend > 0:
            return MarketRegime.HIGH_VOL_BULL if high_vol else MarketRegime.LOW_VOL_BULL
        return MarketRegime.HIGH_VOL_BEAR if high_vol else MarketRegime.LOW_VOL_BEAR

    def _characterize(
        self,
        candles: pd.DataFrame,
        periods: list[RegimePeriod],
    ) -> RegimeCharacteristics:
        """Average volatility and return over periods with more than one bar."""
        closes = candles["close"].to_numpy(dtype=float)
        volatilities = []
        returns = []

        for period in periods:
            period_closes = closes[period.start_index:period.end_index]
            if len(period_closes) < 2:
                continue
            volatilities.append(self._annualized_volatility(period_closes))
            returns.append((period_closes[-1] - period_closes[0]) / period_closes[0])

        avg_vol = float(np.mean(volatilities)) if volatilities else 0.0
        avg_return = float(np.mean(returns)) if returns else 0.0

        if avg_return > self.trend_threshold:
            trend = TrendDirection.BULLISH
        elif avg_return < -self.trend_threshold:
            trend = TrendDirection.BEARISH
        else:
            trend = TrendDirection.SIDEWAYS

        return RegimeCharacteristics(
            avg_volatility=avg_vol,
            avg_return=avg_return,
            trend=trend,
        )
