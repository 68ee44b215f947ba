"""
Pytest configuration and fixtures.

Shared fixtures for all tests: synthetic candle series and stub
backtest engines.
"""

import pytest
import numpy as np
import pandas as pd
from datetime import datetime


def build_candles(closes, start=datetime(2020, 1, 1), freq="D") -> pd.DataFrame:
    """Candle frame around a close series (open = close, +/-1% wicks)."""
    closes = np.asarray(closes, dtype=float)
    return pd.DataFrame({
        "timestamp": pd.date_range(start=start, periods=len(closes), freq=freq),
        "open": closes,
        "high": closes * 1.01,
        "low": closes * 0.99,
        "close": closes,
        "volume": np.full(len(closes), 1_000_000.0),
    })


class StubEngine:
    """Engine whose result is computed by a plain function of (candles, config)."""

    def __init__(self, config, behavior):
        self.config = config
        self.behavior = behavior
        self.calls = 0

    def run_backtest(self, candles):
        self.calls += 1
        return self.behavior(candles, self.config)


def stub_result(total_return_percent, total_trades=40, sharpe_ratio=1.0, win_rate=0.6):
    return {
        "total_return_percent": total_return_percent,
        "sharpe_ratio": sharpe_ratio,
        "win_rate": win_rate,
        "total_trades": total_trades,
        "max_drawdown_percent": 5.0,
        "initial_capital": 100000.0,
    }


@pytest.fixture
def candle_factory():
    """Build candle frames from close prices."""
    return build_candles


@pytest.fixture
def rising_candles():
    """1000 daily candles rising 0.1% per bar."""
    return build_candles(100 * 1.001 ** np.arange(1000))


@pytest.fixture
def random_walk_candles():
    """500 daily candles of a seeded random walk."""
    rng = np.random.default_rng(42)
    closes = 100 * np.exp(np.cumsum(rng.normal(0.0003, 0.015, 500)))
    return build_candles(closes)


@pytest.fixture
def stub_factory():
    """Engine factory from a behavior function (candles, config) -> result."""
    def make(behavior):
        return lambda config: StubEngine(config, behavior)
    return make


@pytest.fixture
def constant_factory(stub_factory):
    """Engine factory that always reports the same return."""
    def make(total_return_percent=10.0, total_trades=40):
        return stub_factory(
            lambda candles, config: stub_result(total_return_percent, total_trades)
        )
    return make


@pytest.fixture
def make_result():
    """Engine result mapping with sensible defaults."""
    return stub_result
