"""
Backtest runner adapter.

Wraps the external backtest engine. Every call builds a brand new engine
from a deep copy of the config, so no state can leak between folds or
Monte Carlo trials and calls may run out of order or in parallel.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
import copy
import math
import structlog

import pandas as pd

from strategy_validation.exceptions import BacktestRunError

logger = structlog.get_logger(__name__)


class BacktestEngineProtocol(Protocol):
    """Anything that can backtest a candle window."""

    def run_backtest(self, candles: pd.DataFrame) -> Any:
        ...


EngineFactory = Callable[[Any], BacktestEngineProtocol]


# Accepted source names for each result field
_FIELD_ALIASES = {
    "total_return_percent": ("total_return_percent", "totalReturnPercent"),
    "sharpe_ratio": ("sharpe_ratio", "sharpeRatio"),
    "win_rate": ("win_rate", "winRate"),
    "total_trades": ("total_trades", "totalTrades", "num_trades"),
    "max_drawdown_percent": ("max_drawdown_percent", "maxDrawdownPercent"),
    "final_capital": ("final_capital", "finalCapital"),
    "initial_capital": ("initial_capital", "initialCapital"),
    "sortino_ratio": ("sortino_ratio", "sortinoRatio"),
    "calmar_ratio": ("calmar_ratio", "calmarRatio"),
    "profit_factor": ("profit_factor", "profitFactor"),
}

_REQUIRED_FIELDS = (
    "total_return_percent",
    "sharpe_ratio",
    "win_rate",
    "total_trades",
    "max_drawdown_percent",
)


@dataclass(frozen=True)
class BacktestResult:
    """
    Performance summary of one backtest window.

    Only the first five fields are required from the engine; the rest
    default to neutral values when the engine does not report them.
    equity_curve and trade_returns feed the full-history performance
    analysis and are optional.
    """
    total_return_percent: float
    sharpe_ratio: float
    win_rate: float  # 0..1
    total_trades: int
    max_drawdown_percent: float

    final_capital: float = 0.0
    initial_capital: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    profit_factor: float = 0.0

    equity_curve: Optional[pd.Series] = field(default=None, repr=False, compare=False)
    trade_returns: Optional[tuple] = field(default=None, repr=False, compare=False)  # % per closed trade

    @classmethod
    def from_mapping(cls, raw: Any) -> "BacktestResult":
        """
        Coerce an engine result into a BacktestResult.

        Accepts a BacktestResult, a mapping, or any object exposing the
        field names (snake_case or camelCase). Non-finite numbers are
        replaced by 0 so NaN/inf never reach the aggregates.
        """
        if isinstance(raw, cls):
            return raw

        def lookup(name: str):
            for alias in _FIELD_ALIASES[name]:
                if isinstance(raw, dict):
                    if alias in raw:
                        return raw[alias]
                elif hasattr(raw, alias):
                    return getattr(raw, alias)
            return None

        missing = [name for name in _REQUIRED_FIELDS if lookup(name) is None]
        if missing:
            raise BacktestRunError(
                f"Backtest result missing required fields: {', '.join(missing)}"
            )

        values = {}
        for name in _FIELD_ALIASES:
            value = lookup(name)
            if value is None:
                continue
            values[name] = _finite(name, float(value))

        values["total_trades"] = max(0, int(values["total_trades"]))
        values["win_rate"] = min(1.0, max(0.0, values["win_rate"]))

        if "final_capital" not in values and values.get("initial_capital"):
            values["final_capital"] = values["initial_capital"] * (
                1 + values["total_return_percent"] / 100
            )

        equity_curve = raw.get("equity_curve") if isinstance(raw, dict) else getattr(raw, "equity_curve", None)
        if equity_curve is not None and not isinstance(equity_curve, pd.Series):
            equity_curve = None

        trade_returns = raw.get("trade_returns") if isinstance(raw, dict) else getattr(raw, "trade_returns", None)
        if trade_returns is not None:
            trade_returns = tuple(float(r) for r in trade_returns)

        return cls(equity_curve=equity_curve, trade_returns=trade_returns, **values)

    def to_dict(self) -> dict:
        return {
            "total_return_percent": self.total_return_percent,
            "sharpe_ratio": self.sharpe_ratio,
            "win_rate": self.win_rate,
            "total_trades": self.total_trades,
            "max_drawdown_percent": self.max_drawdown_percent,
            "final_capital": self.final_capital,
            "initial_capital": self.initial_capital,
            "sortino_ratio": self.sortino_ratio,
            "calmar_ratio": self.calmar_ratio,
            "profit_factor": self.profit_factor,
        }


def _finite(name: str, value: float) -> float:
    if math.isfinite(value):
        return value
    logger.warning("non_finite_backtest_value_replaced", field=name, value=str(value))
    return 0.0


class BacktestRunnerAdapter:
    """
    Isolated, per-call access to the backtest engine.

    Key principles:
    - A fresh engine per call (no shared state between windows)
    - Config deep-copied so engines cannot mutate the caller's copy
    - Engine failures surface as BacktestRunError with the cause chained
    """

    def __init__(self, engine_factory: EngineFactory):
        """
        Initialize runner adapter.

        Args:
            engine_factory: Callable taking a backtest config and returning
                a new engine with a run_backtest(candles) method
        """
        self.engine_factory = engine_factory

    def run(self, window: pd.DataFrame, config: Any) -> BacktestResult:
        """
        Backtest a single candle window.

        Args:
            window: Candle DataFrame for this window
            config: Backtest config, opaque to the adapter

        Returns:
            BacktestResult for the window
        """
        try:
            engine = self.engine_factory(copy.deepcopy(config))
            raw = engine.run_backtest(window.reset_index(drop=True))
        except Exception as e:
            raise BacktestRunError(f"Backtest failed on {len(window)} bars: {e}") from e

        try:
            return BacktestResult.from_mapping(raw)
        except (TypeError, ValueError) as e:
            raise BacktestRunError(f"Unreadable backtest result: {e}") from e
