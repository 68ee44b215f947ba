"""
Reference backtest engine.

Long-only moving average crossover with transaction costs. Used by the
CLI and integration tests as a concrete collaborator; any engine with a
run_backtest(candles) method can be validated instead.
"""

from dataclasses import dataclass
import structlog

import pandas as pd
import numpy as np

from strategy_validation.backtesting.runner import BacktestResult

logger = structlog.get_logger(__name__)


@dataclass
class BacktestConfig:
    """Strategy and cost settings for the reference engine."""
    initial_capital: float = 100000.0
    position_size_percent: float = 10.0
    commission_percent: float = 0.1
    slippage_percent: float = 0.05
    fast_period: int = 10
    slow_period: int = 30

    def __post_init__(self):
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be shorter than slow_period")
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")


class MovingAverageCrossoverEngine:
    """
    SMA crossover backtest with transaction cost modeling.

    Key principles:
    - Transaction costs ALWAYS applied (commission + slippage on both sides)
    - Signals use closes up to and including the current bar only
    - Open positions are closed on the final bar
    """

    def __init__(self, config: BacktestConfig):
        self.config = config

    def run_backtest(self, candles: pd.DataFrame) -> BacktestResult:
        """
        Run backtest over a candle window.

        Args:
            candles: DataFrame with timestamp, open, high, low, close, volume

        Returns:
            BacktestResult with performance metrics and equity curve
        """
        if candles.empty:
            raise ValueError("Cannot backtest on empty data")

        cfg = self.config
        closes = candles["close"].astype(float).to_numpy()
        fast = pd.Series(closes).rolling(cfg.fast_period).mean().to_numpy()
        slow = pd.Series(closes).rolling(cfg.slow_period).mean().to_numpy()

        cash = cfg.initial_capital
        quantity = 0.0
        entry_cost = 0.0
        trade_pnls = []
        trade_returns = []
        equity = np.empty(len(closes))

        for i, price in enumerate(closes):
            last_bar = i == len(closes) - 1
            bullish = not np.isnan(slow[i]) and fast[i] > slow[i]

            if quantity == 0 and bullish and not last_bar:
                fill = price * (1 + cfg.slippage_percent / 100)
                notional = cash * cfg.position_size_percent / 100
                commission = notional * cfg.commission_percent / 100
                quantity = notional / fill
                entry_cost = notional + commission
                cash -= entry_cost

            elif quantity > 0 and (not bullish or last_bar):
                fill = price * (1 - cfg.slippage_percent / 100)
                gross = quantity * fill
                proceeds = gross - gross * cfg.commission_percent / 100
                cash += proceeds
                trade_pnls.append(proceeds - entry_cost)
                trade_returns.append((proceeds - entry_cost) / entry_cost * 100)
                quantity = 0.0

            equity[i] = cash + quantity * price

        equity_curve = pd.Series(equity, index=pd.to_datetime(candles["timestamp"]))
        returns = equity_curve.pct_change().dropna()

        total_return = equity[-1] / cfg.initial_capital - 1
        max_dd = self._calculate_max_drawdown(equity_curve)

        days = (equity_curve.index[-1] - equity_curve.index[0]).days
        annualized_return = (1 + total_return) ** (365 / days) - 1 if days > 0 else 0.0
        calmar = annualized_return / max_dd if max_dd > 0 else 0.0

        wins = [p for p in trade_pnls if p > 0]
        losses = [p for p in trade_pnls if p < 0]
        total_losses = abs(sum(losses))

        result = BacktestResult(
            total_return_percent=float(total_return * 100),
            sharpe_ratio=self._calculate_sharpe(returns),
            win_rate=len(wins) / len(trade_pnls) if trade_pnls else 0.0,
            total_trades=len(trade_pnls),
            max_drawdown_percent=float(max_dd * 100),
            final_capital=float(equity[-1]),
            initial_capital=cfg.initial_capital,
            sortino_ratio=self._calculate_sortino(returns),
            calmar_ratio=float(calmar),
            profit_factor=float(sum(wins) / total_losses) if total_losses > 0 else 0.0,
            equity_curve=equity_curve,
            trade_returns=tuple(trade_returns),
        )

        logger.debug(
            "reference_backtest_complete",
            bars=len(candles),
            trades=result.total_trades,
            total_return_percent=result.total_return_percent,
        )

        return result

    def _calculate_sharpe(self, returns: pd.Series, risk_free_rate: float = 0.0) -> float:
        """Calculate Sharpe ratio."""
        if len(returns) < 2 or returns.std() == 0:
            return 0.0

        excess_returns = returns.mean() - (risk_free_rate / 252)
        sharpe = (excess_returns / returns.std()) * np.sqrt(252)

        return float(sharpe)

    def _calculate_sortino(self, returns: pd.Series, risk_free_rate: float = 0.0) -> float:
        """Calculate Sortino ratio (downside deviation only, 0 when undefined)."""
        if len(returns) == 0:
            return 0.0

        excess_returns = returns.mean() - (risk_free_rate / 252)
        downside_returns = returns[returns < 0]

        if len(downside_returns) < 2 or downside_returns.std() == 0:
            return 0.0

        sortino = (excess_returns / downside_returns.std()) * np.sqrt(252)

        return float(sortino)

    def _calculate_max_drawdown(self, equity: pd.Series) -> float:
        """Calculate maximum drawdown as a fraction."""
        if len(equity) == 0:
            return 0.0

        running_max = equity.expanding().max()
        drawdown = (equity - running_max) / running_max
        max_dd = abs(drawdown.min())

        return float(max_dd)


def reference_engine_factory(config: BacktestConfig) -> MovingAverageCrossoverEngine:
    """Engine factory for BacktestRunnerAdapter."""
    return MovingAverageCrossoverEngine(config)
