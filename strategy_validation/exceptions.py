"""
Error hierarchy for strategy validation.

Input problems (bad candles, bad config) are ValueErrors so callers can
treat them like any other argument error. Everything else signals that the
analysis as a whole could not produce a result.
"""


class StrategyValidationError(Exception):
    """Base class for all validation errors."""


class CandleValidationError(StrategyValidationError, ValueError):
    """Candle series violates an ordering or price invariant."""


class ConfigurationError(StrategyValidationError, ValueError):
    """Validation configuration is out of range or inconsistent."""


class BacktestRunError(StrategyValidationError):
    """The backtest collaborator raised while running a window."""


class AllFoldsFailedError(StrategyValidationError):
    """Every candidate fold failed to backtest."""

    def __init__(self, failed_folds: int, errors: list[str]):
        self.failed_folds = failed_folds
        self.errors = errors
        super().__init__(
            f"All {failed_folds} candidate folds failed; first error: "
            f"{errors[0] if errors else 'unknown'}"
        )


class AllRunsFailedError(StrategyValidationError):
    """Every Monte Carlo trial failed to backtest."""

    def __init__(self, failed_runs: int, errors: list[str]):
        self.failed_runs = failed_runs
        self.errors = errors
        super().__init__(
            f"All {failed_runs} Monte Carlo runs failed; first error: "
            f"{errors[0] if errors else 'unknown'}"
        )


class AnalysisCancelledError(StrategyValidationError):
    """Analysis was cancelled through its cancel event."""
