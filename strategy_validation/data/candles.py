"""
Candle series handling.

Every analysis validates its candles before generating a single fold.
Bad input fails fast with a description of the first offending bar
instead of producing plausible-looking numbers from garbage.
"""

from datetime import timedelta
from typing import Any, Iterable, Union
import structlog

import numpy as np
import pandas as pd

from strategy_validation.exceptions import CandleValidationError

logger = structlog.get_logger(__name__)


CANDLE_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]
PRICE_COLUMNS = ["open", "high", "low", "close"]

CandleInput = Union[pd.DataFrame, Iterable[Any]]


def candles_to_frame(candles: CandleInput) -> pd.DataFrame:
    """
    Convert candles to a DataFrame with the standard columns.

    Accepts a DataFrame, a list of dicts, or a list of objects exposing
    timestamp/open/high/low/close/volume attributes.
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.copy()
    else:
        rows = []
        for c in candles:
            if isinstance(c, dict):
                rows.append({col: c.get(col) for col in CANDLE_COLUMNS})
            else:
                rows.append({col: getattr(c, col, None) for col in CANDLE_COLUMNS})
        df = pd.DataFrame(rows, columns=CANDLE_COLUMNS)

    missing = [col for col in CANDLE_COLUMNS if col not in df.columns]
    if missing:
        raise CandleValidationError(f"Candles missing columns: {', '.join(missing)}")

    df = df.reset_index(drop=True)
    if len(df) > 0:
        try:
            df["timestamp"] = pd.to_datetime(df["timestamp"])
        except (ValueError, TypeError) as e:
            raise CandleValidationError(f"Unparseable timestamps: {e}") from e

    return df


def validate_candles(candles: CandleInput) -> pd.DataFrame:
    """
    Validate a candle series and return it as a clean DataFrame.

    Invariants:
    - Strictly increasing timestamps
    - All prices positive and finite
    - high >= max(open, close), low <= min(open, close)
    - volume >= 0

    An empty series is valid (it simply yields no folds).

    Raises:
        CandleValidationError: describing the first violation found
    """
    df = candles_to_frame(candles)

    if df.empty:
        return df

    if df["timestamp"].isna().any():
        idx = int(df.index[df["timestamp"].isna()][0])
        raise CandleValidationError(f"Missing timestamp at bar {idx}")

    for col in PRICE_COLUMNS + ["volume"]:
        try:
            df[col] = pd.to_numeric(df[col]).astype(float)
        except (ValueError, TypeError) as e:
            raise CandleValidationError(f"Non-numeric values in '{col}': {e}") from e

        values = df[col].to_numpy()
        bad = ~np.isfinite(values)
        if bad.any():
            idx = int(np.flatnonzero(bad)[0])
            raise CandleValidationError(f"Non-finite {col} at bar {idx}: {values[idx]}")

    prices = df[PRICE_COLUMNS].to_numpy()
    non_positive = (prices <= 0).any(axis=1)
    if non_positive.any():
        idx = int(np.flatnonzero(non_positive)[0])
        raise CandleValidationError(
            f"Non-positive price at bar {idx} ({df['timestamp'].iloc[idx]})"
        )

    if (df["volume"] < 0).any():
        idx = int(np.flatnonzero(df["volume"].to_numpy() < 0)[0])
        raise CandleValidationError(f"Negative volume at bar {idx}")

    body_high = df[["open", "close"]].max(axis=1)
    body_low = df[["open", "close"]].min(axis=1)
    bad_high = df["high"] < body_high
    if bad_high.any():
        idx = int(np.flatnonzero(bad_high.to_numpy())[0])
        raise CandleValidationError(f"high below max(open, close) at bar {idx}")
    bad_low = df["low"] > body_low
    if bad_low.any():
        idx = int(np.flatnonzero(bad_low.to_numpy())[0])
        raise CandleValidationError(f"low above min(open, close) at bar {idx}")

    deltas = df["timestamp"].diff().iloc[1:]
    non_increasing = deltas <= pd.Timedelta(0)
    if non_increasing.any():
        idx = int(non_increasing.to_numpy().nonzero()[0][0]) + 1
        raise CandleValidationError(
            f"Timestamps not strictly increasing at bar {idx} "
            f"({df['timestamp'].iloc[idx - 1]} -> {df['timestamp'].iloc[idx]})"
        )

    return df


def bars_per_day(candles: pd.DataFrame) -> int:
    """
    Estimate bars per calendar day from the median bar spacing.

    Daily candles give 1, hourly candles give 24. Series with spacing
    longer than a day (weekly bars) also give 1.
    """
    if len(candles) < 2:
        return 1

    spacing = candles["timestamp"].diff().dropna().median()
    if pd.isna(spacing) or spacing <= pd.Timedelta(0):
        return 1

    return max(1, int(round(timedelta(days=1) / spacing)))


def days_to_bars(days: float, per_day: int) -> int:
    """Convert a period in days to a whole number of bars."""
    return int(np.floor(days * per_day))
