from __future__ import annotations

import numpy as np
import pandas as pd


def sma(series: pd.Series, period: int) -> pd.Series:
    """Simple moving average.  The first ``period - 1`` values are NaN."""
    return series.astype(float).rolling(window=int(period), min_periods=int(period)).mean()


def ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average (EMA).

    Notes
    -----
    - Uses pandas `ewm(adjust=False)`.
    - Values before ``period`` observations are masked to NaN so that the
      warm-up behaves like the simple average.
    """
    out = series.astype(float).ewm(span=int(period), adjust=False).mean()
    out.iloc[: int(period) - 1] = np.nan
    return out


def wma(series: pd.Series, period: int) -> pd.Series:
    """Linearly weighted moving average (latest value has weight ``period``)."""
    weights = np.arange(1, int(period) + 1, dtype=float)
    return series.astype(float).rolling(window=int(period), min_periods=int(period)).apply(
        lambda window: float(np.dot(window, weights) / weights.sum()), raw=True
    )


_METHODS = {
    "simple": sma,
    "exponential": ema,
    "weighted": wma,
}


def moving_average(series: pd.Series, period: int, method: str = "simple") -> pd.Series:
    """Compute a moving average of `series` with the named method."""
    try:
        fn = _METHODS[method.lower()]
    except KeyError:
        raise ValueError(f"Unknown moving average method: {method}") from None
    return fn(series, period)


def last(values: pd.Series, offset: int) -> float:
    """Value `offset` bars back from the end (0 = current), NaN when unavailable."""
    if offset >= len(values):
        return float("nan")
    return float(values.iloc[-1 - offset])


def source_series(bars: pd.DataFrame, source: str = "close") -> pd.Series:
    """Derive the price series the averages run on from OHLC bars."""
    if source == "median":
        return (bars["high"] + bars["low"]) / 2.0
    if source == "typical":
        return (bars["high"] + bars["low"] + bars["close"]) / 3.0
    return bars[source].astype(float)
