"""
Timezone utilities.

Bar timestamps coming from CSV files and from the MetaTrader terminal
are normalised here so that the rest of the program only sees
timezone-aware values in the configured timezone.
"""

from __future__ import annotations

from typing import Optional
import pandas as pd


def to_timezone(ts: pd.Timestamp, tz_name: str) -> pd.Timestamp:
    """Convert a `pandas.Timestamp` to the specified timezone.

    If the timestamp is naive, it is assumed to be in UTC before
    conversion.  If it already has a timezone, it will be converted.
    """
    if not isinstance(ts, pd.Timestamp):
        ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert(tz_name)


def localise_index(index: pd.DatetimeIndex, tz_name: str) -> pd.DatetimeIndex:
    """Localise a naive index to `tz_name`, or convert an aware one."""
    if index.tz is None:
        return index.tz_localize(tz_name)
    return index.tz_convert(tz_name)


def is_new_bar(prev_ts: Optional[pd.Timestamp], current_ts: pd.Timestamp) -> bool:
    """Return `True` if `current_ts` opens a bar later than `prev_ts`.

    If `prev_ts` is `None`, any bar is considered new.
    """
    if prev_ts is None:
        return True
    return to_timezone(current_ts, "UTC") > to_timezone(prev_ts, "UTC")
