"""
Moving average crossover signal.

On every bar close the fast and slow averages of the source series are
compared on the current and the previous bar.  A buy is signalled when
the fast average climbs to or above the slow one, a sell on the mirrored
cross.  Only the last two values of each average are looked at; there
is no other state.
"""

from __future__ import annotations

import math
import pandas as pd

from ..execution.models import Signal
from ..indicators.moving_average import moving_average, last


def evaluate_crossover(
    previous_fast: float,
    previous_slow: float,
    current_fast: float,
    current_slow: float,
) -> Signal:
    """Classify the transition between two consecutive bars.

    Parameters
    ----------
    previous_fast, previous_slow : float
        Averages on the prior bar.
    current_fast, current_slow : float
        Averages on the bar that just closed.

    Returns
    -------
    Signal
        `Signal.ENTER_BUY` when the slow average was strictly above the
        fast one and is now less than or equal to it,
        `Signal.ENTER_SELL` for the mirrored case, `Signal.NONE`
        otherwise (including when any value is missing).
    """
    values = (previous_fast, previous_slow, current_fast, current_slow)
    if any(v is None or math.isnan(v) for v in values):
        return Signal.NONE
    if previous_slow > previous_fast and current_slow <= current_fast:
        return Signal.ENTER_BUY
    if previous_slow < previous_fast and current_slow >= current_fast:
        return Signal.ENTER_SELL
    return Signal.NONE


class CrossoverSignal:
    """Compute both averages over a source series and evaluate the cross."""

    def __init__(self, fast_periods: int, slow_periods: int, ma_type: str = "simple") -> None:
        self.fast_periods = fast_periods
        self.slow_periods = slow_periods
        self.ma_type = ma_type

    def evaluate(self, series: pd.Series) -> Signal:
        # Two values of the slow average need slow_periods + 1 bars
        if len(series) < self.slow_periods + 1:
            return Signal.NONE
        fast = moving_average(series, self.fast_periods, self.ma_type)
        slow = moving_average(series, self.slow_periods, self.ma_type)
        return evaluate_crossover(last(fast, 1), last(slow, 1), last(fast, 0), last(slow, 0))
