"""
MetaTrader 5 data feed.

This module wraps the `MetaTrader5` Python package to fetch quotes and
recent bars for live and paper trading.  If the package is not
installed or initialisation fails, the code raises a clear exception.
Users can skip installing MetaTrader5 when running offline backtests.
"""

from __future__ import annotations

from typing import Optional
import pandas as pd

from ..config.schema import MT5Config
from ..execution.models import Tick

# Attempt to import MetaTrader5.  If unavailable, mt5 will be None.
try:
    import MetaTrader5 as mt5  # type: ignore
except ImportError:
    mt5 = None  # Will be checked at runtime


def require_mt5():
    """Return the MetaTrader5 module or raise if it is not installed."""
    if mt5 is None:
        raise RuntimeError(
            "MetaTrader5 package is not installed.  Install it with 'pip install MetaTrader5' to use paper or live trading."
        )
    return mt5


class MT5DataFeed:
    """Handle connection to MetaTrader 5 and retrieval of quotes and rates."""

    def __init__(self, config: MT5Config, timezone: str, timeframe: str = "H1") -> None:
        self.config = config
        self.timezone = timezone
        self.timeframe = timeframe
        self._connected = False

    def connect(self) -> None:
        """Initialise the MetaTrader 5 terminal.

        Raises
        ------
        RuntimeError
            If the MetaTrader5 package is not installed or initialisation fails.
        """
        api = require_mt5()
        if not api.initialize(path=self.config.path, login=self.config.login, password=self.config.password, server=self.config.server):
            raise RuntimeError(f"MT5 initialisation failed: {api.last_error()}")
        self._connected = True

    def shutdown(self) -> None:
        """Shutdown the MT5 connection if it was opened."""
        if mt5 and self._connected:
            mt5.shutdown()
            self._connected = False

    def _get_mt5_timeframe(self) -> int:
        """Map a timeframe string to the MetaTrader5 timeframe constant."""
        api = require_mt5()
        timeframe_map = {
            'M1': api.TIMEFRAME_M1,
            'M5': api.TIMEFRAME_M5,
            'M15': api.TIMEFRAME_M15,
            'M30': api.TIMEFRAME_M30,
            'H1': api.TIMEFRAME_H1,
            'H4': api.TIMEFRAME_H4,
            'D1': api.TIMEFRAME_D1,
        }
        tf = timeframe_map.get(self.timeframe.upper())
        if tf is None:
            raise ValueError(f"Unsupported timeframe for MT5: {self.timeframe}")
        return tf

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise RuntimeError("MT5DataFeed is not connected.  Call connect() before requesting data.")

    def _to_frame(self, rates) -> pd.DataFrame:
        if rates is None or len(rates) == 0:
            return pd.DataFrame()
        df = pd.DataFrame(rates)
        df['time'] = pd.to_datetime(df['time'], unit='s', utc=True)
        df = df.set_index('time').sort_index()
        df.index = df.index.tz_convert(self.timezone)
        return df[['open', 'high', 'low', 'close']]

    def get_last_bars(self, symbol: str, count: int) -> pd.DataFrame:
        """Retrieve the `count` most recent bars, the forming bar included."""
        self._ensure_connected()
        return self._to_frame(mt5.copy_rates_from_pos(symbol, self._get_mt5_timeframe(), 0, count))

    def get_tick(self, symbol: str) -> Optional[Tick]:
        """Latest bid/ask quote, or ``None`` if the terminal has none."""
        self._ensure_connected()
        raw = mt5.symbol_info_tick(symbol)
        if raw is None:
            return None
        ts = pd.Timestamp(raw.time, unit='s', tz='UTC').tz_convert(self.timezone)
        return Tick(bid=float(raw.bid), ask=float(raw.ask), timestamp=ts)
