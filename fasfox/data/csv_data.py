"""
CSV data loader.

This module provides a class to load historical OHLC data from CSV
files.  Two layouts are understood:

```
time,open,high,low,close[,tick_volume,spread]
```

and the tab-separated export of the MetaTrader terminal
(`<DATE>`, `<TIME>`, `<OPEN>`, ...).  Timestamps are localised to (or
converted into) the timezone specified in the configuration.
"""

from __future__ import annotations

from pathlib import Path
import pandas as pd

from ..utils.timeutils import localise_index


REQUIRED_COLUMNS = ["open", "high", "low", "close"]


class CSVDataLoader:
    """Load OHLC data from CSV files for backtesting.

    Parameters
    ----------
    csv_dir : str
        Directory where the CSV files are located.  Each symbol's file
        must be named `{SYMBOL}.csv`.
    timezone : str
        IANA timezone name used to localise timestamps.
    """

    def __init__(self, csv_dir: str, timezone: str) -> None:
        self.csv_dir = Path(csv_dir)
        self.timezone = timezone

    def load(self, symbol: str) -> pd.DataFrame:
        file_path = self.csv_dir / f"{symbol}.csv"
        if not file_path.exists():
            raise FileNotFoundError(f"CSV file not found for symbol {symbol}: {file_path}")

        with file_path.open("r", encoding="utf-8") as fh:
            header = fh.readline()
        if "<DATE>" in header:
            return self._load_mt5_export(file_path, symbol)

        df = pd.read_csv(file_path)
        if "time" not in df.columns:
            raise ValueError(f"Unrecognized CSV format for {symbol}: no 'time' column in {list(df.columns)}")
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"CSV for {symbol} is missing columns: {missing}")
        df["time"] = pd.to_datetime(df["time"], errors="raise")
        df = df.set_index("time").sort_index()
        df.index = localise_index(df.index, self.timezone)
        return df[REQUIRED_COLUMNS].astype(float)

    def _load_mt5_export(self, file_path: Path, symbol: str) -> pd.DataFrame:
        df = pd.read_csv(file_path, sep="\t", engine="python")
        df.columns = [c.strip() for c in df.columns]

        required = ["<DATE>", "<TIME>", "<OPEN>", "<HIGH>", "<LOW>", "<CLOSE>"]
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )

        dt = df["<DATE>"].astype(str).str.strip() + " " + df["<TIME>"].astype(str).str.strip()
        ts = pd.to_datetime(dt, format="%Y.%m.%d %H:%M:%S", errors="coerce")
        if ts.isna().any():
            bad = dt[ts.isna()].head(5).tolist()
            raise ValueError(f"Could not parse MT5 DATE/TIME for {symbol}. Examples: {bad}")

        out = pd.DataFrame(
            {
                "open": df["<OPEN>"].astype(float),
                "high": df["<HIGH>"].astype(float),
                "low": df["<LOW>"].astype(float),
                "close": df["<CLOSE>"].astype(float),
            },
        )
        out.index = localise_index(pd.DatetimeIndex(ts), self.timezone)
        return out.sort_index()
