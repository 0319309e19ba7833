import os
import sys
import math
import random
import tempfile
import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fasfox.config.schema import Config, CostsConfig, DataConfig
from fasfox.data.csv_data import CSVDataLoader
from fasfox.execution.backtest_exec import BacktestEngine

import unittest


def sine_bars(count: int = 200) -> pd.DataFrame:
    index = pd.date_range("2024-01-01", periods=count, freq="60min", tz="UTC")
    close = [1.1 + 0.01 * math.sin(i / 5.0) for i in range(count)]
    return pd.DataFrame(
        {
            "open": close,
            "high": [c + 0.0005 for c in close],
            "low": [c - 0.0005 for c in close],
            "close": close,
        },
        index=index,
    )


class TestBacktestEngine(unittest.TestCase):
    def test_run_produces_trades(self) -> None:
        cfg = Config(costs=CostsConfig(spread=0.0001))
        engine = BacktestEngine(cfg, rng=random.Random(1))
        trades, equity_curve = engine.run(sine_bars())
        self.assertGreater(len(trades), 0)
        self.assertEqual(equity_curve[0].equity, cfg.initial_balance)
        self.assertAlmostEqual(equity_curve[-1].equity, engine.venue.balance)
        self.assertTrue(all(t.reason in ("sl", "tp", "close") for t in trades))
        self.assertTrue(all(t.symbol == "EURUSD" for t in trades))

    def test_positions_match_ledger(self) -> None:
        engine = BacktestEngine(Config(), rng=random.Random(2))
        engine.run(sine_bars(120))
        labelled = {p.id for p in engine.venue.open_positions() if p.label == "FasFox"}
        self.assertEqual({p.id for p in engine.controller.ledger.all()}, labelled)

    def test_seeded_runs_are_reproducible(self) -> None:
        first, _ = BacktestEngine(Config(), rng=random.Random(9)).run(sine_bars())
        second, _ = BacktestEngine(Config(), rng=random.Random(9)).run(sine_bars())
        self.assertEqual([(t.direction, t.volume, t.reason) for t in first],
                         [(t.direction, t.volume, t.reason) for t in second])

    def test_run_from_csv(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            bars = sine_bars(60)
            out = bars.copy()
            out.index = out.index.tz_localize(None)
            out.index.name = "time"
            out.to_csv(os.path.join(tmp, "EURUSD.csv"))
            cfg = Config(data=DataConfig(csv_dir=tmp, timezone="UTC"))
            loaded = CSVDataLoader(tmp, "UTC").load("EURUSD")
            self.assertEqual(len(loaded), 60)
            self.assertEqual(str(loaded.index.tz), "UTC")
            trades, equity_curve = BacktestEngine(cfg, rng=random.Random(3)).run()
            self.assertGreaterEqual(len(equity_curve), 1)

    def test_missing_csv(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileNotFoundError):
                CSVDataLoader(tmp, "UTC").load("EURUSD")


if __name__ == '__main__':
    unittest.main()
