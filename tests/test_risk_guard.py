import os
import sys
import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fasfox.execution.models import Tick, TradeType
from fasfox.strategy.controller import StrategyController
from fasfox.strategy.risk_guard import RiskGuard
from fakes import RecordingGateway, make_config, make_position

import unittest


BUY_SERIES = pd.Series([5.0, 4.0, 3.0, 2.0, 1.0, 6.0])
FLAT_SERIES = pd.Series([1.0] * 6)
TS = pd.Timestamp("2024-01-01 10:00", tz="UTC")


class TestRiskGuardRules(unittest.TestCase):
    def setUp(self) -> None:
        self.guard = RiskGuard(max_positions=3, min_balance=5000.0, min_loss=-200.0)

    def test_entry_gate(self) -> None:
        self.assertTrue(self.guard.entry_allowed(2))
        self.assertTrue(self.guard.entry_allowed(3))
        self.assertFalse(self.guard.entry_allowed(4))

    def test_low_balance_selects_all(self) -> None:
        positions = [make_position(pid=i) for i in range(3)]
        selected = self.guard.positions_to_close(4000.0, positions)
        self.assertEqual([p.id for p, _ in selected], [0, 1, 2])
        self.assertTrue(all(reason == "min_balance" for _, reason in selected))

    def test_min_loss_selects_only_losers(self) -> None:
        positions = [
            make_position(pid=1, gross_profit=-250.0),
            make_position(pid=2, gross_profit=-200.0),
            make_position(pid=3, gross_profit=50.0),
        ]
        selected = self.guard.positions_to_close(10000.0, positions)
        self.assertEqual([(p.id, r) for p, r in selected], [(1, "min_loss")])

    def test_position_listed_once(self) -> None:
        positions = [make_position(pid=1, gross_profit=-500.0), make_position(pid=2)]
        selected = self.guard.positions_to_close(100.0, positions)
        self.assertEqual([p.id for p, _ in selected], [1, 2])


class TestRiskGuardOnBarClose(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = RecordingGateway(balance=10000.0)
        self.controller = StrategyController(make_config(max_positions=3), self.gateway, self.gateway)

    def _open(self, count: int, **kwargs) -> None:
        for pid in range(1, count + 1):
            self.controller.handle_position_opened(make_position(pid=pid, **kwargs))

    def test_entry_suppressed_above_max_positions(self) -> None:
        self._open(4)
        self.controller.handle_bar_close(TS, BUY_SERIES)
        self.assertEqual(self.gateway.opened, [])

    def test_entry_allowed_below_max_positions(self) -> None:
        self._open(2)
        self.controller.handle_bar_close(TS, BUY_SERIES)
        self.assertEqual(len(self.gateway.opened), 1)
        self.assertIs(self.gateway.opened[0]['direction'], TradeType.BUY)
        self.assertEqual(self.gateway.opened[0]['volume'], 100000)

    def test_suppression_only_lasts_one_bar(self) -> None:
        self._open(4)
        self.controller.handle_bar_close(TS, BUY_SERIES)
        self.controller.handle_position_closed(self.controller.ledger.get(4), 10.0)
        self.controller.handle_position_closed(self.controller.ledger.get(3), 10.0)
        opened_by_martingale = len(self.gateway.opened)
        self.controller.handle_bar_close(TS, BUY_SERIES)
        self.assertEqual(len(self.gateway.opened), opened_by_martingale + 1)

    def test_low_balance_closes_all_labelled(self) -> None:
        self._open(3)
        self.controller.ledger.upsert(make_position(pid=9, label="manual"))
        self.gateway.balance = 4000.0
        self.controller.handle_bar_close(TS, FLAT_SERIES)
        self.assertEqual(sorted(self.gateway.closed), [1, 2, 3])

    def test_single_loser_closed(self) -> None:
        self.controller.handle_position_opened(make_position(pid=1, gross_profit=-10.0))
        self.controller.handle_position_opened(make_position(pid=2, gross_profit=-300.0))
        self.controller.handle_position_opened(make_position(pid=3, gross_profit=25.0))
        self.controller.handle_bar_close(TS, FLAT_SERIES)
        self.assertEqual(self.gateway.closed, [2])

    def test_rules_run_in_order(self) -> None:
        self.controller.handle_position_opened(
            make_position(pid=1, direction=TradeType.SELL, entry=1.1000, gross_profit=-300.0))
        self.controller.handle_position_opened(make_position(pid=2, direction=TradeType.SELL, entry=1.1000))
        self.controller.handle_tick(Tick(bid=1.1000, ask=1.1000))
        self.controller.handle_bar_close(TS, BUY_SERIES)
        self.controller.handle_tick(Tick(bid=1.0980, ask=1.0980))
        self.assertEqual(self.gateway.log[:2], ["open", "close"])

    def test_trailing_pass_runs_after_closures(self) -> None:
        # quote seen before the positions exist, so only the bar-close pass trails them
        self.controller.handle_tick(Tick(bid=1.0980, ask=1.0980))
        self.controller.handle_position_opened(make_position(pid=1, direction=TradeType.SELL, entry=1.1000))
        self.controller.handle_position_opened(
            make_position(pid=2, direction=TradeType.SELL, entry=1.1000, gross_profit=-300.0))
        self.controller.handle_bar_close(TS, BUY_SERIES)
        self.assertEqual(self.gateway.log, ["open", "close", "modify", "modify"])
        self.assertEqual(self.gateway.closed, [2])


if __name__ == '__main__':
    unittest.main()
