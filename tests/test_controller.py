import os
import sys
import random
import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fasfox.execution.events import (
    BarCloseEvent,
    EventDispatcher,
    PositionClosedEvent,
    PositionOpenedEvent,
    TickEvent,
    bind_controller,
)
from fasfox.execution.models import ErrorKind, OrderResult, Tick, TradeType
from fasfox.strategy.controller import StrategyController
from fakes import RecordingGateway, make_config, make_position

import unittest


class TestEndToEndScenario(unittest.TestCase):
    """Crossover entry, trailing stop and losing re-entry through the dispatcher."""

    def test_buy_trail_and_reenter(self) -> None:
        config = make_config(min_balance=5000.0, volume=100000)
        gateway = RecordingGateway(balance=10000.0)
        controller = StrategyController(config, gateway, gateway, rng=random.Random(1))
        dispatcher = bind_controller(EventDispatcher(), controller)

        closes = [5.0, 4.0, 3.0, 2.0, 6.0]
        index = pd.date_range("2024-01-01", periods=len(closes), freq="60min", tz="UTC")
        series = pd.Series(closes, index=index)
        for i in range(len(closes)):
            dispatcher.publish(BarCloseEvent(index[i], series.iloc[: i + 1]))
            dispatcher.run_pending()
            if i < 4:
                self.assertEqual(gateway.opened, [], f"no entry expected at bar {i + 1}")

        self.assertEqual(len(gateway.opened), 1)
        order = gateway.opened[0]
        self.assertIs(order['direction'], TradeType.BUY)
        self.assertEqual(order['volume'], 100000)
        self.assertEqual(order['label'], "FasFox")
        self.assertEqual(order['symbol'], "EURUSD")

        position = make_position(pid=101, direction=TradeType.BUY, entry=1.1000, volume=100000)
        dispatcher.publish(PositionOpenedEvent(position))
        dispatcher.run_pending()
        self.assertIn(101, controller.ledger)

        # favourable move of 15 pips for the buy
        dispatcher.publish(TickEvent(Tick(bid=1.1015, ask=1.1016)))
        dispatcher.run_pending()
        self.assertEqual(len(gateway.modified), 1)
        self.assertEqual(gateway.modified[0]['position_id'], 101)
        self.assertAlmostEqual(gateway.modified[0]['stop_loss'], 1.1005)

        dispatcher.publish(PositionClosedEvent(controller.ledger.get(101), -10.0))
        dispatcher.run_pending()
        self.assertNotIn(101, controller.ledger)
        self.assertEqual(len(gateway.opened), 2)
        self.assertIs(gateway.opened[1]['direction'], TradeType.BUY)
        self.assertEqual(gateway.opened[1]['volume'], 100000)


class TestDispatcher(unittest.TestCase):
    def test_failing_handler_does_not_stop_the_queue(self) -> None:
        dispatcher = EventDispatcher()
        seen = []

        def boom(event):
            raise RuntimeError("handler crashed")

        dispatcher.register(TickEvent, boom)
        dispatcher.register(PositionOpenedEvent, lambda e: seen.append(e.position.id))
        dispatcher.publish(TickEvent(Tick(1.0, 1.0)))
        dispatcher.publish(PositionOpenedEvent(make_position(pid=3)))
        with self.assertLogs("fasfox.execution.events", level="ERROR"):
            processed = dispatcher.run_pending()
        self.assertEqual(processed, 2)
        self.assertEqual(seen, [3])

    def test_events_published_by_handlers_run_afterwards(self) -> None:
        dispatcher = EventDispatcher()
        order = []

        def on_tick(event):
            order.append("tick")
            dispatcher.publish(PositionOpenedEvent(make_position(pid=1)))
            order.append("tick done")

        dispatcher.register(TickEvent, on_tick)
        dispatcher.register(PositionOpenedEvent, lambda e: order.append("opened"))
        dispatcher.publish(TickEvent(Tick(1.0, 1.0)))
        dispatcher.run_pending()
        self.assertEqual(order, ["tick", "tick done", "opened"])
        self.assertEqual(len(dispatcher), 0)


class TestControllerLifecycle(unittest.TestCase):
    def test_opened_ignores_foreign_positions(self) -> None:
        gateway = RecordingGateway()
        controller = StrategyController(make_config(), gateway, gateway)
        controller.handle_position_opened(make_position(pid=1, label="manual"))
        controller.handle_position_opened(make_position(pid=2, symbol="USDJPY"))
        self.assertEqual(len(controller.ledger), 0)

    def test_updates_do_not_resurrect_closed_positions(self) -> None:
        gateway = RecordingGateway()
        controller = StrategyController(make_config(), gateway, gateway)
        position = make_position(pid=1)
        controller.handle_position_opened(position)
        controller.handle_position_closed(position, 5.0)
        controller.handle_position_updated(position)
        self.assertNotIn(1, controller.ledger)

    def test_halt_on_signal_entry_stops_all_activity(self) -> None:
        gateway = RecordingGateway(balance=10000.0)
        controller = StrategyController(make_config(), gateway, gateway)
        controller.handle_position_opened(
            make_position(pid=1, direction=TradeType.SELL, entry=1.1000, gross_profit=-500.0))
        gateway.open_result = OrderResult.fail(ErrorKind.INSUFFICIENT_FUNDS)
        controller.handle_bar_close(pd.Timestamp("2024-01-01", tz="UTC"), pd.Series([5.0, 4.0, 3.0, 2.0, 1.0, 6.0]))
        self.assertTrue(controller.halted)
        # the losing position is not closed once halted
        self.assertEqual(gateway.closed, [])
        controller.handle_tick(Tick(bid=1.0900, ask=1.0900))
        self.assertEqual(gateway.modified, [])
        controller.handle_position_closed(controller.ledger.get(1), -500.0)
        self.assertEqual(len(gateway.opened), 1)

    def test_start_adopts_labelled_positions(self) -> None:
        existing = [make_position(pid=1), make_position(pid=2, label="manual")]
        gateway = RecordingGateway(positions=existing)
        controller = StrategyController(make_config(), gateway, gateway)
        controller.start()
        self.assertEqual([p.id for p in controller.ledger.all()], [1])
        self.assertEqual(gateway.opened, [])

    def test_start_opens_random_initial_order(self) -> None:
        gateway = RecordingGateway()
        controller = StrategyController(make_config(open_on_start=True), gateway, gateway)
        controller.start([])
        self.assertEqual(len(gateway.opened), 1)
        self.assertEqual(gateway.opened[0]['volume'], 10000)

    def test_start_hedges_first_existing_position(self) -> None:
        existing = [make_position(pid=1, direction=TradeType.BUY, label="manual"),
                    make_position(pid=2, direction=TradeType.SELL, label="manual")]
        gateway = RecordingGateway(positions=existing)
        controller = StrategyController(make_config(hedge_on_start=True), gateway, gateway)
        controller.start()
        self.assertEqual(len(gateway.opened), 1)
        self.assertIs(gateway.opened[0]['direction'], TradeType.SELL)
        self.assertEqual(gateway.opened[0]['volume'], 100000)

    def test_protection_attached_to_unprotected_positions(self) -> None:
        gateway = RecordingGateway()
        controller = StrategyController(make_config(protection_pips=10), gateway, gateway)
        controller.handle_position_opened(make_position(pid=1, direction=TradeType.BUY, entry=1.1000))
        controller.handle_tick(Tick(bid=1.1001, ask=1.1002))
        self.assertEqual(len(gateway.modified), 1)
        self.assertAlmostEqual(gateway.modified[0]['stop_loss'], 1.0990)
        self.assertAlmostEqual(gateway.modified[0]['take_profit'], 1.1010)
        controller.handle_tick(Tick(bid=1.1001, ask=1.1002))
        self.assertEqual(len(gateway.modified), 1)


if __name__ == '__main__':
    unittest.main()
