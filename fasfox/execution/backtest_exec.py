"""
Backtest execution engine.

This module contains the `BacktestEngine` class which replays
historical bars through the strategy controller against the simulated
venue.  For every bar the engine

1. lets the venue close positions whose stop-loss or take-profit was
   touched inside the bar,
2. publishes a tick at the bar close (bid = close, ask = close + spread),
3. publishes the bar-close event with the source series up to that bar,

draining the event queue after each step so that fills and closures are
delivered before the next market event.
"""

from __future__ import annotations

import logging
import random
from typing import List, Optional, Tuple
import pandas as pd

from ..config.schema import Config
from ..data.csv_data import CSVDataLoader
from ..indicators.moving_average import source_series
from ..strategy.controller import StrategyController
from .events import BarCloseEvent, EventDispatcher, TickEvent, bind_controller
from .models import ClosedTrade, EquityPoint, Tick
from .simulated_exec import SimulatedGateway


logger = logging.getLogger(__name__)


class BacktestEngine:
    """Run the strategy over historical data loaded from CSV files."""

    def __init__(self, config: Config, rng: Optional[random.Random] = None) -> None:
        self.config = config
        self.rng = rng
        self.data_loader = CSVDataLoader(config.data.csv_dir, config.data.timezone)
        self.controller: Optional[StrategyController] = None
        self.venue: Optional[SimulatedGateway] = None

    def run(self, bars: Optional[pd.DataFrame] = None) -> Tuple[List[ClosedTrade], List[EquityPoint]]:
        """Execute the backtest.

        Parameters
        ----------
        bars : pandas.DataFrame, optional
            OHLC bars indexed by timestamp.  Loaded from the configured CSV
            directory when omitted.

        Returns
        -------
        trades : list of ClosedTrade
            Closed positions with their gross profit.
        equity_curve : list of EquityPoint
            Balance after each closed position.
        """
        if bars is None:
            bars = self.data_loader.load(self.config.symbol.name)

        dispatcher = EventDispatcher()
        venue = SimulatedGateway(self.config, dispatcher)
        controller = StrategyController(self.config, venue, venue, rng=self.rng)
        bind_controller(dispatcher, controller)
        self.venue, self.controller = venue, controller

        venue.equity_curve.append(EquityPoint(timestamp=bars.index[0] if len(bars) else None, equity=venue.balance))
        series = source_series(bars, self.config.strategy.source)
        spread = self.config.costs.spread
        started = False

        for idx in range(len(bars)):
            ts = bars.index[idx]
            bar = bars.iloc[idx]

            venue.check_bar(ts, bar)
            dispatcher.run_pending()

            close = float(bar['close'])
            tick = Tick(bid=close, ask=close + spread, timestamp=ts)
            venue.update_tick(tick)
            dispatcher.publish(TickEvent(tick))
            dispatcher.run_pending()

            if not started:
                # start-up orders need a quote
                controller.start([])
                dispatcher.run_pending()
                started = True

            dispatcher.publish(BarCloseEvent(ts, series.iloc[: idx + 1]))
            dispatcher.run_pending()

            if controller.halted:
                logger.warning("Backtest stopped at %s: %s", ts, controller.halt_reason)
                break

        logger.info(
            "Backtest finished: %d trades, %d positions still open, balance %.2f",
            len(venue.trades), len(venue.positions), venue.balance,
        )
        return venue.trades, venue.equity_curve
