"""
MetaTrader 5 execution engine.

This module provides the `MT5Gateway`, which maps the three order
operations of the strategy onto `MetaTrader5.order_send`, and the
`MT5Engine`, which polls the terminal for ticks, closed bars and
position changes and feeds them to the strategy controller as events.

In live mode orders go to the terminal.  In paper mode the terminal is
only used for prices and orders are filled by the simulated venue.
State (halt flag, last processed bar and, in paper mode, the simulated
account) is persisted to disk so that the bot can resume after restarts
without replaying bars.

**Note**: Running this engine requires the `MetaTrader5` package and
a locally installed MT5 terminal.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence
import pandas as pd

from ..config.schema import Config
from ..data.mt5_data import MT5DataFeed, require_mt5
from ..indicators.moving_average import source_series
from ..strategy.controller import StrategyController
from ..utils.persistence import load_state, save_state
from ..utils.timeutils import is_new_bar
from .events import (
    BarCloseEvent,
    EventDispatcher,
    PositionClosedEvent,
    PositionOpenedEvent,
    PositionUpdatedEvent,
    TickEvent,
    bind_controller,
)
from .gateway import AccountState, ExecutionGateway
from .models import ErrorKind, OrderResult, Position, Tick, TradeType
from .simulated_exec import SimulatedGateway


logger = logging.getLogger(__name__)


def _classify_retcode(api: Any, retcode: int) -> ErrorKind:
    if retcode == api.TRADE_RETCODE_NO_MONEY:
        return ErrorKind.INSUFFICIENT_FUNDS
    if retcode == api.TRADE_RETCODE_POSITION_CLOSED:
        return ErrorKind.UNKNOWN_POSITION
    return ErrorKind.REJECTED


class MT5Gateway(ExecutionGateway, AccountState):
    """Send orders to a connected MetaTrader 5 terminal."""

    def __init__(self, config: Config, feed: MT5DataFeed) -> None:
        self.config = config
        self.feed = feed

    def _lots(self, volume: int) -> float:
        return round(volume / self.config.symbol.lot_size, 2)

    def _units(self, lots: float) -> int:
        return int(round(lots * self.config.symbol.lot_size))

    def _send(self, request: Dict[str, Any], position_id: Optional[int] = None) -> OrderResult:
        """Send `request` and map the reply onto an `OrderResult`.

        Orders acting on an existing position report `position_id`; new
        market orders report the ticket of the position they opened.
        """
        api = require_mt5()
        try:
            result = api.order_send(request)
        except Exception as exc:
            return OrderResult.fail(ErrorKind.TECHNICAL, str(exc))
        if result is None:
            return OrderResult.fail(ErrorKind.TECHNICAL, f"order_send returned None: {api.last_error()}")
        if result.retcode != api.TRADE_RETCODE_DONE:
            return OrderResult.fail(_classify_retcode(api, result.retcode), f"{result.retcode} {result.comment}")
        if position_id is None:
            position_id = self._opened_position(result)
        return OrderResult.ok(position_id)

    def _opened_position(self, result: Any) -> Optional[int]:
        api = require_mt5()
        if result.deal:
            deals = api.history_deals_get(ticket=result.deal) or ()
            if deals:
                return int(deals[0].position_id)
        # a position takes the ticket of the order that opened it
        return int(result.order) or None

    def _to_position(self, raw: Any) -> Position:
        api = require_mt5()
        return Position(
            id=int(raw.ticket),
            symbol=raw.symbol,
            direction=TradeType.BUY if raw.type == api.POSITION_TYPE_BUY else TradeType.SELL,
            entry_price=float(raw.price_open),
            volume=self._units(raw.volume),
            label=raw.comment,
            stop_loss=float(raw.sl) or None,
            take_profit=float(raw.tp) or None,
            gross_profit=float(raw.profit),
        )

    # AccountState
    @property
    def balance(self) -> float:
        info = require_mt5().account_info()
        return float(info.balance) if info is not None else 0.0

    def open_positions(self) -> Sequence[Position]:
        raw = require_mt5().positions_get(symbol=self.config.symbol.name)
        return [self._to_position(p) for p in raw or ()]

    def closed_profit(self, position_id: int) -> float:
        """Gross profit booked by the deals that closed `position_id`."""
        api = require_mt5()
        deals = api.history_deals_get(position=position_id) or ()
        return float(sum(d.profit for d in deals if d.entry == api.DEAL_ENTRY_OUT))

    # ExecutionGateway
    def open_market_order(
        self,
        direction: TradeType,
        symbol: str,
        volume: int,
        label: str,
        stop_loss_pips: Optional[float],
        take_profit_pips: Optional[float],
    ) -> OrderResult:
        api = require_mt5()
        tick = self.feed.get_tick(symbol)
        if tick is None:
            return OrderResult.fail(ErrorKind.TECHNICAL, f"no quote for {symbol}")
        pip = self.config.symbol.pip_size
        digits = self.config.symbol.digits
        price = tick.ask if direction is TradeType.BUY else tick.bid
        sign = 1 if direction is TradeType.BUY else -1
        request = {
            'action': api.TRADE_ACTION_DEAL,
            'symbol': symbol,
            'volume': self._lots(volume),
            'type': api.ORDER_TYPE_BUY if direction is TradeType.BUY else api.ORDER_TYPE_SELL,
            'price': price,
            'deviation': self.config.mt5.deviation,
            'magic': self.config.mt5.magic,
            'comment': label,
            'type_time': api.ORDER_TIME_GTC,
            'type_filling': api.ORDER_FILLING_IOC,
        }
        if stop_loss_pips:
            request['sl'] = round(price - sign * stop_loss_pips * pip, digits)
        if take_profit_pips:
            request['tp'] = round(price + sign * take_profit_pips * pip, digits)
        return self._send(request)

    def modify_position(self, position_id: int, stop_loss: Optional[float], take_profit: Optional[float]) -> OrderResult:
        api = require_mt5()
        if not api.positions_get(ticket=position_id):
            return OrderResult.fail(ErrorKind.UNKNOWN_POSITION, f"position {position_id} not found")
        return self._send({
            'action': api.TRADE_ACTION_SLTP,
            'symbol': self.config.symbol.name,
            'position': position_id,
            'sl': stop_loss or 0.0,
            'tp': take_profit or 0.0,
            'magic': self.config.mt5.magic,
        }, position_id=position_id)

    def close_position(self, position_id: int) -> OrderResult:
        api = require_mt5()
        raw = api.positions_get(ticket=position_id)
        if not raw:
            return OrderResult.fail(ErrorKind.UNKNOWN_POSITION, f"position {position_id} not found")
        position = self._to_position(raw[0])
        tick = self.feed.get_tick(position.symbol)
        if tick is None:
            return OrderResult.fail(ErrorKind.TECHNICAL, f"no quote for {position.symbol}")
        is_buy = position.direction is TradeType.BUY
        return self._send({
            'action': api.TRADE_ACTION_DEAL,
            'symbol': position.symbol,
            'volume': float(raw[0].volume),
            'type': api.ORDER_TYPE_SELL if is_buy else api.ORDER_TYPE_BUY,
            'position': position_id,
            'price': tick.bid if is_buy else tick.ask,
            'deviation': self.config.mt5.deviation,
            'magic': self.config.mt5.magic,
            'comment': position.label,
            'type_time': api.ORDER_TIME_GTC,
            'type_filling': api.ORDER_FILLING_IOC,
        }, position_id=position_id)


class MT5Engine:
    """Run the strategy in paper or live mode via MetaTrader 5."""

    def __init__(self, config: Config, live: bool = False, rng: Optional[random.Random] = None) -> None:
        self.config = config
        self.live = live
        self.state_file = config.state_file
        self.feed = MT5DataFeed(config.mt5, config.data.timezone, config.timeframe)
        self.dispatcher = EventDispatcher()
        self.venue: Optional[SimulatedGateway] = None
        if live:
            self.gateway: Any = MT5Gateway(config, self.feed)
        else:
            self.venue = SimulatedGateway(config, self.dispatcher)
            self.gateway = self.venue
        self.controller = StrategyController(config, self.gateway, self.gateway, rng=rng)
        bind_controller(self.dispatcher, self.controller)
        self.known: Dict[int, Position] = {}
        self.last_bar_time: Optional[pd.Timestamp] = None
        self.last_tick: Optional[Tick] = None
        self._restore_state()

    def _restore_state(self) -> None:
        persisted = load_state(self.state_file)
        if not persisted:
            return
        if persisted.get('last_bar_time'):
            self.last_bar_time = pd.Timestamp(persisted['last_bar_time'])
        if self.venue is not None and persisted.get('venue'):
            self.venue.restore(persisted['venue'])
        if persisted.get('halted'):
            self.controller.halt(persisted.get('halt_reason') or "halted in a previous run")

    def _persist_state(self) -> None:
        state: Dict[str, Any] = {
            'last_bar_time': None if self.last_bar_time is None else self.last_bar_time.isoformat(),
            'halted': self.controller.halted,
            'halt_reason': self.controller.halt_reason,
        }
        if self.venue is not None:
            state['venue'] = self.venue.snapshot()
        save_state(self.state_file, state)

    def _sync_positions(self) -> None:
        """Diff the terminal's positions against the last poll and publish changes."""
        current = {p.id: p for p in self.gateway.open_positions()}
        for pid, position in current.items():
            if pid in self.known:
                self.dispatcher.publish(PositionUpdatedEvent(position))
            else:
                self.dispatcher.publish(PositionOpenedEvent(position))
        for pid, position in self.known.items():
            if pid not in current:
                profit = self.gateway.closed_profit(pid)
                self.dispatcher.publish(PositionClosedEvent(replace(position, gross_profit=profit), profit))
        self.known = current

    def poll_once(self) -> None:
        """Process one round of ticks, bars and position changes."""
        symbol = self.config.symbol.name
        tick = self.feed.get_tick(symbol)
        if tick is not None and tick != self.last_tick:
            self.last_tick = tick
            if self.venue is not None:
                self.venue.update_tick(tick)
            self.dispatcher.publish(TickEvent(tick))

        history = self.config.strategy.slow_periods * 3 + 2
        bars = self.feed.get_last_bars(symbol, history)
        if len(bars) >= 2:
            closed = bars.iloc[:-1]
            closed_ts = closed.index[-1]
            if is_new_bar(self.last_bar_time, closed_ts):
                if self.venue is not None:
                    self.venue.check_bar(closed_ts, closed.iloc[-1])
                series = source_series(closed, self.config.strategy.source)
                self.dispatcher.publish(BarCloseEvent(closed_ts, series))
                self.last_bar_time = closed_ts

        if self.live:
            self._sync_positions()
        self.dispatcher.run_pending()

    def run(self) -> None:
        """Main loop for paper/live trading.

        Connects to MT5 and polls until interrupted.  Press Ctrl+C to
        stop.  On termination, the current state is saved to disk.
        """
        logger.info("Starting MT5 engine (live=%s)", self.live)
        try:
            self.feed.connect()
        except Exception as exc:
            logger.error("Failed to connect to MetaTrader 5: %s", exc)
            return
        try:
            existing = self.gateway.open_positions()
            if self.live:
                self.known = {p.id: p for p in existing}
            tick = self.feed.get_tick(self.config.symbol.name)
            if tick is not None and self.venue is not None:
                self.venue.update_tick(tick)
            self.controller.start(existing)
            self.dispatcher.run_pending()
            while True:
                self.poll_once()
                self._persist_state()
                time.sleep(self.config.mt5.poll_seconds)
        except KeyboardInterrupt:
            logger.info("Shutting down MT5 engine...")
        finally:
            self.feed.shutdown()
            self._persist_state()
