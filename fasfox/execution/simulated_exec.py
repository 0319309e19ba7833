"""
Simulated execution venue.

`SimulatedGateway` plays the broker for backtests and paper trading.
It fills market orders at the current bid/ask, keeps protective levels,
marks positions to market on every tick and closes them when a bar
touches their stop-loss or take-profit.  Every state change is
published to the event dispatcher, just as a real venue would call back
the strategy.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence
import pandas as pd

from ..config.schema import Config
from .events import EventDispatcher, PositionClosedEvent, PositionOpenedEvent, PositionUpdatedEvent
from .gateway import AccountState, ExecutionGateway
from .models import ClosedTrade, EquityPoint, ErrorKind, OrderResult, Position, Tick, TradeType


logger = logging.getLogger(__name__)


class SimulatedGateway(ExecutionGateway, AccountState):
    """In-memory venue with a single account and one symbol."""

    def __init__(self, config: Config, dispatcher: EventDispatcher, balance: Optional[float] = None) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self._balance = config.initial_balance if balance is None else balance
        self.positions: Dict[int, Position] = {}
        self.entry_times: Dict[int, Optional[pd.Timestamp]] = {}
        self.trades: List[ClosedTrade] = []
        self.equity_curve: List[EquityPoint] = []
        self.tick: Optional[Tick] = None
        self._next_id = 1

    # ------------------------------------------------------------------
    # AccountState
    # ------------------------------------------------------------------
    @property
    def balance(self) -> float:
        return self._balance

    def open_positions(self) -> Sequence[Position]:
        return list(self.positions.values())

    def _used_margin(self) -> float:
        return sum(p.volume * p.entry_price for p in self.positions.values()) / self.config.costs.leverage

    def _floating(self) -> float:
        return sum(p.gross_profit for p in self.positions.values())

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------
    def _profit(self, position: Position, exit_price: float) -> float:
        if position.direction is TradeType.BUY:
            return (exit_price - position.entry_price) * position.volume
        return (position.entry_price - exit_price) * position.volume

    def _exit_price(self, tick: Tick, direction: TradeType) -> float:
        return tick.bid if direction is TradeType.BUY else tick.ask

    def update_tick(self, tick: Tick) -> None:
        """Set the current quote and mark every position to market."""
        self.tick = tick
        for pid, position in list(self.positions.items()):
            updated = replace(position, gross_profit=self._profit(position, self._exit_price(tick, position.direction)))
            self.positions[pid] = updated
            self.dispatcher.publish(PositionUpdatedEvent(updated))

    def check_bar(self, timestamp: pd.Timestamp, bar: pd.Series) -> None:
        """Close positions whose stop-loss or take-profit lies within the bar.

        Sell positions are bought back at the ask, so the bar's bid
        high/low are shifted up by the spread.  When both levels lie in
        the same bar the stop-loss is assumed to be hit first.
        """
        spread = self.config.costs.spread
        for position in list(self.positions.values()):
            level: Optional[float] = None
            reason = ""
            if position.direction is TradeType.BUY:
                if position.stop_loss is not None and bar['low'] <= position.stop_loss:
                    level, reason = position.stop_loss, 'sl'
                elif position.take_profit is not None and bar['high'] >= position.take_profit:
                    level, reason = position.take_profit, 'tp'
            else:
                if position.stop_loss is not None and bar['high'] + spread >= position.stop_loss:
                    level, reason = position.stop_loss, 'sl'
                elif position.take_profit is not None and bar['low'] + spread <= position.take_profit:
                    level, reason = position.take_profit, 'tp'
            if level is not None:
                self._settle(position, level, timestamp, reason)

    def _settle(self, position: Position, exit_price: float, timestamp: Optional[pd.Timestamp], reason: str) -> None:
        del self.positions[position.id]
        pnl = self._profit(position, exit_price)
        fees = self.config.costs.commission_per_lot * position.volume / self.config.symbol.lot_size
        self._balance += pnl - fees
        closed = replace(position, gross_profit=pnl)
        self.trades.append(
            ClosedTrade(
                position_id=position.id,
                symbol=position.symbol,
                direction=position.direction,
                volume=position.volume,
                entry_price=position.entry_price,
                exit_price=exit_price,
                entry_time=self.entry_times.pop(position.id, None),
                exit_time=timestamp,
                gross_profit=pnl,
                reason=reason,
            )
        )
        self.equity_curve.append(EquityPoint(timestamp=timestamp, equity=self._balance))
        logger.debug("Closed %s at %s (%s) pnl=%.2f", position.id, exit_price, reason, pnl)
        self.dispatcher.publish(PositionClosedEvent(closed, pnl))

    # ------------------------------------------------------------------
    # ExecutionGateway
    # ------------------------------------------------------------------
    def open_market_order(
        self,
        direction: TradeType,
        symbol: str,
        volume: int,
        label: str,
        stop_loss_pips: Optional[float],
        take_profit_pips: Optional[float],
    ) -> OrderResult:
        if self.tick is None:
            return OrderResult.fail(ErrorKind.TECHNICAL, "no quote available")
        if volume <= 0:
            return OrderResult.fail(ErrorKind.REJECTED, f"invalid volume {volume}")
        price = self.tick.ask if direction is TradeType.BUY else self.tick.bid
        required = volume * price / self.config.costs.leverage
        free = self._balance + self._floating() - self._used_margin()
        if self._balance <= 0 or required > free:
            return OrderResult.fail(ErrorKind.INSUFFICIENT_FUNDS, f"required margin {required:.2f} > free {free:.2f}")

        pip = self.config.symbol.pip_size
        digits = self.config.symbol.digits
        sign = 1 if direction is TradeType.BUY else -1
        stop_loss = round(price - sign * stop_loss_pips * pip, digits) if stop_loss_pips else None
        take_profit = round(price + sign * take_profit_pips * pip, digits) if take_profit_pips else None

        position = Position(
            id=self._next_id,
            symbol=symbol,
            direction=direction,
            entry_price=price,
            volume=int(volume),
            label=label,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        self._next_id += 1
        self.positions[position.id] = position
        self.entry_times[position.id] = self.tick.timestamp
        self.dispatcher.publish(PositionOpenedEvent(position))
        return OrderResult.ok(position.id)

    def modify_position(self, position_id: int, stop_loss: Optional[float], take_profit: Optional[float]) -> OrderResult:
        position = self.positions.get(position_id)
        if position is None:
            return OrderResult.fail(ErrorKind.UNKNOWN_POSITION, f"position {position_id} not found")
        if self.tick is None:
            return OrderResult.fail(ErrorKind.TECHNICAL, "no quote available")
        if position.direction is TradeType.BUY:
            bad = (stop_loss is not None and stop_loss >= self.tick.bid) or (
                take_profit is not None and take_profit <= self.tick.bid)
        else:
            bad = (stop_loss is not None and stop_loss <= self.tick.ask) or (
                take_profit is not None and take_profit >= self.tick.ask)
        if bad:
            return OrderResult.fail(ErrorKind.REJECTED, f"invalid stops sl={stop_loss} tp={take_profit}")
        updated = replace(position, stop_loss=stop_loss, take_profit=take_profit)
        self.positions[position_id] = updated
        self.dispatcher.publish(PositionUpdatedEvent(updated))
        return OrderResult.ok(position_id)

    def close_position(self, position_id: int) -> OrderResult:
        position = self.positions.get(position_id)
        if position is None:
            return OrderResult.fail(ErrorKind.UNKNOWN_POSITION, f"position {position_id} not found")
        if self.tick is None:
            return OrderResult.fail(ErrorKind.TECHNICAL, "no quote available")
        self._settle(position, self._exit_price(self.tick, position.direction), self.tick.timestamp, 'close')
        return OrderResult.ok(position_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        """Serialisable state for paper trading restarts."""
        return {
            'balance': self._balance,
            'next_id': self._next_id,
            'positions': [
                {
                    'id': p.id,
                    'symbol': p.symbol,
                    'direction': p.direction.value,
                    'entry_price': p.entry_price,
                    'volume': p.volume,
                    'label': p.label,
                    'stop_loss': p.stop_loss,
                    'take_profit': p.take_profit,
                    'entry_time': None if self.entry_times.get(p.id) is None else self.entry_times[p.id].isoformat(),
                }
                for p in self.positions.values()
            ],
        }

    def restore(self, state: Dict[str, Any]) -> None:
        self._balance = float(state.get('balance', self._balance))
        self._next_id = int(state.get('next_id', self._next_id))
        for raw in state.get('positions', []):
            position = Position(
                id=int(raw['id']),
                symbol=raw['symbol'],
                direction=TradeType(raw['direction']),
                entry_price=float(raw['entry_price']),
                volume=int(raw['volume']),
                label=raw['label'],
                stop_loss=raw.get('stop_loss'),
                take_profit=raw.get('take_profit'),
            )
            self.positions[position.id] = position
            entry_time = raw.get('entry_time')
            self.entry_times[position.id] = pd.Timestamp(entry_time) if entry_time else None
