"""
Strategy controller.

`StrategyController` owns the position ledger and reacts to the four
kinds of venue events:

- ticks run the trailing stop (and, when enabled, attach default
  protective levels to unprotected positions);
- bar closes run the entry gate, the crossover entry, the risk closures
  and a trailing stop pass, in that order;
- opened / updated events keep the ledger in sync with the venue;
- closed events remove the position and hand it to the martingale
  policy for a follow-up order.

All gateway calls are fire-and-forget: their outcome reaches the
controller later as events.  An order rejected for lack of funds halts
the strategy for the rest of the session; nothing is submitted, modified
or closed afterwards.
"""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from typing import Iterable, Optional, Set
import pandas as pd

from ..config.schema import Config
from ..execution.gateway import AccountState, ExecutionGateway
from ..execution.ledger import PositionLedger
from ..execution.models import ErrorKind, OrderResult, Position, Signal, Tick, TradeType
from .martingale import MartingaleController
from .risk_guard import RiskGuard
from .signals import CrossoverSignal
from .trailing_stop import TrailingStopEngine


logger = logging.getLogger(__name__)


def _tighter_stop(direction: TradeType, current: Optional[float], incoming: Optional[float]) -> Optional[float]:
    """The more protective of two stop-loss levels; ``None`` means no stop."""
    if current is None:
        return incoming
    if incoming is None:
        return current
    if direction is TradeType.BUY:
        return max(current, incoming)
    return min(current, incoming)


class StrategyController:
    """Coordinate signal, martingale, trailing stop and risk rules."""

    def __init__(
        self,
        config: Config,
        gateway: ExecutionGateway,
        account: AccountState,
        rng: Optional[random.Random] = None,
        ledger: Optional[PositionLedger] = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.account = account
        self.ledger = ledger if ledger is not None else PositionLedger()
        s = config.strategy
        self.label = s.label
        self.symbol = config.symbol.name
        if rng is None:
            rng = random.Random(s.seed)
        self.signals = CrossoverSignal(s.fast_periods, s.slow_periods, s.ma_type)
        self.martingale = MartingaleController(s.initial_volume, s.loss_volume_multiplier, rng)
        self.trailing = TrailingStopEngine(
            s.trigger_pips, s.trailing_stop_pips, config.symbol.pip_size, config.symbol.digits
        )
        self.risk = RiskGuard(s.max_positions, s.min_balance, s.min_loss)
        self.last_tick: Optional[Tick] = None
        # positions whose stop change was rejected on `_rejected_tick`
        self._rejected: Set[int] = set()
        self._rejected_tick: Optional[Tick] = None
        self._halted = False
        self.halt_reason = ""

    @property
    def halted(self) -> bool:
        return self._halted

    def halt(self, reason: str) -> None:
        if not self._halted:
            logger.error("Strategy halted: %s", reason)
        self._halted = True
        self.halt_reason = reason

    def _owns(self, position: Position) -> bool:
        return position.label == self.label and position.symbol == self.symbol

    # ------------------------------------------------------------------
    # Gateway wrappers
    # ------------------------------------------------------------------
    def _submit(self, direction: TradeType, volume: int, reason: str) -> Optional[OrderResult]:
        if self._halted:
            return None
        s = self.config.strategy
        logger.info("Submitting %s %s %d (%s)", direction.value, self.symbol, volume, reason)
        result = self.gateway.open_market_order(
            direction, self.symbol, volume, self.label, s.stop_loss_pips, s.take_profit_pips
        )
        if not result.success:
            if result.error is ErrorKind.INSUFFICIENT_FUNDS:
                self.halt(f"insufficient funds for {direction.value} {volume}")
            else:
                logger.warning("Order %s %d failed: %s %s", direction.value, volume, result.error, result.message)
        return result

    def _modify(self, position: Position, stop_loss: Optional[float], take_profit: Optional[float]) -> Optional[OrderResult]:
        if self._halted:
            return None
        result = self.gateway.modify_position(position.id, stop_loss, take_profit)
        if result.success:
            if position.id in self.ledger:
                self.ledger.upsert(replace(position, stop_loss=stop_loss, take_profit=take_profit))
        elif result.error is ErrorKind.UNKNOWN_POSITION:
            logger.debug("Position %s already gone, modification skipped", position.id)
        else:
            # retried on the next tick if still warranted
            logger.warning("Modification of position %s rejected: %s", position.id, result.message or result.error)
        return result

    def _close(self, position: Position, reason: str) -> None:
        if self._halted:
            return
        logger.info("Closing position %s (%s, gross profit %.2f)", position.id, reason, position.gross_profit)
        result = self.gateway.close_position(position.id)
        if not result.success:
            if result.error is ErrorKind.UNKNOWN_POSITION:
                logger.debug("Position %s already closed", position.id)
            else:
                logger.warning("Close of position %s failed: %s", position.id, result.message or result.error)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def start(self, existing_positions: Optional[Iterable[Position]] = None) -> None:
        """Adopt already-open positions and run the optional start-up orders."""
        if existing_positions is None:
            existing_positions = self.account.open_positions()
        existing = list(existing_positions)
        for position in existing:
            if self._owns(position):
                self.ledger.upsert(position)
        s = self.config.strategy
        if s.hedge_on_start and existing:
            first = existing[0]
            self._submit(first.direction.opposite, s.volume, f"hedge of {first.id}")
        if s.open_on_start:
            self._submit(self.martingale.random_direction(), s.initial_volume, "start")

    def handle_tick(self, tick: Tick) -> None:
        self.last_tick = tick
        if self._halted:
            return
        protection = self.config.strategy.protection_pips
        if protection is not None:
            for position in self.ledger.find_by_label(self.label):
                if position.stop_loss is None:
                    stop_loss, take_profit = self.trailing.protective_levels(position, protection)
                    logger.info("Modifying %s", position.id)
                    self._modify(position, stop_loss, take_profit)
        self._trail(tick)

    def _trail(self, tick: Tick) -> None:
        if tick is not self._rejected_tick:
            self._rejected_tick = tick
            self._rejected = set()
        for direction in (TradeType.SELL, TradeType.BUY):
            positions = [
                p for p in self.ledger.find_by_label_direction(self.label, direction)
                if p.id not in self._rejected
            ]
            for position, stop in self.trailing.adjustments(positions, tick):
                logger.debug("Trailing %s stop of %s to %s", direction.value, position.id, stop)
                result = self._modify(position, stop, position.take_profit)
                if result is not None and result.error is ErrorKind.REJECTED:
                    self._rejected.add(position.id)

    def handle_bar_close(self, timestamp: pd.Timestamp, series: pd.Series) -> None:
        if self._halted:
            return
        positions = self.ledger.find_by_label(self.label)

        if self.risk.entry_allowed(len(positions)):
            signal = self.signals.evaluate(series)
            volume = self.config.strategy.volume
            if signal is Signal.ENTER_BUY:
                self._submit(TradeType.BUY, volume, f"crossover at {timestamp}")
            elif signal is Signal.ENTER_SELL:
                self._submit(TradeType.SELL, volume, f"crossover at {timestamp}")
        else:
            logger.debug("%d positions open, entry suppressed at %s", len(positions), timestamp)

        for position, reason in self.risk.positions_to_close(self.account.balance, positions):
            self._close(position, reason)

        if self.last_tick is not None and not self._halted:
            self._trail(self.last_tick)

    def handle_position_opened(self, position: Position) -> None:
        if not self._owns(position):
            return
        self.ledger.upsert(position)
        logger.info("position opened at %s", position.entry_price)

    def handle_position_updated(self, position: Position) -> None:
        """Refresh a known position from a venue snapshot.

        Snapshots may predate a stop change the controller has already
        made, so the stored stop is only ever replaced by a tighter one
        and a missing take-profit keeps the stored level.
        """
        current = self.ledger.get(position.id)
        if current is None:
            return
        take_profit = position.take_profit if position.take_profit is not None else current.take_profit
        self.ledger.upsert(replace(
            position,
            stop_loss=_tighter_stop(position.direction, current.stop_loss, position.stop_loss),
            take_profit=take_profit,
        ))

    def handle_position_closed(self, position: Position, gross_profit: float) -> None:
        if not self._owns(position):
            return
        self.ledger.remove(position.id)
        logger.info("position closed with %s gross profit", gross_profit)
        if self._halted:
            return
        request = self.martingale.next_order(position, gross_profit)
        self._submit(request.direction, request.volume, f"martingale {request.reason} after {position.id}")
