"""
Trailing stop computation.

Once a position is `trigger_pips` in profit its stop-loss follows the
market at `trailing_pips`.  A new stop is only proposed when it is
strictly better than the current one, so a stop never loosens
whatever order the ticks arrive in.

Sell positions are measured against the ask (the price they would be
bought back at), buy positions against the bid.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..execution.models import Position, Tick, TradeType


class TrailingStopEngine:
    """Propose stop-loss updates for open positions."""

    def __init__(self, trigger_pips: float, trailing_pips: float, pip_size: float, digits: int = 5) -> None:
        self.trigger_pips = trigger_pips
        self.trailing_pips = trailing_pips
        self.pip_size = pip_size
        self.digits = digits

    def _pips(self, price_diff: float) -> float:
        return round(price_diff / self.pip_size, 6)

    def _price(self, value: float) -> float:
        return round(value, self.digits)

    def candidate_stop(self, position: Position, tick: Tick) -> Optional[float]:
        """Return the improved stop for `position`, or ``None`` to leave it."""
        if position.direction is TradeType.SELL:
            if self._pips(position.entry_price - tick.ask) < self.trigger_pips:
                return None
            candidate = self._price(tick.ask + self.trailing_pips * self.pip_size)
            if position.stop_loss is None or candidate < position.stop_loss:
                return candidate
            return None

        if self._pips(tick.bid - position.entry_price) < self.trigger_pips:
            return None
        candidate = self._price(tick.bid - self.trailing_pips * self.pip_size)
        if position.stop_loss is None or candidate > position.stop_loss:
            return candidate
        return None

    def adjustments(self, positions: Iterable[Position], tick: Tick) -> List[Tuple[Position, float]]:
        """Pairs of (position, new stop) for every position whose stop improves."""
        out: List[Tuple[Position, float]] = []
        for position in positions:
            stop = self.candidate_stop(position, tick)
            if stop is not None:
                out.append((position, stop))
        return out

    def protective_levels(self, position: Position, pips: float) -> Tuple[float, float]:
        """Absolute stop-loss and take-profit `pips` away from the entry price."""
        offset = pips * self.pip_size
        if position.direction is TradeType.BUY:
            return self._price(position.entry_price - offset), self._price(position.entry_price + offset)
        return self._price(position.entry_price + offset), self._price(position.entry_price - offset)
