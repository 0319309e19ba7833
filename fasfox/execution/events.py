"""
Market and position events and the dispatcher that serialises them.

Venue adapters never call the strategy directly.  They `publish()`
events, and the dispatcher hands them to the registered handlers one at
a time, in arrival order.  Events published while a handler is running
are queued behind it, so outcomes of an order are always processed as a
separate, later event.  A handler that raises is logged and skipped; the
remaining events are still delivered.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Type
import pandas as pd

from .models import Position, Tick


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickEvent:
    tick: Tick


@dataclass(frozen=True)
class BarCloseEvent:
    """A bar has closed.  `series` holds the source prices up to and
    including that bar."""
    timestamp: pd.Timestamp
    series: pd.Series


@dataclass(frozen=True)
class PositionOpenedEvent:
    position: Position


@dataclass(frozen=True)
class PositionUpdatedEvent:
    """The venue refreshed a position (profit, protective levels)."""
    position: Position


@dataclass(frozen=True)
class PositionClosedEvent:
    position: Position
    gross_profit: float


class EventDispatcher:
    """FIFO event queue with a type -> handler dispatch table."""

    def __init__(self) -> None:
        self._queue: Deque[Any] = deque()
        self._handlers: Dict[Type[Any], Callable[[Any], None]] = {}
        self._running = False

    def register(self, event_type: Type[Any], handler: Callable[[Any], None]) -> None:
        self._handlers[event_type] = handler

    def publish(self, event: Any) -> None:
        self._queue.append(event)

    def __len__(self) -> int:
        return len(self._queue)

    def run_pending(self) -> int:
        """Deliver queued events until the queue is empty.

        Returns the number of events processed.  Re-entrant calls (a
        handler publishing and then asking to drain) return immediately;
        the outer loop picks the new events up.
        """
        if self._running:
            return 0
        self._running = True
        processed = 0
        try:
            while self._queue:
                event = self._queue.popleft()
                handler = self._handlers.get(type(event))
                processed += 1
                if handler is None:
                    logger.debug("No handler for %s", type(event).__name__)
                    continue
                try:
                    handler(event)
                except Exception:
                    logger.exception("Handler for %s failed", type(event).__name__)
        finally:
            self._running = False
        return processed


def bind_controller(dispatcher: EventDispatcher, controller: Any) -> EventDispatcher:
    """Wire the four venue callbacks (plus updates) to a strategy controller."""
    dispatcher.register(TickEvent, lambda e: controller.handle_tick(e.tick))
    dispatcher.register(BarCloseEvent, lambda e: controller.handle_bar_close(e.timestamp, e.series))
    dispatcher.register(PositionOpenedEvent, lambda e: controller.handle_position_opened(e.position))
    dispatcher.register(PositionUpdatedEvent, lambda e: controller.handle_position_updated(e.position))
    dispatcher.register(
        PositionClosedEvent,
        lambda e: controller.handle_position_closed(e.position, e.gross_profit),
    )
    return dispatcher
