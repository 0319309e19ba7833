"""
Order, position and trade models.

These dataclasses represent the objects passed between the strategy
components and the execution venue.  Keeping them in a separate module
improves readability and makes unit testing easier.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import pandas as pd


class TradeType(str, Enum):
    """Direction of a position."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "TradeType":
        return TradeType.SELL if self is TradeType.BUY else TradeType.BUY


class Signal(Enum):
    """Entry decision produced on a bar close."""
    ENTER_BUY = "enter_buy"
    ENTER_SELL = "enter_sell"
    NONE = "none"


class ErrorKind(Enum):
    """Failure categories reported by an execution gateway."""
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REJECTED = "rejected"
    UNKNOWN_POSITION = "unknown_position"
    TECHNICAL = "technical"


@dataclass(frozen=True)
class Position:
    """Represents one open position as reported by the venue.

    Direction, entry price and volume are fixed at open.  Protective
    levels are ``None`` until set and only change through a new copy
    (see `dataclasses.replace`).  `gross_profit` is owned by the venue.
    """
    id: int
    symbol: str
    direction: TradeType
    entry_price: float
    volume: int
    label: str
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    gross_profit: float = 0.0


@dataclass(frozen=True)
class Tick:
    """Best bid/ask quote."""
    bid: float
    ask: float
    timestamp: Optional[pd.Timestamp] = None


@dataclass(frozen=True)
class OrderResult:
    """Typed outcome of a gateway request."""
    success: bool
    position_id: Optional[int] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def ok(cls, position_id: Optional[int] = None) -> "OrderResult":
        return cls(success=True, position_id=position_id)

    @classmethod
    def fail(cls, error: ErrorKind, message: str = "") -> "OrderResult":
        return cls(success=False, error=error, message=message)


@dataclass
class ClosedTrade:
    """Represents a completed trade."""
    position_id: int
    symbol: str
    direction: TradeType
    volume: int
    entry_price: float
    exit_price: float
    entry_time: Optional[pd.Timestamp]
    exit_time: Optional[pd.Timestamp]
    gross_profit: float
    reason: str  # 'sl', 'tp' or 'close'


@dataclass
class EquityPoint:
    """Represents the account balance at a given timestamp."""
    timestamp: Optional[pd.Timestamp]
    equity: float
