"""
Interfaces between the strategy and an execution venue.

The strategy never talks to a broker directly.  It calls an
`ExecutionGateway` for the three order operations it needs and reads the
balance from an `AccountState`.  Every gateway call returns an
`OrderResult`; implementations translate venue errors into an
`ErrorKind` instead of raising.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .models import OrderResult, Position, TradeType


class ExecutionGateway(ABC):
    """Order entry side of a venue."""

    @abstractmethod
    def open_market_order(
        self,
        direction: TradeType,
        symbol: str,
        volume: int,
        label: str,
        stop_loss_pips: Optional[float],
        take_profit_pips: Optional[float],
    ) -> OrderResult:
        """Submit a market order with protective distances attached."""

    @abstractmethod
    def modify_position(
        self,
        position_id: int,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> OrderResult:
        """Replace the absolute stop-loss / take-profit prices of a position."""

    @abstractmethod
    def close_position(self, position_id: int) -> OrderResult:
        """Close a position at market."""


class AccountState(ABC):
    """Read-only view of the trading account."""

    @property
    @abstractmethod
    def balance(self) -> float:
        """Current account balance."""

    def open_positions(self) -> Sequence[Position]:
        """Every open position on the account, whatever its label."""
        return ()
