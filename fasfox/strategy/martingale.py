"""
Martingale re-entry policy.

Every time one of the strategy's positions closes a new order is
prepared:

- after a win (positive gross profit) the volume resets to the initial
  volume and the direction is drawn at random;
- after a loss or a flat close the same direction is re-entered with the
  closed volume times `loss_volume_multiplier`.

With the default multiplier of 1 a losing position is re-entered at the
same size.  Setting it to 2 gives the classic doubling martingale.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from ..execution.models import Position, TradeType


@dataclass(frozen=True)
class OrderRequest:
    direction: TradeType
    volume: int
    reason: str


class MartingaleController:
    """Decide the follow-up order of a closed position."""

    def __init__(
        self,
        initial_volume: int,
        loss_volume_multiplier: int = 1,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.initial_volume = initial_volume
        self.loss_volume_multiplier = loss_volume_multiplier
        self.rng = rng if rng is not None else random.Random()

    def random_direction(self) -> TradeType:
        return TradeType.BUY if self.rng.randrange(2) == 0 else TradeType.SELL

    def next_order(self, closed: Position, gross_profit: float) -> OrderRequest:
        """Return the order to submit after `closed` was closed with `gross_profit`."""
        if gross_profit > 0:
            return OrderRequest(self.random_direction(), self.initial_volume, "win")
        return OrderRequest(
            closed.direction,
            int(closed.volume) * self.loss_volume_multiplier,
            "loss",
        )
