"""
In-memory ledger of the strategy's open positions.

The ledger is the only mutable state shared by the strategy
components.  It is accessed from a single event-processing thread, so
none of its operations lock or block.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from .models import Position, TradeType


class PositionLedger:
    """Open positions keyed by venue id."""

    def __init__(self) -> None:
        self._positions: Dict[int, Position] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._positions

    def get(self, position_id: int) -> Optional[Position]:
        return self._positions.get(position_id)

    def upsert(self, position: Position) -> None:
        """Insert or replace the position stored under its id."""
        self._positions[position.id] = position

    def remove(self, position_id: int) -> None:
        """Drop a position.  Unknown ids are ignored."""
        self._positions.pop(position_id, None)

    def all(self) -> List[Position]:
        return list(self._positions.values())

    def find_by_label(self, label: str) -> List[Position]:
        return [p for p in self._positions.values() if p.label == label]

    def find_by_label_direction(self, label: str, direction: TradeType) -> List[Position]:
        return [
            p for p in self._positions.values()
            if p.label == label and p.direction is direction
        ]
