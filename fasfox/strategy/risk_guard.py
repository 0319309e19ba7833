"""
Account and position level risk rules evaluated on every bar close.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

from ..execution.models import Position


class RiskGuard:
    """Entry gate and forced-closure rules.

    Parameters
    ----------
    max_positions : int
        A new entry is suppressed while strictly more labelled positions
        than this are open.
    min_balance : float
        Below this balance every labelled position is closed.
    min_loss : float
        A position whose gross profit is below this (negative) amount is
        closed on its own.
    """

    def __init__(self, max_positions: int, min_balance: float, min_loss: float) -> None:
        self.max_positions = max_positions
        self.min_balance = min_balance
        self.min_loss = min_loss

    def entry_allowed(self, open_count: int) -> bool:
        return open_count <= self.max_positions

    def positions_to_close(self, balance: float, positions: Iterable[Position]) -> List[Tuple[Position, str]]:
        """Positions to close with the rule that selected them.

        The balance rule is applied first; a position picked by both
        rules is listed once.
        """
        positions = list(positions)
        selected: List[Tuple[Position, str]] = []
        seen = set()
        if balance < self.min_balance:
            for position in positions:
                selected.append((position, "min_balance"))
                seen.add(position.id)
        for position in positions:
            if position.id not in seen and position.gross_profit < self.min_loss:
                selected.append((position, "min_loss"))
                seen.add(position.id)
        return selected
