"""
Performance metrics calculations.

Summary statistics of a session computed from the closed trades and
the balance curve.  Besides the usual return / drawdown / win-rate
figures, the longest losing streak and the largest volume traded show
how far the martingale re-entries went.
"""

from __future__ import annotations

from typing import List

from ..execution.models import ClosedTrade, EquityPoint


def longest_losing_streak(trades: List[ClosedTrade]) -> int:
    """Number of consecutive non-winning trades in the worst run."""
    longest = current = 0
    for trade in trades:
        if trade.gross_profit > 0:
            current = 0
        else:
            current += 1
            longest = max(longest, current)
    return longest


def compute_metrics(trades: List[ClosedTrade], equity_curve: List[EquityPoint]) -> dict:
    """Compute a set of summary statistics for the session.

    Parameters
    ----------
    trades : list of ClosedTrade
        Closed positions with their gross profit.
    equity_curve : list of EquityPoint
        Balance after each closed position; the first point is the
        starting balance.

    Returns
    -------
    dict
        Dictionary of performance metrics.
    """
    if not equity_curve:
        return {
            'total_return': 0.0,
            'max_drawdown': 0.0,
            'win_rate': 0.0,
            'profit_factor': 0.0,
            'avg_trade': 0.0,
            'num_trades': 0,
            'longest_losing_streak': 0,
            'max_volume': 0,
        }

    starting_equity = equity_curve[0].equity
    ending_equity = equity_curve[-1].equity
    total_return = (ending_equity - starting_equity) / starting_equity if starting_equity else 0.0

    max_equity = starting_equity
    max_drawdown = 0.0
    for point in equity_curve:
        if point.equity > max_equity:
            max_equity = point.equity
        drawdown = (max_equity - point.equity) / max_equity if max_equity else 0.0
        if drawdown > max_drawdown:
            max_drawdown = drawdown

    wins = [t.gross_profit for t in trades if t.gross_profit > 0]
    losses = [t.gross_profit for t in trades if t.gross_profit < 0]
    win_rate = len(wins) / len(trades) if trades else 0.0
    gross_loss = -sum(losses)
    profit_factor = sum(wins) / gross_loss if gross_loss > 0 else 0.0
    avg_trade = sum(t.gross_profit for t in trades) / len(trades) if trades else 0.0

    return {
        'total_return': total_return,
        'max_drawdown': max_drawdown,
        'win_rate': win_rate,
        'profit_factor': profit_factor,
        'avg_trade': avg_trade,
        'num_trades': len(trades),
        'longest_losing_streak': longest_losing_streak(trades),
        'max_volume': max((t.volume for t in trades), default=0),
    }
