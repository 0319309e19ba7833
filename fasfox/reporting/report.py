"""
Report generation utilities.

This module turns session results into human-readable artefacts:
CSV files of trades and balance curve, a JSON summary of performance
metrics and a PNG chart of the balance curve.
"""

from __future__ import annotations

import os
import json
from typing import List
import pandas as pd
import matplotlib

# Use non-interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..execution.models import ClosedTrade, EquityPoint
from .metrics import compute_metrics


def _iso(ts) -> str:
    return ts.isoformat() if ts is not None else ""


def generate_backtest_report(
    trades: List[ClosedTrade],
    equity_curve: List[EquityPoint],
    out_dir: str = "results",
) -> dict:
    """Generate report files for a session and return the metrics.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv` – detailed list of closed trades
    - `equity_curve.csv` – account balance after each trade
    - `summary.json` – performance metrics
    - `equity_curve.png` – line chart of the balance curve
    """
    os.makedirs(out_dir, exist_ok=True)

    columns = ['position_id', 'timestamp_entry', 'timestamp_exit', 'symbol', 'direction',
               'volume', 'entry', 'exit', 'gross_profit', 'reason']
    df_trades = pd.DataFrame(
        [
            {
                'position_id': t.position_id,
                'timestamp_entry': _iso(t.entry_time),
                'timestamp_exit': _iso(t.exit_time),
                'symbol': t.symbol,
                'direction': t.direction.value,
                'volume': t.volume,
                'entry': t.entry_price,
                'exit': t.exit_price,
                'gross_profit': t.gross_profit,
                'reason': t.reason,
            }
            for t in trades
        ],
        columns=columns,
    )
    df_trades.to_csv(os.path.join(out_dir, 'trades.csv'), index=False)

    df_eq = pd.DataFrame(
        [{'timestamp': _iso(pt.timestamp), 'equity': pt.equity} for pt in equity_curve],
        columns=['timestamp', 'equity'],
    )
    df_eq.to_csv(os.path.join(out_dir, 'equity_curve.csv'), index=False)

    metrics = compute_metrics(trades, equity_curve)
    with open(os.path.join(out_dir, 'summary.json'), 'w', encoding='utf-8') as fh:
        json.dump(metrics, fh, indent=2, ensure_ascii=False)

    fig, ax = plt.subplots(figsize=(10, 4))
    if not df_eq.empty:
        ax.step(range(len(df_eq)), df_eq['equity'], where='post', linewidth=1.5)
        ax.set_title('Balance after each closed trade')
        ax.set_xlabel('Trade #')
        ax.set_ylabel('Balance')
    fig.tight_layout()
    fig.savefig(os.path.join(out_dir, 'equity_curve.png'))
    plt.close(fig)
    return metrics
