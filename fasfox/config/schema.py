"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields.

The strategy parameters mirror the inputs of the original robot: a
fixed signal volume, an initial (reset) martingale volume, stop-loss
and take-profit distances in pips, the trailing stop trigger and
distance, and the account level risk limits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Dict, Any
import yaml


MA_TYPES = ("simple", "exponential", "weighted")
SOURCES = ("close", "open", "high", "low", "median", "typical")


@dataclass
class StrategyConfig:
    """Parameters of the martingale / crossover strategy.

    Attributes
    ----------
    label : str
        Tag attached to every order so that this strategy's positions can
        be told apart from manual trades and other robots on the account.
    initial_volume : int
        Volume (in units) used after a winning close and for the start-up
        random entry.
    volume : int
        Volume (in units) used for crossover entries and start-up hedges.
    stop_loss_pips, take_profit_pips : int
        Protective distances attached to every market order.
    trigger_pips : int
        Favourable move required before the trailing stop engages.
    trailing_stop_pips : int
        Distance kept between the market and the trailed stop.
    max_positions : int
        New crossover entries are suppressed while more than this many
        labelled positions are open.
    min_balance : float
        All labelled positions are closed when the balance drops below it.
    min_loss : float
        A labelled position whose gross profit is below this (negative)
        amount is closed.
    fast_periods, slow_periods : int
        Moving average periods.
    ma_type : str
        One of ``simple``, ``exponential`` or ``weighted``.
    source : str
        Price column the averages are computed on.
    loss_volume_multiplier : int
        Factor applied to the closed volume on a losing re-entry.  The
        robot this strategy reproduces re-enters at the same volume, so
        the default is ``1``.
    open_on_start : bool
        Submit one random-direction order of ``initial_volume`` on start.
    hedge_on_start : bool
        On start, open one opposite order of ``volume`` against the first
        position already present on the account.
    protection_pips : int or None
        When set, labelled positions without a stop-loss get a stop and
        target at this distance from entry on the next tick.
    seed : int or None
        Seed for the direction chooser; ``None`` means non-deterministic.
    """

    label: str = "FasFox"
    initial_volume: int = 10000
    volume: int = 100000
    stop_loss_pips: int = 40
    take_profit_pips: int = 40
    trigger_pips: int = 10
    trailing_stop_pips: int = 10
    max_positions: int = 3
    min_balance: float = 5000.0
    min_loss: float = -200.0
    fast_periods: int = 5
    slow_periods: int = 10
    ma_type: str = "simple"
    source: str = "close"
    loss_volume_multiplier: int = 1
    open_on_start: bool = False
    hedge_on_start: bool = False
    protection_pips: Optional[int] = None
    seed: Optional[int] = None


@dataclass
class SymbolConfig:
    """Describes the traded instrument.

    Attributes
    ----------
    name : str
        Instrument symbol (e.g. ``EURUSD``).
    pip_size : float
        Price increment of one pip.  ``0.0001`` for most FX majors.
    digits : int
        Number of decimals prices are quoted with.
    lot_size : int
        Units per standard lot.  Used to convert volumes for MetaTrader 5,
        which expects lots instead of units.
    """

    name: str = "EURUSD"
    pip_size: float = 0.0001
    digits: int = 5
    lot_size: int = 100000


@dataclass
class CostsConfig:
    """Models trading costs of the simulated venue.

    Attributes
    ----------
    spread : float
        Spread in price units.  For EURUSD a spread of `0.0002` equals 2 pips.
    commission_per_lot : float
        Commission charged per standard lot traded.
    leverage : float
        Account leverage used for the simulated free-margin check.
    """

    spread: float = 0.0
    commission_per_lot: float = 0.0
    leverage: float = 100.0


@dataclass
class MT5Config:
    """Holds parameters required to connect to a MetaTrader 5 terminal.

    Attributes
    ----------
    login : int
        Account login number.  Use `0` when running offline backtests.
    password : str
        Password for the account.
    server : str
        Broker server name.
    path : str
        File system path to the MetaTrader 5 terminal executable.
    magic : int
        Expert identifier stamped on every request.
    deviation : int
        Maximum accepted slippage, in points.
    poll_seconds : float
        Interval between two polls of ticks, bars and positions.
    """

    login: int = 0
    password: str = ""
    server: str = ""
    path: str = ""
    magic: int = 270415
    deviation: int = 10
    poll_seconds: float = 1.0


@dataclass
class DataConfig:
    """Data source configuration.

    Attributes
    ----------
    csv_dir : str
        Directory containing `{SYMBOL}.csv` files for backtests.
    timezone : str
        IANA timezone name used for interpreting timestamps.
    """

    csv_dir: str = "data"
    timezone: str = "UTC"


@dataclass
class Config:
    """Root configuration for the trading program."""

    symbol: SymbolConfig = field(default_factory=SymbolConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    costs: CostsConfig = field(default_factory=CostsConfig)
    mt5: MT5Config = field(default_factory=MT5Config)
    data: DataConfig = field(default_factory=DataConfig)
    timeframe: str = "H1"
    mode: str = "backtest"
    initial_balance: float = 10000.0
    state_file: str = "state.json"


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def validate_config(cfg: Config) -> Config:
    """Check cross-field constraints and return the config unchanged.

    Raises
    ------
    ValueError
        If a parameter is outside its accepted range.
    """
    s = cfg.strategy
    if s.fast_periods <= 0 or s.slow_periods <= 0:
        raise ValueError("Moving average periods must be positive")
    if s.fast_periods >= s.slow_periods:
        raise ValueError(
            f"fast_periods ({s.fast_periods}) must be smaller than slow_periods ({s.slow_periods})"
        )
    if s.initial_volume <= 0 or s.volume <= 0:
        raise ValueError("Volumes must be positive")
    if s.loss_volume_multiplier <= 0:
        raise ValueError("loss_volume_multiplier must be positive")
    if s.trigger_pips < 0 or s.trailing_stop_pips < 0:
        raise ValueError("Trailing stop distances cannot be negative")
    if s.ma_type not in MA_TYPES:
        raise ValueError(f"Unknown ma_type {s.ma_type!r}; expected one of {MA_TYPES}")
    if s.source not in SOURCES:
        raise ValueError(f"Unknown source {s.source!r}; expected one of {SOURCES}")
    if cfg.symbol.pip_size <= 0:
        raise ValueError("pip_size must be positive")
    return cfg


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        the defaults defined in the dataclasses.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}

    defaults: Dict[str, Any] = {
        'symbol': vars(SymbolConfig()),
        'strategy': vars(StrategyConfig()),
        'costs': vars(CostsConfig()),
        'mt5': vars(MT5Config()),
        'data': vars(DataConfig()),
        'timeframe': "H1",
        'mode': "backtest",
        'initial_balance': 10000.0,
        'state_file': "state.json",
    }

    merged = _merge_dict(defaults, raw)

    cfg = Config(
        symbol=SymbolConfig(**merged['symbol']),
        strategy=StrategyConfig(**merged['strategy']),
        costs=CostsConfig(**merged['costs']),
        mt5=MT5Config(**merged['mt5']),
        data=DataConfig(**merged['data']),
        timeframe=str(merged.get('timeframe', 'H1')),
        mode=str(merged.get('mode', 'backtest')).lower(),
        initial_balance=float(merged.get('initial_balance', 10000.0)),
        state_file=str(merged.get('state_file', 'state.json')),
    )
    cfg.strategy.ma_type = cfg.strategy.ma_type.lower()
    return validate_config(cfg)
