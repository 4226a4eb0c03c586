"""
Observation helpers.

Converts OHLCV DataFrames (capitalized yfinance/Alpaca style or lowercase
columns) into MarketObservation lists, and merges, sorts and filters
observation sets for the replay engine.

Usage:
    spy = observations_from_ohlcv(spy_df, 'SPY')
    qqq = observations_from_ohlcv(qqq_df, 'QQQ')
    observations = prepare_observations(spy + qqq, config.start_date, config.end_date)
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from backtest.models import MarketObservation

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('open', 'high', 'low', 'close')


def observations_from_ohlcv(df: pd.DataFrame, symbol: str) -> List[MarketObservation]:
    """
    Convert an OHLCV DataFrame into observations.

    The timestamp comes from a DatetimeIndex, or from a 'timestamp'/'date'
    column when the index is not datetime-like. Rows with a missing close are
    dropped. Volume defaults to 0 when absent.

    Args:
        df: OHLCV data for one symbol
        symbol: Symbol to stamp on every observation

    Returns:
        Observations sorted ascending by timestamp

    Raises:
        ValueError: If a required price column is missing
    """
    if df is None or df.empty:
        return []

    frame = df.rename(columns={c: str(c).lower() for c in df.columns})

    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"OHLCV data for {symbol} missing columns: {missing}")

    if not isinstance(frame.index, pd.DatetimeIndex):
        for column in ('timestamp', 'date'):
            if column in frame.columns:
                frame = frame.set_index(pd.DatetimeIndex(pd.to_datetime(frame[column])))
                break
        else:
            raise ValueError(f"OHLCV data for {symbol} has no datetime index or timestamp column")

    before = len(frame)
    frame = frame.dropna(subset=['close']).sort_index()
    if len(frame) < before:
        logger.warning(f"{symbol}: dropped {before - len(frame)} rows with missing close")

    volume = frame['volume'] if 'volume' in frame.columns else pd.Series(0.0, index=frame.index)

    return [
        MarketObservation(
            symbol=symbol,
            timestamp=ts.to_pydatetime(),
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(c),
            volume=float(v) if pd.notna(v) else 0.0,
        )
        for ts, o, h, l, c, v in zip(
            frame.index, frame['open'], frame['high'], frame['low'], frame['close'], volume
        )
    ]


def merge_observations(*groups: Iterable[MarketObservation]) -> List[MarketObservation]:
    """Merge observation groups into one list sorted by timestamp (stable)."""
    merged = [o for group in groups for o in group]
    merged.sort(key=lambda o: o.timestamp)
    return merged


def prepare_observations(
    observations: Sequence[MarketObservation],
    start: datetime,
    end: datetime,
    instruments: Optional[Sequence[str]] = None
) -> List[MarketObservation]:
    """
    Sort and restrict observations to [start, end] and the configured symbols.

    Args:
        observations: Observations in any order
        start: First timestamp included
        end: Last timestamp included
        instruments: Symbols to keep (empty or None keeps all)

    Returns:
        Filtered observations sorted ascending by timestamp
    """
    allowed = set(instruments) if instruments else None
    selected = [
        o for o in observations
        if start <= o.timestamp <= end and (allowed is None or o.symbol in allowed)
    ]
    selected.sort(key=lambda o: o.timestamp)

    dropped = len(observations) - len(selected)
    if dropped:
        logger.debug(f"Filtered out {dropped} observations outside range or instruments")

    return selected
