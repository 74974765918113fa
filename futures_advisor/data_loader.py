"""
CSV candle loading for offline scans
"""
import logging
import pandas as pd
from pathlib import Path
from typing import List

from .models import Candle

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {'timestamp', 'open', 'high', 'low', 'close'}

TIMEFRAME_MS = {
    '1m': 60_000,
    '5m': 300_000,
    '15m': 900_000,
    '1h': 3_600_000,
    '4h': 14_400_000,
    '1d': 86_400_000,
}


def load_candles_csv(path: str) -> pd.DataFrame:
    """
    Load an OHLCV CSV file and validate it.

    Args:
        path: Path to CSV file with timestamp, open, high, low, close and
            optional volume columns. Timestamps may be epoch milliseconds or
            any format pandas can parse.

    Returns:
        DataFrame sorted by timestamp with invalid rows removed.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If required columns are missing or nothing valid remains.
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    df = pd.read_csv(path)
    df.columns = [c.lower() for c in df.columns]

    missing_columns = REQUIRED_COLUMNS - set(df.columns)
    if missing_columns:
        raise ValueError(f"CSV must contain columns: {sorted(REQUIRED_COLUMNS)}. Missing: {sorted(missing_columns)}")

    if 'volume' not in df.columns:
        df['volume'] = 0.0

    if pd.api.types.is_numeric_dtype(df['timestamp']):
        df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    else:
        df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True, errors='coerce')

    df = df.dropna(subset=['timestamp'])
    df = df.drop_duplicates(subset=['timestamp'], keep='last')
    df = df.sort_values('timestamp').reset_index(drop=True)

    invalid_ohlc = (
        (df['high'] < df['low']) |
        (df['high'] < df[['open', 'close']].max(axis=1)) |
        (df['low'] > df[['open', 'close']].min(axis=1)) |
        (df[['open', 'high', 'low', 'close']] <= 0).any(axis=1)
    )
    if invalid_ohlc.any():
        logger.warning(f"{path}: dropping {int(invalid_ohlc.sum())} rows with invalid OHLC data")
        df = df[~invalid_ohlc].reset_index(drop=True)

    if df.empty:
        raise ValueError(f"{path}: no valid candles after cleaning")
    return df


def dataframe_to_candles(df: pd.DataFrame, timeframe_ms: int = None) -> List[Candle]:
    """Convert a loaded OHLCV frame to Candle records"""
    epoch = pd.Timestamp(0, tz='UTC')
    open_times = ((df['timestamp'] - epoch) // pd.Timedelta(milliseconds=1)).tolist()
    if timeframe_ms is None:
        # Infer the bar length from the data when it is not given
        diffs = pd.Series(open_times).diff().dropna()
        timeframe_ms = int(diffs.median()) if not diffs.empty else 60_000

    candles = []
    for open_time, row in zip(open_times, df.itertuples(index=False)):
        candles.append(Candle(
            open_time=int(open_time),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            close_time=int(open_time) + timeframe_ms - 1
        ))
    return candles
