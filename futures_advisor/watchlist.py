"""
File-backed watchlist of futures symbols
"""
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .models import Watchlist
from .storage import read_json_file, write_json_file

logger = logging.getLogger(__name__)

DEFAULT_WATCHLIST = (
    "BTCUSDC", "XRPUSDC", "SOLUSDC", "ZECUSDC", "ETHUSDC",
    "BNBUSDC", "BCHUSDC", "SUIUSDC", "TONUSDC", "DOGEUSDC",
)
MAX_SYMBOLS = 50

_SYMBOL_RE = re.compile(r'^[A-Z0-9]{5,20}$')


class WatchlistError(ValueError):
    """Watchlist update rejected"""


def normalize_symbol(raw: str) -> Optional[str]:
    symbol = (raw or '').strip().upper()
    if not symbol or not _SYMBOL_RE.match(symbol):
        return None
    return symbol


def normalize_symbols(raw_symbols: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Valid unique symbols in order, plus a warning per rejected entry"""
    symbols: List[str] = []
    warnings: List[str] = []
    for raw in raw_symbols:
        symbol = normalize_symbol(raw)
        if symbol is None:
            warnings.append(f"Invalid symbol rejected: {raw!r}")
        elif symbol in symbols:
            warnings.append(f"Duplicate symbol ignored: {symbol}")
        else:
            symbols.append(symbol)
    return symbols, warnings


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WatchlistStore:
    """Reads and writes watchlist.json in the data directory"""

    def __init__(self, data_dir: Path, default_symbols: Optional[Iterable[str]] = None):
        self.path = Path(data_dir) / 'watchlist.json'
        self.default_symbols = tuple(default_symbols) if default_symbols else None
        self.last_warnings: List[str] = []

    def _seed_symbols(self) -> List[str]:
        if self.default_symbols:
            return list(self.default_symbols)
        raw = os.getenv('WATCHLIST_SYMBOLS', '').strip()
        if raw:
            symbols, warnings = normalize_symbols(raw.split(','))
            for warning in warnings:
                logger.warning(f"WATCHLIST_SYMBOLS: {warning}")
            if symbols:
                return symbols
        return list(DEFAULT_WATCHLIST)

    def get(self) -> Watchlist:
        data = read_json_file(self.path)
        if isinstance(data, dict) and data.get('symbols'):
            return Watchlist.from_dict(data)

        watchlist = Watchlist(symbols=tuple(self._seed_symbols()), updated_at=_now_iso())
        write_json_file(self.path, watchlist.to_dict())
        logger.info(f"Seeded watchlist with {len(watchlist.symbols)} symbols")
        return watchlist

    def get_symbols(self) -> List[str]:
        return list(self.get().symbols)

    def set(self, raw_symbols: Iterable[str]) -> Watchlist:
        symbols, warnings = normalize_symbols(raw_symbols)
        if not symbols:
            raise WatchlistError("Watchlist must contain at least one valid symbol. " + "; ".join(warnings))
        if len(symbols) > MAX_SYMBOLS:
            raise WatchlistError(f"Watchlist is too large (max {MAX_SYMBOLS} symbols).")

        self.last_warnings = warnings
        for warning in warnings:
            logger.warning(warning)

        watchlist = Watchlist(symbols=tuple(symbols), updated_at=_now_iso())
        write_json_file(self.path, watchlist.to_dict())
        logger.info(f"Watchlist updated: {', '.join(symbols)}")
        return watchlist
