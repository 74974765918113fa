"""
Watchlist setup scan and its periodic scheduler
"""
import asyncio
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..config.models import AppConfig
from ..indicators import compute_indicators
from ..models import ScanResult, SetupCandidate, SymbolError
from ..narrative import NarrativeSummarizer, run_summarizers
from ..position_sizing import calculate_position_sizing
from ..setup_detector import DetectorInput, classify_trend, run_detectors
from ..storage import read_json_file, write_json_file
from ..watchlist import WatchlistStore
from .batch import map_with_concurrency
from .exchange_gateway import ExchangeGateway

logger = logging.getLogger(__name__)

TREND_MIN_CANDLES = 260
FIRST_RUN_DELAY = 1.5


class ScanAlreadyRunningError(RuntimeError):
    """A scan was requested while another is in flight"""

    def __init__(self):
        super().__init__("Scanner is already running.")


@dataclass(frozen=True)
class ScannerStatus:
    running: bool
    last_run_at: Optional[str]
    next_run_at: Optional[str]

    def to_dict(self):
        return {'running': self.running, 'lastRunAt': self.last_run_at, 'nextRunAt': self.next_run_at}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _error_message(e: BaseException) -> str:
    return str(e) or type(e).__name__


def is_valid_setup(setup: SetupCandidate) -> bool:
    return all(
        isinstance(v, (int, float)) and math.isfinite(v)
        for v in (setup.score, setup.entry, setup.stop_loss, setup.take_profit)
    )


async def scan_symbol(gateway: ExchangeGateway, symbol: str, config: AppConfig,
                      created_at: str) -> Tuple[List[SetupCandidate], List[SymbolError]]:
    """Trend fetch plus one detector pass per timeframe for a single symbol"""
    scanner = config.scanner
    errors: List[SymbolError] = []

    try:
        trend_candles = await gateway.fetch_candles(
            symbol, scanner.trend_timeframe, max(scanner.kline_limit, TREND_MIN_CANDLES)
        )
    except Exception as e:
        logger.warning(f"{symbol}: {scanner.trend_timeframe} trend fetch failed: {e}")
        return [], [SymbolError(symbol, f"{scanner.trend_timeframe} trend fetch failed: {_error_message(e)}")]
    trend = classify_trend(trend_candles)

    setups: List[SetupCandidate] = []
    for timeframe in scanner.timeframes:
        try:
            candles = await gateway.fetch_candles(symbol, timeframe, scanner.kline_limit)
            detected = run_detectors(DetectorInput(
                symbol=symbol,
                timeframe=timeframe,
                trend4h=trend,
                candles=candles,
                indicators=compute_indicators(candles),
                created_at=created_at,
                max_leverage=config.risk.max_leverage,
                target_roi_pct=config.risk.target_roi_pct
            ))
        except Exception as e:
            logger.warning(f"{symbol}: {timeframe} klines failed: {e}")
            errors.append(SymbolError(symbol, f"{timeframe} klines failed: {_error_message(e)}"))
            continue
        logger.debug(f"{symbol} {timeframe}: trend {trend.value}, {len(detected)} setups")
        setups.extend(detected)

    return setups, errors


async def run_setup_scan(gateway: ExchangeGateway, symbols: Sequence[str], config: AppConfig,
                         created_at: Optional[str] = None) -> Tuple[List[SetupCandidate], List[SymbolError]]:
    """
    Scan symbols with bounded concurrency.

    Returns setups sorted by score (highest first, stable on ties) and the
    per-symbol errors. A failing symbol or timeframe never aborts the scan.
    """
    created_at = created_at or _utc_now().isoformat()

    outcomes = await map_with_concurrency(
        list(symbols),
        lambda symbol: scan_symbol(gateway, symbol, config, created_at),
        concurrency=config.scanner.concurrency
    )

    setups: List[SetupCandidate] = []
    errors: List[SymbolError] = []
    for outcome in outcomes:
        if outcome.ok:
            found, symbol_errors = outcome.value
            setups.extend(found)
            errors.extend(symbol_errors)
        else:
            errors.append(SymbolError(outcome.item, _error_message(outcome.error)))

    valid = [s for s in setups if is_valid_setup(s)]
    if len(valid) != len(setups):
        logger.debug(f"Dropped {len(setups) - len(valid)} setups with non-finite values")
    valid.sort(key=lambda s: s.score, reverse=True)
    return valid, errors


def attach_sizing(setups: Sequence[SetupCandidate], equity: Optional[float], config: AppConfig) -> List[SetupCandidate]:
    if equity is None or equity <= 0:
        return list(setups)

    sized = []
    for setup in setups:
        sizing = calculate_position_sizing(
            wallet_equity=equity,
            risk_per_trade_pct=config.risk.risk_per_trade_pct,
            entry=setup.entry,
            stop_loss=setup.stop_loss,
            take_profit=setup.take_profit,
            direction=setup.direction,
            max_leverage=config.risk.max_leverage
        )
        sized.append(setup if sizing is None else replace(setup, sizing=sizing))
    return sized


class ScannerService:
    """Owns the scan schedule and the latest snapshot"""

    def __init__(self, config: AppConfig, gateway: ExchangeGateway, watchlist: WatchlistStore,
                 data_dir: Path, summarizers: Optional[Sequence[NarrativeSummarizer]] = None):
        self.config = config
        self.gateway = gateway
        self.watchlist = watchlist
        self.summarizers = list(summarizers or [])
        self.latest_path = Path(data_dir) / 'scanner-latest.json'

        self._running = False
        self._last_run_at: Optional[str] = None
        self._next_run_at: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._latest: Optional[ScanResult] = self._load_latest()

    def _load_latest(self) -> Optional[ScanResult]:
        data = read_json_file(self.latest_path)
        if not data:
            return None
        try:
            latest = ScanResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable scan snapshot {self.latest_path}: {e}")
            return None
        self._last_run_at = latest.run_at
        return latest

    def get_status(self) -> ScannerStatus:
        return ScannerStatus(self._running, self._last_run_at, self._next_run_at)

    def get_latest(self) -> Optional[ScanResult]:
        return self._latest

    async def _account_equity(self) -> Optional[float]:
        if not self.gateway.has_account:
            return None
        try:
            return await self.gateway.get_account_equity()
        except Exception as e:
            logger.warning(f"Failed to fetch account equity for position sizing: {e}")
            return None

    async def run_now(self) -> ScanResult:
        """Run one scan; raises ScanAlreadyRunningError if one is in flight"""
        if self._running:
            raise ScanAlreadyRunningError()
        self._running = True
        run_at = _utc_now().isoformat()

        try:
            watchlist = self.watchlist.get()
            logger.info(f"Scanning {len(watchlist.symbols)} symbols on {','.join(self.config.scanner.timeframes)}")

            equity = await self._account_equity()
            results, errors = await run_setup_scan(self.gateway, watchlist.symbols, self.config, run_at)
            results = attach_sizing(results, equity, self.config)

            narratives = await run_summarizers(
                self.summarizers, results[:self.config.scanner.summary_top_n],
                context={
                    'maxLeverage': self.config.risk.max_leverage,
                    'targetRoiPct': self.config.risk.target_roi_pct,
                    'riskPerTradePct': self.config.risk.risk_per_trade_pct
                }
            )

            result = ScanResult(run_at=run_at, watchlist=watchlist, results=results,
                                errors=errors, narratives=narratives)
            write_json_file(self.latest_path, result.to_dict())
            self._latest = result
            self._last_run_at = run_at
            logger.info(f"Scan complete: {len(results)} setups, {len(errors)} errors")
            return result
        finally:
            self._running = False

    def _schedule_next(self) -> float:
        """Next run is always one interval from now"""
        delay = self.config.scanner.interval_minutes * 60
        self._next_run_at = (_utc_now() + timedelta(seconds=delay)).isoformat()
        return delay

    async def _run_logged(self, label: str) -> None:
        try:
            result = await self.run_now()
            logger.info(f"Scanner {label} completed (runAt {result.run_at})")
        except ScanAlreadyRunningError:
            logger.info(f"Scanner {label} skipped, a scan is already running")
        except Exception as e:
            logger.warning(f"Scanner {label} failed: {e}")

    async def _loop(self) -> None:
        if self.config.scanner.run_on_start:
            await asyncio.sleep(FIRST_RUN_DELAY)
            await self._run_logged("initial run")
        while True:
            await asyncio.sleep(self._schedule_next())
            await self._run_logged("run")

    def start(self) -> None:
        if not self.config.scanner.enabled:
            logger.info("Scanner disabled")
            return
        if self._task and not self._task.done():
            return
        self._schedule_next()
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Scanner started, every {self.config.scanner.interval_minutes} minutes")

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._next_run_at = None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Scanner stopped")
