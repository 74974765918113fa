"""
Configuration models for the futures advisor
"""
import math
from dataclasses import dataclass, field
from typing import List, Optional

SCAN_TIMEFRAMES = ("15m", "1h")
STRETCH_RETURN_PCTS = (20.0, 30.0)


def clamp(name: str, value, low, high, warnings: List[str]):
    """Clamp value into [low, high], recording a warning when it moves"""
    if value != value:
        warnings.append(f"{name} is not a number, using {low}")
        return low
    if value < low:
        warnings.append(f"{name}={value} below minimum, using {low}")
        return low
    if value > high:
        warnings.append(f"{name}={value} above maximum, using {high}")
        return high
    return value


@dataclass
class ScannerConfig:
    """Setup scanner schedule and fetch settings"""
    enabled: bool = True
    run_on_start: bool = False
    interval_minutes: int = 60
    timeframes: List[str] = field(default_factory=lambda: list(SCAN_TIMEFRAMES))
    trend_timeframe: str = "4h"
    concurrency: int = 3
    kline_limit: int = 200
    summary_top_n: int = 3

    def normalize(self, warnings: List[str]) -> None:
        self.interval_minutes = int(clamp('scanner.interval_minutes', self.interval_minutes, 5, 1440, warnings))
        self.concurrency = int(clamp('scanner.concurrency', self.concurrency, 1, 10, warnings))
        self.kline_limit = int(clamp('scanner.kline_limit', self.kline_limit, 50, 500, warnings))
        self.summary_top_n = int(clamp('scanner.summary_top_n', self.summary_top_n, 0, 10, warnings))

        timeframes = []
        for tf in self.timeframes:
            tf = str(tf).strip()
            if tf not in SCAN_TIMEFRAMES:
                warnings.append(f"scanner.timeframes: unsupported timeframe {tf!r} dropped")
            elif tf not in timeframes:
                timeframes.append(tf)
        if not timeframes:
            warnings.append("scanner.timeframes empty, using default 15m,1h")
            timeframes = list(SCAN_TIMEFRAMES)
        self.timeframes = timeframes


@dataclass
class RiskConfig:
    """Account-level risk constraints"""
    max_leverage: float = 3.0
    target_roi_pct: float = 10.0
    risk_per_trade_pct: float = 1.0
    target_return_equity_pct: float = 10.0
    stretch_return_equity_pct: List[float] = field(default_factory=lambda: list(STRETCH_RETURN_PCTS))

    def normalize(self, warnings: List[str]) -> None:
        self.max_leverage = float(clamp('risk.max_leverage', self.max_leverage, 1, 125, warnings))
        self.target_roi_pct = float(clamp('risk.target_roi_pct', self.target_roi_pct, 0.1, 1000, warnings))
        self.risk_per_trade_pct = float(clamp('risk.risk_per_trade_pct', self.risk_per_trade_pct, 0.01, 100, warnings))
        self.target_return_equity_pct = float(clamp('risk.target_return_equity_pct', self.target_return_equity_pct,
                                                    0.1, 1000, warnings))

        stretch = []
        for raw in self.stretch_return_equity_pct:
            try:
                value = float(raw)
            except (TypeError, ValueError):
                value = 0.0
            if value > 0 and math.isfinite(value):
                stretch.append(value)
            else:
                warnings.append(f"risk.stretch_return_equity_pct: ignoring {raw!r}")
        self.stretch_return_equity_pct = stretch or list(STRETCH_RETURN_PCTS)


@dataclass
class AlertsConfig:
    """Alert monitor timer, dedupe window and rule thresholds"""
    enabled: bool = True
    interval_seconds: float = 30.0
    dedupe_window_minutes: float = 30.0
    liquidation_distance_pct: float = 5.0
    stop_distance_pct: float = 0.5
    take_profit_distance_pct: float = 0.6
    entry_distance_pct: float = 0.2
    setups_entry_enabled: bool = True
    top_setups_enabled: bool = True
    top_setups_count: int = 3
    max_alerts: int = 1000

    def normalize(self, warnings: List[str]) -> None:
        self.interval_seconds = clamp('alerts.interval_seconds', self.interval_seconds, 10, 600, warnings)
        self.dedupe_window_minutes = clamp('alerts.dedupe_window_minutes', self.dedupe_window_minutes, 1, 1440, warnings)
        self.liquidation_distance_pct = clamp('alerts.liquidation_distance_pct', self.liquidation_distance_pct, 0.1, 50, warnings)
        self.stop_distance_pct = clamp('alerts.stop_distance_pct', self.stop_distance_pct, 0.05, 10, warnings)
        self.take_profit_distance_pct = clamp('alerts.take_profit_distance_pct', self.take_profit_distance_pct, 0.05, 10, warnings)
        self.entry_distance_pct = clamp('alerts.entry_distance_pct', self.entry_distance_pct, 0.05, 5, warnings)
        self.top_setups_count = int(clamp('alerts.top_setups_count', int(self.top_setups_count), 1, 10, warnings))
        self.max_alerts = int(clamp('alerts.max_alerts', int(self.max_alerts), 100, 20000, warnings))

    @property
    def dedupe_window_seconds(self) -> float:
        return self.dedupe_window_minutes * 60


@dataclass
class TelegramConfig:
    enabled: bool = False
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.bot_token and self.chat_id)


@dataclass
class ExchangeConfig:
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    base_url: str = "https://fapi.binance.com"
    requests_per_minute: int = 1200

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


@dataclass
class AppConfig:
    """Main application configuration"""
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)

    data_dir: Optional[str] = None
    log_level: str = "INFO"
    log_to_file: bool = False
    logs_dir: str = "logs"

    # Adjustments made while loading
    warnings: List[str] = field(default_factory=list)

    def normalize(self) -> List[str]:
        """Clamp every bounded option; returns the warnings added"""
        added: List[str] = []
        self.scanner.normalize(added)
        self.risk.normalize(added)
        self.alerts.normalize(added)
        level = str(self.log_level).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            added.append(f"log_level={self.log_level!r} unknown, using INFO")
            level = "INFO"
        self.log_level = level
        self.warnings.extend(added)
        return added
