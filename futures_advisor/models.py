"""
Data models for the futures setup scanner and alert engine
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Dict, Any, Tuple


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    NEUTRAL = "NEUTRAL"


class SetupDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SetupStrategy(str, Enum):
    BREAKOUT_RETEST = "BREAKOUT_RETEST"
    TREND_PULLBACK = "TREND_PULLBACK"
    CONTINUATION = "CONTINUATION"


class AlertType(str, Enum):
    LIQUIDATION_RISK = "LIQUIDATION_RISK"
    STOP_PROXIMITY = "STOP_PROXIMITY"
    TAKE_PROFIT_PROXIMITY = "TAKE_PROFIT_PROXIMITY"
    ENTRY_ZONE_HIT = "ENTRY_ZONE_HIT"
    NEW_TOP_SETUPS = "NEW_TOP_SETUPS"
    SYSTEM = "SYSTEM"


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class Candle:
    """Single OHLCV bar, times in epoch milliseconds"""
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int

    @classmethod
    def from_binance_kline(cls, kline_data: List) -> 'Candle':
        """Create Candle from Binance kline row"""
        return cls(
            open_time=int(kline_data[0]),
            open=float(kline_data[1]),
            high=float(kline_data[2]),
            low=float(kline_data[3]),
            close=float(kline_data[4]),
            volume=float(kline_data[5]),
            close_time=int(kline_data[6])
        )

    @property
    def is_bullish(self) -> bool:
        return self.close >= self.open

    @property
    def is_bearish(self) -> bool:
        return self.close <= self.open


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values at the last bar; None means not enough history"""
    atr14: Optional[float] = None
    rsi14: Optional[float] = None
    sma20: Optional[float] = None
    sma50: Optional[float] = None


@dataclass(frozen=True)
class PositionSizing:
    quantity: float
    notional_usd: float
    risk_usd: float
    reward_usd: float
    risk_pct: float
    leverage_required: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PositionSizing':
        return cls(**{k: float(data[k]) for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class SetupCandidate:
    """Scored trade setup produced by a detector"""
    symbol: str
    timeframe: str
    trend4h: TrendDirection
    direction: SetupDirection
    strategy: SetupStrategy
    score: int
    entry: float
    stop_loss: float
    take_profit: float
    created_at: str
    entry_zone: Optional[Tuple[float, float]] = None
    risk_reward: Optional[float] = None
    reasons: Tuple[str, ...] = ()
    invalidation: Tuple[str, ...] = ()
    sizing: Optional[PositionSizing] = None

    @property
    def dedupe_key(self) -> Tuple[str, str, str, str]:
        return (self.symbol, self.timeframe, self.strategy.value, self.direction.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for snapshots and API responses"""
        return {
            'symbol': self.symbol,
            'timeframe': self.timeframe,
            'trend4h': self.trend4h.value,
            'direction': self.direction.value,
            'strategy': self.strategy.value,
            'score': self.score,
            'entry': self.entry,
            'entryZone': list(self.entry_zone) if self.entry_zone else None,
            'stopLoss': self.stop_loss,
            'takeProfit': self.take_profit,
            'rr': self.risk_reward,
            'reasons': list(self.reasons),
            'invalidation': list(self.invalidation),
            'createdAt': self.created_at,
            'sizing': self.sizing.to_dict() if self.sizing else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SetupCandidate':
        zone = data.get('entryZone')
        sizing = data.get('sizing')
        return cls(
            symbol=data['symbol'],
            timeframe=data['timeframe'],
            trend4h=TrendDirection(data['trend4h']),
            direction=SetupDirection(data['direction']),
            strategy=SetupStrategy(data['strategy']),
            score=int(data['score']),
            entry=float(data['entry']),
            stop_loss=float(data['stopLoss']),
            take_profit=float(data['takeProfit']),
            created_at=data['createdAt'],
            entry_zone=(float(zone[0]), float(zone[1])) if zone else None,
            risk_reward=data.get('rr'),
            reasons=tuple(data.get('reasons') or ()),
            invalidation=tuple(data.get('invalidation') or ()),
            sizing=PositionSizing.from_dict(sizing) if sizing else None
        )


@dataclass(frozen=True)
class SymbolError:
    symbol: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {'symbol': self.symbol, 'message': self.message}


@dataclass(frozen=True)
class Watchlist:
    symbols: Tuple[str, ...]
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {'symbols': list(self.symbols), 'updatedAt': self.updated_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Watchlist':
        return cls(symbols=tuple(data.get('symbols') or ()), updated_at=data.get('updatedAt', ''))


@dataclass
class ScanResult:
    """Latest world view written by the scanner"""
    run_at: str
    watchlist: Watchlist
    results: List[SetupCandidate] = field(default_factory=list)
    errors: List[SymbolError] = field(default_factory=list)
    narratives: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'runAt': self.run_at,
            'watchlist': self.watchlist.to_dict(),
            'results': [s.to_dict() for s in self.results],
            'errors': [e.to_dict() for e in self.errors],
            'llm': {'providers': self.narratives}
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanResult':
        return cls(
            run_at=data['runAt'],
            watchlist=Watchlist.from_dict(data.get('watchlist') or {}),
            results=[SetupCandidate.from_dict(s) for s in data.get('results') or []],
            errors=[SymbolError(e['symbol'], e['message']) for e in data.get('errors') or []],
            narratives=list((data.get('llm') or {}).get('providers') or [])
        )


@dataclass(frozen=True)
class Position:
    """Open futures position as reported by the exchange"""
    symbol: str
    position_side: str  # 'BOTH' / 'LONG' / 'SHORT'
    amount: float
    entry_price: float
    mark_price: float
    liquidation_price: Optional[float] = None
    leverage: float = 1.0
    unrealized_pnl: float = 0.0


@dataclass(frozen=True)
class EquityTarget:
    """Exit price that books percent of wallet equity on the open quantity"""
    percent: float
    profit_required: float
    required_price: float


@dataclass(frozen=True)
class EquityTargets:
    direction: str
    entry_price: float
    position_qty: float
    wallet_equity: float
    minimum_target: EquityTarget
    stretch_targets: Tuple[EquityTarget, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PositionPlan:
    """Deterministic management numbers for one open position"""
    symbol: str
    direction: str
    entry_price: float
    mark_price: float
    leverage: float
    atr14: Optional[float] = None
    suggested_stop_loss: Optional[float] = None
    suggested_take_profit: Optional[float] = None
    equity_targets: Optional[EquityTargets] = None
    warnings: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['warnings'] = list(self.warnings)
        data['notes'] = list(self.notes)
        return data


@dataclass(frozen=True)
class Order:
    """Open futures order"""
    symbol: str
    order_id: int
    side: str  # 'BUY' / 'SELL'
    type: str
    reduce_only: bool
    price: float
    stop_price: Optional[float] = None
    position_side: str = "BOTH"


@dataclass(frozen=True)
class Alert:
    id: str
    created_at: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    symbol: Optional[str]
    dedupe_key: str
    acknowledged_at: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'createdAt': self.created_at,
            'type': self.type.value,
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'symbol': self.symbol,
            'dedupeKey': self.dedupe_key,
            'acknowledgedAt': self.acknowledged_at,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Alert':
        return cls(
            id=data['id'],
            created_at=data['createdAt'],
            type=AlertType(data['type']),
            severity=AlertSeverity(data['severity']),
            title=data.get('title', ''),
            message=data.get('message', ''),
            symbol=data.get('symbol'),
            dedupe_key=data['dedupeKey'],
            acknowledged_at=data.get('acknowledgedAt'),
            metadata=data.get('metadata')
        )
