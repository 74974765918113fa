"""
Exchange gateway interfaces for live market/position data and frozen fixtures
"""
import asyncio
import hashlib
import hmac
import json
import logging
import time
import aiohttp
import pandas as pd
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable
from datetime import datetime, timedelta
from urllib.parse import urlencode
from aiolimiter import AsyncLimiter

from ..data_loader import TIMEFRAME_MS, load_candles_csv, dataframe_to_candles
from ..models import Candle, Order, Position

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
TIME_OFFSET_TIMEOUT = 1.5
TIME_OFFSET_TTL = timedelta(minutes=5)
RECV_WINDOW_MS = 5000


class ExchangeError(Exception):
    """Market or account request failed"""

    def __init__(self, message: str, status: Optional[int] = None,
                 code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.body = body


class ExchangeGateway(ABC):
    """Market data and position source"""

    @abstractmethod
    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> List[Candle]:
        """Fetch candlestick data, oldest first"""
        pass

    @abstractmethod
    async def get_current_price(self, symbol: str) -> float:
        """Get current price for symbol"""
        pass

    @abstractmethod
    async def fetch_open_positions(self) -> List[Position]:
        """Open positions; empty when the account is not configured"""
        pass

    @abstractmethod
    async def fetch_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        """Open orders; empty when the account is not configured"""
        pass

    @abstractmethod
    async def get_account_equity(self) -> Optional[float]:
        """Wallet equity in quote currency, None when unknown"""
        pass

    @property
    @abstractmethod
    def has_account(self) -> bool:
        """Whether position/order data is available"""
        pass

    async def close(self) -> None:
        pass


def _to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_position(row: Dict[str, Any]) -> Position:
    liquidation = _to_float(row.get('liquidationPrice'), 0.0)
    unrealized = row.get('unRealizedProfit', row.get('unrealizedProfit', 0))
    return Position(
        symbol=row['symbol'],
        position_side=row.get('positionSide', 'BOTH'),
        amount=_to_float(row.get('positionAmt'), 0.0),
        entry_price=_to_float(row.get('entryPrice'), 0.0),
        mark_price=_to_float(row.get('markPrice'), 0.0),
        liquidation_price=liquidation if liquidation and liquidation > 0 else None,
        leverage=_to_float(row.get('leverage'), 1.0),
        unrealized_pnl=_to_float(unrealized, 0.0)
    )


def parse_order(row: Dict[str, Any]) -> Order:
    stop_price = _to_float(row.get('stopPrice'))
    return Order(
        symbol=row['symbol'],
        order_id=int(row['orderId']),
        side=row.get('side', ''),
        type=row.get('type', ''),
        reduce_only=bool(row.get('reduceOnly')),
        price=_to_float(row.get('price'), 0.0),
        stop_price=stop_price if stop_price else None,
        position_side=row.get('positionSide', 'BOTH')
    )


class LiveExchangeGateway(ExchangeGateway):
    """Binance USD-M futures gateway"""

    def __init__(self, api_key: Optional[str] = None, api_secret: Optional[str] = None,
                 base_url: str = "https://fapi.binance.com", requests_per_minute: int = 1200):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip('/')

        # Rate limiter: Binance allows 1200 requests per minute
        self.limiter = AsyncLimiter(max_rate=requests_per_minute, time_period=60)

        self.session: Optional[aiohttp.ClientSession] = None

        # Price cache
        self._price_cache: Dict[str, tuple] = {}
        self._cache_ttl = timedelta(seconds=5)

        self._time_offset_ms = 0
        self._time_offset_at: Optional[datetime] = None

    @property
    def has_account(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def _ensure_session(self):
        if not self.session:
            self.session = aiohttp.ClientSession()

    async def _make_request(self, endpoint: str, params: Optional[Dict] = None,
                            headers: Optional[Dict[str, str]] = None, retries: int = 3) -> Any:
        """Rate-limited GET with retry on 429 and timeouts"""
        await self._ensure_session()
        url = f"{self.base_url}{endpoint}"
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)

        for attempt in range(retries):
            try:
                async with self.limiter:
                    async with self.session.get(url, params=params, headers=headers, timeout=timeout) as response:
                        if response.status == 200:
                            return await response.json(content_type=None)
                        body = await response.text()
                        if response.status == 429 and attempt < retries - 1:
                            logger.warning(f"Rate limit hit, retrying in {2 ** attempt} seconds")
                            await asyncio.sleep(2 ** attempt)
                            continue
                        raise self._http_error(response.status, body)
            except asyncio.TimeoutError as e:
                logger.warning(f"Request timeout {endpoint}, attempt {attempt + 1}/{retries}")
                if attempt == retries - 1:
                    raise ExchangeError(f"Request to {endpoint} timed out") from e
                await asyncio.sleep(1)
            except aiohttp.ClientError as e:
                logger.warning(f"Request failed {endpoint}, attempt {attempt + 1}/{retries}: {e}")
                if attempt == retries - 1:
                    raise ExchangeError(f"Request to {endpoint} failed: {e}") from e
                await asyncio.sleep(1)
        raise ExchangeError(f"Request to {endpoint} failed after {retries} attempts")

    @staticmethod
    def _http_error(status: int, body: str) -> ExchangeError:
        code = None
        message = f"Binance request failed ({status})"
        try:
            data = json.loads(body)
            if isinstance(data, dict):
                code = data.get('code') if isinstance(data.get('code'), int) else None
                message = data.get('msg') or message
        except ValueError:
            pass
        return ExchangeError(message, status=status, code=code, body=body)

    async def _server_time_offset(self) -> int:
        """Server clock minus local clock in ms, refreshed every 5 minutes; 0 on failure"""
        now = datetime.now()
        if self._time_offset_at and now - self._time_offset_at < TIME_OFFSET_TTL:
            return self._time_offset_ms

        await self._ensure_session()
        offset = 0
        try:
            timeout = aiohttp.ClientTimeout(total=TIME_OFFSET_TIMEOUT)
            async with self.session.get(f"{self.base_url}/fapi/v1/time", timeout=timeout) as response:
                data = await response.json(content_type=None)
                if response.status == 200 and isinstance(data.get('serverTime'), int):
                    offset = data['serverTime'] - int(time.time() * 1000)
        except (asyncio.TimeoutError, aiohttp.ClientError, ValueError, AttributeError) as e:
            logger.debug(f"Server time unavailable, using local clock: {e}")

        self._time_offset_ms = offset
        self._time_offset_at = now
        return offset

    async def _signed_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        offset = await self._server_time_offset()
        query = {k: v for k, v in (params or {}).items() if v is not None}
        query['recvWindow'] = RECV_WINDOW_MS
        query['timestamp'] = int(time.time() * 1000) + offset
        payload = urlencode(sorted(query.items()))
        query_signed = dict(sorted(query.items()))
        query_signed['signature'] = hmac.new(
            self.api_secret.encode(), payload.encode(), hashlib.sha256
        ).hexdigest()
        return await self._make_request(endpoint, query_signed, headers={'X-MBX-APIKEY': self.api_key}, retries=1)

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> List[Candle]:
        params = {
            'symbol': symbol.upper(),
            'interval': timeframe,
            'limit': min(limit, 1500)  # Binance limit
        }
        data = await self._make_request('/fapi/v1/klines', params)
        if not isinstance(data, list):
            raise ExchangeError(f"Unexpected klines payload for {symbol}", body=data)

        try:
            candles = [Candle.from_binance_kline(kline) for kline in data]
        except (IndexError, TypeError, ValueError) as e:
            raise ExchangeError(f"Malformed kline for {symbol}: {e}", body=data) from e
        logger.debug(f"Fetched {len(candles)} candles for {symbol} {timeframe}")
        return candles

    async def get_current_price(self, symbol: str) -> float:
        """Get current price with caching"""
        symbol = symbol.upper()
        now = datetime.now()

        if symbol in self._price_cache:
            price, timestamp = self._price_cache[symbol]
            if now - timestamp < self._cache_ttl:
                return price

        try:
            data = await self._make_request('/fapi/v1/ticker/price', {'symbol': symbol})
            price = float(data['price'])
        except (ExchangeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to get current price for {symbol}: {e}")
            # Return cached price if available
            if symbol in self._price_cache:
                return self._price_cache[symbol][0]
            if isinstance(e, ExchangeError):
                raise
            raise ExchangeError(f"Malformed price payload for {symbol}") from e

        self._price_cache[symbol] = (price, now)
        return price

    async def fetch_open_positions(self) -> List[Position]:
        if not self.has_account:
            return []
        rows = await self._signed_request('/fapi/v2/positionRisk')
        return [parse_position(row) for row in rows or []]

    async def fetch_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        if not self.has_account:
            return []
        rows = await self._signed_request('/fapi/v1/openOrders', {'symbol': symbol})
        return [parse_order(row) for row in rows or []]

    async def get_account_equity(self) -> Optional[float]:
        if not self.has_account:
            return None
        data = await self._signed_request('/fapi/v2/account')
        equity = _to_float((data or {}).get('totalMarginBalance'))
        if equity is None:
            equity = _to_float((data or {}).get('totalWalletBalance'))
        return equity


class FrozenExchangeGateway(ExchangeGateway):
    """Gateway over fixed candle series, used for offline scans and tests"""

    def __init__(self, candles: Dict[str, List[Candle]],
                 positions: Optional[Iterable[Position]] = None,
                 orders: Optional[Iterable[Order]] = None,
                 prices: Optional[Dict[str, float]] = None,
                 equity: Optional[float] = None):
        self.candles = candles  # symbol_timeframe -> candles
        self.positions = list(positions or [])
        self.orders = list(orders or [])
        self.prices = dict(prices or {})
        self.equity = equity

    @classmethod
    def from_dataframes(cls, frames: Dict[str, pd.DataFrame], **kwargs) -> 'FrozenExchangeGateway':
        candles = {
            key: dataframe_to_candles(df, TIMEFRAME_MS.get(key.rsplit('_', 1)[-1]))
            for key, df in frames.items()
        }
        return cls(candles, **kwargs)

    @classmethod
    def from_csv_dir(cls, directory: str, **kwargs) -> 'FrozenExchangeGateway':
        """Load every {SYMBOL}_{TF}.csv file in directory"""
        frames = {}
        for path in sorted(Path(directory).glob('*_*.csv')):
            frames[path.stem] = load_candles_csv(str(path))
        logger.info(f"Loaded {len(frames)} candle files from {directory}")
        return cls.from_dataframes(frames, **kwargs)

    @property
    def has_account(self) -> bool:
        return bool(self.positions or self.orders) or self.equity is not None

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> List[Candle]:
        key = f"{symbol.upper()}_{timeframe}"
        if key not in self.candles:
            raise ExchangeError(f"No candle data for {key}")
        return list(self.candles[key][-limit:])

    async def get_current_price(self, symbol: str) -> float:
        symbol = symbol.upper()
        if symbol in self.prices:
            return self.prices[symbol]
        for timeframe in ['1m', '15m', '1h', '4h']:
            series = self.candles.get(f"{symbol}_{timeframe}")
            if series:
                return series[-1].close
        raise ExchangeError(f"No price data available for {symbol}")

    async def fetch_open_positions(self) -> List[Position]:
        return list(self.positions)

    async def fetch_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        if symbol is None:
            return list(self.orders)
        return [o for o in self.orders if o.symbol == symbol.upper()]

    async def get_account_equity(self) -> Optional[float]:
        return self.equity
