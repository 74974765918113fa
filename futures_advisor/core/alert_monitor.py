"""
Periodic alert rules over the latest scan and live positions
"""
import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..config.models import AlertsConfig
from ..models import Alert, AlertSeverity, AlertType, Order, Position, ScanResult, SetupCandidate
from ..position_sizing import liquidation_distance_pct, pct_distance, position_direction
from ..storage import read_json_file
from ..telegram import NotificationSink
from .alert_store import AlertStore, utc_now
from .exchange_gateway import ExchangeGateway

logger = logging.getLogger(__name__)

MAX_POSITIONS_PER_TICK = 25
MAX_PRICED_SYMBOLS = 15
MAX_ENTRY_SETUPS = 10

SEVERITIES = {
    AlertType.LIQUIDATION_RISK: AlertSeverity.CRITICAL,
    AlertType.STOP_PROXIMITY: AlertSeverity.WARN,
    AlertType.TAKE_PROFIT_PROXIMITY: AlertSeverity.INFO,
    AlertType.ENTRY_ZONE_HIT: AlertSeverity.INFO,
    AlertType.NEW_TOP_SETUPS: AlertSeverity.INFO,
    AlertType.SYSTEM: AlertSeverity.INFO,
}

TITLES = {
    AlertType.LIQUIDATION_RISK: "Liquidation risk",
    AlertType.STOP_PROXIMITY: "Stop proximity",
    AlertType.TAKE_PROFIT_PROXIMITY: "Take-profit proximity",
    AlertType.ENTRY_ZONE_HIT: "Entry zone hit",
}


def title_for(alert_type: AlertType, symbol: Optional[str]) -> str:
    if alert_type == AlertType.NEW_TOP_SETUPS:
        return "New top setups"
    base = TITLES.get(alert_type)
    if base is None:
        return "System"
    return f"{base} {symbol}" if symbol else base


def format_setup_line(setup: SetupCandidate) -> str:
    if setup.entry_zone:
        entry = f"{setup.entry_zone[0]:.2f}–{setup.entry_zone[1]:.2f}"
    else:
        entry = f"{setup.entry:.2f}"
    return (f"{setup.symbol} {setup.timeframe} {setup.direction.value} {setup.strategy.value} "
            f"score={setup.score} entry={entry} SL={setup.stop_loss:.2f} TP={setup.take_profit:.2f}")


def closing_side(direction: str) -> str:
    return "SELL" if direction == "LONG" else "BUY"


def stop_orders(orders: List[Order], close_side: str) -> List[Order]:
    return [
        o for o in orders
        if o.reduce_only and o.stop_price and "STOP" in (o.type or "").upper() and o.side == close_side
    ]


def take_profit_orders(orders: List[Order], close_side: str) -> List[Order]:
    result = []
    for o in orders:
        if not o.reduce_only or o.side != close_side or not o.price or o.price <= 0:
            continue
        order_type = (o.type or "").upper()
        if "TAKE_PROFIT" in order_type or order_type == "LIMIT":
            result.append(o)
    return result


def nearest_order(mark: float, orders: List[Order], use_stop: bool):
    """(order, distance pct) closest to mark, or None"""
    best = None
    for o in orders:
        distance = pct_distance(mark, o.stop_price if use_stop else o.price)
        if distance is not None and (best is None or distance < best[1]):
            best = (o, distance)
    return best


class AlertMonitor:
    """Non-reentrant timer that evaluates the alert rules"""

    def __init__(self, config: AlertsConfig, store: AlertStore, gateway: ExchangeGateway,
                 data_dir: Path, notifier: Optional[NotificationSink] = None, clock=utc_now):
        self.config = config
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock
        self.latest_path = Path(data_dir) / 'scanner-latest.json'

        self._ticking = False
        self._task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def is_ticking(self) -> bool:
        return self._ticking

    async def create_alert(self, alert_type: AlertType, message: str, dedupe_key: str,
                           symbol: Optional[str] = None,
                           metadata: Optional[Dict[str, Any]] = None) -> Optional[Alert]:
        """Persist and notify unless the same key fired within the dedupe window"""
        since = self.clock() - timedelta(seconds=self.config.dedupe_window_seconds)
        if await self.store.find_recent_by_dedupe_key(dedupe_key, since):
            logger.debug(f"Suppressed duplicate alert {dedupe_key}")
            return None

        alert = await self.store.add(
            type=alert_type,
            severity=SEVERITIES[alert_type],
            title=title_for(alert_type, symbol),
            message=message,
            dedupe_key=dedupe_key,
            symbol=symbol,
            metadata=metadata
        )
        logger.info(f"Alert {alert.severity.value}: {alert.title}")

        if self.notifier is not None and self.notifier.enabled:
            try:
                sent = await self.notifier.send(f"⚡ {alert.title}\n{alert.message}")
                if not sent:
                    logger.warning(f"Notification not delivered for alert {alert.id}")
            except Exception as e:
                logger.warning(f"Notification failed for alert {alert.id}: {e}")
        return alert

    def read_latest_scan(self) -> Optional[ScanResult]:
        data = read_json_file(self.latest_path)
        if not data:
            return None
        try:
            return ScanResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Latest scan snapshot unreadable: {e}")
            return None

    async def check_scanner(self) -> None:
        cfg = self.config
        if not cfg.top_setups_enabled and not cfg.setups_entry_enabled:
            return
        latest = self.read_latest_scan()
        if latest is None:
            return

        run_at = latest.run_at
        top = latest.results[:max(cfg.top_setups_count, MAX_ENTRY_SETUPS)]

        if cfg.top_setups_enabled:
            lines = [format_setup_line(s) for s in top[:cfg.top_setups_count]]
            if lines:
                message = f"Scanner run {run_at}:\n" + "\n".join(f"- {line}" for line in lines)
            else:
                message = f"Scanner run {run_at}: no setups found."
            await self.create_alert(
                AlertType.NEW_TOP_SETUPS, message, f"NEW_TOP_SETUPS:{run_at}",
                metadata={'runAt': run_at, 'topCount': len(lines)}
            )

        if not cfg.setups_entry_enabled or not top:
            return

        symbols = list(dict.fromkeys(s.symbol for s in top))[:MAX_PRICED_SYMBOLS]
        prices = await self._fetch_prices(symbols)

        for setup in top[:MAX_ENTRY_SETUPS]:
            price = prices.get(setup.symbol)
            if not price:
                continue
            zone = setup.entry_zone or (setup.entry, setup.entry)
            low, high = min(zone), max(zone)
            tol = cfg.entry_distance_pct / 100 * price
            if not (low - tol <= price <= high + tol):
                continue

            await self.create_alert(
                AlertType.ENTRY_ZONE_HIT,
                f"Price {price:.2f} entered entry zone {low:.2f}–{high:.2f} ({setup.timeframe} {setup.strategy.value}).",
                f"ENTRY_ZONE_HIT:{run_at}:{setup.symbol}:{setup.timeframe}:{setup.strategy.value}",
                symbol=setup.symbol,
                metadata={'runAt': run_at, 'price': price, 'entryZone': [low, high],
                          'timeframe': setup.timeframe, 'strategy': setup.strategy.value}
            )

    async def _fetch_prices(self, symbols: List[str]) -> Dict[str, Optional[float]]:
        async def fetch(symbol):
            try:
                return await self.gateway.get_current_price(symbol)
            except Exception as e:
                logger.debug(f"Price fetch failed for {symbol}: {e}")
                return None

        prices = await asyncio.gather(*(fetch(s) for s in symbols))
        return dict(zip(symbols, prices))

    async def check_positions(self) -> None:
        if not self.gateway.has_account:
            return
        positions = [p for p in await self.gateway.fetch_open_positions() if p.amount != 0]
        for position in positions[:MAX_POSITIONS_PER_TICK]:
            try:
                await self._check_position(position)
            except Exception as e:
                logger.warning(f"Position check failed for {position.symbol}: {e}")

    async def _check_position(self, position: Position) -> None:
        cfg = self.config
        direction = position_direction(position)
        if direction == "FLAT":
            return
        mark = position.mark_price

        distance = liquidation_distance_pct(direction, mark, position.liquidation_price)
        if distance is not None and distance <= cfg.liquidation_distance_pct:
            await self.create_alert(
                AlertType.LIQUIDATION_RISK,
                f"Mark {mark:.2f} is {distance:.2f}% from liquidation ({position.liquidation_price:.2f}).",
                f"LIQUIDATION_RISK:{position.symbol}:{position.position_side}",
                symbol=position.symbol,
                metadata={'markPrice': mark, 'liquidationPrice': position.liquidation_price,
                          'distancePct': distance, 'leverage': position.leverage}
            )

        try:
            orders = await self.gateway.fetch_open_orders(position.symbol)
        except Exception as e:
            logger.warning(f"Open orders fetch failed for {position.symbol}: {e}")
            return

        close_side = closing_side(direction)

        nearest = nearest_order(mark, stop_orders(orders, close_side), use_stop=True)
        if nearest and nearest[1] <= cfg.stop_distance_pct:
            order, dist = nearest
            await self.create_alert(
                AlertType.STOP_PROXIMITY,
                f"Mark {mark:.2f} is {dist:.2f}% from stop ({order.stop_price:.2f}).",
                f"STOP_PROXIMITY:{position.symbol}:{order.order_id}",
                symbol=position.symbol,
                metadata={'orderId': order.order_id, 'stopPrice': order.stop_price,
                          'markPrice': mark, 'distancePct': dist}
            )

        nearest = nearest_order(mark, take_profit_orders(orders, close_side), use_stop=False)
        if nearest and nearest[1] <= cfg.take_profit_distance_pct:
            order, dist = nearest
            await self.create_alert(
                AlertType.TAKE_PROFIT_PROXIMITY,
                f"Mark {mark:.2f} is {dist:.2f}% from take-profit ({order.price:.2f}).",
                f"TAKE_PROFIT_PROXIMITY:{position.symbol}:{order.order_id}",
                symbol=position.symbol,
                metadata={'orderId': order.order_id, 'price': order.price,
                          'markPrice': mark, 'distancePct': dist}
            )

    async def tick(self) -> bool:
        """Run both rule passes; returns False when a tick is already in flight"""
        if self._ticking:
            logger.debug("Alert tick skipped, previous tick still running")
            return False
        self._ticking = True
        try:
            results = await asyncio.gather(self.check_scanner(), self.check_positions(), return_exceptions=True)
            for name, result in zip(("scanner", "positions"), results):
                if isinstance(result, Exception):
                    logger.warning(f"Alert {name} check failed: {result}")
            return True
        finally:
            self._ticking = False

    def _spawn_tick(self) -> None:
        task = asyncio.get_running_loop().create_task(self.tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    async def _loop(self) -> None:
        while True:
            self._spawn_tick()
            await asyncio.sleep(self.config.interval_seconds)

    def start(self) -> None:
        if not self.config.enabled:
            logger.info("Alert monitor disabled")
            return
        if self._task and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Alert monitor started, every {self.config.interval_seconds:g}s")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for tick_task in list(self._tick_tasks):
            tick_task.cancel()
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)
        if task:
            logger.info("Alert monitor stopped")
