#!/usr/bin/env python3
"""
Futures setup advisor: scan a watchlist for trade setups and raise alerts
"""
import asyncio
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .config.loader import ConfigError, DEFAULT_CONFIG_PATH, load_config
from .config.models import AppConfig
from .core.alert_monitor import AlertMonitor
from .core.alert_store import AlertStore
from .core.exchange_gateway import ExchangeGateway, FrozenExchangeGateway, LiveExchangeGateway
from .core.scanner import ScanAlreadyRunningError, ScannerService
from .indicators import atr
from .models import Alert, AlertSeverity, PositionPlan, ScanResult, SetupDirection
from .position_sizing import build_position_plan
from .storage import resolve_data_dir
from .telegram import NotificationSink, NullNotifier, TelegramNotifier
from .watchlist import WatchlistError, WatchlistStore

logger = logging.getLogger(__name__)
console = Console()

SEVERITY_STYLES = {
    AlertSeverity.CRITICAL: "bold red",
    AlertSeverity.WARN: "yellow",
    AlertSeverity.INFO: "cyan",
}


def setup_logging(config: AppConfig) -> None:
    """Setup logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_to_file:
        logs_dir = Path(config.logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logs_dir / 'advisor.log'))

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    # Suppress noisy loggers
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def load_dotenv(path: str = ".env") -> None:
    """Set KEY=VALUE lines from a .env file into os.environ unless already set"""
    env_path = Path(path)
    if not env_path.exists():
        return
    try:
        lines = env_path.read_text(encoding='utf-8').splitlines()
    except OSError as e:
        logger.warning(f"Could not read {path}: {e}")
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, val = line.split('=', 1)
        key = key.strip()
        if key and key not in os.environ:
            os.environ[key] = val.strip().strip('"').strip("'")


def build_gateway(config: AppConfig, candles_dir: Optional[str] = None) -> ExchangeGateway:
    if candles_dir:
        return FrozenExchangeGateway.from_csv_dir(candles_dir)
    exchange = config.exchange
    if not exchange.has_credentials:
        logger.info("No Binance credentials, position alerts and sizing disabled")
    return LiveExchangeGateway(
        api_key=exchange.api_key,
        api_secret=exchange.api_secret,
        base_url=exchange.base_url,
        requests_per_minute=exchange.requests_per_minute
    )


def build_notifier(config: AppConfig) -> NotificationSink:
    if config.telegram.is_configured:
        return TelegramNotifier(config.telegram.bot_token, config.telegram.chat_id)
    return NullNotifier()


def render_scan(result: ScanResult, limit: int = 20) -> None:
    table = Table(title=f"Setups (run {result.run_at})", box=box.ROUNDED)
    table.add_column("Symbol", style="bold")
    table.add_column("TF", style="cyan")
    table.add_column("Dir")
    table.add_column("Strategy")
    table.add_column("Score", justify="right", style="magenta")
    table.add_column("Entry", justify="right", style="yellow")
    table.add_column("SL", justify="right", style="red")
    table.add_column("TP", justify="right", style="green")
    table.add_column("RR", justify="right")
    table.add_column("Qty", justify="right")

    for setup in result.results[:limit]:
        dir_style = "green" if setup.direction == SetupDirection.LONG else "red"
        table.add_row(
            setup.symbol,
            setup.timeframe,
            f"[{dir_style}]{setup.direction.value}[/{dir_style}]",
            setup.strategy.value,
            str(setup.score),
            f"{setup.entry:.4f}",
            f"{setup.stop_loss:.4f}",
            f"{setup.take_profit:.4f}",
            f"{setup.risk_reward:.2f}" if setup.risk_reward else "-",
            f"{setup.sizing.quantity:g}" if setup.sizing else "-"
        )
    console.print(table)

    if not result.results:
        console.print("[dim]No setups found.[/dim]")
    for error in result.errors:
        console.print(f"[yellow]! {error.symbol}: {error.message}[/yellow]")
    for provider in result.narratives:
        if provider.get('output'):
            console.print(f"[bold]{provider['provider']}[/bold]: {provider['output']}")


def render_alerts(alerts: List[Alert]) -> None:
    table = Table(title="Alerts", box=box.ROUNDED)
    table.add_column("Created", style="dim")
    table.add_column("Severity")
    table.add_column("Title", style="bold")
    table.add_column("Message")
    table.add_column("Ack", style="dim")
    table.add_column("Id", style="dim")

    for alert in alerts:
        style = SEVERITY_STYLES[alert.severity]
        table.add_row(
            alert.created_at[:19],
            f"[{style}]{alert.severity.value}[/{style}]",
            alert.title,
            alert.message,
            "yes" if alert.is_acknowledged else "",
            alert.id
        )
    console.print(table)


def render_position_plans(plans: List[PositionPlan]) -> None:
    table = Table(title="Open positions", box=box.ROUNDED)
    table.add_column("Symbol", style="bold")
    table.add_column("Dir")
    table.add_column("Entry", justify="right", style="yellow")
    table.add_column("Mark", justify="right")
    table.add_column("Lev", justify="right")
    table.add_column("ATR14", justify="right", style="dim")
    table.add_column("Stop (ATR)", justify="right", style="red")
    table.add_column("TP (ROI)", justify="right", style="green")
    table.add_column("Equity targets", justify="right", style="cyan")

    for plan in plans:
        dir_style = "green" if plan.direction == "LONG" else "red"
        targets = "-"
        if plan.equity_targets:
            levels = (plan.equity_targets.minimum_target,) + plan.equity_targets.stretch_targets
            targets = " / ".join(f"{t.percent:g}%: {t.required_price:.4f}" for t in levels)
        table.add_row(
            plan.symbol,
            f"[{dir_style}]{plan.direction}[/{dir_style}]",
            f"{plan.entry_price:.4f}",
            f"{plan.mark_price:.4f}",
            f"{plan.leverage:g}x",
            f"{plan.atr14:.4f}" if plan.atr14 else "-",
            f"{plan.suggested_stop_loss:.4f}" if plan.suggested_stop_loss else "-",
            f"{plan.suggested_take_profit:.4f}" if plan.suggested_take_profit else "-",
            targets
        )
    console.print(table)

    for plan in plans:
        for warning in plan.warnings:
            console.print(f"[yellow]! {plan.symbol}: {warning}[/yellow]")
        for note in plan.notes:
            console.print(f"[dim]  {plan.symbol}: {note}[/dim]")


async def cmd_scan(config: AppConfig, data_dir: Path, args) -> int:
    gateway = build_gateway(config, args.candles_dir)
    scanner = ScannerService(config, gateway, WatchlistStore(data_dir), data_dir)
    try:
        result = await scanner.run_now()
    finally:
        await gateway.close()
    render_scan(result, args.limit)
    return 0


async def cmd_serve(config: AppConfig, data_dir: Path, args) -> int:
    gateway = build_gateway(config, args.candles_dir)
    scanner = ScannerService(config, gateway, WatchlistStore(data_dir), data_dir)
    store = AlertStore(data_dir, max_alerts=config.alerts.max_alerts)
    monitor = AlertMonitor(config.alerts, store, gateway, data_dir, notifier=build_notifier(config))

    scanner.start()
    monitor.start()
    logger.info("Advisor running, press Ctrl+C to stop")
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await monitor.stop()
        await scanner.stop()
        await gateway.close()


async def cmd_alerts(config: AppConfig, data_dir: Path, args) -> int:
    store = AlertStore(data_dir, max_alerts=config.alerts.max_alerts)
    render_alerts(await store.list(limit=args.limit, include_acknowledged=args.all))
    return 0


async def cmd_ack(config: AppConfig, data_dir: Path, args) -> int:
    store = AlertStore(data_dir, max_alerts=config.alerts.max_alerts)
    alert = await store.acknowledge(args.alert_id)
    if alert is None:
        console.print(f"[red]Unknown alert id {args.alert_id}[/red]")
        return 1
    console.print(f"Acknowledged {alert.title} at {alert.acknowledged_at}")
    return 0


async def position_atr(gateway: ExchangeGateway, symbol: str, timeframe: str, limit: int) -> Optional[float]:
    try:
        candles = await gateway.fetch_candles(symbol, timeframe, limit)
    except Exception as e:
        logger.info(f"Unable to fetch klines for {symbol}: {e}")
        return None
    return atr(candles, 14)


async def cmd_positions(config: AppConfig, data_dir: Path, args) -> int:
    gateway = build_gateway(config)
    try:
        if not gateway.has_account:
            console.print("[yellow]Binance credentials are required to read positions.[/yellow]")
            return 1
        positions = [p for p in await gateway.fetch_open_positions() if p.amount != 0]
        try:
            equity = await gateway.get_account_equity()
        except Exception as e:
            logger.warning(f"Failed to fetch account equity for equity targets: {e}")
            equity = None
        atrs = await asyncio.gather(*(
            position_atr(gateway, p.symbol, args.interval, config.scanner.kline_limit) for p in positions
        ))
    finally:
        await gateway.close()

    if not positions:
        console.print("[dim]No open positions.[/dim]")
        return 0
    plans = [build_position_plan(p, config.risk, equity, a) for p, a in zip(positions, atrs)]
    render_position_plans(plans)
    return 0


async def cmd_watchlist(config: AppConfig, data_dir: Path, args) -> int:
    store = WatchlistStore(data_dir)
    if args.symbols:
        try:
            watchlist = store.set(args.symbols)
        except WatchlistError as e:
            console.print(f"[red]{e}[/red]")
            return 1
        for warning in store.last_warnings:
            console.print(f"[yellow]! {warning}[/yellow]")
    else:
        watchlist = store.get()
    console.print(f"Watchlist ({len(watchlist.symbols)}): {', '.join(watchlist.symbols)}")
    return 0


COMMANDS = {
    'scan': cmd_scan,
    'serve': cmd_serve,
    'alerts': cmd_alerts,
    'ack': cmd_ack,
    'positions': cmd_positions,
    'watchlist': cmd_watchlist,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='futures-advisor',
        description='Setup scanner and alert monitor for Binance USD-M futures',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  futures-advisor scan
  futures-advisor scan --candles-dir fixtures/
  futures-advisor serve
  futures-advisor alerts --all
  futures-advisor positions --interval 4h
  futures-advisor watchlist BTCUSDC ETHUSDC
        """
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH,
                        help=f'YAML config file (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--data-dir', default=None,
                        help='Directory for watchlist, scan and alert files (default: $DATA_DIR or ./.data)')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: from config)')

    sub = parser.add_subparsers(dest='command', required=True)

    scan = sub.add_parser('scan', help='Run one scan and print the setups')
    scan.add_argument('--candles-dir', default=None,
                      help='Scan {SYMBOL}_{TF}.csv files instead of live data')
    scan.add_argument('--limit', type=int, default=20, help='Rows to show (default: 20)')

    serve = sub.add_parser('serve', help='Run the scanner and alert monitor until interrupted')
    serve.add_argument('--candles-dir', default=None,
                       help='Use {SYMBOL}_{TF}.csv files instead of live data')

    alerts = sub.add_parser('alerts', help='List stored alerts')
    alerts.add_argument('--all', action='store_true', help='Include acknowledged alerts')
    alerts.add_argument('--limit', type=int, default=200, help='Maximum alerts (default: 200)')

    ack = sub.add_parser('ack', help='Acknowledge an alert')
    ack.add_argument('alert_id')

    positions = sub.add_parser('positions', help='Show stop, take-profit and equity targets for open positions')
    positions.add_argument('--interval', default='1h', help='Kline interval for ATR14 (default: 1h)')

    watchlist = sub.add_parser('watchlist', help='Show or replace the watchlist')
    watchlist.add_argument('symbols', nargs='*', help='New symbols (replaces the list)')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        return 2
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config)

    data_dir = resolve_data_dir(args.data_dir or config.data_dir)
    try:
        return asyncio.run(COMMANDS[args.command](config, data_dir, args))
    except ScanAlreadyRunningError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0


if __name__ == '__main__':
    sys.exit(main())
