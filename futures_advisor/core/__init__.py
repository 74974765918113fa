"""
Core services: exchange access, scanning and alerting
"""

from .exchange_gateway import ExchangeError, ExchangeGateway, LiveExchangeGateway, FrozenExchangeGateway
from .batch import BatchOutcome, map_with_concurrency
from .scanner import ScanAlreadyRunningError, ScannerService, ScannerStatus, run_setup_scan
from .alert_store import AlertStore
from .alert_monitor import AlertMonitor

__all__ = [
    'ExchangeError', 'ExchangeGateway', 'LiveExchangeGateway', 'FrozenExchangeGateway',
    'BatchOutcome', 'map_with_concurrency',
    'ScanAlreadyRunningError', 'ScannerService', 'ScannerStatus', 'run_setup_scan',
    'AlertStore', 'AlertMonitor'
]
