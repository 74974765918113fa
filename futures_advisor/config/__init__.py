"""
Configuration package for the futures advisor
"""

from .models import (
    AppConfig, ScannerConfig, RiskConfig, AlertsConfig,
    TelegramConfig, ExchangeConfig
)
from .loader import ConfigError, ConfigLoader, load_config

__all__ = [
    'AppConfig', 'ScannerConfig', 'RiskConfig', 'AlertsConfig',
    'TelegramConfig', 'ExchangeConfig', 'ConfigError', 'ConfigLoader', 'load_config'
]
