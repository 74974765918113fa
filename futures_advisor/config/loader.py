"""
Configuration loader: YAML file plus environment overrides
"""
import math
import os
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .models import (
    AppConfig, ScannerConfig, RiskConfig, AlertsConfig, TelegramConfig, ExchangeConfig
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/advisor.yaml"

_TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigError(ValueError):
    """Configuration file could not be used"""


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value]
    return [part.strip() for part in str(value).split(',') if part.strip()]


def parse_float(value: Any) -> float:
    """float() that refuses nan and inf"""
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{value!r} is not finite")
    return number


# env var -> (section, field, parser)
ENV_OVERRIDES: Dict[str, tuple] = {
    'SCANNER_ENABLED': ('scanner', 'enabled', parse_bool),
    'SCANNER_RUN_ON_START': ('scanner', 'run_on_start', parse_bool),
    'SCANNER_INTERVAL_MINUTES': ('scanner', 'interval_minutes', int),
    'SCANNER_TIMEFRAMES': ('scanner', 'timeframes', parse_list),
    'SCANNER_CONCURRENCY': ('scanner', 'concurrency', int),
    'KLINE_LIMIT': ('scanner', 'kline_limit', int),
    'MAX_LEVERAGE': ('risk', 'max_leverage', parse_float),
    'TARGET_ROI_PCT': ('risk', 'target_roi_pct', parse_float),
    'RISK_PER_TRADE_PCT': ('risk', 'risk_per_trade_pct', parse_float),
    'TARGET_RETURN_EQUITY_PCT': ('risk', 'target_return_equity_pct', parse_float),
    'STRETCH_RETURN_EQUITY_PCT': ('risk', 'stretch_return_equity_pct', parse_list),
    'ALERTS_ENABLED': ('alerts', 'enabled', parse_bool),
    'ALERTS_INTERVAL_SECONDS': ('alerts', 'interval_seconds', parse_float),
    'ALERT_DEDUPE_WINDOW_MINUTES': ('alerts', 'dedupe_window_minutes', parse_float),
    'ALERT_LIQUIDATION_DISTANCE_PCT': ('alerts', 'liquidation_distance_pct', parse_float),
    'ALERT_STOP_DISTANCE_PCT': ('alerts', 'stop_distance_pct', parse_float),
    'ALERT_TP_DISTANCE_PCT': ('alerts', 'take_profit_distance_pct', parse_float),
    'ALERT_ENTRY_DISTANCE_PCT': ('alerts', 'entry_distance_pct', parse_float),
    'ALERT_SETUPS_ENTRY_ENABLED': ('alerts', 'setups_entry_enabled', parse_bool),
    'ALERT_TOP_SETUPS_ENABLED': ('alerts', 'top_setups_enabled', parse_bool),
    'ALERT_TOP_SETUPS_COUNT': ('alerts', 'top_setups_count', int),
    'ALERTS_MAX': ('alerts', 'max_alerts', int),
    'TELEGRAM_ENABLED': ('telegram', 'enabled', parse_bool),
    'TELEGRAM_BOT_TOKEN': ('telegram', 'bot_token', str.strip),
    'TELEGRAM_CHAT_ID': ('telegram', 'chat_id', str.strip),
    'BINANCE_API_KEY': ('exchange', 'api_key', str.strip),
    'BINANCE_API_SECRET': ('exchange', 'api_secret', str.strip),
    'BINANCE_FAPI_BASE_URL': ('exchange', 'base_url', str.strip),
    'DATA_DIR': (None, 'data_dir', str.strip),
    'LOG_LEVEL': (None, 'log_level', str.strip),
}

_SECTIONS = {
    'scanner': ScannerConfig,
    'risk': RiskConfig,
    'alerts': AlertsConfig,
    'telegram': TelegramConfig,
    'exchange': ExchangeConfig,
}


def _coerce(name: str, value: Any, default: Any, warnings: List[str]) -> Any:
    """Convert a raw value to the type of its default, keeping the default on failure"""
    if value is None:
        return default
    if default is None:
        return str(value)
    try:
        if isinstance(default, bool):
            return parse_bool(value)
        if isinstance(default, int):
            return int(float(value))
        if isinstance(default, float):
            return parse_float(value)
        if isinstance(default, list):
            return parse_list(value)
    except (TypeError, ValueError, OverflowError):
        warnings.append(f"{name}={value!r} is not a valid number, using {default}")
        return default
    return value


def _build_section(name: str, cls, raw: Any, warnings: List[str]):
    section = cls()
    if raw is None:
        return section
    if not isinstance(raw, Mapping):
        warnings.append(f"{name} section must be a mapping, using defaults")
        return section
    known = {f.name for f in fields(cls)}
    for key, value in raw.items():
        if key not in known:
            warnings.append(f"Unknown config parameter: {name}.{key}")
            continue
        default = getattr(section, key)
        setattr(section, key, _coerce(f"{name}.{key}", value, default, warnings))
    return section


class ConfigLoader:
    """Loads configuration from a YAML file and the environment"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ

    def read_file(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logger.info(f"Config file not found at {self.config_path}, using defaults")
            return {}
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {self.config_path}: {e}") from e
        if data is None:
            logger.warning("Empty config file, using defaults")
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self.config_path} must contain a mapping")
        return data

    def load(self) -> AppConfig:
        data = self.read_file()
        warnings: List[str] = []

        sections = {
            name: _build_section(name, cls, data.get(name), warnings)
            for name, cls in _SECTIONS.items()
        }
        config = AppConfig(**sections)
        for key in ('data_dir', 'log_level', 'log_to_file', 'logs_dir'):
            if key in data:
                setattr(config, key, _coerce(key, data[key], getattr(config, key), warnings))

        self._apply_env(config, warnings)
        config.warnings.extend(warnings)
        config.normalize()

        for warning in config.warnings:
            logger.warning(f"Config: {warning}")
        logger.info(f"Loaded configuration (scan every {config.scanner.interval_minutes}m, "
                    f"timeframes {','.join(config.scanner.timeframes)})")
        return config

    def _apply_env(self, config: AppConfig, warnings: List[str]) -> None:
        for env_name, (section_name, field_name, parser) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw is None or raw == '':
                continue
            target = getattr(config, section_name) if section_name else config
            try:
                setattr(target, field_name, parser(raw))
            except (TypeError, ValueError):
                warnings.append(f"{env_name}={raw!r} is not valid, keeping {getattr(target, field_name)}")

    def save(self, config: AppConfig) -> None:
        """Write the non-secret settings back to YAML"""
        data = {
            'log_level': config.log_level,
            'log_to_file': config.log_to_file,
            'logs_dir': config.logs_dir,
            'scanner': _section_dict(config.scanner),
            'risk': _section_dict(config.risk),
            'alerts': _section_dict(config.alerts),
            'telegram': {'enabled': config.telegram.enabled},
        }
        if config.data_dir:
            data['data_dir'] = config.data_dir
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, indent=2)
        logger.info(f"Configuration saved to {self.config_path}")


def _section_dict(section) -> Dict[str, Any]:
    return {f.name: getattr(section, f.name) for f in fields(section)}


def load_config(config_path: str = DEFAULT_CONFIG_PATH, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Convenience function to load configuration"""
    return ConfigLoader(config_path, environ).load()
