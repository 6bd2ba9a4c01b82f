"""Config loading utilities for the snapshot service."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

from .retry import RetryPolicy

MIN_POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_INTERVAL_SECONDS = 24 * 60 * 60.0
VALID_LOG_LEVELS = {"debug", "info", "warn", "warning", "error"}
VALID_LOG_FORMATS = {"json", "text"}


class ConfigError(ValueError):
    """Raised when configuration values are out of range."""


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_backoff_seconds: float = 0.1
    max_backoff_seconds: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_backoff=self.initial_backoff_seconds,
            max_backoff=self.max_backoff_seconds,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )


@dataclass
class ExchangeConfig:
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    timeout_seconds: float = 10.0
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class PollerConfig:
    interval_seconds: float = 30.0
    stop_grace_seconds: float = 10.0
    retention_days: int = 30
    prune_interval_seconds: float = 3600.0


@dataclass
class PersistenceConfig:
    database_path: str = "var/snapshots.db"
    metrics_file: str = "var/metrics.prom"
    emit_metrics_textfile: bool = False


@dataclass
class DashboardConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    enable: bool = True


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "json"


@dataclass
class AppConfig:
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Raise :class:`ConfigError` for values the service cannot run with."""

        if not 1 <= self.dashboard.port <= 65535:
            raise ConfigError(f"invalid server port: {self.dashboard.port}")
        if not self.persistence.database_path:
            raise ConfigError("database path is required")
        interval = self.poller.interval_seconds
        if interval < MIN_POLL_INTERVAL_SECONDS:
            raise ConfigError("poller interval must be at least 5 seconds")
        if interval > MAX_POLL_INTERVAL_SECONDS:
            raise ConfigError("poller interval must be less than 24 hours")
        if self.poller.retention_days < 0:
            raise ConfigError("retention_days must be >= 0")
        if self.logging.level.lower() not in VALID_LOG_LEVELS:
            raise ConfigError(f"invalid log level: {self.logging.level}")
        if self.logging.format.lower() not in VALID_LOG_FORMATS:
            raise ConfigError(f"invalid log format: {self.logging.format}")
        try:
            self.exchange.retry.to_policy()
        except ValueError as exc:
            raise ConfigError(f"invalid retry settings: {exc}") from exc


_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """Parse ``30s``, ``500ms``, ``2m`` or a bare number of seconds."""

    text = value.strip().lower()
    for suffix in ("ms", "s", "m", "h"):
        if text.endswith(suffix):
            return float(text[: -len(suffix)]) * _DURATION_UNITS[suffix]
    return float(text)


# (section, attribute, environment variable, parser)
ENV_OVERRIDES = [
    ("exchange", "base_url", "EXCHANGE_BASE_URL", str),
    ("exchange", "timeout_seconds", "EXCHANGE_TIMEOUT", parse_duration),
    ("retry", "max_retries", "EXCHANGE_MAX_RETRIES", int),
    ("retry", "initial_backoff_seconds", "EXCHANGE_RETRY_BACKOFF", parse_duration),
    ("poller", "interval_seconds", "POLLER_INTERVAL", parse_duration),
    ("poller", "retention_days", "POLLER_RETENTION_DAYS", int),
    ("persistence", "database_path", "DATABASE_PATH", str),
    ("dashboard", "host", "SERVER_HOST", str),
    ("dashboard", "port", "SERVER_PORT", int),
    ("logging", "level", "LOG_LEVEL", str),
    ("logging", "format", "LOG_FORMAT", str),
]


def load_config(path: Optional[str | Path] = None, environ: Optional[Dict[str, str]] = None) -> AppConfig:
    """Load YAML config from ``path``, then apply environment overrides.

    A missing file is not an error: defaults are used instead.
    """

    raw: Dict[str, Any] = {}
    if path is not None:
        resolved = Path(path).expanduser().resolve()
        if resolved.exists():
            with resolved.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        else:
            logging.getLogger(__name__).warning("Config file %s not found, using defaults", resolved)

    exchange = raw.get("exchange") or {}
    retry = exchange.get("retry") or {}
    poller = raw.get("poller") or {}
    persistence = raw.get("persistence") or {}
    dashboard = raw.get("dashboard") or {}
    log_cfg = raw.get("logging") or {}

    config = AppConfig(
        exchange=ExchangeConfig(
            name=exchange.get("name", "binance"),
            base_url=exchange.get("base_url", "https://api.binance.com"),
            timeout_seconds=float(exchange.get("timeout_seconds", 10.0)),
            retry=RetryConfig(
                max_retries=int(retry.get("max_retries", 3)),
                initial_backoff_seconds=float(retry.get("initial_backoff_seconds", 0.1)),
                max_backoff_seconds=float(retry.get("max_backoff_seconds", 10.0)),
                multiplier=float(retry.get("multiplier", 2.0)),
                jitter=float(retry.get("jitter", 0.1)),
            ),
        ),
        poller=PollerConfig(
            interval_seconds=float(poller.get("interval_seconds", 30.0)),
            stop_grace_seconds=float(poller.get("stop_grace_seconds", 10.0)),
            retention_days=int(poller.get("retention_days", 30)),
            prune_interval_seconds=float(poller.get("prune_interval_seconds", 3600.0)),
        ),
        persistence=PersistenceConfig(
            database_path=persistence.get("database_path", "var/snapshots.db"),
            metrics_file=persistence.get("metrics_file", "var/metrics.prom"),
            emit_metrics_textfile=bool(persistence.get("emit_metrics_textfile", False)),
        ),
        dashboard=DashboardConfig(
            host=dashboard.get("host", "0.0.0.0"),
            port=int(dashboard.get("port", 8080)),
            enable=bool(dashboard.get("enable", True)),
        ),
        logging=LoggingConfig(
            level=log_cfg.get("level", "info"),
            format=log_cfg.get("format", "json"),
        ),
    )
    apply_env_overrides(config, os.environ if environ is None else environ)
    return config


def apply_env_overrides(config: AppConfig, environ: Dict[str, str]) -> None:
    """Override config values from environment variables that parse cleanly."""

    sections: Dict[str, Any] = {
        "exchange": config.exchange,
        "retry": config.exchange.retry,
        "poller": config.poller,
        "persistence": config.persistence,
        "dashboard": config.dashboard,
        "logging": config.logging,
    }
    for section, attribute, key, parser in ENV_OVERRIDES:
        value = environ.get(key)
        if not value:
            continue
        parsed = _parse(value, parser)
        if parsed is None:
            logging.getLogger(__name__).warning("Ignoring unparseable %s=%r", key, value)
            continue
        setattr(sections[section], attribute, parsed)


def _parse(value: str, parser: Callable[[str], Any]) -> Any:
    try:
        return parser(value)
    except ValueError:
        return None


__all__ = [
    "load_config",
    "apply_env_overrides",
    "AppConfig",
    "ConfigError",
    "DashboardConfig",
    "ExchangeConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "PollerConfig",
    "RetryConfig",
]
