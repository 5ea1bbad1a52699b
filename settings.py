from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


_BROKER_URL_ENV = "FEED_BROKER_URL"
_CLIENT_ID_ENV = "FEED_CLIENT_ID"
_USERNAME_ENV = "FEED_USERNAME"
_PASSWORD_ENV = "FEED_PASSWORD"
_TOPIC_ENV = "FEED_TOPIC"
_KEEPALIVE_ENV = "FEED_KEEPALIVE"
_RECONNECT_INITIAL_ENV = "FEED_RECONNECT_INITIAL_DELAY"
_RECONNECT_MAX_ENV = "FEED_RECONNECT_MAX_DELAY"
_RECONNECT_ATTEMPTS_ENV = "FEED_RECONNECT_MAX_ATTEMPTS"
_FEED_QUEUE_ENV = "FEED_QUEUE_SIZE"
_STORE_BACKEND_ENV = "READING_STORE_BACKEND"
_STORE_URL_ENV = "READING_STORE_URL"
_STORE_KEY_ENV = "READING_STORE_KEY"
_STORE_TABLE_ENV = "READING_STORE_TABLE"
_STORE_PATH_ENV = "READING_STORE_PATH"
_TIMEZONE_ENV = "READING_TIMEZONE"
_CORS_ORIGINS_ENV = "CORS_ORIGINS"
_PERSIST_WORKERS_ENV = "PERSIST_WORKERS"
_PERSIST_QUEUE_ENV = "PERSIST_QUEUE_SIZE"
_PERSIST_ATTEMPTS_ENV = "PERSIST_ATTEMPTS"
_SHUTDOWN_TIMEOUT_ENV = "SHUTDOWN_TIMEOUT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

STORE_BACKENDS = ("rest", "local")
BROKER_SCHEMES = ("mqtt", "mqtts", "tcp", "ssl", "ws", "wss")


class ConfigurationError(ValueError):
    """Raised when required process configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    feed_broker_url: str
    feed_client_id: str
    feed_username: Optional[str]
    feed_password: Optional[str]
    feed_topic: str
    feed_keepalive: int
    feed_reconnect_initial_delay: float
    feed_reconnect_max_delay: float
    feed_reconnect_max_attempts: Optional[int]
    feed_queue_size: int
    store_backend: str
    store_url: Optional[str]
    store_key: Optional[str]
    store_table: str
    store_path: Optional[str]
    reading_timezone: str
    cors_origins: Tuple[str, ...]
    persist_workers: int
    persist_queue_size: int
    persist_attempts: int
    shutdown_timeout: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_int(name: str) -> Optional[int]:
    value = _read_optional_env(name)
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_origins(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    return tuple(origin.strip() for origin in value.split(",") if origin.strip())


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


def _validate(settings: Settings) -> None:
    missing: list[str] = []
    if not settings.feed_broker_url:
        missing.append(_BROKER_URL_ENV)
    if not settings.feed_client_id:
        missing.append(_CLIENT_ID_ENV)
    if not settings.feed_topic:
        missing.append(_TOPIC_ENV)
    if settings.feed_password and not settings.feed_username:
        missing.append(_USERNAME_ENV)

    if settings.store_backend not in STORE_BACKENDS:
        raise ConfigurationError(
            f"{_STORE_BACKEND_ENV} must be one of {', '.join(STORE_BACKENDS)}, "
            f"got {settings.store_backend!r}."
        )
    if settings.store_backend == "rest":
        if not settings.store_url:
            missing.append(_STORE_URL_ENV)
        if not settings.store_key:
            missing.append(_STORE_KEY_ENV)

    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}"
        )

    broker = urlparse(settings.feed_broker_url)
    if broker.scheme.lower() not in BROKER_SCHEMES or not broker.hostname:
        raise ConfigurationError(
            f"{_BROKER_URL_ENV} must look like scheme://host[:port][/path] with scheme "
            f"one of {', '.join(BROKER_SCHEMES)}, got {settings.feed_broker_url!r}."
        )

    try:
        ZoneInfo(settings.reading_timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(
            f"{_TIMEZONE_ENV} is not a known timezone: {settings.reading_timezone!r}"
        ) from exc


@lru_cache
def get_settings() -> Settings:
    settings = Settings(
        feed_broker_url=_read_str_env(_BROKER_URL_ENV, ""),
        feed_client_id=_read_str_env(_CLIENT_ID_ENV, ""),
        feed_username=_read_optional_env(_USERNAME_ENV),
        feed_password=_read_optional_env(_PASSWORD_ENV),
        feed_topic=_read_str_env(_TOPIC_ENV, ""),
        feed_keepalive=_read_positive_int(_KEEPALIVE_ENV, 60),
        feed_reconnect_initial_delay=_read_positive_float(_RECONNECT_INITIAL_ENV, 1.0),
        feed_reconnect_max_delay=_read_positive_float(_RECONNECT_MAX_ENV, 30.0),
        feed_reconnect_max_attempts=_read_optional_int(_RECONNECT_ATTEMPTS_ENV),
        feed_queue_size=_read_positive_int(_FEED_QUEUE_ENV, 1000),
        store_backend=_read_str_env(_STORE_BACKEND_ENV, "rest").lower(),
        store_url=_read_optional_env(_STORE_URL_ENV),
        store_key=_read_optional_env(_STORE_KEY_ENV),
        store_table=_read_str_env(_STORE_TABLE_ENV, "sensor_readings"),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.json"),
        reading_timezone=_read_str_env(_TIMEZONE_ENV, "Asia/Bangkok"),
        cors_origins=_read_origins(_CORS_ORIGINS_ENV),
        persist_workers=_read_positive_int(_PERSIST_WORKERS_ENV, 2),
        persist_queue_size=_read_positive_int(_PERSIST_QUEUE_ENV, 100),
        persist_attempts=_read_positive_int(_PERSIST_ATTEMPTS_ENV, 1),
        shutdown_timeout=_read_positive_float(_SHUTDOWN_TIMEOUT_ENV, 5.0),
        log_level=_read_log_level("INFO"),
    )
    _validate(settings)
    return settings
