from __future__ import annotations

from typing import Iterator

import pytest

from datastore.reading_store import build_default_store
from services.readings import build_default_service
from settings import get_settings

BASE_ENV = {
    "FEED_BROKER_URL": "wss://broker.test:443/mqtt",
    "FEED_CLIENT_ID": "test-client",
    "FEED_TOPIC": "@msg/sayhi",
    "READING_STORE_BACKEND": "local",
    "READING_TIMEZONE": "UTC",
    "CORS_ORIGINS": "http://localhost:3001",
}


def _clear_caches() -> None:
    for cache in (get_settings, build_default_store, build_default_service):
        cache.cache_clear()


@pytest.fixture(autouse=True)
def base_environment(monkeypatch, tmp_path) -> Iterator[None]:
    for name, value in BASE_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("READING_STORE_PATH", str(tmp_path / "readings.json"))
    _clear_caches()
    yield
    _clear_caches()
