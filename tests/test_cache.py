from __future__ import annotations

import threading
from datetime import datetime, timezone

from models.records import Reading
from services.cache import LatestReadingCache


def test_cache_starts_empty() -> None:
    assert LatestReadingCache().get() is None


def test_last_write_wins() -> None:
    cache = LatestReadingCache()
    first = Reading(temperature=20.0, humidity=40.0, observed_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    second = Reading(temperature=21.0, humidity=41.0, observed_at=datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc))

    cache.set(first)
    cache.set(second)

    assert cache.get() is second


def test_readers_never_observe_mixed_records() -> None:
    cache = LatestReadingCache()
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cache.set(Reading(temperature=0.0, humidity=0.0, observed_at=stamp))
    stop = threading.Event()
    torn: list[Reading] = []

    def writer() -> None:
        value = 0.0
        while not stop.is_set():
            value += 1.0
            cache.set(Reading(temperature=value, humidity=value, observed_at=stamp))

    def reader() -> None:
        for _ in range(5000):
            reading = cache.get()
            if reading is not None and reading.temperature != reading.humidity:
                torn.append(reading)

    writer_thread = threading.Thread(target=writer)
    readers = [threading.Thread(target=reader) for _ in range(4)]
    writer_thread.start()
    for thread in readers:
        thread.start()
    for thread in readers:
        thread.join()
    stop.set()
    writer_thread.join()

    assert torn == []
