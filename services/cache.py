from __future__ import annotations

from threading import Lock
from typing import Optional

from models.records import Reading


class LatestReadingCache:
    """Single-slot holder for the most recently decoded reading.

    Readings are immutable, so swapping the reference under the lock is
    enough for readers to always see a complete record.
    """

    def __init__(self) -> None:
        self._reading: Optional[Reading] = None
        self._lock = Lock()

    def set(self, reading: Reading) -> None:
        with self._lock:
            self._reading = reading

    def get(self) -> Optional[Reading]:
        with self._lock:
            return self._reading
