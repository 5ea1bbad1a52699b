"""Decode feed payloads, update the latest reading and persist it."""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, tzinfo
from threading import BoundedSemaphore, Lock
from typing import Callable, Deque, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict, ValidationError

from datastore.reading_store import ReadingStore, StoreError
from feed.subscriber import FeedDisconnectedError, FeedMessage
from models.records import Reading
from services.cache import LatestReadingCache

logger = logging.getLogger(__name__)


class FeedPayload(BaseModel):
    """Wire format published by the sensor node."""

    model_config = ConfigDict(strict=True, extra="ignore", allow_inf_nan=False)

    temp: float
    humi: float


class IngestPipeline:
    """Sequential ingestion with persistence offloaded to a bounded pool."""

    def __init__(
        self,
        cache: LatestReadingCache,
        store: ReadingStore,
        tz: tzinfo,
        workers: int = 2,
        max_pending: int = 100,
        persist_attempts: int = 1,
        dead_letter_size: int = 100,
        clock: Optional[Callable[[tzinfo], datetime]] = None,
    ) -> None:
        self.cache = cache
        self.store = store
        self.tz = tz
        self.persist_attempts = max(1, persist_attempts)
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="persist")
        self._slots = BoundedSemaphore(max_pending)
        self._pending: Set[Future[None]] = set()
        self._pending_lock = Lock()
        self._dead_letters: Deque[Reading] = deque(maxlen=dead_letter_size)
        self._clock = clock or (lambda zone: datetime.now(zone))

    @property
    def dead_letters(self) -> List[Reading]:
        with self._pending_lock:
            return list(self._dead_letters)

    def run(self, messages: Iterable[FeedMessage]) -> None:
        """Consume ``messages`` until the stream ends."""
        try:
            for message in messages:
                self.handle(message.payload)
        except FeedDisconnectedError:
            logger.exception("Feed subscription terminated")
        logger.info("Ingestion stopped")

    def handle(self, payload: bytes) -> Optional[Reading]:
        """Ingest one raw payload; returns the reading or None if it was dropped."""
        try:
            decoded = FeedPayload.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning(
                "Dropping malformed payload",
                extra={"reason": _summarize(exc)},
            )
            return None

        reading = Reading(
            temperature=decoded.temp,
            humidity=decoded.humi,
            observed_at=self._clock(self.tz),
        )
        self.cache.set(reading)
        logger.info(
            "Received reading",
            extra={
                "temperature": reading.temperature,
                "humidity": reading.humidity,
                "observed_at": reading.observed_at.isoformat(),
            },
        )
        self._submit(reading)
        return reading

    def shutdown(self, timeout: float = 5.0) -> None:
        """Wait up to ``timeout`` seconds for in-flight writes, then abandon the rest."""
        with self._pending_lock:
            pending = set(self._pending)
        if pending:
            logger.info("Waiting for pending writes", extra={"pending": len(pending)})
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                logger.warning(
                    "Abandoning writes still pending at shutdown",
                    extra={"pending": len(not_done)},
                )
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _submit(self, reading: Reading) -> None:
        # Blocks ingestion once max_pending writes are outstanding.
        self._slots.acquire()
        try:
            future = self.executor.submit(self._persist, reading)
        except RuntimeError:
            self._slots.release()
            logger.error("Persist pool is shut down; reading not stored")
            return
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._release)

    def _release(self, future: Future[None]) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        self._slots.release()
        if not future.cancelled() and future.exception() is not None:
            logger.error("Unexpected persist failure", exc_info=future.exception())

    def _persist(self, reading: Reading) -> None:
        for attempt in range(1, self.persist_attempts + 1):
            try:
                self.store.insert(reading)
            except StoreError as exc:
                logger.error(
                    "Error inserting reading into store",
                    extra={"attempt": attempt, "reason": str(exc)},
                )
                continue
            logger.debug("Reading stored", extra={"attempt": attempt})
            return

        with self._pending_lock:
            self._dead_letters.append(reading)
        logger.error(
            "Reading dropped after exhausting persist attempts",
            extra={"attempt": self.persist_attempts, "observed_at": reading.observed_at.isoformat()},
        )


def _summarize(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg', 'invalid')}"
