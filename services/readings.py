"""Runtime orchestration: feed subscription, ingestion and queries."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, tzinfo
from functools import lru_cache
from typing import List, Optional
from zoneinfo import ZoneInfo

from datastore.reading_store import ReadingStore, build_default_store
from feed.subscriber import FeedConfig, FeedState, FeedSubscriber, ReconnectPolicy
from models.records import DailyAverage, Reading
from services.aggregator import DailyAggregator
from services.cache import LatestReadingCache
from services.ingest import IngestPipeline
from settings import get_settings

logger = logging.getLogger(__name__)


class ReadingService:
    """Coordinates the feed subscription, ingestion and read queries."""

    def __init__(
        self,
        subscriber: FeedSubscriber,
        pipeline: IngestPipeline,
        aggregator: DailyAggregator,
        shutdown_timeout: float = 5.0,
    ) -> None:
        self.subscriber = subscriber
        self.pipeline = pipeline
        self.aggregator = aggregator
        self.shutdown_timeout = shutdown_timeout
        self._ingest_thread: Optional[threading.Thread] = None

    @property
    def cache(self) -> LatestReadingCache:
        return self.pipeline.cache

    @property
    def store(self) -> ReadingStore:
        return self.pipeline.store

    @property
    def tz(self) -> tzinfo:
        return self.pipeline.tz

    @property
    def feed_state(self) -> FeedState:
        return self.subscriber.state

    def start(self) -> None:
        """Connect to the feed and start consuming it on a background thread."""
        if self._ingest_thread is not None:
            return
        subscription = self.subscriber.connect()
        self._ingest_thread = threading.Thread(
            target=self.pipeline.run,
            args=(subscription,),
            name="ingest",
            daemon=True,
        )
        self._ingest_thread.start()
        logger.info("Ingestion started", extra={"topic": self.subscriber.config.topic})

    def latest(self) -> Optional[Reading]:
        return self.cache.get()

    def daily_averages(self, days: Optional[int] = None) -> List[DailyAverage]:
        """Recompute per-day averages from stored history.

        ``days`` limits the window to the last N calendar days in the service
        timezone, today included. Raises ``StoreError`` if the store fails.
        """
        since: Optional[datetime] = None
        if days is not None:
            today = datetime.now(self.tz).date()
            start = today - timedelta(days=days - 1)
            since = datetime(start.year, start.month, start.day, tzinfo=self.tz)
        readings = self.store.query_all(since=since)
        return self.aggregator.compute_daily_averages(readings, self.tz)

    def shutdown(self) -> None:
        """Close the feed first, then drain pending writes within the timeout."""
        self.subscriber.close(timeout=self.shutdown_timeout)
        if self._ingest_thread is not None:
            self._ingest_thread.join(timeout=self.shutdown_timeout)
        self.pipeline.shutdown(timeout=self.shutdown_timeout)


@lru_cache
def build_default_service() -> ReadingService:
    """Factory that wires the service from process settings."""
    settings = get_settings()
    feed_config = FeedConfig(
        broker_url=settings.feed_broker_url,
        client_id=settings.feed_client_id,
        topic=settings.feed_topic,
        username=settings.feed_username,
        password=settings.feed_password,
        keepalive=settings.feed_keepalive,
        queue_size=settings.feed_queue_size,
    )
    policy = ReconnectPolicy(
        initial_delay=settings.feed_reconnect_initial_delay,
        max_delay=settings.feed_reconnect_max_delay,
        max_attempts=settings.feed_reconnect_max_attempts,
    )
    pipeline = IngestPipeline(
        cache=LatestReadingCache(),
        store=build_default_store(),
        tz=ZoneInfo(settings.reading_timezone),
        workers=settings.persist_workers,
        max_pending=settings.persist_queue_size,
        persist_attempts=settings.persist_attempts,
    )
    return ReadingService(
        subscriber=FeedSubscriber(feed_config, policy=policy),
        pipeline=pipeline,
        aggregator=DailyAggregator(),
        shutdown_timeout=settings.shutdown_timeout,
    )
