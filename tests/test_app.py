from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from datastore.reading_store import StoreError
from feed.subscriber import FeedConfig, FeedState, FeedSubscriber, ReconnectPolicy
from models.records import Reading
from services.aggregator import DailyAggregator
from services.cache import LatestReadingCache
from services.ingest import IngestPipeline
from services.readings import ReadingService, build_default_service

from fakes import FakeMqttClient, FlakyStore, wait_for

TOPIC = "@msg/sayhi"


class ServiceHarness:
    def __init__(self) -> None:
        self.mqtt = FakeMqttClient()
        self.store = FlakyStore()
        self.service: ReadingService | None = None

    def build(self) -> ReadingService:
        if self.service is None:
            subscriber = FeedSubscriber(
                FeedConfig(broker_url="mqtt://broker.test", client_id="test", topic=TOPIC),
                client_factory=lambda _cfg: self.mqtt,
                policy=ReconnectPolicy(initial_delay=0.01, max_delay=0.01),
                loop_timeout=0.01,
            )
            pipeline = IngestPipeline(
                cache=LatestReadingCache(),
                store=self.store,
                tz=timezone.utc,
            )
            self.service = ReadingService(
                subscriber=subscriber,
                pipeline=pipeline,
                aggregator=DailyAggregator(),
                shutdown_timeout=1.0,
            )
        return self.service


@pytest.fixture
def harness(monkeypatch) -> ServiceHarness:
    harness = ServiceHarness()

    def build_test_service() -> ReadingService:
        return harness.build()

    build_test_service.cache_clear = lambda: None  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_service", build_test_service)
    monkeypatch.setattr("app.api.build_default_service", build_test_service)
    return harness


@pytest.fixture
def api_client(harness: ServiceHarness) -> Iterator[TestClient]:
    app = create_app()
    with TestClient(app) as client:
        assert wait_for(lambda: harness.service.feed_state is FeedState.subscribed)
        yield client


def test_data_returns_404_before_any_reading(api_client: TestClient) -> None:
    response = api_client.get("/data")

    assert response.status_code == 404
    assert response.json() == {"error": "No data received yet"}


def test_data_returns_latest_ingested_reading(api_client: TestClient, harness: ServiceHarness) -> None:
    harness.mqtt.publish(TOPIC, b'{"temp": 29.5, "humi": 70}')
    harness.mqtt.publish(TOPIC, b"{broken")
    harness.mqtt.publish(TOPIC, b'{"temp": 30.5, "humi": 72}')
    assert wait_for(lambda: len(harness.store.inserted) == 2)

    response = api_client.get("/data")

    assert response.status_code == 200
    payload = response.json()
    assert payload["temp"] == 30.5
    assert payload["humi"] == 72.0
    assert "observed_at" in payload


def test_daily_averages_are_newest_first(api_client: TestClient, harness: ServiceHarness) -> None:
    for temperature, humidity, stamp in [
        (30.0, 60.0, datetime(2024, 1, 1, 10, tzinfo=timezone.utc)),
        (32.0, 64.0, datetime(2024, 1, 1, 14, tzinfo=timezone.utc)),
        (20.0, 50.0, datetime(2024, 1, 2, 9, tzinfo=timezone.utc)),
    ]:
        harness.store.insert(Reading(temperature=temperature, humidity=humidity, observed_at=stamp))

    response = api_client.get("/daily-averages")

    assert response.status_code == 200
    assert response.json() == [
        {"date": "2024-01-02", "avg_temp": 20.0, "avg_humi": 50.0, "count": 1},
        {"date": "2024-01-01", "avg_temp": 31.0, "avg_humi": 62.0, "count": 2},
    ]
    assert api_client.get("/dailyavg").json() == response.json()


def test_daily_averages_window_by_days(api_client: TestClient, harness: ServiceHarness) -> None:
    now = datetime.now(timezone.utc)
    harness.store.insert(Reading(temperature=10.0, humidity=10.0, observed_at=now))
    harness.store.insert(
        Reading(temperature=50.0, humidity=50.0, observed_at=datetime(2000, 1, 1, tzinfo=timezone.utc))
    )

    response = api_client.get("/daily-averages", params={"days": 1})

    assert response.status_code == 200
    assert [row["avg_temp"] for row in response.json()] == [10.0]


def test_daily_averages_rejects_non_positive_days(api_client: TestClient) -> None:
    response = api_client.get("/daily-averages", params={"days": 0})

    assert response.status_code == 422
    assert "error" in response.json()


def test_daily_averages_store_failure_returns_500(api_client: TestClient, harness: ServiceHarness) -> None:
    harness.store.query_error = StoreError("connection refused to db.internal:5432")

    response = api_client.get("/daily-averages")

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch daily averages"}


def test_unknown_route_uses_error_shape(api_client: TestClient) -> None:
    response = api_client.get("/missing")

    assert response.status_code == 404
    assert set(response.json()) == {"error"}


def test_health_reports_feed_state(api_client: TestClient) -> None:
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "feed": "subscribed"}


def test_cors_allows_configured_origin(api_client: TestClient) -> None:
    response = api_client.options(
        "/data",
        headers={
            "Origin": "http://localhost:3001",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "Authorization",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3001"
    allowed_methods = response.headers["access-control-allow-methods"]
    assert "GET" in allowed_methods and "DELETE" not in allowed_methods


def test_cors_rejects_unknown_origin(api_client: TestClient) -> None:
    response = api_client.get("/health", headers={"Origin": "https://evil.example"})

    assert "access-control-allow-origin" not in response.headers


def test_lifespan_closes_feed_on_shutdown(harness: ServiceHarness) -> None:
    app = create_app()

    with TestClient(app):
        assert wait_for(lambda: harness.service.feed_state is FeedState.subscribed)

    assert harness.service.feed_state is FeedState.shutting_down
    assert harness.mqtt.disconnect_calls == 1
    assert harness.service.pipeline.executor._shutdown is True


def test_default_service_is_wired_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("READING_TIMEZONE", "Asia/Bangkok")
    monkeypatch.setenv("PERSIST_WORKERS", "3")
    monkeypatch.setenv("FEED_RECONNECT_MAX_ATTEMPTS", "7")

    service = build_default_service()
    try:
        assert str(service.tz) == "Asia/Bangkok"
        assert service.pipeline.executor._max_workers == 3
        assert service.subscriber.policy.max_attempts == 7
        assert service.subscriber.config.topic == TOPIC
        assert service.feed_state is FeedState.disconnected
    finally:
        service.pipeline.shutdown()
