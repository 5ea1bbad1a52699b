from __future__ import annotations

import json
from datetime import datetime, timezone, tzinfo
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo

import httpx

from models.records import Reading
from settings import get_settings

_LOCALE_FORMAT = "%m/%d/%Y, %I:%M:%S %p"


class StoreError(RuntimeError):
    """Raised when the reading store cannot complete a read or write."""


class ReadingStore(Protocol):
    def insert(self, reading: Reading) -> None:
        ...

    def query_all(self, since: Optional[datetime] = None) -> List[Reading]:
        """Return every stored reading newer than ``since``, newest first."""
        ...


def parse_timestamp(value: str, tz: tzinfo = timezone.utc) -> datetime:
    """Parse a stored timestamp; values without an offset are wall-clock time in ``tz``."""
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        # Rows written by the earlier Node service use en-US locale strings.
        try:
            parsed = datetime.strptime(candidate, _LOCALE_FORMAT)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)

    return parsed


def _to_row(reading: Reading) -> Dict[str, Any]:
    return {
        "temperature": reading.temperature,
        "humidity": reading.humidity,
        "timestamp": reading.observed_at.isoformat(),
    }


def _from_row(row: Dict[str, Any], tz: tzinfo) -> Reading:
    try:
        return Reading(
            temperature=float(row["temperature"]),
            humidity=float(row["humidity"]),
            observed_at=parse_timestamp(str(row["timestamp"]), tz),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"Malformed reading row: {row!r}") from exc


def _newest_first(readings: List[Reading], since: Optional[datetime]) -> List[Reading]:
    if since is not None:
        readings = [reading for reading in readings if reading.observed_at >= since]
    return sorted(readings, key=lambda reading: reading.observed_at, reverse=True)


class LocalReadingStore:
    """In-process append-only store with optional JSON file persistence."""

    def __init__(
        self,
        name: str,
        persistence_path: Optional[Path] = None,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self.name = name
        self.tz = tz
        self._readings: List[Reading] = []
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert(self, reading: Reading) -> None:
        with self._lock:
            self._readings.append(reading)
            try:
                self._persist()
            except OSError as exc:
                self._readings.pop()
                raise StoreError(f"Could not persist reading to {self.persistence_path}") from exc

    def query_all(self, since: Optional[datetime] = None) -> List[Reading]:
        with self._lock:
            readings = list(self._readings)
        return _newest_first(readings, since)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {self.name: [_to_row(reading) for reading in self._readings]}
        self.persistence_path.write_text(json.dumps(payload, indent=2))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for row in data.get(self.name, []):
            self._readings.append(_from_row(row, self.tz))


class RestReadingStore:
    """Reading table exposed through a PostgREST (Supabase) endpoint.

    ``query_all`` pages with a timestamp cursor rather than a running offset so
    rows inserted while a scan is in progress never shift a page boundary.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str,
        page_size: int = 1000,
        client: Optional[httpx.Client] = None,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self.table = table
        self.page_size = page_size
        self.tz = tz
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=10.0)
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
        }

    def close(self) -> None:
        self._client.close()

    def insert(self, reading: Reading) -> None:
        try:
            response = self._client.post(
                f"/rest/v1/{self.table}",
                json=[_to_row(reading)],
                headers={**self._headers, "Prefer": "return=minimal"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError(f"Insert into {self.table!r} failed: {exc}") from exc

    def query_all(self, since: Optional[datetime] = None) -> List[Reading]:
        readings: List[Reading] = []
        cursor: Optional[datetime] = None
        # Rows already returned that share the cursor timestamp.
        skip = 0
        while True:
            page = self._fetch_page(since, cursor, skip)
            readings.extend(page)
            if len(page) < self.page_size:
                return readings

            last = page[-1].observed_at
            if cursor is not None and last == cursor:
                skip += len(page)
            else:
                cursor = last
                skip = sum(1 for reading in page if reading.observed_at == last)

    def _fetch_page(
        self, since: Optional[datetime], cursor: Optional[datetime], skip: int
    ) -> List[Reading]:
        params: List[Tuple[str, Any]] = [
            ("select", "timestamp,temperature,humidity"),
            ("order", "timestamp.desc"),
            ("limit", self.page_size),
        ]
        if since is not None:
            params.append(("timestamp", f"gte.{since.isoformat()}"))
        if cursor is not None:
            params.append(("timestamp", f"lte.{cursor.isoformat()}"))
        if skip:
            params.append(("offset", skip))
        try:
            response = self._client.get(
                f"/rest/v1/{self.table}", params=params, headers=self._headers
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreError(f"Query of {self.table!r} failed: {exc}") from exc

        if not isinstance(rows, list):
            raise StoreError(f"Unexpected response payload from {self.table!r}.")
        return [_from_row(row, self.tz) for row in rows]


@lru_cache
def build_default_store() -> ReadingStore:
    settings = get_settings()
    tz = ZoneInfo(settings.reading_timezone)
    if settings.store_backend == "local":
        path = Path(settings.store_path) if settings.store_path else None
        return LocalReadingStore(name=settings.store_table, persistence_path=path, tz=tz)
    assert settings.store_url and settings.store_key
    return RestReadingStore(
        base_url=settings.store_url,
        api_key=settings.store_key,
        table=settings.store_table,
        tz=tz,
    )
