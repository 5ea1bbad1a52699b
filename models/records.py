"""Domain models shared across services."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Reading:
    """A single decoded temperature/humidity observation."""

    temperature: float
    humidity: float
    observed_at: dt.datetime


@dataclass(slots=True)
class DailyBucket:
    """Running sums for every reading that falls on one calendar day."""

    date: dt.date
    sum_temperature: float = 0.0
    sum_humidity: float = 0.0
    count: int = 0

    def add(self, reading: Reading) -> None:
        self.sum_temperature += reading.temperature
        self.sum_humidity += reading.humidity
        self.count += 1


@dataclass(frozen=True, slots=True)
class DailyAverage:
    date: dt.date
    avg_temperature: float
    avg_humidity: float
    count: int
