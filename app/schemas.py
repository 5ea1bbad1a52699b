"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field

from models.records import DailyAverage, Reading


class LatestReadingResponse(BaseModel):
    """Most recently received reading."""

    temp: float = Field(..., description="Temperature reported by the sensor.")
    humi: float = Field(..., description="Relative humidity reported by the sensor.")
    observed_at: dt.datetime = Field(..., description="Ingestion time of the reading.")

    @classmethod
    def from_reading(cls, reading: Reading) -> "LatestReadingResponse":
        return cls(
            temp=reading.temperature,
            humi=reading.humidity,
            observed_at=reading.observed_at,
        )


class DailyAverageResponse(BaseModel):
    """Averages for one calendar day."""

    date: dt.date
    avg_temp: float
    avg_humi: float
    count: int = Field(..., ge=1, description="Number of readings on this day.")

    @classmethod
    def from_average(cls, average: DailyAverage) -> "DailyAverageResponse":
        return cls(
            date=average.date,
            avg_temp=average.avg_temperature,
            avg_humi=average.avg_humidity,
            count=average.count,
        )


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    feed: str
