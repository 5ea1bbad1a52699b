"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    DailyAverageResponse,
    ErrorResponse,
    HealthResponse,
    LatestReadingResponse,
)
from datastore.reading_store import StoreError
from services.readings import ReadingService, build_default_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service() -> ReadingService:
    return build_default_service()


@router.get(
    "/data",
    response_model=LatestReadingResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Most recently received sensor reading.",
)
async def get_latest_reading(
    service: ReadingService = Depends(get_service),
) -> LatestReadingResponse:
    reading = service.latest()
    if reading is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No data received yet",
        )
    return LatestReadingResponse.from_reading(reading)


@router.get(
    "/daily-averages",
    response_model=List[DailyAverageResponse],
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}},
    summary="Per-day temperature and humidity averages, newest day first.",
)
@router.get("/dailyavg", response_model=List[DailyAverageResponse], include_in_schema=False)
def get_daily_averages(
    days: Optional[int] = Query(
        default=None, ge=1, description="Only include the last N calendar days."
    ),
    service: ReadingService = Depends(get_service),
) -> List[DailyAverageResponse]:
    try:
        averages = service.daily_averages(days=days)
    except StoreError as exc:
        logger.error("Error fetching daily averages", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch daily averages",
        ) from exc
    return [DailyAverageResponse.from_average(average) for average in averages]


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(service: ReadingService = Depends(get_service)) -> HealthResponse:
    return HealthResponse(status="ok", feed=service.feed_state.value)
