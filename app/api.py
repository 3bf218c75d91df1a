"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import ErrorResponse, HealthStatus, SensorReading
from errors import ReadingNotFoundError, StorageUnavailableError
from services.intake import TelemetryIntake, build_default_intake
from services.readings import ReadingService, build_default_reading_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_reading_service() -> ReadingService:
    return build_default_reading_service()


def get_intake() -> TelemetryIntake:
    return build_default_intake()


@router.get(
    "/api/readings/recent",
    response_model=list[SensorReading],
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}},
    summary="Most recent readings, newest first.",
)
async def recent_readings(
    limit: Optional[str] = Query(
        None, description="Maximum number of readings; invalid or non-positive values mean 20."
    ),
    service: ReadingService = Depends(get_reading_service),
) -> list[SensorReading]:
    try:
        return await service.fetch_recent(limit)
    except StorageUnavailableError as exc:
        logger.error("Recent readings query failed", extra={"limit": limit, "reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch readings",
        ) from exc


@router.get(
    "/api/readings/latest",
    response_model=SensorReading,
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
    summary="The most recent reading.",
)
async def latest_reading(
    service: ReadingService = Depends(get_reading_service),
) -> SensorReading:
    try:
        return await service.fetch_latest()
    except ReadingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No readings available",
        ) from exc
    except StorageUnavailableError as exc:
        logger.error("Latest reading query failed", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch latest reading",
        ) from exc


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(intake: TelemetryIntake = Depends(get_intake)) -> HealthStatus:
    return HealthStatus(
        mqtt_connected=intake.is_connected,
        live_clients=intake.hub.connection_count,
        messages_received=intake.stats.received,
        readings_stored=intake.stats.stored,
        messages_rejected=intake.stats.rejected,
    )
