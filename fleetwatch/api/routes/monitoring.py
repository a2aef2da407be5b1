"""Monitoring session and ingestion endpoints."""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, status

from fleetwatch.api.auth import verify_api_key
from fleetwatch.api.dependencies import get_monitoring_service
from fleetwatch.api.models import (
    AlertItem,
    AlertsResponse,
    ErrorResponse,
    MonitoringSessionResponse,
    SnapshotRequest,
)
from fleetwatch.monitoring.schemas import parse_datetime
from fleetwatch.monitoring.service import MonitoringService

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/entities/{entity_id}/monitoring",
    response_model=MonitoringSessionResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Start monitoring an entity",
)
async def start_monitoring(
    entity_id: str = Path(..., min_length=1, description="Entity identifier"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> MonitoringSessionResponse:
    started = await service.start_monitoring(entity_id)
    return MonitoringSessionResponse(entity_id=entity_id, monitoring=True, changed=started)


@router.delete(
    "/entities/{entity_id}/monitoring",
    response_model=MonitoringSessionResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Stop monitoring an entity",
    description=(
        "Queued snapshots are rejected and no new alerts are created. "
        "Notifications already queued still go out."
    ),
)
async def stop_monitoring(
    entity_id: str = Path(..., min_length=1, description="Entity identifier"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> MonitoringSessionResponse:
    stopped = await service.stop_monitoring(entity_id)
    return MonitoringSessionResponse(entity_id=entity_id, monitoring=False, changed=stopped)


@router.post(
    "/entities/{entity_id}/snapshots",
    response_model=AlertsResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        409: {"model": ErrorResponse, "description": "Entity is not monitored"},
        422: {"model": ErrorResponse, "description": "Invalid snapshot"},
    },
    summary="Submit a metric snapshot",
    description="Evaluate one snapshot and return the alerts it produced.",
)
async def submit_snapshot(
    body: SnapshotRequest,
    entity_id: str = Path(..., min_length=1, description="Entity identifier"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> AlertsResponse:
    start_time = time.perf_counter()

    timestamp = None
    if body.timestamp:
        try:
            timestamp = parse_datetime(body.timestamp)
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid timestamp {body.timestamp!r}: {e}",
            )

    alerts = await service.process_real_time_data(entity_id, body.metrics, timestamp)

    items = [AlertItem.from_alert(a) for a in alerts]
    latency_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Snapshot processed",
        entity_id=entity_id,
        alerts=len(items),
        latency_ms=round(latency_ms, 2),
    )
    return AlertsResponse(alerts=items, total=len(items), latency_ms=round(latency_ms, 2))
