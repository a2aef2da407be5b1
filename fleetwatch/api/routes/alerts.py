"""Alert endpoints: open alerts, summaries and lifecycle transitions."""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from fleetwatch.api.auth import verify_api_key
from fleetwatch.api.dependencies import get_monitoring_service
from fleetwatch.api.models import (
    AcknowledgeRequest,
    AlertItem,
    AlertsResponse,
    AlertSummaryResponse,
    ErrorResponse,
    ResolveRequest,
)
from fleetwatch.monitoring.schemas import VALID_SEVERITIES
from fleetwatch.monitoring.service import MonitoringService

logger = structlog.get_logger(__name__)
router = APIRouter()

_TRANSITION_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Invalid API key"},
    404: {"model": ErrorResponse, "description": "Alert not found"},
    409: {"model": ErrorResponse, "description": "Transition not allowed"},
}


@router.get(
    "/alerts",
    response_model=AlertsResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        422: {"model": ErrorResponse, "description": "Invalid filter parameter"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="List open alerts",
    description=(
        "List active and acknowledged alerts, optionally for one entity "
        "and one severity. Ordered by most recent first."
    ),
)
async def list_alerts(
    entity_id: str | None = Query(default=None, description="Filter by entity identifier"),
    severity: str | None = Query(
        default=None,
        description="Filter by severity: critical, warning, info",
    ),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum alerts to return"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> AlertsResponse:
    start_time = time.perf_counter()

    try:
        if severity and severity not in VALID_SEVERITIES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=(
                    f"Invalid severity {severity!r}. "
                    f"Must be one of: {sorted(VALID_SEVERITIES)}"
                ),
            )

        alerts = await service.get_active_alerts(entity_id)
        if severity:
            alerts = [a for a in alerts if a.severity == severity]
        items = [AlertItem.from_alert(a) for a in alerts[:limit]]

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Alerts listed",
            total=len(items),
            entity_id=entity_id,
            severity=severity,
            latency_ms=round(latency_ms, 2),
        )
        return AlertsResponse(alerts=items, total=len(items), latency_ms=round(latency_ms, 2))

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to list alerts: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list alerts: {str(e)}",
        )


@router.get(
    "/alerts/summary",
    response_model=AlertSummaryResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Alert summary",
    description="Counts by severity, status and type plus mean response times.",
)
async def alert_summary(
    entity_id: str | None = Query(default=None, description="Entity, or omit for the fleet"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> AlertSummaryResponse:
    summary = await service.get_alert_summary(entity_id)
    return AlertSummaryResponse.from_summary(summary)


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertItem,
    responses=_TRANSITION_RESPONSES,
    summary="Acknowledge an alert",
    description="Move an active alert to acknowledged. Stops its escalation.",
)
async def acknowledge_alert(
    body: AcknowledgeRequest,
    alert_id: str = Path(..., description="Alert identifier"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> AlertItem:
    alert = await service.acknowledge_alert(alert_id, body.actor)
    logger.info("Alert acknowledged", alert_id=alert_id, actor=body.actor)
    return AlertItem.from_alert(alert)


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=AlertItem,
    responses=_TRANSITION_RESPONSES,
    summary="Resolve an alert",
)
async def resolve_alert(
    body: ResolveRequest,
    alert_id: str = Path(..., description="Alert identifier"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> AlertItem:
    alert = await service.resolve_alert(alert_id, body.notes)
    logger.info("Alert resolved", alert_id=alert_id)
    return AlertItem.from_alert(alert)


@router.post(
    "/alerts/{alert_id}/false-positive",
    response_model=AlertItem,
    responses=_TRANSITION_RESPONSES,
    summary="Mark an alert as a false positive",
)
async def mark_false_positive(
    body: ResolveRequest,
    alert_id: str = Path(..., description="Alert identifier"),
    api_key: str = Depends(verify_api_key),
    service: MonitoringService = Depends(get_monitoring_service),
) -> AlertItem:
    alert = await service.mark_false_positive(alert_id, body.notes)
    logger.info("Alert marked false positive", alert_id=alert_id)
    return AlertItem.from_alert(alert)
