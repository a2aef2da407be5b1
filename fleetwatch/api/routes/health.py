"""
Health check endpoint.
"""

import structlog
from fastapi import APIRouter, Depends, Response, status

from fleetwatch.api.dependencies import get_monitoring_service
from fleetwatch.api.models import HealthResponse
from fleetwatch.monitoring.service import MonitoringService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health",
    description="Alert store reachability and in-process queue sizes. No auth required.",
)
async def health(
    response: Response,
    service: MonitoringService = Depends(get_monitoring_service),
) -> HealthResponse:
    checks = await service.health_check()
    healthy = bool(checks.get("store"))
    if not healthy:
        logger.warning("Health check degraded", **checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(status="healthy" if healthy else "degraded", **checks)
