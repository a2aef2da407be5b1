"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from fleetwatch.api.app import create_app
from fleetwatch.api.auth import verify_api_key
from fleetwatch.api.dependencies import get_monitoring_service
from fleetwatch.monitoring.schemas import AlertSummary


@pytest.fixture
def mock_service():
    """Mock MonitoringService."""
    service = MagicMock()
    service.get_active_alerts = AsyncMock(return_value=[])
    service.get_alert_summary = AsyncMock(return_value=AlertSummary(entity_id=None))
    service.acknowledge_alert = AsyncMock()
    service.resolve_alert = AsyncMock()
    service.mark_false_positive = AsyncMock()
    service.start_monitoring = AsyncMock(return_value=True)
    service.stop_monitoring = AsyncMock(return_value=True)
    service.process_real_time_data = AsyncMock(return_value=[])
    service.health_check = AsyncMock(return_value={
        "store": True,
        "monitored_entities": 2,
        "notification_queue_depth": 0,
        "tracked_escalations": 1,
    })
    return service


@pytest.fixture
def client(mock_service):
    """FastAPI TestClient with dependency overrides."""
    app = create_app()

    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_monitoring_service] = lambda: mock_service

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
