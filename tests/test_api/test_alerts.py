"""Tests for alert listing, summary and lifecycle endpoints."""

from datetime import datetime, timezone

from fleetwatch.monitoring.errors import AlertNotFoundError, InvalidStateTransition
from fleetwatch.monitoring.schemas import Alert, AlertSummary


def _make_alert(
    alert_id: str = "alert_abc123",
    entity_id: str = "E1",
    severity: str = "critical",
    **kwargs,
) -> Alert:
    """Helper to create an Alert with sensible defaults."""
    return Alert(
        alert_id=alert_id,
        entity_id=entity_id,
        alert_type=kwargs.pop("alert_type", "performance_threshold"),
        severity=severity,
        title=kwargs.pop("title", "safety_incident_rate critical threshold breached"),
        description=kwargs.pop("description", "safety_incident_rate = 2.5 is above 2.0"),
        triggered_by=kwargs.pop("triggered_by", "safety_incident_rate"),
        trigger_value=kwargs.pop("trigger_value", 2.5),
        threshold_value=kwargs.pop("threshold_value", 2.0),
        triggered_at=kwargs.pop(
            "triggered_at", datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)
        ),
        **kwargs,
    )


# ── GET /alerts ─────────────────────────────────────────


class TestListAlerts:
    def test_empty(self, client):
        resp = client.get("/alerts")
        assert resp.status_code == 200
        data = resp.json()
        assert data["alerts"] == []
        assert data["total"] == 0
        assert "latency_ms" in data

    def test_returns_items(self, client, mock_service):
        mock_service.get_active_alerts.return_value = [
            _make_alert(),
            _make_alert("alert_2", severity="warning", status="acknowledged",
                        acknowledged_by="ops"),
        ]
        resp = client.get("/alerts")
        data = resp.json()

        assert data["total"] == 2
        first = data["alerts"][0]
        assert first["alert_id"] == "alert_abc123"
        assert first["trigger_value"] == 2.5
        assert first["triggered_at"] == "2026-03-02T09:00:00+00:00"
        assert data["alerts"][1]["acknowledged_by"] == "ops"

    def test_entity_filter_forwarded(self, client, mock_service):
        client.get("/alerts", params={"entity_id": "E7"})
        mock_service.get_active_alerts.assert_awaited_once_with("E7")

    def test_severity_filter(self, client, mock_service):
        mock_service.get_active_alerts.return_value = [
            _make_alert("a1", severity="critical"),
            _make_alert("a2", severity="info"),
        ]
        resp = client.get("/alerts", params={"severity": "info"})
        assert [a["alert_id"] for a in resp.json()["alerts"]] == ["a2"]

    def test_invalid_severity(self, client):
        resp = client.get("/alerts", params={"severity": "urgent"})
        assert resp.status_code == 422
        assert "urgent" in resp.json()["detail"]

    def test_limit(self, client, mock_service):
        mock_service.get_active_alerts.return_value = [
            _make_alert(f"a{i}") for i in range(5)
        ]
        resp = client.get("/alerts", params={"limit": 2})
        assert resp.json()["total"] == 2

    def test_store_failure(self, client, mock_service):
        mock_service.get_active_alerts.side_effect = RuntimeError("pool closed")
        resp = client.get("/alerts")
        assert resp.status_code == 500
        assert "pool closed" in resp.json()["detail"]


# ── GET /alerts/summary ─────────────────────────────────


class TestSummary:
    def test_summary(self, client, mock_service):
        mock_service.get_alert_summary.return_value = AlertSummary(
            entity_id="E1",
            total_open=3,
            by_severity={"critical": 1, "warning": 2},
            by_status={"active": 2, "acknowledged": 1},
            most_recent=datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc),
            mean_time_to_acknowledge=660.0,
        )
        resp = client.get("/alerts/summary", params={"entity_id": "E1"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["total_open"] == 3
        assert data["by_severity"]["warning"] == 2
        assert data["most_recent"] == "2026-03-02T09:30:00+00:00"
        assert data["mean_time_to_acknowledge"] == 660.0
        assert data["mean_time_to_resolve"] is None
        mock_service.get_alert_summary.assert_awaited_once_with("E1")


# ── Lifecycle transitions ───────────────────────────────


class TestAcknowledge:
    def test_acknowledge(self, client, mock_service):
        mock_service.acknowledge_alert.return_value = _make_alert(
            status="acknowledged", acknowledged_by="ops",
            acknowledged_at=datetime(2026, 3, 2, 9, 11, tzinfo=timezone.utc),
        )
        resp = client.post("/alerts/alert_abc123/acknowledge", json={"actor": "ops"})

        assert resp.status_code == 200
        assert resp.json()["status"] == "acknowledged"
        mock_service.acknowledge_alert.assert_awaited_once_with("alert_abc123", "ops")

    def test_requires_actor(self, client):
        resp = client.post("/alerts/alert_abc123/acknowledge", json={})
        assert resp.status_code == 422

    def test_unknown_alert(self, client, mock_service):
        mock_service.acknowledge_alert.side_effect = AlertNotFoundError("nope", "acknowledged")
        resp = client.post("/alerts/nope/acknowledge", json={"actor": "ops"})
        assert resp.status_code == 404

    def test_invalid_transition(self, client, mock_service):
        mock_service.acknowledge_alert.side_effect = InvalidStateTransition(
            "alert_abc123", "resolved", "acknowledged",
        )
        resp = client.post("/alerts/alert_abc123/acknowledge", json={"actor": "ops"})
        assert resp.status_code == 409
        assert "resolved" in resp.json()["detail"]


class TestResolve:
    def test_resolve_with_notes(self, client, mock_service):
        mock_service.resolve_alert.return_value = _make_alert(
            status="resolved", resolution_notes="sensor replaced",
        )
        resp = client.post("/alerts/alert_abc123/resolve", json={"notes": "sensor replaced"})

        assert resp.status_code == 200
        assert resp.json()["resolution_notes"] == "sensor replaced"
        mock_service.resolve_alert.assert_awaited_once_with("alert_abc123", "sensor replaced")

    def test_already_resolved(self, client, mock_service):
        mock_service.resolve_alert.side_effect = InvalidStateTransition(
            "alert_abc123", "resolved", "resolved",
        )
        resp = client.post("/alerts/alert_abc123/resolve", json={})
        assert resp.status_code == 409


class TestFalsePositive:
    def test_mark(self, client, mock_service):
        mock_service.mark_false_positive.return_value = _make_alert(status="false_positive")
        resp = client.post("/alerts/alert_abc123/false-positive", json={"notes": "calibration"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "false_positive"

    def test_unknown(self, client, mock_service):
        mock_service.mark_false_positive.side_effect = AlertNotFoundError("x", "false_positive")
        resp = client.post("/alerts/x/false-positive", json={})
        assert resp.status_code == 404
