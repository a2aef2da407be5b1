"""
Request and response models for the monitoring API.
"""

from typing import Any

from pydantic import BaseModel, Field

from fleetwatch.monitoring.schemas import Alert, AlertSummary


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str = Field(..., description="Error message")
    error_type: str = Field(default="error", description="Type of error")


# ── Alerts ───────────────────────────────────────────────


class AlertItem(BaseModel):
    """Single alert record."""

    alert_id: str = Field(..., description="Unique alert identifier")
    entity_id: str = Field(..., description="Entity that produced the alert")
    alert_type: str = Field(..., description="Alert type, e.g. performance_threshold")
    severity: str = Field(..., description="Severity level: critical, warning, info")
    status: str = Field(..., description="Lifecycle status")
    title: str = Field(..., description="Short human-readable summary")
    description: str = Field(..., description="Detailed alert description")
    triggered_by: str = Field(..., description="Metric or rule that fired")
    trigger_value: float = Field(..., description="Observed value at trigger time")
    threshold_value: float = Field(..., description="Bound that was crossed")
    triggered_at: str = Field(..., description="Trigger timestamp (ISO format)")
    acknowledged_at: str | None = Field(default=None, description="Acknowledgement time")
    acknowledged_by: str | None = Field(default=None, description="Acknowledging actor")
    resolved_at: str | None = Field(default=None, description="Resolution time")
    suppression_reason: str | None = Field(default=None, description="Why it was suppressed")
    resolution_notes: str | None = Field(default=None, description="Resolution notes")
    correlation_group: str | None = Field(default=None, description="Correlation group id")
    similar_alerts: list[str] = Field(default_factory=list, description="Correlated alert ids")
    escalation_required: bool = Field(default=False, description="Escalation policy applies")
    escalation_level: int = Field(default=0, description="Highest escalation level notified")
    recommended_actions: list[str] = Field(default_factory=list)
    root_cause_analysis: list[str] = Field(default_factory=list)

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertItem":
        def iso(value):
            return value.isoformat() if value else None

        return cls(
            alert_id=alert.alert_id,
            entity_id=alert.entity_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            status=alert.status,
            title=alert.title,
            description=alert.description,
            triggered_by=alert.triggered_by,
            trigger_value=alert.trigger_value,
            threshold_value=alert.threshold_value,
            triggered_at=alert.triggered_at.isoformat(),
            acknowledged_at=iso(alert.acknowledged_at),
            acknowledged_by=alert.acknowledged_by,
            resolved_at=iso(alert.resolved_at),
            suppression_reason=alert.suppression_reason,
            resolution_notes=alert.resolution_notes,
            correlation_group=alert.correlation_group,
            similar_alerts=list(alert.similar_alerts),
            escalation_required=alert.escalation_required,
            escalation_level=alert.escalation_level,
            recommended_actions=list(alert.recommended_actions),
            root_cause_analysis=list(alert.root_cause_analysis),
        )


class AlertsResponse(BaseModel):
    """Response model for listing alerts."""

    alerts: list[AlertItem] = Field(..., description="List of alerts")
    total: int = Field(..., description="Number of alerts returned")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class AlertSummaryResponse(BaseModel):
    """Counts and response times over an entity's alerts."""

    entity_id: str | None = Field(default=None, description="Entity, or null for the fleet")
    total_open: int = Field(..., description="Active plus acknowledged alerts")
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    oldest_open: str | None = None
    most_recent: str | None = None
    correlation_groups: int = 0
    mean_time_to_acknowledge: float | None = Field(
        default=None, description="Mean seconds from trigger to acknowledgement",
    )
    mean_time_to_resolve: float | None = Field(
        default=None, description="Mean seconds from trigger to resolution",
    )

    @classmethod
    def from_summary(cls, summary: AlertSummary) -> "AlertSummaryResponse":
        return cls(**summary.to_dict())


class AcknowledgeRequest(BaseModel):
    """Request body for acknowledging an alert."""

    actor: str = Field(..., min_length=1, max_length=200, description="Who acknowledged")


class ResolveRequest(BaseModel):
    """Request body for resolving or dismissing an alert."""

    notes: str | None = Field(default=None, max_length=5000, description="Resolution notes")


# ── Monitoring sessions ──────────────────────────────────


class MonitoringSessionResponse(BaseModel):
    """Result of opening or closing a monitoring session."""

    entity_id: str = Field(..., description="Entity identifier")
    monitoring: bool = Field(..., description="Whether the entity is now monitored")
    changed: bool = Field(..., description="False if the session was already in that state")


class SnapshotRequest(BaseModel):
    """One metric snapshot for an entity."""

    metrics: dict[str, Any] = Field(
        ..., description="Metric name -> numeric value; non-numeric values are dropped",
    )
    timestamp: str | None = Field(
        default=None, description="Sample time (ISO format); defaults to now",
    )


# ── Health ───────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Overall status: healthy, degraded")
    store: bool = Field(..., description="Alert store reachable")
    monitored_entities: int = Field(..., description="Entities with an open session")
    notification_queue_depth: int = Field(..., description="Jobs waiting for delivery")
    tracked_escalations: int = Field(..., description="Alerts under escalation tracking")
