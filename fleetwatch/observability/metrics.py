"""
Prometheus metrics for the monitoring and alerting engine.

Defines and exposes metrics for:
- Alert creation, suppression and lifecycle
- Notification delivery outcomes and escalations
- Pipeline latency and evaluation errors
- Notification queue depth and backpressure drops

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from fleetwatch.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class MetricsCollector:
    """
    Prometheus metrics collector for fleetwatch.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_alert_created("performance_threshold", "critical", "active")
        metrics.pipeline_latency.labels(stage="evaluate").observe(0.004)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""
        self._server_started = False

        # Alert counters
        self.alerts_created = Counter(
            "fleetwatch_alerts_created_total",
            "Total alerts persisted",
            ["alert_type", "severity", "status"],
        )

        self.alerts_suppressed = Counter(
            "fleetwatch_alerts_suppressed_total",
            "Total alerts persisted with status=suppressed",
            ["reason"],
        )

        self.alerts_correlated = Counter(
            "fleetwatch_alerts_correlated_total",
            "Total alerts assigned to a correlation group",
        )

        self.alert_transitions = Counter(
            "fleetwatch_alert_transitions_total",
            "Lifecycle transitions applied",
            ["from_status", "to_status"],
        )

        self.rule_cooldown_skips = Counter(
            "fleetwatch_rule_cooldown_skips_total",
            "Rule triggers discarded by cooldown",
        )

        # Notification counters
        self.notifications = Counter(
            "fleetwatch_notifications_total",
            "Notification attempts by final outcome",
            ["channel", "status"],
        )

        self.notifications_dropped = Counter(
            "fleetwatch_notifications_dropped_total",
            "Notification jobs dropped by queue backpressure",
            ["severity"],
        )

        self.escalations = Counter(
            "fleetwatch_escalations_total",
            "Escalation level advances",
            ["level"],
        )

        self.dispatch_failures = Counter(
            "fleetwatch_unresolved_dispatch_failures_total",
            "Alerts for which every notification attempt failed",
        )

        # Errors
        self.evaluation_errors = Counter(
            "fleetwatch_evaluation_errors_total",
            "Errors raised while evaluating an entity",
            ["stage", "error_type"],
        )

        # Latency
        self.pipeline_latency = Histogram(
            "fleetwatch_pipeline_latency_seconds",
            "Time spent in a pipeline stage for one snapshot",
            ["stage"],  # evaluate, correlate, suppress, store, total
            buckets=LATENCY_BUCKETS,
        )

        # Gauges
        self.notification_queue_depth = Gauge(
            "fleetwatch_notification_queue_depth",
            "Jobs waiting in the notification queue",
        )

        self.active_entity_workers = Gauge(
            "fleetwatch_active_entity_workers",
            "Entities with an active monitoring session",
        )

        self.tracked_escalations = Gauge(
            "fleetwatch_tracked_escalations",
            "Alerts currently tracked for escalation",
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to listen on (default from settings)
        """
        if self._server_started:
            return

        settings = get_settings()
        port = port or settings.metrics_port

        try:
            start_http_server(port)
            self._server_started = True
            logger.info("Metrics server started on port %d", port)
        except OSError as e:
            logger.warning("Could not start metrics server: %s", e)

    def record_alert_created(
        self,
        alert_type: str,
        severity: str,
        status: str,
        suppression_reason: str | None = None,
    ) -> None:
        """Record a persisted alert."""
        self.alerts_created.labels(
            alert_type=alert_type, severity=severity, status=status,
        ).inc()
        if suppression_reason is not None:
            self.alerts_suppressed.labels(reason=suppression_reason).inc()

    def record_transition(self, from_status: str, to_status: str) -> None:
        """Record a lifecycle transition."""
        self.alert_transitions.labels(
            from_status=from_status, to_status=to_status,
        ).inc()

    def record_notification(self, channel: str, status: str) -> None:
        """Record the final outcome of one notification target."""
        self.notifications.labels(channel=channel, status=status).inc()

    def record_evaluation_error(self, stage: str, error: Exception) -> None:
        """Record an error raised while evaluating an entity."""
        self.evaluation_errors.labels(
            stage=stage, error_type=type(error).__name__,
        ).inc()


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
