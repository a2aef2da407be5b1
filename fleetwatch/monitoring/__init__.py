"""Real-time monitoring engine for fleet entities.

Components:
- MetricSnapshot / Threshold / AlertRule / Alert: Records and config schemas
- MonitoringConfig: Pydantic settings for windows, cutoffs and tick intervals
- AlertStore / InMemoryAlertStore / AlertRepository: Alert store of record
- LifecycleManager: Alert state machine
- MonitoringService: fleetwatch.monitoring.service
- MonitoringScheduler: fleetwatch.monitoring.scheduler
"""

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.errors import (
    AlertNotFoundError,
    ConfigurationError,
    DataGapError,
    DeliveryError,
    InvalidStateTransition,
    MonitoringError,
    MonitoringNotActiveError,
)
from fleetwatch.monitoring.lifecycle import ALLOWED_TRANSITIONS, LifecycleManager
from fleetwatch.monitoring.repository import AlertRepository
from fleetwatch.monitoring.schemas import (
    VALID_ALERT_TYPES,
    VALID_SEVERITIES,
    VALID_STATUSES,
    Alert,
    AlertCondition,
    AlertRecipient,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    AlertSummary,
    AlertType,
    EscalationLevel,
    EscalationPolicy,
    MaintenanceWindow,
    MetricSnapshot,
    NotificationChannel,
    NotificationPreferences,
    NotificationStatus,
    QuietHours,
    RetryPolicy,
    SuppressionRule,
    Threshold,
)
from fleetwatch.monitoring.store import AlertStore, InMemoryAlertStore

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Alert",
    "AlertCondition",
    "AlertNotFoundError",
    "AlertRecipient",
    "AlertRepository",
    "AlertRule",
    "AlertSeverity",
    "AlertStatus",
    "AlertStore",
    "AlertSummary",
    "AlertType",
    "ConfigurationError",
    "DataGapError",
    "DeliveryError",
    "EscalationLevel",
    "EscalationPolicy",
    "InMemoryAlertStore",
    "InvalidStateTransition",
    "LifecycleManager",
    "MaintenanceWindow",
    "MetricSnapshot",
    "MonitoringConfig",
    "MonitoringError",
    "MonitoringNotActiveError",
    "NotificationChannel",
    "NotificationPreferences",
    "NotificationStatus",
    "QuietHours",
    "RetryPolicy",
    "SuppressionRule",
    "Threshold",
    "VALID_ALERT_TYPES",
    "VALID_SEVERITIES",
    "VALID_STATUSES",
]
