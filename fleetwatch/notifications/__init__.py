"""Alert notification delivery and escalation.

Components:
- NotificationQueue / NotificationJob: Bounded queue with info-first backpressure
- RetryBackoff: Fixed, linear and exponential retry delays
- NotificationTransport / WebhookTransport / SlackTransport / LogTransport
- CircuitBreaker: Resilience wrapper for transports
- NotificationConfig / NotificationDispatcher: Queue consumer and delivery
- EscalationManager: Timeout-driven escalation of unacknowledged alerts
"""

from fleetwatch.notifications.dispatcher import NotificationConfig, NotificationDispatcher
from fleetwatch.notifications.escalation import EscalationManager
from fleetwatch.notifications.queue import NotificationJob, NotificationQueue
from fleetwatch.notifications.retry import RetryBackoff
from fleetwatch.notifications.transports import (
    CircuitBreaker,
    DeliveryResult,
    LogTransport,
    NotificationTransport,
    SlackTransport,
    WebhookTransport,
    build_transports,
)

__all__ = [
    "CircuitBreaker",
    "DeliveryResult",
    "EscalationManager",
    "LogTransport",
    "NotificationConfig",
    "NotificationDispatcher",
    "NotificationJob",
    "NotificationQueue",
    "NotificationTransport",
    "RetryBackoff",
    "SlackTransport",
    "WebhookTransport",
    "build_transports",
]
