"""Exception taxonomy for the monitoring engine.

- ConfigurationError: an invalid threshold or rule. Logged and skipped; the
  entity keeps being monitored with its remaining valid configs.
- DataGapError: a metric value is missing. Evaluators skip silently.
- DeliveryError: a notification transport failed. Retried per policy.
- InvalidStateTransition: a lifecycle mutation that is not permitted.
- AlertNotFoundError: a lifecycle mutation on an unknown alert id.
- MonitoringNotActiveError: ingest for an entity without a session.
"""


class MonitoringError(Exception):
    """Base class for monitoring engine errors."""


class ConfigurationError(MonitoringError, ValueError):
    """A threshold, rule or policy config failed validation."""

    def __init__(self, message: str, config_id: str | None = None) -> None:
        self.config_id = config_id
        if config_id:
            message = f"{config_id}: {message}"
        super().__init__(message)


class DataGapError(MonitoringError):
    """A metric required for evaluation is missing from the snapshot/history."""

    def __init__(self, entity_id: str, metric_name: str) -> None:
        self.entity_id = entity_id
        self.metric_name = metric_name
        super().__init__(f"No value for {metric_name!r} on entity {entity_id!r}")


class DeliveryError(MonitoringError):
    """A notification transport could not deliver an alert."""

    def __init__(self, channel: str, message: str, permanent: bool = False) -> None:
        self.channel = channel
        self.permanent = permanent
        super().__init__(f"{channel}: {message}")


class InvalidStateTransition(MonitoringError):
    """A lifecycle transition that the alert's current status forbids."""

    def __init__(
        self,
        alert_id: str,
        from_status: str | None,
        to_status: str,
        message: str | None = None,
    ) -> None:
        self.alert_id = alert_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message
            or f"Alert {alert_id} cannot move from {from_status} to {to_status}"
        )


class AlertNotFoundError(InvalidStateTransition):
    """A lifecycle transition targeting an alert id that does not exist."""

    def __init__(self, alert_id: str, to_status: str) -> None:
        super().__init__(
            alert_id, None, to_status, message=f"Alert {alert_id} not found",
        )


class MonitoringNotActiveError(MonitoringError):
    """Snapshot submitted for an entity that is not being monitored."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Monitoring is not active for entity {entity_id!r}")
