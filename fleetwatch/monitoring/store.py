"""Alert store interface and the in-memory implementation.

The store is the only record of alerts. Lifecycle changes go through
``apply_transition``, a conditional update on the expected source
statuses, so a concurrent change can never be silently overwritten.
Alerts are never deleted.
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from fleetwatch.monitoring.errors import AlertNotFoundError, InvalidStateTransition
from fleetwatch.monitoring.schemas import (
    OPEN_STATUSES,
    Alert,
    NotificationStatus,
)

logger = logging.getLogger(__name__)


class AlertStore(ABC):
    """Persistence interface for alerts."""

    @abstractmethod
    async def create(self, alert: Alert) -> Alert:
        """Persist a new alert."""

    @abstractmethod
    async def get(self, alert_id: str) -> Alert | None:
        """Fetch an alert by id."""

    @abstractmethod
    async def list_open(self, entity_id: str | None = None) -> list[Alert]:
        """Active and acknowledged alerts, newest first."""

    @abstractmethod
    async def list_active(self, entity_id: str | None = None) -> list[Alert]:
        """Alerts in ``active`` status only, oldest first."""

    @abstractmethod
    async def find_correlation_candidates(
        self,
        entity_id: str,
        alert_type: str,
        triggered_by: str,
        since: datetime,
    ) -> list[Alert]:
        """Open alerts matching entity/type/trigger triggered at or after ``since``."""

    @abstractmethod
    async def count_recent(
        self,
        entity_id: str,
        triggered_by: str,
        alert_type: str,
        since: datetime,
    ) -> int:
        """Count alerts of any status matching the key since ``since``."""

    @abstractmethod
    async def update_correlation(
        self, alert_id: str, correlation_group: str, similar_alerts: list[str],
    ) -> None:
        """Set an alert's correlation group and similar-alert list."""

    @abstractmethod
    async def apply_transition(
        self,
        alert_id: str,
        expected: frozenset[str],
        to_status: str,
        fields: dict[str, Any],
    ) -> Alert:
        """Move an alert to ``to_status`` if its status is in ``expected``.

        Raises:
            AlertNotFoundError: Unknown alert id.
            InvalidStateTransition: Current status not in ``expected``.
        """

    @abstractmethod
    async def append_notification_status(
        self, alert_id: str, statuses: list[NotificationStatus],
    ) -> None:
        """Append delivery outcomes to an alert."""

    @abstractmethod
    async def set_escalation_level(self, alert_id: str, level: int) -> None:
        """Record the highest escalation level notified."""

    @abstractmethod
    async def list_by_group(self, correlation_group: str) -> list[Alert]:
        """All alerts in a correlation group, oldest first."""

    @abstractmethod
    async def list_for_summary(
        self, entity_id: str | None = None, since: datetime | None = None,
    ) -> list[Alert]:
        """Alerts feeding the summary projection."""

    async def health_check(self) -> bool:
        return True


class InMemoryAlertStore(AlertStore):
    """Dict-backed store for development and tests.

    Returns copies so callers can't mutate stored records in place.
    """

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def _require(self, alert_id: str, to_status: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id, to_status)
        return alert

    def _select(self, entity_id: str | None, statuses: frozenset[str] | None) -> list[Alert]:
        return [
            copy.deepcopy(a)
            for a in self._alerts.values()
            if (entity_id is None or a.entity_id == entity_id)
            and (statuses is None or a.status in statuses)
        ]

    async def create(self, alert: Alert) -> Alert:
        if alert.alert_id in self._alerts:
            raise ValueError(f"Alert {alert.alert_id} already exists")
        self._alerts[alert.alert_id] = copy.deepcopy(alert)
        return copy.deepcopy(alert)

    async def get(self, alert_id: str) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert is not None else None

    async def list_open(self, entity_id: str | None = None) -> list[Alert]:
        alerts = self._select(entity_id, OPEN_STATUSES)
        return sorted(alerts, key=lambda a: a.triggered_at, reverse=True)

    async def list_active(self, entity_id: str | None = None) -> list[Alert]:
        alerts = self._select(entity_id, frozenset({"active"}))
        return sorted(alerts, key=lambda a: a.triggered_at)

    async def find_correlation_candidates(
        self,
        entity_id: str,
        alert_type: str,
        triggered_by: str,
        since: datetime,
    ) -> list[Alert]:
        alerts = [
            a
            for a in self._select(entity_id, OPEN_STATUSES)
            if a.alert_type == alert_type
            and a.triggered_by == triggered_by
            and a.triggered_at >= since
        ]
        return sorted(alerts, key=lambda a: a.triggered_at)

    async def count_recent(
        self,
        entity_id: str,
        triggered_by: str,
        alert_type: str,
        since: datetime,
    ) -> int:
        return sum(
            1
            for a in self._alerts.values()
            if a.entity_id == entity_id
            and a.triggered_by == triggered_by
            and a.alert_type == alert_type
            and a.triggered_at >= since
        )

    async def update_correlation(
        self, alert_id: str, correlation_group: str, similar_alerts: list[str],
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id, "correlated")
        alert.correlation_group = correlation_group
        alert.similar_alerts = list(similar_alerts)

    async def apply_transition(
        self,
        alert_id: str,
        expected: frozenset[str],
        to_status: str,
        fields: dict[str, Any],
    ) -> Alert:
        alert = self._require(alert_id, to_status)
        if alert.status not in expected:
            raise InvalidStateTransition(alert_id, alert.status, to_status)
        alert.status = to_status
        for name, value in fields.items():
            setattr(alert, name, value)
        return copy.deepcopy(alert)

    async def append_notification_status(
        self, alert_id: str, statuses: list[NotificationStatus],
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id, "notified")
        alert.notification_status.extend(copy.deepcopy(statuses))

    async def set_escalation_level(self, alert_id: str, level: int) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id, "escalated")
        alert.escalation_level = max(alert.escalation_level, level)

    async def list_by_group(self, correlation_group: str) -> list[Alert]:
        alerts = [
            copy.deepcopy(a)
            for a in self._alerts.values()
            if a.correlation_group == correlation_group
        ]
        return sorted(alerts, key=lambda a: a.triggered_at)

    async def list_for_summary(
        self, entity_id: str | None = None, since: datetime | None = None,
    ) -> list[Alert]:
        return [
            a
            for a in self._select(entity_id, None)
            if since is None or a.triggered_at >= since
        ]
