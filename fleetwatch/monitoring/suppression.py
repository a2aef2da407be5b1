"""Suppression engine.

Checks run in a fixed order and the first match wins:

1. maintenance window (entity-level or rule-level)
2. excessive duplicates in the trailing window
3. quiet hours, for ``info`` alerts whose recipients are all quiet

Suppressed alerts are still persisted with ``status=suppressed``; this
module only decides.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.schemas import Alert, AlertRule
from fleetwatch.monitoring.store import AlertStore

if TYPE_CHECKING:
    from fleetwatch.monitoring.sources import ConfigurationStore

logger = logging.getLogger(__name__)

MAINTENANCE_WINDOW = "maintenance_window"
EXCESSIVE_DUPLICATES = "excessive_duplicates"
QUIET_HOURS = "quiet_hours"


class SuppressionEngine:
    """Decides whether a candidate alert is persisted as suppressed."""

    def __init__(
        self,
        store: AlertStore,
        config_store: "ConfigurationStore",
        config: MonitoringConfig,
    ) -> None:
        self._store = store
        self._config_store = config_store
        self._config = config

    async def in_maintenance(self, alert: Alert, rule: AlertRule | None = None) -> bool:
        moment = alert.triggered_at
        if rule is not None and any(s.covers(moment) for s in rule.suppression_rules):
            return True
        windows = await self._config_store.get_maintenance_windows(alert.entity_id)
        return any(w.covers(alert.entity_id, moment) for w in windows)

    async def is_excessive_duplicate(self, alert: Alert) -> bool:
        since = alert.triggered_at - timedelta(seconds=self._config.duplicate_window_seconds)
        count = await self._store.count_recent(
            alert.entity_id, alert.triggered_by, alert.alert_type, since,
        )
        return count >= self._config.duplicate_cap

    def in_quiet_hours(self, alert: Alert) -> bool:
        """Info alerts whose every recipient is in quiet hours.

        An alert with no recipients is never considered quiet.
        """
        if alert.severity != "info" or not alert.recipients:
            return False
        return all(
            r.notification_preferences.in_quiet_hours(alert.triggered_at, alert.alert_type)
            for r in alert.recipients
        )

    async def check_suppression(
        self, alert: Alert, rule: AlertRule | None = None,
    ) -> tuple[bool, str | None]:
        """Evaluate suppression for a candidate alert.

        Args:
            alert: Candidate alert, with recipients already attached.
            rule: Originating rule for composite alerts.

        Returns:
            ``(suppress, reason)``.
        """
        if await self.in_maintenance(alert, rule):
            return True, MAINTENANCE_WINDOW
        if await self.is_excessive_duplicate(alert):
            return True, EXCESSIVE_DUPLICATES
        if self.in_quiet_hours(alert):
            return True, QUIET_HOURS
        return False, None
