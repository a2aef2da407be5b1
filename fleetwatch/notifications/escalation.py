"""Timeout-driven escalation of unacknowledged alerts.

When an alert that requires escalation is first dispatched, the recipients
and channels of its first escalation level are notified immediately. Each
``check_escalations`` tick advances an alert to the next level once the
current level's timeout has elapsed while the alert is still ``active``.
Tracking stops on acknowledgment, resolution or false-positive, or after
the last level. A last level that times out with no notification of the
alert ever sent or delivered is reported as an unresolved dispatch failure.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from fleetwatch.monitoring.schemas import (
    Alert,
    AlertRecipient,
    EscalationLevel,
    EscalationPolicy,
    NotificationChannel,
    utc_now,
)
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.notifications.dispatcher import NotificationDispatcher
from fleetwatch.observability.metrics import get_metrics

if TYPE_CHECKING:
    from fleetwatch.monitoring.sources import ConfigurationStore

logger = logging.getLogger(__name__)


@dataclass
class TrackedEscalation:
    alert: Alert
    policy: EscalationPolicy
    level_index: int
    level_started_at: datetime

    @property
    def level(self) -> EscalationLevel:
        return self.policy.escalation_levels[self.level_index]

    @property
    def is_last_level(self) -> bool:
        return self.level_index >= len(self.policy.escalation_levels) - 1


class EscalationManager:
    """Tracks escalating alerts and advances them on timeout."""

    def __init__(
        self,
        store: AlertStore,
        dispatcher: NotificationDispatcher,
        config_store: "ConfigurationStore | None" = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._config_store = config_store
        self._clock = clock
        self._tracked: dict[str, TrackedEscalation] = {}

    def __len__(self) -> int:
        return len(self._tracked)

    def is_tracking(self, alert_id: str) -> bool:
        return alert_id in self._tracked

    def current_level(self, alert_id: str) -> int | None:
        entry = self._tracked.get(alert_id)
        return entry.level.level if entry else None

    async def _resolve_recipients(self, recipient_ids: list[str]) -> list[AlertRecipient]:
        recipients: list[AlertRecipient] = []
        for recipient_id in recipient_ids:
            recipient = None
            if self._config_store is not None:
                recipient = await self._config_store.get_recipient(recipient_id)
            recipients.append(recipient or AlertRecipient(recipient_id=recipient_id))
        return recipients

    @staticmethod
    def _level_channels(alert: Alert, level: EscalationLevel) -> list[NotificationChannel]:
        """Level channel types, reusing the alert's channel config where it has one."""
        configured = {c.channel_type: c for c in alert.notification_channels}
        channel_types = level.channels or list(configured)
        return [configured.get(t) or NotificationChannel(channel_type=t) for t in channel_types]

    async def _notify_level(self, entry: TrackedEscalation, now: datetime) -> None:
        level = entry.level
        recipients = await self._resolve_recipients(level.recipients)
        self._dispatcher.enqueue(
            entry.alert,
            escalation_level=level.level,
            channels=self._level_channels(entry.alert, level),
            recipients=recipients,
        )
        entry.level_started_at = now
        await self._store.set_escalation_level(entry.alert.alert_id, level.level)
        get_metrics().escalations.labels(level=str(level.level)).inc()
        logger.info(
            "Alert %s escalated to level %d (%d recipients)",
            entry.alert.alert_id, level.level, len(recipients),
        )

    async def track(self, alert: Alert, now: datetime | None = None) -> bool:
        """Start escalation for an alert and notify its first level.

        Returns:
            False if the alert has no escalation policy or doesn't escalate.
        """
        policy = alert.escalation_policy
        if not alert.escalation_required or policy is None or not policy.escalation_levels:
            return False
        if alert.alert_id in self._tracked:
            return True

        now = now or self._clock()
        entry = TrackedEscalation(alert, policy, 0, now)
        self._tracked[alert.alert_id] = entry
        await self._notify_level(entry, now)
        get_metrics().tracked_escalations.set(len(self._tracked))
        return True

    async def recover(self, now: datetime | None = None) -> int:
        """Resume tracking active escalating alerts from the store.

        Resumed alerts continue from their persisted level without being
        notified again; the level timeout restarts at ``now``.
        """
        now = now or self._clock()
        resumed = 0
        for alert in await self._store.list_active():
            policy = alert.escalation_policy
            if (
                not alert.escalation_required
                or policy is None
                or not policy.escalation_levels
                or alert.alert_id in self._tracked
            ):
                continue
            index = 0
            for i, level in enumerate(policy.escalation_levels):
                if level.level <= alert.escalation_level:
                    index = i
            self._tracked[alert.alert_id] = TrackedEscalation(alert, policy, index, now)
            resumed += 1
        get_metrics().tracked_escalations.set(len(self._tracked))
        if resumed:
            logger.info("Resumed escalation tracking for %d alerts", resumed)
        return resumed

    async def _check_one(self, entry: TrackedEscalation, now: datetime) -> bool:
        alert_id = entry.alert.alert_id
        current = await self._store.get(alert_id)
        if current is None or current.status != "active":
            self._tracked.pop(alert_id, None)
            return False

        if now - entry.level_started_at < entry.level.timeout_delta:
            return False

        if not entry.is_last_level and entry.policy.auto_escalation:
            entry.level_index += 1
            entry.alert = current
            await self._notify_level(entry, now)
            return True

        self._tracked.pop(alert_id, None)
        if not any(s.succeeded for s in current.notification_status):
            await self._dispatcher.report_unresolved(
                current, "escalation exhausted with no successful notification",
            )
        else:
            logger.warning(
                "Alert %s still unacknowledged after final escalation level %d",
                alert_id, entry.level.level,
            )
        return False

    async def check_escalations(self, now: datetime | None = None) -> list[str]:
        """Advance every tracked alert whose current level has timed out.

        Returns:
            Ids of alerts escalated on this tick.
        """
        now = now or self._clock()
        escalated: list[str] = []
        for entry in list(self._tracked.values()):
            try:
                if await self._check_one(entry, now):
                    escalated.append(entry.alert.alert_id)
            except Exception as e:
                logger.error(
                    "Escalation check failed for alert %s: %s", entry.alert.alert_id, e,
                )
        get_metrics().tracked_escalations.set(len(self._tracked))
        return escalated
