"""External collaborators consumed by the monitoring engine.

- ``MetricSource``: provides the latest snapshot for an entity.
- ``ConfigurationStore``: thresholds, rules, notification routing and
  maintenance windows per entity.

In-memory implementations back development and tests; ``RedisMetricSource``
reads a hash per entity written by upstream collectors.
"""

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import redis.asyncio as redis

from fleetwatch.monitoring.rules import load_rules
from fleetwatch.monitoring.schemas import (
    AlertRecipient,
    AlertRule,
    EscalationPolicy,
    MaintenanceWindow,
    MetricSnapshot,
    NotificationChannel,
    Threshold,
    parse_datetime,
    utc_now,
)
from fleetwatch.monitoring.thresholds import load_thresholds

logger = logging.getLogger(__name__)


class MetricSource(Protocol):
    async def fetch(self, entity_id: str) -> MetricSnapshot | None: ...


class ConfigurationStore(Protocol):
    async def get_thresholds(self, entity_id: str) -> list[Threshold]: ...

    async def get_alert_rules(self, entity_id: str) -> list[AlertRule]: ...

    async def get_notification_channels(
        self, entity_id: str, severity: str,
    ) -> list[NotificationChannel]: ...

    async def get_recipients(self, entity_id: str, severity: str) -> list[AlertRecipient]: ...

    async def get_recipient(self, recipient_id: str) -> AlertRecipient | None: ...

    async def get_escalation_policy(
        self, entity_id: str, severity: str,
    ) -> EscalationPolicy | None: ...

    async def get_maintenance_windows(self, entity_id: str) -> list[MaintenanceWindow]: ...


# ── Metric sources ───────────────────────────────────────


class InMemoryMetricSource:
    """Returns the last snapshot pushed for each entity."""

    def __init__(self) -> None:
        self._snapshots: dict[str, MetricSnapshot] = {}

    def push(self, snapshot: MetricSnapshot) -> None:
        self._snapshots[snapshot.entity_id] = snapshot

    async def fetch(self, entity_id: str) -> MetricSnapshot | None:
        return self._snapshots.get(entity_id)


class RedisMetricSource:
    """Reads ``{prefix}:{entity_id}`` hashes of metric name -> value.

    An optional ``_timestamp`` field carries the ISO sample time; otherwise
    the read time is used.
    """

    TIMESTAMP_FIELD = "_timestamp"

    def __init__(self, redis_url: str, prefix: str = "metrics") -> None:
        self._redis_url = redis_url
        self._prefix = prefix
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        self._redis = redis.from_url(self._redis_url, decode_responses=True)
        await self._redis.ping()
        logger.info("Metric source connected to Redis")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def fetch(self, entity_id: str) -> MetricSnapshot | None:
        if self._redis is None:
            raise RuntimeError("Metric source not connected. Call connect() first.")
        raw = await self._redis.hgetall(f"{self._prefix}:{entity_id}")
        if not raw:
            return None

        timestamp = parse_datetime(raw.pop(self.TIMESTAMP_FIELD, None)) or utc_now()
        metrics: dict[str, Any] = {}
        for name, value in raw.items():
            try:
                metrics[name] = float(value)
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric metric %s for %s", name, entity_id)
        return MetricSnapshot(entity_id=entity_id, metrics=metrics, timestamp=timestamp)


# ── Configuration stores ─────────────────────────────────


class InMemoryConfigurationStore:
    """Dict-backed configuration store.

    Channels, recipients and escalation policies are keyed by severity with
    an optional ``"*"`` fallback; entity ``"*"`` applies to every entity.
    """

    def __init__(self) -> None:
        self._thresholds: dict[str, list[Threshold]] = {}
        self._rules: dict[str, list[AlertRule]] = {}
        self._channels: dict[str, dict[str, list[NotificationChannel]]] = {}
        self._recipients: dict[str, dict[str, list[AlertRecipient]]] = {}
        self._policies: dict[str, dict[str, EscalationPolicy]] = {}
        self._directory: dict[str, AlertRecipient] = {}
        self._maintenance: list[MaintenanceWindow] = []

    # -- mutation --

    def add_threshold(self, threshold: Threshold) -> None:
        self._thresholds.setdefault(threshold.entity_id, []).append(threshold)

    def add_rule(self, rule: AlertRule) -> None:
        self._rules.setdefault(rule.entity_id or "*", []).append(rule)

    def set_channels(
        self, entity_id: str, channels: list[NotificationChannel], severity: str = "*",
    ) -> None:
        self._channels.setdefault(entity_id, {})[severity] = list(channels)

    def set_recipients(
        self, entity_id: str, recipients: list[AlertRecipient], severity: str = "*",
    ) -> None:
        self._recipients.setdefault(entity_id, {})[severity] = list(recipients)
        for recipient in recipients:
            self._directory.setdefault(recipient.recipient_id, recipient)

    def add_recipient(self, recipient: AlertRecipient) -> None:
        self._directory[recipient.recipient_id] = recipient

    def set_escalation_policy(
        self, entity_id: str, policy: EscalationPolicy, severity: str = "*",
    ) -> None:
        self._policies.setdefault(entity_id, {})[severity] = policy

    def add_maintenance_window(self, window: MaintenanceWindow) -> None:
        self._maintenance.append(window)

    # -- lookup --

    @staticmethod
    def _by_severity(table: dict[str, dict[str, Any]], entity_id: str, severity: str) -> Any:
        for key in (entity_id, "*"):
            scoped = table.get(key, {})
            for sev in (severity, "*"):
                if sev in scoped:
                    return scoped[sev]
        return None

    async def get_thresholds(self, entity_id: str) -> list[Threshold]:
        return self._thresholds.get(entity_id, []) + self._thresholds.get("*", [])

    async def get_alert_rules(self, entity_id: str) -> list[AlertRule]:
        return self._rules.get(entity_id, []) + self._rules.get("*", [])

    async def get_notification_channels(
        self, entity_id: str, severity: str,
    ) -> list[NotificationChannel]:
        return list(self._by_severity(self._channels, entity_id, severity) or [])

    async def get_recipients(self, entity_id: str, severity: str) -> list[AlertRecipient]:
        return list(self._by_severity(self._recipients, entity_id, severity) or [])

    async def get_recipient(self, recipient_id: str) -> AlertRecipient | None:
        return self._directory.get(recipient_id)

    async def get_escalation_policy(
        self, entity_id: str, severity: str,
    ) -> EscalationPolicy | None:
        return self._by_severity(self._policies, entity_id, severity)

    async def get_maintenance_windows(self, entity_id: str) -> list[MaintenanceWindow]:
        return [w for w in self._maintenance if w.entity_id in (None, entity_id)]

    # -- loading --

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryConfigurationStore":
        """Build a store from a config document.

        Invalid thresholds and rules are logged and skipped.

        Expected keys (all optional): ``thresholds``, ``rules``,
        ``recipients`` (directory), ``routing`` (list of ``{entity_id,
        severity, channels, recipients, escalation_policy}``) and
        ``maintenance_windows``.
        """
        store = cls()
        for threshold in load_thresholds(data.get("thresholds", [])):
            store.add_threshold(threshold)
        for rule in load_rules(data.get("rules", [])):
            store.add_rule(rule)
        for raw in data.get("recipients", []):
            store.add_recipient(AlertRecipient.from_dict(raw))
        for route in data.get("routing", []):
            entity_id = route.get("entity_id", "*")
            severity = route.get("severity", "*")
            if "channels" in route:
                store.set_channels(
                    entity_id,
                    [NotificationChannel.from_dict(c) for c in route["channels"]],
                    severity,
                )
            if "recipients" in route:
                recipients = []
                for item in route["recipients"]:
                    if isinstance(item, str):
                        item = store._directory.get(item) or AlertRecipient(item)
                    else:
                        item = AlertRecipient.from_dict(item)
                    recipients.append(item)
                store.set_recipients(entity_id, recipients, severity)
            if route.get("escalation_policy"):
                store.set_escalation_policy(
                    entity_id,
                    EscalationPolicy.from_dict(route["escalation_policy"]),
                    severity,
                )
        for raw in data.get("maintenance_windows", []):
            store.add_maintenance_window(MaintenanceWindow.from_dict(raw))
        return store

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryConfigurationStore":
        """Load a JSON config document from disk."""
        with open(path) as f:
            data = json.load(f)
        logger.info("Loaded monitoring configuration from %s", path)
        return cls.from_dict(data)
