"""Durable alert store backed by PostgreSQL.

Follows the asyncpg repository pattern: ``$n`` parameters, dynamic WHERE
builders with an incremental ``param_idx``, JSONB for nested records and a
``_row_to_alert`` helper. ``trigger_value`` and ``threshold_value`` are
written once by ``create`` and no UPDATE statement touches them.
"""

import json
import logging
from datetime import datetime
from typing import Any

from fleetwatch.monitoring.errors import AlertNotFoundError, InvalidStateTransition
from fleetwatch.monitoring.schemas import OPEN_STATUSES, Alert, NotificationStatus
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.storage.database import Database

logger = logging.getLogger(__name__)

CREATE_ALERTS_TABLE = """
CREATE TABLE IF NOT EXISTS monitoring_alerts (
    alert_id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    triggered_by TEXT NOT NULL,
    trigger_value DOUBLE PRECISION NOT NULL,
    threshold_value DOUBLE PRECISION NOT NULL,
    root_cause_analysis JSONB NOT NULL DEFAULT '[]',
    recommended_actions JSONB NOT NULL DEFAULT '[]',
    escalation_required BOOLEAN NOT NULL DEFAULT FALSE,
    triggered_at TIMESTAMPTZ NOT NULL,
    acknowledged_at TIMESTAMPTZ,
    acknowledged_by TEXT,
    resolved_at TIMESTAMPTZ,
    time_to_acknowledge DOUBLE PRECISION,
    time_to_resolve DOUBLE PRECISION,
    notification_channels JSONB NOT NULL DEFAULT '[]',
    recipients JSONB NOT NULL DEFAULT '[]',
    notification_status JSONB NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'active',
    suppression_reason TEXT,
    resolution_notes TEXT,
    correlation_group TEXT,
    similar_alerts JSONB NOT NULL DEFAULT '[]',
    rule_id TEXT,
    threshold_id TEXT,
    escalation_policy JSONB,
    escalation_level INTEGER NOT NULL DEFAULT 0,
    metadata JSONB NOT NULL DEFAULT '{}'
)
"""

CREATE_ALERTS_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_monitoring_alerts_entity_status "
    "ON monitoring_alerts (entity_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_monitoring_alerts_dup_key "
    "ON monitoring_alerts (entity_id, triggered_by, alert_type, triggered_at)",
    "CREATE INDEX IF NOT EXISTS idx_monitoring_alerts_group "
    "ON monitoring_alerts (correlation_group) WHERE correlation_group IS NOT NULL",
)

# Columns a lifecycle transition may write besides status
TRANSITION_COLUMNS: frozenset[str] = frozenset({
    "acknowledged_at",
    "acknowledged_by",
    "time_to_acknowledge",
    "resolved_at",
    "time_to_resolve",
    "resolution_notes",
})


class AlertRepository(AlertStore):
    """PostgreSQL ``monitoring_alerts`` table as the alert store of record."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def ensure_schema(self) -> None:
        """Create the alerts table and indexes if missing."""
        async with self._db.transaction() as conn:
            await conn.execute(CREATE_ALERTS_TABLE)
            for statement in CREATE_ALERTS_INDEXES:
                await conn.execute(statement)
        logger.info("monitoring_alerts schema ensured")

    async def create(self, alert: Alert) -> Alert:
        """Insert a new alert.

        Args:
            alert: Alert to persist.

        Returns:
            The created Alert as stored.
        """
        data = alert.to_dict()
        sql = """
            INSERT INTO monitoring_alerts (
                alert_id, entity_id, alert_type, severity, title, description,
                triggered_by, trigger_value, threshold_value,
                root_cause_analysis, recommended_actions, escalation_required,
                triggered_at, notification_channels, recipients,
                notification_status, status, suppression_reason,
                correlation_group, similar_alerts, rule_id, threshold_id,
                escalation_policy, escalation_level, metadata
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13,
                $14, $15, $16, $17, $18, $19, $20, $21, $22, $23, $24, $25
            )
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            alert.alert_id,
            alert.entity_id,
            alert.alert_type,
            alert.severity,
            alert.title,
            alert.description,
            alert.triggered_by,
            alert.trigger_value,
            alert.threshold_value,
            json.dumps(data["root_cause_analysis"]),
            json.dumps(data["recommended_actions"]),
            alert.escalation_required,
            alert.triggered_at,
            json.dumps(data["notification_channels"]),
            json.dumps(data["recipients"]),
            json.dumps(data["notification_status"]),
            alert.status,
            alert.suppression_reason,
            alert.correlation_group,
            json.dumps(data["similar_alerts"]),
            alert.rule_id,
            alert.threshold_id,
            json.dumps(data["escalation_policy"]) if alert.escalation_policy else None,
            alert.escalation_level,
            json.dumps(data["metadata"]),
        )
        return _row_to_alert(row)

    async def get(self, alert_id: str) -> Alert | None:
        row = await self._db.fetchrow(
            "SELECT * FROM monitoring_alerts WHERE alert_id = $1", alert_id,
        )
        if row is None:
            return None
        return _row_to_alert(row)

    async def _list(
        self,
        *,
        entity_id: str | None = None,
        statuses: frozenset[str] | None = None,
        since: datetime | None = None,
        order: str = "DESC",
    ) -> list[Alert]:
        conditions: list[str] = []
        params: list[Any] = []
        param_idx = 1

        if entity_id is not None:
            conditions.append(f"entity_id = ${param_idx}")
            params.append(entity_id)
            param_idx += 1

        if statuses is not None:
            conditions.append(f"status = ANY(${param_idx}::text[])")
            params.append(sorted(statuses))
            param_idx += 1

        if since is not None:
            conditions.append(f"triggered_at >= ${param_idx}")
            params.append(since)
            param_idx += 1

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        sql = f"""
            SELECT * FROM monitoring_alerts
            {where_clause}
            ORDER BY triggered_at {order}
        """
        rows = await self._db.fetch(sql, *params)
        return [_row_to_alert(row) for row in rows]

    async def list_open(self, entity_id: str | None = None) -> list[Alert]:
        return await self._list(entity_id=entity_id, statuses=OPEN_STATUSES)

    async def list_active(self, entity_id: str | None = None) -> list[Alert]:
        return await self._list(
            entity_id=entity_id, statuses=frozenset({"active"}), order="ASC",
        )

    async def find_correlation_candidates(
        self,
        entity_id: str,
        alert_type: str,
        triggered_by: str,
        since: datetime,
    ) -> list[Alert]:
        sql = """
            SELECT * FROM monitoring_alerts
            WHERE entity_id = $1
              AND alert_type = $2
              AND triggered_by = $3
              AND triggered_at >= $4
              AND status = ANY($5::text[])
            ORDER BY triggered_at ASC
        """
        rows = await self._db.fetch(
            sql, entity_id, alert_type, triggered_by, since, sorted(OPEN_STATUSES),
        )
        return [_row_to_alert(row) for row in rows]

    async def count_recent(
        self,
        entity_id: str,
        triggered_by: str,
        alert_type: str,
        since: datetime,
    ) -> int:
        sql = """
            SELECT COUNT(*) FROM monitoring_alerts
            WHERE entity_id = $1
              AND triggered_by = $2
              AND alert_type = $3
              AND triggered_at >= $4
        """
        count = await self._db.fetchval(sql, entity_id, triggered_by, alert_type, since)
        return count or 0

    async def update_correlation(
        self, alert_id: str, correlation_group: str, similar_alerts: list[str],
    ) -> None:
        sql = """
            UPDATE monitoring_alerts
            SET correlation_group = $2, similar_alerts = $3
            WHERE alert_id = $1
            RETURNING alert_id
        """
        result = await self._db.fetchval(
            sql, alert_id, correlation_group, json.dumps(similar_alerts),
        )
        if result is None:
            raise AlertNotFoundError(alert_id, "correlated")

    async def apply_transition(
        self,
        alert_id: str,
        expected: frozenset[str],
        to_status: str,
        fields: dict[str, Any],
    ) -> Alert:
        unknown = set(fields) - TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"Transition cannot write columns: {sorted(unknown)}")

        assignments = ["status = $2"]
        params: list[Any] = [alert_id, to_status]
        param_idx = 3
        for column, value in fields.items():
            assignments.append(f"{column} = ${param_idx}")
            params.append(value)
            param_idx += 1
        params.append(sorted(expected))

        sql = f"""
            UPDATE monitoring_alerts
            SET {", ".join(assignments)}
            WHERE alert_id = $1 AND status = ANY(${param_idx}::text[])
            RETURNING *
        """
        row = await self._db.fetchrow(sql, *params)
        if row is not None:
            return _row_to_alert(row)

        current = await self._db.fetchval(
            "SELECT status FROM monitoring_alerts WHERE alert_id = $1", alert_id,
        )
        if current is None:
            raise AlertNotFoundError(alert_id, to_status)
        raise InvalidStateTransition(alert_id, current, to_status)

    async def append_notification_status(
        self, alert_id: str, statuses: list[NotificationStatus],
    ) -> None:
        sql = """
            UPDATE monitoring_alerts
            SET notification_status = notification_status || $2::jsonb
            WHERE alert_id = $1
            RETURNING alert_id
        """
        result = await self._db.fetchval(
            sql, alert_id, json.dumps([s.to_dict() for s in statuses]),
        )
        if result is None:
            raise AlertNotFoundError(alert_id, "notified")

    async def set_escalation_level(self, alert_id: str, level: int) -> None:
        sql = """
            UPDATE monitoring_alerts
            SET escalation_level = GREATEST(escalation_level, $2)
            WHERE alert_id = $1
            RETURNING alert_id
        """
        result = await self._db.fetchval(sql, alert_id, level)
        if result is None:
            raise AlertNotFoundError(alert_id, "escalated")

    async def list_by_group(self, correlation_group: str) -> list[Alert]:
        sql = """
            SELECT * FROM monitoring_alerts
            WHERE correlation_group = $1
            ORDER BY triggered_at ASC
        """
        rows = await self._db.fetch(sql, correlation_group)
        return [_row_to_alert(row) for row in rows]

    async def list_for_summary(
        self, entity_id: str | None = None, since: datetime | None = None,
    ) -> list[Alert]:
        return await self._list(entity_id=entity_id, since=since)

    async def health_check(self) -> bool:
        return await self._db.health_check()


def _row_to_alert(row: Any) -> Alert:
    """Convert an asyncpg Record to an Alert."""
    return Alert.from_dict(dict(row))
