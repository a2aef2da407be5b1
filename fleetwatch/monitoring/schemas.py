"""Schema definitions for metric snapshots, monitoring configs and alerts.

Config records (Threshold, AlertRule, EscalationPolicy, ...) validate
themselves in ``__post_init__`` and raise ``ConfigurationError`` so a bad
config can be logged and skipped without stopping an entity. The Alert
record maps 1:1 to the ``monitoring_alerts`` table; nested lists are stored
as JSONB.
"""

import json
import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fleetwatch.monitoring.errors import ConfigurationError

AlertType = Literal[
    "performance_threshold",
    "composite_rule",
    "statistical_anomaly",
    "trend_anomaly",
    "predictive_warning",
    "tier_risk",
    "compliance_issue",
]

VALID_ALERT_TYPES: frozenset[str] = frozenset({
    "performance_threshold",
    "composite_rule",
    "statistical_anomaly",
    "trend_anomaly",
    "predictive_warning",
    "tier_risk",
    "compliance_issue",
})

AlertSeverity = Literal["info", "warning", "critical", "emergency"]

VALID_SEVERITIES: frozenset[str] = frozenset({
    "info",
    "warning",
    "critical",
    "emergency",
})

SEVERITY_RANK: dict[str, int] = {
    "info": 0,
    "warning": 1,
    "critical": 2,
    "emergency": 3,
}

AlertStatus = Literal[
    "active", "acknowledged", "resolved", "suppressed", "false_positive",
]

VALID_STATUSES: frozenset[str] = frozenset({
    "active",
    "acknowledged",
    "resolved",
    "suppressed",
    "false_positive",
})

# Statuses the correlator and escalation manager treat as "still open"
OPEN_STATUSES: frozenset[str] = frozenset({"active", "acknowledged"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"resolved", "false_positive"})

VALID_THRESHOLD_TYPES: frozenset[str] = frozenset({
    "absolute", "percentage_change", "trend", "comparative",
})
VALID_DIRECTIONS: frozenset[str] = frozenset({"above", "below", "deviation"})
VALID_SENSITIVITIES: frozenset[str] = frozenset({"low", "medium", "high"})
VALID_OPERATORS: frozenset[str] = frozenset({"gt", "gte", "lt", "lte", "eq", "ne"})
VALID_TIME_AGGREGATIONS: frozenset[str] = frozenset({
    "avg", "sum", "min", "max", "count", "last",
})
VALID_AGGREGATION_METHODS: frozenset[str] = frozenset({"any", "all", "majority"})
VALID_SUPPRESSION_TYPES: frozenset[str] = frozenset({
    "maintenance_window", "time_based",
})
VALID_CHANNEL_TYPES: frozenset[str] = frozenset({
    "email", "sms", "push", "webhook", "slack", "teams",
})
VALID_BACKOFF_STRATEGIES: frozenset[str] = frozenset({
    "fixed", "linear", "exponential",
})
VALID_DELIVERY_STATUSES: frozenset[str] = frozenset({
    "pending", "sent", "delivered", "failed", "bounced",
})

_WINDOW_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd])\s*$")
_WINDOW_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def parse_window(window: str | None) -> timedelta | None:
    """Parse a ``"30s" / "5m" / "1h" / "1d"`` window string.

    Args:
        window: Window string, or None/empty for "no window".

    Returns:
        timedelta, or None when no window is set.

    Raises:
        ConfigurationError: If the string is malformed.
    """
    if not window:
        return None
    match = _WINDOW_RE.match(window)
    if match is None:
        raise ConfigurationError(f"Invalid time window {window!r}")
    amount, unit = match.groups()
    return timedelta(seconds=float(amount) * _WINDOW_UNITS[unit])


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO string or datetime, normalising naive values to UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _require(value: str, allowed: frozenset[str], name: str, config_id: str | None) -> None:
    if value not in allowed:
        raise ConfigurationError(
            f"Invalid {name} {value!r}. Must be one of: {sorted(allowed)}",
            config_id,
        )


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


# ── Metric ingest ────────────────────────────────────────


@dataclass
class MetricSnapshot:
    """A timestamped set of metric values for one entity.

    Non-numeric, boolean and non-finite values are dropped on construction,
    so downstream evaluators only ever see a value or a gap.
    """

    entity_id: str
    metrics: dict[str, float]
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.timestamp = parse_datetime(self.timestamp)
        self.metrics = {
            name: float(value)
            for name, value in (self.metrics or {}).items()
            if _is_number(value)
        }

    def get(self, metric_name: str) -> float | None:
        """Value of a metric, or None when the snapshot has a gap."""
        return self.metrics.get(metric_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "metrics": dict(self.metrics),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricSnapshot":
        return cls(
            entity_id=data["entity_id"],
            metrics=data.get("metrics", {}),
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
        )


# ── Monitoring configuration ─────────────────────────────


@dataclass
class Threshold:
    """Single-metric boundary check with warning and critical levels.

    Attributes:
        threshold_id: Config identifier.
        entity_id: Entity the threshold applies to.
        metric_name: Snapshot metric to check.
        threshold_type: How the observed value is derived (absolute,
            percentage_change, trend, comparative).
        warning_value: Warning bound (the reference value for deviation).
        critical_value: Critical bound (the allowed spread for deviation).
        direction: above, below or deviation.
        time_window: History window for derived types (e.g. ``"1h"``).
        sensitivity: Anomaly sensitivity for this metric.
        is_active: Inactive thresholds are never evaluated.
    """

    threshold_id: str
    entity_id: str
    metric_name: str
    warning_value: float
    critical_value: float
    direction: str = "above"
    threshold_type: str = "absolute"
    time_window: str | None = None
    sensitivity: str = "medium"
    is_active: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check the config is internally consistent.

        Raises:
            ConfigurationError: On any invalid field.
        """
        tid = self.threshold_id
        if not self.metric_name:
            raise ConfigurationError("metric_name is required", tid)
        _require(self.direction, VALID_DIRECTIONS, "direction", tid)
        _require(self.threshold_type, VALID_THRESHOLD_TYPES, "threshold_type", tid)
        _require(self.sensitivity, VALID_SENSITIVITIES, "sensitivity", tid)
        if not (_is_number(self.warning_value) and _is_number(self.critical_value)):
            raise ConfigurationError("warning_value and critical_value must be numbers", tid)
        parse_window(self.time_window)

        if self.direction == "above" and self.critical_value < self.warning_value:
            raise ConfigurationError(
                "critical_value must be >= warning_value for direction=above", tid,
            )
        if self.direction == "below" and self.critical_value > self.warning_value:
            raise ConfigurationError(
                "critical_value must be <= warning_value for direction=below", tid,
            )
        if self.direction == "deviation" and self.critical_value <= 0:
            raise ConfigurationError(
                "critical_value is the allowed deviation and must be > 0", tid,
            )

    @property
    def window(self) -> timedelta | None:
        return parse_window(self.time_window)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold_id": self.threshold_id,
            "entity_id": self.entity_id,
            "metric_name": self.metric_name,
            "threshold_type": self.threshold_type,
            "warning_value": self.warning_value,
            "critical_value": self.critical_value,
            "direction": self.direction,
            "time_window": self.time_window,
            "sensitivity": self.sensitivity,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Threshold":
        try:
            return cls(
                threshold_id=data["threshold_id"],
                entity_id=data["entity_id"],
                metric_name=data["metric_name"],
                warning_value=data["warning_value"],
                critical_value=data["critical_value"],
                direction=data.get("direction", "above"),
                threshold_type=data.get("threshold_type", "absolute"),
                time_window=data.get("time_window"),
                sensitivity=data.get("sensitivity", "medium"),
                is_active=data.get("is_active", True),
            )
        except KeyError as e:
            raise ConfigurationError(
                f"missing field {e.args[0]!r}", data.get("threshold_id"),
            ) from e


@dataclass
class AlertCondition:
    """One metric comparison inside an AlertRule."""

    metric_name: str
    operator: str
    value: float
    time_window: str | None = None
    aggregation: str = "last"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self, rule_id: str | None = None) -> None:
        if not self.metric_name:
            raise ConfigurationError("condition metric_name is required", rule_id)
        _require(self.operator, VALID_OPERATORS, "operator", rule_id)
        _require(self.aggregation, VALID_TIME_AGGREGATIONS, "aggregation", rule_id)
        if not _is_number(self.value):
            raise ConfigurationError(
                f"condition value for {self.metric_name!r} must be a number", rule_id,
            )
        parse_window(self.time_window)

    @property
    def window(self) -> timedelta | None:
        return parse_window(self.time_window)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "operator": self.operator,
            "value": self.value,
            "time_window": self.time_window,
            "aggregation": self.aggregation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertCondition":
        return cls(
            metric_name=data["metric_name"],
            operator=data["operator"],
            value=data["value"],
            time_window=data.get("time_window"),
            aggregation=data.get("aggregation", "last"),
        )


@dataclass
class SuppressionRule:
    """Rule-scoped suppression.

    ``maintenance_window`` expects ``{"start": iso, "end": iso}``;
    ``time_based`` expects daily ``{"start_time": "HH:MM", "end_time": "HH:MM"}``.
    Both are reported with reason ``maintenance_window``.
    """

    suppression_type: str
    configuration: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True

    def __post_init__(self) -> None:
        _require(
            self.suppression_type, VALID_SUPPRESSION_TYPES, "suppression_type", None,
        )

    def covers(self, moment: datetime) -> bool:
        """Whether this rule suppresses alerts at ``moment``."""
        if not self.is_active:
            return False
        if self.suppression_type == "maintenance_window":
            start = parse_datetime(self.configuration.get("start"))
            end = parse_datetime(self.configuration.get("end"))
            if start is None or end is None:
                return False
            return start <= moment < end
        start_time = self.configuration.get("start_time")
        end_time = self.configuration.get("end_time")
        if not start_time or not end_time:
            return False
        return _time_in_range(
            moment.astimezone(timezone.utc).time(),
            time.fromisoformat(start_time),
            time.fromisoformat(end_time),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "suppression_type": self.suppression_type,
            "configuration": self.configuration,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SuppressionRule":
        return cls(
            suppression_type=data["suppression_type"],
            configuration=data.get("configuration", {}),
            is_active=data.get("is_active", True),
        )


@dataclass
class EscalationLevel:
    """One notification tier; ``timeout`` is in minutes."""

    level: int
    recipients: list[str] = field(default_factory=list)
    channels: list[str] = field(default_factory=list)
    timeout: float = 15.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError(
                f"escalation level {self.level} timeout must be > 0",
            )
        for channel in self.channels:
            _require(channel, VALID_CHANNEL_TYPES, "channel", None)

    @property
    def timeout_delta(self) -> timedelta:
        return timedelta(minutes=self.timeout)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "recipients": list(self.recipients),
            "channels": list(self.channels),
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EscalationLevel":
        return cls(
            level=data["level"],
            recipients=data.get("recipients", []),
            channels=data.get("channels", []),
            timeout=data.get("timeout", 15.0),
        )


@dataclass
class EscalationPolicy:
    """Ordered escalation tiers."""

    escalation_levels: list[EscalationLevel] = field(default_factory=list)
    auto_escalation: bool = True

    def __post_init__(self) -> None:
        self.escalation_levels = sorted(self.escalation_levels, key=lambda lv: lv.level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "escalation_levels": [lv.to_dict() for lv in self.escalation_levels],
            "auto_escalation": self.auto_escalation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EscalationPolicy":
        return cls(
            escalation_levels=[
                EscalationLevel.from_dict(lv) for lv in data.get("escalation_levels", [])
            ],
            auto_escalation=data.get("auto_escalation", True),
        )


@dataclass
class AlertRule:
    """Composite multi-condition check with an aggregation policy.

    Attributes:
        rule_id: Config identifier.
        rule_name: Human-readable name used in alert titles.
        conditions: Ordered metric conditions.
        aggregation_method: any, all or majority.
        cooldown_period: Seconds during which a repeat trigger is discarded.
        auto_resolve: Resolve open alerts of this rule once it stops firing.
        suppression_rules: Rule-scoped maintenance/time windows.
        escalation_policy: Tiers used when the alert requires escalation.
        entity_id: Entity scope, or None for every entity.
        is_active: Inactive rules are never evaluated.
    """

    rule_id: str
    rule_name: str
    conditions: list[AlertCondition]
    aggregation_method: str = "any"
    cooldown_period: float = 300.0
    auto_resolve: bool = False
    suppression_rules: list[SuppressionRule] = field(default_factory=list)
    escalation_policy: EscalationPolicy | None = None
    entity_id: str | None = None
    is_active: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not self.conditions:
            raise ConfigurationError("rule needs at least one condition", self.rule_id)
        _require(
            self.aggregation_method,
            VALID_AGGREGATION_METHODS,
            "aggregation_method",
            self.rule_id,
        )
        if self.cooldown_period < 0:
            raise ConfigurationError("cooldown_period must be >= 0", self.rule_id)
        for condition in self.conditions:
            condition.validate(self.rule_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "conditions": [c.to_dict() for c in self.conditions],
            "aggregation_method": self.aggregation_method,
            "cooldown_period": self.cooldown_period,
            "auto_resolve": self.auto_resolve,
            "suppression_rules": [s.to_dict() for s in self.suppression_rules],
            "escalation_policy": (
                self.escalation_policy.to_dict() if self.escalation_policy else None
            ),
            "entity_id": self.entity_id,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertRule":
        rule_id = data.get("rule_id")
        try:
            policy = data.get("escalation_policy")
            return cls(
                rule_id=data["rule_id"],
                rule_name=data.get("rule_name", data["rule_id"]),
                conditions=[AlertCondition.from_dict(c) for c in data["conditions"]],
                aggregation_method=data.get("aggregation_method", "any"),
                cooldown_period=data.get("cooldown_period", 300.0),
                auto_resolve=data.get("auto_resolve", False),
                suppression_rules=[
                    SuppressionRule.from_dict(s) for s in data.get("suppression_rules", [])
                ],
                escalation_policy=EscalationPolicy.from_dict(policy) if policy else None,
                entity_id=data.get("entity_id"),
                is_active=data.get("is_active", True),
            )
        except ConfigurationError as e:
            if e.config_id is None and rule_id:
                raise ConfigurationError(str(e), rule_id) from e
            raise
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"malformed rule: {e}", rule_id) from e


@dataclass
class MaintenanceWindow:
    """A period during which an entity's alerts are suppressed.

    ``entity_id=None`` covers every entity.
    """

    start: datetime
    end: datetime
    entity_id: str | None = None
    reason: str = ""

    def __post_init__(self) -> None:
        self.start = parse_datetime(self.start)
        self.end = parse_datetime(self.end)
        if self.end <= self.start:
            raise ConfigurationError("maintenance window end must be after start")

    def covers(self, entity_id: str, moment: datetime) -> bool:
        if self.entity_id is not None and self.entity_id != entity_id:
            return False
        return self.start <= moment < self.end

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MaintenanceWindow":
        return cls(
            start=data["start"],
            end=data["end"],
            entity_id=data.get("entity_id"),
            reason=data.get("reason", ""),
        )


# ── Notification configuration ───────────────────────────


@dataclass
class RetryPolicy:
    """Per-channel retry settings; ``retry_interval`` is in seconds."""

    max_retries: int = 3
    retry_interval: float = 1.0
    backoff_strategy: str = "exponential"

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.retry_interval < 0:
            raise ConfigurationError("retry_interval must be >= 0")
        _require(
            self.backoff_strategy, VALID_BACKOFF_STRATEGIES, "backoff_strategy", None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "retry_interval": self.retry_interval,
            "backoff_strategy": self.backoff_strategy,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryPolicy":
        return cls(
            max_retries=data.get("max_retries", 3),
            retry_interval=data.get("retry_interval", 1.0),
            backoff_strategy=data.get("backoff_strategy", "exponential"),
        )


@dataclass
class NotificationChannel:
    """A delivery channel configured for an entity/severity."""

    channel_type: str
    channel_config: dict[str, Any] = field(default_factory=dict)
    delivery_speed: str = "immediate"
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        _require(self.channel_type, VALID_CHANNEL_TYPES, "channel_type", None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel_type": self.channel_type,
            "channel_config": self.channel_config,
            "delivery_speed": self.delivery_speed,
            "retry_policy": self.retry_policy.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationChannel":
        return cls(
            channel_type=data["channel_type"],
            channel_config=data.get("channel_config", {}),
            delivery_speed=data.get("delivery_speed", "immediate"),
            retry_policy=RetryPolicy.from_dict(data.get("retry_policy", {})),
        )


def _time_in_range(moment: time, start: time, end: time) -> bool:
    """Whether ``moment`` falls in [start, end), wrapping past midnight."""
    if start <= end:
        return start <= moment < end
    return moment >= start or moment < end


@dataclass
class QuietHours:
    """A daily do-not-disturb window for a recipient."""

    start_time: str
    end_time: str
    days_of_week: list[int] = field(default_factory=lambda: list(range(7)))
    exceptions: list[str] = field(default_factory=list)
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        try:
            time.fromisoformat(self.start_time)
            time.fromisoformat(self.end_time)
            ZoneInfo(self.timezone)
        except (ValueError, ZoneInfoNotFoundError) as e:
            raise ConfigurationError(f"invalid quiet hours: {e}") from e

    def contains(self, moment: datetime, alert_type: str | None = None) -> bool:
        """Whether ``moment`` falls in quiet hours for this alert type."""
        if alert_type is not None and alert_type in self.exceptions:
            return False
        local = moment.astimezone(ZoneInfo(self.timezone))
        start = time.fromisoformat(self.start_time)
        end = time.fromisoformat(self.end_time)
        # A window that wraps midnight belongs to the day it started on
        day = local.weekday()
        if start > end and local.time() < end:
            day = (day - 1) % 7
        if day not in self.days_of_week:
            return False
        return _time_in_range(local.time().replace(tzinfo=None), start, end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "days_of_week": list(self.days_of_week),
            "exceptions": list(self.exceptions),
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuietHours":
        return cls(
            start_time=data["start_time"],
            end_time=data["end_time"],
            days_of_week=data.get("days_of_week", list(range(7))),
            exceptions=data.get("exceptions", []),
            timezone=data.get("timezone", "UTC"),
        )


@dataclass
class NotificationPreferences:
    """Recipient-side delivery filters. Empty filters accept everything."""

    severity_filter: list[str] = field(default_factory=list)
    alert_types: list[str] = field(default_factory=list)
    quiet_hours: list[QuietHours] = field(default_factory=list)
    aggregation_preference: str = "immediate"
    max_frequency: int = 0  # alerts per hour, 0 = unlimited

    def accepts(self, severity: str, alert_type: str) -> bool:
        if self.severity_filter and severity not in self.severity_filter:
            return False
        if self.alert_types and alert_type not in self.alert_types:
            return False
        return True

    def in_quiet_hours(self, moment: datetime, alert_type: str | None = None) -> bool:
        return any(q.contains(moment, alert_type) for q in self.quiet_hours)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity_filter": list(self.severity_filter),
            "alert_types": list(self.alert_types),
            "quiet_hours": [q.to_dict() for q in self.quiet_hours],
            "aggregation_preference": self.aggregation_preference,
            "max_frequency": self.max_frequency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationPreferences":
        return cls(
            severity_filter=data.get("severity_filter", []),
            alert_types=data.get("alert_types", []),
            quiet_hours=[QuietHours.from_dict(q) for q in data.get("quiet_hours", [])],
            aggregation_preference=data.get("aggregation_preference", "immediate"),
            max_frequency=data.get("max_frequency", 0),
        )


@dataclass
class AlertRecipient:
    """A person, role or group that receives notifications."""

    recipient_id: str
    recipient_type: str = "user"
    contact_methods: list[str] = field(default_factory=list)
    escalation_level: int = 0
    notification_preferences: NotificationPreferences = field(
        default_factory=NotificationPreferences
    )

    def accepts_channel(self, channel_type: str) -> bool:
        return not self.contact_methods or channel_type in self.contact_methods

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "recipient_type": self.recipient_type,
            "contact_methods": list(self.contact_methods),
            "escalation_level": self.escalation_level,
            "notification_preferences": self.notification_preferences.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertRecipient":
        return cls(
            recipient_id=data["recipient_id"],
            recipient_type=data.get("recipient_type", "user"),
            contact_methods=data.get("contact_methods", []),
            escalation_level=data.get("escalation_level", 0),
            notification_preferences=NotificationPreferences.from_dict(
                data.get("notification_preferences", {})
            ),
        )


@dataclass
class NotificationStatus:
    """Outcome of delivering one alert to one recipient over one channel."""

    channel: str
    recipient_id: str
    status: str = "pending"
    attempts: int = 0
    last_attempt: datetime | None = None
    delivery_time: datetime | None = None
    error_message: str | None = None
    escalation_level: int = 0

    def __post_init__(self) -> None:
        _require(self.status, VALID_DELIVERY_STATUSES, "delivery status", None)

    @property
    def succeeded(self) -> bool:
        return self.status in ("sent", "delivered")

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "recipient_id": self.recipient_id,
            "status": self.status,
            "attempts": self.attempts,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "delivery_time": self.delivery_time.isoformat() if self.delivery_time else None,
            "error_message": self.error_message,
            "escalation_level": self.escalation_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationStatus":
        return cls(
            channel=data["channel"],
            recipient_id=data["recipient_id"],
            status=data.get("status", "pending"),
            attempts=data.get("attempts", 0),
            last_attempt=parse_datetime(data.get("last_attempt")),
            delivery_time=parse_datetime(data.get("delivery_time")),
            error_message=data.get("error_message"),
            escalation_level=data.get("escalation_level", 0),
        )


# ── Alerts ───────────────────────────────────────────────

_IMMUTABLE_ALERT_FIELDS = frozenset({"trigger_value", "threshold_value"})


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


@dataclass
class Alert:
    """A persisted alert record from the monitoring_alerts table.

    ``trigger_value`` and ``threshold_value`` cannot be reassigned after
    construction. Status changes go through the lifecycle manager.
    """

    entity_id: str
    alert_type: str
    severity: str
    title: str
    description: str
    triggered_by: str
    trigger_value: float
    threshold_value: float
    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    root_cause_analysis: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)
    escalation_required: bool = False
    triggered_at: datetime = field(default_factory=utc_now)
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    time_to_acknowledge: float | None = None
    time_to_resolve: float | None = None
    notification_channels: list[NotificationChannel] = field(default_factory=list)
    recipients: list[AlertRecipient] = field(default_factory=list)
    notification_status: list[NotificationStatus] = field(default_factory=list)
    status: str = "active"
    suppression_reason: str | None = None
    resolution_notes: str | None = None
    correlation_group: str | None = None
    similar_alerts: list[str] = field(default_factory=list)
    rule_id: str | None = None
    threshold_id: str | None = None
    escalation_policy: EscalationPolicy | None = None
    escalation_level: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _IMMUTABLE_ALERT_FIELDS and name in self.__dict__:
            raise AttributeError(f"Alert.{name} is immutable once created")
        object.__setattr__(self, name, value)

    def __post_init__(self) -> None:
        if self.alert_type not in VALID_ALERT_TYPES:
            raise ValueError(
                f"Invalid alert_type {self.alert_type!r}. "
                f"Must be one of: {sorted(VALID_ALERT_TYPES)}"
            )
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_STATUSES)}"
            )
        self.triggered_at = parse_datetime(self.triggered_at)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""

        def iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "alert_id": self.alert_id,
            "entity_id": self.entity_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "title": self.title,
            "description": self.description,
            "triggered_by": self.triggered_by,
            "trigger_value": self.trigger_value,
            "threshold_value": self.threshold_value,
            "root_cause_analysis": list(self.root_cause_analysis),
            "recommended_actions": list(self.recommended_actions),
            "escalation_required": self.escalation_required,
            "triggered_at": iso(self.triggered_at),
            "acknowledged_at": iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": iso(self.resolved_at),
            "time_to_acknowledge": self.time_to_acknowledge,
            "time_to_resolve": self.time_to_resolve,
            "notification_channels": [c.to_dict() for c in self.notification_channels],
            "recipients": [r.to_dict() for r in self.recipients],
            "notification_status": [s.to_dict() for s in self.notification_status],
            "status": self.status,
            "suppression_reason": self.suppression_reason,
            "resolution_notes": self.resolution_notes,
            "correlation_group": self.correlation_group,
            "similar_alerts": list(self.similar_alerts),
            "rule_id": self.rule_id,
            "threshold_id": self.threshold_id,
            "escalation_policy": (
                self.escalation_policy.to_dict() if self.escalation_policy else None
            ),
            "escalation_level": self.escalation_level,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        """Create an Alert from a dictionary or database row.

        JSON columns may arrive as strings (asyncpg without codecs) or as
        already-decoded structures.
        """
        policy = _load_json(data.get("escalation_policy"), None)
        return cls(
            alert_id=data.get("alert_id") or str(uuid.uuid4()),
            entity_id=data["entity_id"],
            alert_type=data["alert_type"],
            severity=data["severity"],
            title=data["title"],
            description=data.get("description", ""),
            triggered_by=data["triggered_by"],
            trigger_value=data["trigger_value"],
            threshold_value=data["threshold_value"],
            root_cause_analysis=_load_json(data.get("root_cause_analysis"), []),
            recommended_actions=_load_json(data.get("recommended_actions"), []),
            escalation_required=data.get("escalation_required", False),
            triggered_at=parse_datetime(data.get("triggered_at")) or utc_now(),
            acknowledged_at=parse_datetime(data.get("acknowledged_at")),
            acknowledged_by=data.get("acknowledged_by"),
            resolved_at=parse_datetime(data.get("resolved_at")),
            time_to_acknowledge=data.get("time_to_acknowledge"),
            time_to_resolve=data.get("time_to_resolve"),
            notification_channels=[
                NotificationChannel.from_dict(c)
                for c in _load_json(data.get("notification_channels"), [])
            ],
            recipients=[
                AlertRecipient.from_dict(r)
                for r in _load_json(data.get("recipients"), [])
            ],
            notification_status=[
                NotificationStatus.from_dict(s)
                for s in _load_json(data.get("notification_status"), [])
            ],
            status=data.get("status", "active"),
            suppression_reason=data.get("suppression_reason"),
            resolution_notes=data.get("resolution_notes"),
            correlation_group=data.get("correlation_group"),
            similar_alerts=list(_load_json(data.get("similar_alerts"), [])),
            rule_id=data.get("rule_id"),
            threshold_id=data.get("threshold_id"),
            escalation_policy=EscalationPolicy.from_dict(policy) if policy else None,
            escalation_level=data.get("escalation_level", 0),
            metadata=_load_json(data.get("metadata"), {}),
        )


@dataclass
class AlertSummary:
    """Read projection over alerts for dashboards."""

    entity_id: str | None
    total_open: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    oldest_open: datetime | None = None
    most_recent: datetime | None = None
    correlation_groups: int = 0
    mean_time_to_acknowledge: float | None = None
    mean_time_to_resolve: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "total_open": self.total_open,
            "by_severity": dict(self.by_severity),
            "by_status": dict(self.by_status),
            "by_type": dict(self.by_type),
            "oldest_open": self.oldest_open.isoformat() if self.oldest_open else None,
            "most_recent": self.most_recent.isoformat() if self.most_recent else None,
            "correlation_groups": self.correlation_groups,
            "mean_time_to_acknowledge": self.mean_time_to_acknowledge,
            "mean_time_to_resolve": self.mean_time_to_resolve,
        }
