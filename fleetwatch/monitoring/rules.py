"""Composite rule evaluation.

Comparison operators and cross-condition aggregation are enum strategies:
each ``Comparator`` member evaluates one comparison, each ``Aggregation``
member combines a list of condition results. Cooldown state lives in the
entity's ``EntityState`` and is only touched by that entity's worker.
"""

import logging
import operator
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.errors import ConfigurationError
from fleetwatch.monitoring.history import EntityState, MetricHistory
from fleetwatch.monitoring.schemas import (
    Alert,
    AlertCondition,
    AlertRule,
    MetricSnapshot,
)
from fleetwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Comparator(Enum):
    """Condition operators."""

    GT = ("gt", operator.gt, ">")
    GTE = ("gte", operator.ge, ">=")
    LT = ("lt", operator.lt, "<")
    LTE = ("lte", operator.le, "<=")
    EQ = ("eq", operator.eq, "==")
    NE = ("ne", operator.ne, "!=")

    def __init__(
        self, code: str, op: Callable[[float, float], bool], symbol: str,
    ) -> None:
        self.code = code
        self._op = op
        self.symbol = symbol

    def evaluate(self, value: float, target: float) -> bool:
        return bool(self._op(value, target))

    @classmethod
    def from_code(cls, code: str) -> "Comparator":
        for member in cls:
            if member.code == code:
                return member
        raise ConfigurationError(f"Unknown operator {code!r}")


class Aggregation(Enum):
    """How condition results combine into a rule trigger."""

    ANY = "any"
    ALL = "all"
    MAJORITY = "majority"

    def combine(self, results: list[bool]) -> bool:
        if not results:
            return False
        if self is Aggregation.ANY:
            return any(results)
        if self is Aggregation.ALL:
            return all(results)
        return sum(results) > len(results) / 2


@dataclass
class ConditionResult:
    """Outcome of evaluating one condition."""

    condition: AlertCondition
    value: float | None
    triggered: bool
    reason: str | None = None


@dataclass
class RuleEvaluation:
    """Outcome of evaluating a whole rule against a snapshot."""

    rule: AlertRule
    results: list[ConditionResult]
    triggered: bool

    @property
    def triggered_ratio(self) -> float:
        if not self.results:
            return 0.0
        return sum(r.triggered for r in self.results) / len(self.results)

    @property
    def has_gaps(self) -> bool:
        return any(r.reason == "missing" for r in self.results)


def load_rules(raw: Iterable[AlertRule | dict[str, Any]]) -> list[AlertRule]:
    """Validate rule configs, skipping invalid and inactive ones."""
    rules: list[AlertRule] = []
    for item in raw:
        try:
            rule = item if isinstance(item, AlertRule) else AlertRule.from_dict(item)
            rule.validate()
        except ConfigurationError as e:
            logger.warning("Skipping invalid alert rule: %s", e)
            continue
        if rule.is_active:
            rules.append(rule)
    return rules


def condition_value(
    condition: AlertCondition,
    snapshot: MetricSnapshot,
    history: MetricHistory | None,
) -> float | None:
    """Latest value, or the windowed aggregate when the condition has a window."""
    window = condition.window
    if window is None or condition.aggregation == "last" or history is None:
        return snapshot.get(condition.metric_name)
    return history.aggregate(
        condition.metric_name, condition.aggregation, snapshot.timestamp - window,
    )


def evaluate_condition(
    condition: AlertCondition,
    snapshot: MetricSnapshot,
    history: MetricHistory | None = None,
) -> ConditionResult:
    """Evaluate one condition against a snapshot.

    Args:
        condition: Metric condition to check.
        snapshot: Latest snapshot.
        history: Entity history, used when the condition has a window.

    Returns:
        The result. A missing value gives an untriggered result with
        reason ``"missing"``; a gap never triggers.
    """
    value = condition_value(condition, snapshot, history)
    if value is None:
        return ConditionResult(condition, None, False, reason="missing")
    comparator = Comparator.from_code(condition.operator)
    return ConditionResult(condition, value, comparator.evaluate(value, condition.value))


def evaluate_rule(
    rule: AlertRule,
    snapshot: MetricSnapshot,
    history: MetricHistory | None = None,
) -> RuleEvaluation:
    """Evaluate every condition of a rule and combine the results."""
    results = [evaluate_condition(c, snapshot, history) for c in rule.conditions]
    aggregation = Aggregation(rule.aggregation_method)
    return RuleEvaluation(
        rule=rule,
        results=results,
        triggered=aggregation.combine([r.triggered for r in results]),
    )


def rule_severity(ratio: float, config: MonitoringConfig) -> str:
    """Map a triggered-condition ratio to a severity.

    Args:
        ratio: Fraction of conditions that triggered, 0.0 to 1.0.
        config: Supplies the critical and warning ratio cut-offs.

    Returns:
        critical, warning or info.
    """
    if ratio >= config.rule_critical_ratio:
        return "critical"
    if ratio >= config.rule_warning_ratio:
        return "warning"
    return "info"


def _required_ratio(rule: AlertRule) -> float:
    n = len(rule.conditions)
    if rule.aggregation_method == "all":
        return 1.0
    if rule.aggregation_method == "majority":
        return (n // 2 + 1) / n
    return 1 / n


def build_rule_alert(
    evaluation: RuleEvaluation, snapshot: MetricSnapshot, config: MonitoringConfig,
) -> Alert:
    """Build the candidate alert for a triggered rule.

    Args:
        evaluation: A triggered rule evaluation.
        snapshot: Snapshot the rule fired on; its time becomes ``triggered_at``.
        config: Severity ratio cut-offs.

    Returns:
        An unsaved composite_rule alert whose trigger value is the
        triggered ratio and whose threshold is the ratio the aggregation
        method requires.
    """
    rule = evaluation.rule
    ratio = evaluation.triggered_ratio
    severity = rule_severity(ratio, config)
    fired = [r for r in evaluation.results if r.triggered]
    details = [
        f"{r.condition.metric_name} = {r.value:g} "
        f"{Comparator.from_code(r.condition.operator).symbol} {r.condition.value:g}"
        for r in fired
    ]
    missing = [r.condition.metric_name for r in evaluation.results if r.reason == "missing"]

    metadata: dict[str, Any] = {
        "aggregation_method": rule.aggregation_method,
        "conditions_triggered": len(fired),
        "conditions_total": len(evaluation.results),
    }
    if missing:
        metadata["missing_metrics"] = missing

    return Alert(
        entity_id=snapshot.entity_id,
        alert_type="composite_rule",
        severity=severity,
        title=f"Rule triggered: {rule.rule_name}",
        description=(
            f"{len(fired)} of {len(evaluation.results)} conditions met "
            f"({rule.aggregation_method})"
        ),
        triggered_by=f"rule:{rule.rule_id}",
        trigger_value=round(ratio, 4),
        threshold_value=round(_required_ratio(rule), 4),
        root_cause_analysis=details,
        recommended_actions=[f"Investigate conditions of rule {rule.rule_name}"],
        escalation_required=severity == "critical",
        triggered_at=snapshot.timestamp,
        rule_id=rule.rule_id,
        escalation_policy=rule.escalation_policy,
        metadata=metadata,
    )


def check_rules(
    snapshot: MetricSnapshot,
    rules: Iterable[AlertRule],
    state: EntityState,
    config: MonitoringConfig,
) -> tuple[list[Alert], list[AlertRule]]:
    """Evaluate rules for one entity, applying per-rule cooldown.

    Args:
        snapshot: Latest snapshot (already recorded in ``state.history``).
        rules: Validated rules.
        state: The entity's mutable state; cooldown timestamps are updated.
        config: Monitoring configuration.

    Returns:
        ``(alerts, cleared)``: candidate alerts, and auto-resolve rules that
        evaluated without triggering and without missing metrics.
    """
    alerts: list[Alert] = []
    cleared: list[AlertRule] = []
    for rule in rules:
        if not rule.is_active or rule.entity_id not in (None, snapshot.entity_id):
            continue

        evaluation = evaluate_rule(rule, snapshot, state.history)
        if not evaluation.triggered:
            # A metric gap is not evidence that the condition cleared
            if rule.auto_resolve and not evaluation.has_gaps:
                cleared.append(rule)
            continue

        if evaluation.triggered_ratio <= config.rule_min_trigger_ratio:
            continue

        last_fired = state.rule_last_fired.get(rule.rule_id)
        if last_fired is not None:
            elapsed = (snapshot.timestamp - last_fired).total_seconds()
            # Samples older than the last firing count as inside the cooldown
            if elapsed < rule.cooldown_period:
                logger.debug(
                    "Rule %s in cooldown for %s (%.0fs left)",
                    rule.rule_id,
                    snapshot.entity_id,
                    rule.cooldown_period - elapsed,
                )
                get_metrics().rule_cooldown_skips.inc()
                continue

        state.rule_last_fired[rule.rule_id] = snapshot.timestamp
        alerts.append(build_rule_alert(evaluation, snapshot, config))
    return alerts, cleared
