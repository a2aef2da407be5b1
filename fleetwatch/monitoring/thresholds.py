"""Threshold evaluation.

``evaluate_threshold`` is a pure function of an immutable config and a
value. ``check_thresholds`` derives the observed value per threshold type
from the entity's history and turns triggers into candidate alerts. No I/O;
persistence and notification live in the pipeline.
"""

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

import numpy as np

from fleetwatch.monitoring.errors import ConfigurationError, DataGapError
from fleetwatch.monitoring.history import MetricHistory
from fleetwatch.monitoring.schemas import Alert, MetricSnapshot, Threshold

logger = logging.getLogger(__name__)

# Window used by derived threshold types that don't set one
DEFAULT_DERIVED_WINDOW = timedelta(hours=1)


def evaluate_threshold(
    threshold: Threshold, value: float | None,
) -> tuple[bool, str | None]:
    """Check one value against a threshold's warning and critical bounds.

    Args:
        threshold: Threshold config.
        value: Observed value, or None for a data gap.

    Returns:
        ``(triggered, severity)``; severity is None when not triggered.
    """
    if value is None:
        return False, None

    if threshold.direction == "above":
        if value > threshold.warning_value:
            return True, "critical" if value > threshold.critical_value else "warning"
        return False, None

    if threshold.direction == "below":
        if value < threshold.warning_value:
            return True, "critical" if value < threshold.critical_value else "warning"
        return False, None

    # deviation: warning_value is the reference, critical_value the allowed spread
    deviation = abs(value - threshold.warning_value)
    if deviation > threshold.critical_value:
        return True, "critical" if deviation > 2 * threshold.critical_value else "warning"
    return False, None


def load_thresholds(raw: Iterable[Threshold | dict[str, Any]]) -> list[Threshold]:
    """Validate threshold configs, skipping invalid and inactive ones.

    Args:
        raw: Threshold objects or dicts from a configuration store.

    Returns:
        Active, valid thresholds.
    """
    thresholds: list[Threshold] = []
    for item in raw:
        try:
            threshold = item if isinstance(item, Threshold) else Threshold.from_dict(item)
            threshold.validate()
        except ConfigurationError as e:
            logger.warning("Skipping invalid threshold: %s", e)
            continue
        if threshold.is_active:
            thresholds.append(threshold)
    return thresholds


def observed_value(
    threshold: Threshold,
    snapshot: MetricSnapshot,
    history: MetricHistory | None,
) -> float:
    """Derive the value a threshold is compared against.

    The snapshot is expected to be recorded in ``history`` already.

    Raises:
        DataGapError: If the snapshot or history cannot supply the value.
    """
    metric = threshold.metric_name
    value = snapshot.get(metric)
    if value is None:
        raise DataGapError(snapshot.entity_id, metric)

    if threshold.threshold_type == "absolute":
        return value

    if history is None:
        raise DataGapError(snapshot.entity_id, metric)

    if threshold.threshold_type == "percentage_change":
        previous = history.previous(metric)
        if previous is None or previous == 0:
            raise DataGapError(snapshot.entity_id, metric)
        return (value - previous) / abs(previous) * 100.0

    since = snapshot.timestamp - (threshold.window or DEFAULT_DERIVED_WINDOW)

    if threshold.threshold_type == "trend":
        samples = history.window(metric, since, snapshot.timestamp)
        if len(samples) < 2:
            raise DataGapError(snapshot.entity_id, metric)
        x = np.array([(ts - samples[0][0]).total_seconds() / 60.0 for ts, _ in samples])
        if np.ptp(x) == 0:
            raise DataGapError(snapshot.entity_id, metric)
        y = np.array([v for _, v in samples])
        slope, _ = np.polyfit(x, y, 1)
        return float(slope)

    # comparative: percent deviation from the mean of the preceding window
    baseline = [
        v for ts, v in history.window(metric, since) if ts < snapshot.timestamp
    ]
    if not baseline:
        raise DataGapError(snapshot.entity_id, metric)
    mean = float(np.mean(baseline))
    if mean == 0:
        raise DataGapError(snapshot.entity_id, metric)
    return (value - mean) / abs(mean) * 100.0


def _describe(threshold: Threshold) -> str:
    if threshold.threshold_type == "absolute":
        return threshold.metric_name
    return f"{threshold.metric_name} ({threshold.threshold_type.replace('_', ' ')})"


def check_threshold(
    threshold: Threshold,
    snapshot: MetricSnapshot,
    history: MetricHistory | None = None,
) -> Alert | None:
    """Evaluate one threshold against a snapshot.

    Returns:
        Candidate alert, or None if not triggered or on a data gap.
    """
    try:
        value = observed_value(threshold, snapshot, history)
    except DataGapError:
        return None

    triggered, severity = evaluate_threshold(threshold, value)
    if not triggered:
        return None

    if threshold.direction == "deviation":
        bound = threshold.warning_value
        relation = f"deviates from {bound:g} by more than {threshold.critical_value:g}"
    else:
        bound = (
            threshold.critical_value if severity == "critical" else threshold.warning_value
        )
        relation = f"is {threshold.direction} {bound:g}"

    name = _describe(threshold)
    return Alert(
        entity_id=snapshot.entity_id,
        alert_type="performance_threshold",
        severity=severity,
        title=f"{name} {severity} threshold breached",
        description=f"{name} = {value:g} {relation}",
        triggered_by=threshold.metric_name,
        trigger_value=round(value, 6),
        threshold_value=bound,
        root_cause_analysis=[
            f"{threshold.metric_name} crossed the {severity} bound of "
            f"threshold {threshold.threshold_id}",
        ],
        recommended_actions=[
            f"Review recent {threshold.metric_name} activity for {snapshot.entity_id}",
        ],
        escalation_required=severity == "critical",
        triggered_at=snapshot.timestamp,
        threshold_id=threshold.threshold_id,
        metadata={
            "threshold_type": threshold.threshold_type,
            "direction": threshold.direction,
        },
    )


def check_thresholds(
    entity_id: str,
    snapshot: MetricSnapshot,
    thresholds: Iterable[Threshold],
    history: MetricHistory | None = None,
) -> list[Alert]:
    """Evaluate every active threshold for an entity.

    Args:
        entity_id: Entity being evaluated.
        snapshot: Latest snapshot.
        thresholds: Validated thresholds (see ``load_thresholds``).
        history: Entity history, required for derived threshold types.

    Returns:
        Candidate alerts.
    """
    alerts: list[Alert] = []
    for threshold in thresholds:
        if not threshold.is_active or threshold.entity_id not in (entity_id, "*"):
            continue
        alert = check_threshold(threshold, snapshot, history)
        if alert is not None:
            alerts.append(alert)
    return alerts
