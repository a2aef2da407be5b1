"""Statistical and trend anomaly detection per (entity, metric).

The baseline is the trailing window of samples *before* the current value,
so a spike never dilutes its own baseline. Detection is skipped entirely
until a metric has ``anomaly_min_samples`` samples.
"""

import logging
from collections.abc import Iterable

import numpy as np

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.history import MetricHistory
from fleetwatch.monitoring.schemas import Alert, MetricSnapshot, Threshold

logger = logging.getLogger(__name__)


class AnomalyDetector:
    """Rolling z-score and slope-change detector.

    Stateless apart from its config; samples come from the entity's
    ``MetricHistory``, which the caller owns.
    """

    def __init__(self, config: MonitoringConfig) -> None:
        self._config = config

    def _sensitivities(self, thresholds: Iterable[Threshold]) -> dict[str, str]:
        return {t.metric_name: t.sensitivity for t in thresholds}

    def check_statistical(
        self,
        snapshot: MetricSnapshot,
        metric: str,
        history: MetricHistory,
        sensitivity: str = "medium",
    ) -> Alert | None:
        """Flag ``|value - mean| > k * stddev`` over the trailing window.

        Args:
            snapshot: Latest snapshot (already recorded in ``history``).
            metric: Metric name.
            history: Entity history.
            sensitivity: Threshold sensitivity selecting ``k``.

        Returns:
            Alert or None.
        """
        value = snapshot.get(metric)
        if value is None:
            return None

        values = history.values(metric, limit=self._config.anomaly_window_size + 1)
        baseline = values[:-1]
        if len(baseline) < self._config.anomaly_min_samples:
            return None

        mean = float(np.mean(baseline))
        std = float(np.std(baseline))
        if std == 0:
            return None

        k = self._config.sensitivity_multiplier(sensitivity)
        z = abs(value - mean) / std
        if z <= k:
            return None

        severity = "critical" if z > k * self._config.anomaly_critical_factor else "warning"
        direction = "above" if value > mean else "below"
        return Alert(
            entity_id=snapshot.entity_id,
            alert_type="statistical_anomaly",
            severity=severity,
            title=f"Anomalous {metric}",
            description=(
                f"{metric} = {value:g} is {z:.1f} standard deviations {direction} "
                f"its baseline mean {mean:.3g}"
            ),
            triggered_by=metric,
            trigger_value=value,
            threshold_value=round(mean, 6),
            root_cause_analysis=[
                f"z-score {z:.2f} exceeds {k:g} ({sensitivity} sensitivity) "
                f"over {len(baseline)} samples",
            ],
            recommended_actions=[f"Verify recent {metric} readings for {snapshot.entity_id}"],
            escalation_required=severity == "critical",
            triggered_at=snapshot.timestamp,
            metadata={
                "z_score": round(z, 4),
                "stddev": round(std, 6),
                "k": k,
                "samples": len(baseline),
            },
        )

    def check_trend(
        self, snapshot: MetricSnapshot, metric: str, history: MetricHistory,
    ) -> Alert | None:
        """Compare slopes of the older and newer halves of the window.

        Flags a sign reversal when both slopes are significant, or an
        acceleration when their difference exceeds the configured magnitude.
        """
        if snapshot.get(metric) is None:
            return None

        values = history.values(metric, limit=self._config.anomaly_window_size)
        if len(values) < self._config.anomaly_min_samples:
            return None

        half = len(values) // 2
        older = np.asarray(values[:half])
        newer = np.asarray(values[half:])
        slope_old = float(np.polyfit(np.arange(len(older)), older, 1)[0])
        slope_new = float(np.polyfit(np.arange(len(newer)), newer, 1)[0])

        min_slope = self._config.trend_min_slope
        acceleration = abs(slope_new - slope_old)
        if (
            abs(slope_old) >= min_slope
            and abs(slope_new) >= min_slope
            and np.sign(slope_old) != np.sign(slope_new)
        ):
            kind = "reversal"
            severity = "warning"
            summary = f"{metric} trend reversed ({slope_old:+.3g} -> {slope_new:+.3g} per sample)"
        elif acceleration > self._config.trend_acceleration_threshold:
            kind = "acceleration"
            severity = (
                "critical"
                if acceleration > 2 * self._config.trend_acceleration_threshold
                else "warning"
            )
            summary = (
                f"{metric} trend accelerated ({slope_old:+.3g} -> {slope_new:+.3g} per sample)"
            )
        else:
            return None

        return Alert(
            entity_id=snapshot.entity_id,
            alert_type="trend_anomaly",
            severity=severity,
            title=f"{metric} trend {kind}",
            description=summary,
            triggered_by=metric,
            trigger_value=round(slope_new, 6),
            threshold_value=round(slope_old, 6),
            root_cause_analysis=[summary],
            recommended_actions=[f"Review the recent {metric} trajectory"],
            escalation_required=severity == "critical",
            triggered_at=snapshot.timestamp,
            metadata={"kind": kind, "samples": len(values)},
        )

    def detect(
        self,
        snapshot: MetricSnapshot,
        history: MetricHistory,
        thresholds: Iterable[Threshold] = (),
    ) -> list[Alert]:
        """Run both detectors over every metric in the snapshot."""
        sensitivities = self._sensitivities(thresholds)
        alerts: list[Alert] = []
        for metric in snapshot.metrics:
            sensitivity = sensitivities.get(metric, "medium")
            for alert in (
                self.check_statistical(snapshot, metric, history, sensitivity),
                self.check_trend(snapshot, metric, history),
            ):
                if alert is not None:
                    alerts.append(alert)
        return alerts
