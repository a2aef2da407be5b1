"""Tests for statistical and trend anomaly detection."""

from datetime import datetime, timedelta, timezone

import pytest

from fleetwatch.monitoring.anomaly import AnomalyDetector
from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.history import MetricHistory
from fleetwatch.monitoring.schemas import MetricSnapshot, Threshold

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _config(**kwargs) -> MonitoringConfig:
    return MonitoringConfig(predictive_enabled=False, **kwargs)


def _fill(values: list[float], metric="speed") -> tuple[MetricHistory, MetricSnapshot]:
    """Record values one minute apart and return the history and last snapshot."""
    history = MetricHistory(timedelta(days=1))
    snap = None
    for i, value in enumerate(values):
        snap = MetricSnapshot("E1", {metric: value}, T0 + timedelta(minutes=i))
        history.record(snap)
    return history, snap


# ── Statistical ─────────────────────────────────────────


class TestStatistical:
    # Baseline alternates 10/12: mean 11, stddev 1
    BASELINE = [10.0, 12.0] * 6

    def test_spike_is_critical(self):
        history, snap = _fill(self.BASELINE + [20.0])
        alert = AnomalyDetector(_config()).check_statistical(snap, "speed", history)

        assert alert is not None
        assert alert.alert_type == "statistical_anomaly"
        assert alert.severity == "critical"
        assert alert.trigger_value == 20.0
        assert alert.threshold_value == pytest.approx(11.0)
        assert alert.metadata["z_score"] == pytest.approx(9.0)
        assert alert.metadata["samples"] == 12

    def test_moderate_deviation_is_warning(self):
        history, snap = _fill(self.BASELINE + [14.0])
        alert = AnomalyDetector(_config()).check_statistical(snap, "speed", history)
        assert alert.severity == "warning"

    def test_at_k_does_not_trigger(self):
        history, snap = _fill(self.BASELINE + [13.5])
        assert AnomalyDetector(_config()).check_statistical(snap, "speed", history) is None

    def test_sensitivity_changes_k(self):
        history, snap = _fill(self.BASELINE + [13.5])
        detector = AnomalyDetector(_config())
        assert detector.check_statistical(snap, "speed", history, "high") is not None
        assert detector.check_statistical(snap, "speed", history, "low") is None

    def test_insufficient_history(self):
        history, snap = _fill([10.0, 12.0, 10.0, 50.0])
        assert AnomalyDetector(_config()).check_statistical(snap, "speed", history) is None

    def test_flat_baseline_is_skipped(self):
        history, snap = _fill([5.0] * 12 + [9.0])
        assert AnomalyDetector(_config()).check_statistical(snap, "speed", history) is None

    def test_missing_metric(self):
        history, _ = _fill(self.BASELINE)
        snap = MetricSnapshot("E1", {"fuel": 1.0}, T0)
        assert AnomalyDetector(_config()).check_statistical(snap, "speed", history) is None


# ── Trend ───────────────────────────────────────────────


class TestTrend:
    def test_reversal(self):
        rising = [float(i) for i in range(10)]
        history, snap = _fill(rising + rising[::-1])
        alert = AnomalyDetector(_config()).check_trend(snap, "speed", history)

        assert alert is not None
        assert alert.alert_type == "trend_anomaly"
        assert alert.metadata["kind"] == "reversal"
        assert alert.severity == "warning"
        assert alert.trigger_value == pytest.approx(-1.0)
        assert alert.threshold_value == pytest.approx(1.0)

    def test_acceleration(self):
        flat = [0.0] * 10
        steep = [float(2 * i) for i in range(10)]
        history, snap = _fill(flat + steep)
        alert = AnomalyDetector(_config()).check_trend(snap, "speed", history)

        assert alert.metadata["kind"] == "acceleration"
        assert alert.severity == "critical"

    def test_steady_trend_is_quiet(self):
        history, snap = _fill([float(i) for i in range(20)])
        assert AnomalyDetector(_config()).check_trend(snap, "speed", history) is None

    def test_insufficient_history(self):
        history, snap = _fill([0.0, 5.0, 0.0, 5.0])
        assert AnomalyDetector(_config()).check_trend(snap, "speed", history) is None


class TestDetect:
    def test_uses_threshold_sensitivity(self):
        history, snap = _fill(TestStatistical.BASELINE + [13.5])
        threshold = Threshold("t1", "E1", "speed", 100, 120, sensitivity="high")

        alerts = AnomalyDetector(_config()).detect(snap, history, [threshold])

        assert [a.alert_type for a in alerts] == ["statistical_anomaly"]

    def test_nothing_for_normal_values(self):
        history, snap = _fill(TestStatistical.BASELINE + [11.0])
        assert AnomalyDetector(_config()).detect(snap, history) == []
