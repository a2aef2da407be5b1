"""Tests for per-entity metric history."""

from datetime import datetime, timedelta, timezone

from fleetwatch.monitoring.history import EntityState, MetricHistory
from fleetwatch.monitoring.schemas import MetricSnapshot

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _record(history: MetricHistory, minutes: int, **metrics) -> None:
    history.record(MetricSnapshot("E1", metrics, T0 + timedelta(minutes=minutes)))


class TestMetricHistory:
    def test_values_oldest_first(self):
        history = MetricHistory(timedelta(hours=1))
        for i, v in enumerate([1.0, 2.0, 3.0]):
            _record(history, i, speed=v)
        assert history.values("speed") == [1.0, 2.0, 3.0]
        assert history.values("speed", limit=2) == [2.0, 3.0]
        assert history.values("fuel") == []

    def test_retention_prunes_old_samples(self):
        history = MetricHistory(timedelta(minutes=30))
        _record(history, 0, speed=1.0)
        _record(history, 20, speed=2.0)
        _record(history, 45, speed=3.0)
        assert history.values("speed") == [2.0, 3.0]

    def test_max_samples(self):
        history = MetricHistory(timedelta(days=1), max_samples=3)
        for i in range(5):
            _record(history, i, speed=float(i))
        assert history.values("speed") == [2.0, 3.0, 4.0]
        assert len(history) == 3

    def test_previous(self):
        history = MetricHistory(timedelta(hours=1))
        _record(history, 0, speed=1.0)
        assert history.previous("speed") is None
        _record(history, 1, speed=2.0)
        assert history.previous("speed") == 1.0

    def test_window_bounds(self):
        history = MetricHistory(timedelta(hours=1))
        for i in range(5):
            _record(history, i, speed=float(i))
        samples = history.window(
            "speed", T0 + timedelta(minutes=1), T0 + timedelta(minutes=3),
        )
        assert [v for _, v in samples] == [1.0, 2.0, 3.0]

    def test_aggregate(self):
        history = MetricHistory(timedelta(hours=1))
        for i, v in enumerate([4.0, 2.0, 6.0]):
            _record(history, i, speed=v)
        since = T0
        assert history.aggregate("speed", "avg", since) == 4.0
        assert history.aggregate("speed", "sum", since) == 12.0
        assert history.aggregate("speed", "min", since) == 2.0
        assert history.aggregate("speed", "max", since) == 6.0
        assert history.aggregate("speed", "count", since) == 3.0
        assert history.aggregate("speed", "last", since) == 6.0

    def test_aggregate_empty_window(self):
        history = MetricHistory(timedelta(hours=1))
        assert history.aggregate("speed", "avg", T0) is None
        assert history.aggregate("speed", "count", T0) == 0.0


class TestEntityState:
    def test_create(self):
        state = EntityState.create("E1", retention_seconds=60, max_samples=10)
        assert state.entity_id == "E1"
        assert state.rule_last_fired == {}
        assert state.predictive_last_run is None
        assert len(state.history) == 0
