"""Per-entity mutable evaluation state.

``EntityState`` is used by one running ``EntityWorker`` at a time; nothing
else writes it, so it carries no locks. The worker registry keeps it across
a stop and restart of the entity.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import numpy as np

from fleetwatch.monitoring.schemas import MetricSnapshot


class MetricHistory:
    """Bounded ``(timestamp, value)`` series per metric for one entity."""

    def __init__(self, retention: timedelta, max_samples: int = 500) -> None:
        self._retention = retention
        self._max_samples = max_samples
        self._series: dict[str, deque[tuple[datetime, float]]] = {}

    def record(self, snapshot: MetricSnapshot) -> None:
        """Append every metric in the snapshot and prune expired samples."""
        cutoff = snapshot.timestamp - self._retention
        for name, value in snapshot.metrics.items():
            series = self._series.get(name)
            if series is None:
                series = deque(maxlen=self._max_samples)
                self._series[name] = series
            series.append((snapshot.timestamp, value))
            while series and series[0][0] < cutoff:
                series.popleft()

    def metrics(self) -> list[str]:
        return list(self._series)

    def values(self, metric: str, limit: int | None = None) -> list[float]:
        """Most recent values, oldest first."""
        series = self._series.get(metric)
        if not series:
            return []
        values = [v for _, v in series]
        if limit is not None:
            values = values[-limit:]
        return values

    def window(
        self, metric: str, since: datetime, until: datetime | None = None,
    ) -> list[tuple[datetime, float]]:
        """Samples with ``since <= timestamp <= until``."""
        series = self._series.get(metric)
        if not series:
            return []
        return [
            (ts, v)
            for ts, v in series
            if ts >= since and (until is None or ts <= until)
        ]

    def previous(self, metric: str) -> float | None:
        """The sample before the latest, or None."""
        series = self._series.get(metric)
        if series is None or len(series) < 2:
            return None
        return series[-2][1]

    def aggregate(self, metric: str, aggregation: str, since: datetime) -> float | None:
        """Aggregate a metric over a window.

        Returns None when the window holds no samples (a data gap), except
        for ``count`` which is 0.
        """
        samples = [v for _, v in self.window(metric, since)]
        if aggregation == "count":
            return float(len(samples))
        if not samples:
            return None
        if aggregation == "avg":
            return float(np.mean(samples))
        if aggregation == "sum":
            return float(np.sum(samples))
        if aggregation == "min":
            return float(np.min(samples))
        if aggregation == "max":
            return float(np.max(samples))
        return samples[-1]

    def __len__(self) -> int:
        return sum(len(s) for s in self._series.values())


@dataclass
class EntityState:
    """Everything mutable about one monitored entity."""

    entity_id: str
    history: MetricHistory
    rule_last_fired: dict[str, datetime] = field(default_factory=dict)
    predictive_last_run: datetime | None = None
    last_snapshot_at: datetime | None = None

    @classmethod
    def create(
        cls, entity_id: str, retention_seconds: float, max_samples: int,
    ) -> "EntityState":
        return cls(
            entity_id=entity_id,
            history=MetricHistory(timedelta(seconds=retention_seconds), max_samples),
        )
