"""Tests for the bounded notification queue."""

import asyncio
from datetime import datetime, timezone

import pytest

from fleetwatch.monitoring.schemas import Alert
from fleetwatch.notifications.queue import NotificationJob, NotificationQueue

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _job(severity="warning", alert_id=None) -> NotificationJob:
    alert = Alert(
        entity_id="E1",
        alert_type="performance_threshold",
        severity=severity,
        title="t",
        description="",
        triggered_by="speed",
        trigger_value=1.0,
        threshold_value=1.0,
        triggered_at=T0,
        **({"alert_id": alert_id} if alert_id else {}),
    )
    return NotificationJob(alert)


class TestBackpressure:
    def test_fifo(self):
        queue = NotificationQueue(maxsize=10)
        jobs = [_job(alert_id=f"a{i}") for i in range(3)]
        for job in jobs:
            assert queue.put_nowait(job)
        assert [queue.get_nowait().alert.alert_id for _ in range(3)] == ["a0", "a1", "a2"]
        assert queue.get_nowait() is None

    def test_full_evicts_oldest_info(self):
        queue = NotificationQueue(maxsize=2)
        queue.put_nowait(_job("info", "old-info"))
        queue.put_nowait(_job("warning", "w1"))

        assert queue.put_nowait(_job("critical", "c1"))

        assert len(queue) == 2
        assert queue.dropped == 1
        assert [queue.get_nowait().alert.alert_id for _ in range(2)] == ["w1", "c1"]

    def test_incoming_info_dropped_when_nothing_to_evict(self):
        queue = NotificationQueue(maxsize=1)
        queue.put_nowait(_job("critical", "c1"))
        assert queue.put_nowait(_job("info", "i1")) is False
        assert queue.dropped == 1
        assert len(queue) == 1

    def test_non_info_admitted_past_capacity(self):
        queue = NotificationQueue(maxsize=1)
        queue.put_nowait(_job("critical", "c1"))
        assert queue.put_nowait(_job("warning", "w1"))
        assert len(queue) == 2
        assert queue.dropped == 0


class TestGet:
    @pytest.mark.asyncio
    async def test_waits_for_job(self):
        queue = NotificationQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not getter.done()

        queue.put_nowait(_job(alert_id="a1"))
        job = await asyncio.wait_for(getter, timeout=1)
        assert job.alert.alert_id == "a1"
