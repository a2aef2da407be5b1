"""Tests for the periodic monitoring scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.scheduler import MonitoringScheduler


def _service(health=None) -> MagicMock:
    service = MagicMock()
    service.config = MonitoringConfig(predictive_enabled=False)
    service.check_escalations = AsyncMock(return_value=[])
    service.health_check = AsyncMock(return_value=health or {"store": True})
    return service


class TestTicks:
    @pytest.mark.asyncio
    async def test_escalation_tick(self):
        service = _service()
        service.check_escalations.return_value = ["a1"]
        assert await MonitoringScheduler(service).escalation_tick() == ["a1"]

    @pytest.mark.asyncio
    async def test_health_tick_records_last(self):
        service = _service({"store": False, "monitored_entities": 0})
        scheduler = MonitoringScheduler(service)
        await scheduler.health_tick()
        assert scheduler.last_health == {"store": False, "monitored_entities": 0}

    @pytest.mark.asyncio
    async def test_failing_tick_isolated(self):
        service = _service()
        service.check_escalations.side_effect = RuntimeError("store down")
        scheduler = MonitoringScheduler(service)

        await scheduler.run_once()

        service.health_check.assert_awaited_once()
        assert scheduler.last_health == {"store": True}


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        service = _service()
        config = MonitoringConfig(
            predictive_enabled=False,
            alert_queue_interval_seconds=0.01,
            health_check_interval_seconds=0.01,
        )
        scheduler = MonitoringScheduler(service, config)

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert not scheduler.running
        assert service.check_escalations.await_count >= 2
        assert service.health_check.await_count >= 2

    @pytest.mark.asyncio
    async def test_keeps_running_after_failure(self):
        service = _service()
        service.check_escalations.side_effect = [RuntimeError("boom"), [], [], [], [], []]
        config = MonitoringConfig(
            predictive_enabled=False,
            alert_queue_interval_seconds=0.01,
            health_check_interval_seconds=10,
        )
        scheduler = MonitoringScheduler(service, config)

        scheduler.start()
        await asyncio.sleep(0.04)
        await scheduler.stop()

        assert service.check_escalations.await_count >= 2
