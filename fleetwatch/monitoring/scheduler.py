"""
Global periodic ticks for the monitoring service.

- escalation tick (``alert_queue_interval_seconds``): advances timed-out
  escalation levels
- health tick (``health_check_interval_seconds``): logs component health

A failing tick is logged and the loop keeps going; ticks never affect
per-entity processing. Ingest polling is per entity (see EntityWorker).
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.service import MonitoringService
from fleetwatch.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class MonitoringScheduler:
    """
    Runs the service's periodic work on fixed intervals.

    Usage:
        scheduler = MonitoringScheduler(service)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        service: MonitoringService,
        config: MonitoringConfig | None = None,
    ):
        self._service = service
        self._config = config or service.config
        self._tasks: list[asyncio.Task] = []
        self.last_health: dict[str, Any] | None = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def escalation_tick(self) -> list[str]:
        escalated = await self._service.check_escalations()
        if escalated:
            logger.info("Escalation tick", escalated=len(escalated))
        return escalated

    async def health_tick(self) -> dict[str, Any]:
        health = await self._service.health_check()
        self.last_health = health
        if not health.get("store", False):
            logger.warning("Health check degraded", **health)
        else:
            logger.debug("Health check", **health)
        return health

    async def run_once(self) -> None:
        """Run every tick once, isolating failures."""
        for name, tick in (("escalation", self.escalation_tick), ("health", self.health_tick)):
            await self._safe(name, tick)

    async def _safe(self, name: str, tick: Callable[[], Awaitable[Any]]) -> None:
        try:
            await tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            get_metrics().record_evaluation_error(f"{name}_tick", e)
            logger.error("Scheduler tick failed", tick=name, error=str(e))

    async def _every(
        self, name: str, interval: float, tick: Callable[[], Awaitable[Any]],
    ) -> None:
        while True:
            await self._safe(name, tick)
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(
                self._every(
                    "escalation",
                    self._config.alert_queue_interval_seconds,
                    self.escalation_tick,
                ),
                name="tick-escalation",
            ),
            asyncio.create_task(
                self._every(
                    "health",
                    self._config.health_check_interval_seconds,
                    self.health_tick,
                ),
                name="tick-health",
            ),
        ]
        logger.info(
            "Scheduler started",
            escalation_interval=self._config.alert_queue_interval_seconds,
            health_interval=self._config.health_check_interval_seconds,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")
