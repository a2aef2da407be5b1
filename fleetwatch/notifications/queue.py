"""Bounded in-process notification queue.

The evaluation pipeline enqueues without ever blocking. When the queue is
full the oldest ``info`` job is evicted to make room; an incoming ``info``
job with nothing to evict is dropped. Jobs of any other severity are never
dropped and are admitted past capacity with a warning.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from fleetwatch.monitoring.schemas import Alert, AlertRecipient, NotificationChannel, utc_now
from fleetwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass
class NotificationJob:
    """One delivery round for an alert.

    ``channels``/``recipients`` override the alert's own lists for an
    escalation level.
    """

    alert: Alert
    escalation_level: int = 0
    channels: list[NotificationChannel] | None = None
    recipients: list[AlertRecipient] | None = None
    enqueued_at: datetime = field(default_factory=utc_now)

    @property
    def severity(self) -> str:
        return self.alert.severity


class NotificationQueue:
    """Deque plus an event, consumed by dispatcher workers."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._maxsize = maxsize
        self._jobs: deque[NotificationJob] = deque()
        self._not_empty = asyncio.Event()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def _evict_oldest_info(self) -> NotificationJob | None:
        for job in self._jobs:
            if job.severity == "info":
                self._jobs.remove(job)
                return job
        return None

    def _record_drop(self, job: NotificationJob) -> None:
        self.dropped += 1
        get_metrics().notifications_dropped.labels(severity=job.severity).inc()
        logger.warning(
            "Notification queue full, dropped info alert %s", job.alert.alert_id,
        )

    def put_nowait(self, job: NotificationJob) -> bool:
        """Enqueue a job without blocking.

        Returns:
            False if the job itself was dropped by backpressure.
        """
        if len(self._jobs) >= self._maxsize:
            evicted = self._evict_oldest_info()
            if evicted is not None:
                self._record_drop(evicted)
            elif job.severity == "info":
                self._record_drop(job)
                return False
            else:
                logger.warning(
                    "Notification queue over capacity (%d), admitting %s alert %s",
                    len(self._jobs) + 1, job.severity, job.alert.alert_id,
                )

        self._jobs.append(job)
        self._not_empty.set()
        get_metrics().notification_queue_depth.set(len(self._jobs))
        return True

    def get_nowait(self) -> NotificationJob | None:
        if not self._jobs:
            self._not_empty.clear()
            return None
        job = self._jobs.popleft()
        if not self._jobs:
            self._not_empty.clear()
        get_metrics().notification_queue_depth.set(len(self._jobs))
        return job

    async def get(self) -> NotificationJob:
        """Wait for and return the next job."""
        while True:
            job = self.get_nowait()
            if job is not None:
                return job
            await self._not_empty.wait()
