"""Notification dispatcher orchestrating alert delivery across channels.

The evaluation pipeline enqueues jobs and never waits on delivery.
Independent worker tasks pull jobs from the bounded queue, expand them into
``channel x recipient`` targets filtered by recipient preferences, and send
each target with the channel's retry policy. Every target outcome is
recorded on the alert as a ``NotificationStatus``.

An alert whose every target failed is an unresolved dispatch failure: it is
logged at error level, counted, and pushed to a Redis dead-letter list when
Redis is configured. Escalating alerts are only reported once their last
escalation level has timed out (see ``EscalationManager``).

Pattern: Orchestrator, delegates to stateless transports.
"""

import asyncio
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleetwatch.monitoring.errors import AlertNotFoundError
from fleetwatch.monitoring.schemas import (
    Alert,
    AlertRecipient,
    NotificationChannel,
    NotificationStatus,
    utc_now,
)
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.notifications.queue import NotificationJob, NotificationQueue
from fleetwatch.notifications.retry import RetryBackoff
from fleetwatch.notifications.transports import (
    CircuitBreaker,
    DeliveryResult,
    NotificationTransport,
)
from fleetwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class NotificationConfig(BaseSettings):
    """Configuration for notification dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    queue_max_size: int = Field(
        default=1000,
        ge=1,
        description="Jobs held before info jobs are dropped",
    )
    worker_count: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Concurrent dispatcher worker tasks",
    )
    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound on a single transport send",
    )
    max_retry_delay_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Cap on any single retry delay",
    )
    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=1.0,
        description="Seconds before circuit breaker probes recovery",
    )
    dead_letter_key: str = Field(
        default="notify:dead_letter",
        description="Redis list receiving unresolved dispatch failures",
    )
    dead_letter_ttl_hours: int = Field(
        default=168,
        ge=1,
        description="TTL for the dead-letter list",
    )
    notify_correlated: bool = Field(
        default=False,
        description="Notify alerts that join an existing correlation group",
    )
    drain_timeout_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Time stop() waits for in-flight deliveries",
    )


class NotificationDispatcher:
    """Queue consumer delivering alerts through channel transports.

    Wraps each transport in a CircuitBreaker. ``sleep`` and ``clock`` are
    injectable so retry timing can be simulated.
    """

    def __init__(
        self,
        store: AlertStore,
        transports: dict[str, NotificationTransport],
        config: NotificationConfig | None = None,
        redis_client: Any | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config or NotificationConfig()
        self._redis = redis_client
        self._sleep = sleep
        self._clock = clock
        self._queue = NotificationQueue(self._config.queue_max_size)
        self._workers: list[asyncio.Task] = []
        self._in_flight = 0
        self._recent: dict[str, deque[datetime]] = {}

        self._transports: dict[str, NotificationTransport] = {}
        for channel_type, transport in transports.items():
            if not isinstance(transport, CircuitBreaker):
                transport = CircuitBreaker(
                    transport=transport,
                    failure_threshold=self._config.circuit_breaker_threshold,
                    recovery_timeout=self._config.circuit_breaker_recovery_seconds,
                )
            self._transports[channel_type] = transport

    @property
    def config(self) -> NotificationConfig:
        return self._config

    @property
    def queue(self) -> NotificationQueue:
        return self._queue

    @property
    def transports(self) -> dict[str, NotificationTransport]:
        """Wrapped transports by channel type (for inspection/testing)."""
        return self._transports

    # ── Producer side ────────────────────────────────────

    def enqueue(
        self,
        alert: Alert,
        *,
        escalation_level: int = 0,
        channels: list[NotificationChannel] | None = None,
        recipients: list[AlertRecipient] | None = None,
    ) -> bool:
        """Queue a delivery round without blocking.

        Suppressed alerts are never queued.

        Returns:
            True if the job was accepted.
        """
        if alert.status == "suppressed":
            return False
        return self._queue.put_nowait(
            NotificationJob(
                alert=alert,
                escalation_level=escalation_level,
                channels=channels,
                recipients=recipients,
            )
        )

    # ── Consumer side ────────────────────────────────────

    async def start(self) -> None:
        """Spawn worker tasks."""
        if self._workers:
            return
        for i in range(self._config.worker_count):
            self._workers.append(
                asyncio.create_task(self._worker_loop(), name=f"notify-worker-{i}")
            )
        logger.info("Notification dispatcher started with %d workers", len(self._workers))

    async def stop(self) -> None:
        """Let queued and in-flight deliveries finish, then stop workers."""
        if not self._workers:
            return
        await self.drain(self._config.drain_timeout_seconds)
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Notification dispatcher stopped")

    async def drain(self, timeout: float) -> bool:
        """Wait until the queue is empty and nothing is in flight."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self._queue) or self._in_flight:
            if loop.time() >= deadline:
                logger.warning(
                    "Dispatcher drain timed out (%d queued, %d in flight)",
                    len(self._queue), self._in_flight,
                )
                return False
            await asyncio.sleep(0.05)
        return True

    async def _worker_loop(self) -> None:
        while True:
            job = await self._queue.get()
            self._in_flight += 1
            try:
                await self.process(job)
            except Exception as e:
                logger.error(
                    "Unexpected error dispatching alert %s: %s", job.alert.alert_id, e,
                )
            finally:
                self._in_flight -= 1

    async def run_pending(self) -> list[NotificationStatus]:
        """Process every queued job inline. Used when no workers run."""
        statuses: list[NotificationStatus] = []
        while True:
            job = self._queue.get_nowait()
            if job is None:
                return statuses
            statuses.extend(await self.process(job))

    # ── Delivery ─────────────────────────────────────────

    def _within_frequency(self, recipient: AlertRecipient, now: datetime) -> bool:
        cap = recipient.notification_preferences.max_frequency
        if not cap:
            return True
        sent = self._recent.setdefault(recipient.recipient_id, deque())
        cutoff = now - timedelta(hours=1)
        while sent and sent[0] < cutoff:
            sent.popleft()
        return len(sent) < cap

    def select_targets(
        self, job: NotificationJob, now: datetime,
    ) -> list[tuple[NotificationChannel, AlertRecipient]]:
        """Expand a job into channel x recipient targets.

        Filters by severity and alert-type preferences, contact methods and
        the recipient's alerts-per-hour cap.
        """
        alert = job.alert
        channels = job.channels if job.channels is not None else alert.notification_channels
        recipients = job.recipients if job.recipients is not None else alert.recipients

        accepted: list[AlertRecipient] = []
        for recipient in recipients:
            prefs = recipient.notification_preferences
            if not prefs.accepts(alert.severity, alert.alert_type):
                continue
            if not self._within_frequency(recipient, now):
                logger.info(
                    "Recipient %s over %d alerts/hour, skipping alert %s",
                    recipient.recipient_id, prefs.max_frequency, alert.alert_id,
                )
                continue
            accepted.append(recipient)

        targets = [
            (channel, recipient)
            for recipient in accepted
            for channel in channels
            if recipient.accepts_channel(channel.channel_type)
        ]
        for recipient in {r.recipient_id: r for _, r in targets}.values():
            if recipient.notification_preferences.max_frequency:
                self._recent.setdefault(recipient.recipient_id, deque()).append(now)
        return targets

    async def _attempt(
        self,
        transport: NotificationTransport,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
    ) -> DeliveryResult:
        try:
            return await asyncio.wait_for(
                transport.send(channel, recipient, alert),
                timeout=self._config.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return DeliveryResult.failed("send timed out")
        except Exception as e:
            return DeliveryResult.failed(str(e))

    async def deliver(
        self,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
        escalation_level: int = 0,
    ) -> NotificationStatus:
        """Send to one target with the channel's retry policy.

        Returns:
            The final NotificationStatus for this target.
        """
        status = NotificationStatus(
            channel=channel.channel_type,
            recipient_id=recipient.recipient_id,
            status="pending",
            escalation_level=escalation_level,
        )
        transport = self._transports.get(channel.channel_type)
        if transport is None:
            status.status = "failed"
            status.error_message = f"no transport for channel {channel.channel_type}"
            get_metrics().record_notification(channel.channel_type, status.status)
            return status

        backoff = RetryBackoff(
            channel.retry_policy, max_delay=self._config.max_retry_delay_seconds,
        )
        for attempt in range(1, backoff.max_attempts + 1):
            status.attempts = attempt
            status.last_attempt = self._clock()
            result = await self._attempt(transport, channel, recipient, alert)
            status.status = result.status
            status.error_message = result.error_message

            if result.ok:
                status.delivery_time = result.delivered_at or self._clock()
                if attempt > 1:
                    logger.info(
                        "Alert %s delivered to %s via %s on attempt %d",
                        alert.alert_id, recipient.recipient_id,
                        channel.channel_type, attempt,
                    )
                break
            if result.status == "bounced":
                logger.warning(
                    "Alert %s bounced for %s via %s: %s",
                    alert.alert_id, recipient.recipient_id,
                    channel.channel_type, result.error_message,
                )
                break
            if attempt < backoff.max_attempts:
                await self._sleep(backoff.next_delay())
        else:
            logger.warning(
                "All %d attempts exhausted for alert %s to %s via %s",
                backoff.max_attempts, alert.alert_id,
                recipient.recipient_id, channel.channel_type,
            )

        get_metrics().record_notification(channel.channel_type, status.status)
        return status

    async def process(self, job: NotificationJob) -> list[NotificationStatus]:
        """Deliver one job to all of its targets and record the outcomes."""
        alert = job.alert
        if job.escalation_level > 0:
            current = await self._store.get(alert.alert_id)
            if current is None or current.status != "active":
                logger.debug(
                    "Skipping level %d for alert %s (no longer active)",
                    job.escalation_level, alert.alert_id,
                )
                return []

        targets = self.select_targets(job, self._clock())
        if not targets:
            logger.debug("No eligible targets for alert %s", alert.alert_id)
            return []

        statuses = list(
            await asyncio.gather(
                *(
                    self.deliver(channel, recipient, alert, job.escalation_level)
                    for channel, recipient in targets
                )
            )
        )
        try:
            await self._store.append_notification_status(alert.alert_id, statuses)
        except AlertNotFoundError:
            logger.error("Cannot record delivery for unknown alert %s", alert.alert_id)

        self._record_delivery(alert, statuses)
        escalates = alert.escalation_required and alert.escalation_policy is not None
        if not escalates and not any(s.succeeded for s in statuses):
            await self.report_unresolved(alert, "all notification targets failed")
        return statuses

    def _record_delivery(self, alert: Alert, statuses: list[NotificationStatus]) -> None:
        successes = [f"{s.channel}:{s.recipient_id}" for s in statuses if s.succeeded]
        failures = [f"{s.channel}:{s.recipient_id}" for s in statuses if not s.succeeded]
        if failures and successes:
            logger.warning(
                "Alert %s partial delivery: ok=%s failed=%s",
                alert.alert_id, successes, failures,
            )
        elif successes:
            logger.debug("Alert %s delivered to %s", alert.alert_id, successes)

    async def report_unresolved(self, alert: Alert, reason: str) -> None:
        """Log, count and dead-letter an alert no notification reached."""
        logger.error(
            "Unresolved dispatch failure for alert %s (%s, %s): %s",
            alert.alert_id, alert.entity_id, alert.severity, reason,
        )
        get_metrics().dispatch_failures.inc()

        if self._redis is None:
            return
        payload = json.dumps({
            "alert_id": alert.alert_id,
            "entity_id": alert.entity_id,
            "severity": alert.severity,
            "title": alert.title,
            "reason": reason,
            "reported_at": self._clock().isoformat(),
        })
        try:
            await self._redis.lpush(self._config.dead_letter_key, payload)
            await self._redis.expire(
                self._config.dead_letter_key, self._config.dead_letter_ttl_hours * 3600,
            )
        except Exception as e:
            logger.warning(
                "Failed to dead-letter alert %s: %s", alert.alert_id, e,
            )
