"""Monitoring service facade.

Wires the evaluation pipeline, per-entity workers, lifecycle manager,
dispatcher and escalation manager together and exposes the operations
collaborators call: ingestion, read projections, lifecycle mutators and
session control.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import numpy as np

from fleetwatch.config.settings import Settings
from fleetwatch.monitoring.anomaly import AnomalyDetector
from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.correlation import AlertCorrelator
from fleetwatch.monitoring.errors import MonitoringNotActiveError
from fleetwatch.monitoring.history import EntityState
from fleetwatch.monitoring.lifecycle import LifecycleManager
from fleetwatch.monitoring.pipeline import EvaluationPipeline
from fleetwatch.monitoring.predictive import HttpRiskScorer, PredictiveRiskEstimator, RiskScorer
from fleetwatch.monitoring.repository import AlertRepository
from fleetwatch.monitoring.schemas import (
    OPEN_STATUSES,
    Alert,
    AlertSummary,
    MetricSnapshot,
    utc_now,
)
from fleetwatch.monitoring.sources import (
    ConfigurationStore,
    InMemoryConfigurationStore,
    MetricSource,
)
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.monitoring.suppression import SuppressionEngine
from fleetwatch.monitoring.workers import EntityWorker, WorkerRegistry
from fleetwatch.notifications.dispatcher import NotificationConfig, NotificationDispatcher
from fleetwatch.notifications.escalation import EscalationManager
from fleetwatch.notifications.transports import NotificationTransport, build_transports
from fleetwatch.storage.database import Database

logger = logging.getLogger(__name__)


class MonitoringService:
    """Entry point for real-time monitoring.

    Usage:
        service = MonitoringService(store, config_store, transports={...})
        await service.start()
        await service.start_monitoring("E1")
        alerts = await service.process_real_time_data("E1", {"speed": 42.0})
        await service.close()
    """

    def __init__(
        self,
        store: AlertStore,
        config_store: ConfigurationStore,
        config: MonitoringConfig | None = None,
        notification_config: NotificationConfig | None = None,
        transports: dict[str, NotificationTransport] | None = None,
        scorer: RiskScorer | None = None,
        metric_source: MetricSource | None = None,
        redis_client: Any | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config_store = config_store
        self._config = config or MonitoringConfig()
        self._clock = clock
        self._metric_source = metric_source

        self._dispatcher = dispatcher or NotificationDispatcher(
            store,
            transports or {},
            config=notification_config,
            redis_client=redis_client,
            clock=clock,
        )
        self._escalation = EscalationManager(
            store, self._dispatcher, config_store=config_store, clock=clock,
        )
        self._lifecycle = LifecycleManager(store, clock=clock)
        self._pipeline = EvaluationPipeline(
            store=store,
            config_store=config_store,
            config=self._config,
            correlator=AlertCorrelator(store, self._config),
            suppression=SuppressionEngine(store, config_store, self._config),
            lifecycle=self._lifecycle,
            anomaly=AnomalyDetector(self._config),
            predictive=PredictiveRiskEstimator(scorer, self._config),
            dispatcher=self._dispatcher,
            escalation=self._escalation,
            notify_correlated=self._dispatcher.config.notify_correlated,
        )
        self._workers = WorkerRegistry(self._new_worker)

    def _new_worker(self, entity_id: str, state: EntityState | None) -> EntityWorker:
        return EntityWorker(
            entity_id, self._pipeline, self._config, self._metric_source, state=state,
        )

    @property
    def config(self) -> MonitoringConfig:
        return self._config

    @property
    def store(self) -> AlertStore:
        return self._store

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def escalation(self) -> EscalationManager:
        return self._escalation

    @property
    def monitored_entities(self) -> list[str]:
        return self._workers.entity_ids()

    # ── Lifecycle of the service itself ──────────────────

    async def start(self) -> None:
        """Start dispatcher workers and resume escalation tracking."""
        await self._dispatcher.start()
        await self._escalation.recover()
        logger.info("Monitoring service started")

    async def close(self) -> None:
        """Stop every entity, then let in-flight notifications finish."""
        await self._workers.stop_all()
        await self._dispatcher.stop()
        logger.info("Monitoring service stopped")

    # ── Session control ──────────────────────────────────

    async def start_monitoring(self, entity_id: str) -> bool:
        """Open a monitoring session for an entity.

        Returns:
            False if the entity was already monitored.
        """
        started = await self._workers.start(entity_id)
        if started:
            logger.info("Monitoring started for %s", entity_id)
        return started

    async def stop_monitoring(self, entity_id: str) -> bool:
        """Close an entity's session.

        Queued snapshots are rejected and no new alerts are created;
        notifications already queued or in flight still complete.

        Returns:
            False if the entity was not monitored.
        """
        stopped = await self._workers.stop(entity_id)
        if stopped:
            logger.info("Monitoring stopped for %s", entity_id)
        return stopped

    def is_monitoring(self, entity_id: str) -> bool:
        return entity_id in self._workers

    # ── Ingestion ────────────────────────────────────────

    async def process_real_time_data(
        self,
        entity_id: str,
        snapshot: MetricSnapshot | dict[str, float],
        timestamp: datetime | None = None,
    ) -> list[Alert]:
        """Evaluate a snapshot for an entity.

        Args:
            entity_id: Monitored entity.
            snapshot: A MetricSnapshot or a metric name -> value mapping.
            timestamp: Sample time for a mapping (defaults to now).

        Returns:
            Alerts persisted for this snapshot, suppressed ones included.

        Raises:
            MonitoringNotActiveError: No active session for the entity.
            ValueError: The snapshot belongs to another entity.
        """
        worker = self._workers.get(entity_id)
        if worker is None:
            raise MonitoringNotActiveError(entity_id)

        if isinstance(snapshot, MetricSnapshot):
            if snapshot.entity_id != entity_id:
                raise ValueError(
                    f"Snapshot for {snapshot.entity_id!r} submitted as {entity_id!r}"
                )
            if timestamp is not None:
                snapshot = MetricSnapshot(entity_id, snapshot.metrics, timestamp)
        else:
            snapshot = MetricSnapshot(
                entity_id=entity_id,
                metrics=snapshot,
                timestamp=timestamp or self._clock(),
            )
        return await worker.submit(snapshot)

    # ── Read projections ─────────────────────────────────

    async def get_active_alerts(self, entity_id: str | None = None) -> list[Alert]:
        """Open (active or acknowledged) alerts, newest first."""
        return await self._store.list_open(entity_id)

    async def get_alert_summary(self, entity_id: str | None = None) -> AlertSummary:
        """Counts and response times for an entity, or the whole fleet."""
        alerts = await self._store.list_for_summary(entity_id)
        open_alerts = [a for a in alerts if a.status in OPEN_STATUSES]

        summary = AlertSummary(entity_id=entity_id, total_open=len(open_alerts))
        for alert in alerts:
            summary.by_status[alert.status] = summary.by_status.get(alert.status, 0) + 1
        for alert in open_alerts:
            summary.by_severity[alert.severity] = summary.by_severity.get(alert.severity, 0) + 1
            summary.by_type[alert.alert_type] = summary.by_type.get(alert.alert_type, 0) + 1

        if open_alerts:
            summary.oldest_open = min(a.triggered_at for a in open_alerts)
            summary.correlation_groups = len(
                {a.correlation_group for a in open_alerts if a.correlation_group}
            )
        if alerts:
            summary.most_recent = max(a.triggered_at for a in alerts)

        tta = [a.time_to_acknowledge for a in alerts if a.time_to_acknowledge is not None]
        ttr = [a.time_to_resolve for a in alerts if a.time_to_resolve is not None]
        summary.mean_time_to_acknowledge = float(np.mean(tta)) if tta else None
        summary.mean_time_to_resolve = float(np.mean(ttr)) if ttr else None
        return summary

    # ── Lifecycle mutators ───────────────────────────────

    async def acknowledge_alert(self, alert_id: str, actor: str) -> Alert:
        """Raises InvalidStateTransition (or AlertNotFoundError)."""
        return await self._lifecycle.acknowledge(alert_id, actor)

    async def resolve_alert(self, alert_id: str, notes: str | None = None) -> Alert:
        """Raises InvalidStateTransition (or AlertNotFoundError)."""
        return await self._lifecycle.resolve(alert_id, notes)

    async def mark_false_positive(self, alert_id: str, notes: str | None = None) -> Alert:
        """Raises InvalidStateTransition (or AlertNotFoundError)."""
        return await self._lifecycle.mark_false_positive(alert_id, notes)

    # ── Periodic work ────────────────────────────────────

    async def check_escalations(self, now: datetime | None = None) -> list[str]:
        return await self._escalation.check_escalations(now)

    async def health_check(self) -> dict[str, Any]:
        """Component health for the scheduler's health tick and /health."""
        try:
            store_ok = await self._store.health_check()
        except Exception as e:
            logger.warning("Alert store health check failed: %s", e)
            store_ok = False
        return {
            "store": store_ok,
            "monitored_entities": len(self._workers),
            "notification_queue_depth": len(self._dispatcher.queue),
            "tracked_escalations": len(self._escalation),
        }


def create_service(
    settings: Settings,
    database: Database,
    redis_client: Any | None = None,
    metric_source: MetricSource | None = None,
) -> MonitoringService:
    """Build a MonitoringService from application settings.

    The alert store is the Postgres repository on ``database``. Thresholds,
    rules and routing come from ``settings.monitoring_config_path`` when
    set (an empty configuration otherwise).
    """
    if settings.monitoring_config_path:
        config_store = InMemoryConfigurationStore.from_file(settings.monitoring_config_path)
    else:
        logger.warning("No monitoring configuration file set; no thresholds or rules loaded")
        config_store = InMemoryConfigurationStore()

    notification_config = NotificationConfig()
    scorer = None
    if settings.risk_scorer_url:
        scorer = HttpRiskScorer(settings.risk_scorer_url, timeout=settings.risk_scorer_timeout)

    transports = build_transports(
        webhook_url=settings.webhook_url,
        slack_webhook_url=settings.slack_webhook_url,
        slack_channel=settings.slack_channel,
        timeout=notification_config.send_timeout_seconds,
    )
    return MonitoringService(
        store=AlertRepository(database),
        config_store=config_store,
        notification_config=notification_config,
        transports=transports,
        scorer=scorer,
        metric_source=metric_source,
        redis_client=redis_client,
    )
