"""Per-snapshot evaluation pipeline.

For one entity snapshot: record history, run the threshold, rule, anomaly
and predictive evaluators, then for every candidate alert attach routing,
correlate, check suppression, persist and hand off to notification.

The pipeline holds no per-entity state of its own; everything mutable is
in the ``EntityState`` passed in by the entity's worker, which also
guarantees that two snapshots of the same entity never run concurrently.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from fleetwatch.monitoring.anomaly import AnomalyDetector
from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.correlation import AlertCorrelator
from fleetwatch.monitoring.history import EntityState
from fleetwatch.monitoring.lifecycle import LifecycleManager
from fleetwatch.monitoring.predictive import PredictiveRiskEstimator
from fleetwatch.monitoring.rules import check_rules, load_rules
from fleetwatch.monitoring.schemas import Alert, AlertRule, MetricSnapshot
from fleetwatch.monitoring.sources import ConfigurationStore
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.monitoring.suppression import SuppressionEngine
from fleetwatch.monitoring.thresholds import check_thresholds, load_thresholds
from fleetwatch.notifications.dispatcher import NotificationDispatcher
from fleetwatch.notifications.escalation import EscalationManager
from fleetwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EvaluationPipeline:
    """evaluate -> correlate -> suppress -> store -> notify."""

    def __init__(
        self,
        store: AlertStore,
        config_store: ConfigurationStore,
        config: MonitoringConfig,
        correlator: AlertCorrelator,
        suppression: SuppressionEngine,
        lifecycle: LifecycleManager,
        anomaly: AnomalyDetector,
        predictive: PredictiveRiskEstimator,
        dispatcher: NotificationDispatcher | None = None,
        escalation: EscalationManager | None = None,
        notify_correlated: bool = False,
    ) -> None:
        self._store = store
        self._config_store = config_store
        self._config = config
        self._correlator = correlator
        self._suppression = suppression
        self._lifecycle = lifecycle
        self._anomaly = anomaly
        self._predictive = predictive
        self._dispatcher = dispatcher
        self._escalation = escalation
        self._notify_correlated = notify_correlated

    async def _guard(
        self, stage: str, entity_id: str, fn: Callable[[], Awaitable[T]], default: T,
    ) -> T:
        """Run one evaluator; a failure is logged and counted, not raised."""
        try:
            return await fn()
        except Exception as e:
            logger.error("%s evaluation failed for %s: %s", stage, entity_id, e)
            get_metrics().record_evaluation_error(stage, e)
            return default

    async def evaluate(
        self, snapshot: MetricSnapshot, state: EntityState,
    ) -> list[tuple[Alert, AlertRule | None]]:
        """Run every evaluator and collect candidate alerts.

        Also auto-resolves alerts of rules that have cleared.
        """
        entity_id = snapshot.entity_id
        state.history.record(snapshot)
        state.last_snapshot_at = snapshot.timestamp

        thresholds = load_thresholds(await self._config_store.get_thresholds(entity_id))
        rules = load_rules(await self._config_store.get_alert_rules(entity_id))
        rules_by_id = {r.rule_id: r for r in rules}

        candidates: list[tuple[Alert, AlertRule | None]] = []

        async def run_thresholds() -> list[Alert]:
            return check_thresholds(entity_id, snapshot, thresholds, state.history)

        async def run_rules() -> tuple[list[Alert], list[AlertRule]]:
            return check_rules(snapshot, rules, state, self._config)

        async def run_anomaly() -> list[Alert]:
            return self._anomaly.detect(snapshot, state.history, thresholds)

        async def run_predictive() -> list[Alert]:
            return await self._predictive.evaluate(entity_id, snapshot.timestamp, state)

        for alert in await self._guard("threshold", entity_id, run_thresholds, []):
            candidates.append((alert, None))

        rule_alerts, cleared = await self._guard("rule", entity_id, run_rules, ([], []))
        for alert in rule_alerts:
            candidates.append((alert, rules_by_id.get(alert.rule_id)))

        for alert in await self._guard("anomaly", entity_id, run_anomaly, []):
            candidates.append((alert, None))

        for alert in await self._guard("predictive", entity_id, run_predictive, []):
            candidates.append((alert, None))

        for rule in cleared:
            await self._lifecycle.auto_resolve_rule(entity_id, rule.rule_id, snapshot.timestamp)

        return candidates

    async def _attach_routing(self, alert: Alert) -> None:
        entity_id, severity = alert.entity_id, alert.severity
        alert.notification_channels = await self._config_store.get_notification_channels(
            entity_id, severity,
        )
        alert.recipients = await self._config_store.get_recipients(entity_id, severity)
        if alert.escalation_required and alert.escalation_policy is None:
            alert.escalation_policy = await self._config_store.get_escalation_policy(
                entity_id, severity,
            )

    async def admit(self, alert: Alert, rule: AlertRule | None = None) -> Alert:
        """Correlate, suppress, persist and notify one candidate.

        Returns:
            The persisted alert.
        """
        metrics = get_metrics()
        await self._attach_routing(alert)

        start = time.perf_counter()
        plan = await self._correlator.correlate(alert)
        metrics.pipeline_latency.labels(stage="correlate").observe(time.perf_counter() - start)

        start = time.perf_counter()
        suppress, reason = await self._suppression.check_suppression(alert, rule)
        if suppress:
            alert.status = "suppressed"
            alert.suppression_reason = reason
        metrics.pipeline_latency.labels(stage="suppress").observe(time.perf_counter() - start)

        start = time.perf_counter()
        stored = await self._store.create(alert)
        if plan is not None:
            await self._correlator.apply(plan, stored)
        metrics.pipeline_latency.labels(stage="store").observe(time.perf_counter() - start)

        metrics.record_alert_created(
            stored.alert_type, stored.severity, stored.status, stored.suppression_reason,
        )
        logger.info(
            "Alert %s created for %s: %s %s (%s)%s",
            stored.alert_id,
            stored.entity_id,
            stored.severity,
            stored.alert_type,
            stored.status,
            f" group={stored.correlation_group}" if stored.correlation_group else "",
        )

        if stored.status == "suppressed":
            return stored
        if (
            plan is not None
            and not self._notify_correlated
            and not plan.raises_severity(stored)
        ):
            logger.debug(
                "Alert %s joined group %s, not re-notifying",
                stored.alert_id, stored.correlation_group,
            )
            return stored

        if self._dispatcher is not None:
            self._dispatcher.enqueue(stored)
        if self._escalation is not None and stored.escalation_required:
            await self._escalation.track(stored)
        return stored

    async def process(self, snapshot: MetricSnapshot, state: EntityState) -> list[Alert]:
        """Run the full pipeline for one snapshot.

        Returns:
            Persisted alerts, suppressed ones included.
        """
        metrics = get_metrics()
        started = time.perf_counter()

        candidates = await self.evaluate(snapshot, state)
        metrics.pipeline_latency.labels(stage="evaluate").observe(time.perf_counter() - started)

        persisted: list[Alert] = []
        for alert, rule in candidates:
            persisted.append(await self.admit(alert, rule))

        metrics.pipeline_latency.labels(stage="total").observe(time.perf_counter() - started)
        if candidates:
            logger.debug(
                "Snapshot for %s produced %d alerts", snapshot.entity_id, len(persisted),
            )
        return persisted
