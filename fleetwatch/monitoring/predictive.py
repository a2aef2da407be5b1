"""Predictive risk estimation.

The scoring model is an external collaborator behind ``RiskScorer``; this
module only decides whether a returned probability becomes an alert.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.history import EntityState
from fleetwatch.monitoring.schemas import Alert

logger = logging.getLogger(__name__)


@dataclass
class RiskPrediction:
    """A scorer's view of an entity's risk over a horizon."""

    probability: float
    severity: str | None = None
    recommended_actions: list[str] = field(default_factory=list)
    factors: list[str] = field(default_factory=list)
    risk_type: str = "performance_decline"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RiskPrediction":
        return cls(
            probability=float(data["probability"]),
            severity=data.get("severity"),
            recommended_actions=list(data.get("recommended_actions", [])),
            factors=list(data.get("factors", [])),
            risk_type=data.get("risk_type", "performance_decline"),
        )


class RiskScorer(Protocol):
    """Interface the estimator needs from a predictive model."""

    async def predict(self, entity_id: str, horizon: str) -> RiskPrediction: ...


class HttpRiskScorer:
    """Risk scorer backed by an HTTP scoring endpoint.

    POSTs ``{"entity_id", "horizon"}`` and expects a JSON body with at least
    ``probability``. Creates a short-lived ``httpx.AsyncClient`` per call.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}

    async def predict(self, entity_id: str, horizon: str) -> RiskPrediction:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(
                self._url,
                json={"entity_id": entity_id, "horizon": horizon},
                headers=self._headers,
            )
            resp.raise_for_status()
            return RiskPrediction.from_dict(resp.json())


class PredictiveRiskEstimator:
    """Turns scorer predictions into predictive alerts.

    Calls the scorer at most once per ``predictive_interval_seconds`` per
    entity, for every configured horizon.
    """

    def __init__(self, scorer: RiskScorer | None, config: MonitoringConfig) -> None:
        self._scorer = scorer
        self._config = config

    def severity_for(self, probability: float) -> str | None:
        if probability >= self._config.predictive_critical_probability:
            return "critical"
        if probability >= self._config.predictive_warning_probability:
            return "warning"
        return None

    def _is_due(self, state: EntityState, now: datetime) -> bool:
        if state.predictive_last_run is None:
            return True
        elapsed = (now - state.predictive_last_run).total_seconds()
        return elapsed >= self._config.predictive_interval_seconds

    def to_alert(
        self, entity_id: str, horizon: str, prediction: RiskPrediction, now: datetime,
    ) -> Alert | None:
        severity = self.severity_for(prediction.probability)
        if severity is None:
            return None

        alert_type = "tier_risk" if prediction.risk_type == "tier_risk" else "predictive_warning"
        label = prediction.risk_type.replace("_", " ")
        return Alert(
            entity_id=entity_id,
            alert_type=alert_type,
            severity=severity,
            title=f"Predicted {label} within {horizon}",
            description=(
                f"{prediction.probability:.0%} probability of {label} "
                f"for {entity_id} within {horizon}"
            ),
            triggered_by=f"predictive:{prediction.risk_type}",
            trigger_value=round(prediction.probability, 4),
            threshold_value=(
                self._config.predictive_critical_probability
                if severity == "critical"
                else self._config.predictive_warning_probability
            ),
            root_cause_analysis=list(prediction.factors),
            recommended_actions=list(prediction.recommended_actions),
            escalation_required=severity == "critical",
            triggered_at=now,
            metadata={
                "horizon": horizon,
                "risk_type": prediction.risk_type,
                "scorer_severity": prediction.severity,
            },
        )

    async def evaluate(
        self, entity_id: str, now: datetime, state: EntityState,
    ) -> list[Alert]:
        """Score an entity if due and build alerts for risky horizons.

        Scorer failures and timeouts are logged and yield no alerts.
        """
        if self._scorer is None or not self._config.predictive_enabled:
            return []
        if not self._is_due(state, now):
            return []
        state.predictive_last_run = now

        alerts: list[Alert] = []
        for horizon in self._config.predictive_horizons:
            try:
                prediction = await asyncio.wait_for(
                    self._scorer.predict(entity_id, horizon),
                    timeout=self._config.predictive_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Risk scorer timed out for %s (horizon %s)", entity_id, horizon,
                )
                continue
            except Exception as e:
                logger.warning(
                    "Risk scorer failed for %s (horizon %s): %s", entity_id, horizon, e,
                )
                continue

            alert = self.to_alert(entity_id, horizon, prediction, now)
            if alert is not None:
                alerts.append(alert)
        return alerts
