"""Tests for the predictive risk estimator and HTTP scorer."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.history import EntityState
from fleetwatch.monitoring.predictive import (
    HttpRiskScorer,
    PredictiveRiskEstimator,
    RiskPrediction,
)

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)
SCORER_URL = "http://scorer.test/predict"


def _state() -> EntityState:
    return EntityState.create("E1", retention_seconds=86400, max_samples=100)


def _scorer(probability=0.85, **kwargs) -> AsyncMock:
    scorer = AsyncMock()
    scorer.predict.return_value = RiskPrediction(probability=probability, **kwargs)
    return scorer


def _estimator(scorer, **overrides) -> PredictiveRiskEstimator:
    return PredictiveRiskEstimator(scorer, MonitoringConfig(**overrides))


# ── Severity mapping ────────────────────────────────────


class TestSeverity:
    @pytest.mark.parametrize(
        "probability,expected",
        [(0.95, "critical"), (0.8, "critical"), (0.7, "warning"), (0.6, "warning"), (0.59, None)],
    )
    def test_cutoffs(self, probability, expected):
        assert _estimator(None).severity_for(probability) == expected


# ── evaluate ────────────────────────────────────────────


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_critical_prediction(self):
        scorer = _scorer(0.85, factors=["rising incidents"], recommended_actions=["coach driver"])
        alerts = await _estimator(scorer).evaluate("E1", T0, _state())

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.alert_type == "predictive_warning"
        assert alert.severity == "critical"
        assert alert.trigger_value == 0.85
        assert alert.threshold_value == 0.8
        assert alert.root_cause_analysis == ["rising incidents"]
        assert alert.recommended_actions == ["coach driver"]
        assert alert.metadata["horizon"] == "1d"
        scorer.predict.assert_awaited_once_with("E1", "1d")

    @pytest.mark.asyncio
    async def test_low_probability_no_alert(self):
        alerts = await _estimator(_scorer(0.3)).evaluate("E1", T0, _state())
        assert alerts == []

    @pytest.mark.asyncio
    async def test_tier_risk_type(self):
        scorer = _scorer(0.65, risk_type="tier_risk")
        alerts = await _estimator(scorer).evaluate("E1", T0, _state())
        assert alerts[0].alert_type == "tier_risk"
        assert alerts[0].severity == "warning"

    @pytest.mark.asyncio
    async def test_every_horizon_scored(self):
        scorer = _scorer(0.9)
        estimator = _estimator(scorer, predictive_horizons=["1d", "7d"])
        alerts = await estimator.evaluate("E1", T0, _state())
        assert [a.metadata["horizon"] for a in alerts] == ["1d", "7d"]

    @pytest.mark.asyncio
    async def test_rate_limited_per_entity(self):
        scorer = _scorer(0.9)
        estimator = _estimator(scorer, predictive_interval_seconds=3600)
        state = _state()

        await estimator.evaluate("E1", T0, state)
        again = await estimator.evaluate("E1", T0 + timedelta(minutes=30), state)
        later = await estimator.evaluate("E1", T0 + timedelta(hours=1), state)

        assert again == []
        assert len(later) == 1
        assert scorer.predict.await_count == 2

    @pytest.mark.asyncio
    async def test_scorer_failure_yields_nothing(self):
        scorer = AsyncMock()
        scorer.predict.side_effect = RuntimeError("model offline")
        assert await _estimator(scorer).evaluate("E1", T0, _state()) == []

    @pytest.mark.asyncio
    async def test_scorer_timeout_yields_nothing(self):
        class SlowScorer:
            async def predict(self, entity_id, horizon):
                await asyncio.sleep(1)
                return RiskPrediction(probability=0.99)

        estimator = _estimator(SlowScorer(), predictive_timeout_seconds=0.01)
        assert await estimator.evaluate("E1", T0, _state()) == []

    @pytest.mark.asyncio
    async def test_disabled_or_missing_scorer(self):
        assert await _estimator(None).evaluate("E1", T0, _state()) == []
        scorer = _scorer(0.9)
        disabled = _estimator(scorer, predictive_enabled=False)
        assert await disabled.evaluate("E1", T0, _state()) == []
        scorer.predict.assert_not_awaited()


# ── HttpRiskScorer ──────────────────────────────────────


class TestHttpRiskScorer:
    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_entity_and_horizon(self):
        route = respx.post(SCORER_URL).mock(
            return_value=httpx.Response(
                200, json={"probability": 0.72, "factors": ["late deliveries"]},
            )
        )
        scorer = HttpRiskScorer(SCORER_URL, headers={"Authorization": "Bearer x"})

        prediction = await scorer.predict("E1", "7d")

        assert prediction.probability == 0.72
        assert prediction.factors == ["late deliveries"]
        request = route.calls.last.request
        assert json.loads(request.content) == {"entity_id": "E1", "horizon": "7d"}
        assert request.headers["Authorization"] == "Bearer x"

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_raises(self):
        respx.post(SCORER_URL).mock(return_value=httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            await HttpRiskScorer(SCORER_URL).predict("E1", "1d")
