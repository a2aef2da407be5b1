"""Tests for metric sources and the configuration store."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from fleetwatch.monitoring.schemas import (
    AlertRecipient,
    EscalationPolicy,
    MetricSnapshot,
    NotificationChannel,
)
from fleetwatch.monitoring.sources import (
    InMemoryConfigurationStore,
    InMemoryMetricSource,
    RedisMetricSource,
)

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _config_document() -> dict:
    return {
        "thresholds": [
            {"threshold_id": "t1", "entity_id": "E1", "metric_name": "speed",
             "warning_value": 100, "critical_value": 120},
            {"threshold_id": "fleet", "entity_id": "*", "metric_name": "fuel",
             "warning_value": 20, "critical_value": 10, "direction": "below"},
            {"threshold_id": "bad", "entity_id": "E1", "metric_name": "x",
             "warning_value": 5, "critical_value": 1},
        ],
        "rules": [
            {"rule_id": "r1", "entity_id": "E1",
             "conditions": [{"metric_name": "speed", "operator": "gt", "value": 90}]},
        ],
        "recipients": [
            {"recipient_id": "ops", "contact_methods": ["webhook"]},
        ],
        "routing": [
            {"entity_id": "*", "severity": "*",
             "channels": [{"channel_type": "webhook", "channel_config": {"url": "http://a"}}],
             "recipients": ["ops"]},
            {"entity_id": "E1", "severity": "critical",
             "channels": [{"channel_type": "slack"}],
             "recipients": [{"recipient_id": "lead"}],
             "escalation_policy": {"escalation_levels": [{"level": 1, "recipients": ["lead"]}]}},
        ],
        "maintenance_windows": [
            {"entity_id": "E2", "start": "2026-03-02T08:00:00+00:00",
             "end": "2026-03-02T10:00:00+00:00"},
        ],
    }


# ── Configuration store ─────────────────────────────────


class TestInMemoryConfigurationStore:
    @pytest.mark.asyncio
    async def test_from_dict_skips_invalid(self):
        store = InMemoryConfigurationStore.from_dict(_config_document())
        thresholds = await store.get_thresholds("E1")
        assert [t.threshold_id for t in thresholds] == ["t1", "fleet"]
        assert [t.threshold_id for t in await store.get_thresholds("E9")] == ["fleet"]
        assert [r.rule_id for r in await store.get_alert_rules("E1")] == ["r1"]
        assert await store.get_alert_rules("E2") == []

    @pytest.mark.asyncio
    async def test_routing_by_entity_and_severity(self):
        store = InMemoryConfigurationStore.from_dict(_config_document())

        critical = await store.get_notification_channels("E1", "critical")
        assert [c.channel_type for c in critical] == ["slack"]
        warning = await store.get_notification_channels("E1", "warning")
        assert [c.channel_type for c in warning] == ["webhook"]

        recipients = await store.get_recipients("E2", "info")
        assert recipients[0].contact_methods == ["webhook"]

        assert isinstance(await store.get_escalation_policy("E1", "critical"), EscalationPolicy)
        assert await store.get_escalation_policy("E1", "warning") is None

    @pytest.mark.asyncio
    async def test_recipient_directory(self):
        store = InMemoryConfigurationStore.from_dict(_config_document())
        assert (await store.get_recipient("lead")).recipient_id == "lead"
        assert await store.get_recipient("nobody") is None

    @pytest.mark.asyncio
    async def test_maintenance_windows_scoped(self):
        store = InMemoryConfigurationStore.from_dict(_config_document())
        assert len(await store.get_maintenance_windows("E2")) == 1
        assert await store.get_maintenance_windows("E1") == []

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(_config_document()))
        store = InMemoryConfigurationStore.from_file(path)
        assert len(await store.get_thresholds("E1")) == 2

    @pytest.mark.asyncio
    async def test_mutators(self):
        store = InMemoryConfigurationStore()
        store.set_channels("E1", [NotificationChannel("email")], severity="info")
        store.set_recipients("E1", [AlertRecipient("a")])
        assert [c.channel_type for c in await store.get_notification_channels("E1", "info")] == [
            "email"
        ]
        assert await store.get_notification_channels("E1", "critical") == []
        assert (await store.get_recipient("a")).recipient_id == "a"


# ── Metric sources ──────────────────────────────────────


class TestInMemoryMetricSource:
    @pytest.mark.asyncio
    async def test_latest_snapshot(self):
        source = InMemoryMetricSource()
        assert await source.fetch("E1") is None
        source.push(MetricSnapshot("E1", {"speed": 1.0}, T0))
        assert (await source.fetch("E1")).metrics == {"speed": 1.0}


class TestRedisMetricSource:
    @pytest.mark.asyncio
    async def test_reads_hash(self):
        source = RedisMetricSource("redis://localhost:6379/0", prefix="fleet")
        source._redis = AsyncMock()
        source._redis.hgetall.return_value = {
            "speed": "42.5",
            "status": "moving",
            "_timestamp": T0.isoformat(),
        }

        snapshot = await source.fetch("E1")

        source._redis.hgetall.assert_awaited_once_with("fleet:E1")
        assert snapshot.metrics == {"speed": 42.5}
        assert snapshot.timestamp == T0

    @pytest.mark.asyncio
    async def test_missing_hash(self):
        source = RedisMetricSource("redis://localhost:6379/0")
        source._redis = AsyncMock()
        source._redis.hgetall.return_value = {}
        assert await source.fetch("E1") is None

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        source = RedisMetricSource("redis://localhost:6379/0")
        with pytest.raises(RuntimeError):
            await source.fetch("E1")
