"""Tests for the suppression engine."""

from datetime import datetime, timedelta, timezone

import pytest

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.schemas import (
    Alert,
    AlertCondition,
    AlertRecipient,
    AlertRule,
    MaintenanceWindow,
    NotificationPreferences,
    QuietHours,
    SuppressionRule,
)
from fleetwatch.monitoring.sources import InMemoryConfigurationStore
from fleetwatch.monitoring.store import InMemoryAlertStore
from fleetwatch.monitoring.suppression import (
    EXCESSIVE_DUPLICATES,
    MAINTENANCE_WINDOW,
    QUIET_HOURS,
    SuppressionEngine,
)

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _make_alert(severity="warning", minutes=0, **kwargs) -> Alert:
    defaults = dict(
        entity_id="E1",
        alert_type="performance_threshold",
        severity=severity,
        title="speed threshold",
        description="",
        triggered_by="speed",
        trigger_value=130.0,
        threshold_value=120.0,
        triggered_at=T0 + timedelta(minutes=minutes),
    )
    defaults.update(kwargs)
    return Alert(**defaults)


def _quiet_recipient(name: str) -> AlertRecipient:
    return AlertRecipient(
        name,
        notification_preferences=NotificationPreferences(
            quiet_hours=[QuietHours("08:00", "10:00")],
        ),
    )


@pytest.fixture
def store():
    return InMemoryAlertStore()


@pytest.fixture
def config_store():
    return InMemoryConfigurationStore()


@pytest.fixture
def engine(store, config_store):
    return SuppressionEngine(store, config_store, MonitoringConfig(duplicate_cap=5))


# ── Maintenance ─────────────────────────────────────────


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_entity_window(self, engine, config_store):
        config_store.add_maintenance_window(
            MaintenanceWindow(T0 - timedelta(hours=1), T0 + timedelta(hours=1), entity_id="E1")
        )
        assert await engine.check_suppression(_make_alert()) == (True, MAINTENANCE_WINDOW)
        assert await engine.check_suppression(_make_alert(entity_id="E2")) == (False, None)

    @pytest.mark.asyncio
    async def test_rule_level_window(self, engine):
        rule = AlertRule(
            "r1", "Night shift",
            conditions=[AlertCondition("speed", "gt", 100)],
            suppression_rules=[
                SuppressionRule("time_based", {"start_time": "08:30", "end_time": "09:30"}),
            ],
        )
        suppressed, reason = await engine.check_suppression(_make_alert(), rule)
        assert suppressed and reason == MAINTENANCE_WINDOW

    @pytest.mark.asyncio
    async def test_maintenance_checked_before_duplicates(self, engine, store, config_store):
        for i in range(6):
            await store.create(_make_alert(minutes=-i))
        config_store.add_maintenance_window(
            MaintenanceWindow(T0 - timedelta(hours=1), T0 + timedelta(hours=1))
        )
        assert await engine.check_suppression(_make_alert()) == (True, MAINTENANCE_WINDOW)


# ── Duplicates ──────────────────────────────────────────


class TestDuplicates:
    @pytest.mark.asyncio
    async def test_below_cap(self, engine, store):
        for i in range(4):
            await store.create(_make_alert(minutes=-i))
        assert await engine.check_suppression(_make_alert()) == (False, None)

    @pytest.mark.asyncio
    async def test_at_cap_suppresses(self, engine, store):
        for i in range(5):
            await store.create(_make_alert(minutes=-i, status="suppressed"))
        assert await engine.check_suppression(_make_alert()) == (True, EXCESSIVE_DUPLICATES)

    @pytest.mark.asyncio
    async def test_old_alerts_outside_window(self, engine, store):
        for i in range(5):
            await store.create(_make_alert(minutes=-(61 + i)))
        assert await engine.check_suppression(_make_alert()) == (False, None)


# ── Quiet hours ─────────────────────────────────────────


class TestQuietHours:
    @pytest.mark.asyncio
    async def test_info_all_recipients_quiet(self, engine):
        alert = _make_alert("info", recipients=[_quiet_recipient("a"), _quiet_recipient("b")])
        assert await engine.check_suppression(alert) == (True, QUIET_HOURS)

    @pytest.mark.asyncio
    async def test_one_recipient_awake(self, engine):
        alert = _make_alert("info", recipients=[_quiet_recipient("a"), AlertRecipient("b")])
        assert await engine.check_suppression(alert) == (False, None)

    @pytest.mark.asyncio
    async def test_warning_not_quieted(self, engine):
        alert = _make_alert("warning", recipients=[_quiet_recipient("a")])
        assert await engine.check_suppression(alert) == (False, None)

    @pytest.mark.asyncio
    async def test_no_recipients(self, engine):
        assert await engine.check_suppression(_make_alert("info")) == (False, None)
