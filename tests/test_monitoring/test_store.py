"""Tests for the in-memory alert store."""

from datetime import datetime, timedelta, timezone

import pytest

from fleetwatch.monitoring.errors import AlertNotFoundError, InvalidStateTransition
from fleetwatch.monitoring.schemas import Alert, NotificationStatus
from fleetwatch.monitoring.store import InMemoryAlertStore

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _make_alert(minutes=0, **kwargs) -> Alert:
    defaults = dict(
        entity_id="E1",
        alert_type="performance_threshold",
        severity="warning",
        title="speed threshold",
        description="",
        triggered_by="speed",
        trigger_value=130.0,
        threshold_value=120.0,
        triggered_at=T0 + timedelta(minutes=minutes),
    )
    defaults.update(kwargs)
    return Alert(**defaults)


@pytest.fixture
def store():
    return InMemoryAlertStore()


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        alert = await store.create(_make_alert())
        with pytest.raises(ValueError):
            await store.create(alert)

    @pytest.mark.asyncio
    async def test_returns_copies(self, store):
        alert = await store.create(_make_alert())
        fetched = await store.get(alert.alert_id)
        fetched.status = "resolved"
        assert (await store.get(alert.alert_id)).status == "active"

    @pytest.mark.asyncio
    async def test_missing(self, store):
        assert await store.get("nope") is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_open_newest_first(self, store):
        old = await store.create(_make_alert(0))
        new = await store.create(_make_alert(5, status="acknowledged"))
        await store.create(_make_alert(3, status="resolved"))

        assert [a.alert_id for a in await store.list_open("E1")] == [new.alert_id, old.alert_id]
        assert [a.alert_id for a in await store.list_active()] == [old.alert_id]

    @pytest.mark.asyncio
    async def test_count_recent_includes_every_status(self, store):
        await store.create(_make_alert(0))
        await store.create(_make_alert(1, status="suppressed"))
        await store.create(_make_alert(2, triggered_by="fuel"))
        assert await store.count_recent("E1", "speed", "performance_threshold", T0) == 2
        since = T0 + timedelta(seconds=30)
        assert await store.count_recent("E1", "speed", "performance_threshold", since) == 1

    @pytest.mark.asyncio
    async def test_summary_since(self, store):
        await store.create(_make_alert(0))
        await store.create(_make_alert(10))
        recent = await store.list_for_summary("E1", since=T0 + timedelta(minutes=5))
        assert len(recent) == 1


class TestMutations:
    @pytest.mark.asyncio
    async def test_apply_transition_conditional(self, store):
        alert = await store.create(_make_alert())
        updated = await store.apply_transition(
            alert.alert_id, frozenset({"active"}), "acknowledged", {"acknowledged_by": "x"},
        )
        assert updated.status == "acknowledged"

        with pytest.raises(InvalidStateTransition):
            await store.apply_transition(
                alert.alert_id, frozenset({"active"}), "acknowledged", {},
            )
        with pytest.raises(AlertNotFoundError):
            await store.apply_transition("nope", frozenset({"active"}), "resolved", {})

    @pytest.mark.asyncio
    async def test_notification_status_appended(self, store):
        alert = await store.create(_make_alert())
        await store.append_notification_status(
            alert.alert_id, [NotificationStatus("webhook", "ops", status="delivered")],
        )
        await store.append_notification_status(
            alert.alert_id, [NotificationStatus("email", "ops", status="failed")],
        )
        stored = await store.get(alert.alert_id)
        assert [s.channel for s in stored.notification_status] == ["webhook", "email"]

    @pytest.mark.asyncio
    async def test_escalation_level_only_rises(self, store):
        alert = await store.create(_make_alert())
        await store.set_escalation_level(alert.alert_id, 2)
        await store.set_escalation_level(alert.alert_id, 1)
        assert (await store.get(alert.alert_id)).escalation_level == 2
