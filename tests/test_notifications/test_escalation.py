"""Tests for timeout-driven escalation."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fleetwatch.monitoring.lifecycle import LifecycleManager
from fleetwatch.monitoring.schemas import (
    Alert,
    AlertRecipient,
    EscalationLevel,
    EscalationPolicy,
    NotificationChannel,
    NotificationStatus,
)
from fleetwatch.notifications.dispatcher import NotificationDispatcher
from fleetwatch.notifications.escalation import EscalationManager


async def _no_sleep(delay: float) -> None:
    return None


def _policy(auto_escalation: bool = True) -> EscalationPolicy:
    return EscalationPolicy(
        [
            EscalationLevel(1, ["ops"], ["webhook"], timeout=5),
            EscalationLevel(2, ["manager"], ["webhook"], timeout=15),
        ],
        auto_escalation=auto_escalation,
    )


def _make_alert(t0, **kwargs) -> Alert:
    defaults = dict(
        entity_id="E1",
        alert_type="performance_threshold",
        severity="critical",
        title="safety threshold breached",
        description="",
        triggered_by="safety_incident_rate",
        trigger_value=2.5,
        threshold_value=2.0,
        triggered_at=t0,
        notification_channels=[NotificationChannel("webhook", {"url": "http://hook"})],
        escalation_required=True,
        escalation_policy=_policy(),
    )
    defaults.update(kwargs)
    return Alert(**defaults)


@pytest.fixture
def dispatcher(alert_store, transport):
    return NotificationDispatcher(alert_store, {"webhook": transport}, sleep=_no_sleep)


@pytest.fixture
def manager(alert_store, dispatcher, clock):
    return EscalationManager(alert_store, dispatcher, clock=clock)


# ── Tracking ────────────────────────────────────────────


class TestTrack:
    @pytest.mark.asyncio
    async def test_first_level_notified_immediately(
        self, alert_store, dispatcher, manager, transport, t0,
    ):
        alert = await alert_store.create(_make_alert(t0))

        assert await manager.track(alert)
        assert manager.current_level(alert.alert_id) == 1
        await dispatcher.run_pending()

        assert transport.sent == [("webhook", "ops", alert.alert_id)]
        stored = await alert_store.get(alert.alert_id)
        assert stored.escalation_level == 1
        assert stored.notification_status[0].escalation_level == 1

    @pytest.mark.asyncio
    async def test_non_escalating_alert_ignored(self, alert_store, manager, t0):
        alert = await alert_store.create(_make_alert(t0, escalation_required=False))
        assert await manager.track(alert) is False
        assert len(manager) == 0

    @pytest.mark.asyncio
    async def test_track_is_idempotent(self, alert_store, dispatcher, manager, t0):
        alert = await alert_store.create(_make_alert(t0))
        await manager.track(alert)
        await manager.track(alert)
        assert len(manager) == 1
        assert len(dispatcher.queue) == 1

    @pytest.mark.asyncio
    async def test_level_recipients_resolved_from_directory(
        self, alert_store, dispatcher, config_store, transport, clock, t0,
    ):
        config_store.set_recipients("E1", [AlertRecipient("ops", contact_methods=["sms"])])
        manager = EscalationManager(alert_store, dispatcher, config_store=config_store, clock=clock)
        alert = await alert_store.create(_make_alert(t0))

        await manager.track(alert)
        await dispatcher.run_pending()

        # ops only accepts sms, and level 1 only uses the webhook
        assert transport.sent == []


# ── Timeouts ────────────────────────────────────────────


class TestCheckEscalations:
    @pytest.mark.asyncio
    async def test_advances_after_level_timeout(
        self, alert_store, dispatcher, manager, transport, clock, t0,
    ):
        alert = await alert_store.create(_make_alert(t0))
        await manager.track(alert)
        await dispatcher.run_pending()

        clock.advance(minutes=4, seconds=59)
        assert await manager.check_escalations() == []

        clock.advance(seconds=1)
        assert await manager.check_escalations() == [alert.alert_id]
        assert manager.current_level(alert.alert_id) == 2

        await dispatcher.run_pending()
        assert [r for _, r, _ in transport.sent] == ["ops", "manager"]

    @pytest.mark.asyncio
    async def test_acknowledged_alert_stops_escalating(
        self, alert_store, dispatcher, manager, transport, clock, t0,
    ):
        alert = await alert_store.create(_make_alert(t0))
        await manager.track(alert)
        await dispatcher.run_pending()

        await LifecycleManager(alert_store, clock=clock).acknowledge(alert.alert_id, "ops")
        clock.advance(minutes=10)

        assert await manager.check_escalations() == []
        assert not manager.is_tracking(alert.alert_id)
        assert len(dispatcher.queue) == 0

    @pytest.mark.asyncio
    async def test_no_auto_escalation_stays_at_first_level(
        self, alert_store, dispatcher, manager, clock, t0,
    ):
        alert = await alert_store.create(_make_alert(t0, escalation_policy=_policy(False)))
        await manager.track(alert)
        await dispatcher.run_pending()

        clock.advance(minutes=10)
        assert await manager.check_escalations() == []
        assert not manager.is_tracking(alert.alert_id)

    @pytest.mark.asyncio
    async def test_final_level_without_delivery_reported(
        self, alert_store, dispatcher, manager, clock, t0,
    ):
        alert = await alert_store.create(_make_alert(t0))
        dispatcher.report_unresolved = AsyncMock()
        await manager.track(alert)
        await alert_store.append_notification_status(
            alert.alert_id, [NotificationStatus("webhook", "ops", status="failed")],
        )

        clock.advance(minutes=5)
        await manager.check_escalations()
        clock.advance(minutes=15)
        await manager.check_escalations()

        assert not manager.is_tracking(alert.alert_id)
        dispatcher.report_unresolved.assert_awaited_once()
        reported = dispatcher.report_unresolved.await_args.args[0]
        assert reported.alert_id == alert.alert_id

    @pytest.mark.asyncio
    async def test_final_level_with_delivery_not_reported(
        self, alert_store, dispatcher, manager, clock, t0,
    ):
        alert = await alert_store.create(_make_alert(t0))
        dispatcher.report_unresolved = AsyncMock()
        await manager.track(alert)
        await dispatcher.run_pending()

        clock.advance(minutes=5)
        await manager.check_escalations()
        clock.advance(minutes=15)
        await manager.check_escalations()

        assert len(manager) == 0
        dispatcher.report_unresolved.assert_not_awaited()


# ── Recovery ────────────────────────────────────────────


class TestRecover:
    @pytest.mark.asyncio
    async def test_resumes_from_persisted_level(
        self, alert_store, dispatcher, clock, t0,
    ):
        alert = await alert_store.create(_make_alert(t0))
        await alert_store.set_escalation_level(alert.alert_id, 2)
        await alert_store.create(_make_alert(t0, escalation_required=False))

        manager = EscalationManager(alert_store, dispatcher, clock=clock)
        assert await manager.recover() == 1
        assert manager.current_level(alert.alert_id) == 2
        assert len(dispatcher.queue) == 0

    @pytest.mark.asyncio
    async def test_resumed_timeout_restarts(self, alert_store, dispatcher, clock, t0):
        alert = await alert_store.create(_make_alert(t0))
        await alert_store.set_escalation_level(alert.alert_id, 1)
        clock.advance(hours=1)

        manager = EscalationManager(alert_store, dispatcher, clock=clock)
        await manager.recover()
        assert await manager.check_escalations() == []

        clock.advance(minutes=5)
        assert await manager.check_escalations() == [alert.alert_id]


def test_policy_timeout_delta():
    assert _policy().escalation_levels[1].timeout_delta == timedelta(minutes=15)
