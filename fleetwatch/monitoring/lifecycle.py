"""Alert lifecycle state machine.

Permitted transitions, keyed by target status::

    acknowledged    <- active
    resolved        <- active, acknowledged
    false_positive  <- active, acknowledged, suppressed

``suppressed`` is only ever assigned at creation. ``resolved`` and
``false_positive`` are terminal.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from fleetwatch.monitoring.errors import AlertNotFoundError, InvalidStateTransition
from fleetwatch.monitoring.schemas import Alert, utc_now
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "acknowledged": frozenset({"active"}),
    "resolved": frozenset({"active", "acknowledged"}),
    "false_positive": frozenset({"active", "acknowledged", "suppressed"}),
}

AUTO_RESOLVE_NOTES = "auto-resolved: condition cleared"


def can_transition(from_status: str, to_status: str) -> bool:
    return from_status in ALLOWED_TRANSITIONS.get(to_status, frozenset())


class LifecycleManager:
    """Applies lifecycle transitions through the alert store."""

    def __init__(
        self,
        store: AlertStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    async def _transition(
        self,
        alert_id: str,
        to_status: str,
        fields_for: Callable[[Alert, datetime], dict],
        now: datetime | None = None,
    ) -> Alert:
        alert = await self._store.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id, to_status)
        expected = ALLOWED_TRANSITIONS.get(to_status)
        if expected is None or alert.status not in expected:
            raise InvalidStateTransition(alert_id, alert.status, to_status)

        now = now or self._clock()
        # Conditional on the expected source states, so a concurrent change wins
        updated = await self._store.apply_transition(
            alert_id, expected, to_status, fields_for(alert, now),
        )
        get_metrics().record_transition(alert.status, to_status)
        logger.info("Alert %s: %s -> %s", alert_id, alert.status, to_status)
        return updated

    async def acknowledge(
        self, alert_id: str, actor: str, now: datetime | None = None,
    ) -> Alert:
        """Acknowledge an active alert.

        Raises:
            AlertNotFoundError: Unknown alert.
            InvalidStateTransition: Alert is not active.
        """

        def fields(alert: Alert, at: datetime) -> dict:
            return {
                "acknowledged_at": at,
                "acknowledged_by": actor,
                "time_to_acknowledge": (at - alert.triggered_at).total_seconds(),
            }

        return await self._transition(alert_id, "acknowledged", fields, now)

    async def resolve(
        self, alert_id: str, notes: str | None = None, now: datetime | None = None,
    ) -> Alert:
        """Resolve an active or acknowledged alert.

        Raises:
            AlertNotFoundError: Unknown alert.
            InvalidStateTransition: Alert is already terminal or suppressed.
        """

        def fields(alert: Alert, at: datetime) -> dict:
            return {
                "resolved_at": at,
                "time_to_resolve": (at - alert.triggered_at).total_seconds(),
                "resolution_notes": notes,
            }

        return await self._transition(alert_id, "resolved", fields, now)

    async def mark_false_positive(
        self, alert_id: str, notes: str | None = None, now: datetime | None = None,
    ) -> Alert:
        """Flag an alert as a false positive (manual override).

        Raises:
            AlertNotFoundError: Unknown alert.
            InvalidStateTransition: Alert is already terminal.
        """

        def fields(alert: Alert, at: datetime) -> dict:
            return {"resolved_at": at, "resolution_notes": notes}

        return await self._transition(alert_id, "false_positive", fields, now)

    async def auto_resolve_rule(
        self, entity_id: str, rule_id: str, now: datetime | None = None,
    ) -> list[Alert]:
        """Resolve an entity's open alerts raised by a rule that has cleared."""
        resolved: list[Alert] = []
        for alert in await self._store.list_open(entity_id):
            if alert.rule_id != rule_id:
                continue
            try:
                resolved.append(await self.resolve(alert.alert_id, AUTO_RESOLVE_NOTES, now))
            except InvalidStateTransition as e:
                # Manually closed between the read and the update
                logger.debug("Auto-resolve skipped: %s", e)
        return resolved
