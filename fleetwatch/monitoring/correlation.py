"""Alert correlation.

A candidate correlates with open alerts of the same entity, alert type and
trigger, raised within the correlation window, whose trigger values are
within a relative tolerance of the candidate's. Matches share one
correlation group.

When matches already belong to different groups, the groups are merged
into the group of the oldest matching alert and every member of the
absorbed groups is reassigned to it.

Correlation runs inside the entity's worker, so planning and applying a
group for one entity never interleave.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.schemas import SEVERITY_RANK, Alert
from fleetwatch.monitoring.store import AlertStore
from fleetwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass
class CorrelationPlan:
    """Group assignment computed for a candidate, applied after it is stored."""

    group_id: str
    matches: list[Alert]
    members: list[Alert] = field(default_factory=list)
    merged_groups: list[str] = field(default_factory=list)
    new_group: bool = False

    @property
    def member_ids(self) -> list[str]:
        return [a.alert_id for a in self.members]

    def raises_severity(self, alert: Alert) -> bool:
        """Whether the alert is more severe than every existing member."""
        rank = SEVERITY_RANK[alert.severity]
        return all(rank > SEVERITY_RANK[m.severity] for m in self.members)


class AlertCorrelator:
    """Finds and records correlation groups."""

    def __init__(self, store: AlertStore, config: MonitoringConfig) -> None:
        self._store = store
        self._config = config

    def _within_tolerance(self, candidate: Alert, other: Alert) -> bool:
        allowed = self._config.correlation_tolerance * abs(candidate.trigger_value)
        return abs(other.trigger_value - candidate.trigger_value) <= allowed

    async def find_matches(self, candidate: Alert) -> list[Alert]:
        window = timedelta(seconds=self._config.correlation_window_seconds)
        found = await self._store.find_correlation_candidates(
            candidate.entity_id,
            candidate.alert_type,
            candidate.triggered_by,
            candidate.triggered_at - window,
        )
        return [
            a
            for a in found
            if a.alert_id != candidate.alert_id
            and abs(candidate.triggered_at - a.triggered_at) <= window
            and self._within_tolerance(candidate, a)
        ]

    async def correlate(self, candidate: Alert) -> CorrelationPlan | None:
        """Assign the candidate to a correlation group if it has matches.

        Sets ``correlation_group`` and ``similar_alerts`` on the candidate;
        the matches themselves are only updated by ``apply`` once the
        candidate is persisted.

        Returns:
            The plan, or None when nothing matches.
        """
        matches = await self.find_matches(candidate)
        if not matches:
            return None

        matches.sort(key=lambda a: a.triggered_at)
        groups: list[str] = []
        for alert in matches:
            if alert.correlation_group and alert.correlation_group not in groups:
                groups.append(alert.correlation_group)

        new_group = not groups
        if new_group:
            group_id = str(uuid.uuid4())
        else:
            # Oldest match's group wins; the others are absorbed
            oldest_grouped = next(a for a in matches if a.correlation_group)
            group_id = oldest_grouped.correlation_group

        members: dict[str, Alert] = {a.alert_id: a for a in matches}
        for group in groups:
            for alert in await self._store.list_by_group(group):
                members.setdefault(alert.alert_id, alert)

        plan = CorrelationPlan(
            group_id=group_id,
            matches=matches,
            members=sorted(members.values(), key=lambda a: a.triggered_at),
            merged_groups=[g for g in groups if g != group_id],
            new_group=new_group,
        )
        candidate.correlation_group = group_id
        candidate.similar_alerts = plan.member_ids
        return plan

    async def apply(self, plan: CorrelationPlan, candidate: Alert) -> None:
        """Write the group to every existing member after the candidate is stored."""
        all_ids = plan.member_ids + [candidate.alert_id]
        for member in plan.members:
            similar = [i for i in all_ids if i != member.alert_id]
            await self._store.update_correlation(member.alert_id, plan.group_id, similar)

        get_metrics().alerts_correlated.inc()
        if plan.merged_groups:
            logger.info(
                "Merged correlation groups %s into %s for entity %s",
                plan.merged_groups, plan.group_id, candidate.entity_id,
            )
        logger.debug(
            "Alert %s correlated into %s with %d members",
            candidate.alert_id, plan.group_id, len(plan.members),
        )
