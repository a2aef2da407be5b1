"""
Per-entity workers.

Each monitored entity gets one EntityWorker: an inbox queue and a single
task that runs the evaluation pipeline for one snapshot at a time. This
serializes everything entity-scoped (history, cooldowns, correlation) while
different entities run concurrently. A worker can also poll a MetricSource
on a fixed interval; polled snapshots go through the same inbox.

Stopping a worker rejects queued snapshots with MonitoringNotActiveError.
A snapshot already being processed is allowed to finish.
The entity's state survives the worker; a restarted worker picks it up.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from fleetwatch.monitoring.config import MonitoringConfig
from fleetwatch.monitoring.errors import MonitoringNotActiveError
from fleetwatch.monitoring.history import EntityState
from fleetwatch.monitoring.pipeline import EvaluationPipeline
from fleetwatch.monitoring.schemas import Alert, MetricSnapshot
from fleetwatch.monitoring.sources import MetricSource
from fleetwatch.observability.logging import bind_context
from fleetwatch.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


@dataclass
class _Submission:
    snapshot: MetricSnapshot
    future: asyncio.Future | None = None


class EntityWorker:
    """
    Serialized evaluation for one entity.

    Usage:
        worker = EntityWorker("E1", pipeline, config)
        worker.start()
        alerts = await worker.submit(snapshot)
        await worker.stop()
    """

    def __init__(
        self,
        entity_id: str,
        pipeline: EvaluationPipeline,
        config: MonitoringConfig,
        source: MetricSource | None = None,
        state: EntityState | None = None,
    ):
        self.entity_id = entity_id
        self._pipeline = pipeline
        self._config = config
        self._source = source
        self._state = state if state is not None else EntityState.create(
            entity_id, config.history_retention_seconds, config.history_max_samples,
        )
        self._inbox: asyncio.Queue[_Submission | None] = asyncio.Queue(
            maxsize=config.entity_inbox_size,
        )
        self._task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._active = False
        self.processed = 0
        self.failures = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> EntityState:
        return self._state

    @property
    def last_snapshot_at(self) -> datetime | None:
        return self._state.last_snapshot_at

    def start(self) -> None:
        """Start the processing task (and polling when a source is set)."""
        if self._active:
            return
        self._active = True
        self._task = asyncio.create_task(
            self._run(), name=f"entity-worker-{self.entity_id}",
        )
        if self._source is not None:
            self._poll_task = asyncio.create_task(
                self._poll(), name=f"entity-poll-{self.entity_id}",
            )
        logger.info("Entity worker started", entity_id=self.entity_id)

    async def submit(self, snapshot: MetricSnapshot) -> list[Alert]:
        """Queue a snapshot and wait for its alerts.

        Raises:
            MonitoringNotActiveError: If the worker is stopped, or stops
                before the snapshot is processed.
        """
        if not self._active:
            raise MonitoringNotActiveError(self.entity_id)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._inbox.put(_Submission(snapshot, future))
        return await future

    def submit_nowait(self, snapshot: MetricSnapshot) -> bool:
        """Queue a snapshot without waiting for its result.

        Returns:
            False if the worker is stopped or its inbox is full.
        """
        if not self._active:
            return False
        try:
            self._inbox.put_nowait(_Submission(snapshot))
        except asyncio.QueueFull:
            logger.warning("Entity inbox full, dropping snapshot", entity_id=self.entity_id)
            return False
        return True

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop polling, reject queued snapshots and let the current one finish."""
        if not self._active:
            return
        self._active = False

        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None

        rejected = self._reject_queued()

        if self._task is not None:
            self._inbox.put_nowait(None)
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Entity worker did not stop in time", entity_id=self.entity_id)
                self._task.cancel()
                await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        # Submitters blocked on a full inbox may have landed after the sentinel
        rejected += self._reject_queued()
        logger.info("Entity worker stopped", entity_id=self.entity_id, rejected=rejected)

    def _reject_queued(self) -> int:
        rejected = 0
        while not self._inbox.empty():
            item = self._inbox.get_nowait()
            if item is None:
                continue
            if item.future is not None and not item.future.done():
                item.future.set_exception(MonitoringNotActiveError(self.entity_id))
            rejected += 1
        return rejected

    async def _run(self) -> None:
        # Task-local context: every log line from this task carries the entity
        bind_context(entity_id=self.entity_id)
        metrics = get_metrics()
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if not self._active:
                if item.future is not None and not item.future.done():
                    item.future.set_exception(MonitoringNotActiveError(self.entity_id))
                continue

            try:
                alerts = await self._pipeline.process(item.snapshot, self._state)
            except Exception as e:
                self.failures += 1
                metrics.record_evaluation_error("pipeline", e)
                logger.error(
                    "Snapshot processing failed",
                    entity_id=self.entity_id,
                    error=str(e),
                )
                if item.future is not None and not item.future.done():
                    item.future.set_exception(e)
                continue

            self.processed += 1
            if item.future is not None and not item.future.done():
                item.future.set_result(alerts)

    async def _poll(self) -> None:
        interval = self._config.ingest_interval_seconds
        while self._active:
            try:
                snapshot = await self._source.fetch(self.entity_id)
                if snapshot is not None and snapshot.timestamp != self._state.last_snapshot_at:
                    self.submit_nowait(snapshot)
            except Exception as e:
                get_metrics().record_evaluation_error("ingest", e)
                logger.warning("Metric fetch failed", entity_id=self.entity_id, error=str(e))
            await asyncio.sleep(interval)


class WorkerRegistry:
    """Routing table of entity id -> EntityWorker.

    An entity's ``EntityState`` outlives its workers, so history, rule
    cooldowns and anomaly baselines carry over a stop/start. A worker stays
    in the table until its ``stop()`` has returned; ``start()`` for an entity
    that is still stopping waits for it, so at most one worker ever runs the
    pipeline for an entity.
    """

    def __init__(self, factory: Callable[[str, EntityState | None], EntityWorker]):
        self._factory = factory
        self._workers: dict[str, EntityWorker] = {}
        self._states: dict[str, EntityState] = {}
        self._stopping: dict[str, asyncio.Event] = {}

    def __contains__(self, entity_id: str) -> bool:
        worker = self._workers.get(entity_id)
        return worker is not None and worker.active

    def __len__(self) -> int:
        return sum(1 for w in self._workers.values() if w.active)

    def get(self, entity_id: str) -> EntityWorker | None:
        worker = self._workers.get(entity_id)
        if worker is None or not worker.active:
            return None
        return worker

    def entity_ids(self) -> list[str]:
        return [e for e, w in self._workers.items() if w.active]

    def state(self, entity_id: str) -> EntityState | None:
        """State retained for an entity, whether or not it is monitored."""
        return self._states.get(entity_id)

    def is_stopping(self, entity_id: str) -> bool:
        return entity_id in self._stopping

    async def start(self, entity_id: str) -> bool:
        """Start a worker for an entity, reusing its retained state.

        Waits for a stop in progress on the same entity first.

        Returns:
            False if a worker is already running.
        """
        while entity_id in self._stopping:
            await self._stopping[entity_id].wait()
        if entity_id in self:
            return False

        worker = self._factory(entity_id, self._states.get(entity_id))
        self._states[entity_id] = worker.state
        self._workers[entity_id] = worker
        worker.start()
        get_metrics().active_entity_workers.set(len(self))
        return True

    async def stop(self, entity_id: str) -> bool:
        """Stop an entity's worker.

        Returns:
            False if none was running or a stop is already in progress.
        """
        worker = self._workers.get(entity_id)
        if worker is None or not worker.active or entity_id in self._stopping:
            return False

        done = asyncio.Event()
        self._stopping[entity_id] = done
        try:
            await worker.stop()
        finally:
            if self._workers.get(entity_id) is worker:
                del self._workers[entity_id]
            del self._stopping[entity_id]
            done.set()
        get_metrics().active_entity_workers.set(len(self))
        return True

    async def stop_all(self) -> None:
        """Stop every worker, including waiting on stops already under way."""
        pending = [event.wait() for event in self._stopping.values()]
        await asyncio.gather(
            *(self.stop(entity_id) for entity_id in list(self._workers)),
            *pending,
            return_exceptions=True,
        )
