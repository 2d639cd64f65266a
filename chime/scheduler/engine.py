"""
JobScheduler — fires durable jobs at their due time.

Design:
- Storage is the source of truth; the registry (job id → armed timer) is
  only a cache of what should currently be pending
- Registry mutations (schedule / cancel) are synchronous, so on a single
  event loop "cancel the old timer, arm the new one" can never interleave
  with another mutation of the same id
- On startup every active job is re-armed; overdue ones fire immediately
- A periodic reconcile pass heals drift: jobs created by another process
  get armed, jobs deactivated elsewhere get disarmed
- Execution is at-most-once: a job is marked inactive after its delivery
  attempt whether or not the delivery succeeded

Each registry entry carries a sequence number taken when it was armed.
reconcile() snapshots the counter before reading storage and never evicts
an entry newer than its snapshot, so a job created while the read is in
flight is not torn down by a stale view of the table.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from chime.core.config import SchedulerConfig
from chime.core.errors import SchedulerError
from chime.delivery.base import DeliveryTransport
from chime.scheduler.job import Job, JobKind
from chime.scheduler.timers import AsyncioTimer, Timer, TimerHandle
from chime.store.base import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    handle: TimerHandle
    seq: int


class JobScheduler:
    """
    In-process scheduler over a PersistenceGateway.

    Usage:
        scheduler = JobScheduler(gateway, transport)
        await scheduler.start()
        job = await scheduler.create_job(JobKind.TEXT, "Drink water", due_at)
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        transport: DeliveryTransport,
        timer: Timer | None = None,
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._transport = transport
        self._timer = timer if timer is not None else AsyncioTimer()
        self._config = config if config is not None else SchedulerConfig()
        self._clock = clock

        self._registry: dict[str, _Entry] = {}
        self._seq = 0
        # job id → seq at which it was last removed from the registry
        self._evicted: dict[str, int] = {}

        self._running = False
        self._task: asyncio.Task | None = None
        self._startup_task: asyncio.Task | None = None

    @property
    def scheduled_ids(self) -> set[str]:
        """Ids that currently hold a registry entry (armed or fired-in-flight)."""
        return set(self._registry)

    @property
    def running(self) -> bool:
        return self._running

    # ━━━ Registry ━━━

    def schedule(self, job: Job) -> None:
        """Arm (or re-arm) the timer for job. Idempotent per job id."""
        existing = self._registry.pop(job.id, None)
        if existing is not None:
            existing.handle.cancel()

        self._seq += 1
        seq = self._seq
        delay = job.delay(self._clock())
        handle = self._timer.arm(delay, lambda: self._on_fire(job.id, seq))
        self._registry[job.id] = _Entry(handle=handle, seq=seq)
        logger.debug(f"Armed job {job.id} ({job.kind.value}) in {delay:.1f}s")

    def cancel(self, job_id: str) -> bool:
        """Disarm and forget job_id. Returns False if nothing was registered."""
        entry = self._registry.get(job_id)
        if entry is None:
            return False
        entry.handle.cancel()
        self._evict(job_id)
        logger.debug(f"Cancelled timer for job {job_id}")
        return True

    def _evict(self, job_id: str) -> None:
        self._registry.pop(job_id, None)
        self._seq += 1
        self._evicted[job_id] = self._seq

    # ━━━ Recovery & reconciliation ━━━

    async def recover_on_startup(self) -> int:
        """Re-arm every active job. Returns how many were armed."""
        jobs = await self._gateway.find_jobs(active=True)
        now = self._clock()
        overdue = 0
        for job in jobs:
            if job.due_at <= now:
                overdue += 1
            self.schedule(job)
        logger.info(f"Recovered {len(jobs)} active job(s), {overdue} overdue")
        return len(jobs)

    async def reconcile(self) -> None:
        """Converge the registry on the set of active jobs in storage."""
        snapshot = self._seq
        jobs = await self._gateway.find_jobs(active=True)
        active_ids = {job.id for job in jobs}

        armed = 0
        for job in jobs:
            if job.id in self._registry:
                continue
            if self._evicted.get(job.id, 0) > snapshot:
                # Cancelled or completed while we were reading
                continue
            self.schedule(job)
            armed += 1

        dropped = 0
        for job_id, entry in list(self._registry.items()):
            if job_id not in active_ids and entry.seq <= snapshot:
                entry.handle.cancel()
                self._evict(job_id)
                dropped += 1

        self._evicted = {k: v for k, v in self._evicted.items() if v > snapshot}

        if armed or dropped:
            logger.info(f"Reconcile: armed {armed}, dropped {dropped}")

    # ━━━ Execution ━━━

    async def _on_fire(self, job_id: str, seq: int) -> None:
        entry = self._registry.get(job_id)
        if entry is None or entry.seq != seq:
            return
        try:
            job = await self._gateway.get_job(job_id)
            if job is None or not job.active:
                logger.debug(f"Job {job_id} gone or inactive at fire time, skipping")
                self._release(job_id, seq)
                return
            if await self.execute(job):
                self._release(job_id, seq)
        except Exception as e:
            logger.error(f"Job {job_id} execution failed: {e}")

    def _release(self, job_id: str, seq: int) -> None:
        entry = self._registry.get(job_id)
        if entry is not None and entry.seq == seq:
            self._evict(job_id)

    async def execute(self, job: Job) -> bool:
        """
        Deliver job and mark it inactive.

        Returns False when the job was abandoned because no delivery target
        could be resolved; the job stays active in storage for an operator to
        fix. Delivery failures still count as executed.
        """
        target = await self._resolve_target(job)
        if target is None:
            logger.error(
                f"Job {job.id} has no delivery target (owner={job.owner_id}); "
                f"link the agent to a chat. Job left active and not re-armed."
            )
            return False

        logger.info(f"Executing job {job.id} ({job.kind.value}) → {target}")
        try:
            await self._deliver(job, target)
        except Exception as e:
            logger.warning(f"Delivery of job {job.id} to {target} failed: {e}")

        await self._gateway.update_job(job.id, active=False)
        return True

    async def _resolve_target(self, job: Job) -> str | None:
        if job.owner_id:
            agent = await self._gateway.get_agent(job.owner_id)
            if agent is None:
                return None
            return agent.linked_chat_id

        # Legacy jobs predate agent ownership
        agents = await self._gateway.find_agents(linked_only=True, active_only=True)
        return agents[0].linked_chat_id if agents else None

    async def _deliver(self, job: Job, target: str) -> None:
        match job.kind:
            case JobKind.TEXT | JobKind.PROMPT:
                await self._transport.send_text(target, job.payload)
            case JobKind.IMAGE:
                await self._transport.send_photo(target, await self._media_ref(job, "image"))
            case JobKind.VIDEO:
                await self._transport.send_video(target, await self._media_ref(job, "video"))

    async def _media_ref(self, job: Job, kind: str) -> str:
        record = await self._gateway.find_media(job.id, kind)
        if record is not None:
            return record.path
        return str(Path(self._config.legacy_media_dir) / f"{kind}s" / job.payload)

    # ━━━ Job operations ━━━

    async def create_job(
        self,
        kind: JobKind | str,
        payload: str,
        due_at: float,
        owner_id: str | None = None,
    ) -> Job:
        """Persist a new job and arm it. Raises SchedulerError for an unknown kind."""
        try:
            job_kind = JobKind(kind)
        except ValueError as e:
            raise SchedulerError(f"Unknown job kind: {kind!r}") from e
        job = await self._gateway.create_job(
            Job(kind=job_kind, payload=payload, due_at=due_at, owner_id=owner_id)
        )
        self.schedule(job)
        logger.info(f"Created job {job.id} ({job.kind.value}) due at {job.due_at:.0f}")
        return job

    async def update_job(self, job_id: str, **patch: Any) -> Job:
        """
        Persist patch, then re-arm the job if it is still active.

        Raises SchedulerError when the job already ran or was cancelled.
        """
        current = await self._gateway.get_job(job_id)
        if current is not None and not current.active:
            raise SchedulerError(f"Job {job_id} is no longer active")
        job = await self._gateway.update_job(job_id, **patch)
        self.cancel(job_id)
        if job.active:
            self.schedule(job)
        return job

    async def delete_job(self, job_id: str) -> bool:
        """Disarm and deactivate. Returns False if the job does not exist."""
        self.cancel(job_id)
        job = await self._gateway.get_job(job_id)
        if job is None:
            return False
        if job.active:
            await self._gateway.update_job(job_id, active=False)
        logger.info(f"Deleted job {job_id}")
        return True

    # ━━━ Lifecycle ━━━

    async def start(self) -> None:
        """Recover active jobs and start the reconcile loop."""
        if self._running:
            return
        await self.recover_on_startup()
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="scheduler-reconcile")
        self._startup_task = asyncio.create_task(
            self._startup_check(), name="scheduler-startup-check"
        )
        logger.info("JobScheduler started")

    async def stop(self) -> None:
        """Stop reconciling, disarm every timer and cancel in-flight executions."""
        self._running = False
        for task in (self._task, self._startup_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._startup_task = None

        for entry in self._registry.values():
            entry.handle.cancel()
        self._registry.clear()
        self._evicted.clear()
        await self._timer.shutdown()
        logger.info("JobScheduler stopped")

    # ── Internal loops ─────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.reconcile_interval)
            try:
                await self.reconcile()
            except Exception as e:
                logger.warning(f"Reconcile error (non-fatal): {e}")

    async def _startup_check(self) -> None:
        await asyncio.sleep(self._config.startup_check_delay)
        try:
            await self.reconcile()
        except Exception as e:
            logger.warning(f"Startup reconcile error (non-fatal): {e}")
