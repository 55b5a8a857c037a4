"""
Named background work on the asyncio event loop.

Work is identified by a unique name. Per name there is at most one
running job and at most one pending job:

- REPLACE discards a pending job that has not started yet and queues the
  new one behind any running job. A running job is never cancelled.
- KEEP ignores the request while a job is pending or running.

A job whose result asks for a retry is queued again after exponential
backoff (30s, 60s, 120s, ... up to 1h) unless a newer request is already
pending. Recurring work re-enqueues itself on a fixed interval under KEEP,
so a slow pass is never run twice at once.

State is derived on demand and reading it never starts work.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config import IndexingConfig
from .types import IndexingStatus, IndexResult, Outcome

logger = logging.getLogger(__name__)

WORK_NAME_ONETIME = "memo_indexer_onetime"
WORK_NAME_PERIODIC = "memo_indexer_periodic"

# Retry backoff: min(BASE * 2^(attempts-1), MAX) seconds
RETRY_BACKOFF_BASE = 30     # 30 seconds initial delay
RETRY_BACKOFF_MAX = 3600    # 1 hour maximum delay

WorkFn = Callable[[], Awaitable[IndexResult]]


class WorkState(str, Enum):
    IDLE = "idle"
    ENQUEUED = "enqueued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def to_status(self) -> IndexingStatus:
        """Collapse to the four states shown to the user."""
        if self is WorkState.RUNNING:
            return IndexingStatus.RUNNING
        if self is WorkState.SUCCEEDED:
            return IndexingStatus.SUCCEEDED
        if self is WorkState.FAILED:
            return IndexingStatus.FAILED
        return IndexingStatus.IDLE


class ExistingWorkPolicy(str, Enum):
    REPLACE = "replace"
    KEEP = "keep"


Listener = Callable[[str, WorkState, Optional[IndexResult]], None]


def retry_delay(
    attempts: int,
    base: float = RETRY_BACKOFF_BASE,
    maximum: float = RETRY_BACKOFF_MAX,
) -> float:
    """Backoff before retry number ``attempts`` (1-based)."""
    return min(base * (2 ** (max(attempts, 1) - 1)), maximum)


@dataclass(eq=False)
class _Job:
    work: WorkFn
    delay: float = 0.0
    attempts: int = 0
    task: Optional[asyncio.Task] = None


@dataclass(eq=False)
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    idle: asyncio.Event = field(default_factory=asyncio.Event)
    running: Optional[_Job] = None
    pending: Optional[_Job] = None
    last_state: WorkState = WorkState.IDLE
    last_result: Optional[IndexResult] = None


class WorkScheduler:
    """
    Unique named work with replace/keep policies, retries and recurrence.

    Must be used from a running event loop. Call ``shutdown()`` before the
    loop closes; in-flight passes are abandoned and simply re-run by the
    next trigger.
    """

    def __init__(
        self,
        retry_base: float = RETRY_BACKOFF_BASE,
        retry_max: float = RETRY_BACKOFF_MAX,
    ):
        self._retry_base = retry_base
        self._retry_max = retry_max
        self._slots: dict[str, _Slot] = {}
        self._periodic: dict[str, asyncio.Task] = {}
        self._listeners: list[Listener] = []
        self._closed = False

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    def state(self, name: str) -> WorkState:
        slot = self._slots.get(name)
        if slot is None:
            return WorkState.IDLE
        if slot.running is not None:
            return WorkState.RUNNING
        if slot.pending is not None:
            return WorkState.ENQUEUED
        return slot.last_state

    def status(self, name: str = WORK_NAME_ONETIME) -> IndexingStatus:
        return self.state(name).to_status()

    def last_result(self, name: str) -> Optional[IndexResult]:
        slot = self._slots.get(name)
        return slot.last_result if slot is not None else None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register ``listener(name, state, last_result)`` for state changes.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def _notify(self, name: str) -> None:
        state = self.state(name)
        result = self.last_result(name)
        for listener in list(self._listeners):
            try:
                listener(name, state, result)
            except Exception as e:
                logger.warning("Work listener failed for %s: %s", name, e)

    async def wait_idle(self, name: str, timeout: Optional[float] = None) -> WorkState:
        """Wait until ``name`` has nothing running or pending."""
        slot = self._slots.get(name)
        if slot is not None:
            await asyncio.wait_for(slot.idle.wait(), timeout)
        return self.state(name)

    # -------------------------------------------------------------------------
    # Enqueueing
    # -------------------------------------------------------------------------

    def _slot(self, name: str) -> _Slot:
        slot = self._slots.get(name)
        if slot is None:
            slot = _Slot()
            slot.idle.set()
            self._slots[name] = slot
        return slot

    def enqueue_unique(
        self,
        name: str,
        work: WorkFn,
        *,
        policy: ExistingWorkPolicy = ExistingWorkPolicy.REPLACE,
        delay: float = 0.0,
    ) -> bool:
        """
        Queue ``work`` under ``name``.

        Args:
            name: Unique work name
            work: Coroutine function returning an IndexResult
            policy: What to do when work with this name already exists
            delay: Seconds to wait before the job may start

        Returns:
            True if a job was queued, False if KEEP ignored the request
        """
        if self._closed:
            raise RuntimeError("Scheduler is shut down")
        slot = self._slot(name)
        if policy is ExistingWorkPolicy.KEEP and (slot.running or slot.pending):
            logger.debug("Work %s already queued, keeping it", name)
            return False
        if slot.pending is not None:
            self._discard_pending(name, slot)
        self._submit(name, slot, _Job(work, delay))
        return True

    def enqueue_periodic(
        self,
        name: str,
        work: WorkFn,
        interval: float,
        *,
        policy: ExistingWorkPolicy = ExistingWorkPolicy.KEEP,
    ) -> bool:
        """
        Run ``work`` now and then every ``interval`` seconds.

        Returns:
            True if a schedule was (re)started, False if KEEP kept the
            existing one
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self._closed:
            raise RuntimeError("Scheduler is shut down")
        existing = self._periodic.get(name)
        if existing is not None and not existing.done():
            if policy is ExistingWorkPolicy.KEEP:
                logger.debug("Recurring work %s already scheduled, keeping it", name)
                return False
            existing.cancel()
        self._periodic[name] = asyncio.get_running_loop().create_task(
            self._run_periodic(name, work, interval), name=f"periodic:{name}",
        )
        logger.info("Scheduled recurring work %s every %.0fs", name, interval)
        return True

    def _discard_pending(self, name: str, slot: _Slot) -> None:
        job = slot.pending
        slot.pending = None
        if job is not None and job.task is not None:
            job.task.cancel()
        logger.info("Replaced pending work %s", name)

    def _submit(self, name: str, slot: _Slot, job: _Job) -> None:
        slot.pending = job
        slot.idle.clear()
        job.task = asyncio.get_running_loop().create_task(
            self._run_job(name, slot, job), name=f"work:{name}",
        )
        self._notify(name)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _run_job(self, name: str, slot: _Slot, job: _Job) -> None:
        if job.delay > 0:
            await asyncio.sleep(job.delay)
        async with slot.lock:
            if slot.pending is not job:
                return
            slot.pending = None
            slot.running = job
            self._notify(name)
            try:
                result = await job.work()
            except asyncio.CancelledError:
                slot.running = None
                slot.last_state = WorkState.CANCELLED
                raise
            except Exception as e:
                logger.error("Work %s raised: %s", name, e)
                result = IndexResult(Outcome.FAILURE, message=str(e))
            slot.running = None
        self._finish(name, slot, job, result)

    def _finish(self, name: str, slot: _Slot, job: _Job, result: IndexResult) -> None:
        slot.last_result = result
        if result.outcome is Outcome.RETRY:
            if slot.pending is None and not self._closed:
                attempts = job.attempts + 1
                delay = retry_delay(attempts, self._retry_base, self._retry_max)
                logger.info(
                    "Work %s will retry in %.0fs (attempt %d)", name, delay, attempts,
                )
                self._submit(name, slot, _Job(job.work, delay, attempts))
                return
            logger.debug("Work %s retry superseded by a newer request", name)
        else:
            slot.last_state = (
                WorkState.SUCCEEDED if result.outcome is Outcome.SUCCESS
                else WorkState.FAILED
            )
        self._settle(name, slot)

    def _settle(self, name: str, slot: _Slot) -> None:
        if slot.running is None and slot.pending is None:
            slot.idle.set()
        self._notify(name)

    async def _run_periodic(self, name: str, work: WorkFn, interval: float) -> None:
        while True:
            self.enqueue_unique(name, work, policy=ExistingWorkPolicy.KEEP)
            await asyncio.sleep(interval)

    async def shutdown(self) -> None:
        """Cancel every recurring schedule, pending job and running job."""
        self._closed = True
        tasks = [t for t in self._periodic.values() if not t.done()]
        for slot in self._slots.values():
            for job in (slot.pending, slot.running):
                if job is not None and job.task is not None and not job.task.done():
                    tasks.append(job.task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for name, slot in self._slots.items():
            if slot.pending is not None or slot.running is not None:
                slot.pending = None
                slot.running = None
                slot.last_state = WorkState.CANCELLED
            slot.idle.set()
            self._notify(name)
        self._periodic.clear()
        if tasks:
            logger.info("Scheduler shut down, %d task(s) cancelled", len(tasks))


# -----------------------------------------------------------------------------
# Indexing registrations
# -----------------------------------------------------------------------------

def initialize_work(scheduler: WorkScheduler, indexer, config: Optional[IndexingConfig] = None) -> None:
    """
    Register indexing at application start.

    A one-shot pass shortly after start (replacing any earlier pending
    one-shot) and a recurring pass (kept if already scheduled).
    """
    config = config or IndexingConfig()
    automatic = functools.partial(indexer.run_index_pass, is_manual=False)
    scheduler.enqueue_unique(
        WORK_NAME_ONETIME,
        automatic,
        policy=ExistingWorkPolicy.REPLACE,
        delay=config.onetime_delay_seconds,
    )
    scheduler.enqueue_periodic(
        WORK_NAME_PERIODIC,
        automatic,
        config.periodic_interval_minutes * 60,
        policy=ExistingWorkPolicy.KEEP,
    )


def trigger_manual_indexing(scheduler: WorkScheduler, indexer) -> bool:
    """Queue a user-requested pass now, bypassing the foreground guard."""
    return scheduler.enqueue_unique(
        WORK_NAME_ONETIME,
        functools.partial(indexer.run_index_pass, is_manual=True),
        policy=ExistingWorkPolicy.REPLACE,
    )
