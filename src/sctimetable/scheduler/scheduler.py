"""
scheduler/scheduler.py — JobScheduler

In-process job scheduler for sctimetable. Runs named jobs on cron-style or
one-shot triggers as asyncio tasks inside the host's event loop.

Design
------
* Pure asyncio — no threads for dispatch, no external cron daemon.
* One dispatch loop over a heap ordered by next fire time. Registering a job
  while running wakes the loop so a one-shot runs right away.
* Timezone: every trigger is evaluated in Asia/Shanghai.
* Coroutine-function bodies are awaited; plain-function bodies run in a
  worker thread via asyncio.to_thread.
* Fail-safe: a body that raises is wrapped in JobExecutionError, logged and
  recorded on its JobRun. A failed job NEVER brings down the dispatch loop.
* Per-job lock: a firing is skipped while the previous run of the same job
  is still executing. A global semaphore bounds concurrent runs.
* Missed ticks are not replayed: the next fire time is computed from the
  later of the scheduled instant and now.
* start() is incremental: it arms only jobs that are not armed yet, so
  calling it again never duplicates a recurring trigger.

Usage::

    scheduler = JobScheduler.from_settings(settings)
    scheduler.add_job(JobSpec("year_updater", CronTrigger(second="10", minute="0",
                              hour="0", day="1", month="1"), update_year))
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sctimetable.exceptions import JobAlreadyExistsError, JobExecutionError
from sctimetable.observability.logger import bind_job, clear_job, get_logger
from sctimetable.scheduler.triggers import CronTrigger, OneShotTrigger, Trigger
from sctimetable.timekeeping import clock

log = get_logger(__name__)

DEFAULT_GROUP = "default"


# ─────────────────────────────────────────────────────────────────────────────
# JobSpec
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class JobSpec:
    """
    One job registration.

    name      Unique within its group — used in logs and as the registry key.
    trigger   OneShotTrigger or CronTrigger.
    body      Zero-argument callable; plain function or coroutine function.
    group     Namespace for name uniqueness.
    """
    name: str
    trigger: Trigger
    body: Callable[[], Any]
    group: str = DEFAULT_GROUP

    @property
    def key(self) -> str:
        return f"{self.group}.{self.name}"

    @property
    def recurring(self) -> bool:
        return isinstance(self.trigger, CronTrigger)

    def first_fire_time(self, now: datetime) -> datetime:
        if isinstance(self.trigger, OneShotTrigger):
            return now
        return self.trigger.next_fire_after(now)


# ─────────────────────────────────────────────────────────────────────────────
# JobRun: runtime record for one execution
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class JobRun:
    run_id: str
    job_key: str
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    succeeded: Optional[bool] = None
    error: Optional[JobExecutionError] = None

    @property
    def duration_s(self) -> float:
        end = self.finished_at or time.monotonic()
        return end - self.started_at

    def finish(self, *, succeeded: bool, error: Optional[JobExecutionError] = None) -> None:
        self.finished_at = time.monotonic()
        self.succeeded = succeeded
        self.error = error


# ─────────────────────────────────────────────────────────────────────────────
# SchedulerStats
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SchedulerStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    last_run_at: Optional[str] = None
    last_run_job: Optional[str] = None
    last_error: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────────────
# JobScheduler
# ─────────────────────────────────────────────────────────────────────────────

class JobScheduler:
    """
    Fires registered jobs at their trigger instants.

    Lifecycle::

        scheduler = JobScheduler()
        scheduler.add_job(spec)
        await scheduler.start()        # starts the dispatch loop, arms jobs
        scheduler.add_job(other)       # armed immediately while running
        await scheduler.stop()         # cancels the loop, waits for in-flight runs

    Introspection::

        scheduler.stats                # SchedulerStats counters
        scheduler.list_jobs()          # list[dict] for status display
        scheduler.job_history          # list[JobRun] (last history_limit)

    add_job() and start() must be called from the event loop's thread.
    """

    def __init__(self, max_concurrent_jobs: int = 3, history_limit: int = 100) -> None:
        self._jobs: dict[str, JobSpec] = {}
        self._job_locks: dict[str, asyncio.Lock] = {}
        self._armed: dict[str, int] = {}      # key -> seq of its live heap entry
        self._next_fire: dict[str, datetime] = {}
        self._heap: list[tuple[datetime, int, str]] = []
        self._seq = itertools.count()

        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._wakeup = asyncio.Event()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

        self.stats = SchedulerStats()
        self.job_history: list[JobRun] = []
        self._history_limit = history_limit
        self._running = False

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings) -> "JobScheduler":
        return cls(
            max_concurrent_jobs=settings.scheduler.max_concurrent_jobs,
            history_limit=settings.scheduler.history_limit,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    def add_job(self, job: JobSpec) -> None:
        """Register a job. Arms it immediately if the scheduler is already running."""
        if job.key in self._jobs:
            raise JobAlreadyExistsError(job.key)
        self._jobs[job.key] = job
        self._job_locks[job.key] = asyncio.Lock()
        log.debug("scheduler.job_added", job=job.key, trigger=str(job.trigger))
        if self._running:
            self._arm(job, clock.now())

    def remove_job(self, key: str) -> bool:
        """Unregister a job. A pending heap entry for it is dropped when popped."""
        if self._jobs.pop(key, None) is None:
            return False
        self._armed.pop(key, None)
        self._next_fire.pop(key, None)
        self._job_locks.pop(key, None)
        log.info("scheduler.job_removed", job=key)
        return True

    def has_job(self, key: str) -> bool:
        return key in self._jobs

    async def start(self) -> None:
        """
        Start the dispatch loop (first call only) and arm every registered job
        that is not armed yet. A trigger that cannot compute its first fire
        time raises out of here.
        """
        if not self._running:
            self._running = True
            self._dispatch_task = asyncio.create_task(
                self._dispatch_loop(), name="scheduler:dispatch"
            )
        now = clock.now()
        newly_armed = [job for job in list(self._jobs.values()) if job.key not in self._armed]
        for job in newly_armed:
            self._arm(job, now)
        log.info(
            "scheduler.started",
            armed=[job.key for job in newly_armed],
            total_jobs=len(self._jobs),
        )

    async def stop(self) -> None:
        """Cancel the dispatch loop and wait for in-flight runs to finish."""
        if not self._running:
            return
        self._running = False
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            await asyncio.gather(self._dispatch_task, return_exceptions=True)
            self._dispatch_task = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        self._armed.clear()
        self._next_fire.clear()
        self._heap.clear()
        log.info("scheduler.stopped")

    async def wait_until_idle(self, timeout: float = 10.0) -> None:
        """
        Wait until no one-shot job is pending and no run is in flight.
        Raises asyncio.TimeoutError after ``timeout`` seconds.
        """
        async def _drain() -> None:
            while True:
                if self._inflight:
                    await asyncio.gather(*list(self._inflight), return_exceptions=True)
                elif any(not job.recurring and key in self._armed for key, job in self._jobs.items()):
                    await asyncio.sleep(0.01)
                else:
                    return

        await asyncio.wait_for(_drain(), timeout=timeout)

    def list_jobs(self) -> list[dict]:
        """Return a status summary of all registered jobs."""
        result = []
        for key, job in self._jobs.items():
            next_fire = self._next_fire.get(key)
            last = next((r for r in reversed(self.job_history) if r.job_key == key), None)
            result.append({
                "key": key,
                "name": job.name,
                "group": job.group,
                "trigger": str(job.trigger),
                "recurring": job.recurring,
                "next_fire": next_fire.isoformat() if next_fire else None,
                "last_run_succeeded": last.succeeded if last else None,
                "last_run_duration_s": round(last.duration_s, 3) if last else None,
                "last_error": str(last.error) if last and last.error else None,
            })
        return result

    # ── Dispatch loop ─────────────────────────────────────────────────────────

    def _arm(self, job: JobSpec, now: datetime) -> None:
        self._push(job.key, job.first_fire_time(now))
        self._wakeup.set()

    def _push(self, key: str, fire_at: datetime) -> None:
        seq = next(self._seq)
        heapq.heappush(self._heap, (fire_at, seq, key))
        self._armed[key] = seq
        self._next_fire[key] = fire_at

    async def _dispatch_loop(self) -> None:
        """Sleep until the earliest fire time (or a wakeup), then fire what is due."""
        log.info("scheduler.dispatch.start")
        try:
            while self._running:
                self._wakeup.clear()
                now = clock.now()
                if not self._heap:
                    await self._wakeup.wait()
                    continue

                delay = (self._heap[0][0] - now).total_seconds()
                if delay > 0:
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    continue

                self._fire_due(now)
        except asyncio.CancelledError:
            log.info("scheduler.dispatch.cancelled")
            raise

    def _fire_due(self, now: datetime) -> None:
        while self._heap and self._heap[0][0] <= now:
            fire_at, seq, key = heapq.heappop(self._heap)
            job = self._jobs.get(key)
            # stale entry: removed, or superseded by a later arm of the same key
            if job is None or self._armed.get(key) != seq:
                continue
            lock = self._job_locks.get(key)

            if job.recurring:
                try:
                    self._push(key, job.trigger.next_fire_after(max(fire_at, now)))
                except ValueError as e:  # croniter's errors subclass ValueError
                    log.error("scheduler.rearm_failed", job=key, error=str(e))
                    self.remove_job(key)
            else:
                del self._jobs[key]
                self._armed.pop(key, None)
                self._next_fire.pop(key, None)

            task = asyncio.create_task(
                self._run_job(job, lock),
                name=f"scheduler:run:{key}:{uuid.uuid4().hex[:6]}",
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    # ── Job execution ─────────────────────────────────────────────────────────

    async def _run_job(self, job: JobSpec, lock: Optional[asyncio.Lock] = None) -> None:
        """Execute one firing. Never raises — job failures are recorded, not propagated."""
        if lock is None:
            lock = self._job_locks.get(job.key)
        if lock is None:
            log.error("scheduler.no_lock", job=job.key)
            return

        if lock.locked():
            log.warning("scheduler.job_skipped.still_running", job=job.key)
            self.stats.skipped_runs += 1
            return

        run = JobRun(run_id=uuid.uuid4().hex[:12], job_key=job.key)
        self.stats.total_runs += 1
        self.stats.last_run_job = job.key
        self.stats.last_run_at = clock.now().isoformat()

        try:
            async with lock:
                async with self._semaphore:
                    bind_job(job.key, run.run_id)
                    try:
                        await self._invoke(job.body)
                    except asyncio.CancelledError as e:
                        run.finish(succeeded=False, error=JobExecutionError(job.key, e))
                        log.info("scheduler.job_cancelled", job=job.key, run_id=run.run_id)
                        raise
                    except Exception as e:
                        err = JobExecutionError(job.key, e)
                        run.finish(succeeded=False, error=err)
                        self.stats.failed_runs += 1
                        self.stats.last_error = str(err)
                        log.error(
                            "scheduler.job_error",
                            job=job.key,
                            run_id=run.run_id,
                            error=str(e),
                            error_type=type(e).__name__,
                            exc_info=e,
                        )
                    else:
                        run.finish(succeeded=True)
                        self.stats.successful_runs += 1
                        log.info(
                            "scheduler.job_complete",
                            job=job.key,
                            run_id=run.run_id,
                            duration_s=round(run.duration_s, 3),
                        )
                    finally:
                        clear_job()
        finally:
            if not job.recurring and job.key not in self._jobs:
                self._job_locks.pop(job.key, None)
            self._record(run)

    @staticmethod
    async def _invoke(body: Callable[[], Any]) -> None:
        if inspect.iscoroutinefunction(body):
            await body()
            return
        result = await asyncio.to_thread(body)
        if inspect.isawaitable(result):
            await result

    def _record(self, run: JobRun) -> None:
        self.job_history.append(run)
        if len(self.job_history) > self._history_limit:
            self.job_history = self.job_history[-self._history_limit:]
