"""Scheduler - runs periodic maintenance jobs in the background."""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from mnemo.core.logging import get_logger

logger = get_logger("core.scheduler")


class JobPriority(Enum):
    LOW = 1
    NORMAL = 2
    HIGH = 3


@dataclass
class Job:
    """A maintenance callback and its schedule. interval None = run once."""

    id: str
    name: str
    callback: Callable[[], Any]
    interval: timedelta | None = None
    priority: JobPriority = JobPriority.NORMAL
    timeout: float | None = None
    next_run: datetime = field(default_factory=datetime.now)
    last_run: datetime | None = None
    runs: int = 0
    failures: int = 0
    running: bool = False

    def is_due(self, now: datetime) -> bool:
        return not self.running and self.next_run <= now


class Scheduler:
    """Polls the job table every `tick` seconds and runs what is due, highest priority first.

    Jobs run one after another on the loop task; a job that overruns its
    timeout is cancelled and counted as a failure.
    """

    def __init__(self, tick: float = 1.0):
        self.tick = tick
        self._jobs: dict[str, Job] = {}
        self._loop_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def add_job(
        self,
        job_id: str,
        name: str,
        callback: Callable[[], Any],
        interval: timedelta | None = None,
        priority: JobPriority = JobPriority.NORMAL,
        delay: timedelta | None = None,
        timeout: float | None = None,
    ) -> Job:
        """Add or replace a job. The first run is after `delay` (immediately by default)."""
        job = Job(
            id=job_id,
            name=name,
            callback=callback,
            interval=interval,
            priority=priority,
            timeout=timeout,
            next_run=datetime.now() + (delay or timedelta(0)),
        )
        self._jobs[job_id] = job
        logger.info(f"Scheduled job '{name}' (every {interval or 'once'}, first run {job.next_run:%H:%M:%S})")
        return job

    def remove_job(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        return sorted(self._jobs.values(), key=lambda j: j.next_run)

    async def run_pending(self) -> int:
        """Run every due job once. Returns how many ran."""
        now = datetime.now()
        due = sorted(
            (j for j in self._jobs.values() if j.is_due(now)),
            key=lambda j: j.priority.value,
            reverse=True,
        )
        for job in due:
            await self._execute(job)
        return len(due)

    async def _execute(self, job: Job) -> None:
        job.running = True
        try:
            result = job.callback()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=job.timeout)
        except asyncio.TimeoutError:
            job.failures += 1
            logger.error(f"Job '{job.name}' timed out after {job.timeout}s")
        except Exception as e:
            job.failures += 1
            logger.error(f"Job '{job.name}' failed: {e}")
        finally:
            job.running = False
            job.runs += 1
            job.last_run = datetime.now()

        if job.interval is None:
            self._jobs.pop(job.id, None)
        else:
            job.next_run = job.last_run + job.interval

    async def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._loop())
        logger.info(f"Scheduler started with {len(self._jobs)} jobs")

    async def stop(self) -> None:
        """Stop polling; a job that is mid-run is cancelled."""
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._loop_task
        self._loop_task = None
        logger.info("Scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await self.run_pending()
            await asyncio.sleep(self.tick)
