"""Background refresh: the job body and an in-process periodic scheduler.

The scheduler honours the usual job-scheduler contract: one uniquely named
periodic job, run constraints checked before each run, KEEP semantics on
re-registration, cancel by name, and exponential backoff when the job asks
to be retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from agent_directory.utils.retry import backoff_delay

if TYPE_CHECKING:
    from agent_directory.services import Services

_log = logging.getLogger(__name__)

REFRESH_WORK_NAME = "agent_refresh_work"
REFRESH_INTERVAL_MINUTES = 15


class JobOutcome(Enum):
    SUCCESS = "success"
    RETRY = "retry"


class ExistingWorkPolicy(Enum):
    KEEP = "keep"
    REPLACE = "replace"


@dataclass(frozen=True)
class Constraints:
    network_required: bool = True
    battery_not_low: bool = True


Job = Callable[[], Awaitable[JobOutcome]]


# ── Job body ─────────────────────────────────────────────────────────────────

class RefreshWorker:
    """Periodic "refresh agents" job.

    Safe to run with nothing else started: it brings up the shared services
    it was handed before touching them.
    """

    def __init__(self, services: "Services") -> None:
        self._services = services

    async def do_work(self) -> JobOutcome:
        try:
            await self._services.start()
            settings = self._services.settings
            if not await settings.auto_refresh_enabled():
                _log.debug("auto refresh disabled, skipping")
                return JobOutcome.SUCCESS
            if await settings.offline_only():
                _log.debug("offline-only mode, skipping")
                return JobOutcome.SUCCESS
            result = await self._services.coordinator.refresh_agents()
        except Exception:
            _log.exception("refresh job failed")
            return JobOutcome.RETRY

        if result.ok:
            return JobOutcome.SUCCESS
        _log.info("refresh job will retry: %s", result.error)
        return JobOutcome.RETRY


# ── Scheduler ────────────────────────────────────────────────────────────────

@dataclass
class _ScheduledJob:
    name: str
    interval: float
    job: Job
    constraints: Constraints
    runs: int = 0
    attempt: int = 0
    task: asyncio.Task | None = field(default=None, repr=False)


class RefreshScheduler:
    def __init__(
        self,
        *,
        network_available: Callable[[], bool] = lambda: True,
        battery_low: Callable[[], bool] = lambda: False,
        constraint_poll: float = 30.0,
        backoff: Callable[[int], float] = backoff_delay,
    ) -> None:
        self._network_available = network_available
        self._battery_low = battery_low
        self._constraint_poll = constraint_poll
        self._backoff = backoff
        self._jobs: dict[str, _ScheduledJob] = {}

    def enqueue_unique_periodic(
        self,
        name: str,
        interval: float,
        job: Job,
        constraints: Constraints = Constraints(),
        policy: ExistingWorkPolicy = ExistingWorkPolicy.KEEP,
    ) -> bool:
        """Register ``job`` under ``name``. Returns False if KEEP left an existing job in place."""
        if self.is_scheduled(name):
            if policy is ExistingWorkPolicy.KEEP:
                _log.debug("job %s already scheduled, keeping it", name)
                return False
            self.cancel_unique(name)

        entry = _ScheduledJob(name=name, interval=interval, job=job, constraints=constraints)
        entry.task = asyncio.get_running_loop().create_task(self._run(entry))
        self._jobs[name] = entry
        _log.info("scheduled %s every %.0fs", name, interval)
        return True

    def cancel_unique(self, name: str) -> bool:
        entry = self._jobs.pop(name, None)
        if entry is None or entry.task is None or entry.task.done():
            return False
        entry.task.cancel()
        _log.info("cancelled %s", name)
        return True

    def is_scheduled(self, name: str) -> bool:
        entry = self._jobs.get(name)
        return entry is not None and entry.task is not None and not entry.task.done()

    def run_count(self, name: str) -> int:
        entry = self._jobs.get(name)
        return entry.runs if entry else 0

    async def shutdown(self) -> None:
        tasks = [e.task for e in self._jobs.values() if e.task is not None]
        for name in list(self._jobs):
            self.cancel_unique(name)
        await asyncio.gather(*tasks, return_exceptions=True)

    def _constraints_met(self, constraints: Constraints) -> bool:
        if constraints.network_required and not self._network_available():
            return False
        if constraints.battery_not_low and self._battery_low():
            return False
        return True

    async def _run(self, entry: _ScheduledJob) -> None:
        while True:
            while not self._constraints_met(entry.constraints):
                await asyncio.sleep(self._constraint_poll)

            try:
                outcome = await entry.job()
            except Exception:
                _log.exception("job %s raised", entry.name)
                outcome = JobOutcome.RETRY
            entry.runs += 1

            if outcome is JobOutcome.RETRY:
                delay = self._backoff(entry.attempt)
                entry.attempt += 1
                _log.info("job %s asked for retry, next attempt in %.0fs", entry.name, delay)
            else:
                entry.attempt = 0
                delay = entry.interval
            await asyncio.sleep(delay)


# ── Registration helpers ─────────────────────────────────────────────────────

def schedule_periodic_refresh(
    scheduler: RefreshScheduler,
    worker: RefreshWorker,
    interval_minutes: int = REFRESH_INTERVAL_MINUTES,
) -> bool:
    return scheduler.enqueue_unique_periodic(
        REFRESH_WORK_NAME,
        interval_minutes * 60,
        worker.do_work,
        Constraints(network_required=True, battery_not_low=True),
        policy=ExistingWorkPolicy.KEEP,
    )


def cancel_periodic_refresh(scheduler: RefreshScheduler) -> bool:
    return scheduler.cancel_unique(REFRESH_WORK_NAME)
