"""Job scheduler: turns routines into live recurring timers.

Each job owns one timer task that sleeps until the next fire time and then
spawns an execution isolate without waiting for it. Isolate messages are
relayed to the log by separate tasks that stop() and reload() never cancel,
so in-flight firings always run to completion.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import assert_never

from cody_routines.config.models import LoadedRoutine, RoutinesSettings
from cody_routines.errors import RecurrenceParseError
from cody_routines.scheduling.isolate import (
    Done,
    Error,
    ExecutionRequest,
    IsolateMessage,
    Log,
)
from cody_routines.scheduling.launcher import Launcher, SubprocessLauncher
from cody_routines.scheduling.recurrence import (
    Recurrence,
    ScheduleKind,
    build_recurrence,
)

logger = logging.getLogger(__name__)

MISFIRE_GRACE = timedelta(seconds=60)


@dataclass(frozen=True)
class Job:
    """A routine bound to its recurrence."""

    routine: LoadedRoutine
    recurrence: Recurrence

    @property
    def routine_id(self) -> str:
        return self.routine.id

    @property
    def kind(self) -> ScheduleKind:
        return self.recurrence.kind

    @property
    def expression(self) -> str:
        return self.recurrence.expression

    @property
    def timezone(self) -> str | None:
        return self.recurrence.timezone


@dataclass(frozen=True)
class JobBuildError:
    routine_id: str
    error: RecurrenceParseError


@dataclass
class BuildResult:
    jobs: list[Job] = field(default_factory=list)
    errors: list[JobBuildError] = field(default_factory=list)


def build_jobs(routines: Iterable[LoadedRoutine]) -> BuildResult:
    """Build one job per enabled routine with a schedule trigger.

    A schedule that fails to parse skips that routine only; the rest of the
    schedule is still built.
    """
    result = BuildResult()
    for routine in routines:
        schedule = routine.schedule
        if not routine.config.enabled or schedule is None:
            continue
        try:
            recurrence = build_recurrence(schedule.when, schedule.timezone)
        except RecurrenceParseError as e:
            logger.error(
                "job_build_failed",
                extra={
                    "routine.id": routine.id,
                    "schedule.when": schedule.when,
                    "error.message": e.reason,
                },
            )
            result.errors.append(JobBuildError(routine_id=routine.id, error=e))
            continue
        result.jobs.append(Job(routine=routine, recurrence=recurrence))
    return result


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobScheduler:
    """Owns the live set of recurring timers.

    Example:
        scheduler = JobScheduler(build_jobs(routines).jobs, settings)
        await scheduler.start()
        ...
        await scheduler.reload(build_jobs(new_routines).jobs)
        await scheduler.stop()
    """

    def __init__(
        self,
        jobs: Iterable[Job],
        settings: RoutinesSettings,
        *,
        launcher: Launcher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._jobs: tuple[Job, ...] = tuple(jobs)
        self._settings = settings
        self._launcher = launcher or SubprocessLauncher()
        self._clock = clock
        self._state = SchedulerState.STOPPED
        self._generation = 1
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._reload_lock = asyncio.Lock()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def jobs(self) -> tuple[Job, ...]:
        return self._jobs

    @property
    def live_job_count(self) -> int:
        return len(self._timers)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def start(self) -> None:
        if self._state is SchedulerState.RUNNING:
            return
        for job in self._jobs:
            self._timers[job.routine_id] = asyncio.create_task(
                self._run_timer(job), name=f"routine-timer:{job.routine_id}"
            )
        self._state = SchedulerState.RUNNING
        logger.info(
            "scheduler_started",
            extra={
                "scheduler.generation": self._generation,
                "scheduler.jobs": len(self._jobs),
            },
        )

    async def stop(self) -> None:
        """Cancel pending timers. In-flight isolates keep running."""
        if self._state is SchedulerState.STOPPED:
            return
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._state = SchedulerState.STOPPED
        logger.info(
            "scheduler_stopped",
            extra={
                "scheduler.generation": self._generation,
                "scheduler.inflight": len(self._inflight),
            },
        )

    async def reload(self, jobs: Iterable[Job]) -> None:
        """Replace the job set: stop, rebuild, start."""
        async with self._reload_lock:
            await self.stop()
            self._jobs = tuple(jobs)
            self._generation += 1
            await self.start()

    def fire(self, routine_id: str) -> asyncio.Task[None]:
        """Spawn an isolate for a job right now.

        Raises:
            KeyError: If no job exists for the routine.
        """
        for job in self._jobs:
            if job.routine_id == routine_id:
                return self._spawn(job)
        raise KeyError(routine_id)

    def next_run_times(self) -> dict[str, datetime]:
        """Next fire time for every job, keyed by routine id."""
        now = self._clock()
        return {job.routine_id: job.recurrence.next_after(now) for job in self._jobs}

    async def wait_for_inflight(self) -> None:
        """Wait for every running isolate to finish on its own."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_timer(self, job: Job) -> None:
        anchor = self._clock()
        try:
            while True:
                fire_at = job.recurrence.next_after(anchor)
                delay = (fire_at - self._clock()).total_seconds()
                logger.debug(
                    f"Job {job.routine_id}: next fire {fire_at.isoformat()} "
                    f"(in {delay:.1f}s)"
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                self._spawn(job)
                # Occurrences missed by more than the grace period (e.g. after a
                # suspend) are not replayed
                now = self._clock()
                anchor = fire_at if now - fire_at <= MISFIRE_GRACE else now
        except Exception as e:
            logger.error(
                "job_timer_failed",
                extra={"routine.id": job.routine_id, "error.message": str(e)},
                exc_info=True,
            )

    def _spawn(self, job: Job) -> asyncio.Task[None]:
        request = ExecutionRequest.for_routine(
            job.routine, self._settings, generation=self._generation
        )
        logger.info(
            "routine_fired",
            extra={
                "routine.id": job.routine_id,
                "scheduler.generation": request.generation,
            },
        )
        task = asyncio.create_task(
            self._relay(request), name=f"routine-isolate:{job.routine_id}"
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _relay(self, request: ExecutionRequest) -> None:
        try:
            async for message in self._launcher.launch(request):
                self._log_message(request, message)
        except Exception as e:
            logger.error(
                "isolate_launch_failed",
                extra={
                    "routine.id": request.routine_id,
                    "scheduler.generation": request.generation,
                    "error.message": str(e),
                },
            )

    def _log_message(self, request: ExecutionRequest, message: IsolateMessage) -> None:
        # Messages keep the generation they were spawned under, even when they
        # arrive after a reload.
        extra = {"scheduler.generation": request.generation}
        if isinstance(message, Log):
            logger.info(f"[{request.routine_id}] {message.text}", extra=extra)
        elif isinstance(message, Error):
            logger.error(f"[{request.routine_id}] {message.text}", extra=extra)
        elif isinstance(message, Done):
            logger.info(f"[{request.routine_id}] isolate finished", extra=extra)
        else:
            assert_never(message)
