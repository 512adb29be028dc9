"""Scheduling subsystem: recurring timers and one-shot execution isolates.

Public API:
- JobScheduler: Start/stop/reload state machine over live timers
- build_jobs: Turn loaded routines into jobs (skip-and-log on bad schedules)
- build_recurrence: Classify and parse a schedule expression
- SubprocessLauncher / InProcessLauncher: Ways to run an isolate

Types:
- Job: A routine bound to its recurrence
- ExecutionRequest: By-value snapshot handed to one isolate
- Log / Error / Done: Messages an isolate reports back
"""

from cody_routines.scheduling.isolate import (
    Done,
    Error,
    ExecutionRequest,
    IsolateMessage,
    Log,
    perform_action,
    render_new_session,
    run_isolate,
)
from cody_routines.scheduling.launcher import (
    InProcessLauncher,
    Launcher,
    SubprocessLauncher,
)
from cody_routines.scheduling.recurrence import (
    CronRecurrence,
    IntervalRecurrence,
    Recurrence,
    ScheduleKind,
    build_recurrence,
    classify,
)
from cody_routines.scheduling.scheduler import (
    BuildResult,
    Job,
    JobScheduler,
    SchedulerState,
    build_jobs,
)

__all__ = [
    "BuildResult",
    "CronRecurrence",
    "Done",
    "Error",
    "ExecutionRequest",
    "InProcessLauncher",
    "IntervalRecurrence",
    "IsolateMessage",
    "Job",
    "JobScheduler",
    "Launcher",
    "Log",
    "Recurrence",
    "ScheduleKind",
    "SchedulerState",
    "SubprocessLauncher",
    "build_jobs",
    "build_recurrence",
    "classify",
    "perform_action",
    "render_new_session",
    "run_isolate",
]
