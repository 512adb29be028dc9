"""Daemon lifecycle: health check, load, schedule, watch, shut down."""

import asyncio
import logging
import os
import signal
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from cody_routines.client import OpenCodeClient
from cody_routines.config import RoutinesSettings, load_routines
from cody_routines.errors import ConnectivityError, RemoteAPIError
from cody_routines.scheduling import JobScheduler, Launcher, build_jobs
from cody_routines.watcher import Debouncer, DirectoryWatcher

logger = logging.getLogger(__name__)

ClientFactory = Callable[[RoutinesSettings], OpenCodeClient]


def default_client_factory(settings: RoutinesSettings) -> OpenCodeClient:
    return OpenCodeClient(settings.server_url, timeout=settings.health_timeout)


class DaemonState(Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class Daemon:
    """Owns the scheduler for the lifetime of one daemon process.

    Example:
        daemon = Daemon(Path("routines"), settings, watch=True)
        await daemon.start()
        await daemon.run_forever()
    """

    def __init__(
        self,
        routines_dir: Path,
        settings: RoutinesSettings,
        *,
        watch: bool = False,
        client_factory: ClientFactory = default_client_factory,
        launcher: Launcher | None = None,
    ):
        self._routines_dir = routines_dir
        self._settings = settings
        self._watch = watch
        self._client_factory = client_factory
        self._launcher = launcher
        self._state = DaemonState.INITIALIZING
        self._scheduler: JobScheduler | None = None
        self._watcher: DirectoryWatcher | None = None
        self._debouncer: Debouncer | None = None
        self._reload_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def scheduler(self) -> JobScheduler | None:
        return self._scheduler

    @property
    def watching(self) -> bool:
        return self._watcher is not None and self._watcher.running

    async def check_health(self) -> str:
        """Probe the remote server once.

        Returns:
            The server version.

        Raises:
            ConnectivityError: If the server is unreachable, slow or unhealthy.
        """
        url = self._settings.server_url
        try:
            async with self._client_factory(self._settings) as client:
                health = await asyncio.wait_for(
                    client.health(), timeout=self._settings.health_timeout
                )
        except TimeoutError as e:
            self._state = DaemonState.STOPPED
            raise ConnectivityError(
                f"Failed to connect to OpenCode server at {url}: timed out after "
                f"{self._settings.health_timeout:g}s"
            ) from e
        except (RemoteAPIError, ValueError) as e:
            self._state = DaemonState.STOPPED
            raise ConnectivityError(
                f"Failed to connect to OpenCode server at {url}: {e}"
            ) from e

        if not health.healthy:
            self._state = DaemonState.STOPPED
            raise ConnectivityError(f"OpenCode server at {url} is not healthy")

        logger.info(f"Connected to OpenCode server (version {health.version})")
        return health.version

    async def start(self) -> None:
        """Health check, initial load, then optional watching.

        Raises:
            ConnectivityError: If the startup health check fails. Nothing is
                scheduled in that case.
        """
        logger.info("Starting routines daemon...")
        logger.info(f"Routines directory: {self._routines_dir}")
        logger.info(f"OpenCode server: {self._settings.server_url}")

        await self.check_health()
        self._state = DaemonState.READY

        await self.reload()

        if self._watch:
            self._debouncer = Debouncer(self._settings.debounce_seconds, self.reload)
            self._watcher = DirectoryWatcher(
                self._routines_dir, self._debouncer.trigger
            )
            await self._watcher.start()
            logger.info(f"Watching {self._routines_dir} for changes...")

        self._state = DaemonState.RUNNING

    async def reload(self) -> None:
        """Load definitions and rebuild the schedule from scratch."""
        async with self._reload_lock:
            if self._state in (DaemonState.SHUTTING_DOWN, DaemonState.STOPPED):
                return
            result = load_routines(self._routines_dir)

            summary = f"Loaded {len(result.routines)} routine(s)"
            if result.errors:
                summary += f", {len(result.errors)} invalid"
            logger.info(summary)
            for definition_error in result.errors:
                logger.error(f"{definition_error.file}: {definition_error.error}")

            jobs = build_jobs(result.routines).jobs

            if not jobs:
                logger.warning("No routines to schedule")
                if self._scheduler is not None:
                    await self._scheduler.stop()
                return

            if self._scheduler is None:
                self._scheduler = JobScheduler(
                    jobs, self._settings, launcher=self._launcher
                )
                await self._scheduler.start()
            else:
                logger.info("Restarting scheduler...")
                await self._scheduler.reload(jobs)

            next_runs = self._scheduler.next_run_times()
            logger.info("Scheduled routines:")
            for job in jobs:
                next_run = next_runs.get(job.routine_id)
                logger.info(
                    f"  - {job.routine_id} ({job.expression})"
                    + (f" next run {next_run.isoformat()}" if next_run else "")
                )

    async def shutdown(self) -> None:
        """Stop watching and scheduling, then let running isolates finish."""
        if self._state in (DaemonState.SHUTTING_DOWN, DaemonState.STOPPED):
            return
        self._state = DaemonState.SHUTTING_DOWN
        logger.info("Shutting down...")

        if self._watcher is not None:
            await self._watcher.stop()
        if self._debouncer is not None:
            self._debouncer.cancel()

        # Wait for an in-progress reload so it cannot restart the scheduler
        async with self._reload_lock:
            if self._scheduler is not None:
                await self._scheduler.stop()
                if self._scheduler.inflight_count:
                    logger.info(
                        f"Waiting for {self._scheduler.inflight_count} running "
                        "routine(s) to finish"
                    )
                await self._scheduler.wait_for_inflight()

        self._state = DaemonState.STOPPED
        self._stop_event.set()

    def request_shutdown(self) -> None:
        self._stop_event.set()

    async def run_forever(self) -> None:
        """Block until SIGINT/SIGTERM, then shut down gracefully.

        A second signal exits immediately.
        """
        loop = asyncio.get_running_loop()
        signals_received = 0

        def handle_signal() -> None:
            nonlocal signals_received
            signals_received += 1
            if signals_received == 1:
                self.request_shutdown()
            else:
                logger.warning("daemon_force_shutdown")
                os._exit(1)

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, handle_signal)

        logger.info("Daemon is running. Press Ctrl+C to stop.")
        try:
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
        await self.shutdown()
