"""Routine directory watcher with a debounced reload.

File system events come from watchdog. Editors often produce several events
for one save, so the daemon feeds them through a Debouncer that coalesces a
burst into a single reload.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from cody_routines.config.loader import is_routine_file

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], Awaitable[None]]

# Seconds to wait for the observer thread when stopping
OBSERVER_JOIN_TIMEOUT = 2.0


class Debouncer:
    """Coalesces bursts of triggers into a single callback.

    Holds at most one pending task. Each trigger cancels the pending one and
    schedules a fresh one, so the callback runs once, ``delay`` seconds after
    the last trigger of a burst.
    """

    def __init__(self, delay: float, callback: ChangeCallback):
        self._delay = delay
        self._callback = callback
        self._pending: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def trigger(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = asyncio.create_task(self._fire(), name="routine-reload")

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    async def _fire(self) -> None:
        await asyncio.sleep(self._delay)
        # Past this point the reload runs to completion; a new trigger starts
        # a separate window instead of cancelling it.
        self._pending = None
        logger.info("File change detected, reloading...")
        try:
            await self._callback()
        except Exception as e:
            logger.error("reload_failed", extra={"error.message": str(e)})


# Event kinds that can change what load_routines() returns
RELOAD_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
)


class RoutineEventHandler(FileSystemEventHandler):
    """Passes routine file events from the observer thread to the event loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        notify: Callable[[str, str], None],
    ):
        self._loop = loop
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in RELOAD_EVENTS:
            return
        paths = [os.fsdecode(event.src_path)]
        if event.dest_path:
            paths.append(os.fsdecode(event.dest_path))
        # Renames count when either side is a routine file, so editors that
        # save through a temporary file still trigger a reload.
        for path in paths:
            if is_routine_file(path):
                self._loop.call_soon_threadsafe(self._notify, event.event_type, path)
                return


class DirectoryWatcher:
    """Watches a routines directory and reports changes to routine files.

    Events arrive on a watchdog observer thread and are handed to the loop,
    so ``on_change`` always runs on the loop thread.

    Example:
        debouncer = Debouncer(2.0, daemon.reload)
        watcher = DirectoryWatcher(routines_dir, debouncer.trigger)
        await watcher.start()
    """

    def __init__(self, directory: Path, on_change: Callable[[], None]):
        self._directory = directory
        self._on_change = on_change
        self._observer: BaseObserver | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    async def start(self) -> None:
        if self._observer is not None:
            return
        if not self._directory.is_dir():
            logger.warning(
                "routine_watch_directory_missing",
                extra={"file.path": str(self._directory)},
            )
            return

        handler = RoutineEventHandler(asyncio.get_running_loop(), self._handle_event)
        observer = Observer()
        observer.schedule(handler, str(self._directory), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(
            "routine_watcher_started", extra={"file.path": str(self._directory)}
        )

    async def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        await asyncio.to_thread(observer.join, OBSERVER_JOIN_TIMEOUT)

    def _handle_event(self, event_type: str, path: str) -> None:
        # Events queued before stop() may still be delivered
        if self._observer is None:
            return
        logger.debug(f"Routine file {event_type}: {path}")
        self._on_change()
