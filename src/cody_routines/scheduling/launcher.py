"""Launchers start execution isolates and stream back their messages."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from typing import Protocol

from cody_routines.scheduling.isolate import (
    ISOLATE_MODULE,
    ClientFactory,
    Done,
    Error,
    ExecutionRequest,
    IsolateMessage,
    Notifier,
    decode_message,
    default_client_factory,
    run_isolate,
)

logger = logging.getLogger(__name__)


class Launcher(Protocol):
    """Starts one isolate per call and yields its messages as they arrive.

    The stream always ends with exactly one Done.
    """

    def launch(self, request: ExecutionRequest) -> AsyncIterator[IsolateMessage]: ...


class SubprocessLauncher:
    """Runs each isolate in its own Python process.

    The request is written to the child's stdin as JSON; the child answers
    with JSON lines on stdout. A child that exits without sending Done is
    reported as an Error followed by a synthetic Done.
    """

    def __init__(self, python: str | None = None, module: str = ISOLATE_MODULE):
        self._python = python or sys.executable
        self._module = module

    async def launch(self, request: ExecutionRequest) -> AsyncIterator[IsolateMessage]:
        process = await asyncio.create_subprocess_exec(
            self._python,
            "-m",
            self._module,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert process.stdin is not None
        assert process.stdout is not None
        assert process.stderr is not None

        logger.debug(
            "isolate_started",
            extra={"routine.id": request.routine_id, "process.pid": process.pid},
        )

        # Read stderr concurrently so a chatty child cannot fill the pipe and
        # stall before it finishes writing stdout
        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            process.stdin.write(request.to_json().encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()

            done = False
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    message = decode_message(line)
                except ValueError:
                    logger.debug(f"Skipping non-message isolate output: {line[:100]}")
                    continue
                if isinstance(message, Done):
                    done = True
                yield message

            stderr = (await stderr_task).decode("utf-8", errors="replace")
            exit_code = await process.wait()
        finally:
            stderr_task.cancel()

        if not done:
            detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
            yield Error(
                f"Isolate exited with code {exit_code} before completing"
                + (f": {detail}" if detail else "")
            )
            yield Done()


class InProcessLauncher:
    """Runs isolates as tasks on the current event loop.

    Used by the manual ``run`` command and in tests, where a separate process
    adds nothing but startup cost.
    """

    def __init__(
        self,
        client_factory: ClientFactory = default_client_factory,
        notifier: Notifier | None = None,
    ):
        self._client_factory = client_factory
        self._notifier = notifier

    async def launch(self, request: ExecutionRequest) -> AsyncIterator[IsolateMessage]:
        queue: asyncio.Queue[IsolateMessage] = asyncio.Queue()
        task = asyncio.create_task(
            run_isolate(
                request,
                queue.put_nowait,
                client_factory=self._client_factory,
                notifier=self._notifier,
            )
        )
        while True:
            message = await queue.get()
            yield message
            if isinstance(message, Done):
                break
        await task
