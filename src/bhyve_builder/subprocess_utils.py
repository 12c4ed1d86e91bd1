"""Subprocess lifecycle utilities.

- run_command: spawn a short helper (dladm, bhyvectl) and capture its output
- drain_subprocess_output: concurrent stdout/stderr draining for long-lived bhyve
- log_task_exception: done-callback so background task failures are never silent
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bhyve_builder._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from bhyve_builder.platform_utils import ProcessWrapper

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Exit status and decoded output of a finished helper command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(
    cmd: Sequence[str],
    *,
    context_id: str,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command to completion, capturing stdout and stderr.

    Args:
        cmd: Program and arguments (no shell)
        context_id: Identifier for log correlation (VM or VNIC name)
        timeout: Seconds before the command is killed. None waits forever.

    Returns:
        CommandResult with decoded output

    Raises:
        OSError: The program could not be spawned (missing, not executable)
        TimeoutError: The command did not finish within timeout (it is killed)
    """
    logger.debug("Running command", extra={"context_id": context_id, "cmd": list(cmd)})
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        logger.warning(
            "Command timed out, killing",
            extra={"context_id": context_id, "cmd": list(cmd), "timeout": timeout},
        )
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise

    result = CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )
    logger.debug(
        "Command finished",
        extra={"context_id": context_id, "cmd": list(cmd), "returncode": result.returncode},
    )
    return result


async def drain_subprocess_output(
    process: ProcessWrapper,
    *,
    process_name: str,
    context_id: str,
    stdout_handler: Callable[[str], None] | None = None,
    stderr_handler: Callable[[str], None] | None = None,
) -> None:
    """Drain subprocess stdout/stderr concurrently until EOF.

    A sequential reader can deadlock once the child fills one 64KB pipe
    while the reader is blocked on the other, so both are read from their
    own task.

    Args:
        process: ProcessWrapper instance with stdout/stderr pipes
        process_name: Process identifier for logging (e.g. "bhyve")
        context_id: Context identifier (VM name) for log correlation
        stdout_handler: Optional callback for stdout lines (default: debug log)
        stderr_handler: Optional callback for stderr lines (default: warning log)
    """
    if stdout_handler is None:

        def default_stdout_handler(line: str) -> None:
            logger.debug(f"[{process_name} stdout] {line}", extra={"context_id": context_id, "output": line})

        stdout_handler = default_stdout_handler

    if stderr_handler is None:

        def default_stderr_handler(line: str) -> None:
            logger.warning(f"[{process_name} stderr] {line}", extra={"context_id": context_id, "output": line})

        stderr_handler = default_stderr_handler

    async def read_lines(stream: asyncio.StreamReader, handler: Callable[[str], None]) -> None:
        async for line in stream:
            try:
                decoded = line.decode().rstrip()
            except UnicodeDecodeError:
                continue  # non-UTF8 console noise
            if decoded:
                handler(decoded)

    async with asyncio.TaskGroup() as tg:
        if process.stdout:
            tg.create_task(read_lines(process.stdout, stdout_handler))
        if process.stderr:
            tg.create_task(read_lines(process.stderr, stderr_handler))


def log_task_exception(task: asyncio.Task[None]) -> None:
    """Log exceptions from background tasks.

    Usage:
        task = asyncio.create_task(some_coroutine())
        task.add_done_callback(log_task_exception)
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            extra={"task_name": task.get_name()},
            exc_info=exc,
        )
