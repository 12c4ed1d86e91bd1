"""Resource cleanup utilities for guest teardown.

Cleanup operations log errors but never raise; they report success as a
bool so callers can summarize a teardown.
"""

import asyncio
import contextlib

from bhyve_builder import constants
from bhyve_builder._logging import get_logger
from bhyve_builder.platform_utils import ProcessWrapper

logger = get_logger(__name__)


async def cleanup_process(
    proc: ProcessWrapper | None,
    name: str,
    context_id: str,
    term_timeout: float = constants.PROCESS_TERM_TIMEOUT_SECONDS,
    kill_timeout: float = constants.PROCESS_KILL_TIMEOUT_SECONDS,
) -> bool:
    """Force cleanup of a subprocess (SIGTERM → SIGKILL).

    Args:
        proc: ProcessWrapper to stop (None safe - returns immediately)
        name: Process name for logging (e.g. "bhyve")
        context_id: Context for logging (VM name)
        term_timeout: Seconds to wait after SIGTERM before SIGKILL
        kill_timeout: Seconds to wait after SIGKILL before giving up

    Returns:
        True if the process is gone, False if it could not be reaped
    """
    if proc is None:
        return True

    try:
        if proc.returncode is not None:
            logger.debug(
                f"{name} already terminated",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
            return True

        logger.debug(f"Sending SIGTERM to {name}", extra={"context_id": context_id})
        await proc.terminate()

        try:
            await proc.wait_with_timeout(timeout=term_timeout)
            logger.debug(
                f"{name} stopped gracefully (SIGTERM)",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
            return True
        except TimeoutError:
            logger.warning(
                f"{name} didn't respond to SIGTERM, force killing",
                extra={"context_id": context_id, "term_timeout": term_timeout},
            )

        logger.debug(f"Sending SIGKILL to {name}", extra={"context_id": context_id})
        await proc.kill()

        try:
            await proc.wait_with_timeout(timeout=kill_timeout)
            logger.warning(
                f"{name} force killed (SIGKILL)",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
            return True
        except TimeoutError:
            logger.error(
                f"{name} didn't respond to SIGKILL within timeout",
                extra={"context_id": context_id, "kill_timeout": kill_timeout, "pid": proc.pid},
            )
            return False

    except ProcessLookupError:
        logger.debug(f"{name} already dead (ProcessLookupError)", extra={"context_id": context_id})
        return True

    except Exception as e:
        logger.error(
            f"{name} cleanup error",
            extra={"context_id": context_id, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return False


async def cleanup_task(
    task: asyncio.Task[None] | None,
    name: str,
    context_id: str,
    timeout: float | None = None,
) -> bool:
    """Join a background task, cancelling it if it outlives timeout.

    Args:
        task: Task to join (None safe - returns immediately)
        name: Task description for logging (e.g. "watcher", "output drain")
        context_id: Context for logging (VM name)
        timeout: Seconds to let the task finish on its own. None or 0 cancels immediately.

    Returns:
        True if the task finished on its own, False if it had to be cancelled
    """
    if task is None or task.done():
        return True

    if timeout:
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if done:
            return True
        logger.warning(
            f"{name} still running after {timeout}s, cancelling",
            extra={"context_id": context_id, "task_name": task.get_name()},
        )

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    return False
