"""bhyve guest supervision.

bhyve exits when the guest reboots, which is common during automated
installs. GuestSupervisor starts the hypervisor without waiting for the
guest, watches the process from a background task, relaunches it once on a
clean (zero) exit so post-install provisioning can run, and reports the
first non-zero exit (guest powered off) on a completion future.

Exit interpretation:
    0          guest-initiated reboot → relaunch with the same command line
    non-zero   guest powered off / crashed → completion resolves to the code
    wait error completion resolves to 0, no relaunch

Usage:
    ```python
    supervisor = GuestSupervisor(settings, vm_name="packer-vm1")
    run = await supervisor.start(descriptor)   # returns once bhyve is spawned
    exit_code = await run.wait()
    await supervisor.stop()                    # always, even if start() failed
    ```
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from bhyve_builder._logging import get_logger
from bhyve_builder.bhyve_cmd import build_bhyve_cmd, build_destroy_cmd
from bhyve_builder.exceptions import GuestConfigError, GuestStartError, GuestStateError
from bhyve_builder.models import VALID_STATE_TRANSITIONS, GuestLaunchDescriptor, GuestState
from bhyve_builder.platform_utils import ProcessWrapper
from bhyve_builder.resource_cleanup import cleanup_process, cleanup_task
from bhyve_builder.settings import Settings
from bhyve_builder.subprocess_utils import drain_subprocess_output, log_task_exception, run_command

logger = get_logger(__name__)


@dataclass(slots=True)
class GuestAttempt:
    """One spawned bhyve process and the task draining its output."""

    process: ProcessWrapper
    log_task: asyncio.Task[None]


class GuestRun:
    """Handle to one supervised guest.

    Owned by GuestSupervisor. Callers only read it: wait() for the final
    exit code, state for the lifecycle position.

    Attributes:
        descriptor: Launch parameters (shared by the relaunch)
        cmd: bhyve command line, identical for every attempt
        attempts: Spawned bhyve processes, initial launch first
        completion: Resolves to the guest's final exit code
        watcher: Background task awaiting bhyve exit
        restart_error: Set when the relaunch after a reboot failed to spawn
        wait_error: Set when waiting on bhyve failed for a non-exit reason
    """

    def __init__(self, descriptor: GuestLaunchDescriptor, cmd: list[str]) -> None:
        self.descriptor = descriptor
        self.cmd = cmd
        self.attempts: list[GuestAttempt] = []
        self.completion: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self.watcher: asyncio.Task[None] | None = None
        self.restart_error: GuestStartError | None = None
        self.wait_error: BaseException | None = None
        self._state = GuestState.NOT_STARTED
        self._state_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def state(self) -> GuestState:
        """Current guest state."""
        return self._state

    @property
    def restarts(self) -> int:
        """Number of relaunches after guest reboots."""
        return max(len(self.attempts) - 1, 0)

    @property
    def process(self) -> ProcessWrapper | None:
        """Most recently spawned bhyve process."""
        return self.attempts[-1].process if self.attempts else None

    async def transition_state(self, new_state: GuestState) -> None:
        """Transition to new_state, validated against VALID_STATE_TRANSITIONS.

        Raises:
            GuestStateError: If the transition is not allowed from the current state
        """
        async with self._state_lock:
            self._transition_locked(new_state)

    async def advance(self, new_state: GuestState) -> bool:
        """Transition unless the guest was destroyed meanwhile.

        Returns:
            False if the guest is DESTROYED (nothing changed), True otherwise
        """
        async with self._state_lock:
            if self._state is GuestState.DESTROYED:
                return False
            self._transition_locked(new_state)
            return True

    def _transition_locked(self, new_state: GuestState) -> None:
        allowed = VALID_STATE_TRANSITIONS.get(self._state, set())
        if new_state not in allowed:
            raise GuestStateError(
                f"Invalid state transition: {self._state.value} -> {new_state.value}",
                context={
                    "vm_name": self.name,
                    "current_state": self._state.value,
                    "target_state": new_state.value,
                    "allowed_transitions": sorted(s.value for s in allowed),
                },
            )
        old_state = self._state
        self._state = new_state
        logger.debug(
            "Guest state transition",
            extra={"vm_name": self.name, "old_state": old_state.value, "new_state": new_state.value},
        )

    async def mark_destroyed(self) -> None:
        """Move to DESTROYED from any state (idempotent)."""
        async with self._state_lock:
            if self._state is not GuestState.DESTROYED:
                self._transition_locked(GuestState.DESTROYED)

    async def wait(self, timeout: float | None = None) -> int:
        """Wait for the guest's final exit code.

        A timeout does not cancel the completion; wait() can be called again.

        Raises:
            TimeoutError: No final state within timeout
            GuestStartError: Relaunch failed while following reboots
            asyncio.CancelledError: Watcher was cancelled before a result was known
        """
        if timeout is None:
            return await asyncio.shield(self.completion)
        return await asyncio.wait_for(asyncio.shield(self.completion), timeout=timeout)


class GuestSupervisor:
    """Starts, watches, relaunches and destroys one bhyve guest.

    The supervisor lock orders every read and write of the active run
    reference between start(), the watcher task and active_run().
    """

    def __init__(self, settings: Settings, vm_name: str) -> None:
        self._settings = settings
        self.vm_name = vm_name
        self._lock = asyncio.Lock()
        self._active: GuestRun | None = None
        self._runs: list[GuestRun] = []

    async def active_run(self) -> GuestRun | None:
        """Run whose completion is still pending, or None."""
        async with self._lock:
            return self._active

    async def start(self, descriptor: GuestLaunchDescriptor) -> GuestRun:
        """Launch bhyve and return without waiting for the guest.

        Args:
            descriptor: Launch parameters; its name must match vm_name

        Returns:
            GuestRun handle; await run.wait() for the final exit code

        Raises:
            GuestStartError: bhyve could not be spawned (no watcher is created)
            GuestStateError: A guest is already being tracked
            GuestConfigError: Descriptor names a different guest
        """
        if descriptor.name != self.vm_name:
            raise GuestConfigError(
                f"Descriptor is for VM {descriptor.name!r}, supervisor manages {self.vm_name!r}",
                context={"vm_name": self.vm_name, "descriptor_name": descriptor.name},
            )

        async with self._lock:
            if self._active is not None:
                raise GuestStateError(
                    f"bhyve VM {self.vm_name} is already running",
                    context={"vm_name": self.vm_name, "state": self._active.state.value},
                )

            run = GuestRun(descriptor, build_bhyve_cmd(self._settings, descriptor))
            await run.transition_state(GuestState.LAUNCHING)

            logger.info("Starting bhyve VM", extra={"vm_name": run.name, "cmd": run.cmd})
            try:
                attempt = await self._spawn(run)
            except OSError as e:
                raise GuestStartError(
                    f"Error starting VM: {e}",
                    context={"vm_name": run.name, "binary_path": run.cmd[0]},
                ) from e

            run.attempts.append(attempt)
            await run.transition_state(GuestState.RUNNING)

            run.watcher = asyncio.create_task(self._watch(run), name=f"bhyve-watcher-{run.name}")
            run.watcher.add_done_callback(log_task_exception)

            self._active = run
            self._runs.append(run)
            return run

    async def _spawn(self, run: GuestRun) -> GuestAttempt:
        """Fork bhyve and start draining its console output.

        Raises:
            OSError: Binary missing, not executable, or fork failed
        """
        proc = ProcessWrapper(
            await asyncio.create_subprocess_exec(
                *run.cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        )
        log_task = asyncio.create_task(
            drain_subprocess_output(proc, process_name="bhyve", context_id=run.name),
            name=f"bhyve-output-{run.name}",
        )
        log_task.add_done_callback(log_task_exception)
        logger.debug("bhyve process spawned", extra={"vm_name": run.name, "pid": proc.pid})
        return GuestAttempt(process=proc, log_task=log_task)

    async def _watch(self, run: GuestRun) -> None:
        """Await bhyve exit, relaunch on reboot, deliver the exit code."""
        try:
            try:
                exit_code = await self._follow(run)
            except GuestStartError as e:
                # Only reachable with follow_reboots
                run.completion.set_exception(e)
            else:
                run.completion.set_result(exit_code)
        finally:
            if not run.completion.done():
                run.completion.cancel()
            async with self._lock:
                if self._active is run:
                    self._active = None

    async def _follow(self, run: GuestRun) -> int:
        """Wait on the current attempt; returns the exit code to deliver."""
        while True:
            proc = run.attempts[-1].process
            try:
                returncode = await proc.wait()
            except (OSError, RuntimeError) as e:
                run.wait_error = e
                logger.warning(
                    "Waiting on bhyve VM failed, assuming exit code 0",
                    extra={"vm_name": run.name, "error": str(e), "error_type": type(e).__name__},
                )
                return 0

            if returncode != 0:
                logger.info("bhyve VM powered off", extra={"vm_name": run.name, "exit_code": returncode})
                await run.advance(GuestState.TERMINATED)
                return returncode

            if not await run.advance(GuestState.REBOOT_DETECTED):
                logger.info("bhyve VM exited after destroy, not restarting", extra={"vm_name": run.name})
                return 0

            logger.info("Restarting bhyve VM after reboot", extra={"vm_name": run.name, "restarts": run.restarts})
            try:
                attempt = await self._spawn(run)
            except OSError as e:
                run.restart_error = GuestStartError(
                    f"Error restarting VM: {e}",
                    context={"vm_name": run.name, "binary_path": run.cmd[0]},
                )
                logger.error(run.restart_error.message, extra={"vm_name": run.name})
                if self._settings.follow_reboots:
                    raise run.restart_error from e
                return 0

            # Appended before any further await so stop() always reaps it
            run.attempts.append(attempt)
            if await run.advance(GuestState.LAUNCHING):
                await run.advance(GuestState.RUNNING)

            if not self._settings.follow_reboots:
                return 0

    async def stop(self) -> None:
        """Destroy the guest and reap everything the supervisor spawned.

        Safe to call whether or not start() succeeded, after a reboot
        relaunch, or after the guest already powered off. Never raises.
        """
        async with self._lock:
            runs = list(self._runs)

        for run in runs:
            await run.mark_destroyed()

        logger.info("Stopping bhyve VM", extra={"vm_name": self.vm_name})
        try:
            result = await run_command(
                build_destroy_cmd(self._settings, self.vm_name),
                context_id=self.vm_name,
                timeout=self._settings.command_timeout_seconds,
            )
        except (OSError, TimeoutError) as e:
            logger.warning(
                "Error stopping VM",
                extra={"vm_name": self.vm_name, "error": str(e), "error_type": type(e).__name__},
            )
        else:
            if not result.ok:
                logger.warning(
                    "Error stopping VM",
                    extra={"vm_name": self.vm_name, "returncode": result.returncode, "stderr": result.stderr.strip()},
                )

        for run in runs:
            await self._reap(run)

    async def _reap(self, run: GuestRun) -> None:
        """Make sure no bhyve process or task of this run outlives teardown.

        The watcher gets stop_timeout_seconds to see bhyve exit after
        --destroy. Whatever is still alive after that is terminated, which
        in turn lets the watcher deliver the exit code.
        """
        timeout = self._settings.stop_timeout_seconds
        if run.watcher is not None and not run.watcher.done():
            await asyncio.wait({run.watcher}, timeout=timeout)

        for attempt in run.attempts:
            # Drain task goes first so cleanup_process can communicate() the pipes
            exited = attempt.process.returncode is not None
            await cleanup_task(
                attempt.log_task, "bhyve output drain", context_id=run.name, timeout=1.0 if exited else None
            )
            await cleanup_process(attempt.process, "bhyve", context_id=run.name)

        await cleanup_task(run.watcher, "bhyve watcher", context_id=run.name, timeout=timeout)
