"""Build pipeline: ordered steps with paired cleanup.

Each step has run() returning CONTINUE or HALT and a cleanup() that must not
raise. run_steps() runs steps in order until one halts, then cleans up every
step that ran, the halting one included, in reverse order. Cleanup also runs
when the pipeline is cancelled (Ctrl-C, outer deadline).

Standard build:
    StepCreateVnic → StepBhyve → StepWaitGuest
    cleanup: wait (no-op) → bhyvectl --destroy → dladm delete-vnic
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from bhyve_builder._logging import get_logger
from bhyve_builder.exceptions import GuestError, GuestStartError, GuestWaitTimeoutError, VnicError
from bhyve_builder.models import GuestLaunchDescriptor, GuestState, StepAction

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bhyve_builder.config import BuilderConfig
    from bhyve_builder.exceptions import BuilderError
    from bhyve_builder.guest import GuestRun, GuestSupervisor
    from bhyve_builder.settings import Settings
    from bhyve_builder.vnic import VnicManager

logger = get_logger(__name__)


@dataclass
class BuildState:
    """Values shared between steps of one build."""

    config: BuilderConfig
    settings: Settings
    iso_path: Path
    vnc_port: int
    vnc_password: str
    error: BuilderError | None = None
    guest_run: GuestRun | None = None
    exit_code: int | None = None


class Step(Protocol):
    name: str

    async def run(self, state: BuildState) -> StepAction: ...

    async def cleanup(self, state: BuildState) -> None: ...


async def run_steps(steps: Sequence[Step], state: BuildState) -> StepAction:
    """Run steps until one halts, then clean up in reverse.

    Returns:
        HALT if any step halted (state.error says why), else CONTINUE
    """
    ran: list[Step] = []
    action = StepAction.CONTINUE
    try:
        for step in steps:
            ran.append(step)
            logger.debug("Running step", extra={"step": step.name})
            action = await step.run(state)
            if action is StepAction.HALT:
                logger.warning(
                    "Build halted",
                    extra={"step": step.name, "error": state.error.message if state.error else None},
                )
                break
    finally:
        for step in reversed(ran):
            try:
                await step.cleanup(state)
            except Exception:
                logger.exception("Step cleanup failed", extra={"step": step.name})
    return action


class StepCreateVnic:
    """Create the build VNIC on config.host_nic."""

    name = "create-vnic"

    def __init__(self, vnic: VnicManager) -> None:
        self._vnic = vnic

    async def run(self, state: BuildState) -> StepAction:
        try:
            await self._vnic.create(state.config.host_nic)
        except VnicError as e:
            state.error = e
            logger.error(e.message, extra={"vnic": self._vnic.name, **e.context})
            return StepAction.HALT
        return StepAction.CONTINUE

    async def cleanup(self, state: BuildState) -> None:
        # Never delete a VNIC this build did not create
        if self._vnic.created:
            await self._vnic.delete()


class StepBhyve:
    """Launch the guest; cleanup always destroys it."""

    name = "bhyve"

    def __init__(self, supervisor: GuestSupervisor) -> None:
        self._supervisor = supervisor

    async def run(self, state: BuildState) -> StepAction:
        descriptor = GuestLaunchDescriptor.from_build(
            state.config,
            state.settings,
            iso_path=state.iso_path,
            vnc_port=state.vnc_port,
            vnc_password=state.vnc_password,
        )
        try:
            state.guest_run = await self._supervisor.start(descriptor)
        except GuestStartError as e:
            state.error = e
            logger.error(e.message, extra=e.context)
            return StepAction.HALT
        return StepAction.CONTINUE

    async def cleanup(self, state: BuildState) -> None:
        await self._supervisor.stop()


class StepWaitGuest:
    """Wait for the guest to power off and record its exit code.

    The completion resolves to 0 as soon as bhyve is relaunched after the
    installer's reboot. The relaunched guest runs post-install provisioning,
    so this step keeps waiting on it; the deadline covers both boots.
    """

    name = "wait-guest"

    async def run(self, state: BuildState) -> StepAction:
        run = state.guest_run
        if run is None:
            state.error = GuestError("No guest was started")
            return StepAction.HALT

        timeout = state.config.wait_timeout_seconds
        logger.info("Waiting for bhyve VM to power off", extra={"vm_name": run.name, "timeout": timeout})
        try:
            state.exit_code = await asyncio.wait_for(self._wait_power_off(run), timeout=timeout)
        except TimeoutError:
            state.error = GuestWaitTimeoutError(
                f"bhyve VM {run.name} did not power off within {timeout}s",
                context={"vm_name": run.name, "timeout": timeout, "state": run.state.value},
            )
            return StepAction.HALT
        except GuestStartError as e:
            state.error = e
            return StepAction.HALT

        logger.info("bhyve VM finished", extra={"vm_name": run.name, "exit_code": state.exit_code})
        return StepAction.CONTINUE

    async def _wait_power_off(self, run: GuestRun) -> int:
        exit_code = await run.wait()
        proc = run.process
        if exit_code != 0 or not run.restarts or run.restart_error is not None or proc is None:
            return exit_code

        logger.info("Waiting for relaunched bhyve VM to power off", extra={"vm_name": run.name, "pid": proc.pid})
        try:
            exit_code = await proc.wait()
        except (OSError, RuntimeError) as e:
            logger.warning(
                "Waiting on relaunched bhyve VM failed, assuming exit code 0",
                extra={"vm_name": run.name, "error": str(e), "error_type": type(e).__name__},
            )
            return 0

        if exit_code != 0:
            await run.advance(GuestState.TERMINATED)
        return exit_code

    async def cleanup(self, state: BuildState) -> None:
        return None
