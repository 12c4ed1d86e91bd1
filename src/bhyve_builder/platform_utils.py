"""Host detection and PID-reuse safe process management.

bhyve with viona networking and dladm VNICs only exists on illumos; the
builder still imports elsewhere so it can be developed and tested off-host.
"""

import asyncio
import contextlib
import signal
from enum import Enum, auto
from functools import cache

import psutil


class HostOS(Enum):
    """Host operating systems the builder distinguishes."""

    ILLUMOS = auto()
    """illumos / SunOS (bhyve brand, dladm, zvols)."""

    OTHER = auto()
    """Anything else; helper binaries will not exist."""


@cache
def detect_host_os() -> HostOS:
    """Detect the host operating system using psutil constants."""
    if psutil.SUNOS:
        return HostOS.ILLUMOS
    return HostOS.OTHER


class ProcessWrapper:
    """A spawned bhyve process, signalled through psutil.

    bhyve lives for a whole install. If it dies unnoticed its PID can be
    recycled before teardown, so signals go through psutil.Process, which
    refuses to signal a PID whose creation time no longer matches.

    Without a PID (already reaped, or a test double) signals fall back to the
    asyncio process object.
    """

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.psutil_proc = psutil.Process(async_proc.pid)

    @property
    def pid(self) -> int | None:
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Exit status once reaped; negative signal number if bhyve was killed."""
        return self.async_proc.returncode

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        """bhyve's stdout pipe, read by the console drain task."""
        return self.async_proc.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.async_proc.stderr

    async def wait(self) -> int:
        return await self.async_proc.wait()

    async def terminate(self) -> None:
        """SIGTERM: bhyve tears the VM down itself."""
        if self.psutil_proc is None:
            self.async_proc.terminate()
        else:
            await self._signal(signal.SIGTERM)

    async def kill(self) -> None:
        """SIGKILL, for a bhyve stuck in a vCPU or device thread."""
        if self.psutil_proc is None:
            self.async_proc.kill()
        else:
            await self._signal(signal.SIGKILL)

    async def _signal(self, sig: signal.Signals) -> None:
        # psutil may block on /proc; keep it off the event loop
        with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
            await asyncio.to_thread(self.psutil_proc.send_signal, sig)  # type: ignore[union-attr]

    async def wait_with_timeout(self, timeout: float) -> int:
        """Wait for bhyve to exit after a signal.

        The console drain task may already have been cancelled, so the pipes
        are emptied with communicate() to keep bhyve from blocking on a full
        pipe. If the drain task still owns the streams, communicate() raises
        RuntimeError and a plain wait() is used instead.

        Raises:
            TimeoutError: bhyve did not exit within timeout
        """
        if self.stdout is None and self.stderr is None:
            return await asyncio.wait_for(self.wait(), timeout=timeout)

        try:
            await asyncio.wait_for(self.async_proc.communicate(), timeout=timeout)
        except RuntimeError:
            await asyncio.wait_for(self.wait(), timeout=timeout)
        return self.returncode  # type: ignore[return-value]
