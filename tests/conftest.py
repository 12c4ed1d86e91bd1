"""Shared pytest fixtures for bhyve-builder tests.

No test touches a real hypervisor. asyncio.create_subprocess_exec is
replaced by FakeHost, which hands out scripted FakeProcess objects per
binary and records every command line it was asked to run.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable
from pathlib import Path

import pytest

from bhyve_builder.config import BuilderConfig
from bhyve_builder.models import GuestLaunchDescriptor
from bhyve_builder.settings import Settings

BHYVE = "/usr/sbin/bhyve"
BHYVECTL = "/usr/sbin/bhyvectl"
DLADM = "/usr/sbin/dladm"

# ============================================================================
# Fake processes
# ============================================================================


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process.

    Exits immediately with returncode unless hold=True, in which case it
    runs until exit() (or terminate()/kill()) is called.
    """

    def __init__(
        self,
        returncode: int = 0,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        hold: bool = False,
        wait_error: BaseException | None = None,
    ) -> None:
        self.pid = None  # keeps ProcessWrapper away from psutil
        self.stdout = None
        self.stderr = None
        self.returncode: int | None = None
        self.signals: list[str] = []
        self._final = returncode
        self._out = stdout
        self._err = stderr
        self._wait_error = wait_error
        self._exited = asyncio.Event()
        if not hold:
            self._exited.set()

    def exit(self, returncode: int | None = None) -> None:
        if returncode is not None:
            self._final = returncode
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        if self._wait_error is not None:
            error, self._wait_error = self._wait_error, None
            raise error
        self.returncode = self._final
        return self._final

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:
        await self.wait()
        return self._out, self._err

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        self.exit(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self.exit(-9)


class FakeHost:
    """Scripted replacement for asyncio.create_subprocess_exec.

    script(binary, *items) queues FakeProcess instances or exceptions for a
    binary; unscripted spawns get a FakeProcess that exits 0 at once.
    on_spawn(binary, callback) runs callback whenever that binary is spawned.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._scripts: dict[str, deque[FakeProcess | BaseException]] = defaultdict(deque)
        self._hooks: dict[str, list[Callable[[], None]]] = defaultdict(list)

    def script(self, binary: str, *items: FakeProcess | BaseException) -> None:
        self._scripts[binary].extend(items)

    def on_spawn(self, binary: str, callback: Callable[[], None]) -> None:
        self._hooks[binary].append(callback)

    def calls_for(self, binary: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if cmd[0] == binary]

    async def __call__(self, *cmd: str, **_kwargs: object) -> FakeProcess:
        self.calls.append(list(cmd))
        queue = self._scripts[cmd[0]]
        item = queue.popleft() if queue else FakeProcess(0)
        if isinstance(item, BaseException):
            raise item
        for callback in self._hooks[cmd[0]]:
            callback()
        return item


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_host(monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Route every subprocess spawn through a FakeHost."""
    host = FakeHost()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", host)
    return host


@pytest.fixture
def settings() -> Settings:
    """Default binary paths with short teardown timeouts."""
    return Settings(stop_timeout_seconds=0.2, command_timeout_seconds=1.0)


@pytest.fixture
def config() -> BuilderConfig:
    return BuilderConfig(vm_name="packer-vm1", zpool="zones", host_nic="net0")


@pytest.fixture
def descriptor(config: BuilderConfig, settings: Settings) -> GuestLaunchDescriptor:
    return GuestLaunchDescriptor.from_build(
        config,
        settings,
        iso_path=Path("/tmp/install.iso"),
        vnc_port=5900,
        vnc_password="s3cret",
    )
