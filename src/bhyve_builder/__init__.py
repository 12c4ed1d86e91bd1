"""bhyve-builder: disposable bhyve guests for image builds.

Boots an installer ISO in a bhyve guest on an illumos host, survives the
installer's reboot, reports the guest's power-off status and tears the guest
and its VNIC down again.

Quick Start:
    ```python
    from bhyve_builder import GuestLaunchDescriptor, GuestSupervisor, Settings, VnicManager

    settings = Settings()
    vnic = VnicManager(settings)
    supervisor = GuestSupervisor(settings, vm_name="packer-vm1")

    await vnic.create("net0")
    try:
        run = await supervisor.start(
            GuestLaunchDescriptor(
                name="packer-vm1",
                iso_path="/tmp/install.iso",
                boot_disk="/dev/zvol/rdsk/zones/packer0",
                vnc_password="secret",
            )
        )
        print(await run.wait())  # non-zero once the guest powers off
    finally:
        await supervisor.stop()
        await vnic.delete()
    ```

Requirements:
    - illumos host with bhyve, bhyvectl and dladm
    - Python 3.11+
"""

from bhyve_builder.config import BuilderConfig
from bhyve_builder.exceptions import (
    BuilderError,
    GuestConfigError,
    GuestError,
    GuestStartError,
    GuestStateError,
    GuestWaitTimeoutError,
    VnicCreateError,
    VnicError,
)
from bhyve_builder.guest import GuestRun, GuestSupervisor
from bhyve_builder.models import GuestLaunchDescriptor, GuestState, StepAction
from bhyve_builder.pipeline import BuildState, StepBhyve, StepCreateVnic, StepWaitGuest, run_steps
from bhyve_builder.settings import Settings
from bhyve_builder.vnic import VnicManager

__all__ = [
    "BuildState",
    "BuilderConfig",
    "BuilderError",
    "GuestConfigError",
    "GuestError",
    "GuestLaunchDescriptor",
    "GuestRun",
    "GuestStartError",
    "GuestState",
    "GuestStateError",
    "GuestSupervisor",
    "GuestWaitTimeoutError",
    "Settings",
    "StepAction",
    "StepBhyve",
    "StepCreateVnic",
    "StepWaitGuest",
    "VnicCreateError",
    "VnicError",
    "VnicManager",
    "run_steps",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bhyve-builder")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
