"""Data models for bhyve-builder."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from bhyve_builder import constants
from bhyve_builder.config import IDENTIFIER_MAX_LENGTH, IDENTIFIER_PATTERN

if TYPE_CHECKING:
    from bhyve_builder.config import BuilderConfig
    from bhyve_builder.settings import Settings


class StepAction(str, Enum):
    """Outcome of a pipeline step."""

    CONTINUE = "continue"
    HALT = "halt"


class GuestState(str, Enum):
    """Lifecycle of one supervised guest."""

    NOT_STARTED = "not_started"
    LAUNCHING = "launching"
    RUNNING = "running"
    REBOOT_DETECTED = "reboot_detected"
    TERMINATED = "terminated"
    DESTROYED = "destroyed"


VALID_STATE_TRANSITIONS: dict[GuestState, set[GuestState]] = {
    GuestState.NOT_STARTED: {GuestState.LAUNCHING, GuestState.DESTROYED},
    GuestState.LAUNCHING: {GuestState.RUNNING, GuestState.DESTROYED},
    GuestState.RUNNING: {GuestState.REBOOT_DETECTED, GuestState.TERMINATED, GuestState.DESTROYED},
    GuestState.REBOOT_DETECTED: {GuestState.LAUNCHING, GuestState.DESTROYED},
    GuestState.TERMINATED: {GuestState.DESTROYED},
    GuestState.DESTROYED: set(),
}
"""TERMINATED is only entered on a non-zero exit; DESTROYED is reachable from anywhere and final."""


class GuestLaunchDescriptor(BaseModel):
    """Everything needed to build one bhyve command line.

    Built once per launch; the relaunch after a guest reboot reuses it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(pattern=IDENTIFIER_PATTERN, max_length=IDENTIFIER_MAX_LENGTH)
    cpus: int = Field(default=constants.GUEST_CPUS, ge=1)
    memory_mb: int = Field(default=constants.GUEST_MEMORY_MB, ge=1)
    bootrom: Path = constants.BOOTROM_PATH
    iso_path: Path = Field(description="Installer media attached to the CD-ROM slot")
    boot_disk: Path = Field(description="Raw zvol device attached to the boot-disk slot")
    vnic: str = Field(default=constants.VNIC_NAME, pattern=IDENTIFIER_PATTERN)
    vnc_bind_address: str = Field(default=constants.DEFAULT_VNC_BIND_ADDRESS, min_length=1)
    vnc_port: int = Field(default=constants.DEFAULT_VNC_PORT, ge=1, le=65535)
    # Embedded in a comma-separated fbuf spec
    vnc_password: str = Field(min_length=1, pattern=r"^[^,\s]+$")

    @classmethod
    def from_build(
        cls,
        config: BuilderConfig,
        settings: Settings,
        *,
        iso_path: Path,
        vnc_port: int,
        vnc_password: str,
    ) -> GuestLaunchDescriptor:
        """Assemble the descriptor from build config, host settings and pipeline state."""
        return cls(
            name=config.vm_name,
            bootrom=settings.bootrom,
            iso_path=iso_path,
            boot_disk=settings.zvol_root / config.zpool / constants.BOOT_VOLUME_NAME,
            vnic=constants.VNIC_NAME,
            vnc_bind_address=config.vnc_bind_address,
            vnc_port=vnc_port,
            vnc_password=vnc_password,
        )
