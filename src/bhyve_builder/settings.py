"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bhyve_builder import constants


class Settings(BaseSettings):
    """Host-level configuration from environment variables.

    All settings can be overridden via environment variables with BHYVE_BUILDER_ prefix.
    Example: BHYVE_BUILDER_BHYVE_BIN=/opt/bhyve/bin/bhyve
    """

    model_config = SettingsConfigDict(
        env_prefix="BHYVE_BUILDER_",
        extra="ignore",
    )

    # Binaries
    bhyve_bin: Path = constants.BHYVE_BIN
    bhyvectl_bin: Path = constants.BHYVECTL_BIN
    dladm_bin: Path = constants.DLADM_BIN

    # Guest firmware and storage
    bootrom: Path = constants.BOOTROM_PATH
    zvol_root: Path = constants.ZVOL_DEVICE_ROOT

    # Timeouts
    command_timeout_seconds: float = Field(default=constants.COMMAND_TIMEOUT_SECONDS, gt=0)
    stop_timeout_seconds: float = Field(default=constants.STOP_TIMEOUT_SECONDS, gt=0)

    follow_reboots: bool = False
    """Keep following the guest across every reboot instead of relaunching once.

    Off by default: a clean bhyve exit triggers exactly one relaunch, the
    completion future resolves to 0 and the relaunched process is only
    reaped by stop(). When on, the watcher follows each relaunch and the
    completion carries the first non-zero exit (or the relaunch failure)."""
