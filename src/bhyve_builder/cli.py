"""Command-line interface for bhyve-builder.

Usage:
    bhyve-builder --iso /tmp/install.iso --zpool zones --host-nic net0
    bhyve-builder --name packer-vm1 --iso install.iso --zpool zones --host-nic net0 --timeout 3600
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import sys
from pathlib import Path
from typing import NoReturn

import click
from pydantic import ValidationError

from bhyve_builder import __version__
from bhyve_builder._logging import configure_logging
from bhyve_builder.config import BuilderConfig
from bhyve_builder.constants import DEFAULT_VNC_BIND_ADDRESS, DEFAULT_VNC_PORT
from bhyve_builder.exceptions import GuestWaitTimeoutError
from bhyve_builder.guest import GuestSupervisor
from bhyve_builder.models import GuestLaunchDescriptor, StepAction
from bhyve_builder.pipeline import BuildState, StepBhyve, StepCreateVnic, StepWaitGuest, run_steps
from bhyve_builder.platform_utils import HostOS, detect_host_os
from bhyve_builder.settings import Settings
from bhyve_builder.vnic import VnicManager

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_TIMEOUT = 124  # Matches `timeout` command
EXIT_BUILD_ERROR = 125
EXIT_INTERRUPTED = 130


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def generate_vnc_password() -> str:
    """Random VNC password safe to embed in bhyve's fbuf device spec."""
    return secrets.token_hex(4)


async def run_build(config: BuilderConfig, settings: Settings, state: BuildState) -> int:
    """Run VNIC → bhyve → wait and return the CLI exit code."""
    supervisor = GuestSupervisor(settings, vm_name=config.vm_name)
    steps = [
        StepCreateVnic(VnicManager(settings)),
        StepBhyve(supervisor),
        StepWaitGuest(),
    ]

    action = await run_steps(steps, state)
    if action is StepAction.CONTINUE:
        click.echo(f"Guest {config.vm_name} exited with code {state.exit_code}")
        return EXIT_SUCCESS

    error = state.error
    if isinstance(error, GuestWaitTimeoutError):
        click.echo(
            format_error(
                "Guest did not power off",
                error.message,
                ["Increase --timeout", "Connect over VNC to see where the installer is stuck"],
            ),
            err=True,
        )
        return EXIT_TIMEOUT

    click.echo(
        format_error(
            "Build halted",
            error.message if error else "unknown error",
            [
                "Check that bhyve, bhyvectl and dladm are installed and you have privileges",
                f"Check that link {config.host_nic} exists (dladm show-link)",
                "Make sure no other build is using the packer0 VNIC",
            ],
        ),
        err=True,
    )
    return EXIT_BUILD_ERROR


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--name", "vm_name", default="packer-bhyve", show_default=True, help="Guest name")
@click.option("--iso", "iso_path", required=True, type=click.Path(path_type=Path), help="Installer media")
@click.option("--zpool", required=True, help="zpool holding the packer0 boot volume")
@click.option("--host-nic", required=True, help="Uplink to create the VNIC on")
@click.option("--vnc-bind", default=DEFAULT_VNC_BIND_ADDRESS, show_default=True, help="VNC listen address")
@click.option("--vnc-port", default=DEFAULT_VNC_PORT, show_default=True, type=click.IntRange(1, 65535))
@click.option("--vnc-password", default=None, help="VNC password (random if omitted)")
@click.option("-t", "--timeout", type=float, default=None, help="Seconds to wait for guest power-off")
@click.option(
    "--follow-reboots/--no-follow-reboots",
    default=None,
    help="Keep relaunching on every guest reboot instead of only the first",
)
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.version_option(__version__, "-V", "--version", prog_name="bhyve-builder")
def main(
    vm_name: str,
    iso_path: Path,
    zpool: str,
    host_nic: str,
    vnc_bind: str,
    vnc_port: int,
    vnc_password: str | None,
    timeout: float | None,
    follow_reboots: bool | None,
    quiet: bool,
    verbose: bool,
) -> NoReturn:
    """Boot a bhyve guest from installer media and wait for it to power off.

    Creates the packer0 VNIC on HOST_NIC, launches bhyve with the installer
    attached, relaunches it once when the installer reboots the guest, and
    tears the guest and VNIC down when it powers off.
    """
    configure_logging(level=logging.DEBUG if verbose else logging.INFO, quiet=quiet)

    if detect_host_os() is not HostOS.ILLUMOS:
        click.echo(click.style("Warning: bhyve builds need an illumos host", fg="yellow"), err=True)

    password = vnc_password or generate_vnc_password()
    try:
        config = BuilderConfig(
            vm_name=vm_name,
            zpool=zpool,
            host_nic=host_nic,
            vnc_bind_address=vnc_bind,
            wait_timeout_seconds=timeout,
        )
        settings = Settings() if follow_reboots is None else Settings(follow_reboots=follow_reboots)
        # Reject a bad VNC password before anything is created on the host
        GuestLaunchDescriptor.from_build(
            config, settings, iso_path=iso_path, vnc_port=vnc_port, vnc_password=password
        )
    except ValidationError as exc:
        raise click.UsageError(str(exc)) from exc

    state = BuildState(
        config=config,
        settings=settings,
        iso_path=iso_path,
        vnc_port=vnc_port,
        vnc_password=password,
    )
    if not quiet:
        click.echo(f"VNC: vnc://{vnc_bind}:{vnc_port} (password: {password})", err=True)

    try:
        exit_code = asyncio.run(run_build(config, settings, state))
    except KeyboardInterrupt:
        exit_code = EXIT_INTERRUPTED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
