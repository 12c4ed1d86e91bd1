"""Per-build configuration for bhyve-builder.

BuilderConfig carries the values the surrounding build pipeline supplies for
one guest: its name, the zpool holding the boot volume, the host uplink the
VNIC hangs off, and where VNC listens.

Example:
    ```python
    from bhyve_builder import BuilderConfig

    config = BuilderConfig(vm_name="packer-vm1", zpool="zones", host_nic="net0")
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bhyve_builder import constants

# Identifiers end up as bhyve/dladm arguments and zvol path segments.
IDENTIFIER_PATTERN = r"^[a-zA-Z0-9_.-]+$"
IDENTIFIER_MAX_LENGTH = 128


class BuilderConfig(BaseModel):
    """Configuration for one build.

    Attributes:
        vm_name: Guest name passed to bhyve and bhyvectl.
        zpool: Storage pool containing the boot zvol.
        host_nic: Physical or logical link the VNIC is created on.
        vnc_bind_address: Address the guest framebuffer's VNC server binds.
        wait_timeout_seconds: Deadline for the guest to power off.
            None waits forever.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    vm_name: str = Field(
        default="packer-bhyve",
        pattern=IDENTIFIER_PATTERN,
        max_length=IDENTIFIER_MAX_LENGTH,
        description="Guest name",
    )
    zpool: str = Field(
        pattern=IDENTIFIER_PATTERN,
        max_length=IDENTIFIER_MAX_LENGTH,
        description="zpool holding the boot volume",
    )
    host_nic: str = Field(
        pattern=IDENTIFIER_PATTERN,
        max_length=IDENTIFIER_MAX_LENGTH,
        description="Uplink for the VNIC",
    )
    vnc_bind_address: str = Field(
        default=constants.DEFAULT_VNC_BIND_ADDRESS,
        min_length=1,
        description="VNC listen address",
    )
    wait_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Seconds to wait for guest power-off (None = no deadline)",
    )
