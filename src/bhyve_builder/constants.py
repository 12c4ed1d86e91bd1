"""Constants for bhyve-builder: binaries, guest shape, PCI slot layout."""

from enum import IntEnum
from pathlib import Path
from typing import Final

# ============================================================================
# Host Binaries
# ============================================================================

BHYVE_BIN: Final[Path] = Path("/usr/sbin/bhyve")
BHYVECTL_BIN: Final[Path] = Path("/usr/sbin/bhyvectl")
DLADM_BIN: Final[Path] = Path("/usr/sbin/dladm")

BOOTROM_PATH: Final[Path] = Path("/usr/share/bhyve/uefi-rom.bin")
"""UEFI firmware passed to bhyve via -l bootrom,<path>."""

ZVOL_DEVICE_ROOT: Final[Path] = Path("/dev/zvol/rdsk")
"""Raw zvol device tree; the boot disk lives at <root>/<zpool>/<BOOT_VOLUME_NAME>."""

# ============================================================================
# Guest Shape
# ============================================================================

GUEST_CPUS: Final[int] = 1
GUEST_MEMORY_MB: Final[int] = 1024

VNIC_NAME: Final[str] = "packer0"
"""Fixed VNIC name. One guest per host at a time; concurrent builds collide on it."""

BOOT_VOLUME_NAME: Final[str] = "packer0"

DEFAULT_VNC_BIND_ADDRESS: Final[str] = "127.0.0.1"
DEFAULT_VNC_PORT: Final[int] = 5900


class PciSlot(IntEnum):
    """Device slots, same as pci_slot_t in illumos-joyent
    usr/src/lib/brand/bhyve/zone/boot.c. Guest firmware relies on them."""

    HOST_BRIDGE = 0
    CDROM = 3
    BOOT_DISK = 4
    NIC = 6
    FRAMEBUFFER = 30  # function 0 = fbuf, function 1 = xhci tablet
    LPC = 31


# ============================================================================
# Timeouts
# ============================================================================

COMMAND_TIMEOUT_SECONDS: Final[float] = 30.0
"""Upper bound for short helper commands (dladm, bhyvectl)."""

STOP_TIMEOUT_SECONDS: Final[float] = 10.0
"""How long stop() waits for the watcher to observe bhyve exit after --destroy."""

PROCESS_TERM_TIMEOUT_SECONDS: Final[float] = 3.0
PROCESS_KILL_TIMEOUT_SECONDS: Final[float] = 2.0
