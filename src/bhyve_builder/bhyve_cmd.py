"""bhyve and bhyvectl command line builders.

The argument order is fixed so logged command lines diff cleanly between
builds. Slot numbers follow PciSlot and must not change.
"""

from bhyve_builder.constants import PciSlot
from bhyve_builder.models import GuestLaunchDescriptor
from bhyve_builder.settings import Settings


def build_bhyve_cmd(settings: Settings, descriptor: GuestLaunchDescriptor) -> list[str]:
    """Build the bhyve command for one guest launch.

    Flags:
        -D: destroy the VM on guest-initiated power off
        -H: yield the vCPU on HLT (headless guest, no busy spin)

    Devices (slot,type,params):
        0  hostbridge (i440fx model for UEFI firmware)
        3  ahci-cd with the installer media
        4  virtio-blk on the raw zvol
        6  virtio-net-viona on the build VNIC
        30 fbuf with VNC (function 0) + xhci tablet (function 1)
        31 lpc

    Args:
        settings: Host configuration (binary path)
        descriptor: Guest launch parameters

    Returns:
        bhyve command as list of strings, guest name last
    """
    d = descriptor
    return [
        str(settings.bhyve_bin),
        "-D",
        "-H",
        "-c",
        str(d.cpus),
        "-l",
        f"bootrom,{d.bootrom}",
        "-m",
        str(d.memory_mb),
        "-s",
        f"{PciSlot.HOST_BRIDGE:d},hostbridge,model=i440fx",
        "-s",
        f"{PciSlot.CDROM:d},ahci-cd,{d.iso_path}",
        "-s",
        f"{PciSlot.BOOT_DISK:d},virtio-blk,{d.boot_disk}",
        "-s",
        f"{PciSlot.NIC:d},virtio-net-viona,vnic={d.vnic}",
        "-s",
        f"{PciSlot.FRAMEBUFFER:d}:0,fbuf,vga=off,rfb={d.vnc_bind_address}:{d.vnc_port},password={d.vnc_password}",
        "-s",
        f"{PciSlot.FRAMEBUFFER:d}:1,xhci,tablet",
        "-s",
        f"{PciSlot.LPC:d},lpc",
        d.name,
    ]


def build_destroy_cmd(settings: Settings, vm_name: str) -> list[str]:
    """Build the bhyvectl command that forcibly destroys a guest by name."""
    return [str(settings.bhyvectl_bin), f"--vm={vm_name}", "--destroy"]
