"""Tests for bhyve and bhyvectl command construction."""

from pathlib import Path

from bhyve_builder.bhyve_cmd import build_bhyve_cmd, build_destroy_cmd
from bhyve_builder.config import BuilderConfig
from bhyve_builder.models import GuestLaunchDescriptor
from bhyve_builder.settings import Settings


def _slot_specs(cmd: list[str]) -> list[str]:
    return [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-s"]


def test_full_command_line() -> None:
    settings = Settings()
    config = BuilderConfig(vm_name="packer-vm1", zpool="zones", host_nic="net0")
    descriptor = GuestLaunchDescriptor.from_build(
        config, settings, iso_path=Path("/tmp/install.iso"), vnc_port=5900, vnc_password="s3cret"
    )

    assert build_bhyve_cmd(settings, descriptor) == [
        "/usr/sbin/bhyve",
        "-D",
        "-H",
        "-c",
        "1",
        "-l",
        "bootrom,/usr/share/bhyve/uefi-rom.bin",
        "-m",
        "1024",
        "-s",
        "0,hostbridge,model=i440fx",
        "-s",
        "3,ahci-cd,/tmp/install.iso",
        "-s",
        "4,virtio-blk,/dev/zvol/rdsk/zones/packer0",
        "-s",
        "6,virtio-net-viona,vnic=packer0",
        "-s",
        "30:0,fbuf,vga=off,rfb=127.0.0.1:5900,password=s3cret",
        "-s",
        "30:1,xhci,tablet",
        "-s",
        "31,lpc",
        "packer-vm1",
    ]


def test_vnc_and_storage_follow_descriptor(descriptor: GuestLaunchDescriptor, settings: Settings) -> None:
    custom = descriptor.model_copy(
        update={"vnc_bind_address": "0.0.0.0", "vnc_port": 5901, "boot_disk": Path("/dev/zvol/rdsk/tank/packer0")}
    )

    slots = _slot_specs(build_bhyve_cmd(settings, custom))

    assert "4,virtio-blk,/dev/zvol/rdsk/tank/packer0" in slots
    assert "30:0,fbuf,vga=off,rfb=0.0.0.0:5901,password=s3cret" in slots


def test_slot_numbers_are_fixed(descriptor: GuestLaunchDescriptor, settings: Settings) -> None:
    slots = _slot_specs(build_bhyve_cmd(settings, descriptor))
    assert [spec.split(",", 1)[0] for spec in slots] == ["0", "3", "4", "6", "30:0", "30:1", "31"]


def test_binary_from_settings(descriptor: GuestLaunchDescriptor) -> None:
    settings = Settings(bhyve_bin=Path("/opt/bhyve/bhyve"))
    assert build_bhyve_cmd(settings, descriptor)[0] == "/opt/bhyve/bhyve"


def test_destroy_command(settings: Settings) -> None:
    assert build_destroy_cmd(settings, "packer-vm1") == ["/usr/sbin/bhyvectl", "--vm=packer-vm1", "--destroy"]
