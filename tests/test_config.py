"""Unit tests for BuilderConfig and Settings.

No mocks - environment overrides go through monkeypatch.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from bhyve_builder.config import BuilderConfig
from bhyve_builder.settings import Settings

# ============================================================================
# BuilderConfig
# ============================================================================


class TestBuilderConfig:
    """Tests for BuilderConfig field validation."""

    def test_defaults(self) -> None:
        config = BuilderConfig(zpool="zones", host_nic="net0")
        assert config.vm_name == "packer-bhyve"
        assert config.vnc_bind_address == "127.0.0.1"
        assert config.wait_timeout_seconds is None

    def test_zpool_and_host_nic_required(self) -> None:
        with pytest.raises(ValidationError):
            BuilderConfig(zpool="zones")  # type: ignore[call-arg]
        with pytest.raises(ValidationError):
            BuilderConfig(host_nic="net0")  # type: ignore[call-arg]

    @pytest.mark.parametrize("field", ["vm_name", "zpool", "host_nic"])
    @pytest.mark.parametrize("value", ["", "has space", "a,b", "../escape/x", "x" * 129])
    def test_identifiers_rejected(self, field: str, value: str) -> None:
        """Identifiers end up in argv and zvol paths: no separators or whitespace."""
        kwargs = {"zpool": "zones", "host_nic": "net0", field: value}
        with pytest.raises(ValidationError):
            BuilderConfig(**kwargs)

    def test_identifier_characters_allowed(self) -> None:
        config = BuilderConfig(vm_name="Packer_vm-1.test", zpool="rpool", host_nic="e1000g0")
        assert config.vm_name == "Packer_vm-1.test"

    def test_wait_timeout_must_be_positive(self) -> None:
        assert BuilderConfig(zpool="zones", host_nic="net0", wait_timeout_seconds=0.5).wait_timeout_seconds == 0.5
        with pytest.raises(ValidationError):
            BuilderConfig(zpool="zones", host_nic="net0", wait_timeout_seconds=0)

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BuilderConfig(zpool="zones", host_nic="net0", cpus=4)  # type: ignore[call-arg]

    def test_frozen(self) -> None:
        config = BuilderConfig(zpool="zones", host_nic="net0")
        with pytest.raises(ValidationError):
            config.zpool = "tank"  # type: ignore[misc]


# ============================================================================
# Settings
# ============================================================================


class TestSettings:
    """Tests for environment-driven host settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BHYVE_BUILDER_BHYVE_BIN", raising=False)
        monkeypatch.delenv("BHYVE_BUILDER_FOLLOW_REBOOTS", raising=False)
        settings = Settings()
        assert settings.bhyve_bin == Path("/usr/sbin/bhyve")
        assert settings.bhyvectl_bin == Path("/usr/sbin/bhyvectl")
        assert settings.dladm_bin == Path("/usr/sbin/dladm")
        assert settings.bootrom == Path("/usr/share/bhyve/uefi-rom.bin")
        assert settings.zvol_root == Path("/dev/zvol/rdsk")
        assert settings.follow_reboots is False

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BHYVE_BUILDER_BHYVE_BIN", "/opt/bhyve/bin/bhyve")
        monkeypatch.setenv("BHYVE_BUILDER_FOLLOW_REBOOTS", "true")
        monkeypatch.setenv("BHYVE_BUILDER_STOP_TIMEOUT_SECONDS", "2.5")

        settings = Settings()

        assert settings.bhyve_bin == Path("/opt/bhyve/bin/bhyve")
        assert settings.follow_reboots is True
        assert settings.stop_timeout_seconds == 2.5

    def test_unrelated_env_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BHYVE_BUILDER_LOG_LEVEL", "DEBUG")
        Settings()

    @pytest.mark.parametrize("field", ["command_timeout_seconds", "stop_timeout_seconds"])
    def test_timeouts_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 0})
