"""Build VNIC lifecycle via dladm.

The guest's virtio-net-viona device is bound to a VNIC with a fixed name,
created on the host uplink before bhyve starts and deleted after the guest
has been destroyed.
"""

from __future__ import annotations

from bhyve_builder import constants
from bhyve_builder._logging import get_logger
from bhyve_builder.exceptions import VnicCreateError
from bhyve_builder.settings import Settings
from bhyve_builder.subprocess_utils import run_command

logger = get_logger(__name__)


def build_create_vnic_cmd(settings: Settings, uplink: str, name: str = constants.VNIC_NAME) -> list[str]:
    return [str(settings.dladm_bin), "create-vnic", "-l", uplink, name]


def build_delete_vnic_cmd(settings: Settings, name: str = constants.VNIC_NAME) -> list[str]:
    return [str(settings.dladm_bin), "delete-vnic", name]


class VnicManager:
    """Creates and deletes the build VNIC.

    Attributes:
        name: VNIC name (fixed; one build per host)
        uplink: Link the VNIC was created on, None until create() succeeds
    """

    def __init__(self, settings: Settings, name: str = constants.VNIC_NAME) -> None:
        self._settings = settings
        self.name = name
        self.uplink: str | None = None

    @property
    def created(self) -> bool:
        return self.uplink is not None

    async def create(self, uplink: str) -> None:
        """Create the VNIC on uplink.

        Raises:
            VnicCreateError: dladm failed (unknown link, name collision,
                permissions) or could not be run. The message carries
                dladm's stderr.
        """
        logger.info(f"Creating VNIC {self.name} on link {uplink}", extra={"vnic": self.name, "link": uplink})
        context = {"vnic": self.name, "link": uplink}
        try:
            result = await run_command(
                build_create_vnic_cmd(self._settings, uplink, self.name),
                context_id=self.name,
                timeout=self._settings.command_timeout_seconds,
            )
        except (OSError, TimeoutError) as e:
            raise VnicCreateError(f"Error creating VNIC: {str(e) or type(e).__name__}", context=context) from e

        if not result.ok:
            stderr = result.stderr.strip()
            raise VnicCreateError(
                f"Error creating VNIC: {stderr}",
                context={**context, "returncode": result.returncode},
                stderr=stderr,
            )

        self.uplink = uplink

    async def delete(self) -> bool:
        """Delete the VNIC. Never raises.

        Returns:
            True if dladm reported success, False otherwise
        """
        logger.info(
            f"Deleting VNIC {self.name} from link {self.uplink}",
            extra={"vnic": self.name, "link": self.uplink},
        )
        try:
            result = await run_command(
                build_delete_vnic_cmd(self._settings, self.name),
                context_id=self.name,
                timeout=self._settings.command_timeout_seconds,
            )
        except (OSError, TimeoutError) as e:
            logger.warning(
                "Error deleting VNIC",
                extra={"vnic": self.name, "error": str(e), "error_type": type(e).__name__},
            )
            return False

        if not result.ok:
            logger.warning(
                f"Error deleting VNIC: {result.stderr.strip()}",
                extra={"vnic": self.name, "returncode": result.returncode},
            )
            return False

        self.uplink = None
        return True
