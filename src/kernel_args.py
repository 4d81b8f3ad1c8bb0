"""
Kernel argument reconfiguration and the reboot-and-rewait protocol.
"""

import logging
import shlex
import time
from typing import Callable, Dict, List, Sequence

from exceptions import HostNeverCameBack, HostNeverWentDown, RemoteExecError
from models import ImageFamily, ResolvedImage
from polling import attempts_for, poll

logger = logging.getLogger(__name__)


def cos_commands(kernel_args: str) -> List[str]:
    """Patch the COS EFI grub config on the boot partition in place."""
    return [
        "dir=$(mktemp -d)",
        "mount /dev/sda12 ${dir}",
        f'sed -i -e "s|cros_efi|cros_efi {kernel_args}|g" ${{dir}}/efi/boot/grub.cfg',
        "umount ${dir}",
        "rmdir ${dir}",
    ]


def ubuntu_commands(kernel_args: str) -> List[str]:
    """Add a grub.d override and regenerate the grub config."""
    return [
        f'echo "GRUB_CMDLINE_LINUX_DEFAULT={kernel_args} ${{GRUB_CMDLINE_LINUX_DEFAULT}}" > /etc/default/grub.d/99-additional-arguments.cfg',
        "/usr/sbin/update-grub",
    ]


FAMILY_COMMANDS: Dict[ImageFamily, Callable[[str], List[str]]] = {
    ImageFamily.COS: cos_commands,
    ImageFamily.UBUNTU: ubuntu_commands,
}


class RebootCoordinator:
    """Reboots a host and waits for it to go down and come back over SSH."""

    def __init__(
        self,
        remote,
        down_interval: float = 5,
        down_timeout: float = 300,
        up_interval: float = 30,
        up_timeout: float = 300,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.remote = remote
        self.down_interval = down_interval
        self.down_timeout = down_timeout
        self.up_interval = up_interval
        self.up_timeout = up_timeout
        self.sleep = sleep

    def reboot(self, host: str) -> None:
        """
        Reboot ``host`` and block until it answers SSH again.

        Raises:
            HostNeverWentDown: If the host kept answering during shutdown
            HostNeverCameBack: If the host did not answer again in time
        """
        logger.info(f"Rebooting {host} and waiting for it to stop answering SSH")
        try:
            self.remote.run(host, "reboot")
        except RemoteExecError as e:
            # the connection usually drops while reboot runs
            logger.debug(f"reboot on {host} returned an error: {e}")

        poll(
            lambda attempt: self._is_down(host),
            stage=f"{host} going down",
            interval=self.down_interval,
            max_attempts=attempts_for(self.down_timeout, self.down_interval),
            sleep=self.sleep,
            timeout_error=HostNeverWentDown,
        )

        logger.info(f"Waiting for {host} to be available via SSH")
        poll(
            lambda attempt: self._is_up(host),
            stage=f"{host} coming back",
            interval=self.up_interval,
            max_attempts=attempts_for(self.up_timeout, self.up_interval),
            sleep=self.sleep,
            timeout_error=HostNeverCameBack,
        )
        logger.info(f"✓ {host} is back after reboot")

    def _is_down(self, host: str) -> bool:
        try:
            self.remote.run(host, "sh", "-c", "date")
        except RemoteExecError:
            return True
        return False

    def _is_up(self, host: str) -> bool:
        self.remote.run(host, "sh", "-c", "date")
        return True


class KernelArgumentReconfigurer:
    """Appends kernel arguments to the boot config of known image families."""

    def __init__(self, remote, reboot: RebootCoordinator):
        self.remote = remote
        self.reboot = reboot

    def apply(self, host: str, image: ResolvedImage) -> bool:
        """
        Apply the image's kernel arguments on ``host`` and reboot it.

        Args:
            host: Instance name
            image: Resolved image with kernel arguments and family

        Returns:
            True if the host was reconfigured, False if nothing was done

        Raises:
            RemoteExecError: If the reconfiguration command fails
            ReadinessTimeoutError: If the reboot does not complete
        """
        if not image.kernel_arguments:
            return False

        commands = self.commands(image.family, image.kernel_arguments)
        if not commands:
            logger.warning(
                f"The image {image.image} does not support adding additional kernel arguments"
            )
            return False

        logger.info(f"Updating kernel arguments on {host}: {' '.join(image.kernel_arguments)}")
        try:
            self.remote.run(host, "sh", "-c", shlex.quote("&&".join(commands)))
        except RemoteExecError as e:
            logger.error(f"failed to run command {commands} on {host}: {e}")
            raise

        self.reboot.reboot(host)
        return True

    @staticmethod
    def commands(family: ImageFamily, kernel_arguments: Sequence[str]) -> List[str]:
        generator = FAMILY_COMMANDS.get(family)
        if generator is None:
            return []
        return generator(" ".join(kernel_arguments))
