"""
Unit tests for kernel argument reconfiguration and reboots.
"""

import shlex
import unittest
from unittest.mock import MagicMock

from exceptions import HostNeverCameBack, HostNeverWentDown, RemoteExecError
from kernel_args import (
    KernelArgumentReconfigurer,
    RebootCoordinator,
    cos_commands,
    ubuntu_commands,
)
from models import ImageFamily, ResolvedImage


def _image(image="cos-105", kernel_arguments=("cgroup_no_v1=all", "systemd.unified_cgroup_hierarchy=1")):
    return ResolvedImage(
        short_name="s",
        image=image,
        project="p",
        image_description=image,
        metadata={},
        kernel_arguments=tuple(kernel_arguments),
        family=ImageFamily.from_image_name(image),
    )


def _down(*argv):
    return RemoteExecError("node-1", list(argv), "Connection refused", 255)


class TestCommandGenerators(unittest.TestCase):
    def test_cos_commands_patch_grub_cfg(self):
        commands = cos_commands("a=1 b=2")
        self.assertIn("mount /dev/sda12 ${dir}", commands)
        self.assertIn(
            'sed -i -e "s|cros_efi|cros_efi a=1 b=2|g" ${dir}/efi/boot/grub.cfg', commands
        )
        self.assertEqual(commands[-1], "rmdir ${dir}")

    def test_ubuntu_commands_write_override(self):
        commands = ubuntu_commands("a=1")
        self.assertEqual(
            commands[0],
            'echo "GRUB_CMDLINE_LINUX_DEFAULT=a=1 ${GRUB_CMDLINE_LINUX_DEFAULT}" > /etc/default/grub.d/99-additional-arguments.cfg',
        )
        self.assertEqual(commands[1], "/usr/sbin/update-grub")


class TestKernelArgumentReconfigurer(unittest.TestCase):
    """Test family dispatch and error propagation."""

    def setUp(self):
        self.remote = MagicMock()
        self.reboot = MagicMock()
        self.reconfigurer = KernelArgumentReconfigurer(self.remote, self.reboot)

    def test_cos_runs_commands_and_reboots(self):
        applied = self.reconfigurer.apply("node-1", _image("cos-105"))

        self.assertTrue(applied)
        args = self.remote.run.call_args[0]
        self.assertEqual(args[:3], ("node-1", "sh", "-c"))
        self.assertTrue(args[3].startswith("'dir=$(mktemp -d)&&mount /dev/sda12"))
        self.assertIn("cros_efi cgroup_no_v1=all systemd.unified_cgroup_hierarchy=1", args[3])
        self.reboot.reboot.assert_called_once_with("node-1")

    def test_ubuntu_runs_update_grub(self):
        self.reconfigurer.apply("node-1", _image("ubuntu-2204-jammy"))

        self.assertIn("/usr/sbin/update-grub", self.remote.run.call_args[0][3])
        self.reboot.reboot.assert_called_once_with("node-1")

    def test_arguments_with_quotes_stay_one_word(self):
        image = _image("ubuntu-2204-jammy", ("console='ttyS0'",))

        self.reconfigurer.apply("node-1", image)

        expected = "&&".join(ubuntu_commands("console='ttyS0'"))
        self.assertEqual(shlex.split(self.remote.run.call_args[0][3]), [expected])

    def test_unknown_family_is_a_noop(self):
        """Test unrecognized families succeed without touching the host."""
        applied = self.reconfigurer.apply("node-1", _image("fedora-coreos-38"))

        self.assertFalse(applied)
        self.remote.run.assert_not_called()
        self.reboot.reboot.assert_not_called()

    def test_no_kernel_arguments_is_a_noop(self):
        self.assertFalse(self.reconfigurer.apply("node-1", _image("cos-105", ())))
        self.remote.run.assert_not_called()

    def test_command_failure_propagates_without_reboot(self):
        self.remote.run.side_effect = RemoteExecError("node-1", ["sh"], "mount failed", 32)

        with self.assertRaises(RemoteExecError):
            self.reconfigurer.apply("node-1", _image("cos-105"))

        self.remote.run.assert_called_once()
        self.reboot.reboot.assert_not_called()


class TestRebootCoordinator(unittest.TestCase):
    """Test the two-phase reboot wait."""

    def setUp(self):
        self.remote = MagicMock()
        self.sleep = MagicMock()
        self.coordinator = RebootCoordinator(
            self.remote, down_interval=5, down_timeout=300, up_interval=30,
            up_timeout=300, sleep=self.sleep,
        )

    def test_goes_down_and_comes_back(self):
        self.remote.run.side_effect = [
            "",  # reboot
            "still up",
            _down("sh", "-c", "date"),
            _down("sh", "-c", "date"),
            "Mon Jan 1 00:00:00 UTC 2024",
        ]

        self.coordinator.reboot("node-1")

        self.assertEqual(self.remote.run.call_args_list[0][0], ("node-1", "reboot"))
        self.assertEqual(self.remote.run.call_count, 5)
        intervals = [c[0][0] for c in self.sleep.call_args_list]
        self.assertEqual(intervals, [5, 30])

    def test_reboot_command_error_is_tolerated(self):
        self.remote.run.side_effect = [
            _down("reboot"),
            _down("sh", "-c", "date"),
            "back",
        ]

        self.coordinator.reboot("node-1")

        self.assertEqual(self.remote.run.call_count, 3)

    def test_never_went_down(self):
        """Test a host answering through the whole shutdown budget."""
        self.remote.run.return_value = "still up"

        with self.assertRaises(HostNeverWentDown) as ctx:
            self.coordinator.reboot("node-1")

        self.assertNotIsInstance(ctx.exception, HostNeverCameBack)
        # reboot + 61 checks (immediate + every 5s for 300s)
        self.assertEqual(self.remote.run.call_count, 62)

    def test_never_came_back(self):
        """Test a host that goes down but never answers again."""
        self.remote.run.side_effect = [""] + [_down("sh", "-c", "date")] * 12

        with self.assertRaises(HostNeverCameBack) as ctx:
            self.coordinator.reboot("node-1")

        self.assertNotIsInstance(ctx.exception, HostNeverWentDown)
        self.assertEqual(ctx.exception.attempts, 11)
        self.assertEqual(self.remote.run.call_count, 13)


if __name__ == "__main__":
    unittest.main()
