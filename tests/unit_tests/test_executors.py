"""
Unit tests for test executors.
"""

import shlex
import unittest
from unittest.mock import MagicMock

from exceptions import RemoteExecError
from executors import RemoteCommandExecutor
from models import ResolvedImage

IMAGE = ResolvedImage(
    short_name="cos",
    image="cos-105",
    project="cos-cloud",
    image_description="cos-105",
    metadata={},
)


class TestRemoteCommandExecutor(unittest.TestCase):
    def setUp(self):
        self.remote = MagicMock()
        self.executor = RemoteCommandExecutor(self.remote, "make test")

    def test_success(self):
        self.remote.run.return_value = "ok"

        self.assertEqual(self.executor.run("node-1", IMAGE, "cos"), ("ok", True))
        self.remote.run.assert_called_once_with("node-1", "sh", "-c", "'make test'")

    def test_command_with_single_quotes(self):
        """Test the command reaches the remote shell as one intact word."""
        executor = RemoteCommandExecutor(self.remote, "echo 'it''s' && make test")
        self.remote.run.return_value = "ok"

        executor.run("node-1", IMAGE, "cos")

        quoted = self.remote.run.call_args[0][3]
        self.assertEqual(shlex.split(quoted), ["echo 'it''s' && make test"])

    def test_failing_command_is_a_test_failure(self):
        self.remote.run.side_effect = RemoteExecError("node-1", ["sh"], "FAIL: x", 2)

        self.assertEqual(self.executor.run("node-1", IMAGE, "cos"), ("FAIL: x", False))

    def test_unreachable_host_raises(self):
        """Test an SSH-level failure stays an infrastructure error."""
        self.remote.run.side_effect = RemoteExecError("node-1", ["sh"], "refused", 255)

        with self.assertRaises(RemoteExecError):
            self.executor.run("node-1", IMAGE, "cos")


if __name__ == "__main__":
    unittest.main()
