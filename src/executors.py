"""
Test executors: what runs on a host once it is ready.
"""

import logging
import shlex
from typing import Protocol, Tuple

from exceptions import RemoteExecError
from models import ResolvedImage

logger = logging.getLogger(__name__)


class TestExecutor(Protocol):
    """Runs a test suite against a ready host."""

    __test__ = False

    def run(self, host: str, image: ResolvedImage, junit_file_name: str) -> Tuple[str, bool]:
        """Return (output, exit_ok). Raise NodeE2EError on infrastructure errors."""
        ...


class RemoteCommandExecutor:
    """Runs one shell command on the host and reports whether it exited 0."""

    def __init__(self, remote, command: str):
        self.remote = remote
        self.command = command

    def run(self, host: str, image: ResolvedImage, junit_file_name: str) -> Tuple[str, bool]:
        logger.info(
            f"Running tests on {host} ({image.image_description}), junit file {junit_file_name}"
        )
        try:
            output = self.remote.run(host, "sh", "-c", shlex.quote(self.command))
        except RemoteExecError as e:
            # the command ran and failed; that is a test failure, not an error
            if e.returncode is not None and e.returncode != 255:
                return e.output, False
            raise
        return output, True
