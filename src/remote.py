"""
Remote command execution over SSH and the hostname -> IP registry.
"""

import logging
import subprocess
import threading
from typing import Dict, List, Optional

from exceptions import RemoteExecError

logger = logging.getLogger(__name__)

SSH_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "ConnectTimeout=30",
    "-o", "BatchMode=yes",
    "-o", "LogLevel=ERROR",
]


class HostRegistry:
    """
    Thread-safe mapping of instance name to external IP.

    Workers only ever write their own instance name, so a plain lock around
    the dict is enough.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._hosts: Dict[str, str] = {}

    def add(self, name: str, ip: str) -> None:
        with self._lock:
            self._hosts[name] = ip
        logger.debug(f"Registered {name} -> {ip}")

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            return self._hosts.get(name)

    def address(self, name: str) -> str:
        """IP registered for ``name``, or ``name`` itself if none is known."""
        return self.get(name) or name


class SSHRunner:
    """Runs commands on instances with the local ``ssh`` binary."""

    def __init__(
        self,
        registry: HostRegistry,
        user: str = "",
        key_file: str = "",
        timeout_s: int = 300,
    ):
        self.registry = registry
        self.user = user
        self.key_file = key_file
        self.timeout_s = timeout_s

    def _target(self, host: str) -> str:
        address = self.registry.address(host)
        return f"{self.user}@{address}" if self.user else address

    def command(self, host: str, *argv: str) -> List[str]:
        cmd = ["ssh", *SSH_OPTIONS]
        if self.key_file:
            cmd += ["-i", self.key_file]
        return cmd + [self._target(host), "--", "sudo", *argv]

    def run(self, host: str, *argv: str) -> str:
        """
        Run a command on ``host`` as root.

        Args:
            host: Instance name (resolved through the registry)
            *argv: Command and arguments; joined by ssh on the remote side

        Returns:
            Combined stdout and stderr

        Raises:
            RemoteExecError: If the command exits non-zero, times out or ssh
                cannot be started
        """
        cmd = self.command(host, *argv)
        logger.debug(f"Running on {host}: {' '.join(argv)}")
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            raise RemoteExecError(host, list(argv), output or "SSH command timed out") from e
        except OSError as e:
            raise RemoteExecError(host, list(argv), f"could not run ssh: {e}") from e

        if result.returncode != 0:
            raise RemoteExecError(host, list(argv), result.stdout, result.returncode)
        return result.stdout
