"""
Readiness state machine: from "just created" to "ready for tests".
"""

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional

from exceptions import InstanceCreationError, NotReady
from models import OperationHandle, ResolvedImage
from polling import poll
from remote import HostRegistry

logger = logging.getLogger(__name__)

CONTAINER_RUNTIME_UNITS = ("containerd.service", "crio.service")
CONTAINER_RUNTIME_QUERY = (
    "'systemctl list-units --type=service --state=running | grep -e containerd -e crio'"
)
CLOUD_INIT_MARKER = "/var/lib/cloud/instance/boot-finished"


class ReadinessState(Enum):
    CREATED = 0
    OPERATION_DONE = 1
    INSTANCE_RUNNING = 2
    SSH_REACHABLE = 3
    CONTAINER_RUNTIME_PRESENT = 4
    CLOUD_INIT_COMPLETE = 5
    READY = 6


def external_ip(instance: Dict) -> str:
    """First NAT IP found on the instance's network interfaces."""
    for interface in instance.get("networkInterfaces", []):
        for access in interface.get("accessConfigs", []):
            if access.get("natIP"):
                return access["natIP"]
    return ""


class ReadinessPoller:
    """
    Walks one instance through the readiness stages in order.

    Each stage has its own attempt budget. Running out of attempts raises
    ReadinessTimeoutError and leaves the instance running for inspection.
    """

    def __init__(
        self,
        client,
        remote,
        registry: HostRegistry,
        interval: float = 20,
        max_attempts: int = 30,
        cloud_init_attempts: int = 60,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.remote = remote
        self.registry = registry
        self.interval = interval
        self.max_attempts = max_attempts
        self.cloud_init_attempts = cloud_init_attempts
        self.sleep = sleep
        self.state = ReadinessState.CREATED
        self.history: List[ReadinessState] = [self.state]

    def _advance(self, state: ReadinessState) -> None:
        if state.value <= self.state.value:
            raise ValueError(f"cannot move from {self.state.name} to {state.name}")
        self.state = state
        self.history.append(state)
        logger.debug(f"readiness: {state.name}")

    def _stage(self, state: ReadinessState, check, max_attempts: Optional[int] = None) -> None:
        poll(
            check,
            stage=state.name,
            interval=self.interval,
            max_attempts=self.max_attempts if max_attempts is None else max_attempts,
            sleep=self.sleep,
        )
        self._advance(state)

    def wait_until_ready(
        self,
        name: str,
        operation: Optional[OperationHandle],
        image: ResolvedImage,
    ) -> str:
        """
        Block until the instance is ready for test execution.

        Args:
            name: Instance name
            operation: Insert operation, or None for an adopted instance
            image: Resolved image (decides whether cloud-init is awaited)

        Returns:
            The instance name

        Raises:
            ReadinessTimeoutError: If a stage exhausts its budget
            InstanceCreationError: If the insert operation finished with errors
        """
        logger.info(f"Waiting for instance {name} to become ready")

        if operation is None:
            self._advance(ReadinessState.OPERATION_DONE)
        else:
            self._stage(
                ReadinessState.OPERATION_DONE,
                lambda attempt: self._operation_done(name, operation),
            )
        self._stage(
            ReadinessState.INSTANCE_RUNNING,
            lambda attempt: self._instance_running(name),
        )
        self._stage(
            ReadinessState.SSH_REACHABLE,
            lambda attempt: self._ssh_reachable(name),
        )
        self._stage(
            ReadinessState.CONTAINER_RUNTIME_PRESENT,
            lambda attempt: self._container_runtime_present(name),
        )
        if image.uses_cloud_init:
            self._stage(
                ReadinessState.CLOUD_INIT_COMPLETE,
                lambda attempt: self._cloud_init_complete(name),
                max_attempts=self.cloud_init_attempts,
            )
        self._advance(ReadinessState.READY)
        logger.info(f"✓ Instance {name} is ready")
        return name

    def _operation_done(self, name: str, operation: OperationHandle) -> bool:
        operation.observe(self.client.get_operation(operation.name))
        if not operation.done:
            raise NotReady(
                f"instance insert operation {name} not in state DONE, was {operation.status.name}"
            )
        if operation.failed:
            raise InstanceCreationError(name, operation.errors)
        return True

    def _instance_running(self, name: str) -> bool:
        instance = self.client.get_instance(name)
        status = str(instance.get("status", "UNKNOWN")).upper()
        if status != "RUNNING":
            raise NotReady(f"instance {name} not in state RUNNING, was {status}")
        ip = external_ip(instance)
        if ip:
            self.registry.add(name, ip)
        return True

    def _ssh_reachable(self, name: str) -> bool:
        self.remote.run(name, "sh", "-c", "date")
        return True

    def _container_runtime_present(self, name: str) -> bool:
        output = self.remote.run(name, "sh", "-c", CONTAINER_RUNTIME_QUERY)
        if not any(unit in output for unit in CONTAINER_RUNTIME_UNITS):
            raise NotReady(f"instance {name} not running containerd/crio daemon: {output}")
        return True

    def _cloud_init_complete(self, name: str) -> bool:
        self.remote.run(name, "ls", CLOUD_INIT_MARKER)
        return True
