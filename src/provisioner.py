"""
Idempotent instance creation.
"""

import logging
from typing import Optional

from exceptions import InstanceCreationError, ProviderAPIError
from models import InstanceRequest, OperationHandle

logger = logging.getLogger(__name__)


class InstanceProvisioner:
    """Creates an instance unless one with the same name already exists."""

    def __init__(self, client):
        self.client = client

    def provision(self, request: InstanceRequest) -> Optional[OperationHandle]:
        """
        Create the instance described by ``request``.

        An existing instance with the target name is adopted as-is and None
        is returned. This includes an insert answered with 409, which happens
        when a retried insert finds the instance its first attempt created.

        Args:
            request: Instance definition

        Returns:
            Handle of the insert operation, or None if an instance was adopted

        Raises:
            InstanceCreationError: If the insert is rejected or reports errors
        """
        existing = self._existing(request.name)
        if existing is not None:
            self._warn_on_mismatch(request, existing)
            logger.info(f"Instance {request.name} already exists; reusing it")
            return None

        logger.info(f"Creating instance {request.name} from {request.source_image}")
        try:
            data = self.client.insert_instance(request.to_body())
        except ProviderAPIError as e:
            if e.status_code == 409:
                logger.warning(f"Instance {request.name} already exists after insert; reusing it")
                return None
            raise InstanceCreationError(request.name, [f"API error: {e}"]) from e

        operation = OperationHandle.from_api(data)
        if operation.errors:
            raise InstanceCreationError(request.name, operation.errors)
        logger.debug(f"Insert operation for {request.name}: {operation.name}")
        return operation

    def _existing(self, name: str) -> Optional[dict]:
        try:
            return self.client.get_instance(name)
        except ProviderAPIError as e:
            if e.not_found:
                return None
            raise

    @staticmethod
    def _warn_on_mismatch(request: InstanceRequest, existing: dict) -> None:
        existing_type = existing.get("machineType", "")
        if existing_type and not existing_type.endswith(request.machine_type):
            logger.warning(
                f"Reusing instance {request.name} with machine type {existing_type}, requested {request.machine_type}"
            )
