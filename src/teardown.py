"""
Best-effort instance deletion.
"""

import logging
from typing import List

from exceptions import ProviderAPIError, TeardownError

logger = logging.getLogger(__name__)


class LifecycleTeardown:
    """Deletes instances; failures are logged and recorded, never raised."""

    def __init__(self, client):
        self.client = client
        self.failures: List[TeardownError] = []

    def delete(self, host: str) -> bool:
        """
        Request deletion of ``host``.

        Returns:
            True if the delete request was accepted
        """
        logger.info(f"Deleting instance {host}")
        try:
            op = self.client.delete_instance(host)
        except ProviderAPIError as e:
            error = TeardownError(host, e)
            self.failures.append(error)
            logger.error(str(error))
            return False
        logger.debug(f"Delete operation for {host}: {op.get('name')}")
        return True
