"""
Bounded retry shared by every polling stage.
"""

import logging
import time
from typing import Callable, Optional, Type, TypeVar

from exceptions import NodeE2EError, ReadinessTimeoutError
from models import PollAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


def poll(
    check: Callable[[PollAttempt], Optional[T]],
    stage: str,
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], None] = time.sleep,
    timeout_error: Type[ReadinessTimeoutError] = ReadinessTimeoutError,
) -> T:
    """
    Call ``check`` until it returns a truthy value or attempts run out.

    The first attempt runs immediately; later ones wait ``interval`` seconds.
    A retryable NodeE2EError raised by ``check`` counts as "not yet" and is
    remembered as the last error; anything else propagates.

    Args:
        check: Condition to evaluate, given the current attempt
        stage: Stage name used in logs and the timeout error
        interval: Seconds between attempts
        max_attempts: Attempt budget for this stage
        sleep: Sleep function (injectable for tests)
        timeout_error: Error class raised when the budget is exhausted

    Returns:
        The first truthy value returned by ``check``

    Raises:
        ReadinessTimeoutError: (or ``timeout_error``) if the budget is exhausted
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            sleep(interval)
        try:
            result = check(PollAttempt(attempt, max_attempts, interval))
        except NodeE2EError as e:
            if not e.retryable:
                raise
            last_error = e
            logger.debug(f"{stage}: attempt {attempt}/{max_attempts} not ready: {e}")
            continue

        if result:
            logger.debug(f"{stage}: reached on attempt {attempt}/{max_attempts}")
            return result
        logger.debug(f"{stage}: attempt {attempt}/{max_attempts} not ready")

    raise timeout_error(stage, max_attempts, last_error)


def attempts_for(timeout: float, interval: float) -> int:
    """Attempt count covering ``timeout`` seconds, checking immediately first."""
    if interval <= 0:
        return 1
    return int(timeout // interval) + 1
