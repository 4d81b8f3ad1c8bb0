"""
Error taxonomy for the GCE node e2e runner.

Every error carries a ``retryable`` flag. Polling stages retry errors that
are retryable and let everything else propagate immediately.
"""

from typing import List, Optional


class NodeE2EError(Exception):
    """Base class for runner errors."""

    retryable = False


class ConfigurationError(NodeE2EError):
    """Invalid or incomplete configuration for an image or the run."""


class NoMatchingImage(ConfigurationError):
    """No image in the project matched the regex/family selector."""


class TimestampParseError(ConfigurationError):
    """An image carried a creation timestamp that is not RFC 3339."""


class ProviderAPIError(NodeE2EError, RuntimeError):
    """A Compute Engine API call failed."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class InstanceCreationError(ProviderAPIError):
    """Instance creation was rejected (configuration or quota class)."""

    retryable = False

    def __init__(self, instance_name: str, errors: List[str]):
        super().__init__(f"could not create instance {instance_name}: {errors}")
        self.instance_name = instance_name
        self.errors = errors


class NotReady(NodeE2EError):
    """A polled condition does not hold yet."""

    retryable = True


class RemoteExecError(NodeE2EError):
    """A remote command exited non-zero or the host was unreachable."""

    retryable = True

    def __init__(
        self,
        host: str,
        argv: List[str],
        output: str = "",
        returncode: Optional[int] = None,
    ):
        cmd = " ".join(argv)
        super().__init__(
            f"command '{cmd}' on {host} failed (rc={returncode}): {output.strip()}"
        )
        self.host = host
        self.argv = argv
        self.output = output
        self.returncode = returncode


class ReadinessTimeoutError(NodeE2EError):
    """A polling stage exhausted its attempt budget."""

    def __init__(
        self, stage: str, attempts: int, last_error: Optional[BaseException] = None
    ):
        message = f"{stage} not reached after {attempts} attempt(s)"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.stage = stage
        self.attempts = attempts
        self.last_error = last_error


class HostNeverWentDown(ReadinessTimeoutError):
    """The host kept answering SSH for the whole reboot shutdown budget."""


class HostNeverCameBack(ReadinessTimeoutError):
    """The host did not answer SSH again within the reboot startup budget."""


class TeardownError(NodeE2EError):
    """Instance deletion failed. Logged and recorded, never raised."""

    def __init__(self, host: str, cause: BaseException):
        super().__init__(f"Error deleting instance {host}: {cause}")
        self.host = host
        self.cause = cause
