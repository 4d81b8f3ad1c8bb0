"""
GCE Node E2E Runner.
"""

from clients import ComputeRestClient
from config import RunnerConfig
from images import ImageResolver
from instance_spec import InstanceSpecBuilder
from kernel_args import KernelArgumentReconfigurer, RebootCoordinator
from log_utils import setup_logging
from models import ImageSpec, ResolvedImage, TestOutcome
from provisioner import InstanceProvisioner
from readiness import ReadinessPoller
from runner import GCERunner, create_runner
from teardown import LifecycleTeardown

__all__ = [
    "ComputeRestClient",
    "RunnerConfig",
    "ImageResolver",
    "InstanceSpecBuilder",
    "KernelArgumentReconfigurer",
    "RebootCoordinator",
    "setup_logging",
    "ImageSpec",
    "ResolvedImage",
    "TestOutcome",
    "InstanceProvisioner",
    "ReadinessPoller",
    "GCERunner",
    "create_runner",
    "LifecycleTeardown",
]
