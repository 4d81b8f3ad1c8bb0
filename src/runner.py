"""
GCE runner: one worker per image, provisioning through teardown.
"""

import logging
import os
import queue
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol

from clients import ComputeRestClient
from config import RunnerConfig
from exceptions import ConfigurationError, NodeE2EError, ProviderAPIError
from executors import TestExecutor
from images import ImageResolver
from instance_spec import InstanceSpecBuilder
from kernel_args import KernelArgumentReconfigurer, RebootCoordinator
from models import ImageSpec, ResolvedImage, TestOutcome
from provisioner import InstanceProvisioner
from readiness import ReadinessPoller, external_ip
from remote import HostRegistry, SSHRunner
from teardown import LifecycleTeardown

logger = logging.getLogger(__name__)

SERIAL_LOG_FILE = "serial-1.log"


class Runner(Protocol):
    """Capabilities every provider backend offers to the test harness."""

    def validate(self) -> None:
        ...

    def start_tests(self, executor: TestExecutor, results: "queue.Queue[TestOutcome]") -> int:
        ...


class GCERunner:
    """Runs node e2e tests on freshly provisioned GCE instances."""

    def __init__(
        self,
        config: RunnerConfig,
        client: Optional[ComputeRestClient] = None,
        remote=None,
        registry: Optional[HostRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the runner.

        Args:
            config: Run configuration
            client: Compute client (created in validate() when omitted)
            remote: Remote command runner (SSH by default)
            registry: Hostname -> IP registry shared with ``remote``
            sleep: Sleep function used by every polling stage
        """
        self.config = config
        self.client = client
        self.registry = registry or HostRegistry()
        self.remote = remote or SSHRunner(
            self.registry, user=config.ssh_user, key_file=config.ssh_key
        )
        self.sleep = sleep
        self.builder = InstanceSpecBuilder(config)
        self.specs: Dict[str, ImageSpec] = {}
        self.teardown = LifecycleTeardown(client) if client is not None else None
        self._service_account: Optional[str] = None
        self._service_account_lock = threading.Lock()

    def validate(self) -> None:
        """
        Check the run-level configuration and collect the image specs.

        Images are resolved later, inside each image's worker, so one image
        that cannot be resolved does not stop the others.

        Raises:
            ConfigurationError: On missing project/zone or an image without a project
            ProviderAPIError: If the compute client cannot be created
        """
        specs = self.config.image_specs()
        if not specs:
            raise ConfigurationError("Must specify one of --image-config-file, --images.")
        if not self.config.zone:
            raise ConfigurationError("must specify --zone flag")
        if not self.config.project_id:
            raise ConfigurationError("must specify --project flag to launch images into")
        for short_name, spec in specs.items():
            if not spec.project:
                raise ConfigurationError(
                    f"invalid config for {short_name}; must specify a project"
                )

        if self.client is None:
            self.client = ComputeRestClient(
                project_id=self.config.project_id, zone=self.config.zone
            )
        self.teardown = LifecycleTeardown(self.client)
        self.specs = specs

    def start_tests(self, executor: TestExecutor, results: "queue.Queue[TestOutcome]") -> int:
        """
        Launch one worker thread per image.

        Each worker puts exactly one TestOutcome on ``results``.

        Returns:
            Number of workers launched
        """
        num_tests = 0
        for short_name, spec in self.specs.items():
            selector = spec.image or spec.image_regex or spec.image_family
            logger.info(
                f"Initializing e2e tests using image {short_name}/{spec.project}/{selector}."
            )
            worker = threading.Thread(
                target=self._worker,
                args=(spec, executor, results),
                name=f"node-e2e-{short_name}",
                daemon=True,
            )
            worker.start()
            num_tests += 1
        return num_tests

    def _worker(
        self,
        spec: ImageSpec,
        executor: TestExecutor,
        results: "queue.Queue[TestOutcome]",
    ) -> None:
        try:
            outcome = self.test_image(self.resolve_image(spec), executor)
        except NodeE2EError as e:
            logger.error(f"unable to resolve image for {spec.short_name}: {e}")
            outcome = TestOutcome(short_name=spec.short_name, error=e)
        except Exception as e:
            logger.exception(f"Worker for {spec.short_name} failed unexpectedly")
            outcome = TestOutcome(short_name=spec.short_name, error=e)
        results.put(outcome)

    def resolve_image(self, spec: ImageSpec) -> ResolvedImage:
        """
        Decode the metadata of ``spec`` and resolve its concrete image.

        Raises:
            ConfigurationError: If the metadata or the image cannot be resolved
            ProviderAPIError: If listing images fails
        """
        metadata = self.builder.decode_metadata(spec.metadata)
        return ImageResolver(self.client).resolve_spec(spec, metadata)

    def test_image(self, image: ResolvedImage, executor: TestExecutor) -> TestOutcome:
        """
        Provision an instance for ``image``, run the tests and tear it down.

        Returns:
            The outcome; includes the host name whenever one was allocated
        """
        try:
            request = self.builder.build(image, self.service_account())
        except NodeE2EError as e:
            return TestOutcome(short_name=image.short_name, error=e)

        host = request.name
        submitted = False
        try:
            operation = InstanceProvisioner(self.client).provision(request)
            submitted = True
            self._poller().wait_until_ready(host, operation, image)
            if image.kernel_arguments:
                self._reconfigurer().apply(host, image)
            self.register_host_ip(host)

            output, exit_ok = executor.run(host, image, image.short_name)
            outcome = TestOutcome(
                short_name=image.short_name, host=host, output=output, exit_ok=exit_ok
            )
        except NodeE2EError as e:
            logger.error(
                f"unable to create gce instance with running container runtime for image {image.image}: {e}"
            )
            outcome = TestOutcome(short_name=image.short_name, host=host, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error testing image {image.image} on {host}")
            outcome = TestOutcome(short_name=image.short_name, host=host, error=e)
        finally:
            if submitted:
                self.collect_serial_output(host)
            if self.config.delete_instances:
                self.teardown.delete(host)

        return outcome

    def service_account(self) -> str:
        """Default service account of the project, looked up once."""
        with self._service_account_lock:
            if self._service_account is None:
                self._service_account = self.client.get_project_default_service_account(
                    self.config.project_id
                )
            return self._service_account

    def register_host_ip(self, host: str) -> None:
        """
        Record the host's current external IP.

        Raises:
            ProviderAPIError: If the instance cannot be read or is not RUNNING
        """
        instance = self.client.get_instance(host)
        status = str(instance.get("status", "UNKNOWN")).upper()
        if status != "RUNNING":
            raise ProviderAPIError(f"instance {host} not in state RUNNING, was {status}")
        ip = external_ip(instance)
        if ip:
            self.registry.add(host, ip)

    def collect_serial_output(self, host: str) -> Optional[str]:
        """
        Save serial port 1 output under ``<results_dir>/<host>/``.

        Returns:
            Path of the written log, or None if collection failed
        """
        try:
            contents = self.client.get_serial_port_output(host, port=1)
        except ProviderAPIError as e:
            logger.error(f"Failed to collect serial output from node {host}: {e}")
            return None

        log_dir = os.path.join(self.config.results_dir, host)
        path = os.path.join(log_dir, SERIAL_LOG_FILE)
        try:
            os.makedirs(log_dir, exist_ok=True)
            with open(path, "w") as f:
                f.write(contents)
        except OSError as e:
            logger.error(f"Failed to write serial output from node {host} to {path}: {e}")
            return None
        return path

    def _poller(self) -> ReadinessPoller:
        return ReadinessPoller(
            self.client,
            self.remote,
            self.registry,
            interval=self.config.poll_interval,
            max_attempts=self.config.operation_attempts,
            cloud_init_attempts=self.config.cloud_init_attempts,
            sleep=self.sleep,
        )

    def _reconfigurer(self) -> KernelArgumentReconfigurer:
        reboot = RebootCoordinator(
            self.remote,
            down_interval=self.config.reboot_down_interval,
            down_timeout=self.config.reboot_down_timeout,
            up_interval=self.config.reboot_up_interval,
            up_timeout=self.config.reboot_up_timeout,
            sleep=self.sleep,
        )
        return KernelArgumentReconfigurer(self.remote, reboot)


RUNNERS: Dict[str, Callable[..., Runner]] = {
    "gce": GCERunner,
}


def create_runner(name: str, config: RunnerConfig, **kwargs) -> Runner:
    """
    Build a runner from the factory table.

    Raises:
        ConfigurationError: If no runner is registered under ``name``
    """
    try:
        factory = RUNNERS[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown runner {name!r}; available: {', '.join(sorted(RUNNERS))}"
        ) from None
    return factory(config, **kwargs)


def collect_outcomes(results: "queue.Queue[TestOutcome]", count: int) -> List[TestOutcome]:
    """Drain exactly ``count`` outcomes, blocking until each arrives."""
    return [results.get() for _ in range(count)]
