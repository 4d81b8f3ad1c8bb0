"""
Configuration management for the GCE node e2e runner.
"""

import os
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import yaml

from exceptions import ConfigurationError
from models import ImageSpec

INJECT_PUBLIC_KEY_ENV = "IGNITION_INJECT_GCE_SSH_PUBLIC_KEY_FILE"
PUBLIC_KEY_FILE_ENV = "GCE_SSH_PUBLIC_KEY_FILE"


def default_instance_name_prefix() -> str:
    return "tmp-node-e2e-" + uuid.uuid4().hex[:8]


def parse_node_envs(values: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse ``NAME=VALUE`` strings passed with ``--node-env``.

    Raises:
        ConfigurationError: If an entry has no '='
    """
    envs: Dict[str, str] = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep:
            raise ConfigurationError(f"invalid env string {value}")
        envs[key] = val
    return envs


@dataclass(frozen=True)
class RunnerConfig:
    """Immutable configuration shared by every component of a run."""

    project_id: str
    zone: str = ""
    image_project: str = ""
    images: List[str] = field(default_factory=list)
    image_config_file: str = ""
    image_config_dir: str = ""
    instance_name_prefix: str = field(default_factory=default_instance_name_prefix)
    instance_type: str = "e2-medium"
    instance_metadata: str = ""
    node_envs: Dict[str, str] = field(default_factory=dict)
    preemptible: bool = False
    delete_instances: bool = True
    results_dir: str = "_artifacts"
    ssh_user: str = ""
    ssh_key: str = ""
    inject_ssh_public_key: bool = False
    ssh_public_key_file: str = ""
    poll_interval: int = 20
    operation_attempts: int = 30
    cloud_init_attempts: int = 60
    reboot_down_interval: int = 5
    reboot_down_timeout: int = 300
    reboot_up_interval: int = 30
    reboot_up_timeout: int = 300
    test_command: str = ""
    verbose: bool = False

    @classmethod
    def from_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "RunnerConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments
            environ: Environment to read the public-key injection settings
                from (defaults to os.environ)

        Returns:
            RunnerConfig instance
        """
        environ = os.environ if environ is None else environ
        return cls(
            project_id=args.project,
            zone=args.zone,
            image_project=args.image_project,
            images=list(args.images or []),
            image_config_file=args.image_config_file,
            image_config_dir=args.image_config_dir,
            instance_name_prefix=(
                args.instance_name_prefix or default_instance_name_prefix()
            ),
            instance_type=args.instance_type,
            instance_metadata=args.instance_metadata,
            node_envs=parse_node_envs(args.node_env),
            preemptible=args.preemptible_instances,
            delete_instances=args.delete_instances,
            results_dir=args.results_dir,
            ssh_user=args.ssh_user,
            ssh_key=args.ssh_key,
            inject_ssh_public_key=bool(environ.get(INJECT_PUBLIC_KEY_ENV)),
            ssh_public_key_file=environ.get(PUBLIC_KEY_FILE_ENV, ""),
            poll_interval=args.poll_interval,
            test_command=args.test_command,
            verbose=args.verbose,
        )

    def image_specs(self) -> Dict[str, ImageSpec]:
        """
        Collect image specs from the image config file and ``images``.

        Images given directly are merged over the config file entries and use
        ``image_project`` as their project.

        Raises:
            ConfigurationError: If the config file cannot be read or parsed, or
                images are given without an image project
        """
        specs: Dict[str, ImageSpec] = {}
        if self.image_config_file:
            specs.update(load_image_config(self.image_config_path))

        if self.images:
            if not self.image_project:
                raise ConfigurationError(
                    "Must specify --image-project if you specify --images"
                )
            for image in self.images:
                specs[image] = ImageSpec(
                    short_name=image, project=self.image_project, image=image
                )
        return specs

    @property
    def image_config_path(self) -> str:
        if self.image_config_dir:
            return os.path.join(self.image_config_dir, self.image_config_file)
        return self.image_config_file


def load_image_config(path: str) -> Dict[str, ImageSpec]:
    """
    Load a YAML (or JSON) image config of the form
    ``{"images": {short_name: {...}}}``.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(path) as f:
            document = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(
            f"Could not read image config file provided: {e}"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse image config file: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"image config file {path} is not a mapping")

    images = document.get("images") or {}
    return {name: ImageSpec.from_dict(name, entry) for name, entry in images.items()}
