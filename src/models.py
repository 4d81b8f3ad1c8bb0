"""
Data models for the GCE node e2e runner.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Accelerator:
    """Guest accelerator request (e.g. a GPU type and how many)."""

    type: str
    count: int = 1


class ImageFamily(Enum):
    """OS lineage of an image, used to pick kernel-argument commands."""

    COS = "cos"
    UBUNTU = "ubuntu"
    UNKNOWN = "unknown"

    @classmethod
    def from_image_name(cls, image: str) -> "ImageFamily":
        name = image.lower()
        if "ubuntu" in name:
            return cls.UBUNTU
        if "cos" in name:
            return cls.COS
        return cls.UNKNOWN


@dataclass
class ImageSpec:
    """One entry of the image configuration, keyed by short name."""

    short_name: str
    project: str
    image: str = ""
    image_regex: str = ""
    image_family: str = ""
    image_description: str = ""
    kernel_arguments: List[str] = field(default_factory=list)
    metadata: str = ""
    machine: str = ""
    accelerators: List[Accelerator] = field(default_factory=list)

    @property
    def needs_resolution(self) -> bool:
        """True when the concrete image must be looked up by regex/family."""
        return not self.image and bool(self.image_regex or self.image_family)

    @classmethod
    def from_dict(cls, short_name: str, data: Mapping[str, Any]) -> "ImageSpec":
        """
        Build an ImageSpec from an image-config document entry.

        Args:
            short_name: Key of the entry in the ``images`` mapping
            data: Entry with image/image_regex/image_family, project, metadata...

        Returns:
            ImageSpec instance
        """
        resources = data.get("resources") or {}
        accelerators = [
            Accelerator(type=acc["type"], count=int(acc.get("count", 1)))
            for acc in resources.get("accelerators") or []
        ]
        return cls(
            short_name=short_name,
            project=data.get("project", ""),
            image=data.get("image", ""),
            image_regex=data.get("image_regex", ""),
            image_family=data.get("image_family", ""),
            image_description=data.get("image_description", ""),
            kernel_arguments=list(data.get("kernel_arguments") or []),
            metadata=data.get("metadata", "") or "",
            machine=data.get("machine", ""),
            accelerators=accelerators,
        )


@dataclass(frozen=True)
class ResolvedImage:
    """An ImageSpec with a concrete image name and decoded metadata."""

    short_name: str
    image: str
    project: str
    image_description: str
    metadata: Mapping[str, str]
    kernel_arguments: Tuple[str, ...] = ()
    machine: str = ""
    accelerators: Tuple[Accelerator, ...] = ()
    family: ImageFamily = ImageFamily.UNKNOWN

    @property
    def source_image(self) -> str:
        return f"projects/{self.project}/global/images/{self.image}"

    @property
    def uses_cloud_init(self) -> bool:
        """True when the instance user-data is a cloud-config document."""
        return self.metadata.get("user-data", "").startswith("#cloud-config")


@dataclass(frozen=True)
class Scheduling:
    """Scheduling policy of an instance."""

    preemptible: bool = False
    on_host_maintenance: Optional[str] = None
    automatic_restart: Optional[bool] = None

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"preemptible": self.preemptible}
        if self.on_host_maintenance is not None:
            body["onHostMaintenance"] = self.on_host_maintenance
        if self.automatic_restart is not None:
            body["automaticRestart"] = self.automatic_restart
        return body


@dataclass
class InstanceRequest:
    """Provider-ready definition of an instance to create."""

    name: str
    machine_type: str  # zones/<zone>/machineTypes/<type>
    source_image: str  # projects/<project>/global/images/<image>
    service_account: str
    metadata: Dict[str, str] = field(default_factory=dict)
    accelerators: List[Dict[str, Any]] = field(default_factory=list)
    scheduling: Scheduling = field(default_factory=Scheduling)
    disk_size_gb: int = 20
    scopes: List[str] = field(
        default_factory=lambda: ["https://www.googleapis.com/auth/cloud-platform"]
    )

    def to_body(self) -> Dict[str, Any]:
        """Render the ``instances.insert`` request body."""
        body: Dict[str, Any] = {
            "name": self.name,
            "machineType": self.machine_type,
            "networkInterfaces": [
                {"accessConfigs": [{"type": "ONE_TO_ONE_NAT", "name": "External NAT"}]}
            ],
            "disks": [
                {
                    "autoDelete": True,
                    "boot": True,
                    "type": "PERSISTENT",
                    "initializeParams": {
                        "sourceImage": self.source_image,
                        "diskSizeGb": str(self.disk_size_gb),
                    },
                }
            ],
            "serviceAccounts": [
                {"email": self.service_account, "scopes": list(self.scopes)}
            ],
            "scheduling": self.scheduling.to_body(),
        }
        if self.accelerators:
            body["guestAccelerators"] = list(self.accelerators)
        if self.metadata:
            body["metadata"] = {
                "items": [
                    {"key": k, "value": v} for k, v in sorted(self.metadata.items())
                ]
            }
        return body


class OperationStatus(Enum):
    NOT_OBSERVED = 0
    RUNNING = 1
    DONE = 2

    @classmethod
    def from_api(cls, status: str) -> "OperationStatus":
        status = (status or "").upper()
        if status == "DONE":
            return cls.DONE
        if status in ("PENDING", "RUNNING"):
            return cls.RUNNING
        return cls.NOT_OBSERVED


@dataclass
class OperationHandle:
    """Tracked zone operation (e.g. an instance insert)."""

    name: str
    status: OperationStatus = OperationStatus.NOT_OBSERVED
    errors: List[str] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.status is OperationStatus.DONE

    @property
    def failed(self) -> bool:
        return self.done and bool(self.errors)

    def observe(self, data: Mapping[str, Any]) -> "OperationHandle":
        """
        Fold an operation resource returned by the API into this handle.

        Status never moves backwards; errors are only taken from the
        operation resource itself.
        """
        status = OperationStatus.from_api(data.get("status", ""))
        if status.value > self.status.value:
            self.status = status
        errors = (data.get("error") or {}).get("errors") or []
        if errors:
            self.errors = [str(e) for e in errors]
        return self

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "OperationHandle":
        return cls(name=data["name"]).observe(data)


@dataclass(frozen=True)
class PollAttempt:
    """Bookkeeping for one attempt of a polling stage."""

    attempt: int
    max_attempts: int
    interval: float


@dataclass(frozen=True)
class TestOutcome:
    """Result of one image's worker, sent once on the result queue."""

    __test__ = False  # not a pytest test class

    short_name: str
    host: str = ""
    output: str = ""
    error: Optional[BaseException] = None
    exit_ok: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.exit_ok
