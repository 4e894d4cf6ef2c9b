"""Tracked image records and observed remote state."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from amiforge.config.models import EphemeralBlockDevice, ImageConfig
from amiforge.utils.errors import StateError


class ImageStatus:
    """Image states reported by EC2, plus the synthetic 'destroyed'."""

    PENDING = "pending"
    AVAILABLE = "available"
    FAILED = "failed"
    DEREGISTERED = "deregistered"
    DESTROYED = "destroyed"


class ObservedEbsDevice(BaseModel):
    """EBS mapping as stored remotely; every field populated."""

    device_name: str
    delete_on_termination: bool = False
    encrypted: bool = False
    iops: int = 0
    snapshot_id: str = ""
    volume_size: int = 0
    volume_type: str = ""


class ObservedImage(BaseModel):
    """The remote view of an image."""

    image_id: str = Field(..., description="Remote-assigned image id")
    status: str = Field(..., description="Remote lifecycle state")
    arn: str = Field(..., description="Fully-qualified image ARN")
    name: str = ""
    description: str = ""
    architecture: str = ""
    image_location: str = ""
    kernel_id: str = ""
    ramdisk_id: str = ""
    root_device_name: str = ""
    root_snapshot_id: str = ""
    sriov_net_support: str = ""
    ena_support: bool = False
    virtualization_type: str = ""
    ebs_block_devices: Dict[str, ObservedEbsDevice] = Field(
        default_factory=dict, description="EBS mappings keyed by device name"
    )
    ephemeral_block_devices: Dict[str, EphemeralBlockDevice] = Field(
        default_factory=dict, description="Instance-store mappings keyed by device name"
    )
    tags: Dict[str, str] = Field(default_factory=dict)

    def snapshot_ids(self) -> List[str]:
        """Snapshot ids referenced by EBS mappings, in device order."""
        return [
            device.snapshot_id
            for _, device in sorted(self.ebs_block_devices.items())
            if device.snapshot_id
        ]


class FieldDrift(BaseModel):
    """One declared field whose observed value differs."""

    field: str
    declared: Any = None
    observed: Any = None


class ImageRecord(BaseModel):
    """One tracked image across its whole lifecycle."""

    name: str = Field(..., description="Logical name of the image in configuration")
    config: ImageConfig
    image_id: Optional[str] = None
    manage_ebs_snapshots: bool = Field(
        False, description="Snapshots were created together with the image and are owned by it"
    )
    new_resource: bool = False
    observed: Optional[ObservedImage] = None
    drift: List[FieldDrift] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "manage_ebs_snapshots":
            raise StateError(
                "manage_ebs_snapshots is fixed when the image is created; use mark_created"
            )
        super().__setattr__(name, value)

    def _set_ownership(self, manage_ebs_snapshots: bool) -> None:
        super().__setattr__("manage_ebs_snapshots", manage_ebs_snapshots)

    def mark_created(self, image_id: str, manage_ebs_snapshots: bool) -> None:
        """Record the id returned by a create call.

        The snapshot ownership flag is fixed here for the life of the image.

        Raises:
            StateError: If the record already tracks an image
        """
        if self.image_id is not None:
            raise StateError(
                f"Record '{self.name}' already tracks image {self.image_id}"
            )
        self.image_id = image_id
        self._set_ownership(manage_ebs_snapshots)
        self.new_resource = True
        self.created_at = datetime.now(timezone.utc)

    def mark_absent(self) -> None:
        """Forget the remote image; the record can be created again."""
        self.image_id = None
        self._set_ownership(False)
        self.new_resource = False
        self.observed = None
        self.drift = []
        self.created_at = None

    @property
    def exists(self) -> bool:
        return self.image_id is not None


class StateFile(BaseModel):
    """Contents of the JSON state file."""

    version: str = Field("1", description="State file format version")
    region: str = Field(..., description="AWS region the images live in")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    images: Dict[str, ImageRecord] = Field(
        default_factory=dict, description="Tracked images keyed by logical name"
    )

    def put(self, record: ImageRecord) -> None:
        self.images[record.name] = record
        self.timestamp = datetime.now(timezone.utc)

    def remove(self, name: str) -> Optional[ImageRecord]:
        record = self.images.pop(name, None)
        self.timestamp = datetime.now(timezone.utc)
        return record

    def get(self, name: str) -> Optional[ImageRecord]:
        return self.images.get(name)
