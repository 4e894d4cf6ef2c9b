"""Pydantic models for image configuration schema."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from amiforge.tagging.manager import validate_tags

ARCHITECTURES = ("x86_64", "i386", "arm64")
VOLUME_TYPES = ("standard", "io1", "gp2", "sc1", "st1")
VIRTUALIZATION_TYPES = ("paravirtual", "hvm")

# Only these fields can change in place; everything else forces replacement.
MUTABLE_FIELDS = frozenset({"description", "tags"})


class EbsBlockDevice(BaseModel):
    """EBS-backed block device mapping."""

    device_name: str = Field(..., min_length=1)
    delete_on_termination: bool = True
    encrypted: bool = False
    iops: Optional[int] = Field(None, ge=0)
    snapshot_id: Optional[str] = None
    volume_size: Optional[int] = Field(None, ge=0)
    volume_type: str = "standard"

    @field_validator("volume_type")
    @classmethod
    def validate_volume_type(cls, v: str) -> str:
        if v not in VOLUME_TYPES:
            raise ValueError(f"volume_type must be one of {', '.join(VOLUME_TYPES)}: {v}")
        return v


class EphemeralBlockDevice(BaseModel):
    """Instance-store block device mapping."""

    device_name: str = Field(..., min_length=1)
    virtual_name: str = Field(..., min_length=1)


class CopySourceConfig(BaseModel):
    """Create the image by copying an existing image."""

    source_image_id: str = Field(..., min_length=1)
    source_region: str = Field(..., min_length=1)
    encrypted: bool = False
    kms_key_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_kms_key(self):
        if self.kms_key_id and not self.encrypted:
            raise ValueError("kms_key_id requires encrypted to be true")
        return self


class InstanceSourceConfig(BaseModel):
    """Create the image from a running or stopped instance."""

    instance_id: str = Field(..., min_length=1)
    snapshot_without_reboot: bool = False


class ImageConfig(BaseModel):
    """Declared configuration of one image."""

    name: str = Field(..., min_length=3, max_length=128)
    description: str = ""
    architecture: str = "x86_64"
    image_location: Optional[str] = None
    kernel_id: Optional[str] = None
    ramdisk_id: Optional[str] = None
    root_device_name: Optional[str] = None
    sriov_net_support: str = "simple"
    ena_support: bool = False
    virtualization_type: str = "paravirtual"
    ebs_block_devices: List[EbsBlockDevice] = Field(default_factory=list)
    ephemeral_block_devices: List[EphemeralBlockDevice] = Field(default_factory=list)
    tags: Dict[str, str] = Field(default_factory=dict)
    copy_from: Optional[CopySourceConfig] = None
    from_instance: Optional[InstanceSourceConfig] = None

    @field_validator("architecture")
    @classmethod
    def validate_architecture(cls, v: str) -> str:
        if v not in ARCHITECTURES:
            raise ValueError(f"architecture must be one of {', '.join(ARCHITECTURES)}: {v}")
        return v

    @field_validator("virtualization_type")
    @classmethod
    def validate_virtualization_type(cls, v: str) -> str:
        if v not in VIRTUALIZATION_TYPES:
            raise ValueError(
                f"virtualization_type must be one of {', '.join(VIRTUALIZATION_TYPES)}: {v}"
            )
        return v

    @field_validator("tags")
    @classmethod
    def validate_tag_set(cls, v: Dict[str, str]) -> Dict[str, str]:
        errors = validate_tags(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v

    @field_validator("ebs_block_devices", "ephemeral_block_devices")
    @classmethod
    def validate_unique_devices(cls, v):
        seen = set()
        for device in v:
            if device.device_name in seen:
                raise ValueError(f"duplicate device_name: {device.device_name}")
            seen.add(device.device_name)
        return v

    @model_validator(mode="after")
    def validate_source(self):
        """At most one creation source may be declared."""
        if self.copy_from and self.from_instance:
            raise ValueError("Cannot specify both 'copy_from' and 'from_instance'")
        return self

    @property
    def ebs_by_device(self) -> Dict[str, EbsBlockDevice]:
        return {device.device_name: device for device in self.ebs_block_devices}

    @property
    def ephemeral_by_device(self) -> Dict[str, EphemeralBlockDevice]:
        return {device.device_name: device for device in self.ephemeral_block_devices}

    def replacement_fields(self, other: "ImageConfig") -> List[str]:
        """Return the immutable fields that differ between two configurations.

        Block device collections are compared by device name, so declaration
        order never counts as a change.
        """
        changed = []
        for field in type(self).model_fields:
            if field in MUTABLE_FIELDS:
                continue
            if field == "ebs_block_devices":
                same = self.ebs_by_device == other.ebs_by_device
            elif field == "ephemeral_block_devices":
                same = self.ephemeral_by_device == other.ephemeral_by_device
            else:
                same = getattr(self, field) == getattr(other, field)
            if not same:
                changed.append(field)
        return changed


class TimeoutsConfig(BaseModel):
    """Per-operation time budgets and polling cadence, in seconds."""

    create: float = Field(40 * 60, gt=0)
    update: float = Field(40 * 60, gt=0)
    delete: float = Field(90 * 60, gt=0)
    poll_delay: float = Field(5.0, ge=0)
    min_poll_interval: float = Field(3.0, ge=0)
    max_poll_interval: float = Field(10.0, gt=0)
    read_retry_timeout: float = Field(60.0, ge=0)


class ProviderConfig(BaseModel):
    """AWS connection settings and tag filtering."""

    region: Optional[str] = None
    profile: Optional[str] = None
    ignore_tag_keys: List[str] = Field(default_factory=list)
    ignore_tag_prefixes: List[str] = Field(default_factory=list)
