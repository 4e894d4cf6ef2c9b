"""Translation between declared image configuration and EC2 request/response shapes."""

from typing import Any, Dict, Iterable, List, Optional

from amiforge.config.models import EbsBlockDevice, EphemeralBlockDevice, ImageConfig
from amiforge.state.models import FieldDrift, ObservedEbsDevice, ObservedImage
from amiforge.tagging.manager import filter_ignored_tags
from amiforge.utils.errors import ConfigurationError

# (config attribute, RegisterImage / Image key, always sent)
# Optional strings are omitted from requests when empty.
SCALAR_FIELDS = (
    ("name", "Name", True),
    ("description", "Description", False),
    ("architecture", "Architecture", True),
    ("image_location", "ImageLocation", False),
    ("kernel_id", "KernelId", False),
    ("ramdisk_id", "RamdiskId", False),
    ("root_device_name", "RootDeviceName", False),
    ("sriov_net_support", "SriovNetSupport", True),
    ("virtualization_type", "VirtualizationType", True),
    ("ena_support", "EnaSupport", True),
)

# (config attribute, Ebs key) for numeric settings where 0 means unset
OPTIONAL_EBS_NUMBERS = (
    ("iops", "Iops"),
    ("volume_size", "VolumeSize"),
)


def image_arn(image_id: str, region: str, partition: str = "aws") -> str:
    """Build the ARN of an image. Images carry no account id in their ARN."""
    return f"arn:{partition}:ec2:{region}::image/{image_id}"


def _ebs_mapping(device: EbsBlockDevice) -> Dict[str, Any]:
    ebs: Dict[str, Any] = {
        "DeleteOnTermination": device.delete_on_termination,
        "VolumeType": device.volume_type,
    }
    for attr, key in OPTIONAL_EBS_NUMBERS:
        value = getattr(device, attr)
        if value:
            ebs[key] = value

    if device.snapshot_id:
        if device.encrypted:
            raise ConfigurationError(
                f"can't set both 'snapshot_id' and 'encrypted' on device {device.device_name}",
                suggestions=[
                    "Remove 'encrypted'; the volume inherits encryption from the snapshot",
                    "Or remove 'snapshot_id' to create an empty encrypted volume",
                ],
            )
        ebs["SnapshotId"] = device.snapshot_id
    elif device.encrypted:
        ebs["Encrypted"] = True

    return {"DeviceName": device.device_name, "Ebs": ebs}


def _ephemeral_mapping(device: EphemeralBlockDevice) -> Dict[str, Any]:
    return {"DeviceName": device.device_name, "VirtualName": device.virtual_name}


def to_remote_request(config: ImageConfig) -> Dict[str, Any]:
    """Build RegisterImage keyword arguments from a declared configuration.

    Raises:
        ConfigurationError: A block device sets both snapshot_id and encrypted
    """
    request: Dict[str, Any] = {}
    for attr, key, always in SCALAR_FIELDS:
        value = getattr(config, attr)
        if always or value:
            request[key] = value

    mappings: List[Dict[str, Any]] = []
    for _, device in sorted(config.ebs_by_device.items()):
        mappings.append(_ebs_mapping(device))
    for _, device in sorted(config.ephemeral_by_device.items()):
        mappings.append(_ephemeral_mapping(device))
    if mappings:
        request["BlockDeviceMappings"] = mappings

    return request


def root_snapshot_id(image: Dict[str, Any]) -> str:
    """Snapshot id of the EBS mapping mounted as the root device, if any."""
    root = image.get("RootDeviceName")
    for mapping in image.get("BlockDeviceMappings", []):
        if mapping.get("DeviceName") == root and "Ebs" in mapping:
            return mapping["Ebs"].get("SnapshotId", "")
    return ""


def from_remote(
    image: Dict[str, Any],
    region: str,
    partition: str = "aws",
    ignore_tag_keys: Iterable[str] = (),
    ignore_tag_prefixes: Iterable[str] = (),
) -> ObservedImage:
    """Build the observed state of an image from a DescribeImages entry."""
    image_id = image["ImageId"]

    ebs_devices: Dict[str, ObservedEbsDevice] = {}
    ephemeral_devices: Dict[str, EphemeralBlockDevice] = {}
    for mapping in image.get("BlockDeviceMappings", []):
        device_name = mapping["DeviceName"]
        ebs = mapping.get("Ebs")
        if ebs is not None:
            ebs_devices[device_name] = ObservedEbsDevice(
                device_name=device_name,
                delete_on_termination=ebs.get("DeleteOnTermination", False),
                encrypted=ebs.get("Encrypted", False),
                iops=ebs.get("Iops") or 0,
                snapshot_id=ebs.get("SnapshotId") or "",
                volume_size=ebs.get("VolumeSize") or 0,
                volume_type=ebs.get("VolumeType", ""),
            )
        elif mapping.get("VirtualName"):
            ephemeral_devices[device_name] = EphemeralBlockDevice(
                device_name=device_name,
                virtual_name=mapping["VirtualName"],
            )

    scalars = {}
    for attr, key, _ in SCALAR_FIELDS:
        value = image.get(key)
        if attr == "ena_support":
            scalars[attr] = bool(value)
        else:
            scalars[attr] = value or ""

    tags = {tag["Key"]: tag["Value"] for tag in image.get("Tags", [])}

    return ObservedImage(
        image_id=image_id,
        status=image.get("State", ""),
        arn=image_arn(image_id, region, partition),
        root_snapshot_id=root_snapshot_id(image),
        ebs_block_devices=dict(sorted(ebs_devices.items())),
        ephemeral_block_devices=dict(sorted(ephemeral_devices.items())),
        tags=dict(sorted(filter_ignored_tags(tags, ignore_tag_keys, ignore_tag_prefixes).items())),
        **scalars,
    )


def _compare(drift: List[FieldDrift], field: str, declared: Any, observed: Any) -> None:
    if declared != observed:
        drift.append(FieldDrift(field=field, declared=declared, observed=observed))


def detect_drift(config: ImageConfig, observed: ObservedImage) -> List[FieldDrift]:
    """List declared values that the remote image no longer matches.

    Fields the configuration leaves unset are computed remotely and never
    count as drift. Images created by copy or from an instance only compare
    the attributes their creation call takes.
    """
    drift: List[FieldDrift] = []
    _compare(drift, "name", config.name, observed.name)
    if config.description:
        _compare(drift, "description", config.description, observed.description)
    _compare(drift, "tags", config.tags, observed.tags)

    if config.copy_from or config.from_instance:
        return drift

    for attr, _, always in SCALAR_FIELDS:
        if attr in ("name", "description"):
            continue
        declared = getattr(config, attr)
        if always or declared:
            _compare(drift, attr, declared, getattr(observed, attr))

    _ebs_drift(drift, config.ebs_by_device, observed.ebs_block_devices)

    declared_ephemeral = config.ephemeral_by_device
    if declared_ephemeral:
        _compare(
            drift,
            "ephemeral_block_devices",
            {name: d.virtual_name for name, d in sorted(declared_ephemeral.items())},
            {name: d.virtual_name for name, d in sorted(observed.ephemeral_block_devices.items())},
        )
    return drift


def _ebs_drift(
    drift: List[FieldDrift],
    declared: Dict[str, EbsBlockDevice],
    observed: Dict[str, ObservedEbsDevice],
) -> None:
    if not declared:
        return

    missing = sorted(set(declared) - set(observed))
    extra = sorted(set(observed) - set(declared))
    if missing or extra:
        drift.append(FieldDrift(field="ebs_block_devices", declared=sorted(declared), observed=sorted(observed)))

    for name in sorted(set(declared) & set(observed)):
        want, have = declared[name], observed[name]
        prefix = f"ebs_block_devices[{name}]"
        _compare(drift, f"{prefix}.delete_on_termination", want.delete_on_termination, have.delete_on_termination)
        _compare(drift, f"{prefix}.volume_type", want.volume_type, have.volume_type)
        for attr in ("iops", "volume_size", "snapshot_id"):
            value: Optional[Any] = getattr(want, attr)
            if value:
                _compare(drift, f"{prefix}.{attr}", value, getattr(have, attr))
        if want.encrypted:
            _compare(drift, f"{prefix}.encrypted", True, have.encrypted)
