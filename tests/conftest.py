"""Shared fixtures: an in-memory EC2 double and a controllable clock."""

import copy
from typing import Any, Dict, List, Tuple

import pytest
from botocore.exceptions import ClientError

from amiforge.config.models import ImageConfig, TimeoutsConfig
from amiforge.provisioners.client import EC2ImageClient
from amiforge.provisioners.image import ImageProvisioner
from amiforge.state.models import ImageRecord

REGISTER_SCALAR_KEYS = (
    "Name",
    "Description",
    "Architecture",
    "ImageLocation",
    "KernelId",
    "RamdiskId",
    "RootDeviceName",
    "SriovNetSupport",
    "VirtualizationType",
    "EnaSupport",
)


def client_error(code: str, operation: str, message: str = "simulated failure") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"RequestId": "req-123"}},
        operation,
    )


class FakeEC2:
    """Just enough of the boto3 EC2 client for image lifecycle tests.

    ``states`` scripts the State reported by successive describe calls; the
    last entry repeats. Deregistered images disappear immediately.
    """

    def __init__(self):
        self.images: Dict[str, Dict[str, Any]] = {}
        self.states: Dict[str, List[str]] = {}
        self.not_found_reads: Dict[str, int] = {}
        self.snapshot_failures: Dict[str, Exception] = {}
        self.failures: Dict[str, Exception] = {}
        self.copy_mappings: List[Dict[str, Any]] = []
        self.deleted_snapshots: List[str] = []
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._counter = 0

    # helpers

    def add_image(self, image_id=None, states=("available",), **fields) -> str:
        if image_id is None:
            self._counter += 1
            image_id = f"ami-{self._counter:08d}"
        image = {
            "ImageId": image_id,
            "Name": "existing-image",
            "Architecture": "x86_64",
            "BlockDeviceMappings": [],
            "Tags": [],
        }
        image.update(fields)
        self.images[image_id] = image
        self.states[image_id] = list(states)
        return image_id

    def script(self, image_id: str, *states: str) -> None:
        self.states[image_id] = list(states)

    def called(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _record(self, method: str, kwargs: Dict[str, Any]) -> None:
        self.calls.append((method, copy.deepcopy(kwargs)))
        if method in self.failures:
            raise self.failures[method]

    # image calls

    def register_image(self, **kwargs):
        self._record("register_image", kwargs)
        mappings = []
        for mapping in kwargs.get("BlockDeviceMappings", []):
            if "Ebs" in mapping:
                requested = mapping["Ebs"]
                ebs = {
                    "DeleteOnTermination": requested["DeleteOnTermination"],
                    "VolumeType": requested["VolumeType"],
                    "Encrypted": requested.get("Encrypted", False),
                }
                for key in ("Iops", "SnapshotId", "VolumeSize"):
                    if key in requested:
                        ebs[key] = requested[key]
                mappings.append({"DeviceName": mapping["DeviceName"], "Ebs": ebs})
            else:
                mappings.append(dict(mapping))

        fields = {key: kwargs[key] for key in REGISTER_SCALAR_KEYS if key in kwargs}
        image_id = self.add_image(states=("pending", "available"), BlockDeviceMappings=mappings, **fields)
        return {"ImageId": image_id}

    def _add_derived_image(self, kwargs) -> str:
        fields = {
            "Name": kwargs["Name"],
            "RootDeviceName": "/dev/sda1",
            "VirtualizationType": "hvm",
            "SriovNetSupport": "simple",
            "BlockDeviceMappings": copy.deepcopy(self.copy_mappings),
        }
        if "Description" in kwargs:
            fields["Description"] = kwargs["Description"]
        return self.add_image(states=("pending", "available"), **fields)

    def copy_image(self, **kwargs):
        self._record("copy_image", kwargs)
        return {"ImageId": self._add_derived_image(kwargs)}

    def create_image(self, **kwargs):
        self._record("create_image", kwargs)
        return {"ImageId": self._add_derived_image(kwargs)}

    def describe_images(self, ImageIds):
        self._record("describe_images", {"ImageIds": ImageIds})
        image_id = ImageIds[0]
        if self.not_found_reads.get(image_id):
            self.not_found_reads[image_id] -= 1
            raise client_error("InvalidAMIID.NotFound", "DescribeImages")
        if image_id not in self.images:
            raise client_error("InvalidAMIID.NotFound", "DescribeImages")

        states = self.states[image_id]
        state = states.pop(0) if len(states) > 1 else states[0]
        image = copy.deepcopy(self.images[image_id])
        image["State"] = state
        return {"Images": [image]}

    def deregister_image(self, ImageId):
        self._record("deregister_image", {"ImageId": ImageId})
        if ImageId not in self.images:
            raise client_error("InvalidAMIID.NotFound", "DeregisterImage")
        del self.images[ImageId]
        del self.states[ImageId]

    def modify_image_attribute(self, **kwargs):
        self._record("modify_image_attribute", kwargs)
        self.images[kwargs["ImageId"]]["Description"] = kwargs["Description"]["Value"]

    def delete_snapshot(self, SnapshotId):
        self._record("delete_snapshot", {"SnapshotId": SnapshotId})
        if SnapshotId in self.snapshot_failures:
            raise self.snapshot_failures[SnapshotId]
        self.deleted_snapshots.append(SnapshotId)

    # tag calls

    def _tags(self, image_id: str) -> Dict[str, str]:
        return {tag["Key"]: tag["Value"] for tag in self.images[image_id]["Tags"]}

    def _set_tags(self, image_id: str, tags: Dict[str, str]) -> None:
        self.images[image_id]["Tags"] = [{"Key": k, "Value": v} for k, v in tags.items()]

    def create_tags(self, Resources, Tags):
        self._record("create_tags", {"Resources": Resources, "Tags": Tags})
        for image_id in Resources:
            tags = self._tags(image_id)
            tags.update({tag["Key"]: tag["Value"] for tag in Tags})
            self._set_tags(image_id, tags)

    def delete_tags(self, Resources, Tags):
        self._record("delete_tags", {"Resources": Resources, "Tags": Tags})
        for image_id in Resources:
            tags = self._tags(image_id)
            for tag in Tags:
                tags.pop(tag["Key"], None)
            self._set_tags(image_id, tags)

    def describe_tags(self, Filters):
        self._record("describe_tags", {"Filters": Filters})
        image_id = Filters[0]["Values"][0]
        return {
            "Tags": [
                {"Key": k, "Value": v, "ResourceId": image_id, "ResourceType": "image"}
                for k, v in self._tags(image_id).items()
            ]
        }


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_config(**overrides) -> ImageConfig:
    data = {
        "name": "test-image",
        "root_device_name": "/dev/sda1",
        "virtualization_type": "hvm",
        "ebs_block_devices": [
            {"device_name": "/dev/sda1", "volume_size": 8, "volume_type": "gp2"},
        ],
    }
    data.update(overrides)
    return ImageConfig(**data)


@pytest.fixture
def fake_ec2():
    return FakeEC2()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def image_client(fake_ec2):
    return EC2ImageClient(fake_ec2)


@pytest.fixture
def timeouts():
    return TimeoutsConfig(create=600, update=600, delete=900)


@pytest.fixture
def provisioner(image_client, timeouts, clock):
    return ImageProvisioner(
        image_client,
        region="us-east-1",
        timeouts=timeouts,
        clock=clock.monotonic,
        sleep=clock.sleep,
    )


@pytest.fixture
def record():
    return ImageRecord(name="test-image", config=make_config())
