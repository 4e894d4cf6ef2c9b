"""Creation variants sharing one reconciler.

Each strategy only decides how the image comes into existence and whether
the snapshots behind it belong to the image. Read, update and delete are the
same for all of them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from amiforge.config.models import ImageConfig
from amiforge.utils.logging import get_logger
from .client import EC2ImageClient
from .translator import to_remote_request

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreateResult:
    """Outcome of a create call."""
    image_id: str
    manage_ebs_snapshots: bool


class CreateStrategy(ABC):
    """Produces a new image id and the snapshot ownership flag."""

    name = "abstract"

    def prepare(self, config: ImageConfig) -> None:
        """Validate the configuration before any remote call.

        Raises:
            ConfigurationError: If the configuration cannot be sent
        """

    @abstractmethod
    def create(self, client: EC2ImageClient, config: ImageConfig) -> CreateResult:
        """Issue the remote create call.

        Args:
            client: Remote image client
            config: Declared configuration

        Returns:
            CreateResult for the new image
        """
        pass


class RegisterImageStrategy(CreateStrategy):
    """Register an image from declared block devices.

    The snapshots it references are managed elsewhere.
    """

    name = "register"

    def prepare(self, config: ImageConfig) -> None:
        to_remote_request(config)

    def create(self, client: EC2ImageClient, config: ImageConfig) -> CreateResult:
        request = to_remote_request(config)
        return CreateResult(client.register_image(request), manage_ebs_snapshots=False)


class CopyImageStrategy(CreateStrategy):
    """Copy an existing image; the copy's snapshots are new and owned."""

    name = "copy"

    def create(self, client: EC2ImageClient, config: ImageConfig) -> CreateResult:
        source = config.copy_from
        image_id = client.copy_image(
            name=config.name,
            source_image_id=source.source_image_id,
            source_region=source.source_region,
            description=config.description,
            encrypted=source.encrypted,
            kms_key_id=source.kms_key_id,
        )
        return CreateResult(image_id, manage_ebs_snapshots=True)


class InstanceImageStrategy(CreateStrategy):
    """Snapshot an instance into an image; the snapshots are new and owned."""

    name = "from_instance"

    def create(self, client: EC2ImageClient, config: ImageConfig) -> CreateResult:
        source = config.from_instance
        image_id = client.create_image(
            name=config.name,
            instance_id=source.instance_id,
            description=config.description,
            no_reboot=source.snapshot_without_reboot,
        )
        return CreateResult(image_id, manage_ebs_snapshots=True)


def strategy_for(config: ImageConfig) -> CreateStrategy:
    """Select the creation variant declared by the configuration."""
    if config.copy_from is not None:
        return CopyImageStrategy()
    if config.from_instance is not None:
        return InstanceImageStrategy()
    return RegisterImageStrategy()
