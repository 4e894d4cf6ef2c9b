"""Base provisioner interface for asynchronously provisioned resources."""

from abc import ABC, abstractmethod
from typing import List, Optional
from dataclasses import dataclass, field
from enum import Enum

from amiforge.config.models import ImageConfig
from amiforge.state.models import FieldDrift, ImageRecord
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)


class ChangeType(Enum):
    """Type of change for a resource."""
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NO_CHANGE = "no_change"


@dataclass
class ProvisionPlan:
    """Plan for reconciling one tracked resource with its declaration."""
    record: ImageRecord
    desired: Optional[ImageConfig]
    change_type: ChangeType
    replace_fields: List[str] = field(default_factory=list)
    drift: List[FieldDrift] = field(default_factory=list)


class BaseProvisioner(ABC):
    """Lifecycle verbs shared by every reconciled resource type."""

    resource_type = "abstract"

    def __init__(self, client):
        """Initialize provisioner with a remote API client.

        Args:
            client: Adapter exposing the remote operations of the resource
        """
        self.client = client

    @abstractmethod
    def plan(self, record: ImageRecord, desired: Optional[ImageConfig]) -> ProvisionPlan:
        """Determine what changes are needed for the resource.

        Args:
            record: Tracked state of the resource
            desired: Declared configuration, None when it should not exist

        Returns:
            ProvisionPlan describing the changes needed
        """
        pass

    @abstractmethod
    def create(self, record: ImageRecord) -> ImageRecord:
        pass

    @abstractmethod
    def read(self, record: ImageRecord):
        pass

    @abstractmethod
    def update(self, record: ImageRecord, new_config: ImageConfig):
        pass

    @abstractmethod
    def delete(self, record: ImageRecord) -> None:
        pass

    def provision(self, plan: ProvisionPlan) -> ImageRecord:
        """Execute the provisioning plan.

        Args:
            plan: The provisioning plan to execute

        Returns:
            The reconciled record
        """
        record = plan.record
        logger.info(f"{plan.change_type.value}: {self.resource_type} '{record.name}'")

        if plan.change_type == ChangeType.CREATE:
            record.config = plan.desired
            return self.create(record)
        elif plan.change_type == ChangeType.UPDATE:
            self.update(record, plan.desired)
        elif plan.change_type == ChangeType.REPLACE:
            self.delete(record)
            record.config = plan.desired
            return self.create(record)
        elif plan.change_type == ChangeType.DELETE:
            self.delete(record)
        else:
            self.read(record)
        return record
