"""Thin adapter exposing the EC2 image operations the reconciler consumes."""

from typing import Any, Dict, Iterable, Optional
from botocore.exceptions import ClientError

from amiforge.utils.errors import ResourceNotFoundError, error_code
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)

IMAGE_NOT_FOUND_CODES = {'InvalidAMIID.NotFound', 'InvalidAMIID.Unavailable'}
SNAPSHOT_NOT_FOUND_CODES = {'InvalidSnapshot.NotFound'}


class EC2ImageClient:
    """Image, snapshot and tag calls against one EC2 client."""

    def __init__(self, ec2_client):
        """Initialize the adapter.

        Args:
            ec2_client: boto3 EC2 client
        """
        self.ec2_client = ec2_client

    def register_image(self, request: Dict[str, Any]) -> str:
        """Register an image from a RegisterImage request.

        Returns:
            The new image id
        """
        response = self.ec2_client.register_image(**request)
        image_id = response['ImageId']
        logger.info(f"Registered AMI {image_id} ({request.get('Name')})")
        return image_id

    def copy_image(
        self,
        name: str,
        source_image_id: str,
        source_region: str,
        description: str = '',
        encrypted: bool = False,
        kms_key_id: Optional[str] = None
    ) -> str:
        """Copy an image into this client's region.

        Returns:
            The new image id
        """
        params = {
            'Name': name,
            'SourceImageId': source_image_id,
            'SourceRegion': source_region,
            'Encrypted': encrypted,
        }
        if description:
            params['Description'] = description
        if kms_key_id:
            params['KmsKeyId'] = kms_key_id

        response = self.ec2_client.copy_image(**params)
        image_id = response['ImageId']
        logger.info(f"Copying AMI {source_image_id} from {source_region} as {image_id}")
        return image_id

    def create_image(
        self,
        name: str,
        instance_id: str,
        description: str = '',
        no_reboot: bool = False
    ) -> str:
        """Create an image from an instance.

        Returns:
            The new image id
        """
        params = {
            'Name': name,
            'InstanceId': instance_id,
            'NoReboot': no_reboot,
        }
        if description:
            params['Description'] = description

        response = self.ec2_client.create_image(**params)
        image_id = response['ImageId']
        logger.info(f"Creating AMI {image_id} from instance {instance_id}")
        return image_id

    def describe_image(self, image_id: str) -> Dict[str, Any]:
        """Describe a single image.

        Raises:
            ResourceNotFoundError: If EC2 does not report the image
        """
        try:
            response = self.ec2_client.describe_images(ImageIds=[image_id])
        except ClientError as e:
            if error_code(e) in IMAGE_NOT_FOUND_CODES:
                raise ResourceNotFoundError(f"AMI {image_id} not found", cause=e)
            raise

        images = response.get('Images') or []
        if len(images) != 1:
            raise ResourceNotFoundError(f"AMI {image_id} not found")
        return images[0]

    def deregister_image(self, image_id: str) -> None:
        self.ec2_client.deregister_image(ImageId=image_id)
        logger.info(f"Deregistered AMI {image_id}")

    def modify_description(self, image_id: str, description: str) -> None:
        self.ec2_client.modify_image_attribute(
            ImageId=image_id,
            Description={'Value': description}
        )
        logger.info(f"Updated description of AMI {image_id}")

    def delete_snapshot(self, snapshot_id: str) -> None:
        self.ec2_client.delete_snapshot(SnapshotId=snapshot_id)
        logger.info(f"Deleted snapshot {snapshot_id}")

    def list_tags(self, image_id: str) -> Dict[str, str]:
        response = self.ec2_client.describe_tags(
            Filters=[{'Name': 'resource-id', 'Values': [image_id]}]
        )
        return {tag['Key']: tag['Value'] for tag in response.get('Tags', [])}

    def apply_tags(self, image_id: str, tags: Dict[str, str]) -> None:
        self.ec2_client.create_tags(
            Resources=[image_id],
            Tags=[{'Key': k, 'Value': v} for k, v in tags.items()]
        )

    def remove_tags(self, image_id: str, keys: Iterable[str]) -> None:
        self.ec2_client.delete_tags(
            Resources=[image_id],
            Tags=[{'Key': k} for k in keys]
        )
