"""AWS client management and session handling."""

import boto3
from botocore.config import Config
from typing import Optional, Dict, Any
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PARTITION = 'aws'


class AWSClientManager:
    """Manages the boto3 session and cached clients for one region."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 10
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.profile = profile
        self.region = region
        self.max_pool_connections = max_pool_connections
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        # The SDK owns request-level retry and backoff
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'adaptive',
                'max_attempts': 5
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'ec2')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        client = self.session.client(service_name, config=self._boto_config)
        self._clients[service_name] = client

        logger.debug(f"Created {service_name} client")

        return client

    def get_region(self) -> str:
        """Get the AWS region.

        Returns:
            AWS region name

        Raises:
            ValueError: If no region is configured anywhere
        """
        region = self.session.region_name
        if not region:
            raise ValueError("No AWS region configured; pass --region or set AWS_DEFAULT_REGION")
        return region

    def get_partition(self) -> str:
        """Get the partition (aws, aws-cn, aws-us-gov, ...) of the region.

        Returns:
            Partition name used in ARNs
        """
        return self.session.get_partition_for_region(self.get_region()) or DEFAULT_PARTITION

    def clear_cache(self):
        """Clear cached clients and sessions."""
        self._clients.clear()
        self._session = None
        logger.debug("Cleared AWS client cache")
