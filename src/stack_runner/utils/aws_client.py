"""AWS client management and session handling."""

import boto3
from botocore.config import Config
from typing import Optional, Dict, Any
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)


class AWSClientManager:
    """Manages boto3 sessions and clients for the control plane and blob store."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_urls: Optional[Dict[str, str]] = None,
        max_attempts: int = 5
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            endpoint_urls: Alternative endpoint per service name, e.g. for LocalStack
            max_attempts: Maximum attempts botocore makes for throttled or transient failures
        """
        self.profile = profile
        self.region = region
        self.endpoint_urls = endpoint_urls or {}
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        self._boto_config = Config(
            retries={
                'mode': 'adaptive',
                'max_attempts': max_attempts
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
            logger.debug(f"Created AWS session - Region: {self._session.region_name}, "
                         f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get a cached boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'cloudformation', 's3')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        kwargs = {'config': self._boto_config}
        if service_name in self.endpoint_urls:
            kwargs['endpoint_url'] = self.endpoint_urls[service_name]

        client = self.session.client(service_name, **kwargs)
        self._clients[service_name] = client

        logger.debug(f"Created {service_name} client")

        return client

    def cloudformation(self):
        """Get the CloudFormation client."""
        return self.get_client('cloudformation')

    def s3(self):
        """Get the S3 client."""
        return self.get_client('s3')
