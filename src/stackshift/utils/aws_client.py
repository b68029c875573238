"""AWS session handling for provider queries."""

import boto3
from botocore.config import Config
from typing import Optional, Dict, Any
from dataclasses import dataclass
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AssumeRoleConfig:
    """Configuration for IAM role assumption."""
    role_arn: str
    session_name: str = 'stackshift'
    external_id: Optional[str] = None
    duration_seconds: int = 3600


class AWSClientManager:
    """Manages a boto3 session and cached clients for one deployment.

    Provider queries only read. When a role is configured it is assumed once
    and every client is built from the assumed-role session.
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        assume_role_config: Optional[AssumeRoleConfig] = None,
        connect_timeout: int = 10,
        read_timeout: int = 30
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            assume_role_config: Role to assume before querying
            connect_timeout: Socket connect timeout in seconds
            read_timeout: Socket read timeout in seconds
        """
        self.profile = profile
        self.region = region
        self.assume_role_config = assume_role_config
        self._session: Optional[boto3.Session] = None
        self._assumed_session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        # Throttling is retried by RetryStrategy, so botocore gets one attempt
        self._boto_config = Config(
            retries={'mode': 'standard', 'max_attempts': 1},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create the base boto3 session."""
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
        """Get a cached boto3 client, assuming the configured role first.

        Args:
            service_name: AWS service name (e.g., 'ec2', 's3')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        session = self.session
        if self.assume_role_config is not None:
            session = self._assume_role()

        client = session.client(service_name, config=self._boto_config)
        self._clients[service_name] = client
        logger.debug(f"Created {service_name} client")
        return client

    def _assume_role(self) -> boto3.Session:
        if self._assumed_session is not None:
            return self._assumed_session

        config = self.assume_role_config
        logger.info(f"Assuming IAM role: {config.role_arn}")

        params = {
            'RoleArn': config.role_arn,
            'RoleSessionName': config.session_name,
            'DurationSeconds': config.duration_seconds
        }
        if config.external_id:
            params['ExternalId'] = config.external_id

        sts = self.session.client('sts', config=self._boto_config)
        credentials = sts.assume_role(**params)['Credentials']

        self._assumed_session = boto3.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=self.region or self.session.region_name
        )
        return self._assumed_session

    def clear_cache(self):
        """Clear cached clients and sessions."""
        self._clients.clear()
        self._session = None
        self._assumed_session = None
        logger.debug("Cleared AWS client cache")
