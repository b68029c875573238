"""Resolves locators across the stack/deployment/component hierarchy."""

from typing import Callable, Dict, Optional, Tuple

from stackshift.config.models import DeploymentConfig
from stackshift.config.parser import Config
from stackshift.orchestrator.models import ResourceLocator
from stackshift.providers import aws_provider_query
from stackshift.providers.base import ProviderQuery
from stackshift.state.backend import FileStateBackend, StateBackend
from stackshift.state.models import ResourceInstance
from stackshift.utils.aws_client import AWSClientManager, AssumeRoleConfig
from stackshift.utils.errors import (
    DeploymentNotFoundError,
    ErrorContext,
    ResourceNotFoundError,
    StackNotFoundError,
)
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)

BackendFactory = Callable[[str, DeploymentConfig], StateBackend]
QueryFactory = Callable[[str, DeploymentConfig], ProviderQuery]


class StateLocator:
    """Maps locators to the single backend (and provider query) of their deployment.

    Resolution never changes state. Handles are created lazily and cached,
    so each deployment is represented by exactly one backend object.
    """

    def __init__(
        self,
        config: Config,
        backend_factory: Optional[BackendFactory] = None,
        query_factory: Optional[QueryFactory] = None,
        profile: Optional[str] = None
    ):
        """
        Args:
            config: Loaded configuration
            backend_factory: Builds a backend for (stack, deployment); file backends by default
            query_factory: Builds a provider query for (stack, deployment); boto3 by default
            profile: AWS profile overriding every deployment's own
        """
        self.config = config
        self._backend_factory = backend_factory or self._file_backend
        self._query_factory = query_factory or self._aws_query
        self.profile = profile
        self._backends: Dict[str, StateBackend] = {}
        self._queries: Dict[str, ProviderQuery] = {}

    def parse(self, text: str) -> ResourceLocator:
        """Parse a textual locator using the configured default stack."""
        return ResourceLocator.parse(text, default_stack=self.config.default_stack)

    def deployment_config(self, stack_id: str, deployment_id: str) -> DeploymentConfig:
        """
        Raises:
            StackNotFoundError: If the stack is not configured
            DeploymentNotFoundError: If the stack has no such deployment
        """
        stack = self.config.stacks.get(stack_id)
        if stack is None:
            raise StackNotFoundError(
                f"Unknown stack '{stack_id}'",
                context=ErrorContext(stack_id=stack_id, operation="resolve"),
                suggestions=[f"Configured stacks: {', '.join(sorted(self.config.stacks)) or 'none'}"],
            )

        deployment = stack.deployments.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(
                f"Stack '{stack_id}' has no deployment '{deployment_id}'",
                context=ErrorContext(stack_id=stack_id, deployment_id=deployment_id, operation="resolve"),
                suggestions=[f"Deployments of {stack_id}: {', '.join(sorted(stack.deployments))}"],
            )
        return deployment

    def backend_for_key(self, deployment_key: str) -> StateBackend:
        """Backend for a ``stack:deployment`` key."""
        stack_id, _, deployment_id = deployment_key.partition(":")
        return self._backend(stack_id, deployment_id)

    def backend_for(self, locator: ResourceLocator) -> StateBackend:
        """Backend of the locator's deployment, without requiring the resource."""
        return self._backend(locator.stack_id, locator.deployment_id)

    def resolve(self, locator: ResourceLocator) -> StateBackend:
        """
        Resolve a locator to its backend, requiring the resource to be in state.

        Raises:
            StackNotFoundError, DeploymentNotFoundError, ResourceNotFoundError
        """
        backend, _ = self.find(locator)
        return backend

    def find(self, locator: ResourceLocator) -> Tuple[StateBackend, ResourceInstance]:
        """
        Resolve a locator and return the stored resource with its backend.

        Raises:
            StackNotFoundError, DeploymentNotFoundError, ResourceNotFoundError
        """
        backend = self.backend_for(locator)
        resource = backend.read().get_resource(locator.component_id, locator.resource_address)
        if resource is None:
            raise ResourceNotFoundError(
                f"{locator.resource_address} is not in the state of {locator.deployment_key}",
                context=ErrorContext.for_locator(locator, operation="resolve"),
            )
        return backend, resource

    def is_occupied(self, locator: ResourceLocator) -> Optional[ResourceInstance]:
        """The resource currently stored at the locator, if any."""
        backend = self.backend_for(locator)
        return backend.read().get_resource(locator.component_id, locator.resource_address)

    def declaration_for(self, locator: ResourceLocator) -> Optional[dict]:
        """Declared configuration of the locator's address, if configured."""
        deployment = self.deployment_config(locator.stack_id, locator.deployment_id)
        return deployment.declaration(locator.component_id, locator.resource_address)

    def provider_query_for(self, locator: ResourceLocator) -> ProviderQuery:
        """Provider query using the credentials of the locator's deployment."""
        key = locator.deployment_key
        if key not in self._queries:
            deployment = self.deployment_config(locator.stack_id, locator.deployment_id)
            self._queries[key] = self._query_factory(locator.stack_id, deployment)
        return self._queries[key]

    def _backend(self, stack_id: str, deployment_id: str) -> StateBackend:
        key = f"{stack_id}:{deployment_id}"
        if key not in self._backends:
            deployment = self.deployment_config(stack_id, deployment_id)
            self._backends[key] = self._backend_factory(stack_id, deployment)
            logger.debug(f"Resolved {key} to {self._backends[key]!r}")
        return self._backends[key]

    def _file_backend(self, stack_id: str, deployment: DeploymentConfig) -> StateBackend:
        path = self.config.state_path_for(stack_id, deployment)
        return FileStateBackend(stack_id, deployment.name, str(path))

    def _aws_query(self, stack_id: str, deployment: DeploymentConfig) -> ProviderQuery:
        assume_role = None
        if deployment.role_arn:
            assume_role = AssumeRoleConfig(
                role_arn=deployment.role_arn,
                session_name=f"stackshift-{stack_id}-{deployment.name}",
            )
        project_region = self.config.project.region if self.config.project else None
        client_manager = AWSClientManager(
            profile=self.profile or deployment.profile,
            region=deployment.region or project_region,
            assume_role_config=assume_role,
        )
        return aws_provider_query(client_manager)
