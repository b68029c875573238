"""Coordinator that wires planning, execution and ownership from configuration."""

from typing import Iterable, List, Optional, Union

from stackshift.config.parser import Config
from stackshift.orchestrator.checkpoint import PlanCheckpointStore
from stackshift.orchestrator.executor import TransferExecutor
from stackshift.orchestrator.locator import BackendFactory, QueryFactory, StateLocator
from stackshift.orchestrator.models import ResourceLocator, TransferPlan
from stackshift.orchestrator.planner import TransferPlanner
from stackshift.state.models import DeploymentState
from stackshift.state.mutation import BackendStateMutation, StateMutation
from stackshift.state.ownership import OwnershipRegistry
from stackshift.utils.errors import ConfigurationError, ErrorContext, NotFoundError
from stackshift.utils.logging import get_logger
from stackshift.utils.retry import RetryStrategy

logger = get_logger(__name__)

LocatorLike = Union[str, ResourceLocator]


class RefactorCoordinator:
    """Plans and applies cross-deployment resource transfers."""

    def __init__(
        self,
        config: Config,
        backend_factory: Optional[BackendFactory] = None,
        query_factory: Optional[QueryFactory] = None,
        mutation: Optional[StateMutation] = None,
        ownership: Optional[OwnershipRegistry] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        profile: Optional[str] = None
    ):
        """Initialize refactor coordinator.

        Args:
            config: Loaded configuration
            backend_factory: Overrides how deployment backends are built
            query_factory: Overrides how provider queries are built
            mutation: Remove/import primitives; applied directly to backends by default
            ownership: Ownership registry; loaded from settings.ownership_file by default
            retry_strategy: Retry policy; built from settings.retry by default
            profile: AWS profile overriding the configured ones
        """
        self.config = config
        settings = config.settings

        if ownership is None:
            path = config.ownership_path()
            ownership = OwnershipRegistry(str(path) if path else None)

        self.locator = StateLocator(config, backend_factory, query_factory, profile=profile)
        self.ownership = ownership
        self.retry = retry_strategy or RetryStrategy.from_config(settings.retry, settings.io_timeout)
        plans_path = config.plans_path()
        checkpoints = PlanCheckpointStore(str(plans_path)) if plans_path else None
        self.planner = TransferPlanner(self.locator, self.ownership, self.retry, checkpoints=checkpoints)
        self.executor = TransferExecutor(
            self.locator,
            mutation or BackendStateMutation(),
            self.ownership,
            retry_strategy=self.retry,
            lock_timeout=settings.lock_timeout,
            checkpoint=self.planner.record,
        )
        self.logger = get_logger(__name__)

    @classmethod
    def from_config_file(cls, config_path: str = "stackshift.yaml", **kwargs) -> "RefactorCoordinator":
        """Load ``config_path`` and build a coordinator from it."""
        return cls(Config(config_path).load(), **kwargs)

    def parse(self, locator: LocatorLike) -> ResourceLocator:
        """
        Raises:
            ConfigurationError: If a textual locator is malformed
        """
        if isinstance(locator, ResourceLocator):
            return locator
        try:
            return self.locator.parse(locator)
        except ValueError as e:
            raise ConfigurationError(
                str(e),
                context=ErrorContext(operation="parse"),
                suggestions=["Write locators as stack:deployment:component:type.name"],
            ) from e

    def plan(
        self,
        source: LocatorLike,
        destination: LocatorLike,
        preserve_id: bool = True,
        scope: Optional[Iterable[str]] = None
    ) -> TransferPlan:
        """Validate a transfer and register it as pending. Nothing is mutated."""
        return self.planner.plan(self.parse(source), self.parse(destination), preserve_id, scope)

    def execute(self, plan: TransferPlan) -> TransferPlan:
        """Apply a pending plan; a rolled back plan re-raises its original failure."""
        try:
            return self.executor.execute(plan)
        finally:
            if plan.is_terminal():
                self.planner.confirm(plan)

    def transfer(
        self,
        source: LocatorLike,
        destination: LocatorLike,
        preserve_id: bool = True,
        scope: Optional[Iterable[str]] = None
    ) -> TransferPlan:
        """Plan and apply in one call."""
        return self.execute(self.plan(source, destination, preserve_id, scope))

    def resume(self, plan_id: str) -> TransferPlan:
        """Finish an in-flight plan, typically one left behind by a RollbackFailure.

        Raises:
            NotFoundError: If no such plan is in flight
            RollbackFailure: If the rollback still cannot complete
        """
        plan = self.planner.get(plan_id)
        if plan is None:
            raise NotFoundError(
                f"No plan {plan_id} is in flight",
                context=ErrorContext(plan_id=plan_id, operation="resume"),
            )
        try:
            return self.executor.resume(plan)
        finally:
            if plan.is_terminal():
                self.planner.confirm(plan)

    def pending_plans(self) -> List[TransferPlan]:
        return self.planner.pending_plans()

    def show(self, deployment_key: str) -> DeploymentState:
        """Current state document of a ``stack:deployment``."""
        backend = self.locator.backend_for_key(deployment_key)
        return self.retry.execute_with_retry(backend.read)

    def close(self) -> None:
        self.retry.shutdown()
