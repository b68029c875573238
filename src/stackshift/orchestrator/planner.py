"""Transfer planner: validates a refactor request before anything is mutated."""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from stackshift.config.schemas import compare_attributes, validate_declaration
from stackshift.orchestrator.checkpoint import PlanCheckpointStore
from stackshift.orchestrator.locator import StateLocator
from stackshift.orchestrator.models import ResourceLocator, TransferPhase, TransferPlan
from stackshift.state.models import ResourceInstance
from stackshift.state.ownership import OwnershipRegistry
from stackshift.utils.errors import (
    CompatibilityError,
    ConfigurationError,
    ConflictError,
    ErrorContext,
    NotFoundError,
    ResourceNotFoundError,
)
from stackshift.utils.logging import LogContext, get_logger
from stackshift.utils.retry import RetryStrategy

logger = get_logger(__name__)


class TransferPlanner:
    """Creates transfer plans and tracks the ones still in flight.

    Checks run in a fixed order: source exists, destination free, declared
    destination compatible with the real resource, no competing plan. The
    first pending plan on a locator or resource wins; later requests are
    rejected rather than queued.
    """

    def __init__(
        self,
        locator: StateLocator,
        ownership: OwnershipRegistry,
        retry_strategy: Optional[RetryStrategy] = None,
        checkpoints: Optional[PlanCheckpointStore] = None
    ):
        """Initialize transfer planner.

        Args:
            locator: Resolves locators to backends and provider queries
            ownership: Registry consulted for the current owner and readers
            retry_strategy: Retry policy for state reads and provider queries
            checkpoints: Store of started plans; plans found there are in flight
        """
        self.locator = locator
        self.ownership = ownership
        self.retry = retry_strategy or RetryStrategy()
        self.checkpoints = checkpoints
        self._pending: Dict[str, TransferPlan] = {}
        self.logger = get_logger(__name__)

        if checkpoints is not None:
            for plan in checkpoints.list_plans():
                self._pending[plan.plan_id] = plan
                self.logger.warning(
                    f"Plan {plan.plan_id} for {plan.resource_key} was left in {plan.phase.value}; "
                    f"resume it before planning other transfers of it"
                )

    def plan(
        self,
        source: ResourceLocator,
        destination: ResourceLocator,
        preserve_id: bool = True,
        scope: Optional[Iterable[str]] = None
    ) -> TransferPlan:
        """Plan moving the resource at ``source`` to ``destination``.

        Args:
            source: Where the resource is managed now
            destination: Where it should be managed afterwards
            preserve_id: Require the destination to keep the provider identifier
            scope: Extra deployment keys to lock during execution; must
                include both ends when given

        Returns:
            Pending TransferPlan, registered as in flight

        Raises:
            NotFoundError: Source or a scope deployment cannot be resolved
            ConflictError: Destination occupied, competing plan, or foreign owner
            CompatibilityError: Declared destination does not match the resource
            ConfigurationError: Declaration missing a schema or invalid
        """
        with LogContext(self.logger, operation="plan"):
            self.logger.info(f"Planning transfer {source} -> {destination}")

            if source == destination:
                raise ConflictError(
                    "Source and destination are the same location",
                    context=ErrorContext.for_locator(source, operation="plan"),
                )

            resource = self._check_source(source, destination)
            self._check_destination(destination)
            drift = self._check_compatibility(source, destination, resource)
            self._check_pending(source, destination, resource.resource_key)
            self._check_owner(source, resource.resource_key)

            plan = TransferPlan(
                source=source,
                destination=destination,
                preserve_id=preserve_id,
                resource_type=resource.type,
                provider_id=resource.provider_id,
                snapshot=resource,
                scope=self._build_scope(source, destination, resource.resource_key, scope),
                warnings=self._dependency_warnings(source, destination, resource),
                drift=drift,
            )
            self._pending[plan.plan_id] = plan

            for warning in plan.warnings:
                self.logger.warning(warning)
            self.logger.info(
                f"Plan {plan.plan_id} created for {plan.resource_key} "
                f"(scope: {', '.join(plan.scope)})"
            )
            return plan

    def confirm(self, plan: TransferPlan) -> None:
        """Forget a plan that reached a terminal status.

        Raises:
            ConflictError: If the plan is still in flight
        """
        if not plan.is_terminal():
            raise ConflictError(
                f"Plan {plan.plan_id} is still {plan.phase.value}; it must finish before it is confirmed",
                context=ErrorContext.for_locator(plan.source, plan_id=plan.plan_id, operation="confirm"),
            )
        self._pending.pop(plan.plan_id, None)
        if self.checkpoints is not None:
            self.checkpoints.clear(plan.plan_id)
        self.logger.debug(f"Plan {plan.plan_id} confirmed as {plan.status.value}")

    def record(self, plan: TransferPlan) -> None:
        """Checkpoint a plan the executor has moved.

        Plans that were never started stay in memory only. A finished plan
        has its checkpoint removed.

        Raises:
            StateError: If the checkpoint cannot be written
        """
        if self.checkpoints is None:
            return
        if plan.is_terminal():
            self.checkpoints.clear(plan.plan_id)
        elif plan.phase != TransferPhase.PENDING:
            self.checkpoints.save(plan)

    def get(self, plan_id: str) -> Optional[TransferPlan]:
        return self._pending.get(plan_id)

    def pending_plans(self) -> List[TransferPlan]:
        return list(self._pending.values())

    def _check_source(self, source: ResourceLocator, destination: ResourceLocator) -> ResourceInstance:
        try:
            _, resource = self.retry.execute_with_retry(self.locator.find, source)
        except ResourceNotFoundError as e:
            # A re-run of an applied transfer finds the resource already moved
            occupant = self.retry.execute_with_retry(self.locator.is_occupied, destination)
            if occupant is not None:
                raise ConflictError(
                    f"Destination is occupied by {occupant.provider_id} and the source is empty; "
                    f"the transfer appears to be applied already",
                    context=ErrorContext.for_locator(destination, operation="plan"),
                ) from e
            raise
        return resource

    def _check_destination(self, destination: ResourceLocator) -> None:
        occupant = self.retry.execute_with_retry(self.locator.is_occupied, destination)
        if occupant is not None:
            raise ConflictError(
                f"Destination address already manages {occupant.provider_id}",
                context=ErrorContext.for_locator(destination, operation="plan"),
                suggestions=["Choose a free address or remove the existing resource from state first"],
            )

    def _check_compatibility(
        self,
        source: ResourceLocator,
        destination: ResourceLocator,
        resource: ResourceInstance
    ) -> Dict[str, Tuple[Any, Any]]:
        context = ErrorContext.for_locator(destination, operation="plan")

        if destination.resource_type != resource.type:
            raise CompatibilityError(
                f"Cannot move a {resource.type} to a {destination.resource_type} address",
                mismatches={"type": (destination.resource_type, resource.type)},
                context=context,
            )

        declared = self.locator.declaration_for(destination)
        if declared is None:
            raise CompatibilityError(
                f"{destination.resource_address} is not declared in component "
                f"'{destination.component_id}' of {destination.deployment_key}",
                context=context,
                suggestions=[
                    f"Declare {destination.resource_address} under stacks.{destination.stack_id}."
                    f"deployments.{destination.deployment_id}.components.{destination.component_id}"
                ],
            )
        declaration = validate_declaration(resource.type, declared, context=context)

        query = self.locator.provider_query_for(source)
        actual = self.retry.execute_with_retry(query.describe, resource.type, resource.provider_id)
        if actual is None:
            raise ResourceNotFoundError(
                f"{resource.provider_id} no longer exists at the provider",
                context=ErrorContext.for_locator(source, operation="plan"),
                suggestions=["Remove the stale entry from the source state instead of moving it"],
            )

        mismatches, drift = compare_attributes(declaration, actual)
        if mismatches:
            fields = ", ".join(sorted(mismatches))
            raise CompatibilityError(
                f"Declared {destination.resource_address} differs from {resource.provider_id} "
                f"in immutable field(s): {fields}",
                mismatches=mismatches,
                context=context,
            )
        return drift

    def _check_pending(self, source: ResourceLocator, destination: ResourceLocator, resource_key: str) -> None:
        for other in self._pending.values():
            if other.is_terminal():
                continue
            if other.touches(source) or other.touches(destination) or other.resource_key == resource_key:
                raise ConflictError(
                    f"Plan {other.plan_id} ({other.source} -> {other.destination}) is already in flight",
                    context=ErrorContext.for_locator(source, plan_id=other.plan_id, operation="plan"),
                    suggestions=["Wait for the pending plan to finish, then retry"],
                )

    def _check_owner(self, source: ResourceLocator, resource_key: str) -> None:
        owner = self.ownership.owner_of(resource_key)
        if owner is not None and owner != source.deployment_key:
            raise ConflictError(
                f"{resource_key} is owned by {owner}, not {source.deployment_key}",
                context=ErrorContext.for_locator(source, resource_key=resource_key, operation="plan"),
            )

    def _build_scope(
        self,
        source: ResourceLocator,
        destination: ResourceLocator,
        resource_key: str,
        requested: Optional[Iterable[str]]
    ) -> List[str]:
        ends = {source.deployment_key, destination.deployment_key}
        scope = set(ends)

        if requested is not None:
            scope = set(requested)
            missing = ends - scope
            if missing:
                raise ConfigurationError(
                    f"Scope must include both ends of the transfer; missing {', '.join(sorted(missing))}",
                    context=ErrorContext.for_locator(source, operation="plan"),
                )
            # Extras must name configured deployments
            for key in sorted(scope - ends):
                self.locator.backend_for_key(key)

        record = self.ownership.get(resource_key)
        if record is not None:
            for reader in record.readers:
                try:
                    self.locator.backend_for_key(reader)
                except NotFoundError:
                    self.logger.warning(f"Reader {reader} of {resource_key} is not configured; not locking it")
                    continue
                scope.add(reader)
        return sorted(scope)

    def _dependency_warnings(
        self,
        source: ResourceLocator,
        destination: ResourceLocator,
        resource: ResourceInstance
    ) -> List[str]:
        warnings = []

        source_state = self.locator.backend_for(source).read()
        dependents = source_state.get_dependents(source.component_id, source.resource_address)
        if dependents:
            warnings.append(
                f"{', '.join(dependents)} in {source.deployment_key}:{source.component_id} "
                f"still reference {source.resource_address}"
            )

        destination_state = self.locator.backend_for(destination).read()
        component = destination_state.get_component(destination.component_id)
        present = set(component.resources) if component else set()
        missing = sorted(dep for dep in resource.dependencies if dep not in present)
        if missing:
            warnings.append(
                f"{destination.deployment_key}:{destination.component_id} does not manage "
                f"{', '.join(missing)}, which {source.resource_address} depends on"
            )

        return warnings
