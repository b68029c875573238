"""Transactional executor: runs a transfer plan to Applied or fully rolled back."""

from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from stackshift.orchestrator.locator import StateLocator
from stackshift.orchestrator.models import OwnershipChange, PlanStatus, TransferPhase, TransferPlan
from stackshift.state.backend import StateBackend
from stackshift.state.mutation import StateMutation
from stackshift.state.ownership import OwnershipRegistry
from stackshift.utils.errors import (
    CompatibilityError,
    ConflictError,
    ErrorContext,
    RefactorError,
    ResourceNotFoundError,
    RollbackFailure,
    StateError,
    error_handler,
)
from stackshift.utils.logging import LogContext, get_logger
from stackshift.utils.retry import RetryStrategy

logger = get_logger(__name__)


@dataclass
class _TransferRun:
    """Working set for one pass of the executor over a plan."""

    plan: TransferPlan
    source: StateBackend
    destination: StateBackend
    failure: Optional[Exception] = None
    raise_failure: bool = True

    def fail(self, error: Exception) -> None:
        self.failure = error
        self.plan.error = f"{type(error).__name__}: {error}"


class TransferExecutor:
    """Applies a plan's remove/import pair with rollback on failure.

    Success path: pending -> removing -> removed -> importing -> applied.
    Failure paths roll back through rollback_import and rollback_remove to
    pending with status rolled_back. The provider resource itself is never
    touched; only the two state documents change.
    """

    def __init__(
        self,
        locator: StateLocator,
        mutation: StateMutation,
        ownership: OwnershipRegistry,
        retry_strategy: Optional[RetryStrategy] = None,
        lock_timeout: float = 30.0,
        checkpoint: Optional[Callable[[TransferPlan], None]] = None
    ):
        """Initialize transfer executor.

        Args:
            locator: Resolves plan locators to backends and provider queries
            mutation: The remove/import primitives
            ownership: Registry updated when a transfer is applied
            retry_strategy: Retry policy for transient backend/provider failures
            lock_timeout: Seconds to wait for each backend lock per attempt
            checkpoint: Called with the plan after every phase change so an
                interrupted transfer can be resumed by another process
        """
        self.locator = locator
        self.mutation = mutation
        self.ownership = ownership
        self.retry = retry_strategy or RetryStrategy()
        self.lock_timeout = lock_timeout
        self.checkpoint = checkpoint
        self.logger = get_logger(__name__)

        self._steps: Dict[TransferPhase, Callable[[_TransferRun], None]] = {
            TransferPhase.PENDING: self._start,
            TransferPhase.REMOVING: self._remove,
            TransferPhase.REMOVED: self._after_remove,
            TransferPhase.IMPORTING: self._import,
            TransferPhase.ROLLBACK_IMPORT: self._rollback_import,
            TransferPhase.ROLLBACK_REMOVE: self._rollback_remove,
        }

    def execute(self, plan: TransferPlan) -> TransferPlan:
        """Run a pending plan.

        Returns:
            The plan, with status APPLIED

        Raises:
            ConflictError: If the plan already finished or is mid-transfer
            RollbackFailure: If the source could not be restored after a failure
            Exception: The original failure, after the source was restored
                (plan status ROLLED_BACK)
        """
        if plan.is_terminal():
            raise ConflictError(
                f"Plan {plan.plan_id} already finished as {plan.status.value}",
                context=self._context(plan, "execute"),
            )
        if plan.phase != TransferPhase.PENDING:
            raise ConflictError(
                f"Plan {plan.plan_id} is mid-transfer ({plan.phase.value}); use resume",
                context=self._context(plan, "execute"),
            )
        return self._drive(plan, resuming=False)

    def resume(self, plan: TransferPlan) -> TransferPlan:
        """Drive an interrupted plan to a terminal status.

        A plan left in a rollback phase (after RollbackFailure) continues its
        rollback. A plan interrupted mid-remove or mid-import is rolled back.
        A plan whose remove committed without error continues to import.
        Does not raise for a completed rollback; inspect ``plan.status``.

        Raises:
            RollbackFailure: If the rollback still cannot complete
        """
        if plan.is_terminal():
            return plan
        return self._drive(plan, resuming=True)

    def _drive(self, plan: TransferPlan, resuming: bool) -> TransferPlan:
        with LogContext(self.logger, plan_id=plan.plan_id, resource_key=plan.resource_key):
            with ExitStack() as locks:
                self._acquire_locks(plan, locks)
                # Runs before the unlock callbacks
                locks.callback(self._settle_io)
                run = _TransferRun(
                    plan=plan,
                    source=self.locator.backend_for(plan.source),
                    destination=self.locator.backend_for(plan.destination),
                    raise_failure=not resuming,
                )
                if resuming:
                    self._prepare_resume(run)

                try:
                    while not plan.is_terminal():
                        self._steps[plan.phase](run)
                        self._checkpoint(plan)
                except Exception:
                    self._checkpoint(plan, raising=False)
                    raise

        if plan.status == PlanStatus.APPLIED:
            self.logger.info(f"Plan {plan.plan_id} applied: {plan.source} -> {plan.destination}")
        else:
            self.logger.warning(f"Plan {plan.plan_id} rolled back: {plan.error}")
            if run.failure is not None and run.raise_failure:
                raise run.failure
        return plan

    def _acquire_locks(self, plan: TransferPlan, locks: ExitStack) -> None:
        # Sorted order so two executors never wait on each other
        for key in sorted(set(plan.scope) | {plan.source.deployment_key, plan.destination.deployment_key}):
            backend = self.locator.backend_for_key(key)
            self.retry.retry_without_timeout(backend.lock, self.lock_timeout)
            locks.callback(backend.unlock)

    def _prepare_resume(self, run: _TransferRun) -> None:
        plan = run.plan
        interrupted = StateError(
            f"Plan {plan.plan_id} was interrupted during {plan.phase.value}",
            context=self._context(plan, "resume"),
        )
        if plan.phase == TransferPhase.REMOVING:
            run.fail(interrupted)
            plan.source_touched = True
            plan.advance(TransferPhase.ROLLBACK_REMOVE, note="resumed after interruption")
        elif plan.phase == TransferPhase.IMPORTING:
            run.fail(interrupted)
            plan.source_touched = True
            plan.advance(TransferPhase.ROLLBACK_IMPORT, note="resumed after interruption")
        elif plan.error is not None:
            run.failure = StateError(plan.error, context=self._context(plan, "resume"))

    # -- success path -------------------------------------------------------

    def _start(self, run: _TransferRun) -> None:
        run.plan.advance(TransferPhase.REMOVING)

    def _remove(self, run: _TransferRun) -> None:
        plan = run.plan
        try:
            self._verify_unchanged(run)

            query = self.locator.provider_query_for(plan.source)
            if self.retry.execute_with_retry(query.describe, plan.resource_type, plan.provider_id) is None:
                raise ResourceNotFoundError(
                    f"{plan.provider_id} no longer exists at the provider; refusing to move it",
                    context=self._context(plan, "remove", source=True),
                )

            plan.source_touched = True
            self.retry.execute_with_retry(
                self.mutation.remove, run.source, plan.source.component_id, plan.source.resource_address
            )
        except Exception as e:
            self.logger.error(f"Remove from {plan.source} failed: {e}")
            run.fail(e)
            plan.advance(TransferPhase.ROLLBACK_REMOVE, note=str(e))
            return

        plan.advance(TransferPhase.REMOVED)

    def _after_remove(self, run: _TransferRun) -> None:
        if run.failure is not None:
            run.plan.advance(TransferPhase.ROLLBACK_REMOVE)
        else:
            run.plan.advance(TransferPhase.IMPORTING)

    def _import(self, run: _TransferRun) -> None:
        plan = run.plan
        instance = plan.snapshot.model_copy(deep=True)
        instance.address = plan.destination.resource_address
        instance.metadata.update({"moved_from": str(plan.source), "plan_id": plan.plan_id})

        try:
            imported = self.retry.execute_with_retry(
                self.mutation.import_resource, run.destination, plan.destination.component_id, instance
            )
            if plan.preserve_id and imported.provider_id != plan.provider_id:
                raise CompatibilityError(
                    f"Import produced {imported.provider_id}, expected {plan.provider_id}",
                    mismatches={"provider_id": (plan.provider_id, imported.provider_id)},
                    context=self._context(plan, "import"),
                )
            self._record_ownership(plan, imported.resource_key)
        except Exception as e:
            self.logger.error(f"Import into {plan.destination} failed: {e}")
            run.fail(e)
            plan.advance(TransferPhase.ROLLBACK_IMPORT, note=str(e))
            return

        plan.advance(TransferPhase.APPLIED)
        plan.status = PlanStatus.APPLIED

    def _verify_unchanged(self, run: _TransferRun) -> None:
        plan = run.plan
        current = run.source.read().get_resource(plan.source.component_id, plan.source.resource_address)
        if current is None or current.resource_key != plan.resource_key:
            raise ConflictError(
                f"Source changed since plan {plan.plan_id} was made",
                context=self._context(plan, "remove", source=True),
            )
        occupant = run.destination.read().get_resource(
            plan.destination.component_id, plan.destination.resource_address
        )
        if occupant is not None:
            raise ConflictError(
                f"Destination became occupied by {occupant.provider_id} since plan {plan.plan_id} was made",
                context=self._context(plan, "remove"),
            )

    def _record_ownership(self, plan: TransferPlan, imported_key: str) -> None:
        key = plan.resource_key
        source_key = plan.source.deployment_key
        destination_key = plan.destination.deployment_key
        owner = self.ownership.owner_of(key)

        if owner not in (None, source_key, destination_key):
            raise ConflictError(
                f"{key} became owned by {owner} during the transfer",
                context=self._context(plan, "import"),
            )

        if imported_key != key:
            # Identity changed on import (preserve_id off): the old key no longer exists
            new_owner = self.ownership.owner_of(imported_key)
            if new_owner not in (None, destination_key):
                raise ConflictError(
                    f"{imported_key} is already owned by {new_owner}",
                    context=self._context(plan, "import"),
                )
            if owner is not None:
                self._change_ownership(plan, OwnershipChange(
                    action="release", resource_key=key, from_deployment=owner
                ))
            if new_owner is None:
                self._change_ownership(plan, OwnershipChange(
                    action="claim", resource_key=imported_key, to_deployment=destination_key
                ))
            return

        if owner is None:
            self._change_ownership(plan, OwnershipChange(
                action="claim", resource_key=key, to_deployment=destination_key
            ))
        elif owner != destination_key:
            self._change_ownership(plan, OwnershipChange(
                action="transfer", resource_key=key, from_deployment=source_key, to_deployment=destination_key
            ))

    def _change_ownership(self, plan: TransferPlan, change: OwnershipChange) -> None:
        # Logged before it is applied; undoing a change that never landed is a no-op
        plan.ownership_changes.append(change)
        self._checkpoint(plan)

        if change.action == "claim":
            self.ownership.claim(change.resource_key, change.to_deployment)
        elif change.action == "transfer":
            self.ownership.transfer(change.resource_key, change.from_deployment, change.to_deployment)
        else:
            self.ownership.release(change.resource_key, change.from_deployment)

    # -- rollback path ------------------------------------------------------

    def _rollback_import(self, run: _TransferRun) -> None:
        plan = run.plan
        self._settle_io()
        try:
            current = run.destination.read().get_resource(
                plan.destination.component_id, plan.destination.resource_address
            )
            written_here = current is not None and current.metadata.get("plan_id") == plan.plan_id
            if current is not None and (current.resource_key == plan.resource_key or written_here):
                self.retry.execute_with_retry(
                    self.mutation.remove,
                    run.destination,
                    plan.destination.component_id,
                    plan.destination.resource_address,
                )
            self._undo_ownership(plan)
        except Exception as e:
            self._escalate(run, "clear the partial import from the destination", e)

        plan.advance(TransferPhase.REMOVED, note="destination cleared")

    def _undo_ownership(self, plan: TransferPlan) -> None:
        for change in reversed(plan.ownership_changes):
            owner = self.ownership.owner_of(change.resource_key)
            if change.action == "claim" and owner == change.to_deployment:
                self.ownership.release(change.resource_key, change.to_deployment)
            elif change.action == "transfer" and owner == change.to_deployment:
                self.ownership.transfer(change.resource_key, change.to_deployment, change.from_deployment)
            elif change.action == "release" and owner is None:
                self.ownership.claim(change.resource_key, change.from_deployment)
        if plan.ownership_changes:
            self.logger.info(f"Reverted {len(plan.ownership_changes)} ownership change(s) for plan {plan.plan_id}")
        plan.ownership_changes = []

    def _rollback_remove(self, run: _TransferRun) -> None:
        plan = run.plan
        if not plan.source_touched:
            plan.advance(TransferPhase.PENDING, note="source untouched")
            plan.status = PlanStatus.ROLLED_BACK
            return

        self._settle_io()
        try:
            current = run.source.read().get_resource(plan.source.component_id, plan.source.resource_address)
            if current is None:
                self.retry.execute_with_retry(
                    self.mutation.import_resource, run.source, plan.source.component_id, plan.snapshot
                )
                self.logger.info(f"Restored {plan.provider_id} at {plan.source}")
            elif current.resource_key != plan.resource_key:
                raise ConflictError(
                    f"Source address now holds {current.provider_id}",
                    context=self._context(plan, "rollback", source=True),
                )
        except Exception as e:
            self._escalate(run, "restore the source", e)

        plan.advance(TransferPhase.PENDING, note="source restored")
        plan.status = PlanStatus.ROLLED_BACK

    def _escalate(self, run: _TransferRun, action: str, error: Exception) -> None:
        plan = run.plan
        original = run.failure
        failure = RollbackFailure(
            f"Could not {action} for plan {plan.plan_id}; {plan.resource_key} may be unmanaged. "
            f"Original failure: {original}",
            context=self._context(plan, "rollback", source=True),
            cause=error,
            suggestions=[
                f"Inspect the state of {plan.source.deployment_key} and {plan.destination.deployment_key}",
                f"Run 'stackshift resume {plan.plan_id}' once both backends are reachable",
            ],
        )
        plan.error = f"{type(failure).__name__}: {failure.message}"
        error_handler.log_error(failure)
        raise failure from error

    # -- bookkeeping --------------------------------------------------------

    def _checkpoint(self, plan: TransferPlan, raising: bool = True) -> None:
        if self.checkpoint is None:
            return
        try:
            self.checkpoint(plan)
        except RefactorError as e:
            if raising:
                raise
            self.logger.error(f"Could not checkpoint plan {plan.plan_id}: {e}")

    def _settle_io(self) -> None:
        """Wait for backend calls that timed out but are still running.

        Rollback decisions and lock release both need the state documents
        to have stopped changing underneath them.
        """
        if self.retry.drain(self.retry.io_timeout):
            return
        self.logger.warning("Waiting for a timed-out backend call to finish before continuing")
        self.retry.drain()

    def _context(self, plan: TransferPlan, operation: str, source: bool = False) -> ErrorContext:
        locator = plan.source if source else plan.destination
        return ErrorContext.for_locator(
            locator,
            plan_id=plan.plan_id,
            resource_key=plan.resource_key,
            operation=operation,
        )
