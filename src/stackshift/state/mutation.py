"""Remove-from-state and import-into-state primitives."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from stackshift.state.backend import StateBackend
from stackshift.state.models import ResourceInstance
from stackshift.utils.errors import ConflictError, ErrorContext
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)


class StateMutation(ABC):
    """The two state primitives the executor sequences.

    Implementations only touch state; they never create or destroy the real
    resource. Both calls must be safe to repeat, because a call that timed
    out may have completed anyway.
    """

    @abstractmethod
    def remove(self, backend: StateBackend, component: str, address: str) -> Optional[ResourceInstance]:
        """Forget a resource. Returns what was removed, or None if already absent."""
        pass

    @abstractmethod
    def import_resource(
        self, backend: StateBackend, component: str, resource: ResourceInstance
    ) -> ResourceInstance:
        """Start managing an existing resource at ``resource.address``."""
        pass


class BackendStateMutation(StateMutation):
    """Applies the primitives directly to a StateBackend document.

    The caller must hold the backend's lock.
    """

    def remove(self, backend: StateBackend, component: str, address: str) -> Optional[ResourceInstance]:
        state = backend.read()
        removed = state.remove_resource(component, address)
        if removed is None:
            logger.debug(f"{backend.key}:{component}:{address} already absent")
            return None

        backend.write(state)
        logger.info(f"Removed {address} ({removed.provider_id}) from {backend.key}:{component}")
        return removed

    def import_resource(
        self, backend: StateBackend, component: str, resource: ResourceInstance
    ) -> ResourceInstance:
        """
        Raises:
            ConflictError: If the address already holds a different resource
        """
        state = backend.read()
        existing = state.get_resource(component, resource.address)
        if existing is not None:
            if existing.resource_key == resource.resource_key:
                logger.debug(f"{resource.address} already imported into {backend.key}:{component}")
                return existing
            raise ConflictError(
                f"Address already manages {existing.provider_id}",
                context=ErrorContext(
                    stack_id=backend.stack_id,
                    deployment_id=backend.deployment_id,
                    component_id=component,
                    resource_address=resource.address,
                    operation="import",
                ),
            )

        imported = resource.model_copy(deep=True)
        imported.metadata["imported_at"] = datetime.now(timezone.utc).isoformat()
        state.add_resource(component, imported)
        backend.write(state)
        logger.info(f"Imported {imported.provider_id} as {imported.address} into {backend.key}:{component}")
        return imported
