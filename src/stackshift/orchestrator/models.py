"""Locators and transfer plans."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stackshift.state.models import ResourceInstance, resource_type_of, utcnow


class ResourceLocator(BaseModel):
    """Storage location of one managed resource across the whole hierarchy."""

    model_config = ConfigDict(frozen=True)

    stack_id: str = Field(..., min_length=1)
    deployment_id: str = Field(..., min_length=1)
    component_id: str = Field(..., min_length=1)
    resource_address: str = Field(..., min_length=1)

    @field_validator("resource_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        resource_type_of(v)
        return v

    @property
    def resource_type(self) -> str:
        return resource_type_of(self.resource_address)

    @property
    def deployment_key(self) -> str:
        return f"{self.stack_id}:{self.deployment_id}"

    @classmethod
    def parse(cls, text: str, default_stack: Optional[str] = None) -> "ResourceLocator":
        """Parse ``stack:deployment:component:address``.

        With a default stack, ``deployment:component:address`` is accepted
        too. Components never contain dots and addresses always do, which
        tells the two forms apart.

        Raises:
            ValueError: If the text is not a locator
        """
        parts = text.strip().split(":")
        if len(parts) >= 3 and "." in parts[2]:
            if default_stack is None:
                raise ValueError(f"Locator {text!r} has no stack and no default stack is configured")
            stack_id = default_stack
            deployment_id, component_id = parts[0], parts[1]
            address = ":".join(parts[2:])
        elif len(parts) >= 4:
            stack_id, deployment_id, component_id = parts[0], parts[1], parts[2]
            address = ":".join(parts[3:])
        else:
            raise ValueError(
                f"Invalid locator {text!r}; expected stack:deployment:component:address"
            )
        return cls(
            stack_id=stack_id,
            deployment_id=deployment_id,
            component_id=component_id,
            resource_address=address,
        )

    def __str__(self) -> str:
        return f"{self.stack_id}:{self.deployment_id}:{self.component_id}:{self.resource_address}"


class PlanStatus(Enum):
    """Lifecycle of a transfer request."""
    PENDING = "pending"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


class TransferPhase(Enum):
    """Executor position within a transfer."""
    PENDING = "pending"
    REMOVING = "removing"
    REMOVED = "removed"
    IMPORTING = "importing"
    APPLIED = "applied"
    ROLLBACK_IMPORT = "rollback_import"
    ROLLBACK_REMOVE = "rollback_remove"


# Allowed phase moves; anything else is a bug in the executor
PHASE_TRANSITIONS = {
    TransferPhase.PENDING: {TransferPhase.REMOVING},
    TransferPhase.REMOVING: {TransferPhase.REMOVED, TransferPhase.ROLLBACK_REMOVE},
    TransferPhase.REMOVED: {TransferPhase.IMPORTING, TransferPhase.ROLLBACK_REMOVE},
    TransferPhase.IMPORTING: {TransferPhase.APPLIED, TransferPhase.ROLLBACK_IMPORT},
    TransferPhase.ROLLBACK_IMPORT: {TransferPhase.REMOVED},
    TransferPhase.ROLLBACK_REMOVE: {TransferPhase.PENDING},
    TransferPhase.APPLIED: set(),
}


class PhaseTransition(BaseModel):
    """One recorded executor step."""

    from_phase: TransferPhase
    to_phase: TransferPhase
    at: datetime = Field(default_factory=utcnow)
    note: Optional[str] = None


class OwnershipChange(BaseModel):
    """One registry change made while applying a plan."""

    action: str = Field(..., pattern="^(claim|transfer|release)$")
    resource_key: str
    from_deployment: Optional[str] = None
    to_deployment: Optional[str] = None


class TransferPlan(BaseModel):
    """A request to move one resource from a source locator to a destination.

    ``snapshot`` is the source entry as it was at plan time; rollback
    re-imports exactly that.
    """

    plan_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    source: ResourceLocator
    destination: ResourceLocator
    preserve_id: bool = True
    status: PlanStatus = PlanStatus.PENDING
    phase: TransferPhase = TransferPhase.PENDING

    resource_type: str
    provider_id: str
    snapshot: ResourceInstance
    scope: List[str] = Field(
        default_factory=list, description="stack:deployment keys locked while executing"
    )
    warnings: List[str] = Field(default_factory=list)
    drift: Dict[str, Tuple[Any, Any]] = Field(
        default_factory=dict, description="Mutable fields that differ: field -> (declared, actual)"
    )
    source_touched: bool = Field(False, description="Set once the remove primitive has been invoked on the source")
    ownership_changes: List[OwnershipChange] = Field(
        default_factory=list, description="Registry changes made by this plan, undone on rollback"
    )
    history: List[PhaseTransition] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def resource_key(self) -> str:
        return f"{self.resource_type}:{self.provider_id}"

    def is_terminal(self) -> bool:
        return self.status in (PlanStatus.APPLIED, PlanStatus.ROLLED_BACK)

    def touches(self, locator: ResourceLocator) -> bool:
        return locator == self.source or locator == self.destination

    def advance(self, phase: TransferPhase, note: Optional[str] = None) -> None:
        """Move to ``phase``, recording the transition.

        Raises:
            ValueError: If the move is not part of the state machine
        """
        if phase not in PHASE_TRANSITIONS[self.phase]:
            raise ValueError(f"Illegal transfer phase change {self.phase.value} -> {phase.value}")
        self.history.append(PhaseTransition(from_phase=self.phase, to_phase=phase, note=note))
        self.phase = phase

    def summary(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "source": str(self.source),
            "destination": str(self.destination),
            "resource_key": self.resource_key,
            "preserve_id": self.preserve_id,
            "status": self.status.value,
            "phase": self.phase.value,
            "scope": list(self.scope),
            "warnings": list(self.warnings),
            "drift": {k: list(v) for k, v in self.drift.items()},
        }
