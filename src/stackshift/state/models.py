"""State document data models."""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field

STATE_FORMAT_VERSION = "1"

# [module.<name>[idx].]*<type>.<name>[idx]
ADDRESS_RE = re.compile(
    r"^(?:module\.[A-Za-z_][\w-]*(?:\[[^\]]+\])?\.)*"
    r"(?P<type>[a-z][a-z0-9_]*)\.(?P<name>[A-Za-z_][\w-]*)(?:\[[^\]]+\])?$"
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resource_type_of(address: str) -> str:
    """Return the resource type named by an address.

    Raises:
        ValueError: If the address is not a managed resource address
    """
    match = ADDRESS_RE.match(address)
    if match is None:
        raise ValueError(f"Not a resource address: {address!r}")
    return match.group("type")


class ResourceInstance(BaseModel):
    """A real-world resource as recorded in one deployment's state."""

    address: str = Field(..., description="Resource address (e.g., aws_instance.web)")
    type: str = Field(..., description="Provider resource type (e.g., aws_instance)")
    provider_id: str = Field(..., description="Provider-assigned identifier (e.g., i-0abc...)")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Provider-reported attributes at last refresh"
    )
    dependencies: List[str] = Field(
        default_factory=list, description="Addresses in the same component this resource references"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Bookkeeping (import time, originating plan, etc.)"
    )

    @property
    def resource_key(self) -> str:
        """Identity of the real resource, independent of where it is stored."""
        return f"{self.type}:{self.provider_id}"


class Component(BaseModel):
    """A logical grouping of resources within a deployment."""

    name: str = Field(..., description="Component name")
    resources: Dict[str, ResourceInstance] = Field(
        default_factory=dict, description="Resources keyed by address"
    )

    def add_resource(self, resource: ResourceInstance) -> None:
        self.resources[resource.address] = resource

    def remove_resource(self, address: str) -> Optional[ResourceInstance]:
        return self.resources.pop(address, None)

    def get_resource(self, address: str) -> Optional[ResourceInstance]:
        return self.resources.get(address)

    def has_resource(self, address: str) -> bool:
        return address in self.resources

    def list_resources(self) -> List[ResourceInstance]:
        return list(self.resources.values())


class DeploymentState(BaseModel):
    """Persisted record of what one deployment manages.

    ``serial`` increases on every write; ``lineage`` is fixed when the
    document is first created so two unrelated documents are never confused.
    """

    version: str = Field(STATE_FORMAT_VERSION, description="State document format version")
    stack_id: str = Field(..., description="Owning stack")
    deployment_id: str = Field(..., description="Owning deployment")
    serial: int = Field(0, ge=0, description="Write counter")
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    components: Dict[str, Component] = Field(
        default_factory=dict, description="Components keyed by name"
    )

    def get_component(self, name: str) -> Optional[Component]:
        return self.components.get(name)

    def add_resource(self, component: str, resource: ResourceInstance) -> None:
        """Add a resource to a component, creating the component if needed."""
        if component not in self.components:
            self.components[component] = Component(name=component)
        self.components[component].add_resource(resource)
        self.timestamp = utcnow()

    def remove_resource(self, component: str, address: str) -> Optional[ResourceInstance]:
        """Remove a resource from a component.

        Empty components are dropped so the document does not accumulate
        husks after resources move away.
        """
        comp = self.components.get(component)
        if comp is None:
            return None
        resource = comp.remove_resource(address)
        if resource is not None:
            if not comp.resources:
                del self.components[component]
            self.timestamp = utcnow()
        return resource

    def get_resource(self, component: str, address: str) -> Optional[ResourceInstance]:
        comp = self.components.get(component)
        return comp.get_resource(address) if comp else None

    def has_resource(self, component: str, address: str) -> bool:
        return self.get_resource(component, address) is not None

    def all_resources(self) -> List[Tuple[str, ResourceInstance]]:
        """All resources across components with their component names."""
        resources = []
        for name, comp in self.components.items():
            for resource in comp.list_resources():
                resources.append((name, resource))
        return resources

    def find_by_key(self, resource_key: str) -> Optional[Tuple[str, ResourceInstance]]:
        """Locate a resource by its provider identity."""
        for name, resource in self.all_resources():
            if resource.resource_key == resource_key:
                return (name, resource)
        return None

    def get_dependents(self, component: str, address: str) -> List[str]:
        """Addresses in the component that depend on the given address."""
        comp = self.components.get(component)
        if comp is None:
            return []
        return sorted(
            r.address for r in comp.list_resources() if address in r.dependencies
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentState":
        """Create DeploymentState from dictionary."""
        return cls.model_validate(data)
