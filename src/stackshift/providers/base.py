"""Read-only provider query interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from stackshift.utils.errors import ConfigurationError


class ProviderQuery(ABC):
    """Fetches the real-world attributes of a resource by provider identifier.

    Queries never modify anything. ``describe`` returns None when the
    provider reports the resource as absent (deleted, terminated).
    """

    @abstractmethod
    def describe(self, resource_type: str, provider_id: str) -> Optional[Dict[str, Any]]:
        """Return normalized attributes, or None if the resource does not exist.

        Attribute names match the declaration schema for the resource type.
        """
        pass

    def exists(self, resource_type: str, provider_id: str) -> bool:
        return self.describe(resource_type, provider_id) is not None


class CompositeProviderQuery(ProviderQuery):
    """Dispatches to a per-resource-type query."""

    def __init__(self, queries: Dict[str, ProviderQuery]):
        """
        Args:
            queries: Resource type (e.g. aws_instance) -> query handling it
        """
        self.queries = dict(queries)

    def supports(self, resource_type: str) -> bool:
        return resource_type in self.queries

    def describe(self, resource_type: str, provider_id: str) -> Optional[Dict[str, Any]]:
        query = self.queries.get(resource_type)
        if query is None:
            raise ConfigurationError(
                f"No provider query registered for resource type '{resource_type}'",
                suggestions=[f"Supported types: {', '.join(sorted(self.queries))}"],
            )
        return query.describe(resource_type, provider_id)
