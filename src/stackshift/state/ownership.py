"""Ownership registry: which single deployment is authoritative for a shared resource."""

import json
from pathlib import Path
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from stackshift.utils.errors import (
    AlreadyOwnedError,
    ErrorContext,
    NotOwnerError,
    StateError,
)
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)


class OwnershipRecord(BaseModel):
    """Owner and readers of one resource key."""

    resource_key: str = Field(..., description="<type>:<provider_id>")
    owning_deployment: str = Field(..., description="stack:deployment that manages the resource")
    readers: Set[str] = Field(default_factory=set, description="Deployments that only read it")


class OwnershipRegistry:
    """Single-writer bookkeeping for resource keys.

    A key has at most one owner. The owner changes only through ``transfer``
    (or ``release`` followed by a fresh ``claim``). Readers come and go
    without touching ownership.

    Every change is saved before it becomes visible: if the file cannot be
    written, the registry keeps its previous records.
    """

    def __init__(self, path: Optional[str] = None):
        """
        Initialize OwnershipRegistry.

        Args:
            path: Optional JSON file to persist records to
        """
        self.path = Path(path) if path else None
        self._records: Dict[str, OwnershipRecord] = {}
        if self.path is not None and self.path.exists():
            self._load()

    def claim(self, resource_key: str, deployment: str) -> OwnershipRecord:
        """
        Record ``deployment`` as the owner of an unowned key.

        Raises:
            AlreadyOwnedError: If the key already has an owner, whoever it is
            StateError: If the registry file cannot be written
        """
        existing = self._records.get(resource_key)
        if existing is not None:
            raise AlreadyOwnedError(
                f"{resource_key} is already owned by {existing.owning_deployment}",
                context=ErrorContext(resource_key=resource_key, operation="claim"),
                suggestions=[f"Use transfer from {existing.owning_deployment} to {deployment}"],
            )

        record = OwnershipRecord(resource_key=resource_key, owning_deployment=deployment)
        self._commit(resource_key, record)
        logger.info(f"{deployment} claimed {resource_key}")
        return record.model_copy(deep=True)

    def transfer(self, resource_key: str, from_deployment: str, to_deployment: str) -> OwnershipRecord:
        """
        Move ownership of a key.

        Raises:
            NotOwnerError: If ``from_deployment`` does not currently own the key
            StateError: If the registry file cannot be written
        """
        record = self._records.get(resource_key)
        if record is None or record.owning_deployment != from_deployment:
            owner = record.owning_deployment if record else "nobody"
            raise NotOwnerError(
                f"{from_deployment} does not own {resource_key} (owner: {owner})",
                context=ErrorContext(resource_key=resource_key, operation="transfer"),
            )

        updated = record.model_copy(deep=True)
        updated.owning_deployment = to_deployment
        updated.readers.discard(to_deployment)
        self._commit(resource_key, updated)
        logger.info(f"Ownership of {resource_key} moved {from_deployment} -> {to_deployment}")
        return updated.model_copy(deep=True)

    def release(self, resource_key: str, deployment: str) -> None:
        """
        Drop the record for a key owned by ``deployment``.

        Raises:
            NotOwnerError: If ``deployment`` does not own the key
            StateError: If the registry file cannot be written
        """
        record = self._records.get(resource_key)
        if record is None or record.owning_deployment != deployment:
            raise NotOwnerError(
                f"{deployment} does not own {resource_key}",
                context=ErrorContext(resource_key=resource_key, operation="release"),
            )
        self._commit(resource_key, None)
        logger.info(f"{deployment} released {resource_key}")

    def add_reader(self, resource_key: str, deployment: str) -> OwnershipRecord:
        """
        Raises:
            NotOwnerError: If the key has no owner yet
        """
        record = self._require(resource_key, "add_reader")
        if deployment == record.owning_deployment or deployment in record.readers:
            return record.model_copy(deep=True)

        updated = record.model_copy(deep=True)
        updated.readers.add(deployment)
        self._commit(resource_key, updated)
        return updated.model_copy(deep=True)

    def remove_reader(self, resource_key: str, deployment: str) -> OwnershipRecord:
        record = self._require(resource_key, "remove_reader")
        if deployment not in record.readers:
            return record.model_copy(deep=True)

        updated = record.model_copy(deep=True)
        updated.readers.discard(deployment)
        self._commit(resource_key, updated)
        return updated.model_copy(deep=True)

    def get(self, resource_key: str) -> Optional[OwnershipRecord]:
        record = self._records.get(resource_key)
        return record.model_copy(deep=True) if record else None

    def owner_of(self, resource_key: str) -> Optional[str]:
        record = self._records.get(resource_key)
        return record.owning_deployment if record else None

    def records(self) -> List[OwnershipRecord]:
        return [self._records[key].model_copy(deep=True) for key in sorted(self._records)]

    def _require(self, resource_key: str, operation: str) -> OwnershipRecord:
        record = self._records.get(resource_key)
        if record is None:
            raise NotOwnerError(
                f"{resource_key} has no owner",
                context=ErrorContext(resource_key=resource_key, operation=operation),
            )
        return record

    def _commit(self, resource_key: str, record: Optional[OwnershipRecord]) -> None:
        """Save the record set with ``record`` in place (None drops the key), then adopt it."""
        records = dict(self._records)
        if record is None:
            records.pop(resource_key, None)
        else:
            records[resource_key] = record
        self._save(records)
        self._records = records

    def _load(self) -> None:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            self._records = {
                key: OwnershipRecord.model_validate(value) for key, value in data.items()
            }
        except (OSError, ValueError) as e:
            raise StateError(f"Failed to load ownership registry {self.path}: {e}", cause=e)

    def _save(self, records: Dict[str, OwnershipRecord]) -> None:
        if self.path is None:
            return

        data = {
            key: {
                "resource_key": record.resource_key,
                "owning_deployment": record.owning_deployment,
                "readers": sorted(record.readers),
            }
            for key, record in records.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(data, f, indent=2)
            temp_path.replace(self.path)
        except OSError as e:
            raise StateError(f"Failed to save ownership registry {self.path}: {e}", cause=e)
