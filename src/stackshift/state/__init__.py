"""State documents, backends, mutation primitives and ownership bookkeeping."""

from .backend import FileStateBackend, StateBackend
from .models import Component, DeploymentState, ResourceInstance
from .mutation import BackendStateMutation, StateMutation
from .ownership import OwnershipRecord, OwnershipRegistry

__all__ = [
    "ResourceInstance",
    "Component",
    "DeploymentState",
    "StateBackend",
    "FileStateBackend",
    "StateMutation",
    "BackendStateMutation",
    "OwnershipRecord",
    "OwnershipRegistry",
]
