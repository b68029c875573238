"""Orchestrator module for transfer planning and execution."""

from stackshift.orchestrator.models import (
    ResourceLocator,
    PlanStatus,
    TransferPhase,
    PhaseTransition,
    TransferPlan,
    PHASE_TRANSITIONS
)
from stackshift.orchestrator.locator import StateLocator
from stackshift.orchestrator.checkpoint import PlanCheckpointStore
from stackshift.orchestrator.planner import TransferPlanner
from stackshift.orchestrator.executor import TransferExecutor
from stackshift.orchestrator.coordinator import RefactorCoordinator

__all__ = [
    # Locators and plans
    'ResourceLocator',
    'PlanStatus',
    'TransferPhase',
    'PhaseTransition',
    'TransferPlan',
    'PHASE_TRANSITIONS',

    # Resolution
    'StateLocator',

    # Planning and execution
    'TransferPlanner',
    'TransferExecutor',
    'PlanCheckpointStore',

    # Main coordinator
    'RefactorCoordinator',
]
