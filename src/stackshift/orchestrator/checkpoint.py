"""Plan checkpoints so a transfer interrupted in one process can be resumed by another."""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from stackshift.orchestrator.models import TransferPlan
from stackshift.utils.errors import ErrorContext, StateError
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)


class PlanCheckpointStore:
    """One JSON file per in-flight plan, named by plan id."""

    def __init__(self, checkpoint_dir: str):
        """
        Initialize PlanCheckpointStore.

        Args:
            checkpoint_dir: Directory to store plan files; created on first save
        """
        self.checkpoint_dir = Path(checkpoint_dir)

    def _get_plan_path(self, plan_id: str) -> Path:
        return self.checkpoint_dir / f"{plan_id}.plan.json"

    def save(self, plan: TransferPlan) -> None:
        """
        Write the plan, replacing any earlier checkpoint of it.

        Raises:
            StateError: If the file cannot be written
        """
        path = self._get_plan_path(plan.plan_id)
        try:
            self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(plan.model_dump(mode="json"), f, indent=2)
            temp_path.replace(path)
        except OSError as e:
            raise StateError(
                f"Failed to checkpoint plan {plan.plan_id}: {e}",
                context=ErrorContext(plan_id=plan.plan_id, operation="checkpoint"),
                cause=e,
            )

    def load(self, plan_id: str) -> Optional[TransferPlan]:
        """
        Returns:
            The checkpointed plan, or None if there is none

        Raises:
            StateError: If the file exists but cannot be read
        """
        path = self._get_plan_path(plan_id)
        if not path.exists():
            return None
        return self._read(path)

    def list_plans(self) -> List[TransferPlan]:
        if not self.checkpoint_dir.exists():
            return []
        return [self._read(path) for path in sorted(self.checkpoint_dir.glob("*.plan.json"))]

    def clear(self, plan_id: str) -> None:
        """
        Raises:
            StateError: If the file exists but cannot be removed
        """
        path = self._get_plan_path(plan_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StateError(f"Failed to clear checkpoint of plan {plan_id}: {e}", cause=e)
        logger.debug(f"Cleared checkpoint of plan {plan_id}")

    def _read(self, path: Path) -> TransferPlan:
        try:
            with open(path, "r") as f:
                return TransferPlan.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            raise StateError(f"Failed to load plan checkpoint {path}: {e}", cause=e)
