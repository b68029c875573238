"""State backends: exclusive, lockable persistence for one deployment's state."""

import fcntl
import json
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from stackshift.state.models import DeploymentState
from stackshift.utils.errors import ErrorContext, StateError, StateLockError
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)


class StateBackend(ABC):
    """Opaque handle to one deployment's persisted state.

    A backend belongs to exactly one deployment. Callers mutate it only while
    holding its advisory lock.
    """

    def __init__(self, stack_id: str, deployment_id: str):
        self.stack_id = stack_id
        self.deployment_id = deployment_id

    @property
    def key(self) -> str:
        """``stack:deployment`` identity of the owning deployment."""
        return f"{self.stack_id}:{self.deployment_id}"

    @abstractmethod
    def read(self) -> DeploymentState:
        """Return the current state, or an empty state if none was written yet."""
        pass

    @abstractmethod
    def write(self, state: DeploymentState) -> DeploymentState:
        """Persist state, bumping its serial. Returns what was written."""
        pass

    @abstractmethod
    def lock(self, timeout: float = 30) -> None:
        """Acquire the advisory lock, waiting at most ``timeout`` seconds."""
        pass

    @abstractmethod
    def unlock(self) -> None:
        """Release the advisory lock if held."""
        pass

    @property
    @abstractmethod
    def is_locked(self) -> bool:
        pass

    @contextmanager
    def locked(self, timeout: float = 30) -> Iterator["StateBackend"]:
        """Hold the lock for the duration of a ``with`` block."""
        self.lock(timeout)
        try:
            yield self
        finally:
            self.unlock()

    def empty_state(self) -> DeploymentState:
        return DeploymentState(stack_id=self.stack_id, deployment_id=self.deployment_id)

    def _context(self, operation: str) -> ErrorContext:
        return ErrorContext(
            stack_id=self.stack_id,
            deployment_id=self.deployment_id,
            operation=operation,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key})"


class FileStateBackend(StateBackend):
    """JSON state document on local disk with an ``fcntl`` lock file."""

    def __init__(self, stack_id: str, deployment_id: str, state_path: str):
        """
        Initialize FileStateBackend.

        Args:
            stack_id: Stack owning the deployment
            deployment_id: Deployment this document belongs to
            state_path: Path to the state file
        """
        super().__init__(stack_id, deployment_id)
        self.state_path = Path(state_path)
        self._lock_fd: Optional[int] = None

    @property
    def lock_path(self) -> Path:
        return self.state_path.with_suffix(".lock")

    @property
    def is_locked(self) -> bool:
        return self._lock_fd is not None

    def exists(self) -> bool:
        return self.state_path.exists()

    def read(self) -> DeploymentState:
        """
        Load state from file.

        Raises:
            StateError: If the file is corrupt or belongs to another deployment
        """
        if not self.exists():
            return self.empty_state()

        try:
            with open(self.state_path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(
                f"Failed to parse state file {self.state_path}: {e}",
                context=self._context("read"),
                cause=e,
            )
        except OSError as e:
            raise StateError(
                f"Failed to read state file {self.state_path}: {e}",
                context=self._context("read"),
                cause=e,
            )

        try:
            state = DeploymentState.from_dict(data)
        except ValueError as e:
            raise StateError(
                f"Invalid state document {self.state_path}: {e}",
                context=self._context("read"),
                cause=e,
            )

        if (state.stack_id, state.deployment_id) != (self.stack_id, self.deployment_id):
            raise StateError(
                f"State file {self.state_path} belongs to "
                f"{state.stack_id}:{state.deployment_id}, not {self.key}",
                context=self._context("read"),
            )
        return state

    def write(self, state: DeploymentState) -> DeploymentState:
        """
        Save state atomically.

        Raises:
            StateError: If the state cannot be saved
        """
        if not self.is_locked:
            raise StateError(
                f"Refusing to write {self.key} without holding its lock",
                context=self._context("write"),
            )

        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        state = state.model_copy(update={"serial": state.serial + 1})

        try:
            # Write to temporary file first
            temp_path = self.state_path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(state.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            temp_path.replace(self.state_path)
        except OSError as e:
            raise StateError(
                f"Failed to save state file {self.state_path}: {e}",
                context=self._context("write"),
                cause=e,
            )

        logger.debug(f"Wrote {self.key} state serial {state.serial}")
        return state

    def lock(self, timeout: float = 30) -> None:
        """
        Acquire exclusive lock on the state file.

        Raises:
            StateLockError: If the lock cannot be acquired within ``timeout``
        """
        if self._lock_fd is not None:
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR)

        start_time = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start_time > timeout:
                    os.close(fd)
                    raise StateLockError(
                        f"Failed to acquire lock on {self.key} after {timeout}s",
                        context=self._context("lock"),
                        suggestions=["Another transfer may be running against this deployment"],
                    )
                time.sleep(0.1)

        self._lock_fd = fd
        logger.debug(f"Locked {self.key}")

    def unlock(self) -> None:
        """Release lock on the state file."""
        if self._lock_fd is not None:
            try:
                fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
                os.close(self._lock_fd)
            finally:
                self._lock_fd = None
            logger.debug(f"Unlocked {self.key}")
