"""State manager for loading, saving and locking the image state file."""

import fcntl
import json
import os
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from amiforge.utils.errors import StateError
from .models import ImageRecord, StateFile


class StateLockError(StateError):
    """Exception raised when state file cannot be locked."""

    pass


class StateNotFoundError(StateError):
    """Exception raised when state file does not exist."""

    pass


class StateManager:
    """Manages the image state file with file locking."""

    def __init__(self, state_path: str):
        """
        Initialize StateManager.

        Args:
            state_path: Path to the state file
        """
        self.state_path = Path(state_path)
        self._lock_file: Optional[int] = None
        self._current_state: Optional[StateFile] = None

    def load(self) -> StateFile:
        """
        Load state from file.

        Returns:
            StateFile object

        Raises:
            StateNotFoundError: If state file does not exist
            StateError: If state file is corrupted or invalid
        """
        if not self.state_path.exists():
            raise StateNotFoundError(f"State file not found: {self.state_path}")

        try:
            with open(self.state_path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Failed to parse state file: {e}", cause=e)

        try:
            self._current_state = StateFile.model_validate(data)
        except ValidationError as e:
            raise StateError(f"Invalid state file {self.state_path}: {e}", cause=e)
        return self._current_state

    def save(self, state: Optional[StateFile] = None) -> None:
        """
        Save state to file.

        Args:
            state: State to save; defaults to the currently loaded state

        Raises:
            StateError: If state cannot be saved
        """
        state = state or self._current_state
        if state is None:
            raise StateError("No state to save. Call load() or initialize() first.")

        self.state_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            # Write to temporary file first, then atomic rename
            temp_path = self.state_path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                f.write(state.model_dump_json(indent=2))
            temp_path.replace(self.state_path)
            self._current_state = state
        except OSError as e:
            raise StateError(f"Failed to save state file: {e}", cause=e)

    def initialize(self, region: str) -> StateFile:
        """
        Initialize a new state file.

        Args:
            region: AWS region

        Returns:
            New StateFile object
        """
        state = StateFile(region=region)
        self.save(state)
        return state

    def exists(self) -> bool:
        """Check if state file exists."""
        return self.state_path.exists()

    def lock(self, timeout: int = 30) -> None:
        """
        Acquire exclusive lock on state file.

        Args:
            timeout: Lock timeout in seconds

        Raises:
            StateLockError: If lock cannot be acquired
        """
        lock_path = self.state_path.with_suffix(".lock")
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock_file = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
        start_time = time.time()
        while True:
            try:
                fcntl.flock(self._lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.time() - start_time > timeout:
                    os.close(self._lock_file)
                    self._lock_file = None
                    raise StateLockError(
                        f"Failed to acquire lock on state file after {timeout}s"
                    )
                time.sleep(0.1)

    def unlock(self) -> None:
        """Release lock on state file."""
        if self._lock_file is not None:
            try:
                fcntl.flock(self._lock_file, fcntl.LOCK_UN)
                os.close(self._lock_file)
            finally:
                self._lock_file = None

    def __enter__(self):
        """Context manager entry - acquire lock and load state."""
        self.lock()
        try:
            if self.exists():
                self.load()
        except StateError:
            self.unlock()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - release lock."""
        self.unlock()

    def get_state(self) -> StateFile:
        """
        Get the current state.

        Raises:
            StateError: If state is not loaded
        """
        if self._current_state is None:
            raise StateError("State not loaded. Call load() first.")
        return self._current_state

    def get_record(self, name: str) -> Optional[ImageRecord]:
        """Get a tracked image by logical name."""
        return self.get_state().get(name)

    def put_record(self, record: ImageRecord) -> None:
        """Add or replace a tracked image and persist the state."""
        self.get_state().put(record)
        self.save()

    def remove_record(self, name: str) -> Optional[ImageRecord]:
        """Stop tracking an image and persist the state."""
        record = self.get_state().remove(name)
        self.save()
        return record
