"""Execution State Machine — tracks what the coordinator is doing right now.

Architecture: Nervous System component.
Allows the health probe to report whether a command is running, and
guards the single execution slot so at most one subprocess runs at a time.
"""

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ExecutionState(Enum):
    """Coordinator states."""
    IDLE = "idle"                  # No subprocess, accepting requests
    VALIDATING = "validating"      # Policy gate is checking a command
    RUNNING = "running"            # Subprocess active, events streaming
    FINALIZING = "finalizing"      # Writing the log record


# Legal transitions; anything else is a programming error
_TRANSITIONS = {
    ExecutionState.IDLE: {ExecutionState.VALIDATING},
    ExecutionState.VALIDATING: {ExecutionState.IDLE, ExecutionState.RUNNING},
    ExecutionState.RUNNING: {ExecutionState.FINALIZING},
    ExecutionState.FINALIZING: {ExecutionState.IDLE},
}


class ExecutionSlot:
    """Try-lock for the single running subprocess.

    ``try_acquire`` never waits: it either takes the slot or reports that
    someone else holds it. Only the owner that took the slot can free it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[object] = None

    def try_acquire(self, owner: object) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._owner = owner
        return True

    def owned_by(self, owner: object) -> bool:
        return owner is not None and self._lock.locked() and self._owner is owner

    def release(self, owner: object) -> bool:
        """Free the slot if ``owner`` holds it.

        Returns:
            True if the slot was freed, False if ``owner`` did not hold it
        """
        if not self.owned_by(owner):
            logger.warning("Ignoring slot release from a non-owner")
            return False
        self._owner = None
        self._lock.release()
        return True

    @property
    def held(self) -> bool:
        return self._lock.locked()


class ExecutionStateMachine:
    """Tracks coordinator state.

    Usage:
        sm = ExecutionStateMachine()
        sm.transition(ExecutionState.VALIDATING, "ls -la")
        sm.transition(ExecutionState.RUNNING)
        ...
        sm.transition(ExecutionState.FINALIZING)
        sm.transition(ExecutionState.IDLE)
    """

    def __init__(self):
        self._state = ExecutionState.IDLE
        self._state_changed_at = datetime.now()
        self._current_command: Optional[str] = None

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def current_command(self) -> Optional[str]:
        return self._current_command

    def transition(self, new_state: ExecutionState, command: Optional[str] = None):
        """Transition to a new state.

        Args:
            new_state: Target state
            command: Command being handled (kept until the machine is idle again)

        Raises:
            RuntimeError: If the transition is not allowed from the current state
        """
        old_state = self._state
        if new_state not in _TRANSITIONS[old_state]:
            raise RuntimeError(
                f"Illegal state transition: {old_state.value} → {new_state.value}"
            )

        self._state = new_state
        self._state_changed_at = datetime.now()
        if command is not None:
            self._current_command = command
        if new_state == ExecutionState.IDLE:
            self._current_command = None

        logger.debug(f"State: {old_state.value} → {new_state.value}")

    def reset(self):
        """Force back to IDLE (used when finalization itself breaks)."""
        self._state = ExecutionState.IDLE
        self._current_command = None
        self._state_changed_at = datetime.now()

    def get_status(self) -> dict:
        """Get current state info (for the health probe)."""
        return {
            "state": self._state.value,
            "command": self._current_command,
            "since": self._state_changed_at.isoformat(),
        }
