"""Attempt counting for TDD phases.

Counts are kept per (subtask, phase) pair so a subtask that burned its GREEN
attempts does not affect the attempt budget of the next subtask's RED phase.
"""

from typing import Dict, Optional, Tuple

from ..core.workflow_types import TDDPhase

AttemptKey = Tuple[str, TDDPhase]


class AttemptTracker:
    """Tracks how many times each subtask phase has been attempted."""

    def __init__(self, max_attempts: int = 3):
        """Initialize the tracker.

        Args:
            max_attempts: Default attempt ceiling per (subtask, phase)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._attempts: Dict[AttemptKey, int] = {}

    @staticmethod
    def _key(subtask_id: str, phase: TDDPhase) -> AttemptKey:
        return (subtask_id, TDDPhase(phase))

    def record_attempt(self, subtask_id: str, phase: TDDPhase) -> int:
        """Record one attempt and return the new count (first call returns 1)."""
        key = self._key(subtask_id, phase)
        self._attempts[key] = self._attempts.get(key, 0) + 1
        return self._attempts[key]

    def get_attempt_count(self, subtask_id: str, phase: TDDPhase) -> int:
        return self._attempts.get(self._key(subtask_id, phase), 0)

    def has_exceeded_max_attempts(
        self,
        subtask_id: str,
        phase: TDDPhase,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """Check whether the attempt ceiling has been reached.

        Args:
            subtask_id: Subtask identifier
            phase: TDD phase
            max_attempts: Override for the default ceiling

        Returns:
            True once the count is at or above the ceiling
        """
        limit = max_attempts if max_attempts is not None else self.max_attempts
        return self.get_attempt_count(subtask_id, phase) >= limit

    def get_remaining_attempts(
        self,
        subtask_id: str,
        phase: TDDPhase,
        max_attempts: Optional[int] = None,
    ) -> int:
        limit = max_attempts if max_attempts is not None else self.max_attempts
        return max(0, limit - self.get_attempt_count(subtask_id, phase))

    def reset_attempts(self, subtask_id: str, phase: TDDPhase) -> None:
        """Forget the count for one (subtask, phase) pair only."""
        self._attempts.pop(self._key(subtask_id, phase), None)

    def seed(self, subtask_id: str, phase: TDDPhase, count: int) -> None:
        """Restore a count loaded from persisted state."""
        if count < 0:
            raise ValueError("Attempt count cannot be negative")
        if count == 0:
            self.reset_attempts(subtask_id, phase)
        else:
            self._attempts[self._key(subtask_id, phase)] = count

    def reset_all(self) -> None:
        self._attempts.clear()
