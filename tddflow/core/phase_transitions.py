"""TDD phase transition rules."""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .workflow_types import TDDPhase


# Valid TDD phase transitions; COMMIT -> RED starts the next subtask
VALID_TDD_TRANSITIONS: Dict[TDDPhase, List[TDDPhase]] = {
    TDDPhase.RED: [TDDPhase.GREEN],
    TDDPhase.GREEN: [TDDPhase.COMMIT],
    TDDPhase.COMMIT: [TDDPhase.RED],
}


@dataclass
class TransitionValidation:
    """Outcome of a transition check, for callers that want a message."""

    valid: bool
    error: Optional[str] = None


class PhaseTransitionValidator:
    """Answers whether one TDD phase may follow another."""

    @staticmethod
    def can_transition(from_phase: TDDPhase, to_phase: TDDPhase) -> bool:
        """Check if a TDD phase transition is legal."""
        return to_phase in VALID_TDD_TRANSITIONS.get(from_phase, [])

    @staticmethod
    def get_valid_next_phases(phase: TDDPhase) -> List[TDDPhase]:
        """Get the phases that may follow the given one."""
        return list(VALID_TDD_TRANSITIONS.get(phase, []))

    @classmethod
    def validate_transition(
        cls, from_phase: TDDPhase, to_phase: TDDPhase
    ) -> TransitionValidation:
        """
        Validate a TDD phase transition.

        Args:
            from_phase: Current TDD phase
            to_phase: Requested TDD phase

        Returns:
            TransitionValidation with an error message when the move is illegal
        """
        if cls.can_transition(from_phase, to_phase):
            return TransitionValidation(valid=True)

        allowed = [p.value for p in cls.get_valid_next_phases(from_phase)]
        return TransitionValidation(
            valid=False,
            error=(
                f"Invalid TDD phase transition: {from_phase.value} -> "
                f"{to_phase.value}. Valid next phases: {allowed}"
            ),
        )
