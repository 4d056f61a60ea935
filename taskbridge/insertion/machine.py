"""Insertion transaction state machine."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class InsertionState(str, Enum):
    """Bridging insertion transaction states."""

    VALIDATING = "VALIDATING"
    CONTEXT_LOADED = "CONTEXT_LOADED"
    DEDUPLICATED = "DEDUPLICATED"
    CONFLICTS_RESOLVED = "CONFLICTS_RESOLVED"
    COMMITTED = "COMMITTED"
    ABORTED = "ABORTED"


class StateTransitionError(Exception):
    """Invalid state transition."""

    pass


class TransitionRecord(BaseModel):
    """One entry of the transaction's state history."""

    from_state: InsertionState
    to_state: InsertionState
    at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    error_message: Optional[str] = Field(default=None)


class InsertionMachine:
    """Insertion transaction state machine."""

    # Valid state transitions
    TRANSITIONS = {
        InsertionState.VALIDATING: [
            InsertionState.CONTEXT_LOADED,
            InsertionState.ABORTED,
        ],
        InsertionState.CONTEXT_LOADED: [
            InsertionState.DEDUPLICATED,
            InsertionState.ABORTED,
        ],
        InsertionState.DEDUPLICATED: [
            InsertionState.CONFLICTS_RESOLVED,
            InsertionState.ABORTED,
        ],
        InsertionState.CONFLICTS_RESOLVED: [
            InsertionState.COMMITTED,
            InsertionState.ABORTED,
        ],
        InsertionState.COMMITTED: [],  # Terminal
        InsertionState.ABORTED: [],  # Terminal
    }

    def __init__(self):
        self.state = InsertionState.VALIDATING
        self.history: list[TransitionRecord] = []
        self.error_message: Optional[str] = None
        self.error_context: Optional[dict] = None

    @property
    def current_state(self) -> InsertionState:
        """Get current state."""
        return self.state

    @property
    def is_terminal(self) -> bool:
        return not self.TRANSITIONS[self.state]

    def can_transition_to(self, new_state: InsertionState) -> bool:
        """Check if transition is valid.

        Args:
            new_state: Target state

        Returns:
            True if transition is valid
        """
        return new_state in self.TRANSITIONS.get(self.state, [])

    def transition(
        self,
        new_state: InsertionState,
        error_message: str | None = None,
        error_context: dict | None = None,
    ) -> InsertionState:
        """Execute state transition.

        Args:
            new_state: Target state
            error_message: Optional error message (for ABORTED state)
            error_context: Optional error context dict

        Returns:
            The new state

        Raises:
            StateTransitionError: If transition is invalid
        """
        if not self.can_transition_to(new_state):
            raise StateTransitionError(
                f"Invalid transition from {self.state.value} to {new_state.value}"
            )

        logger.debug(f"Insertion state: {self.state.value} -> {new_state.value}")
        self.history.append(
            TransitionRecord(from_state=self.state, to_state=new_state, error_message=error_message)
        )
        self.state = new_state

        if error_message:
            self.error_message = error_message
        if error_context:
            self.error_context = error_context

        return self.state

    def abort(self, error_message: str, error_context: dict | None = None) -> None:
        """Move to ABORTED unless already terminal."""
        if self.is_terminal:
            return
        failed_in = self.state.value
        self.transition(
            InsertionState.ABORTED,
            error_message=error_message,
            error_context={"step": failed_in, **(error_context or {})},
        )
