"""
Project status state machine for Deckhand

Enforces the lifecycle of a project's status field. Every state can be
re-entered; nothing ever returns to 'pending', and a deploy run that has
started must end in 'running' or 'error'.

State Flow:
    pending -> deploying -> running
                         |-> error
    running/stopped/error -> deploying | running | stopped | error

Usage:
    sm = ProjectStateMachine()

    sm.can_transition(project.status, ProjectStatus.DEPLOYING)  # bool
    sm.check(project.status, ProjectStatus.STOPPED)  # raises InvalidTransitionError
"""

from typing import Union
import logging

from models.project import ProjectStatus

logger = logging.getLogger(__name__)

StatusLike = Union[ProjectStatus, str]


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, from_state: StatusLike, to_state: StatusLike):
        self.from_state = _value(from_state)
        self.to_state = _value(to_state)
        super().__init__(f"Invalid status transition: {self.from_state} -> {self.to_state}")


def _value(state: StatusLike) -> str:
    return state.value if isinstance(state, ProjectStatus) else str(state)


_SETTLED = ['deploying', 'running', 'stopped', 'error']


class ProjectStateMachine:
    """
    State machine for project status management.

    Statuses are compared by their string values, so both ProjectStatus
    members and plain strings are accepted.
    """

    # Valid state transitions (from_state -> to_state)
    VALID_TRANSITIONS = {
        'pending': list(_SETTLED),
        'deploying': ['running', 'error'],  # a run always settles
        'running': list(_SETTLED),
        'stopped': list(_SETTLED),
        'error': list(_SETTLED),
    }

    # Valid project states
    VALID_STATES = {s.value for s in ProjectStatus}

    def can_transition(self, from_state: StatusLike, to_state: StatusLike) -> bool:
        """
        Check if a status transition is valid.

        Args:
            from_state: Current project status
            to_state: Desired target status

        Returns:
            True if transition is allowed, False otherwise

        Examples:
            >>> sm = ProjectStateMachine()
            >>> sm.can_transition('pending', 'deploying')
            True
            >>> sm.can_transition('deploying', 'stopped')
            False
            >>> sm.can_transition('error', 'pending')
            False
        """
        from_value, to_value = _value(from_state), _value(to_state)

        if from_value not in self.VALID_STATES:
            logger.warning(f"Invalid from_state: {from_value}")
            return False

        if to_value not in self.VALID_STATES:
            logger.warning(f"Invalid to_state: {to_value}")
            return False

        return to_value in self.VALID_TRANSITIONS.get(from_value, [])

    def check(self, from_state: StatusLike, to_state: StatusLike) -> None:
        """Raise InvalidTransitionError unless from_state -> to_state is allowed."""
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state, to_state)
