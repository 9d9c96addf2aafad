"""Installation lifecycle states and the legal transition table."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from .errors import IllegalTransitionError

__all__ = [
    "InstallationState",
    "TERMINAL_STATES",
    "can_transition",
    "parse_state",
    "transition",
]


class InstallationState(str, Enum):
    """Lifecycle of a single install task."""

    NONE = "None"
    DOWNLOADING = "Downloading"
    EXTRACTING = "Extracting"
    FINALIZING = "Finalizing"
    INSTALLED = "Installed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES

    def __str__(self) -> str:
        return self.value


TERMINAL_STATES: FrozenSet[InstallationState] = frozenset(
    {InstallationState.INSTALLED, InstallationState.CANCELLED, InstallationState.FAILED}
)

_FORWARD: Dict[InstallationState, InstallationState] = {
    InstallationState.NONE: InstallationState.DOWNLOADING,
    InstallationState.DOWNLOADING: InstallationState.EXTRACTING,
    InstallationState.EXTRACTING: InstallationState.FINALIZING,
    InstallationState.FINALIZING: InstallationState.INSTALLED,
}


def can_transition(current: InstallationState, requested: InstallationState) -> bool:
    """Return ``True`` when ``current -> requested`` is an edge of the state table."""

    if current in TERMINAL_STATES:
        return False
    if requested in (InstallationState.CANCELLED, InstallationState.FAILED):
        return True
    return _FORWARD.get(current) is requested


def transition(current: InstallationState, requested: InstallationState) -> InstallationState:
    """Validate a transition and return the new state.

    Args:
        current: State the task is leaving.
        requested: State the driver wants to enter.

    Returns:
        ``requested`` when the edge is legal.

    Raises:
        IllegalTransitionError: If the edge skips a phase or leaves a terminal
            state. This signals a driver bug, not an environmental failure.
    """

    if not can_transition(current, requested):
        raise IllegalTransitionError(current, requested)
    return requested


def parse_state(identifier: object) -> InstallationState:
    """Decode a state name (``"Downloading"``) or enum value.

    Unknown identifiers are treated as programming errors.
    """

    if isinstance(identifier, InstallationState):
        return identifier
    try:
        return InstallationState(str(identifier))
    except ValueError:
        raise IllegalTransitionError(identifier, "<unknown state>") from None
