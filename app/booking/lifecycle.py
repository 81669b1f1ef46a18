"""Appointment lifecycle rules.

    pending   -> confirmed | cancelled | completed
    confirmed -> cancelled | completed
    cancelled, completed: terminal

Cancelling an already cancelled appointment is a no-op rather than an error,
so a retried cancel request from a flaky client is harmless.
"""

from app.booking.errors import InvalidTransitionError
from app.models.scheduling import AppointmentState

ALLOWED_TRANSITIONS: dict[AppointmentState, frozenset[AppointmentState]] = {
    AppointmentState.PENDING: frozenset(
        {AppointmentState.CONFIRMED, AppointmentState.CANCELLED, AppointmentState.COMPLETED}
    ),
    AppointmentState.CONFIRMED: frozenset(
        {AppointmentState.CANCELLED, AppointmentState.COMPLETED}
    ),
    AppointmentState.CANCELLED: frozenset(),
    AppointmentState.COMPLETED: frozenset(),
}

# Repeating these transitions returns the record unchanged
IDEMPOTENT_STATES = frozenset({AppointmentState.CANCELLED})

TERMINAL_STATES = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def is_noop_transition(current: str, new: str) -> bool:
    """Check whether moving from current to new should be silently ignored."""
    return AppointmentState(current) == AppointmentState(new) and AppointmentState(new) in IDEMPOTENT_STATES


def can_transition(current: str, new: str) -> bool:
    """Check whether the lifecycle allows current -> new."""
    return AppointmentState(new) in ALLOWED_TRANSITIONS[AppointmentState(current)]


def validate_transition(current: str, new: str) -> bool:
    """Validate a state change.

    Returns:
        True if the change must be applied, False if it is a no-op

    Raises:
        InvalidTransitionError: If the lifecycle forbids the change
    """
    if is_noop_transition(current, new):
        return False

    if not can_transition(current, new):
        raise InvalidTransitionError(
            f"Cannot move appointment from {AppointmentState(current).value} "
            f"to {AppointmentState(new).value}"
        )

    return True
