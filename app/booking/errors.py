"""Booking engine exceptions.

Validation errors are raised before anything is written. ``SlotConflictError``
is only raised from inside a booking unit of work, after which the unit is
rolled back in full.
"""


class BookingError(Exception):
    """Base exception for booking engine errors."""

    pass


class InvalidIntervalError(BookingError):
    """Raised for a non-positive duration or a start not in the future."""

    pass


class InvalidTemplateError(BookingError):
    """Raised when an availability template violates its invariants."""

    pass


class SlotConflictError(BookingError):
    """Raised when the interval overlaps an active appointment.

    Callers should fetch a fresh slot list and retry with another slot.
    """

    pass


class InvalidTransitionError(BookingError):
    """Raised when a state change is not allowed by the lifecycle table."""

    pass


class NotAuthorizedError(BookingError):
    """Raised when the caller does not own the specialist being changed."""

    pass


class LeaseLostError(BookingError):
    """Raised when a reminder result arrives with a lease that is no longer held."""

    pass


class NotFoundError(BookingError):
    """Base exception for unknown records."""

    pass


class SpecialistNotFoundError(NotFoundError):
    """Raised when the specialist does not exist or is inactive."""

    pass


class PatientNotFoundError(NotFoundError):
    """Raised when the patient does not exist."""

    pass


class AppointmentNotFoundError(NotFoundError):
    """Raised when the appointment does not exist."""

    pass


class TemplateNotFoundError(NotFoundError):
    """Raised when the availability template does not exist."""

    pass


class ReminderNotFoundError(NotFoundError):
    """Raised when the reminder does not exist."""

    pass
