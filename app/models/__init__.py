"""Database models for the specialist agenda."""

from app.models.patient import Patient
from app.models.reminder import (
    PRE_APPOINTMENT_OFFSETS,
    Reminder,
    ReminderKind,
    ReminderState,
)
from app.models.scheduling import (
    ACTIVE_STATES,
    Appointment,
    AppointmentState,
    AvailabilityTemplate,
    DayOfWeek,
)
from app.models.specialist import Specialist

__all__ = [
    # People
    "Specialist",
    "Patient",
    # Scheduling
    "AvailabilityTemplate",
    "DayOfWeek",
    "Appointment",
    "AppointmentState",
    "ACTIVE_STATES",
    # Reminders
    "Reminder",
    "ReminderKind",
    "ReminderState",
    "PRE_APPOINTMENT_OFFSETS",
]
