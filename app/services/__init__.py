"""Business logic services."""

from app.services.availability import AvailabilityService
from app.services.conflicts import ConflictResolver
from app.services.ledger import BookingLedger
from app.services.messaging import DeliveryFailureError, LoggingProvider, MessageProvider
from app.services.reminders import DeliveryOutcome, ReminderDispatcher

__all__ = [
    "AvailabilityService",
    "ConflictResolver",
    "BookingLedger",
    "MessageProvider",
    "LoggingProvider",
    "DeliveryFailureError",
    "ReminderDispatcher",
    "DeliveryOutcome",
]
