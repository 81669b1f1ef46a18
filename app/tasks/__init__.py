"""Scheduled tasks for the specialist agenda.

- Reminder dispatch (24h and 1h before, booking confirmations, follow-ups)
"""

from app.tasks.reminder_dispatch import run_reminder_dispatch_task

__all__ = [
    "run_reminder_dispatch_task",
]
