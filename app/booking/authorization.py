"""Ownership checks applied before any agenda mutation.

A specialist may only change their own templates and appointments. System
actors (the booking bot, the reminder dispatcher) act on behalf of any
specialist.
"""

from app.booking.errors import NotAuthorizedError
from app.core.security import Actor


def can_manage_specialist(actor: Actor, specialist_id: str) -> bool:
    """Check whether the actor may change the given specialist's agenda."""
    if actor.is_system:
        return True
    return actor.actor_id == specialist_id


def ensure_can_manage(actor: Actor, specialist_id: str) -> None:
    """Raise NotAuthorizedError unless the actor owns the specialist."""
    if not can_manage_specialist(actor, specialist_id):
        raise NotAuthorizedError(
            f"{actor.actor_type.value} {actor.actor_id} cannot manage specialist {specialist_id}"
        )

