"""Booking module: slot arithmetic, overlap detection and lifecycle rules."""

from app.booking.lifecycle import validate_transition
from app.booking.overlap import filter_free, intervals_overlap
from app.booking.slots import Slot, generate_slots

__all__ = [
    "Slot",
    "generate_slots",
    "intervals_overlap",
    "filter_free",
    "validate_transition",
]
