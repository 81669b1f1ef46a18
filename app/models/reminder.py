"""Reminder model for scheduled appointment notifications.

A reminder is claimed by one dispatcher worker at a time through a lease
(``lease_token`` + ``lease_expires_at``). An expired lease can be claimed
again by any worker.
"""

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class ReminderKind(str, Enum):
    """What the reminder is about."""

    DAY_BEFORE = "24h_before"
    HOUR_BEFORE = "1h_before"
    CONFIRMATION = "confirmation"
    FOLLOW_UP = "follow_up"


# Offsets for reminders sent ahead of the appointment
PRE_APPOINTMENT_OFFSETS = {
    ReminderKind.DAY_BEFORE: timedelta(hours=24),
    ReminderKind.HOUR_BEFORE: timedelta(hours=1),
}


class ReminderState(str, Enum):
    """Delivery state of a reminder."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Reminder(Base, TimestampMixin):
    """Scheduled outbound notification tied to an appointment."""

    __tablename__ = "reminders"
    __table_args__ = (
        Index("ix_reminders_state_scheduled", "state", "scheduled_at"),
    )

    appointment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[ReminderKind] = mapped_column(
        String(20),
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    state: Mapped[ReminderState] = mapped_column(
        String(20),
        default=ReminderState.PENDING,
        nullable=False,
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    provider_message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    # Lease held by the dispatcher worker currently delivering this reminder
    lease_token: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    claimed_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    # Earliest time a failed reminder may be tried again
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    appointment: Mapped["Appointment"] = relationship(
        "Appointment",
        back_populates="reminders",
    )

    def __repr__(self) -> str:
        return f"<Reminder {self.id[:8]}... {self.kind} state={self.state}>"
