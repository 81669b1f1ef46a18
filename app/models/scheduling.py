"""Scheduling models for weekly availability and appointments."""

from datetime import datetime, time
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class DayOfWeek(int, Enum):
    """Day of week for recurring availability (Sunday first)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6


class AvailabilityTemplate(Base, TimestampMixin):
    """Recurring weekly availability window for a specialist.

    The window [start_time, end_time) is cut into bookable slots of
    ``slot_duration_minutes``. Times are wall-clock in the agenda time zone.
    """

    __tablename__ = "availability_templates"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="day_of_week_range"),
        CheckConstraint("slot_duration_minutes > 0", name="slot_duration_positive"),
        CheckConstraint("start_time < end_time", name="start_before_end"),
        UniqueConstraint(
            "specialist_id",
            "day_of_week",
            "start_time",
            "end_time",
            name="uq_availability_templates_window",
        ),
        Index("ix_availability_templates_specialist_day", "specialist_id", "day_of_week"),
    )

    specialist_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("specialists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_of_week: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    end_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    slot_duration_minutes: Mapped[int] = mapped_column(
        Integer,
        default=60,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    specialist: Mapped["Specialist"] = relationship(
        "Specialist",
        back_populates="availability_templates",
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityTemplate {self.day_of_week} "
            f"{self.start_time}-{self.end_time}/{self.slot_duration_minutes}m>"
        )


class AppointmentState(str, Enum):
    """Lifecycle state of an appointment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# States that hold a specialist's time
ACTIVE_STATES = (AppointmentState.PENDING, AppointmentState.CONFIRMED)


class Appointment(Base, TimestampMixin):
    """Booked interval between a specialist and a patient.

    ``end_at`` is derived from ``start_at`` and ``duration_minutes`` and is
    stored so overlap checks are plain indexed range predicates.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="duration_positive"),
        CheckConstraint("end_at > start_at", name="end_after_start"),
        Index("ix_appointments_specialist_start", "specialist_id", "start_at"),
    )

    specialist_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("specialists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    patient_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    duration_minutes: Mapped[int] = mapped_column(
        Integer,
        default=60,
        nullable=False,
    )
    state: Mapped[AppointmentState] = mapped_column(
        String(20),
        default=AppointmentState.PENDING,
        nullable=False,
        index=True,
    )
    # Why the patient is coming (motivo)
    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    # Set once a 24h/1h reminder has been delivered
    reminder_sent: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    rescheduled_from_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    specialist: Mapped["Specialist"] = relationship(
        "Specialist",
        back_populates="appointments",
    )
    patient: Mapped["Patient"] = relationship(
        "Patient",
        back_populates="appointments",
    )
    reminders: Mapped[list["Reminder"]] = relationship(
        "Reminder",
        back_populates="appointment",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def __repr__(self) -> str:
        return f"<Appointment {self.id[:8]}... {self.start_at} state={self.state}>"
