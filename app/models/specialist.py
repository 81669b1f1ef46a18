"""Specialist model.

Specialists are maintained by the back office; the booking engine reads them
and bumps ``booking_version`` whenever it commits a booking.
"""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class Specialist(Base, TimestampMixin):
    """Service provider with a recurring weekly agenda."""

    __tablename__ = "specialists"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    phone: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    specialty: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    # WhatsApp Business number in E.164, the specialist's contact channel
    whatsapp_number: Mapped[str | None] = mapped_column(
        String(20),
        unique=True,
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    # Compare-and-swap token, incremented by every committed booking
    booking_version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Relationships
    availability_templates: Mapped[list["AvailabilityTemplate"]] = relationship(
        "AvailabilityTemplate",
        back_populates="specialist",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment",
        back_populates="specialist",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Specialist {self.name}>"
