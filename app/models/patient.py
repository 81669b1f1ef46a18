"""Patient model."""

import re

from sqlalchemy import CheckConstraint, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin

# E.164: a plus sign and up to 15 digits, no leading zero
PHONE_PATTERN = re.compile(r"^\+[1-9][0-9]{1,14}$")


class Patient(Base, TimestampMixin):
    """Counterparty booking appointments, identified by phone number."""

    __tablename__ = "patients"
    __table_args__ = (
        # Regular expressions in CHECK constraints are PostgreSQL only
        CheckConstraint(
            "phone ~ '^\\+[1-9][0-9]{1,14}$'",
            name="phone_format",
        ).ddl_if(dialect="postgresql"),
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    # E.164 phone number; reminders are delivered here
    phone: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment",
        back_populates="patient",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @validates("phone")
    def validate_phone(self, key: str, value: str) -> str:
        if value is None or not PHONE_PATTERN.match(value):
            raise ValueError(f"Phone number must be in E.164 format, got {value!r}")
        return value

    def __repr__(self) -> str:
        return f"<Patient {self.phone}>"
