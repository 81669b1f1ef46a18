"""Conflict resolution against a specialist's active appointments."""

from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.scheduling import ACTIVE_STATES, Appointment
from app.utils.time import as_utc

ACTIVE_STATE_VALUES = [state.value for state in ACTIVE_STATES]


class ConflictResolver:
    """Answers whether an interval is free on a specialist's agenda.

    Only pending and confirmed appointments hold time. Intervals are
    half-open, so an appointment ending at 11:00 does not block one
    starting at 11:00.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_conflicts(
        self,
        specialist_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: str | None = None,
    ) -> Sequence[Appointment]:
        """Get active appointments overlapping [start, start + duration)."""
        start = as_utc(start)
        end = start + timedelta(minutes=duration_minutes)

        query = select(Appointment).where(
            Appointment.specialist_id == specialist_id,
            Appointment.state.in_(ACTIVE_STATE_VALUES),
            Appointment.start_at < end,
            Appointment.end_at > start,
        )

        if exclude_appointment_id:
            query = query.where(Appointment.id != exclude_appointment_id)

        query = query.order_by(Appointment.start_at)

        result = await self.session.execute(query)
        return result.scalars().all()

    async def is_available(
        self,
        specialist_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: str | None = None,
    ) -> bool:
        """Check that no active appointment overlaps the candidate interval."""
        conflicts = await self.find_conflicts(
            specialist_id,
            start,
            duration_minutes,
            exclude_appointment_id=exclude_appointment_id,
        )
        return not conflicts

    async def busy_intervals(
        self,
        specialist_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        """Get [start, end) of active appointments touching a time range."""
        result = await self.session.execute(
            select(Appointment.start_at, Appointment.end_at).where(
                Appointment.specialist_id == specialist_id,
                Appointment.state.in_(ACTIVE_STATE_VALUES),
                Appointment.start_at < as_utc(range_end),
                Appointment.end_at > as_utc(range_start),
            ).order_by(Appointment.start_at)
        )
        return [(as_utc(start), as_utc(end)) for start, end in result.all()]
