"""Weekly availability templates and slot listing.

Slot listing is advisory: it reads without locks and can be stale by the
time the patient picks a slot. The booking ledger re-checks the interval
inside its own unit of work.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, time
from typing import Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.booking.authorization import ensure_can_manage
from app.booking.errors import (
    InvalidTemplateError,
    SpecialistNotFoundError,
    TemplateNotFoundError,
)
from app.booking.overlap import filter_free
from app.booking.slots import Slot, Window, generate_slots
from app.core.config import Settings, settings as default_settings
from app.core.logging import audit_logger
from app.core.security import Actor
from app.models.scheduling import AvailabilityTemplate
from app.models.specialist import Specialist
from app.services.conflicts import ConflictResolver
from app.utils.time import get_zone, sunday_based_weekday, utc_now

logger = logging.getLogger(__name__)


def validate_template(
    day_of_week: int,
    start_time: time,
    end_time: time,
    slot_duration_minutes: int,
) -> None:
    """Check template invariants before anything is written."""
    if not 0 <= day_of_week <= 6:
        raise InvalidTemplateError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    if start_time >= end_time:
        raise InvalidTemplateError("start_time must be before end_time")
    if slot_duration_minutes <= 0:
        raise InvalidTemplateError("slot_duration_minutes must be positive")


class AvailabilityService:
    """Slot calculator over a specialist's weekly templates."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        settings: Settings | None = None,
    ):
        self.session = session
        self.clock = clock
        self.settings = settings or default_settings
        self.resolver = ConflictResolver(session)

    @property
    def zone(self):
        return get_zone(self.settings.agenda_timezone)

    async def get_specialist(self, specialist_id: str) -> Specialist:
        """Get an active specialist or raise SpecialistNotFoundError."""
        result = await self.session.execute(
            select(Specialist).where(
                Specialist.id == specialist_id,
                Specialist.is_active == True,
            )
        )
        specialist = result.scalar_one_or_none()

        if not specialist:
            raise SpecialistNotFoundError(f"Specialist {specialist_id} not found")

        return specialist

    async def list_templates(
        self,
        specialist_id: str,
        day_of_week: int | None = None,
        active_only: bool = True,
    ) -> Sequence[AvailabilityTemplate]:
        """Get availability templates for a specialist."""
        query = select(AvailabilityTemplate).where(
            AvailabilityTemplate.specialist_id == specialist_id,
        )

        if active_only:
            query = query.where(AvailabilityTemplate.is_active == True)

        if day_of_week is not None:
            query = query.where(AvailabilityTemplate.day_of_week == day_of_week)

        query = query.order_by(
            AvailabilityTemplate.day_of_week,
            AvailabilityTemplate.start_time,
        )

        result = await self.session.execute(query)
        return result.scalars().all()

    async def create_template(
        self,
        actor: Actor,
        specialist_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        slot_duration_minutes: int = 60,
    ) -> AvailabilityTemplate:
        """Create a weekly availability window for a specialist."""
        validate_template(day_of_week, start_time, end_time, slot_duration_minutes)
        ensure_can_manage(actor, specialist_id)
        await self.get_specialist(specialist_id)

        result = await self.session.execute(
            select(AvailabilityTemplate.id).where(
                AvailabilityTemplate.specialist_id == specialist_id,
                AvailabilityTemplate.day_of_week == day_of_week,
                AvailabilityTemplate.start_time == start_time,
                AvailabilityTemplate.end_time == end_time,
            )
        )
        if result.scalar_one_or_none():
            raise InvalidTemplateError("An identical availability window already exists")

        now = self.clock()
        template = AvailabilityTemplate(
            id=str(uuid4()),
            specialist_id=specialist_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            slot_duration_minutes=slot_duration_minutes,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

        self.session.add(template)
        await self.session.commit()
        await self.session.refresh(template)

        audit_logger.log(
            action="template.created",
            actor_type=actor.actor_type.value,
            actor_id=actor.actor_id,
            entity_type="availability_template",
            entity_id=template.id,
            metadata={"day_of_week": day_of_week, "start": str(start_time), "end": str(end_time)},
        )

        return template

    async def deactivate_template(
        self,
        actor: Actor,
        specialist_id: str,
        template_id: str,
    ) -> AvailabilityTemplate:
        """Stop offering slots from a template. Existing bookings are kept."""
        ensure_can_manage(actor, specialist_id)

        result = await self.session.execute(
            select(AvailabilityTemplate).where(
                AvailabilityTemplate.id == template_id,
                AvailabilityTemplate.specialist_id == specialist_id,
            )
        )
        template = result.scalar_one_or_none()

        if not template:
            raise TemplateNotFoundError(f"Template {template_id} not found")

        template.is_active = False
        template.updated_at = self.clock()

        await self.session.commit()
        await self.session.refresh(template)

        audit_logger.log(
            action="template.deactivated",
            actor_type=actor.actor_type.value,
            actor_id=actor.actor_id,
            entity_type="availability_template",
            entity_id=template.id,
        )

        return template

    async def list_slots(self, specialist_id: str, target_date: date) -> list[Slot]:
        """Get every slot the templates offer on a date, booked or not.

        Returns an empty list when the specialist has no active template
        for that day of the week.
        """
        await self.get_specialist(specialist_id)

        templates = await self.list_templates(
            specialist_id,
            day_of_week=sunday_based_weekday(target_date),
        )

        windows = [
            Window(t.start_time, t.end_time, t.slot_duration_minutes)
            for t in templates
        ]

        return generate_slots(target_date, windows, self.zone)

    async def list_available_slots(self, specialist_id: str, target_date: date) -> list[Slot]:
        """Get the free, still-bookable slots of a specialist on a date."""
        slots = await self.list_slots(specialist_id, target_date)
        if not slots:
            return []

        busy = await self.resolver.busy_intervals(
            specialist_id,
            slots[0].start,
            slots[-1].end,
        )

        now = self.clock()
        free = [slot for slot in filter_free(slots, busy) if slot.start > now]

        logger.debug(
            f"Slots for specialist={specialist_id[:8]} date={target_date}: "
            f"{len(free)}/{len(slots)} free"
        )

        return free
