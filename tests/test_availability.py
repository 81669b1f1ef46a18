"""Tests for availability templates and slot listing."""

from datetime import time

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.booking.errors import (
    InvalidTemplateError,
    NotAuthorizedError,
    SpecialistNotFoundError,
    TemplateNotFoundError,
)
from app.core.security import Actor
from app.models.scheduling import AppointmentState, DayOfWeek
from app.services.availability import AvailabilityService, validate_template
from app.services.ledger import BookingLedger
from tests.conftest import MONDAY, local


class TestValidateTemplate:
    """Tests for template invariants."""

    def test_valid_template(self) -> None:
        validate_template(1, time(9), time(17), 60)

    @pytest.mark.parametrize(
        "day,start,end,duration",
        [
            (7, time(9), time(17), 60),
            (-1, time(9), time(17), 60),
            (1, time(17), time(9), 60),
            (1, time(9), time(9), 60),
            (1, time(9), time(17), 0),
        ],
    )
    def test_invalid_template(self, day, start, end, duration) -> None:
        with pytest.raises(InvalidTemplateError):
            validate_template(day, start, end, duration)


class TestListSlots:
    """Tests for slot listing against templates and bookings."""

    @pytest.mark.asyncio
    async def test_monday_template_gives_eight_slots(
        self, async_session: AsyncSession, specialist, monday_template, clock, test_settings
    ) -> None:
        """Monday 09:00-17:00 / 60 minutes lists 09:00-10:00 ... 16:00-17:00."""
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        slots = await service.list_available_slots(specialist.id, MONDAY)

        assert len(slots) == 8
        assert slots[0].start == local(MONDAY, 9)
        assert slots[-1].end == local(MONDAY, 17)
        for previous, current in zip(slots, slots[1:]):
            assert previous.end <= current.start

    @pytest.mark.asyncio
    async def test_booked_slot_is_not_offered(
        self, async_session: AsyncSession, specialist, patient, monday_template, clock, test_settings, system_actor
    ) -> None:
        """A 10:00-11:00 appointment removes the 10:00 slot only."""
        ledger = BookingLedger(async_session, clock=clock, settings=test_settings)
        await ledger.create_appointment(
            system_actor, specialist.id, patient.id, local(MONDAY, 10), 60
        )

        service = AvailabilityService(async_session, clock=clock, settings=test_settings)
        slots = await service.list_available_slots(specialist.id, MONDAY)

        assert len(slots) == 7
        assert local(MONDAY, 10) not in [s.start for s in slots]
        assert local(MONDAY, 11) in [s.start for s in slots]

    @pytest.mark.asyncio
    async def test_cancelled_appointment_frees_its_slot(
        self, async_session: AsyncSession, specialist, patient, monday_template, clock, test_settings, system_actor
    ) -> None:
        """Only pending and confirmed appointments hold time."""
        ledger = BookingLedger(async_session, clock=clock, settings=test_settings)
        appointment = await ledger.create_appointment(
            system_actor, specialist.id, patient.id, local(MONDAY, 10), 60
        )
        await ledger.update_state(system_actor, appointment.id, AppointmentState.CANCELLED)

        service = AvailabilityService(async_session, clock=clock, settings=test_settings)
        slots = await service.list_available_slots(specialist.id, MONDAY)

        assert len(slots) == 8

    @pytest.mark.asyncio
    async def test_past_slots_are_not_offered(
        self, async_session: AsyncSession, specialist, monday_template, clock, test_settings
    ) -> None:
        """At 12:30 on Monday only slots from 13:00 on remain."""
        clock.now = local(MONDAY, 12, 30)
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        slots = await service.list_available_slots(specialist.id, MONDAY)

        assert [s.start for s in slots] == [local(MONDAY, h) for h in range(13, 17)]

    @pytest.mark.asyncio
    async def test_day_without_template_is_empty(
        self, async_session: AsyncSession, specialist, monday_template, clock, test_settings
    ) -> None:
        """Tuesday has no template, so no slots."""
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        tuesday = MONDAY.replace(day=MONDAY.day + 1)
        assert await service.list_available_slots(specialist.id, tuesday) == []

    @pytest.mark.asyncio
    async def test_unknown_specialist(
        self, async_session: AsyncSession, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        with pytest.raises(SpecialistNotFoundError):
            await service.list_available_slots("00000000-0000-0000-0000-000000000000", MONDAY)

    @pytest.mark.asyncio
    async def test_inactive_specialist(
        self, async_session: AsyncSession, inactive_specialist, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        with pytest.raises(SpecialistNotFoundError):
            await service.list_available_slots(inactive_specialist.id, MONDAY)


class TestTemplates:
    """Tests for managing weekly templates."""

    @pytest.mark.asyncio
    async def test_specialist_creates_own_template(
        self, async_session: AsyncSession, specialist, specialist_actor, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        template = await service.create_template(
            specialist_actor,
            specialist.id,
            day_of_week=DayOfWeek.WEDNESDAY.value,
            start_time=time(16),
            end_time=time(19),
            slot_duration_minutes=30,
        )

        assert template.id is not None
        assert template.is_active is True
        templates = await service.list_templates(specialist.id, day_of_week=3)
        assert [t.id for t in templates] == [template.id]

    @pytest.mark.asyncio
    async def test_specialist_cannot_edit_another_agenda(
        self, async_session: AsyncSession, specialist, other_specialist, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        with pytest.raises(NotAuthorizedError):
            await service.create_template(
                Actor.specialist(other_specialist.id),
                specialist.id,
                day_of_week=1,
                start_time=time(9),
                end_time=time(10),
            )

    @pytest.mark.asyncio
    async def test_duplicate_window_rejected(
        self, async_session: AsyncSession, specialist, monday_template, system_actor, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        with pytest.raises(InvalidTemplateError):
            await service.create_template(
                system_actor,
                specialist.id,
                day_of_week=DayOfWeek.MONDAY.value,
                start_time=time(9),
                end_time=time(17),
            )

    @pytest.mark.asyncio
    async def test_invalid_window_rejected_before_lookup(
        self, async_session: AsyncSession, system_actor, clock, test_settings
    ) -> None:
        """Validation runs before the specialist is even looked up."""
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        with pytest.raises(InvalidTemplateError):
            await service.create_template(
                system_actor,
                "unknown",
                day_of_week=1,
                start_time=time(12),
                end_time=time(9),
            )

    @pytest.mark.asyncio
    async def test_deactivated_template_stops_offering_slots(
        self, async_session: AsyncSession, specialist, monday_template, specialist_actor, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        template = await service.deactivate_template(
            specialist_actor, specialist.id, monday_template.id
        )

        assert template.is_active is False
        assert await service.list_available_slots(specialist.id, MONDAY) == []

    @pytest.mark.asyncio
    async def test_deactivate_unknown_template(
        self, async_session: AsyncSession, specialist, specialist_actor, clock, test_settings
    ) -> None:
        service = AvailabilityService(async_session, clock=clock, settings=test_settings)

        with pytest.raises(TemplateNotFoundError):
            await service.deactivate_template(
                specialist_actor, specialist.id, "00000000-0000-0000-0000-000000000000"
            )
