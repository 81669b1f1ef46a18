"""Concurrent booking tests.

Runs several ledgers on separate connections to a file-backed SQLite
database so their units of work genuinely interleave.
"""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.booking.errors import InvalidTransitionError, SlotConflictError
from app.booking.overlap import intervals_overlap
from app.core.security import Actor
from app.db.base import Base
from app.models.patient import Patient
from app.models.scheduling import ACTIVE_STATES, Appointment, AppointmentState
from app.models.specialist import Specialist
from app.services.ledger import BookingLedger
from app.utils.time import as_utc
from tests.conftest import MONDAY, local


@pytest.fixture
async def file_session_maker(tmp_path):
    """Session factory over a SQLite file shared by several connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'agenda.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest.fixture
async def seeded_ids(file_session_maker) -> tuple[str, str]:
    async with file_session_maker() as session:
        specialist = Specialist(
            email="concurrency@agenda.local",
            name="Dra. Concurrencia",
            is_active=True,
            booking_version=0,
        )
        patient = Patient(name="Paciente", phone="+5215599999999")
        session.add_all([specialist, patient])
        await session.commit()
        return specialist.id, patient.id


async def try_book(session_maker, clock, settings, specialist_id, patient_id, start, minutes=60):
    async with session_maker() as session:
        ledger = BookingLedger(session, clock=clock, settings=settings)
        try:
            appointment = await ledger.create_appointment(
                Actor.system("load-test"),
                specialist_id,
                patient_id,
                start,
                minutes,
            )
        except SlotConflictError:
            return None
        return appointment.id


async def active_appointments(session_maker, specialist_id) -> list[Appointment]:
    async with session_maker() as session:
        result = await session.execute(
            select(Appointment).where(
                Appointment.specialist_id == specialist_id,
                Appointment.state.in_([s.value for s in ACTIVE_STATES]),
            )
        )
        return list(result.scalars().all())


class TestConcurrentBooking:
    """No two active appointments of a specialist ever overlap."""

    @pytest.mark.asyncio
    async def test_identical_concurrent_bookings_single_winner(
        self, file_session_maker, seeded_ids, clock, test_settings
    ) -> None:
        specialist_id, patient_id = seeded_ids

        results = await asyncio.gather(
            *[
                try_book(
                    file_session_maker, clock, test_settings,
                    specialist_id, patient_id, local(MONDAY, 10),
                )
                for _ in range(5)
            ]
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        appointments = await active_appointments(file_session_maker, specialist_id)
        assert [a.id for a in appointments] == winners

    @pytest.mark.asyncio
    async def test_overlapping_concurrent_bookings(
        self, file_session_maker, seeded_ids, clock, test_settings
    ) -> None:
        """10:00-11:00 and 10:30-11:30 racing: exactly one is kept."""
        specialist_id, patient_id = seeded_ids

        results = await asyncio.gather(
            try_book(file_session_maker, clock, test_settings, specialist_id, patient_id, local(MONDAY, 10)),
            try_book(file_session_maker, clock, test_settings, specialist_id, patient_id, local(MONDAY, 10, 30)),
        )

        assert len([r for r in results if r is not None]) == 1

        appointments = await active_appointments(file_session_maker, specialist_id)
        assert len(appointments) == 1

    @pytest.mark.asyncio
    async def test_disjoint_concurrent_bookings_both_succeed(
        self, file_session_maker, seeded_ids, clock, test_settings
    ) -> None:
        """A lost version race is retried, not reported as a conflict."""
        specialist_id, patient_id = seeded_ids

        results = await asyncio.gather(
            try_book(file_session_maker, clock, test_settings, specialist_id, patient_id, local(MONDAY, 10)),
            try_book(file_session_maker, clock, test_settings, specialist_id, patient_id, local(MONDAY, 11)),
        )

        assert all(r is not None for r in results)

        appointments = await active_appointments(file_session_maker, specialist_id)
        intervals = sorted((as_utc(a.start_at), as_utc(a.end_at)) for a in appointments)
        assert len(intervals) == 2
        assert not intervals_overlap(*intervals[0], *intervals[1])


class RacedLedger(BookingLedger):
    """Ledger that lets a rival request run right after its first read."""

    def __init__(self, *args, rival=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._rival = rival

    async def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = await super().get_appointment(appointment_id)
        if self._rival is not None:
            rival, self._rival = self._rival, None
            await rival()
        return appointment


class TestConcurrentStateChanges:
    """State changes racing on the same appointment."""

    @pytest.fixture
    async def appointment_id(self, file_session_maker, seeded_ids, clock, test_settings) -> str:
        specialist_id, patient_id = seeded_ids
        appointment_id = await try_book(
            file_session_maker, clock, test_settings, specialist_id, patient_id, local(MONDAY, 10)
        )
        assert appointment_id is not None
        return appointment_id

    @staticmethod
    def rival_change(session_maker, clock, settings, appointment_id, new_state, reason=None):
        async def change() -> None:
            async with session_maker() as session:
                ledger = BookingLedger(session, clock=clock, settings=settings)
                await ledger.update_state(
                    Actor.system("rival"), appointment_id, new_state, reason=reason
                )

        return change

    @pytest.mark.asyncio
    async def test_cancel_racing_cancel_is_noop(
        self, file_session_maker, appointment_id, clock, test_settings
    ) -> None:
        rival = self.rival_change(
            file_session_maker, clock, test_settings, appointment_id,
            AppointmentState.CANCELLED, reason="rival",
        )

        async with file_session_maker() as session:
            ledger = RacedLedger(session, clock=clock, settings=test_settings, rival=rival)
            result = await ledger.cancel(Actor.system("load-test"), appointment_id, reason="mine")

            assert result.state == AppointmentState.CANCELLED
            assert result.cancellation_reason == "rival"

    @pytest.mark.asyncio
    async def test_cancel_racing_completion_is_rejected(
        self, file_session_maker, appointment_id, clock, test_settings
    ) -> None:
        rival = self.rival_change(
            file_session_maker, clock, test_settings, appointment_id, AppointmentState.COMPLETED
        )

        async with file_session_maker() as session:
            ledger = RacedLedger(session, clock=clock, settings=test_settings, rival=rival)
            with pytest.raises(InvalidTransitionError):
                await ledger.cancel(Actor.system("load-test"), appointment_id)

        async with file_session_maker() as session:
            current = await BookingLedger(session, clock=clock, settings=test_settings).get_appointment(
                appointment_id
            )
            assert current.state == AppointmentState.COMPLETED
