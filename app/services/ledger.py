"""Booking ledger: the authoritative record of appointments.

Every booking runs as one unit of work:

1. lock the specialist row (``SELECT ... FOR UPDATE``; PostgreSQL blocks a
   concurrent booker here, SQLite ignores it),
2. re-check the interval against active appointments,
3. compare-and-swap the specialist's ``booking_version``,
4. insert the appointment and its reminders, commit.

Step 3 fails when another booking for the same specialist committed between
steps 1 and 3. The unit is then rolled back and retried from step 1, where
the overlap check sees the other booking. Either way no two active
appointments of one specialist can overlap.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Sequence
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.booking.authorization import ensure_can_manage
from app.booking.errors import (
    AppointmentNotFoundError,
    BookingError,
    InvalidIntervalError,
    InvalidTransitionError,
    PatientNotFoundError,
    SlotConflictError,
    SpecialistNotFoundError,
)
from app.booking.lifecycle import TERMINAL_STATES, is_noop_transition, validate_transition
from app.core.config import Settings, settings as default_settings
from app.core.logging import audit_logger
from app.core.security import Actor
from app.models.patient import Patient
from app.models.reminder import (
    PRE_APPOINTMENT_OFFSETS,
    Reminder,
    ReminderKind,
    ReminderState,
)
from app.models.scheduling import Appointment, AppointmentState
from app.models.specialist import Specialist
from app.services.conflicts import ACTIVE_STATE_VALUES, ConflictResolver
from app.utils.time import as_utc, get_zone, local_day_bounds, utc_now

logger = logging.getLogger(__name__)

# How many times a booking is retried after losing the version race
BOOKING_MAX_ATTEMPTS = 3


class BookingLedger:
    """Service for creating and transitioning appointments."""

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

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_appointment(self, appointment_id: str) -> Appointment:
        """Get an appointment by ID or raise AppointmentNotFoundError."""
        result = await self.session.execute(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .execution_options(populate_existing=True)
        )
        appointment = result.scalar_one_or_none()

        if not appointment:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")

        return appointment

    async def list_day_appointments(
        self,
        actor: Actor,
        specialist_id: str,
        day: date,
    ) -> Sequence[Appointment]:
        """Get a specialist's active appointments for a local calendar day."""
        ensure_can_manage(actor, specialist_id)

        day_start, day_end = local_day_bounds(day, get_zone(self.settings.agenda_timezone))

        result = await self.session.execute(
            select(Appointment).where(
                Appointment.specialist_id == specialist_id,
                Appointment.state.in_(ACTIVE_STATE_VALUES),
                Appointment.start_at >= day_start,
                Appointment.start_at < day_end,
            ).order_by(Appointment.start_at)
        )
        return result.scalars().all()

    async def _ensure_patient(self, patient_id: str) -> None:
        result = await self.session.execute(
            select(Patient.id).where(Patient.id == patient_id)
        )
        if result.scalar_one_or_none() is None:
            raise PatientNotFoundError(f"Patient {patient_id} not found")

    async def _lock_specialist(self, specialist_id: str) -> int:
        """Lock the specialist row and return its booking version."""
        result = await self.session.execute(
            select(Specialist.booking_version)
            .where(
                Specialist.id == specialist_id,
                Specialist.is_active == True,
            )
            .with_for_update()
        )
        version = result.scalar_one_or_none()

        if version is None:
            raise SpecialistNotFoundError(f"Specialist {specialist_id} not found")

        return version

    async def _bump_version(self, specialist_id: str, expected: int) -> bool:
        """Compare-and-swap the booking version. False if someone else won."""
        result = await self.session.execute(
            update(Specialist)
            .where(
                Specialist.id == specialist_id,
                Specialist.booking_version == expected,
            )
            .values(booking_version=expected + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # =========================================================================
    # UNIT OF WORK
    # =========================================================================

    async def _reserve(
        self,
        specialist_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: str | None = None,
    ) -> None:
        """Open the booking unit of work for an interval.

        On return the interval was free and the specialist's version has been
        swapped inside the still-open transaction. The caller must add its
        rows and commit, or roll back.

        Raises:
            SlotConflictError: If the interval overlaps an active appointment
            SpecialistNotFoundError: If the specialist is unknown or inactive
        """
        for attempt in range(1, BOOKING_MAX_ATTEMPTS + 1):
            try:
                version = await self._lock_specialist(specialist_id)

                available = await self.resolver.is_available(
                    specialist_id,
                    start,
                    duration_minutes,
                    exclude_appointment_id=exclude_appointment_id,
                )
                if not available:
                    raise SlotConflictError(
                        f"{start.isoformat()} (+{duration_minutes}m) overlaps an existing appointment"
                    )

                if await self._bump_version(specialist_id, version):
                    return

            except BookingError:
                await self.session.rollback()
                raise

            await self.session.rollback()
            logger.info(
                f"Booking version race lost for specialist={specialist_id[:8]} "
                f"(attempt {attempt}/{BOOKING_MAX_ATTEMPTS})"
            )

        raise SlotConflictError(
            "The agenda changed while booking, please request a fresh slot list"
        )

    async def _commit(self) -> None:
        """Commit the unit of work; constraint violations surface as conflicts."""
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise SlotConflictError(f"Booking rejected by the store: {e.orig}") from e

    async def _transition(
        self,
        appointment_id: str,
        expected: AppointmentState,
        values: dict,
    ) -> None:
        """Write a state change only if the state is still the one we validated."""
        result = await self.session.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.state == expected.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Appointment {appointment_id} changed concurrently, reload and retry"
            )

    # =========================================================================
    # REMINDERS
    # =========================================================================

    def _schedule_reminders(self, appointment: Appointment, now: datetime) -> list[Reminder]:
        """Create the reminders due for a freshly booked appointment."""
        kinds = [ReminderKind.DAY_BEFORE]
        if self.settings.reminder_one_hour_enabled:
            kinds.append(ReminderKind.HOUR_BEFORE)

        reminders = []
        for kind in kinds:
            scheduled_at = appointment.start_at - PRE_APPOINTMENT_OFFSETS[kind]
            # Too late for this one already
            if scheduled_at < now:
                continue
            reminders.append(self._new_reminder(appointment.id, kind, scheduled_at, now))

        if self.settings.booking_confirmation_enabled:
            reminders.append(
                self._new_reminder(appointment.id, ReminderKind.CONFIRMATION, now, now)
            )

        for reminder in reminders:
            self.session.add(reminder)

        return reminders

    def _new_reminder(
        self,
        appointment_id: str,
        kind: ReminderKind,
        scheduled_at: datetime,
        now: datetime,
    ) -> Reminder:
        return Reminder(
            id=str(uuid4()),
            appointment_id=appointment_id,
            kind=kind,
            scheduled_at=scheduled_at,
            state=ReminderState.PENDING,
            attempt_count=0,
            created_at=now,
            updated_at=now,
        )

    async def _cancel_pending_reminders(self, appointment_id: str, now: datetime) -> int:
        """Cancel every reminder of an appointment that has not gone out yet."""
        result = await self.session.execute(
            update(Reminder)
            .where(
                Reminder.appointment_id == appointment_id,
                Reminder.state == ReminderState.PENDING.value,
            )
            .values(
                state=ReminderState.CANCELLED.value,
                lease_token=None,
                lease_expires_at=None,
                claimed_by=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def _validate_interval(self, start: datetime, duration_minutes: int, now: datetime) -> datetime:
        if duration_minutes <= 0:
            raise InvalidIntervalError("duration_minutes must be positive")

        start = as_utc(start)
        if start <= now:
            raise InvalidIntervalError("Appointment must start in the future")

        return start

    async def create_appointment(
        self,
        actor: Actor,
        specialist_id: str,
        patient_id: str,
        start: datetime,
        duration_minutes: int,
        reason: str | None = None,
        notes: str | None = None,
        confirmed: bool = False,
    ) -> Appointment:
        """Book an appointment.

        "Now" for the future-start rule is read once, when the request is
        received, and also becomes the appointment's ``created_at``.

        Raises:
            InvalidIntervalError: Non-positive duration or start not in the future
            NotAuthorizedError: Caller does not own the specialist
            NotFoundError: Unknown specialist or patient
            SlotConflictError: The interval is taken (possibly concurrently)
        """
        now = self.clock()
        start = self._validate_interval(start, duration_minutes, now)
        ensure_can_manage(actor, specialist_id)
        await self._ensure_patient(patient_id)

        await self._reserve(specialist_id, start, duration_minutes)

        try:
            appointment = Appointment(
                id=str(uuid4()),
                specialist_id=specialist_id,
                patient_id=patient_id,
                start_at=start,
                end_at=start + timedelta(minutes=duration_minutes),
                duration_minutes=duration_minutes,
                state=AppointmentState.CONFIRMED if confirmed else AppointmentState.PENDING,
                reason=reason,
                notes=notes,
                reminder_sent=False,
                created_at=now,
                updated_at=now,
            )
            self.session.add(appointment)
            reminders = self._schedule_reminders(appointment, now)
        except Exception:
            await self.session.rollback()
            raise

        await self._commit()
        await self.session.refresh(appointment)

        audit_logger.log(
            action="appointment.created",
            actor_type=actor.actor_type.value,
            actor_id=actor.actor_id,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={
                "specialist_id": specialist_id,
                "start": start.isoformat(),
                "duration": duration_minutes,
                "reminders": len(reminders),
            },
        )

        return appointment

    async def update_state(
        self,
        actor: Actor,
        appointment_id: str,
        new_state: AppointmentState,
        reason: str | None = None,
    ) -> Appointment:
        """Move an appointment through its lifecycle.

        Repeating a cancel is a no-op and returns the appointment unchanged,
        also when a concurrent request cancelled it first.

        Raises:
            AppointmentNotFoundError: Unknown appointment
            NotAuthorizedError: Caller does not own the specialist
            InvalidTransitionError: The lifecycle forbids the change
        """
        now = self.clock()
        new_state = AppointmentState(new_state)
        appointment = await self.get_appointment(appointment_id)
        ensure_can_manage(actor, appointment.specialist_id)

        if not validate_transition(appointment.state, new_state):
            return appointment

        previous = AppointmentState(appointment.state)
        try:
            values = {"state": new_state.value, "updated_at": now}
            if new_state == AppointmentState.CANCELLED:
                values.update(cancelled_at=now, cancellation_reason=reason)

            await self._transition(appointment.id, previous, values)

            if new_state in TERMINAL_STATES:
                await self._cancel_pending_reminders(appointment.id, now)

            if new_state == AppointmentState.COMPLETED and self.settings.follow_up_delay_hours is not None:
                follow_up_at = max(as_utc(appointment.end_at), now) + timedelta(
                    hours=self.settings.follow_up_delay_hours
                )
                self.session.add(
                    self._new_reminder(appointment.id, ReminderKind.FOLLOW_UP, follow_up_at, now)
                )

            await self.session.commit()
        except InvalidTransitionError:
            await self.session.rollback()
            current = await self.get_appointment(appointment_id)
            if is_noop_transition(current.state, new_state):
                return current
            raise
        except Exception:
            await self.session.rollback()
            raise

        await self.session.refresh(appointment)

        audit_logger.log(
            action="appointment.state_changed",
            actor_type=actor.actor_type.value,
            actor_id=actor.actor_id,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"from": previous.value, "to": new_state.value},
        )

        return appointment

    async def cancel(
        self,
        actor: Actor,
        appointment_id: str,
        reason: str | None = None,
    ) -> Appointment:
        """Cancel an appointment and its pending reminders."""
        return await self.update_state(
            actor, appointment_id, AppointmentState.CANCELLED, reason=reason
        )

    async def reschedule(
        self,
        actor: Actor,
        appointment_id: str,
        new_start: datetime,
        duration_minutes: int | None = None,
    ) -> Appointment:
        """Move an appointment to a new interval.

        Cancels the old appointment and books a new one in a single unit of
        work. The old appointment's own interval does not block the new one.
        The new appointment starts over as pending.

        Raises:
            InvalidIntervalError: Bad duration or new start not in the future
            InvalidTransitionError: The appointment is no longer active
            SlotConflictError: The new interval is taken
        """
        now = self.clock()
        appointment = await self.get_appointment(appointment_id)
        ensure_can_manage(actor, appointment.specialist_id)

        if duration_minutes is None:
            duration_minutes = appointment.duration_minutes
        new_start = self._validate_interval(new_start, duration_minutes, now)

        if not appointment.is_active:
            raise InvalidTransitionError(
                f"Cannot reschedule a {AppointmentState(appointment.state).value} appointment"
            )

        specialist_id = appointment.specialist_id
        await self._reserve(
            specialist_id,
            new_start,
            duration_minutes,
            exclude_appointment_id=appointment_id,
        )

        try:
            # Reload inside the unit of work, it may have changed meanwhile
            old = await self.get_appointment(appointment_id)
            if not old.is_active:
                raise InvalidTransitionError(
                    f"Cannot reschedule a {AppointmentState(old.state).value} appointment"
                )

            await self._transition(
                old.id,
                AppointmentState(old.state),
                {
                    "state": AppointmentState.CANCELLED.value,
                    "cancelled_at": now,
                    "cancellation_reason": "Rescheduled",
                    "updated_at": now,
                },
            )
            await self._cancel_pending_reminders(old.id, now)

            new_appointment = Appointment(
                id=str(uuid4()),
                specialist_id=specialist_id,
                patient_id=old.patient_id,
                start_at=new_start,
                end_at=new_start + timedelta(minutes=duration_minutes),
                duration_minutes=duration_minutes,
                state=AppointmentState.PENDING,
                reason=old.reason,
                notes=old.notes,
                reminder_sent=False,
                rescheduled_from_id=old.id,
                created_at=now,
                updated_at=now,
            )
            self.session.add(new_appointment)
            self._schedule_reminders(new_appointment, now)
        except Exception:
            await self.session.rollback()
            raise

        await self._commit()
        await self.session.refresh(new_appointment)

        audit_logger.log(
            action="appointment.rescheduled",
            actor_type=actor.actor_type.value,
            actor_id=actor.actor_id,
            entity_type="appointment",
            entity_id=new_appointment.id,
            metadata={"from_appointment": appointment_id, "start": new_start.isoformat()},
        )

        return new_appointment
