"""Reminder dispatcher.

Per reminder:

    pending --send ok-----------------------------> sent
    pending --send fails, attempts < max----------> pending (attempt_count + 1)
    pending --send fails, attempts reach max------> failed
    pending --appointment cancelled/completed-----> cancelled

Workers claim due reminders with a lease before sending. The claim is a
conditional UPDATE on the reminder row, so two workers polling at the same
time never both get the same reminder. A lease that runs out without a
result makes the reminder claimable again. A failed attempt pushes
``next_attempt_at`` forward with exponential backoff, and a worker only sends
while its own lease is still live.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Sequence
from uuid import uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.booking.errors import (
    BookingError,
    InvalidTransitionError,
    LeaseLostError,
    ReminderNotFoundError,
)
from app.core.config import Settings, settings as default_settings
from app.models.patient import Patient
from app.models.reminder import PRE_APPOINTMENT_OFFSETS, Reminder, ReminderKind, ReminderState
from app.models.scheduling import ACTIVE_STATES, Appointment
from app.services.messaging import DeliveryFailureError, LoggingProvider, MessageProvider
from app.utils.time import as_utc, get_zone, utc_now

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    """Result of one delivery attempt."""

    SENT = "sent"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """What happened to a claimed reminder."""

    reminder_id: str
    outcome: DeliveryOutcome | None
    state: ReminderState | None = None
    error: str | None = None
    provider_message_id: str | None = None
    skipped: bool = False


REMINDER_TEXT = {
    ReminderKind.DAY_BEFORE: "Recordatorio: tienes una cita mañana {when}.",
    ReminderKind.HOUR_BEFORE: "Recordatorio: tu cita es en una hora ({when}).",
    ReminderKind.CONFIRMATION: "Tu cita quedó agendada para {when}.",
    ReminderKind.FOLLOW_UP: "Gracias por asistir a tu cita del {when}. ¿Cómo te sientes?",
}


def build_reminder_message(kind: str, start_at: datetime, zone_name: str) -> str:
    """Render the plain-text body for a reminder."""
    local = as_utc(start_at).astimezone(get_zone(zone_name))
    when = local.strftime("%d/%m/%Y %H:%M")
    return REMINDER_TEXT[ReminderKind(kind)].format(when=when)


class ReminderDispatcher:
    """Claims due reminders, delivers them and records the outcome."""

    def __init__(
        self,
        session: AsyncSession,
        provider: MessageProvider | None = None,
        clock: Callable[[], datetime] = utc_now,
        settings: Settings | None = None,
        worker_id: str | None = None,
    ):
        self.session = session
        self.provider = provider or LoggingProvider()
        self.clock = clock
        self.settings = settings or default_settings
        self.worker_id = worker_id or f"worker-{uuid4().hex[:8]}"

    def retry_delay(self, attempts: int) -> timedelta:
        """Wait before the next try after ``attempts`` failed attempts."""
        return timedelta(
            seconds=self.settings.reminder_retry_backoff_seconds * 2 ** (attempts - 1)
        )

    async def get_reminder(self, reminder_id: str) -> Reminder:
        """Get a reminder by ID or raise ReminderNotFoundError."""
        result = await self.session.execute(
            select(Reminder)
            .where(Reminder.id == reminder_id)
            .execution_options(populate_existing=True)
        )
        reminder = result.scalar_one_or_none()

        if not reminder:
            raise ReminderNotFoundError(f"Reminder {reminder_id} not found")

        return reminder

    def _due_filter(self, now: datetime, include_leased: bool = False) -> list:
        conditions = [
            Reminder.state == ReminderState.PENDING.value,
            Reminder.scheduled_at <= now,
            or_(
                Reminder.next_attempt_at.is_(None),
                Reminder.next_attempt_at <= now,
            ),
        ]
        if not include_leased:
            conditions.append(
                or_(
                    Reminder.lease_expires_at.is_(None),
                    Reminder.lease_expires_at <= now,
                )
            )
        return conditions

    async def list_due(
        self,
        limit: int | None = None,
        include_leased: bool = False,
    ) -> Sequence[Reminder]:
        """Get pending reminders whose scheduled time and retry delay have passed.

        Leased reminders are left out unless ``include_leased`` is set.
        """
        now = self.clock()
        query = (
            select(Reminder)
            .where(*self._due_filter(now, include_leased))
            .order_by(Reminder.scheduled_at)
            .limit(limit or self.settings.dispatcher_batch_size)
            .execution_options(populate_existing=True)
        )

        result = await self.session.execute(query)
        return result.scalars().all()

    async def claim_due(self, limit: int | None = None) -> list[Reminder]:
        """Lease a batch of due reminders to this worker.

        Returns only the reminders whose claim succeeded, each carrying a
        fresh ``lease_token``.
        """
        now = self.clock()
        lease_until = now + timedelta(seconds=self.settings.reminder_lease_seconds)

        result = await self.session.execute(
            select(Reminder.id)
            .where(*self._due_filter(now))
            .order_by(Reminder.scheduled_at)
            .limit(limit or self.settings.dispatcher_batch_size)
        )
        candidate_ids = list(result.scalars().all())

        claimed_ids = []
        for reminder_id in candidate_ids:
            claim = await self.session.execute(
                update(Reminder)
                .where(Reminder.id == reminder_id, *self._due_filter(now))
                .values(
                    lease_token=uuid4().hex,
                    lease_expires_at=lease_until,
                    claimed_by=self.worker_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount == 1:
                claimed_ids.append(reminder_id)

        await self.session.commit()

        if not claimed_ids:
            return []

        logger.info(
            f"Claimed {len(claimed_ids)}/{len(candidate_ids)} due reminders",
            extra={"worker_id": self.worker_id},
        )

        result = await self.session.execute(
            select(Reminder)
            .where(Reminder.id.in_(claimed_ids))
            .order_by(Reminder.scheduled_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _cancel_reminder(self, reminder_id: str, now: datetime) -> None:
        await self.session.execute(
            update(Reminder)
            .where(
                Reminder.id == reminder_id,
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
        await self.session.commit()

    async def deliver(self, reminder: Reminder) -> DeliveryResult:
        """Send one claimed reminder and record the outcome.

        The reminder's lease and state and the appointment's state are re-read
        first. Nothing is sent unless this worker still holds a live lease: a
        reminder whose lease ran out or was cancelled meanwhile is skipped, and
        one whose appointment is no longer active is cancelled.
        """
        now = self.clock()
        reminder_id = reminder.id
        kind = reminder.kind
        lease_token = reminder.lease_token

        result = await self.session.execute(
            select(
                Reminder.state,
                Reminder.lease_token,
                Reminder.lease_expires_at,
                Appointment.state,
                Appointment.start_at,
                Patient.phone,
            )
            .join(Appointment, Appointment.id == Reminder.appointment_id)
            .join(Patient, Patient.id == Appointment.patient_id)
            .where(Reminder.id == reminder_id)
        )
        row = result.one_or_none()
        if row is None:
            raise ReminderNotFoundError(f"Reminder {reminder_id} not found")

        reminder_state, held_token, lease_expires_at, appointment_state, start_at, phone = row
        if reminder_state != ReminderState.PENDING:
            return DeliveryResult(reminder_id, outcome=None, skipped=True)

        if (
            lease_token is None
            or held_token != lease_token
            or lease_expires_at is None
            or as_utc(lease_expires_at) <= now
        ):
            logger.warning(
                f"Reminder {reminder_id[:8]} not sent, lease no longer held",
                extra={"worker_id": self.worker_id},
            )
            return DeliveryResult(reminder_id, outcome=None, skipped=True)

        if appointment_state not in ACTIVE_STATES:
            await self._cancel_reminder(reminder_id, now)
            logger.info(f"Reminder {reminder_id[:8]} cancelled, appointment is {appointment_state}")
            return DeliveryResult(reminder_id, outcome=None, skipped=True)

        body = build_reminder_message(kind, start_at, self.settings.agenda_timezone)

        outcome = DeliveryOutcome.SENT
        error = None
        provider_message_id = None
        try:
            provider_message_id = await asyncio.wait_for(
                self.provider.send(destination=phone, body=body),
                timeout=self.settings.delivery_timeout_seconds,
            )
        except asyncio.TimeoutError:
            outcome = DeliveryOutcome.FAILED
            error = f"Delivery timed out after {self.settings.delivery_timeout_seconds}s"
        except DeliveryFailureError as e:
            outcome = DeliveryOutcome.FAILED
            error = str(e) or "Delivery failed"
        except Exception as e:
            logger.exception(f"Provider error for reminder {reminder_id[:8]}: {e}")
            outcome = DeliveryOutcome.FAILED
            error = f"Provider error: {e}"

        if error:
            logger.warning(f"Reminder {reminder_id[:8]} delivery failed: {error}")

        stored = await self.mark_result(
            reminder_id,
            outcome,
            error=error,
            provider_message_id=provider_message_id,
            lease_token=lease_token,
        )

        return DeliveryResult(
            reminder_id,
            outcome=outcome,
            state=ReminderState(stored.state),
            error=error,
            provider_message_id=provider_message_id,
        )

    async def mark_result(
        self,
        reminder_id: str,
        outcome: DeliveryOutcome,
        error: str | None = None,
        provider_message_id: str | None = None,
        lease_token: str | None = None,
    ) -> Reminder:
        """Record the outcome of one delivery attempt.

        The write is conditional on the reminder still being pending, on its
        attempt count being the one read, and on ``lease_token`` (when given)
        still being held, so a late result never overwrites a newer one.

        Raises:
            ReminderNotFoundError: Unknown reminder
            InvalidTransitionError: The reminder is no longer pending
            LeaseLostError: ``lease_token`` given but no longer held
        """
        now = self.clock()
        outcome = DeliveryOutcome(outcome)
        reminder = await self.get_reminder(reminder_id)

        if reminder.state != ReminderState.PENDING:
            raise InvalidTransitionError(
                f"Reminder {reminder_id} is already {ReminderState(reminder.state).value}"
            )

        if lease_token is not None and reminder.lease_token != lease_token:
            raise LeaseLostError(f"Lease on reminder {reminder_id} is no longer held")

        attempts = reminder.attempt_count + 1
        values = {
            "attempt_count": attempts,
            "lease_token": None,
            "lease_expires_at": None,
            "claimed_by": None,
            "updated_at": now,
        }

        if outcome == DeliveryOutcome.SENT:
            values.update(
                state=ReminderState.SENT.value,
                sent_at=now,
                last_error=None,
                provider_message_id=provider_message_id,
                next_attempt_at=None,
            )
        else:
            values["last_error"] = error
            if attempts >= self.settings.reminder_max_attempts:
                values["state"] = ReminderState.FAILED.value
                values["next_attempt_at"] = None
            else:
                values["next_attempt_at"] = now + self.retry_delay(attempts)

        query = update(Reminder).where(
            Reminder.id == reminder_id,
            Reminder.state == ReminderState.PENDING.value,
            Reminder.attempt_count == reminder.attempt_count,
        )
        if lease_token is not None:
            query = query.where(Reminder.lease_token == lease_token)

        result = await self.session.execute(
            query.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LeaseLostError(f"Reminder {reminder_id} changed while recording its result")

        if outcome == DeliveryOutcome.SENT and ReminderKind(reminder.kind) in PRE_APPOINTMENT_OFFSETS:
            await self.session.execute(
                update(Appointment)
                .where(Appointment.id == reminder.appointment_id)
                .values(reminder_sent=True, updated_at=now)
                .execution_options(synchronize_session=False)
            )

        await self.session.commit()

        if values.get("state") == ReminderState.FAILED.value:
            logger.error(f"Reminder {reminder_id[:8]} failed after {attempts} attempts: {error}")

        return await self.get_reminder(reminder_id)

    async def run_once(self) -> dict:
        """Claim and deliver one batch of due reminders.

        Returns:
            Counts of what happened to the batch
        """
        stats = {"claimed": 0, "sent": 0, "retrying": 0, "failed": 0, "skipped": 0}

        # A lease covers a single send and is taken right before it
        for _ in range(self.settings.dispatcher_batch_size):
            claimed = await self.claim_due(limit=1)
            if not claimed:
                break

            stats["claimed"] += 1
            reminder = claimed[0]
            reminder_id = reminder.id
            try:
                result = await self.deliver(reminder)
            except BookingError as e:
                # Cancelled or re-leased while we were sending
                logger.warning(f"Result for reminder {reminder_id[:8]} not recorded: {e}")
                stats["skipped"] += 1
                continue

            if result.skipped:
                stats["skipped"] += 1
            elif result.outcome == DeliveryOutcome.SENT:
                stats["sent"] += 1
            elif result.state == ReminderState.FAILED:
                stats["failed"] += 1
            else:
                stats["retrying"] += 1

        logger.info(f"Reminder batch complete: {stats}", extra={"worker_id": self.worker_id})
        return stats
