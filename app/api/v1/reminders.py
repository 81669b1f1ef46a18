"""Reminder endpoints for external dispatcher workers.

Only system callers may use these. A worker claims a batch, delivers it
through its own channel and reports each outcome with the lease token it
was given.
"""

from datetime import datetime

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field, field_validator

from app.api.deps import DbSession, SystemActor
from app.api.v1.scheduling import booking_http_error
from app.booking.errors import BookingError
from app.core.logging import audit_logger
from app.services.reminders import DeliveryOutcome, ReminderDispatcher
from app.utils.time import as_utc

router = APIRouter()


# ============================================================================
# Request/Response Schemas
# ============================================================================


class ReminderResponse(BaseModel):
    """Reminder response."""

    id: str
    appointment_id: str
    kind: str
    scheduled_at: datetime
    state: str
    attempt_count: int
    sent_at: datetime | None
    last_error: str | None
    lease_token: str | None
    lease_expires_at: datetime | None

    class Config:
        from_attributes = True

    @field_validator("scheduled_at", "sent_at", "lease_expires_at")
    @classmethod
    def ensure_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class ClaimRequest(BaseModel):
    """Request to lease a batch of due reminders."""

    worker_id: str = Field(..., min_length=1, max_length=100)
    limit: int | None = Field(None, gt=0, le=500)


class ReminderResultRequest(BaseModel):
    """Outcome of one delivery attempt."""

    outcome: DeliveryOutcome
    error: str | None = Field(None, max_length=2000)
    provider_message_id: str | None = Field(None, max_length=255)
    lease_token: str | None = None


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/due",
    response_model=list[ReminderResponse],
)
async def list_due_reminders(
    actor: SystemActor,
    session: DbSession,
    limit: int | None = Query(None, gt=0, le=500),
) -> list[ReminderResponse]:
    """List pending reminders whose time has come and that nobody holds."""
    dispatcher = ReminderDispatcher(session)
    reminders = await dispatcher.list_due(limit=limit)

    return [ReminderResponse.model_validate(r) for r in reminders]


@router.post(
    "/claim",
    response_model=list[ReminderResponse],
)
async def claim_due_reminders(
    actor: SystemActor,
    session: DbSession,
    request: ClaimRequest,
) -> list[ReminderResponse]:
    """Lease due reminders to the calling worker."""
    dispatcher = ReminderDispatcher(session, worker_id=request.worker_id)
    reminders = await dispatcher.claim_due(limit=request.limit)

    return [ReminderResponse.model_validate(r) for r in reminders]


@router.post(
    "/{reminder_id}/result",
    response_model=ReminderResponse,
    status_code=status.HTTP_200_OK,
)
async def mark_reminder_result(
    reminder_id: str,
    actor: SystemActor,
    session: DbSession,
    request: ReminderResultRequest,
) -> ReminderResponse:
    """Record whether a reminder went out."""
    dispatcher = ReminderDispatcher(session)

    try:
        reminder = await dispatcher.mark_result(
            reminder_id,
            request.outcome,
            error=request.error,
            provider_message_id=request.provider_message_id,
            lease_token=request.lease_token,
        )
    except BookingError as e:
        raise booking_http_error(e)

    audit_logger.log(
        action="reminder.result",
        actor_type=actor.actor_type.value,
        actor_id=actor.actor_id,
        entity_type="reminder",
        entity_id=reminder.id,
        metadata={"outcome": request.outcome.value, "state": reminder.state},
    )

    return ReminderResponse.model_validate(reminder)
