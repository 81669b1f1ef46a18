"""Scheduling API endpoints for availability and appointments."""

from datetime import date, datetime, time

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from app.api.deps import CurrentActor, DbSession
from app.booking.authorization import ensure_can_manage
from app.booking.errors import (
    BookingError,
    InvalidIntervalError,
    InvalidTemplateError,
    InvalidTransitionError,
    LeaseLostError,
    NotAuthorizedError,
    NotFoundError,
    SlotConflictError,
)
from app.models.scheduling import AppointmentState
from app.services.availability import AvailabilityService
from app.services.ledger import BookingLedger
from app.utils.time import as_utc

router = APIRouter()


def booking_http_error(exc: BookingError) -> HTTPException:
    """Translate a booking engine error into an HTTP error."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotAuthorizedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (SlotConflictError, InvalidTransitionError, LeaseLostError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (InvalidIntervalError, InvalidTemplateError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST

    return HTTPException(status_code=code, detail=str(exc))


# ============================================================================
# Request/Response Schemas
# ============================================================================


class SlotResponse(BaseModel):
    """Bookable slot."""

    start: datetime
    end: datetime
    duration_minutes: int


class TemplateResponse(BaseModel):
    """Weekly availability template."""

    id: str
    specialist_id: str
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


class CreateTemplateRequest(BaseModel):
    """Request to create a weekly availability window."""

    day_of_week: int = Field(ge=0, le=6, description="0=Sunday .. 6=Saturday")
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(60, gt=0)


class AppointmentResponse(BaseModel):
    """Appointment response."""

    id: str
    specialist_id: str
    patient_id: str
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    state: str
    reason: str | None
    notes: str | None
    reminder_sent: bool
    cancelled_at: datetime | None
    cancellation_reason: str | None
    rescheduled_from_id: str | None
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("start_at", "end_at", "cancelled_at", "created_at")
    @classmethod
    def ensure_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class CreateAppointmentRequest(BaseModel):
    """Request to book an appointment."""

    specialist_id: str
    patient_id: str
    start: datetime
    duration_minutes: int = Field(gt=0)
    reason: str | None = Field(None, max_length=2000)
    notes: str | None = Field(None, max_length=2000)
    confirmed: bool = False


class UpdateStateRequest(BaseModel):
    """Request to move an appointment through its lifecycle."""

    state: AppointmentState
    reason: str | None = Field(None, max_length=1000)


class CancelAppointmentRequest(BaseModel):
    """Request body for cancellation."""

    reason: str | None = Field(None, max_length=1000)


class RescheduleAppointmentRequest(BaseModel):
    """Request body for reschedule."""

    new_start: datetime
    duration_minutes: int | None = Field(None, gt=0)


# ============================================================================
# Availability Endpoints
# ============================================================================


@router.get(
    "/specialists/{specialist_id}/slots",
    response_model=list[SlotResponse],
)
async def list_available_slots(
    specialist_id: str,
    session: DbSession,
    target_date: date = Query(..., alias="date"),
) -> list[SlotResponse]:
    """List free, bookable slots of a specialist on a date."""
    service = AvailabilityService(session)

    try:
        slots = await service.list_available_slots(specialist_id, target_date)
    except BookingError as e:
        raise booking_http_error(e)

    return [
        SlotResponse(start=s.start, end=s.end, duration_minutes=s.duration_minutes)
        for s in slots
    ]


@router.get(
    "/specialists/{specialist_id}/templates",
    response_model=list[TemplateResponse],
)
async def list_templates(
    specialist_id: str,
    session: DbSession,
    day_of_week: int | None = Query(None, ge=0, le=6),
) -> list[TemplateResponse]:
    """List a specialist's active availability templates."""
    service = AvailabilityService(session)

    try:
        await service.get_specialist(specialist_id)
    except BookingError as e:
        raise booking_http_error(e)

    templates = await service.list_templates(specialist_id, day_of_week=day_of_week)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post(
    "/specialists/{specialist_id}/templates",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_template(
    specialist_id: str,
    actor: CurrentActor,
    session: DbSession,
    request: CreateTemplateRequest,
) -> TemplateResponse:
    """Add a weekly availability window."""
    service = AvailabilityService(session)

    try:
        template = await service.create_template(
            actor,
            specialist_id,
            day_of_week=request.day_of_week,
            start_time=request.start_time,
            end_time=request.end_time,
            slot_duration_minutes=request.slot_duration_minutes,
        )
    except BookingError as e:
        raise booking_http_error(e)

    return TemplateResponse.model_validate(template)


@router.delete(
    "/specialists/{specialist_id}/templates/{template_id}",
    response_model=TemplateResponse,
)
async def deactivate_template(
    specialist_id: str,
    template_id: str,
    actor: CurrentActor,
    session: DbSession,
) -> TemplateResponse:
    """Stop offering slots from a template."""
    service = AvailabilityService(session)

    try:
        template = await service.deactivate_template(actor, specialist_id, template_id)
    except BookingError as e:
        raise booking_http_error(e)

    return TemplateResponse.model_validate(template)


@router.get(
    "/specialists/{specialist_id}/appointments",
    response_model=list[AppointmentResponse],
)
async def list_day_appointments(
    specialist_id: str,
    actor: CurrentActor,
    session: DbSession,
    target_date: date = Query(..., alias="date"),
) -> list[AppointmentResponse]:
    """Get a specialist's active appointments for a day."""
    ledger = BookingLedger(session)

    try:
        appointments = await ledger.list_day_appointments(actor, specialist_id, target_date)
    except BookingError as e:
        raise booking_http_error(e)

    return [AppointmentResponse.model_validate(a) for a in appointments]


# ============================================================================
# Appointment Endpoints
# ============================================================================


@router.post(
    "/appointments",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(
    actor: CurrentActor,
    session: DbSession,
    request: CreateAppointmentRequest,
) -> AppointmentResponse:
    """Book an appointment."""
    ledger = BookingLedger(session)

    try:
        appointment = await ledger.create_appointment(
            actor,
            specialist_id=request.specialist_id,
            patient_id=request.patient_id,
            start=request.start,
            duration_minutes=request.duration_minutes,
            reason=request.reason,
            notes=request.notes,
            confirmed=request.confirmed,
        )
    except BookingError as e:
        raise booking_http_error(e)

    return AppointmentResponse.model_validate(appointment)


@router.get(
    "/appointments/{appointment_id}",
    response_model=AppointmentResponse,
)
async def get_appointment(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
) -> AppointmentResponse:
    """Get an appointment."""
    ledger = BookingLedger(session)

    try:
        appointment = await ledger.get_appointment(appointment_id)
        ensure_can_manage(actor, appointment.specialist_id)
    except BookingError as e:
        raise booking_http_error(e)

    return AppointmentResponse.model_validate(appointment)


@router.patch(
    "/appointments/{appointment_id}/state",
    response_model=AppointmentResponse,
)
async def update_appointment_state(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
    request: UpdateStateRequest,
) -> AppointmentResponse:
    """Confirm, cancel or complete an appointment."""
    ledger = BookingLedger(session)

    try:
        appointment = await ledger.update_state(
            actor,
            appointment_id,
            request.state,
            reason=request.reason,
        )
    except BookingError as e:
        raise booking_http_error(e)

    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentResponse,
)
async def cancel_appointment(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
    request: CancelAppointmentRequest | None = None,
) -> AppointmentResponse:
    """Cancel an appointment. Cancelling twice is harmless."""
    ledger = BookingLedger(session)

    try:
        appointment = await ledger.cancel(
            actor,
            appointment_id,
            reason=request.reason if request else None,
        )
    except BookingError as e:
        raise booking_http_error(e)

    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/appointments/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def reschedule_appointment(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
    request: RescheduleAppointmentRequest,
) -> AppointmentResponse:
    """Move an appointment. Returns the new appointment."""
    ledger = BookingLedger(session)

    try:
        appointment = await ledger.reschedule(
            actor,
            appointment_id,
            new_start=request.new_start,
            duration_minutes=request.duration_minutes,
        )
    except BookingError as e:
        raise booking_http_error(e)

    return AppointmentResponse.model_validate(appointment)
