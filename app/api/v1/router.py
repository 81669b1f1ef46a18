"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from app.api.v1 import health, reminders, scheduling

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Availability and appointments
api_router.include_router(
    scheduling.router,
    tags=["scheduling"],
)

# Reminder dispatch
api_router.include_router(
    reminders.router,
    prefix="/reminders",
    tags=["reminders"],
)
