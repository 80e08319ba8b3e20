"""API v1 router configuration."""

from fastapi import APIRouter

from dental_scheduler.api.v1.endpoints import appointments, health, practitioners

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(practitioners.router, tags=["Practitioners"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
