"""Practitioner availability and slot-check endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from dental_scheduler.core.slots import SlotDecision
from dental_scheduler.dependencies import Availability, CurrentActor, Scheduling
from dental_scheduler.schemas.appointments import SlotValidationRequest, SlotValidationResponse
from dental_scheduler.schemas.availability import AvailabilityResponse, AvailabilityUpdate

router = APIRouter()


@router.get(
    "/practitioners/{practitioner_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Get weekly availability",
)
async def get_availability(
    practitioner_id: UUID,
    actor: CurrentActor,
    service: Availability,
) -> AvailabilityResponse:
    """
    Get a practitioner's recurring weekly working windows.

    Args:
        practitioner_id: Practitioner ID
        actor: Authenticated user
        service: Availability service

    Returns:
        Weekly windows, Monday first
    """
    windows = await service.get_availability(practitioner_id)
    return AvailabilityResponse(practitioner_id=practitioner_id, windows=windows)


@router.put(
    "/practitioners/{practitioner_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Replace weekly availability",
)
async def update_availability(
    practitioner_id: UUID,
    data: AvailabilityUpdate,
    actor: CurrentActor,
    service: Availability,
) -> AvailabilityResponse:
    """
    Replace a practitioner's weekly working windows.

    Args:
        practitioner_id: Practitioner ID
        data: New windows
        actor: The practitioner or a staff member
        service: Availability service

    Returns:
        Stored windows
    """
    windows = await service.update_availability(practitioner_id, data.windows, actor)
    return AvailabilityResponse(practitioner_id=practitioner_id, windows=windows)


@router.post(
    "/practitioners/{practitioner_id}/slots/validate",
    response_model=SlotValidationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Check a candidate slot",
)
async def validate_slot(
    practitioner_id: UUID,
    data: SlotValidationRequest,
    actor: CurrentActor,
    service: Scheduling,
) -> SlotDecision:
    """
    Check a candidate slot without booking it.

    A rejected slot is a normal answer here, returned with status 200 and
    the reason to show next to the time picker.
    """
    return await service.validate_slot(
        data.candidate,
        practitioner_id,
        exclude_appointment_id=data.exclude_appointment_id,
        flow=data.flow,
    )
