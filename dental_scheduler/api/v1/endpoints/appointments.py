"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from dental_scheduler.core.domain import Actor, Appointment, AppointmentStatus, TransitionResult
from dental_scheduler.dependencies import CurrentActor, Scheduling
from dental_scheduler.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentRequestCreate,
    AppointmentResponse,
    PractitionerNoteUpdate,
    RescheduleRequest,
    StatusHistoryEntryResponse,
    StatusHistoryResponse,
    TransitionRequest,
    TransitionResponse,
    WalkInCreate,
)
from dental_scheduler.services.scheduling_service import SchedulingService

router = APIRouter()


def _to_response(
    service: SchedulingService, appointment: Appointment, actor: Actor
) -> AppointmentResponse:
    return AppointmentResponse.for_viewer(
        appointment, actor.role, service.allowed_actions(appointment, actor)
    )


def _to_transition_response(
    service: SchedulingService, result: TransitionResult, actor: Actor
) -> TransitionResponse:
    return TransitionResponse(
        appointment=_to_response(service, result.appointment, actor),
        history_entry=StatusHistoryEntryResponse.from_entry(result.history_entry),
    )


@router.post(
    "/",
    response_model=TransitionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Request an appointment",
)
async def create_appointment_request(
    data: AppointmentRequestCreate,
    actor: CurrentActor,
    service: Scheduling,
) -> TransitionResponse:
    """
    Request an appointment as the authenticated patient.

    The requested time must fall inside the practitioner's working hours and
    must not overlap a booked appointment.

    Args:
        data: Practitioner, requested start and concern
        actor: Authenticated patient
        service: Scheduling service

    Returns:
        Created appointment and its first history entry
    """
    result = await service.create_request(
        patient_id=actor.user_id,
        practitioner_id=data.practitioner_id,
        requested_start=data.requested_start,
        concern=data.concern,
        actor=actor,
    )
    return _to_transition_response(service, result, actor)


@router.post(
    "/walk-in",
    response_model=TransitionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book a walk-in appointment",
)
async def create_walk_in(
    data: WalkInCreate,
    actor: CurrentActor,
    service: Scheduling,
) -> TransitionResponse:
    """
    Book a walk-in patient directly into a free slot.

    Args:
        data: Patient, practitioner, slot and concern
        actor: Authenticated practitioner or staff member
        service: Scheduling service

    Returns:
        Booked appointment and its first history entry
    """
    result = await service.create_walk_in(
        patient_id=data.patient_id,
        practitioner_id=data.practitioner_id,
        candidate=data.candidate,
        concern=data.concern,
        actor=actor,
    )
    return _to_transition_response(service, result, actor)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: Scheduling,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    patient_id: UUID | None = Query(None),
    practitioner_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the authenticated user with filtering.

    Args:
        actor: Authenticated user
        service: Scheduling service
        status_filter: Filter by status
        patient_id: Filter by patient ID
        practitioner_id: Filter by practitioner ID
        from_date: Filter by start date
        to_date: Filter by end date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        patient_id=patient_id,
        practitioner_id=practitioner_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    total, items = await service.list_appointments(actor, filters)
    return AppointmentListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[_to_response(service, item, actor) for item in items],
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated user
        service: Scheduling service

    Returns:
        Appointment details
    """
    appointment = await service.get_appointment(appointment_id, actor)
    return _to_response(service, appointment, actor)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=TransitionResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Propose or move an appointment time",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    actor: CurrentActor,
    service: Scheduling,
) -> TransitionResponse:
    """
    Propose a new time for a request, or move a booked appointment.

    Args:
        appointment_id: Appointment ID
        data: Candidate slot, optional note/feedback and expected version
        actor: Authenticated practitioner or staff member
        service: Scheduling service

    Returns:
        Updated appointment and the history entry written for it
    """
    result = await service.request_reschedule(
        appointment_id,
        data.candidate,
        actor,
        note=data.note,
        feedback=data.feedback,
        expected_version=data.expected_version,
    )
    return _to_transition_response(service, result, actor)


@router.post(
    "/{appointment_id}/transitions",
    response_model=TransitionResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Apply a status transition",
)
async def apply_transition(
    appointment_id: UUID,
    data: TransitionRequest,
    actor: CurrentActor,
    service: Scheduling,
) -> TransitionResponse:
    """
    Apply a status trigger such as accept_proposal, mark_arrived or cancel.

    Args:
        appointment_id: Appointment ID
        data: Trigger with its note, feedback and slot details
        actor: Authenticated user
        service: Scheduling service

    Returns:
        Updated appointment and the history entry written for it
    """
    result = await service.apply_transition(
        appointment_id,
        data.trigger,
        actor,
        note=data.note,
        feedback=data.feedback,
        candidate=data.candidate,
        end_time=data.end_time,
        expected_version=data.expected_version,
    )
    return _to_transition_response(service, result, actor)


@router.patch(
    "/{appointment_id}/practitioner-note",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Edit the practitioner note",
)
async def update_practitioner_note(
    appointment_id: UUID,
    data: PractitionerNoteUpdate,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """Set the practitioner-only note. Does not change the status."""
    appointment = await service.update_practitioner_note(
        appointment_id, data.practitioner_note, actor
    )
    return _to_response(service, appointment, actor)


@router.get(
    "/{appointment_id}/history",
    response_model=StatusHistoryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment status history",
)
async def get_appointment_history(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Scheduling,
) -> StatusHistoryResponse:
    """
    Get the status history of an appointment, newest first.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated user
        service: Scheduling service

    Returns:
        History entries
    """
    entries = await service.get_history(appointment_id, actor)
    return StatusHistoryResponse(
        appointment_id=appointment_id,
        items=[StatusHistoryEntryResponse.from_entry(entry) for entry in entries],
    )
