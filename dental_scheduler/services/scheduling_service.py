"""
Scheduling orchestrator.

Composes the slot validator, the status state machine and the history
recorder. Every operation that changes an appointment writes the
appointment and exactly one history entry in a single repository call, so
a status change is never visible without its audit record.
"""

from collections.abc import Callable
from datetime import datetime, time, timedelta
from uuid import UUID, uuid4

import structlog

from dental_scheduler.config import Settings, settings
from dental_scheduler.core.domain import (
    Actor,
    ActorRole,
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    SlotCandidate,
    StatusHistoryEntry,
    TransitionResult,
)
from dental_scheduler.core.exceptions import (
    AppointmentNotFound,
    ConcurrentModification,
    ForbiddenException,
    InvalidTransition,
    TransitionForbidden,
    ValidationError,
)
from dental_scheduler.core.history import StatusHistoryRecorder, newest_first, utc_now
from dental_scheduler.core.slots import SlotDecision, SlotRules, validate_slot
from dental_scheduler.core.state_machine import (
    CREATION_TRIGGERS,
    Trigger,
    allowed_triggers,
    check_actor,
    resolve_transition,
)
from dental_scheduler.repositories.scheduling_repository import SchedulingRepository
from dental_scheduler.schemas.appointments import AppointmentFilters, SchedulingFlow

logger = structlog.get_logger(__name__)


def _require_text(value: str | None, field: str) -> str:
    """Strip a mandatory free-text field or raise ValidationError."""
    if value is None or not value.strip():
        raise ValidationError(field)
    return value.strip()


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class SchedulingService:
    """Service for booking, rescheduling and transitioning appointments."""

    def __init__(
        self,
        repository: SchedulingRepository,
        *,
        app_settings: Settings = settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize service.

        Args:
            repository: Storage for appointments, availability and history
            app_settings: Settings holding timezone and per-flow slot rules
            clock: Source of the current (aware) time
        """
        self.repository = repository
        self.clock = clock
        self.tz = app_settings.clinic_tz
        self.recorder = StatusHistoryRecorder(clock)
        self.default_duration = timedelta(minutes=app_settings.default_appointment_duration_minutes)

        # Walk-ins fill short gaps; every patient-facing flow books at least an hour.
        self.walk_in_rules = SlotRules(
            min_duration_minutes=app_settings.walk_in_min_duration_minutes,
            booking_horizon_days=app_settings.booking_horizon_days,
        )
        self.reschedule_rules = SlotRules(
            min_duration_minutes=app_settings.reschedule_min_duration_minutes,
            booking_horizon_days=app_settings.booking_horizon_days,
        )

    def rules_for(self, flow: SchedulingFlow) -> SlotRules:
        """Get the slot rules for a call site."""
        if flow == SchedulingFlow.WALK_IN:
            return self.walk_in_rules
        return self.reschedule_rules

    # Slot validation

    async def validate_slot(
        self,
        candidate: SlotCandidate,
        practitioner_id: UUID,
        exclude_appointment_id: UUID | None = None,
        flow: SchedulingFlow = SchedulingFlow.RESCHEDULE,
    ) -> SlotDecision:
        """
        Check a candidate slot against current availability and bookings.

        Safe to call repeatedly for live feedback; nothing is written.

        Args:
            candidate: Day and local start/end times
            practitioner_id: Practitioner whose calendar is checked
            exclude_appointment_id: Appointment being moved, ignored for overlap
            flow: Call site, selects the minimum duration

        Returns:
            SlotDecision
        """
        availability = await self.repository.get_availability(practitioner_id)

        day_start = datetime.combine(candidate.day, time.min, tzinfo=self.tz)
        bookings = await self.repository.get_occupying_bookings(
            practitioner_id,
            day_start,
            day_start + timedelta(days=1),
            exclude_appointment_id=exclude_appointment_id,
        )

        decision = validate_slot(
            candidate,
            availability,
            bookings,
            self.rules_for(flow),
            now=self.clock(),
            tz=self.tz,
            exclude_appointment_id=exclude_appointment_id,
        )
        if not decision.accepted:
            logger.info(
                "slot_rejected",
                practitioner_id=str(practitioner_id),
                day=candidate.day.isoformat(),
                start=candidate.start.isoformat(),
                end=candidate.end.isoformat(),
                code=decision.code.value,
            )
        return decision

    # Creation

    async def create_request(
        self,
        patient_id: UUID,
        practitioner_id: UUID,
        requested_start: datetime,
        concern: str,
        actor: Actor,
    ) -> TransitionResult:
        """
        Create an appointment request from a patient.

        The requested start is checked as a default-length slot so patients
        cannot ask for times the practitioner does not work or has booked.

        Raises:
            TransitionForbidden: If the actor is not the patient
            ValidationError: If the concern is blank
            SlotRejected: If the requested time is not bookable
        """
        check_actor(Trigger.REQUEST, actor.role)
        if actor.user_id != patient_id:
            raise TransitionForbidden(
                actor.role.value,
                Trigger.REQUEST.value,
                "Patients may only request appointments for themselves",
            )
        concern = _require_text(concern, "concern")

        requested_start = self._localize(requested_start)
        candidate = SlotCandidate.from_datetimes(
            requested_start, requested_start + self.default_duration, self.tz
        )
        decision = await self.validate_slot(candidate, practitioner_id)
        decision.raise_for_rejection()

        rule = resolve_transition(None, Trigger.REQUEST, actor.role)
        return await self._insert(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            status=rule.target,
            trigger=Trigger.REQUEST,
            concern=concern,
            actor=actor,
            requested_start=requested_start,
        )

    async def create_walk_in(
        self,
        patient_id: UUID,
        practitioner_id: UUID,
        candidate: SlotCandidate,
        concern: str,
        actor: Actor,
    ) -> TransitionResult:
        """
        Book a walk-in patient directly into the booked status.

        Raises:
            TransitionForbidden: If the actor is a patient or another practitioner
            ValidationError: If the concern is blank
            SlotRejected: If the slot is not bookable
        """
        check_actor(Trigger.DIRECT_BOOK, actor.role)
        if actor.role == ActorRole.PRACTITIONER and actor.user_id != practitioner_id:
            raise TransitionForbidden(
                actor.role.value,
                Trigger.DIRECT_BOOK.value,
                "Practitioners may only book walk-ins into their own calendar",
            )
        concern = _require_text(concern, "concern")

        decision = await self.validate_slot(candidate, practitioner_id, flow=SchedulingFlow.WALK_IN)
        decision.raise_for_rejection()

        rule = resolve_transition(None, Trigger.DIRECT_BOOK, actor.role)
        start = candidate.start_at(self.tz)
        return await self._insert(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            status=rule.target,
            trigger=Trigger.DIRECT_BOOK,
            concern=concern,
            actor=actor,
            requested_start=start,
            booked_start=start,
            booked_end=candidate.end_at(self.tz),
            source=AppointmentSource.WALK_IN,
        )

    async def _insert(
        self,
        *,
        patient_id: UUID,
        practitioner_id: UUID,
        status: AppointmentStatus,
        trigger: Trigger,
        concern: str,
        actor: Actor,
        source: AppointmentSource = AppointmentSource.PATIENT_APP,
        **windows: datetime,
    ) -> TransitionResult:
        appointment_id = uuid4()
        entry = self.recorder.record(appointment_id, status, trigger.value, actor)
        appointment = Appointment(
            id=appointment_id,
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            status=status,
            concern=concern,
            source=source,
            version=1,
            created_at=entry.changed_at,
            updated_at=entry.changed_at,
            status_changed_at=entry.changed_at,
            **windows,
        )

        saved = await self.repository.insert_appointment_and_history(appointment, entry)

        logger.info(
            "appointment_created",
            appointment_id=str(saved.id),
            practitioner_id=str(practitioner_id),
            status=saved.status.value,
            source=source.value,
            actor_role=actor.role.value,
        )
        return TransitionResult(appointment=saved, history_entry=entry)

    # Transitions on existing appointments

    async def request_reschedule(
        self,
        appointment_id: UUID,
        candidate: SlotCandidate,
        actor: Actor,
        note: str | None = None,
        feedback: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """
        Propose a time for a request, or move a booked appointment.

        A requested appointment receives a proposal the patient must accept;
        a booked appointment is moved directly.

        Raises:
            AppointmentNotFound, ConcurrentModification, InvalidTransition,
            TransitionForbidden, SlotRejected
        """
        appointment = await self._load(appointment_id)
        trigger = (
            Trigger.PROPOSE_TIME
            if appointment.status == AppointmentStatus.REQUESTED
            else Trigger.RESCHEDULE
        )
        return await self._transition(
            appointment,
            trigger,
            actor,
            note=note,
            feedback=feedback,
            candidate=candidate,
            expected_version=expected_version,
        )

    async def apply_transition(
        self,
        appointment_id: UUID,
        trigger: Trigger,
        actor: Actor,
        note: str | None = None,
        feedback: str | None = None,
        candidate: SlotCandidate | None = None,
        end_time: time | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """
        Apply a status trigger to an existing appointment.

        Args:
            appointment_id: Appointment ID
            trigger: Trigger to fire
            actor: Acting user
            note: Internal note; mandatory for cancel and reject_request
            feedback: Patient-visible feedback
            candidate: Slot for propose_time and reschedule
            end_time: End on the requested day for approve_request
            expected_version: Version the caller last saw

        Returns:
            Updated appointment and its new history entry
        """
        appointment = await self._load(appointment_id)
        if trigger in CREATION_TRIGGERS:
            raise InvalidTransition(appointment.status.value, trigger.value)

        return await self._transition(
            appointment,
            trigger,
            actor,
            note=note,
            feedback=feedback,
            candidate=candidate,
            end_time=end_time,
            expected_version=expected_version,
        )

    async def _transition(
        self,
        appointment: Appointment,
        trigger: Trigger,
        actor: Actor,
        *,
        note: str | None = None,
        feedback: str | None = None,
        candidate: SlotCandidate | None = None,
        end_time: time | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        self._ensure_can_act(appointment, actor, trigger)

        if expected_version is not None and expected_version != appointment.version:
            logger.info(
                "concurrent_modification_detected",
                appointment_id=str(appointment.id),
                expected_version=expected_version,
                current_version=appointment.version,
            )
            raise ConcurrentModification(appointment.id)

        # Legality first: a terminal appointment reports InvalidTransition,
        # not a slot reason.
        rule = resolve_transition(appointment.status, trigger, actor.role, note)

        changes: dict = {}
        if rule.requires_slot:
            slot = self._slot_for(appointment, trigger, candidate, end_time)
            decision = await self.validate_slot(
                slot, appointment.practitioner_id, exclude_appointment_id=appointment.id
            )
            decision.raise_for_rejection()

            start, end = slot.start_at(self.tz), slot.end_at(self.tz)
            if trigger == Trigger.PROPOSE_TIME:
                changes.update(proposed_start=start, proposed_end=end)
            else:
                changes.update(booked_start=start, booked_end=end)

        if trigger == Trigger.REJECT_PROPOSAL:
            changes.update(proposed_start=None, proposed_end=None)

        entry = self.recorder.record(
            appointment.id,
            rule.target,
            trigger.value,
            actor,
            previous_status=appointment.status,
            last_changed_at=appointment.status_changed_at,
            note=note,
            feedback=feedback,
        )
        updated = appointment.evolve(
            status=rule.target,
            updated_at=entry.changed_at,
            status_changed_at=entry.changed_at,
            **changes,
        )

        saved = await self.repository.commit_appointment_and_history(
            updated, entry, expected_version=appointment.version
        )

        logger.info(
            "appointment_transitioned",
            appointment_id=str(saved.id),
            trigger=trigger.value,
            from_status=appointment.status.value,
            to_status=saved.status.value,
            actor_role=actor.role.value,
        )
        return TransitionResult(appointment=saved, history_entry=entry)

    def _slot_for(
        self,
        appointment: Appointment,
        trigger: Trigger,
        candidate: SlotCandidate | None,
        end_time: time | None,
    ) -> SlotCandidate:
        """Work out the slot a slot-bearing trigger would commit."""
        if trigger in (Trigger.PROPOSE_TIME, Trigger.RESCHEDULE):
            if candidate is None:
                raise ValidationError("candidate")
            return candidate

        if trigger == Trigger.ACCEPT_PROPOSAL:
            if appointment.proposed_start is None or appointment.proposed_end is None:
                raise ValidationError("proposed_start", "There is no proposed time to accept")
            return SlotCandidate.from_datetimes(
                appointment.proposed_start, appointment.proposed_end, self.tz
            )

        if appointment.requested_start is None:
            raise ValidationError("requested_start", "There is no requested time to accept")

        if trigger == Trigger.APPROVE_REQUEST:
            if end_time is None:
                raise ValidationError("end_time")
            if end_time.tzinfo is not None:
                raise ValidationError("end_time", "End time must not carry a UTC offset")
            start = appointment.requested_start.astimezone(self.tz)
            return SlotCandidate(
                day=start.date(), start=start.time().replace(tzinfo=None), end=end_time
            )

        # accept_request books the requested start as-is
        return SlotCandidate.from_datetimes(
            appointment.requested_start,
            appointment.requested_start + self.default_duration,
            self.tz,
        )

    # Practitioner note

    async def update_practitioner_note(
        self, appointment_id: UUID, note: str | None, actor: Actor
    ) -> Appointment:
        """
        Set the practitioner-only note. Allowed at any status; not a transition.

        Raises:
            ForbiddenException: If the actor is a patient or another practitioner
            AppointmentNotFound: If the appointment does not exist
        """
        if actor.role == ActorRole.PATIENT:
            raise ForbiddenException("Patients cannot edit practitioner notes")

        appointment = await self._load(appointment_id)
        self._ensure_can_view(appointment, actor)

        saved = await self.repository.update_practitioner_note(
            appointment_id, _optional_text(note)
        )
        if saved is None:
            raise AppointmentNotFound(appointment_id)
        return saved

    # Reads

    async def get_appointment(self, appointment_id: UUID, actor: Actor) -> Appointment:
        """
        Get appointment by ID.

        Raises:
            AppointmentNotFound: If appointment not found
            ForbiddenException: If actor doesn't have access
        """
        appointment = await self._load(appointment_id)
        self._ensure_can_view(appointment, actor)
        return appointment

    async def list_appointments(
        self, actor: Actor, filters: AppointmentFilters
    ) -> tuple[int, list[Appointment]]:
        """
        List appointments visible to the actor.

        Patients only see their own appointments and practitioners only their
        own calendar; staff may filter freely.
        """
        if actor.role == ActorRole.PATIENT:
            if filters.patient_id not in (None, actor.user_id):
                raise ForbiddenException("Patients may only list their own appointments")
            filters = filters.model_copy(update={"patient_id": actor.user_id})
        elif actor.role == ActorRole.PRACTITIONER:
            if filters.practitioner_id not in (None, actor.user_id):
                raise ForbiddenException("Practitioners may only list their own appointments")
            filters = filters.model_copy(update={"practitioner_id": actor.user_id})

        return await self.repository.list_appointments(filters)

    async def get_history(self, appointment_id: UUID, actor: Actor) -> list[StatusHistoryEntry]:
        """Get an appointment's status history, newest first."""
        await self.get_appointment(appointment_id, actor)
        entries = await self.repository.list_history(appointment_id)
        return newest_first(entries)

    def allowed_actions(self, appointment: Appointment, actor: Actor) -> list[Trigger]:
        """List triggers the actor could fire on the appointment right now."""
        if not self._owns(appointment, actor):
            return []
        return allowed_triggers(appointment.status, actor.role)

    # Helpers

    async def _load(self, appointment_id: UUID) -> Appointment:
        appointment = await self.repository.load_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _localize(self, value: datetime) -> datetime:
        """Treat naive datetimes as clinic wall-clock time."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value

    @staticmethod
    def _owns(appointment: Appointment, actor: Actor) -> bool:
        if actor.role == ActorRole.PATIENT:
            return appointment.patient_id == actor.user_id
        if actor.role == ActorRole.PRACTITIONER:
            return appointment.practitioner_id == actor.user_id
        return True

    def _ensure_can_view(self, appointment: Appointment, actor: Actor) -> None:
        if not self._owns(appointment, actor):
            raise ForbiddenException("Access denied to this appointment")

    def _ensure_can_act(self, appointment: Appointment, actor: Actor, trigger: Trigger) -> None:
        if not self._owns(appointment, actor):
            raise TransitionForbidden(
                actor.role.value,
                trigger.value,
                "Access denied to this appointment",
            )
