"""Appointment status transition table and the single function that consults it."""

from enum import Enum
from typing import NamedTuple

from dental_scheduler.core.domain import ActorRole, AppointmentStatus
from dental_scheduler.core.exceptions import (
    InvalidTransition,
    TransitionForbidden,
    ValidationError,
)

S = AppointmentStatus
R = ActorRole


class Trigger(str, Enum):
    """Actions that move an appointment between statuses."""

    REQUEST = "request"
    DIRECT_BOOK = "direct_book"
    PROPOSE_TIME = "propose_time"
    ACCEPT_REQUEST = "accept_request"
    APPROVE_REQUEST = "approve_request"
    ACCEPT_PROPOSAL = "accept_proposal"
    REJECT_PROPOSAL = "reject_proposal"
    REJECT_REQUEST = "reject_request"
    MARK_ARRIVED = "mark_arrived"
    MARK_ONGOING = "mark_ongoing"
    MARK_COMPLETE = "mark_complete"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"


class TransitionRule(NamedTuple):
    """One row of the transition table."""

    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus
    actors: frozenset[ActorRole]
    requires_note: bool = False
    requires_slot: bool = False


CLINIC_ROLES = frozenset({R.PRACTITIONER, R.STAFF})
NON_TERMINAL = frozenset(status for status in S if not status.is_terminal)

# Statuses a patient may still cancel from; once at the clinic only staff can.
PATIENT_CANCELLABLE = frozenset({S.REQUESTED, S.PROPOSED, S.BOOKED})

# Creation triggers have no source status.
CREATION_TRIGGERS = frozenset({Trigger.REQUEST, Trigger.DIRECT_BOOK})

TRANSITIONS: dict[Trigger, TransitionRule] = {
    Trigger.REQUEST: TransitionRule(
        frozenset(), S.REQUESTED, frozenset({R.PATIENT}), requires_slot=True
    ),
    Trigger.DIRECT_BOOK: TransitionRule(
        frozenset(), S.BOOKED, CLINIC_ROLES, requires_slot=True
    ),
    Trigger.PROPOSE_TIME: TransitionRule(
        frozenset({S.REQUESTED}), S.PROPOSED, CLINIC_ROLES, requires_slot=True
    ),
    Trigger.ACCEPT_REQUEST: TransitionRule(
        frozenset({S.REQUESTED}), S.BOOKED, frozenset({R.PATIENT}), requires_slot=True
    ),
    Trigger.APPROVE_REQUEST: TransitionRule(
        frozenset({S.REQUESTED}), S.BOOKED, CLINIC_ROLES, requires_slot=True
    ),
    Trigger.ACCEPT_PROPOSAL: TransitionRule(
        frozenset({S.PROPOSED}), S.BOOKED, frozenset({R.PATIENT}), requires_slot=True
    ),
    Trigger.REJECT_PROPOSAL: TransitionRule(
        frozenset({S.PROPOSED}), S.REQUESTED, frozenset({R.PATIENT})
    ),
    Trigger.REJECT_REQUEST: TransitionRule(
        frozenset({S.REQUESTED}), S.REJECTED, CLINIC_ROLES, requires_note=True
    ),
    Trigger.MARK_ARRIVED: TransitionRule(frozenset({S.BOOKED}), S.ARRIVED, CLINIC_ROLES),
    Trigger.MARK_ONGOING: TransitionRule(
        frozenset({S.ARRIVED}), S.ONGOING, frozenset({R.PRACTITIONER})
    ),
    Trigger.MARK_COMPLETE: TransitionRule(
        frozenset({S.ONGOING}), S.COMPLETED, frozenset({R.PRACTITIONER})
    ),
    Trigger.RESCHEDULE: TransitionRule(
        frozenset({S.BOOKED}), S.BOOKED, CLINIC_ROLES, requires_slot=True
    ),
    Trigger.CANCEL: TransitionRule(
        NON_TERMINAL, S.CANCELLED, frozenset(R), requires_note=True
    ),
}


def check_actor(trigger: Trigger, role: ActorRole) -> None:
    """
    Check that the role may fire the trigger at all.

    Raises:
        TransitionForbidden: If the role is not listed for the trigger
    """
    if role not in TRANSITIONS[trigger].actors:
        raise TransitionForbidden(role.value, trigger.value)


def resolve_transition(
    current: AppointmentStatus | None,
    trigger: Trigger,
    role: ActorRole,
    note: str | None = None,
) -> TransitionRule:
    """
    Resolve a trigger against the current status.

    Args:
        current: Current status, or None when creating an appointment
        trigger: Attempted trigger
        role: Role of the acting user
        note: Accompanying note, mandatory for cancel and reject

    Returns:
        The matching transition rule

    Raises:
        InvalidTransition: If the trigger is not legal from the current status
        TransitionForbidden: If the role may not fire the trigger here
        ValidationError: If a mandatory note is missing
    """
    from_label = current.value if current else "none"

    # Cancel is legal from every non-terminal status, so handle it before the
    # general lookup.
    if trigger == Trigger.CANCEL:
        if current is None or current.is_terminal:
            raise InvalidTransition(from_label, trigger.value)
        if role == R.PATIENT and current not in PATIENT_CANCELLABLE:
            raise TransitionForbidden(
                role.value,
                trigger.value,
                f"Patients cannot cancel an appointment that is '{current.value}'",
            )
        rule = TRANSITIONS[trigger]
    else:
        rule = TRANSITIONS[trigger]
        if trigger in CREATION_TRIGGERS:
            if current is not None:
                raise InvalidTransition(from_label, trigger.value)
        elif current not in rule.sources:
            raise InvalidTransition(from_label, trigger.value)
        check_actor(trigger, role)

    if rule.requires_note and not (note and note.strip()):
        raise ValidationError("note", f"A note is required to {trigger.value.replace('_', ' ')}")

    return rule


def allowed_triggers(current: AppointmentStatus, role: ActorRole) -> list[Trigger]:
    """List the triggers a role could fire from a status, in table order."""
    allowed = []
    for trigger, rule in TRANSITIONS.items():
        if trigger in CREATION_TRIGGERS or role not in rule.actors:
            continue
        if current not in rule.sources:
            continue
        if trigger == Trigger.CANCEL and role == R.PATIENT and current not in PATIENT_CANCELLABLE:
            continue
        allowed.append(trigger)
    return allowed
