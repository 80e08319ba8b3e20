"""Tests for the appointment status transition table."""

import pytest

from dental_scheduler.core.domain import TERMINAL_STATUSES, ActorRole, AppointmentStatus
from dental_scheduler.core.exceptions import (
    InvalidTransition,
    TransitionForbidden,
    ValidationError,
)
from dental_scheduler.core.state_machine import (
    TRANSITIONS,
    Trigger,
    allowed_triggers,
    resolve_transition,
)

S = AppointmentStatus
R = ActorRole


@pytest.mark.parametrize(
    "current,trigger,role,target",
    [
        (S.REQUESTED, Trigger.PROPOSE_TIME, R.PRACTITIONER, S.PROPOSED),
        (S.REQUESTED, Trigger.ACCEPT_REQUEST, R.PATIENT, S.BOOKED),
        (S.REQUESTED, Trigger.APPROVE_REQUEST, R.STAFF, S.BOOKED),
        (S.PROPOSED, Trigger.ACCEPT_PROPOSAL, R.PATIENT, S.BOOKED),
        (S.PROPOSED, Trigger.REJECT_PROPOSAL, R.PATIENT, S.REQUESTED),
        (S.BOOKED, Trigger.MARK_ARRIVED, R.STAFF, S.ARRIVED),
        (S.ARRIVED, Trigger.MARK_ONGOING, R.PRACTITIONER, S.ONGOING),
        (S.ONGOING, Trigger.MARK_COMPLETE, R.PRACTITIONER, S.COMPLETED),
        (S.BOOKED, Trigger.RESCHEDULE, R.PRACTITIONER, S.BOOKED),
    ],
)
def test_legal_transitions(current, trigger, role, target):
    assert resolve_transition(current, trigger, role).target == target


def test_creation_triggers():
    assert resolve_transition(None, Trigger.REQUEST, R.PATIENT).target == S.REQUESTED
    assert resolve_transition(None, Trigger.DIRECT_BOOK, R.STAFF).target == S.BOOKED

    with pytest.raises(InvalidTransition):
        resolve_transition(S.REQUESTED, Trigger.REQUEST, R.PATIENT)


def test_mark_arrived_from_requested_is_invalid():
    with pytest.raises(InvalidTransition) as exc_info:
        resolve_transition(S.REQUESTED, Trigger.MARK_ARRIVED, R.STAFF)

    assert exc_info.value.from_status == "requested"
    assert exc_info.value.trigger == "mark_arrived"
    assert exc_info.value.status_code == 409


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
@pytest.mark.parametrize("trigger", list(Trigger))
def test_terminal_statuses_accept_nothing(status, trigger):
    with pytest.raises(InvalidTransition):
        resolve_transition(status, trigger, R.STAFF, note="too late")


@pytest.mark.parametrize("status", [s for s in S if not s.is_terminal])
def test_cancel_allowed_from_every_non_terminal_status(status):
    rule = resolve_transition(status, Trigger.CANCEL, R.STAFF, note="doctor unavailable")

    assert rule.target == S.CANCELLED


@pytest.mark.parametrize("note", [None, "", "   "])
def test_cancel_requires_note(note):
    with pytest.raises(ValidationError) as exc_info:
        resolve_transition(S.BOOKED, Trigger.CANCEL, R.STAFF, note=note)

    assert exc_info.value.field == "note"
    assert exc_info.value.status_code == 422


def test_reject_request_requires_note():
    with pytest.raises(ValidationError):
        resolve_transition(S.REQUESTED, Trigger.REJECT_REQUEST, R.PRACTITIONER)

    rule = resolve_transition(
        S.REQUESTED, Trigger.REJECT_REQUEST, R.PRACTITIONER, note="Not a dental concern"
    )
    assert rule.target == S.REJECTED


def test_patient_cannot_cancel_once_at_the_clinic():
    rule = resolve_transition(S.BOOKED, Trigger.CANCEL, R.PATIENT, note="sick")
    assert rule.target == S.CANCELLED

    with pytest.raises(TransitionForbidden) as exc_info:
        resolve_transition(S.ARRIVED, Trigger.CANCEL, R.PATIENT, note="leaving")

    assert exc_info.value.role == "patient"
    assert exc_info.value.status_code == 403


@pytest.mark.parametrize(
    "current,trigger,role",
    [
        (S.REQUESTED, Trigger.PROPOSE_TIME, R.PATIENT),
        (S.PROPOSED, Trigger.ACCEPT_PROPOSAL, R.STAFF),
        (S.ARRIVED, Trigger.MARK_ONGOING, R.STAFF),
        (S.BOOKED, Trigger.MARK_ARRIVED, R.PATIENT),
        (None, Trigger.DIRECT_BOOK, R.PATIENT),
    ],
)
def test_wrong_role_is_forbidden(current, trigger, role):
    with pytest.raises(TransitionForbidden):
        resolve_transition(current, trigger, role)


def test_illegal_status_is_reported_before_role():
    """A trigger that is illegal here is InvalidTransition whoever fires it."""
    with pytest.raises(InvalidTransition):
        resolve_transition(S.BOOKED, Trigger.ACCEPT_PROPOSAL, R.STAFF)


def test_every_trigger_has_a_rule():
    assert set(TRANSITIONS) == set(Trigger)


def test_allowed_triggers():
    assert allowed_triggers(S.PROPOSED, R.PATIENT) == [
        Trigger.ACCEPT_PROPOSAL,
        Trigger.REJECT_PROPOSAL,
        Trigger.CANCEL,
    ]
    assert allowed_triggers(S.ARRIVED, R.PATIENT) == []
    assert allowed_triggers(S.ARRIVED, R.PRACTITIONER) == [Trigger.MARK_ONGOING, Trigger.CANCEL]
    assert allowed_triggers(S.COMPLETED, R.STAFF) == []
