# tests/unit/test_state_machine.py

import pytest

from ticketmarket.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    TicketStateMachine,
    TicketStatus,
)
from ticketmarket.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_vendor_decides_booking_request():
    assert BookingStateMachine.can_transition(
        BookingStatus.REQUESTED,
        BookingStatus.ACCEPTED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.REQUESTED,
        BookingStatus.REJECTED,
    )


def test_admin_can_flip_ticket_review():
    assert TicketStateMachine.can_transition(TicketStatus.PENDING, TicketStatus.APPROVED)
    assert TicketStateMachine.can_transition(TicketStatus.APPROVED, TicketStatus.REJECTED)
    assert TicketStateMachine.can_transition(TicketStatus.REJECTED, TicketStatus.APPROVED)


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_accepted_booking_is_final():
    assert not BookingStateMachine.can_transition(BookingStatus.ACCEPTED, BookingStatus.REQUESTED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.ACCEPTED,
            BookingStatus.REJECTED,
        )


def test_rejected_booking_is_final():
    assert not BookingStateMachine.can_transition(BookingStatus.REJECTED, BookingStatus.REQUESTED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.REJECTED,
            BookingStatus.ACCEPTED,
        )


def test_ticket_cannot_return_to_pending():
    assert not TicketStateMachine.can_transition(TicketStatus.APPROVED, TicketStatus.PENDING)

    with pytest.raises(InvalidStateTransitionError):
        TicketStateMachine.validate_transition(TicketStatus.APPROVED, TicketStatus.PENDING)


def test_parse_rejects_unknown_status():
    assert BookingStateMachine.parse("accepted") is BookingStatus.ACCEPTED

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        BookingStateMachine.parse("cancelled")

    assert exc_info.value.to_state == "cancelled"


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "requested",  # invalid type
            BookingStatus.ACCEPTED,
        )

    with pytest.raises(TypeError):
        TicketStateMachine.can_transition(BookingStatus.REQUESTED, TicketStatus.APPROVED)
