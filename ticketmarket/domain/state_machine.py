# ticketmarket/domain/state_machine.py

from enum import Enum
from typing import ClassVar, Dict, Set, Type

from ticketmarket.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class TicketStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentFlag(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class SettlementStep(str, Enum):
    PAYMENT_RECORDED = "payment_recorded"
    BOOKING_MARKED_PAID = "booking_marked_paid"
    INVENTORY_DECREMENTED = "inventory_decremented"


class LifecycleStateMachine:
    """
    Central lifecycle controller for status transitions.
    Subclasses define the status enum and the legal transitions.
    """

    _STATUS_TYPE: ClassVar[Type[Enum]]
    _ALLOWED_TRANSITIONS: ClassVar[Dict[Enum, Set[Enum]]]

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def parse(cls, value: str) -> Enum:
        """
        Converts a raw status string into the machine's enum.
        Unknown values are reported as an illegal transition target.
        """
        try:
            return cls._STATUS_TYPE(value)
        except ValueError as exc:
            raise InvalidStateTransitionError(
                from_state="?",
                to_state=str(value),
            ) from exc

    @classmethod
    def _ensure_valid_status(cls, status: Enum) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class BookingStateMachine(LifecycleStateMachine):
    """Vendor decisions on a booking request."""

    _STATUS_TYPE = BookingStatus
    _ALLOWED_TRANSITIONS = {
        BookingStatus.REQUESTED: {
            BookingStatus.ACCEPTED,
            BookingStatus.REJECTED,
        },
        BookingStatus.ACCEPTED: set(),
        BookingStatus.REJECTED: set(),
    }


class TicketStateMachine(LifecycleStateMachine):
    """Admin review of a vendor's ticket listing."""

    _STATUS_TYPE = TicketStatus
    _ALLOWED_TRANSITIONS = {
        TicketStatus.PENDING: {
            TicketStatus.APPROVED,
            TicketStatus.REJECTED,
        },
        TicketStatus.APPROVED: {
            TicketStatus.REJECTED,
        },
        TicketStatus.REJECTED: {
            TicketStatus.APPROVED,
        },
    }
