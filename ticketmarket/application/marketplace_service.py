from decimal import Decimal

from sqlalchemy.orm import Session

from ticketmarket.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentFlag,
    TicketStateMachine,
    TicketStatus,
)
from ticketmarket.infrastructure.db.models import Booking, Ticket, User
from ticketmarket.infrastructure.repositories.booking_repository import BookingRepository
from ticketmarket.infrastructure.repositories.ticket_repository import TicketRepository
from ticketmarket.infrastructure.repositories.user_repository import UserRepository

USER_ROLES = {"user", "vendor", "admin"}


class UserService:

    def __init__(self, db: Session):
        self.db = db
        self.user_repository = UserRepository(db)

    def register(self, email: str, name: str, photo_url: str | None = None) -> User:
        existing = self.user_repository.get_by_email(email)
        if existing:
            return existing
        user = self.user_repository.create_user(email=email, name=name, photo_url=photo_url)
        self.db.flush()
        return user

    def get_by_email(self, email: str) -> User | None:
        return self.user_repository.get_by_email(email)

    def list_users(self) -> list[User]:
        return self.user_repository.list_users()

    def exists(self, email: str) -> bool:
        return self.user_repository.get_by_email(email) is not None

    def update_role(self, email: str, role: str) -> User:
        if role not in USER_ROLES:
            raise ValueError(f"Unknown role: {role}")
        user = self._require(email)
        user.role = role
        return user

    def update_status(self, email: str, status: str) -> User:
        user = self._require(email)
        user.status = status
        return user

    def _require(self, email: str) -> User:
        user = self.user_repository.get_by_email(email)
        if not user:
            raise LookupError("User not found")
        return user


class TicketService:
    """Vendor listings and their admin review."""

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)

    def create_ticket(self, **fields) -> Ticket:
        ticket = self.ticket_repository.create_ticket(**fields)
        self.db.flush()
        return ticket

    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket:
            raise LookupError("Ticket not found")
        return ticket

    def list_tickets(self) -> list[Ticket]:
        return self.ticket_repository.list_all()

    def list_vendor_tickets(self, vendor_email: str) -> list[Ticket]:
        return self.ticket_repository.list_by_vendor(vendor_email)

    def update_ticket(self, ticket_id: str, **changes) -> Ticket:
        """
        Applies a vendor edit. Only the given fields change; status and the
        advertised flag go through their own operations.
        """
        ticket = self.get_ticket(ticket_id)
        self.ticket_repository.update_fields(ticket, **changes)
        return ticket

    def change_status(self, ticket_id: str, raw_status: str) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        to_status = TicketStateMachine.parse(raw_status)
        TicketStateMachine.validate_transition(ticket.status, to_status)
        self.ticket_repository.update_status(ticket, to_status)
        return ticket

    def set_on_add(self, ticket_id: str, on_add: bool) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        if on_add and ticket.status != TicketStatus.APPROVED:
            raise ValueError("Only approved tickets can be advertised")
        self.ticket_repository.set_on_add(ticket, on_add)
        return ticket

    def delete_ticket(self, ticket_id: str) -> None:
        if not self.ticket_repository.delete_ticket(ticket_id):
            raise LookupError("Ticket not found")


class BookingService:
    """Application service coordinating booking requests."""

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)

    def create_booking(
        self,
        ticket_id: str,
        user_email: str,
        user_name: str,
        quantity: int,
    ) -> Booking:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket:
            raise LookupError("Ticket not found")
        if ticket.status != TicketStatus.APPROVED:
            raise ValueError("Ticket is not open for booking")
        if quantity > ticket.available_sits:
            raise ValueError("Not enough sits available")

        booking = self.booking_repository.create_booking(
            ticket_id=ticket.id,
            user_email=user_email,
            user_name=user_name,
            vendor_email=ticket.vendor_email,
            vendor_name=ticket.vendor_name,
            quantity=quantity,
            unit_price=Decimal(ticket.price),
        )
        self.db.flush()
        return booking

    def list_user_bookings(self, user_email: str) -> list[Booking]:
        return self.booking_repository.list_by_user(user_email)

    def list_vendor_requests(self, vendor_email: str) -> list[Booking]:
        return self.booking_repository.list_by_vendor(vendor_email)

    def change_status(self, booking_id: str, raw_status: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise LookupError("Booking not found")
        self._transition(booking, BookingStateMachine.parse(raw_status))
        return booking

    def delete_booking(self, booking_id: str) -> None:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise LookupError("Booking not found")
        if booking.payment == PaymentFlag.PAID:
            raise ValueError("Paid bookings cannot be deleted")
        self.booking_repository.delete_booking(booking_id)

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.booking_status, to_status)
        self.booking_repository.update_status(booking, to_status)
