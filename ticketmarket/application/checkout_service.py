import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from ticketmarket.domain.checkout_metadata import CheckoutMetadata, to_minor_units
from ticketmarket.domain.exceptions import InvalidIntentError
from ticketmarket.domain.state_machine import PaymentFlag
from ticketmarket.infrastructure.gateway.payment_gateway import (
    CheckoutSessionRequest,
    LineItem,
    PaymentGateway,
)
from ticketmarket.infrastructure.repositories.booking_repository import BookingRepository
from ticketmarket.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

_REQUIRED_TEXT_FIELDS = (
    "product_name",
    "booking_id",
    "ticket_id",
    "buyer_email",
    "buyer_name",
    "vendor_email",
    "vendor_name",
)


@dataclass(frozen=True)
class CheckoutIntent:
    product_name: str
    booking_id: str
    ticket_id: str
    buyer_email: str
    buyer_name: str
    vendor_email: str
    vendor_name: str
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class CheckoutResult:
    checkout_url: str


class CheckoutService:
    """
    Opens a hosted checkout for a booking.

    The store is only read; the one piece of state this creates lives at
    the gateway until the session is settled.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        site_domain: str,
        currency: str,
    ):
        self.db = db
        self.gateway = gateway
        self.site_domain = site_domain.rstrip("/")
        self.currency = currency
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)

    def create_checkout(self, intent: CheckoutIntent) -> CheckoutResult:
        self._validate(intent)

        metadata = CheckoutMetadata(
            booking_id=intent.booking_id,
            ticket_id=intent.ticket_id,
            quantity=intent.quantity,
            buyer_name=intent.buyer_name,
            vendor_name=intent.vendor_name,
            vendor_email=intent.vendor_email,
        )
        request = CheckoutSessionRequest(
            line_items=(
                LineItem(
                    name=intent.product_name,
                    unit_amount=to_minor_units(intent.unit_price),
                    quantity=intent.quantity,
                ),
            ),
            currency=self.currency,
            metadata=metadata.to_notes(),
            customer_email=intent.buyer_email,
            customer_name=intent.buyer_name,
            success_url=f"{self.site_domain}/payment-success",
            cancel_url=f"{self.site_domain}/payment-cancelled",
        )

        session = self.gateway.create_session(request)
        logger.info(
            "Checkout session created. session_id=%s booking_id=%s quantity=%s",
            session.id,
            intent.booking_id,
            intent.quantity,
        )
        return CheckoutResult(checkout_url=session.url)

    def _validate(self, intent: CheckoutIntent) -> None:
        for name in _REQUIRED_TEXT_FIELDS:
            value = getattr(intent, name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidIntentError(f"{name} is required")

        if isinstance(intent.quantity, bool) or not isinstance(intent.quantity, int):
            raise InvalidIntentError("quantity must be an integer")
        if intent.quantity <= 0:
            raise InvalidIntentError("quantity must be positive")

        try:
            unit_price = Decimal(str(intent.unit_price))
        except InvalidOperation as exc:
            raise InvalidIntentError("unit_price must be a number") from exc
        if not unit_price.is_finite() or unit_price <= 0:
            raise InvalidIntentError("unit_price must be positive")
        if to_minor_units(unit_price) <= 0:
            raise InvalidIntentError("unit_price is below the smallest currency unit")

        booking = self.booking_repository.get_by_id(intent.booking_id)
        if not booking:
            raise InvalidIntentError("Booking not found")
        if booking.ticket_id != intent.ticket_id:
            raise InvalidIntentError("Booking does not belong to this ticket")
        if booking.payment == PaymentFlag.PAID:
            raise InvalidIntentError("Booking is already paid")
        if intent.quantity != booking.quantity:
            raise InvalidIntentError("quantity does not match the booking")
        if unit_price != Decimal(booking.unit_price):
            raise InvalidIntentError("unit_price does not match the booking")
        if not self.ticket_repository.get_by_id(intent.ticket_id):
            raise InvalidIntentError("Ticket not found")
