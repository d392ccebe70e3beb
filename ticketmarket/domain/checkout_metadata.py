"""Metadata bag carried by a checkout session.

The gateway is the source of truth for "was this paid". Everything the
settlement needs to find its booking and ticket again travels inside the
session's metadata, so the keys below are a wire contract with sessions
that were created by earlier deployments.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping

from ticketmarket.domain.exceptions import DanglingReferenceError

# Gateway amounts are integers in the currency's minor unit.
MINOR_UNITS_PER_MAJOR = 100

BOOKING_ID_KEY = "booking_id"
QUANTITY_KEY = "booking_quantity"
TICKET_ID_KEY = "ticket_id"
BUYER_NAME_KEY = "buyer_name"
VENDOR_NAME_KEY = "seller_name"
VENDOR_EMAIL_KEY = "seller_email"


@dataclass(frozen=True)
class CheckoutMetadata:
    booking_id: str
    ticket_id: str
    quantity: int
    buyer_name: str
    vendor_name: str
    vendor_email: str

    def to_notes(self) -> dict[str, str]:
        return {
            BOOKING_ID_KEY: self.booking_id,
            QUANTITY_KEY: str(self.quantity),
            TICKET_ID_KEY: self.ticket_id,
            BUYER_NAME_KEY: self.buyer_name,
            VENDOR_NAME_KEY: self.vendor_name,
            VENDOR_EMAIL_KEY: self.vendor_email,
        }

    @classmethod
    def from_notes(cls, notes: Mapping[str, object] | None) -> "CheckoutMetadata":
        """
        Rebuilds the metadata from a retrieved session.

        Raises DanglingReferenceError when the ids or the quantity are
        missing or unusable, since the session can no longer be tied to
        local state.
        """
        notes = notes or {}

        booking_id = str(notes.get(BOOKING_ID_KEY) or "").strip()
        if not booking_id:
            raise DanglingReferenceError("booking", None)

        ticket_id = str(notes.get(TICKET_ID_KEY) or "").strip()
        if not ticket_id:
            raise DanglingReferenceError("ticket", None)

        raw_quantity = notes.get(QUANTITY_KEY)
        try:
            quantity = int(str(raw_quantity))
        except ValueError as exc:
            raise DanglingReferenceError("booking_quantity", str(raw_quantity)) from exc
        if quantity <= 0:
            raise DanglingReferenceError("booking_quantity", str(raw_quantity))

        return cls(
            booking_id=booking_id,
            ticket_id=ticket_id,
            quantity=quantity,
            buyer_name=str(notes.get(BUYER_NAME_KEY) or ""),
            vendor_name=str(notes.get(VENDOR_NAME_KEY) or ""),
            vendor_email=str(notes.get(VENDOR_EMAIL_KEY) or ""),
        )


def to_minor_units(unit_price: Decimal | float | int) -> int:
    amount = Decimal(str(unit_price)) * MINOR_UNITS_PER_MAJOR
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))
