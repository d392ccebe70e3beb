from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# Field names follow the web client, which speaks camelCase.


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UserCreate(CamelModel):
    email: str
    name: str = ""
    photo_url: str | None = Field(default=None, alias="photoURL")


class UserResponse(CamelModel):
    id: str
    email: str
    name: str
    role: str
    status: str | None = None


class UserInfoResponse(CamelModel):
    role: str
    status: str | None = None


class TicketCreate(CamelModel):
    title: str
    vendor_name: str = Field(default="", alias="vendorName")
    origin: str = Field(default="", alias="from")
    destination: str = Field(default="", alias="to")
    transport_type: str = Field(default="", alias="category")
    price: Decimal = Field(ge=0)
    available_sits: int = Field(ge=0, alias="availableSits")
    departure_at: datetime | None = Field(default=None, alias="departureAt")
    perks: str | None = None


class TicketUpdate(CamelModel):
    title: str | None = None
    origin: str | None = Field(default=None, alias="from")
    destination: str | None = Field(default=None, alias="to")
    transport_type: str | None = Field(default=None, alias="category")
    price: Decimal | None = Field(default=None, ge=0)
    available_sits: int | None = Field(default=None, ge=0, alias="availableSits")
    departure_at: datetime | None = Field(default=None, alias="departureAt")
    perks: str | None = None


class TicketResponse(CamelModel):
    id: str
    title: str
    vendor_email: str = Field(alias="vendorEmail")
    vendor_name: str = Field(alias="vendorName")
    origin: str = Field(alias="from")
    destination: str = Field(alias="to")
    transport_type: str = Field(alias="category")
    price: Decimal
    available_sits: int = Field(alias="availableSits")
    departure_at: datetime | None = Field(default=None, alias="departureAt")
    perks: str | None = None
    status: str
    on_add: bool = Field(alias="onAdd")


class BookingCreate(CamelModel):
    ticket_id: str = Field(alias="ticketId")
    user_name: str = Field(default="", alias="userName")
    booking_quantity: int = Field(gt=0, alias="bookingQuantity")


class BookingResponse(CamelModel):
    id: str
    ticket_id: str = Field(alias="ticketId")
    user_email: str = Field(alias="userEmail")
    user_name: str = Field(alias="userName")
    vendor_email: str = Field(alias="vendorEmail")
    vendor_name: str = Field(alias="vendorName")
    booking_quantity: int = Field(alias="bookingQuantity")
    unit_price: Decimal = Field(alias="unitPrice")
    booking_status: str = Field(alias="bookingStatus")
    payment: str


class CheckoutPaymentRequest(CamelModel):
    product_name: str = Field(alias="productName")
    booking_id: str = Field(alias="bookingId")
    ticket_id: str = Field(alias="ticketId")
    user_email: str = Field(alias="userEmail")
    user_name: str = Field(alias="userName")
    vendor_email: str = Field(alias="vendorEmail")
    vendor_name: str = Field(alias="vendorName")
    unit_price: Decimal = Field(alias="unitPrice")
    booking_quantity: int = Field(alias="bookingQuantity")
    # Sent by the client, recomputed by the gateway from the line item.
    total_price: Decimal | None = Field(default=None, alias="totalPrice")


class CheckoutPaymentResponse(CamelModel):
    url: str


class PaymentResponse(CamelModel):
    id: str
    amount: Decimal
    currency: str
    buying_quantity: int = Field(alias="buyingQuantity")
    booking_id: str = Field(alias="bookingId")
    ticket_id: str = Field(alias="ticketId")
    buyer_email: str | None = Field(default=None, alias="buyerEmail")
    buyer_name: str = Field(alias="buyerName")
    vendor_email: str = Field(alias="vendorEmail")
    vendor_name: str = Field(alias="vendorName")
    transaction_id: str = Field(alias="transactionId")
    payment_status: str = Field(alias="paymentStatus")
    paid_at: datetime = Field(alias="paidAt")


class StepOutcomeResponse(CamelModel):
    step: str
    entity_id: str = Field(alias="entityId")
    applied: bool


class SettlementResponse(CamelModel):
    result: PaymentResponse
    result_update_status: StepOutcomeResponse = Field(alias="resultUpdateStatus")
    result_update_ticket_quantity: StepOutcomeResponse = Field(alias="resultUpdateTicketQuantity")


class ReconciliationFailureResponse(CamelModel):
    transaction_id: str = Field(alias="transactionId")
    reason: str


class ReconciliationResponse(CamelModel):
    scanned: int
    repaired: list[str]
    failed: list[ReconciliationFailureResponse]
