# ticketmarket/infrastructure/db/models.py

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    Numeric,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from ticketmarket.infrastructure.db.session import Base
from ticketmarket.domain.state_machine import BookingStatus, PaymentFlag, TicketStatus


def _uuid() -> str:
    return str(uuid4())


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    photo_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
    )


class Ticket(Base):
    """
    A vendor's listing. `available_sits` is the live inventory that
    settlements draw down; the database refuses to let it go negative.
    """

    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    vendor_email: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    origin: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    destination: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    transport_type: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    available_sits: Mapped[int] = mapped_column(Integer, nullable=False)
    departure_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    perks: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, name="ticket_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TicketStatus.PENDING,
    )
    on_add: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("available_sits >= 0", name="ck_ticket_available_sits_nonnegative"),
        CheckConstraint("price >= 0", name="ck_ticket_price_nonnegative"),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Vendors move `booking_status`; only settlement moves `payment`.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    vendor_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    vendor_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    booking_status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=BookingStatus.REQUESTED,
    )
    payment: Mapped[PaymentFlag] = mapped_column(
        Enum(PaymentFlag, name="payment_flag", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentFlag.UNPAID,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_booking_quantity_positive"),
    )


class Payment(Base):
    """
    Append-only ledger entry, one per settled gateway transaction.
    The unique transaction id is the settlement's idempotency anchor;
    the unique booking id keeps a booking to a single Payment.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    buying_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    buyer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    vendor_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    vendor_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    booking_id: Mapped[str] = mapped_column(String(36), nullable=False)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    gateway_session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_payment_transaction_id"),
        UniqueConstraint("booking_id", name="uq_payment_booking_id"),
        CheckConstraint("buying_quantity > 0", name="ck_payment_quantity_positive"),
    )


class InventoryDebit(Base):
    """
    Marks that a transaction's quantity has been taken off a ticket.
    Written in the same transaction as the decrement itself.
    """

    __tablename__ = "inventory_debits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transaction_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("payments.transaction_id"),
        nullable=False,
    )
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_inventory_debit_transaction_id"),
        CheckConstraint("quantity > 0", name="ck_inventory_debit_quantity_positive"),
    )
