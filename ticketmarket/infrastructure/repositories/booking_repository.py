# ticketmarket/infrastructure/repositories/booking_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import delete, select, update

from ticketmarket.domain.state_machine import BookingStatus, PaymentFlag
from ticketmarket.infrastructure.db.models import Booking


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_user(self, user_email: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_email == user_email)
            .order_by(Booking.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_vendor(self, vendor_email: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.vendor_email == vendor_email)
            .order_by(Booking.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create_booking(
        self,
        ticket_id: str,
        user_email: str,
        user_name: str,
        vendor_email: str,
        vendor_name: str,
        quantity: int,
        unit_price: Decimal,
    ) -> Booking:

        booking = Booking(
            ticket_id=ticket_id,
            user_email=user_email,
            user_name=user_name,
            vendor_email=vendor_email,
            vendor_name=vendor_name,
            quantity=quantity,
            unit_price=unit_price,
            booking_status=BookingStatus.REQUESTED,
            payment=PaymentFlag.UNPAID,
        )

        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.booking_status = new_status

    def mark_paid(self, booking_id: str) -> bool:
        """
        Sets the payment flag in a single statement.
        Re-applying it is harmless; returns False if no booking matched.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(payment=PaymentFlag.PAID)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def delete_booking(self, booking_id: str) -> int:
        result = self.db.execute(delete(Booking).where(Booking.id == booking_id))
        return result.rowcount
