# ticketmarket/infrastructure/repositories/payment_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import or_, select

from ticketmarket.domain.state_machine import PaymentFlag
from ticketmarket.infrastructure.db.models import Booking, InventoryDebit, Payment


class PaymentRepository:
    """Payments are only ever inserted and read."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.transaction_id == transaction_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_booking_id(self, booking_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_payment(self, payment: Payment) -> Payment:
        # Flush so a duplicate transaction id fails here, not at commit.
        self.db.add(payment)
        self.db.flush()
        return payment

    def list_unsettled(self, limit: int | None = None) -> list[Payment]:
        """
        Payments whose booking is not flagged paid or whose ticket debit
        is missing. A payment whose booking was deleted is included too,
        so the reconciliation report can surface it.
        """
        stmt = (
            select(Payment)
            .outerjoin(Booking, Booking.id == Payment.booking_id)
            .outerjoin(
                InventoryDebit,
                InventoryDebit.transaction_id == Payment.transaction_id,
            )
            .where(
                or_(
                    Booking.id.is_(None),
                    Booking.payment != PaymentFlag.PAID,
                    InventoryDebit.id.is_(None),
                )
            )
            .order_by(Payment.paid_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())
