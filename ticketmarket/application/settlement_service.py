import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ticketmarket.domain.checkout_metadata import CheckoutMetadata, from_minor_units
from ticketmarket.domain.exceptions import (
    DanglingReferenceError,
    DuplicatePaymentError,
    InsufficientInventoryError,
    PaymentIncompleteError,
    PersistenceFailureError,
)
from ticketmarket.domain.state_machine import PaymentFlag, SettlementStep
from ticketmarket.infrastructure.db.models import Payment
from ticketmarket.infrastructure.gateway.payment_gateway import CheckoutSession, PaymentGateway
from ticketmarket.infrastructure.repositories.booking_repository import BookingRepository
from ticketmarket.infrastructure.repositories.payment_repository import PaymentRepository
from ticketmarket.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    transaction_id: str
    gateway_session_id: str
    amount: Decimal
    currency: str
    buying_quantity: int
    booking_id: str
    ticket_id: str
    buyer_email: str | None
    buyer_name: str
    vendor_email: str
    vendor_name: str
    payment_status: str
    paid_at: datetime

    @classmethod
    def from_model(cls, payment: Payment) -> "PaymentRecord":
        return cls(
            id=payment.id,
            transaction_id=payment.transaction_id,
            gateway_session_id=payment.gateway_session_id,
            amount=payment.amount,
            currency=payment.currency,
            buying_quantity=payment.buying_quantity,
            booking_id=payment.booking_id,
            ticket_id=payment.ticket_id,
            buyer_email=payment.buyer_email,
            buyer_name=payment.buyer_name,
            vendor_email=payment.vendor_email,
            vendor_name=payment.vendor_name,
            payment_status=payment.payment_status,
            paid_at=payment.paid_at,
        )


@dataclass(frozen=True)
class StepOutcome:
    step: SettlementStep
    entity_id: str
    applied: bool


@dataclass(frozen=True)
class SettlementResult:
    payment: PaymentRecord
    booking_update: StepOutcome
    ticket_update: StepOutcome

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _Target:
    transaction_id: str
    booking_id: str
    ticket_id: str
    quantity: int

    @classmethod
    def of(cls, payment: Payment) -> "_Target":
        return cls(
            transaction_id=payment.transaction_id,
            booking_id=payment.booking_id,
            ticket_id=payment.ticket_id,
            quantity=payment.buying_quantity,
        )


class SettlementTransition:
    """
    The three sub-steps of a settlement, each committed on its own.

    Every step after the Payment insert is safe to re-run: the booking
    flag is a plain overwrite and the inventory debit is guarded by a
    unique row per transaction. Callers resume a half-applied settlement
    by handing the recorded Payment back to `complete`.
    """

    def __init__(self, db: Session):
        self.db = db
        self.payment_repository = PaymentRepository(db)
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)

    def record_payment(self, payment: Payment) -> Payment:
        transaction_id = payment.transaction_id
        booking_id = payment.booking_id
        try:
            self.payment_repository.add_payment(payment)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            existing = self.payment_repository.get_by_transaction_id(transaction_id)
            if existing is None:
                if self.payment_repository.get_by_booking_id(booking_id) is not None:
                    logger.error(
                        "Booking settled by another transaction, refund required. "
                        "booking_id=%s transaction_id=%s",
                        booking_id,
                        transaction_id,
                    )
                    raise DuplicatePaymentError(booking_id, transaction_id) from exc
                logger.exception("Payment insert rejected. transaction_id=%s", transaction_id)
                raise PersistenceFailureError((), "Payment could not be recorded") from exc
            logger.warning(
                "Payment already recorded by a concurrent settlement. transaction_id=%s",
                transaction_id,
            )
            return existing
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Payment insert failed. transaction_id=%s", transaction_id)
            raise PersistenceFailureError((), "Payment could not be recorded") from exc

        logger.info(
            "Payment recorded. transaction_id=%s booking_id=%s amount=%s %s",
            transaction_id,
            payment.booking_id,
            payment.amount,
            payment.currency,
        )
        return payment

    def complete(self, payment: Payment) -> SettlementResult:
        completed = [SettlementStep.PAYMENT_RECORDED]
        try:
            target = _Target.of(payment)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailureError(tuple(completed)) from exc

        booking_update = self._mark_booking_paid(target, completed)
        completed.append(SettlementStep.BOOKING_MARKED_PAID)

        ticket_update = self._debit_inventory(target, completed)
        completed.append(SettlementStep.INVENTORY_DECREMENTED)

        try:
            # Bulk UPDATEs bypass the identity map.
            self.db.expire_all()
            self.db.refresh(payment)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailureError(tuple(completed), "Settlement applied but not readable") from exc

        return SettlementResult(
            payment=PaymentRecord.from_model(payment),
            booking_update=booking_update,
            ticket_update=ticket_update,
        )

    def _mark_booking_paid(self, target: _Target, completed: list) -> StepOutcome:
        try:
            found = self.booking_repository.mark_paid(target.booking_id)
            if found:
                self.db.commit()
            else:
                self.db.rollback()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Marking booking paid failed. booking_id=%s transaction_id=%s",
                target.booking_id,
                target.transaction_id,
            )
            raise PersistenceFailureError(tuple(completed)) from exc

        if not found:
            logger.error(
                "Booking vanished after payment was recorded. booking_id=%s transaction_id=%s",
                target.booking_id,
                target.transaction_id,
            )
            raise DanglingReferenceError("booking", target.booking_id)

        return StepOutcome(
            step=SettlementStep.BOOKING_MARKED_PAID,
            entity_id=target.booking_id,
            applied=True,
        )

    def _debit_inventory(self, target: _Target, completed: list) -> StepOutcome:
        outcome = StepOutcome(
            step=SettlementStep.INVENTORY_DECREMENTED,
            entity_id=target.ticket_id,
            applied=True,
        )

        try:
            if self.ticket_repository.has_debit(target.transaction_id):
                self.db.rollback()
                return outcome
            debited = self.ticket_repository.debit_inventory(
                ticket_id=target.ticket_id,
                quantity=target.quantity,
                transaction_id=target.transaction_id,
            )
            if debited:
                self.db.commit()
            else:
                self.db.rollback()
        except IntegrityError as exc:
            self.db.rollback()
            if self.ticket_repository.has_debit(target.transaction_id):
                logger.info(
                    "Inventory already debited by a concurrent settlement. transaction_id=%s",
                    target.transaction_id,
                )
                return outcome
            logger.exception(
                "Inventory debit rejected. ticket_id=%s transaction_id=%s",
                target.ticket_id,
                target.transaction_id,
            )
            raise PersistenceFailureError(tuple(completed)) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Inventory debit failed. ticket_id=%s transaction_id=%s",
                target.ticket_id,
                target.transaction_id,
            )
            raise PersistenceFailureError(tuple(completed)) from exc

        if not debited:
            if self.ticket_repository.get_by_id(target.ticket_id) is None:
                logger.error(
                    "Ticket vanished after payment was recorded. ticket_id=%s transaction_id=%s",
                    target.ticket_id,
                    target.transaction_id,
                )
                raise DanglingReferenceError("ticket", target.ticket_id)
            logger.error(
                "Ticket oversold after payment was recorded. ticket_id=%s quantity=%s transaction_id=%s",
                target.ticket_id,
                target.quantity,
                target.transaction_id,
            )
            raise InsufficientInventoryError(target.ticket_id, target.quantity)

        logger.info(
            "Inventory debited. ticket_id=%s quantity=%s transaction_id=%s",
            target.ticket_id,
            target.quantity,
            target.transaction_id,
        )
        return outcome


class SettlementService:
    """
    Turns a paid checkout session into local ledger state:
    a Payment row, a paid Booking and a decremented Ticket.

    Safe to call any number of times for the same session. The Payment's
    unique transaction id decides which call applies the transition;
    every other call resumes whatever sub-steps are still missing and
    returns the same result.
    """

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.transition = SettlementTransition(db)
        self.payment_repository = PaymentRepository(db)
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)

    def settle(self, session_reference: str) -> SettlementResult:
        session = self.gateway.retrieve_session(session_reference)
        if not session.is_paid:
            logger.warning(
                "Settlement requested for unpaid session. session_id=%s payment_status=%s",
                session.id,
                session.payment_status,
            )
            raise PaymentIncompleteError(session.id, session.payment_status)

        try:
            metadata = CheckoutMetadata.from_notes(session.metadata)
        except DanglingReferenceError:
            logger.error("Checkout metadata unusable. session_id=%s", session.id)
            raise

        transaction_id = session.transaction_id or session.id

        try:
            payment = self.payment_repository.get_by_transaction_id(transaction_id)
            if payment is None:
                self._check_references(metadata, transaction_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Settlement lookup failed. transaction_id=%s", transaction_id)
            raise PersistenceFailureError(()) from exc

        if payment is not None:
            logger.info(
                "Session already settled, resuming. session_id=%s transaction_id=%s",
                session.id,
                transaction_id,
            )
        else:
            payment = self.transition.record_payment(
                self._build_payment(session, metadata, transaction_id)
            )

        return self.transition.complete(payment)

    def _check_references(self, metadata: CheckoutMetadata, transaction_id: str) -> None:
        booking = self.booking_repository.get_by_id(metadata.booking_id)
        if booking is None:
            logger.error(
                "Settlement references a missing booking. booking_id=%s transaction_id=%s",
                metadata.booking_id,
                transaction_id,
            )
            raise DanglingReferenceError("booking", metadata.booking_id)

        if (
            booking.payment == PaymentFlag.PAID
            or self.payment_repository.get_by_booking_id(booking.id) is not None
        ):
            logger.error(
                "Booking already settled by another transaction, refund required. "
                "booking_id=%s transaction_id=%s",
                booking.id,
                transaction_id,
            )
            raise DuplicatePaymentError(booking.id, transaction_id)

        ticket = self.ticket_repository.get_by_id(metadata.ticket_id)
        if ticket is None:
            logger.error(
                "Settlement references a missing ticket. ticket_id=%s transaction_id=%s",
                metadata.ticket_id,
                transaction_id,
            )
            raise DanglingReferenceError("ticket", metadata.ticket_id)

        if ticket.available_sits < metadata.quantity:
            logger.error(
                "Paid session exceeds ticket inventory, refund required. "
                "ticket_id=%s available=%s requested=%s transaction_id=%s",
                ticket.id,
                ticket.available_sits,
                metadata.quantity,
                transaction_id,
            )
            raise InsufficientInventoryError(ticket.id, metadata.quantity)

    @staticmethod
    def _build_payment(
        session: CheckoutSession,
        metadata: CheckoutMetadata,
        transaction_id: str,
    ) -> Payment:
        return Payment(
            amount=from_minor_units(session.amount_total),
            currency=session.currency,
            buying_quantity=metadata.quantity,
            buyer_email=session.customer_email,
            buyer_name=metadata.buyer_name or session.customer_name or "",
            vendor_email=metadata.vendor_email,
            vendor_name=metadata.vendor_name,
            booking_id=metadata.booking_id,
            ticket_id=metadata.ticket_id,
            transaction_id=transaction_id,
            gateway_session_id=session.id,
            payment_status=session.payment_status,
            paid_at=datetime.now(timezone.utc),
        )
