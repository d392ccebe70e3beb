# tests/unit/test_settlement_service.py

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ticketmarket.application.settlement_service import SettlementService
from ticketmarket.domain.exceptions import (
    DanglingReferenceError,
    DuplicatePaymentError,
    InsufficientInventoryError,
    PaymentIncompleteError,
    PersistenceFailureError,
)
from ticketmarket.domain.state_machine import PaymentFlag, SettlementStep
from ticketmarket.infrastructure.db.models import Booking, InventoryDebit, Payment, Ticket


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _sits(db, ticket_id: str) -> int:
    return db.execute(
        select(Ticket.available_sits).where(Ticket.id == ticket_id)
    ).scalar_one()


def _payment_flag(db, booking_id: str) -> PaymentFlag:
    return db.execute(
        select(Booking.payment).where(Booking.id == booking_id)
    ).scalar_one()


# ---------------------
# HAPPY PATH
# ---------------------

def test_settle_records_payment_and_debits_inventory(
    db, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10, price=Decimal("500.00"))
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id, transaction_id="pay_A")

    result = SettlementService(db, gateway).settle(session_id)

    assert result.payment.transaction_id == "pay_A"
    assert result.payment.gateway_session_id == session_id
    assert result.payment.amount == Decimal("1500.00")
    assert result.payment.buying_quantity == 3
    assert result.payment.booking_id == booking.id
    assert result.payment.ticket_id == ticket.id
    assert result.payment.buyer_name == "Rahim"
    assert result.booking_update.step is SettlementStep.BOOKING_MARKED_PAID
    assert result.booking_update.entity_id == booking.id
    assert result.ticket_update.step is SettlementStep.INVENTORY_DECREMENTED
    assert result.ticket_update.applied is True

    assert _sits(db, ticket.id) == 7
    assert _payment_flag(db, booking.id) == PaymentFlag.PAID
    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1


# ---------------------
# IDEMPOTENCY
# ---------------------

def test_replay_returns_same_result_without_second_debit(
    db, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id)

    first = SettlementService(db, gateway).settle(session_id)
    second = SettlementService(db, gateway).settle(session_id)
    third = SettlementService(db, gateway).settle(session_id)

    assert first == second == third
    assert first.as_dict() == third.as_dict()
    assert _sits(db, ticket.id) == 7
    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1


def test_replay_from_another_session_object(
    db, session_factory, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id)

    first = SettlementService(db, gateway).settle(session_id)

    other = session_factory()
    try:
        second = SettlementService(other, gateway).settle(session_id)
    finally:
        other.close()

    assert first == second
    assert _sits(db, ticket.id) == 7


def test_losing_the_insert_race_resumes_existing_payment(
    db, session_factory, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id)

    first = SettlementService(db, gateway).settle(session_id)

    other = session_factory()
    try:
        late = SettlementService(other, gateway)
        # Both callers saw no Payment before either inserted one.
        late.payment_repository.get_by_transaction_id = lambda transaction_id: None
        second = late.settle(session_id)
    finally:
        other.close()

    assert second == first
    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1
    assert _sits(db, ticket.id) == 7


@pytest.mark.parametrize("order", [("C", "D"), ("D", "C")])
def test_two_settlements_on_one_ticket_commute(
    db, gateway, make_ticket, make_booking, open_session, order
):
    ticket = make_ticket(available_sits=10)
    sessions = {}
    for name, quantity in (("C", 2), ("D", 5)):
        booking = make_booking(ticket, quantity=quantity, user_email=f"{name}@market.test")
        sessions[name] = open_session(booking, ticket)
        gateway.mark_paid(sessions[name], transaction_id=f"pay_{name}")

    for name in order:
        SettlementService(db, gateway).settle(sessions[name])

    assert _sits(db, ticket.id) == 3
    assert _count(db, Payment) == 2


# ---------------------
# REFUSALS
# ---------------------

def test_unpaid_session_changes_nothing(db, gateway, make_ticket, make_booking, open_session):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)

    with pytest.raises(PaymentIncompleteError) as exc_info:
        SettlementService(db, gateway).settle(session_id)

    assert str(exc_info.value) == "Payment not completed"
    assert _count(db, Payment) == 0
    assert _sits(db, ticket.id) == 10
    assert _payment_flag(db, booking.id) == PaymentFlag.UNPAID


def test_deleted_booking_is_dangling(db, gateway, make_ticket, make_booking, open_session):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id)
    db.delete(booking)
    db.commit()

    with pytest.raises(DanglingReferenceError) as exc_info:
        SettlementService(db, gateway).settle(session_id)

    assert exc_info.value.entity == "booking"
    assert _count(db, Payment) == 0
    assert _sits(db, ticket.id) == 10


def test_deleted_ticket_is_dangling(db, gateway, make_ticket, make_booking, open_session):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id)
    db.delete(ticket)
    db.commit()

    with pytest.raises(DanglingReferenceError) as exc_info:
        SettlementService(db, gateway).settle(session_id)

    assert exc_info.value.entity == "ticket"
    assert _count(db, Payment) == 0
    assert _payment_flag(db, booking.id) == PaymentFlag.UNPAID


def test_oversold_ticket_is_refused(db, gateway, make_ticket, make_booking, open_session):
    ticket = make_ticket(available_sits=3)
    first = make_booking(ticket, quantity=2, user_email="first@market.test")
    second = make_booking(ticket, quantity=2, user_email="second@market.test")
    first_session = open_session(first, ticket)
    second_session = open_session(second, ticket)
    gateway.mark_paid(first_session)
    gateway.mark_paid(second_session)

    SettlementService(db, gateway).settle(first_session)
    with pytest.raises(InsufficientInventoryError):
        SettlementService(db, gateway).settle(second_session)

    assert _sits(db, ticket.id) == 1
    assert _count(db, Payment) == 1
    assert _payment_flag(db, second.id) == PaymentFlag.UNPAID


def test_second_paid_session_for_one_booking_is_refused(
    db, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    first_session = open_session(booking, ticket)
    second_session = open_session(booking, ticket)
    gateway.mark_paid(first_session, transaction_id="pay_1")
    gateway.mark_paid(second_session, transaction_id="pay_2")

    SettlementService(db, gateway).settle(first_session)

    with pytest.raises(DuplicatePaymentError) as exc_info:
        SettlementService(db, gateway).settle(second_session)

    assert exc_info.value.booking_id == booking.id
    assert exc_info.value.transaction_id == "pay_2"
    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1
    assert _sits(db, ticket.id) == 7


def test_concurrent_second_payment_for_booking_loses_on_insert(
    db, session_factory, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    first_session = open_session(booking, ticket)
    second_session = open_session(booking, ticket)
    gateway.mark_paid(first_session, transaction_id="pay_1")
    gateway.mark_paid(second_session, transaction_id="pay_2")

    SettlementService(db, gateway).settle(first_session)

    other = session_factory()
    try:
        late = SettlementService(other, gateway)
        # The late caller read the booking before the first Payment landed.
        late._check_references = lambda metadata, transaction_id: None
        with pytest.raises(DuplicatePaymentError):
            late.settle(second_session)
    finally:
        other.close()

    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1
    assert _sits(db, ticket.id) == 7


# ---------------------
# PARTIAL FAILURE
# ---------------------

def test_store_failure_reports_completed_steps_and_resumes(
    db, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id, transaction_id="pay_partial")

    broken = SettlementService(db, gateway)

    def _fail(**kwargs):
        raise OperationalError("UPDATE tickets", {}, Exception("disk I/O error"))

    broken.transition.ticket_repository.debit_inventory = _fail

    with pytest.raises(PersistenceFailureError) as exc_info:
        broken.settle(session_id)

    assert exc_info.value.completed_steps == (
        SettlementStep.PAYMENT_RECORDED,
        SettlementStep.BOOKING_MARKED_PAID,
    )
    assert _count(db, Payment) == 1
    assert _payment_flag(db, booking.id) == PaymentFlag.PAID
    assert _sits(db, ticket.id) == 10

    result = SettlementService(db, gateway).settle(session_id)

    assert result.payment.transaction_id == "pay_partial"
    assert _sits(db, ticket.id) == 7
    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1


def test_failed_payment_insert_leaves_nothing_and_retries_cleanly(
    db, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id, transaction_id="pay_insert")

    broken = SettlementService(db, gateway)

    def _fail(payment):
        raise OperationalError("INSERT INTO payments", {}, Exception("disk I/O error"))

    broken.transition.payment_repository.add_payment = _fail

    with pytest.raises(PersistenceFailureError) as exc_info:
        broken.settle(session_id)

    assert exc_info.value.completed_steps == ()
    assert _count(db, Payment) == 0
    assert _payment_flag(db, booking.id) == PaymentFlag.UNPAID
    assert _sits(db, ticket.id) == 10

    result = SettlementService(db, gateway).settle(session_id)

    assert result.payment.transaction_id == "pay_insert"
    assert _count(db, Payment) == 1
    assert _sits(db, ticket.id) == 7


def test_failed_paid_flag_resumes_from_recorded_payment(
    db, gateway, make_ticket, make_booking, open_session
):
    ticket = make_ticket(available_sits=10)
    booking = make_booking(ticket, quantity=3)
    session_id = open_session(booking, ticket)
    gateway.mark_paid(session_id, transaction_id="pay_flag")

    broken = SettlementService(db, gateway)

    def _fail(booking_id):
        raise OperationalError("UPDATE bookings", {}, Exception("disk I/O error"))

    broken.transition.booking_repository.mark_paid = _fail

    with pytest.raises(PersistenceFailureError) as exc_info:
        broken.settle(session_id)

    assert exc_info.value.completed_steps == (SettlementStep.PAYMENT_RECORDED,)
    assert _count(db, Payment) == 1
    assert _payment_flag(db, booking.id) == PaymentFlag.UNPAID
    assert _sits(db, ticket.id) == 10

    SettlementService(db, gateway).settle(session_id)

    assert _payment_flag(db, booking.id) == PaymentFlag.PAID
    assert _sits(db, ticket.id) == 7
    assert _count(db, Payment) == 1
    assert _count(db, InventoryDebit) == 1
