import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ticketmarket.api.deps import get_current_email, get_db, get_payment_gateway
from ticketmarket.api.schemas.schemas import (
    BookingCreate,
    BookingResponse,
    CheckoutPaymentRequest,
    CheckoutPaymentResponse,
    PaymentResponse,
    ReconciliationFailureResponse,
    ReconciliationResponse,
    SettlementResponse,
    StepOutcomeResponse,
    TicketCreate,
    TicketResponse,
    TicketUpdate,
    UserCreate,
    UserInfoResponse,
    UserResponse,
)
from ticketmarket.application.checkout_service import CheckoutIntent, CheckoutService
from ticketmarket.application.marketplace_service import BookingService, TicketService, UserService
from ticketmarket.application.reconciliation_service import ReconciliationService
from ticketmarket.application.settlement_service import SettlementResult, SettlementService, StepOutcome
from ticketmarket.domain.exceptions import (
    DanglingReferenceError,
    DuplicatePaymentError,
    GatewayUnavailableError,
    InsufficientInventoryError,
    InvalidIntentError,
    InvalidStateTransitionError,
    PaymentIncompleteError,
    PersistenceFailureError,
)
from ticketmarket.infrastructure.db.models import Booking, Ticket, User
from ticketmarket.infrastructure.gateway.payment_gateway import PaymentGateway


router = APIRouter()
logger = logging.getLogger(__name__)


def _site_domain() -> str:
    return os.getenv("SITE_DOMAIN", "http://localhost:5173")


def _checkout_currency() -> str:
    return os.getenv("CHECKOUT_CURRENCY", "INR")


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        status=user.status,
    )


def _ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        id=ticket.id,
        title=ticket.title,
        vendor_email=ticket.vendor_email,
        vendor_name=ticket.vendor_name,
        origin=ticket.origin,
        destination=ticket.destination,
        transport_type=ticket.transport_type,
        price=ticket.price,
        available_sits=ticket.available_sits,
        departure_at=ticket.departure_at,
        perks=ticket.perks,
        status=ticket.status.value,
        on_add=ticket.on_add,
    )


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        ticket_id=booking.ticket_id,
        user_email=booking.user_email,
        user_name=booking.user_name,
        vendor_email=booking.vendor_email,
        vendor_name=booking.vendor_name,
        booking_quantity=booking.quantity,
        unit_price=booking.unit_price,
        booking_status=booking.booking_status.value,
        payment=booking.payment.value,
    )


def _step_response(outcome: StepOutcome) -> StepOutcomeResponse:
    return StepOutcomeResponse(
        step=outcome.step.value,
        entity_id=outcome.entity_id,
        applied=outcome.applied,
    )


def _settlement_response(result: SettlementResult) -> SettlementResponse:
    payment = result.payment
    return SettlementResponse(
        result=PaymentResponse(
            id=payment.id,
            amount=payment.amount,
            currency=payment.currency,
            buying_quantity=payment.buying_quantity,
            booking_id=payment.booking_id,
            ticket_id=payment.ticket_id,
            buyer_email=payment.buyer_email,
            buyer_name=payment.buyer_name,
            vendor_email=payment.vendor_email,
            vendor_name=payment.vendor_name,
            transaction_id=payment.transaction_id,
            payment_status=payment.payment_status,
            paid_at=payment.paid_at,
        ),
        result_update_status=_step_response(result.booking_update),
        result_update_ticket_quantity=_step_response(result.ticket_update),
    )


@router.get("/health")
def health():
    return {"message": "Ticket marketplace is running"}


# -----------------------------
# Users
# -----------------------------
@router.post("/users", response_model=UserResponse)
def create_user(request: UserCreate, db: Session = Depends(get_db)):
    user = UserService(db).register(
        email=request.email,
        name=request.name,
        photo_url=request.photo_url,
    )
    return _user_response(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    return [_user_response(user) for user in UserService(db).list_users()]


@router.get("/users/user/{email}")
def user_exists(email: str, db: Session = Depends(get_db)) -> bool:
    return UserService(db).exists(email)


@router.get("/users/info/{email}")
def get_user_info(email: str, db: Session = Depends(get_db)):
    user = UserService(db).get_by_email(email)
    if not user:
        return False
    return UserInfoResponse(role=user.role, status=user.status).model_dump()


@router.patch("/users/update-role", response_model=UserResponse)
def update_user_role(
    email: str,
    role: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        user = UserService(db).update_role(email=email, role=role)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _user_response(user)


@router.patch("/users/update-status", response_model=UserResponse)
def update_user_status(
    email: str,
    status_value: str = Query(alias="status"),
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        user = UserService(db).update_status(email=email, status=status_value)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _user_response(user)


# -----------------------------
# Tickets
# -----------------------------
@router.post("/tickets", response_model=TicketResponse)
def create_ticket(
    request: TicketCreate,
    db: Session = Depends(get_db),
    principal: str = Depends(get_current_email),
):
    ticket = TicketService(db).create_ticket(
        vendor_email=principal,
        vendor_name=request.vendor_name,
        title=request.title,
        origin=request.origin,
        destination=request.destination,
        transport_type=request.transport_type,
        price=request.price,
        available_sits=request.available_sits,
        departure_at=request.departure_at,
        perks=request.perks,
    )
    return _ticket_response(ticket)


@router.get("/tickets", response_model=list[TicketResponse])
def list_tickets(
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    return [_ticket_response(ticket) for ticket in TicketService(db).list_tickets()]


@router.get("/tickets/ticket/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        ticket = TicketService(db).get_ticket(ticket_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _ticket_response(ticket)


@router.get("/tickets/my-tickets/{email}", response_model=list[TicketResponse])
def list_my_tickets(
    email: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    return [_ticket_response(ticket) for ticket in TicketService(db).list_vendor_tickets(email)]


@router.patch("/tickets/ticket/update/{ticket_id}", response_model=TicketResponse)
def update_ticket(
    ticket_id: str,
    request: TicketUpdate,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        ticket = TicketService(db).update_ticket(
            ticket_id, **request.model_dump(exclude_unset=True, exclude_none=True)
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _ticket_response(ticket)


@router.patch("/tickets/update/status", response_model=TicketResponse)
def update_ticket_status(
    id: str,
    status_value: str = Query(alias="status"),
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        ticket = TicketService(db).change_status(id, status_value)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStateTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _ticket_response(ticket)


@router.patch("/tickets/update/onAdd", response_model=TicketResponse)
def update_ticket_on_add(
    id: str,
    onAdd: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        ticket = TicketService(db).set_on_add(id, onAdd != "false")
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _ticket_response(ticket)


@router.delete("/tickets/delete/{ticket_id}")
def delete_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        TicketService(db).delete_ticket(ticket_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"deleted": ticket_id}


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse)
def create_booking(
    request: BookingCreate,
    db: Session = Depends(get_db),
    principal: str = Depends(get_current_email),
):
    try:
        booking = BookingService(db).create_booking(
            ticket_id=request.ticket_id,
            user_email=principal,
            user_name=request.user_name,
            quantity=request.booking_quantity,
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _booking_response(booking)


@router.get("/bookings/my-bookings/{user_email}", response_model=list[BookingResponse])
def list_my_bookings(
    user_email: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    return [_booking_response(b) for b in BookingService(db).list_user_bookings(user_email)]


@router.get("/bookings/booking-request/{vendor_email}", response_model=list[BookingResponse])
def list_booking_requests(
    vendor_email: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    return [_booking_response(b) for b in BookingService(db).list_vendor_requests(vendor_email)]


@router.patch("/bookings/update/booking-status", response_model=BookingResponse)
def update_booking_status(
    id: str,
    bookingStatus: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        booking = BookingService(db).change_status(id, bookingStatus)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStateTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _booking_response(booking)


@router.delete("/bookings/delete/{booking_id}")
def delete_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        BookingService(db).delete_booking(booking_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"deleted": booking_id}


# -----------------------------
# Payments
# -----------------------------
@router.post("/checkout-payment", response_model=CheckoutPaymentResponse)
def checkout_payment(
    request: CheckoutPaymentRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    _principal: str = Depends(get_current_email),
):
    service = CheckoutService(
        db=db,
        gateway=gateway,
        site_domain=_site_domain(),
        currency=_checkout_currency(),
    )
    intent = CheckoutIntent(
        product_name=request.product_name,
        booking_id=request.booking_id,
        ticket_id=request.ticket_id,
        buyer_email=request.user_email,
        buyer_name=request.user_name,
        vendor_email=request.vendor_email,
        vendor_name=request.vendor_name,
        unit_price=request.unit_price,
        quantity=request.booking_quantity,
    )

    try:
        result = service.create_checkout(intent)
    except InvalidIntentError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except GatewayUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment gateway unavailable. Please retry checkout.",
        ) from exc

    return CheckoutPaymentResponse(url=result.checkout_url)


@router.post("/success-payment", response_model=SettlementResponse)
def success_payment(
    session_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    _principal: str = Depends(get_current_email),
):
    service = SettlementService(db=db, gateway=gateway)

    try:
        result = service.settle(session_id)
    except PaymentIncompleteError:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Payment not completed"},
        )
    except GatewayUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment gateway unavailable. Please retry.",
        ) from exc
    except DanglingReferenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except InsufficientInventoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except DuplicatePaymentError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except PersistenceFailureError as exc:
        logger.warning(
            "Settlement left partially applied. session_id=%s completed=%s",
            session_id,
            [step.value for step in exc.completed_steps],
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "message": str(exc),
                "completedSteps": [step.value for step in exc.completed_steps],
            },
        )

    return _settlement_response(result)


@router.post("/payments/reconcile", response_model=ReconciliationResponse)
def reconcile_payments(
    limit: int | None = None,
    db: Session = Depends(get_db),
    _principal: str = Depends(get_current_email),
):
    try:
        report = ReconciliationService(db).run(limit=limit)
    except PersistenceFailureError as exc:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "message": str(exc),
                "completedSteps": [step.value for step in exc.completed_steps],
            },
        )
    return ReconciliationResponse(
        scanned=report.scanned,
        repaired=report.repaired,
        failed=[
            ReconciliationFailureResponse(transaction_id=f.transaction_id, reason=f.reason)
            for f in report.failed
        ],
    )
