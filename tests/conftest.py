"""
Pytest configuration and fixtures.
"""
import os

# Keep module-level engine construction away from Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from dataclasses import replace
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ticketmarket.application.checkout_service import CheckoutIntent, CheckoutService
from ticketmarket.domain.exceptions import AuthenticationError, GatewayUnavailableError
from ticketmarket.domain.state_machine import BookingStatus, PaymentFlag, TicketStatus
from ticketmarket.infrastructure.auth.token_verifier import TokenVerifier
from ticketmarket.infrastructure.db.models import Booking, Ticket
from ticketmarket.infrastructure.db.session import Base, build_engine, build_session_factory
from ticketmarket.infrastructure.gateway.payment_gateway import (
    CheckoutSession,
    CheckoutSessionRequest,
    PaymentGateway,
)


class FakeGateway(PaymentGateway):
    """In-memory checkout provider. Sessions stay unpaid until `mark_paid`."""

    def __init__(self):
        self.sessions: dict[str, CheckoutSession] = {}
        self.requests: list[CheckoutSessionRequest] = []
        self.unavailable = False
        self.retrieve_calls = 0

    def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        if self.unavailable:
            raise GatewayUnavailableError("gateway down")
        session_id = f"plink_{len(self.sessions) + 1}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://pay.test/{session_id}",
            payment_status="unpaid",
            amount_total=request.amount_total,
            currency=request.currency,
            customer_email=request.customer_email,
            customer_name=request.customer_name,
            metadata=dict(request.metadata),
        )
        self.requests.append(request)
        self.sessions[session_id] = session
        return session

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        self.retrieve_calls += 1
        if self.unavailable:
            raise GatewayUnavailableError("gateway down")
        return self.sessions[session_id]

    def mark_paid(self, session_id: str, transaction_id: str | None = None) -> CheckoutSession:
        session = replace(
            self.sessions[session_id],
            payment_status="paid",
            transaction_id=transaction_id or f"pay_{session_id}",
        )
        self.sessions[session_id] = session
        return session

    @property
    def last_session_id(self) -> str:
        return list(self.sessions)[-1]


class EmailTokenVerifier(TokenVerifier):
    """Treats the bearer token itself as the principal's email."""

    def verify(self, token: str) -> str:
        if "@" not in token:
            raise AuthenticationError("Invalid token")
        return token


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_ticket(db):
    def _make(available_sits: int = 10, price: Decimal = Decimal("500.00"), **fields) -> Ticket:
        ticket = Ticket(
            vendor_email=fields.pop("vendor_email", "vendor@market.test"),
            vendor_name=fields.pop("vendor_name", "Green Line"),
            title=fields.pop("title", "Dhaka to Sylhet"),
            price=price,
            available_sits=available_sits,
            status=fields.pop("status", TicketStatus.APPROVED),
            on_add=False,
            **fields,
        )
        db.add(ticket)
        db.commit()
        return ticket

    return _make


@pytest.fixture
def make_booking(db):
    def _make(ticket: Ticket, quantity: int, user_email: str = "buyer@market.test") -> Booking:
        booking = Booking(
            ticket_id=ticket.id,
            user_email=user_email,
            user_name="Rahim",
            vendor_email=ticket.vendor_email,
            vendor_name=ticket.vendor_name,
            quantity=quantity,
            unit_price=ticket.price,
            booking_status=BookingStatus.ACCEPTED,
            payment=PaymentFlag.UNPAID,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def open_session(db, gateway):
    """Opens a checkout for a booking and returns the gateway session id."""

    def _open(booking: Booking, ticket: Ticket) -> str:
        CheckoutService(
            db=db,
            gateway=gateway,
            site_domain="http://localhost:5173",
            currency="inr",
        ).create_checkout(
            CheckoutIntent(
                product_name=ticket.title,
                booking_id=booking.id,
                ticket_id=ticket.id,
                buyer_email=booking.user_email,
                buyer_name=booking.user_name,
                vendor_email=ticket.vendor_email,
                vendor_name=ticket.vendor_name,
                unit_price=ticket.price,
                quantity=booking.quantity,
            )
        )
        return gateway.last_session_id

    return _open


@pytest.fixture
def client(session_factory, gateway):
    from ticketmarket.api.deps import get_db, get_payment_gateway, get_token_verifier
    from ticketmarket.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_token_verifier] = EmailTokenVerifier

    # Not entered as a context manager: startup would wait for Postgres.
    yield TestClient(app)

    app.dependency_overrides.clear()
