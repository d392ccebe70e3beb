import logging
import os

import razorpay
import requests

from ticketmarket.domain.exceptions import GatewayConfigurationError, GatewayUnavailableError
from ticketmarket.infrastructure.gateway.payment_gateway import (
    CheckoutSession,
    CheckoutSessionRequest,
    PaymentGateway,
)

logger = logging.getLogger(__name__)

_GATEWAY_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.exceptions.RequestException,
)


def razorpay_client() -> razorpay.Client:
    key_id = os.getenv("RAZORPAY_KEY_ID")
    key_secret = os.getenv("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        raise GatewayConfigurationError(
            "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
        )
    return razorpay.Client(auth=(key_id, key_secret))


class RazorpayGateway(PaymentGateway):
    """
    Checkout sessions backed by Razorpay Payment Links.

    A link carries one amount, so the single line item is collapsed into
    `unit_amount * quantity`; the metadata bag travels as the link's notes.
    """

    def __init__(self, client: razorpay.Client, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        if request.mode != "payment":
            raise ValueError(f"Unsupported checkout mode: {request.mode}")

        description = ", ".join(
            f"{item.name} x {item.quantity}" for item in request.line_items
        )
        payload = {
            "amount": request.amount_total,
            "currency": request.currency.upper(),
            "description": description[:2048],
            "customer": {
                "name": request.customer_name,
                "email": request.customer_email,
            },
            "notify": {"email": False, "sms": False},
            "notes": dict(request.metadata),
            "callback_url": request.success_url,
            "callback_method": "get",
        }

        try:
            link = self.client.payment_link.create(payload, timeout=self.timeout)
        except _GATEWAY_ERRORS as exc:
            logger.warning("Razorpay rejected payment link creation: %s", exc)
            raise GatewayUnavailableError(str(exc)) from exc

        return self._to_session(link)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            link = self.client.payment_link.fetch(session_id, timeout=self.timeout)
        except _GATEWAY_ERRORS as exc:
            logger.warning("Razorpay fetch failed for %s: %s", session_id, exc)
            raise GatewayUnavailableError(str(exc)) from exc

        return self._to_session(link)

    @staticmethod
    def _to_session(link: dict) -> CheckoutSession:
        paid = link.get("status") == "paid"
        customer = link.get("customer") or {}

        transaction_id = None
        for payment in link.get("payments") or []:
            if payment.get("status") == "captured":
                transaction_id = payment.get("payment_id")
        if paid and not transaction_id:
            transaction_id = link.get("id")

        amount_total = link.get("amount_paid") if paid else link.get("amount")

        return CheckoutSession(
            id=link["id"],
            url=link.get("short_url"),
            payment_status="paid" if paid else "unpaid",
            amount_total=int(amount_total or 0),
            currency=str(link.get("currency") or "").lower(),
            transaction_id=transaction_id,
            customer_email=customer.get("email"),
            customer_name=customer.get("name"),
            metadata={k: str(v) for k, v in (link.get("notes") or {}).items()},
        )


def gateway_from_env() -> RazorpayGateway:
    timeout = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    return RazorpayGateway(razorpay_client(), timeout=timeout)
