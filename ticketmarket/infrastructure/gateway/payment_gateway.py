from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class LineItem:
    name: str
    unit_amount: int  # minor units
    quantity: int


@dataclass(frozen=True)
class CheckoutSessionRequest:
    line_items: tuple[LineItem, ...]
    currency: str
    metadata: dict[str, str]
    customer_email: str
    customer_name: str
    success_url: str
    cancel_url: str
    mode: str = "payment"

    @property
    def amount_total(self) -> int:
        return sum(item.unit_amount * item.quantity for item in self.line_items)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None
    payment_status: str  # "paid" | "unpaid"
    amount_total: int
    currency: str
    transaction_id: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


class PaymentGateway(ABC):
    """Hosted checkout provider. The provider owns session state."""

    @abstractmethod
    def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession: ...

    @abstractmethod
    def retrieve_session(self, session_id: str) -> CheckoutSession: ...
