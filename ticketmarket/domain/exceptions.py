class MarketplaceError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticket marketplace.
    """


class InvalidStateTransitionError(MarketplaceError):
    """
    Raised when an illegal booking or ticket status transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InvalidIntentError(MarketplaceError):
    """Raised when a checkout request carries unusable input."""


class GatewayUnavailableError(MarketplaceError):
    """Raised when the payment gateway cannot be reached or rejects a call."""


class PaymentIncompleteError(MarketplaceError):
    """
    Raised when the gateway reports that a checkout session is not paid.
    Nothing local has been touched; the caller should poll again later.
    """

    def __init__(self, session_id: str, payment_status: str):
        self.session_id = session_id
        self.payment_status = payment_status
        super().__init__("Payment not completed")


class DanglingReferenceError(MarketplaceError):
    """
    Raised when checkout metadata points at a booking or ticket
    that does not exist anymore.
    """

    def __init__(self, entity: str, entity_id: str | None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id!r}")


class InsufficientInventoryError(MarketplaceError):
    """Raised when a ticket has fewer available sits than requested."""

    def __init__(self, ticket_id: str, requested: int):
        self.ticket_id = ticket_id
        self.requested = requested
        super().__init__(
            f"Ticket {ticket_id} cannot cover {requested} sits"
        )


class PersistenceFailureError(MarketplaceError):
    """
    Raised when the store fails part-way through a settlement.
    `completed_steps` lists the sub-steps that were committed.
    """

    def __init__(self, completed_steps: tuple, message: str = "Settlement partially applied"):
        self.completed_steps = tuple(completed_steps)
        super().__init__(message)


class AuthenticationError(MarketplaceError):
    """Raised when a bearer token cannot be verified."""


class DuplicatePaymentError(MarketplaceError):
    """
    Raised when a second paid session arrives for a booking that already
    has a Payment. The money was taken twice; the later charge needs a refund.
    """

    def __init__(self, booking_id: str, transaction_id: str):
        self.booking_id = booking_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Booking {booking_id} is already paid; transaction {transaction_id} was refused"
        )


class GatewayConfigurationError(MarketplaceError):
    """Raised when the payment gateway credentials are not configured."""
