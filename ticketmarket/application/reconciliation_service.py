import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ticketmarket.application.settlement_service import SettlementTransition
from ticketmarket.domain.exceptions import (
    DanglingReferenceError,
    InsufficientInventoryError,
    PersistenceFailureError,
)
from ticketmarket.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationFailure:
    transaction_id: str
    reason: str


@dataclass
class ReconciliationReport:
    scanned: int = 0
    repaired: list[str] = field(default_factory=list)
    failed: list[ReconciliationFailure] = field(default_factory=list)


class ReconciliationService:
    """
    Finishes settlements that stopped after the Payment was recorded.

    Payments are the anchor: any Payment whose booking is not flagged
    paid, or whose ticket was never debited, gets its remaining steps
    re-applied. Faults that need a human (missing entities, oversold
    tickets) are reported, not raised.
    """

    def __init__(self, db: Session):
        self.db = db
        self.payment_repository = PaymentRepository(db)
        self.transition = SettlementTransition(db)

    def run(self, limit: int | None = None) -> ReconciliationReport:
        report = ReconciliationReport()
        payments = self.payment_repository.list_unsettled(limit=limit)
        transaction_ids = [payment.transaction_id for payment in payments]

        for payment, transaction_id in zip(payments, transaction_ids):
            report.scanned += 1
            try:
                self.transition.complete(payment)
            except (DanglingReferenceError, InsufficientInventoryError) as exc:
                report.failed.append(ReconciliationFailure(transaction_id, str(exc)))
                continue
            except PersistenceFailureError as exc:
                logger.error(
                    "Reconciliation stopped by store failure. transaction_id=%s completed=%s",
                    transaction_id,
                    [step.value for step in exc.completed_steps],
                )
                raise
            report.repaired.append(transaction_id)

        logger.info(
            "Reconciliation finished. scanned=%s repaired=%s failed=%s",
            report.scanned,
            len(report.repaired),
            len(report.failed),
        )
        return report
