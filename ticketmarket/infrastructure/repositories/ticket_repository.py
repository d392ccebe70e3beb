# ticketmarket/infrastructure/repositories/ticket_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import delete, select, update

from ticketmarket.domain.state_machine import TicketStatus
from ticketmarket.infrastructure.db.models import InventoryDebit, Ticket


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_all(self) -> list[Ticket]:
        stmt = select(Ticket).order_by(Ticket.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def list_by_vendor(self, vendor_email: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.vendor_email == vendor_email)
            .order_by(Ticket.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create_ticket(self, **fields) -> Ticket:
        ticket = Ticket(
            status=TicketStatus.PENDING,
            on_add=False,
            **fields,
        )
        self.db.add(ticket)
        return ticket

    def update_fields(self, ticket: Ticket, **changes) -> None:
        for field, value in changes.items():
            setattr(ticket, field, value)

    def update_status(self, ticket: Ticket, new_status: TicketStatus) -> None:
        ticket.status = new_status

    def set_on_add(self, ticket: Ticket, on_add: bool) -> None:
        ticket.on_add = on_add

    def delete_ticket(self, ticket_id: str) -> int:
        result = self.db.execute(delete(Ticket).where(Ticket.id == ticket_id))
        return result.rowcount

    def debit_inventory(
        self,
        ticket_id: str,
        quantity: int,
        transaction_id: str,
    ) -> bool:
        """
        Records the debit and takes `quantity` sits off the ticket in one
        conditional UPDATE, so concurrent settlements serialize in the
        database rather than in engine memory.

        Returns False when no row was updated (ticket missing or short of
        sits). The debit row is flushed first; a duplicate transaction id
        raises IntegrityError before the ticket is touched.
        """
        self.db.add(
            InventoryDebit(
                transaction_id=transaction_id,
                ticket_id=ticket_id,
                quantity=quantity,
            )
        )
        self.db.flush()

        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.available_sits >= quantity)
            .values(available_sits=Ticket.available_sits - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def has_debit(self, transaction_id: str) -> bool:
        stmt = select(InventoryDebit.id).where(
            InventoryDebit.transaction_id == transaction_id
        )
        return self.db.execute(stmt).first() is not None
