from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from ticketmarket.domain.state_machine import TicketStatus
from ticketmarket.infrastructure.db.models import Ticket, User
from ticketmarket.infrastructure.db.session import Base, SessionLocal, engine


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    dhaka = timezone(timedelta(hours=6))
    target = datetime.now(dhaka) + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_users(db) -> None:
    user_defs = [
        {"email": "admin@ticketmarket.test", "name": "Market Admin", "role": "admin"},
        {"email": "greenline@ticketmarket.test", "name": "Green Line Travels", "role": "vendor"},
        {"email": "rider@ticketmarket.test", "name": "Demo Rider", "role": "user"},
    ]

    for item in user_defs:
        existing = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if existing:
            existing.name = item["name"]
            existing.role = item["role"]
            continue
        db.add(User(email=item["email"], name=item["name"], role=item["role"]))


def seed_tickets(db) -> None:
    ticket_defs = [
        {
            "title": "Dhaka to Chattogram Express",
            "origin": "Dhaka",
            "destination": "Chattogram",
            "transport_type": "bus",
            "price": Decimal("1200.00"),
            "available_sits": 40,
            "departure_at": _dt(days_from_now=3, hour=7, minute=30),
            "perks": "AC, Water",
        },
        {
            "title": "Sylhet Night Train",
            "origin": "Dhaka",
            "destination": "Sylhet",
            "transport_type": "train",
            "price": Decimal("850.00"),
            "available_sits": 120,
            "departure_at": _dt(days_from_now=5, hour=22, minute=0),
            "perks": "Sleeper",
        },
    ]

    for item in ticket_defs:
        existing = db.execute(
            select(Ticket)
            .where(Ticket.title == item["title"])
            .where(Ticket.vendor_email == "greenline@ticketmarket.test")
        ).scalar_one_or_none()
        if existing:
            existing.price = item["price"]
            existing.departure_at = item["departure_at"]
            existing.status = TicketStatus.APPROVED
            continue

        db.add(
            Ticket(
                vendor_email="greenline@ticketmarket.test",
                vendor_name="Green Line Travels",
                status=TicketStatus.APPROVED,
                on_add=True,
                **item,
            )
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_users(db)
        seed_tickets(db)
        db.commit()
        print("Seed complete: admin, vendor and rider users with two approved tickets.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
