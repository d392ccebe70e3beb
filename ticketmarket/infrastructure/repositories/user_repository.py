# ticketmarket/infrastructure/repositories/user_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticketmarket.infrastructure.db.models import User


class UserRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_users(self) -> list[User]:
        stmt = select(User).order_by(User.email)
        return list(self.db.execute(stmt).scalars().all())

    def create_user(self, email: str, name: str, photo_url: str | None) -> User:
        user = User(email=email, name=name, photo_url=photo_url, role="user")
        self.db.add(user)
        return user
