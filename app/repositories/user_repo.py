# app/repositories/user_repo.py
import uuid

from sqlmodel import Session

from app.models.user import User


class UserRepository:
    """
    Data access layer for operator profiles.

    Profiles are provisioned by the catalog side; this service only reads them.
    """

    def get_by_id(self, session: Session, user_id: uuid.UUID) -> User | None:
        """Return a profile by primary key (JWT sub), or None if not found."""
        return session.get(User, user_id)
