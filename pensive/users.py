# pensive/users.py
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from .logging_setup import get_logger
from .models import User
from .store import SessionFactory

logger = get_logger("pensive.users")


class UserStore:
    def __init__(self, get_session: SessionFactory):
        self.get_session = get_session

    def ensure_user(self, user_id: str) -> User:
        """Return the user row, creating it on first sight of the id."""
        with self.get_session() as s:
            user = s.get(User, user_id)
            if user is not None:
                return user
            user = User(id=user_id)
            s.add(user)
            try:
                s.commit()
            except IntegrityError:
                # another request created it first
                s.rollback()
                return s.get(User, user_id)
        logger.info("USER_CREATED", extra={"uid": user_id})
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self.get_session() as s:
            return s.get(User, user_id)

    def update_settings(
        self,
        user_id: str,
        email: Optional[str] = None,
        digest_email: Optional[str] = None,
        digest_frequency: Optional[str] = None,
    ) -> User:
        self.ensure_user(user_id)
        with self.get_session() as s:
            user = s.get(User, user_id)
            if email is not None:
                user.email = email.strip()
            if digest_email is not None:
                user.digest_email = digest_email.strip() or None
            if digest_frequency is not None:
                user.digest_frequency = digest_frequency
            s.add(user)
            s.commit()
        logger.info("USER_SETTINGS_UPDATED", extra={"uid": user_id})
        return user

    def digest_recipients(self) -> List[User]:
        """Users who have a digest email configured."""
        with self.get_session() as s:
            return list(s.exec(
                select(User).where(col(User.digest_email).is_not(None)).order_by(col(User.created_at))
            ).all())


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "digestEmail": user.digest_email,
        "digestFrequency": user.digest_frequency,
        "createdAt": user.created_at.isoformat(),
    }
