"""User profile collaborator: the core only needs the user id to exist."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .database import Database
from .models import User


@dataclass(frozen=True)
class UserProfile:
    id: str
    display_name: str
    created_at: float
    last_login: Optional[float]


def _to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        display_name=user.display_name,
        created_at=user.created_at,
        last_login=user.last_login,
    )


def ensure_user(session: Session, user_id: str, display_name: str, now: float) -> User:
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, display_name=display_name, created_at=now, last_login=now)
        session.add(user)
    return user


class UserDirectory:
    def __init__(self, db: Database, clock: Callable[[], float] = time.time) -> None:
        self.db = db
        self.clock = clock

    def create_user(self, user_id: str, display_name: str) -> UserProfile:
        with self.db.session() as session:
            user = ensure_user(session, user_id, display_name, self.clock())
            session.flush()
            return _to_profile(user)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        with self.db.session() as session:
            user = session.get(User, user_id)
            return _to_profile(user) if user else None

    def update_last_login(self, user_id: str) -> None:
        with self.db.session() as session:
            user = session.get(User, user_id)
            if user is not None:
                user.last_login = self.clock()
