"""Pending and authenticated session tokens."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional

from sqlalchemy import delete

from .database import Database
from .models import AuthSession

PendingKind = Literal["register", "login"]
AUTHENTICATED = "authenticated"

PENDING_TTL_SECONDS = 5 * 60
SESSION_TTL_SECONDS = 30 * 24 * 60 * 60


@dataclass(frozen=True)
class PendingSession:
    token: str
    kind: str
    session_id: str
    user_id: Optional[str]
    username: Optional[str]
    expires_at: float


@dataclass(frozen=True)
class AuthenticatedSession:
    token: str
    user_id: str
    username: Optional[str]
    expires_at: float


class SessionIssuer:
    def __init__(
        self,
        db: Database,
        pending_ttl_seconds: int = PENDING_TTL_SECONDS,
        session_ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.pending_ttl_seconds = pending_ttl_seconds
        self.session_ttl_seconds = session_ttl_seconds
        self.clock = clock

    def _issue(self, kind: str, ttl: int, **fields: Optional[str]) -> AuthSession:
        now = self.clock()
        row = AuthSession(
            token=secrets.token_urlsafe(32),
            kind=kind,
            created_at=now,
            expires_at=now + ttl,
            **fields,
        )
        with self.db.session() as session:
            session.add(row)
        return row

    def _load(self, token: Optional[str], kind: str) -> Optional[AuthSession]:
        if not token:
            return None
        with self.db.session() as session:
            row = session.get(AuthSession, token)
            if row is None or row.kind != kind:
                return None
            if self.clock() > row.expires_at:
                session.delete(row)
                return None
            return row

    def issue_pending(
        self,
        kind: PendingKind,
        session_id: str,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> PendingSession:
        row = self._issue(
            kind,
            self.pending_ttl_seconds,
            session_id=session_id,
            user_id=user_id,
            username=username,
        )
        return PendingSession(
            token=row.token,
            kind=kind,
            session_id=session_id,
            user_id=user_id,
            username=username,
            expires_at=row.expires_at,
        )

    def get_pending(self, token: Optional[str], kind: PendingKind) -> Optional[PendingSession]:
        row = self._load(token, kind)
        if row is None or row.session_id is None:
            return None
        return PendingSession(
            token=row.token,
            kind=row.kind,
            session_id=row.session_id,
            user_id=row.user_id,
            username=row.username,
            expires_at=row.expires_at,
        )

    def issue_authenticated(self, user_id: str, username: Optional[str]) -> AuthenticatedSession:
        row = self._issue(
            AUTHENTICATED, self.session_ttl_seconds, user_id=user_id, username=username
        )
        return AuthenticatedSession(
            token=row.token, user_id=user_id, username=username, expires_at=row.expires_at
        )

    def get_authenticated(self, token: Optional[str]) -> Optional[AuthenticatedSession]:
        row = self._load(token, AUTHENTICATED)
        if row is None or row.user_id is None:
            return None
        return AuthenticatedSession(
            token=row.token, user_id=row.user_id, username=row.username, expires_at=row.expires_at
        )

    def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        with self.db.session() as session:
            session.execute(delete(AuthSession).where(AuthSession.token == token))
