"""One-time challenge persistence keyed by ceremony session id."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import delete

from .database import Database
from .models import Challenge as ChallengeRow

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class Challenge:
    session_id: str
    challenge: str
    pending_user_id: Optional[str]
    created_at: float
    expires_at: float


def _to_challenge(row: ChallengeRow) -> Challenge:
    return Challenge(
        session_id=row.session_id,
        challenge=row.challenge,
        pending_user_id=row.pending_user_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


class ChallengeStore:
    def __init__(
        self,
        db: Database,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def store(self, session_id: str, challenge: str, pending_user_id: Optional[str] = None) -> None:
        now = self.clock()
        with self.db.session() as session:
            row = session.get(ChallengeRow, session_id)
            if row is None:
                row = ChallengeRow(session_id=session_id)
                session.add(row)
            row.challenge = challenge
            row.pending_user_id = pending_user_id
            row.created_at = now
            row.expires_at = now + self.ttl_seconds

    def get(self, session_id: str) -> Optional[Challenge]:
        with self.db.session() as session:
            row = session.get(ChallengeRow, session_id)
            if row is None:
                return None
            if self.clock() > row.expires_at:
                session.delete(row)
                return None
            return _to_challenge(row)

    def delete(self, session_id: str) -> None:
        with self.db.session() as session:
            session.execute(delete(ChallengeRow).where(ChallengeRow.session_id == session_id))

    def consume(self, session_id: str) -> Optional[Challenge]:
        """Atomically take a challenge out of the store.

        The row is removed with a conditional delete keyed on the challenge value that was
        read, so when several callers race on one session id only the caller whose delete
        affected the row gets the challenge back. Expired challenges are removed as well but
        reported as absent.
        """
        with self.db.session() as session:
            row = session.get(ChallengeRow, session_id)
            if row is None:
                return None
            found = _to_challenge(row)
            session.expunge(row)
            result = session.execute(
                delete(ChallengeRow).where(
                    ChallengeRow.session_id == session_id,
                    ChallengeRow.challenge == found.challenge,
                )
            )
            if result.rowcount != 1:
                LOGGER.warning("Challenge %s consumed concurrently", session_id)
                return None
        if self.clock() > found.expires_at:
            return None
        return found

    def purge_expired(self) -> int:
        with self.db.session() as session:
            result = session.execute(
                delete(ChallengeRow).where(ChallengeRow.expires_at < self.clock())
            )
            return result.rowcount
