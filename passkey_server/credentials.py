"""Passkey credential storage backed by SQLAlchemy."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy import select, update

from .database import Database
from .errors import StoreConflictError
from .models import Credential as CredentialRow
from .users import ensure_user

LOGGER = logging.getLogger(__name__)

PLATFORM = "platform"
CROSS_PLATFORM = "cross-platform"


class CredentialStoreError(RuntimeError):
    pass


class CredentialNotFoundError(CredentialStoreError):
    pass


class CredentialAlreadyRegisteredError(CredentialStoreError):
    pass


class CounterRegressionError(CredentialStoreError):
    """A counter update would not move the stored signature counter forward."""

    def __init__(self, credential_id: str, stored: int, attempted: int) -> None:
        super().__init__(
            f"Counter for {credential_id} cannot move from {stored} to {attempted}"
        )
        self.credential_id = credential_id
        self.stored = stored
        self.attempted = attempted


@dataclass
class StoredCredential:
    credential_id: str
    public_key: str
    sign_count: int = 0
    device_type: str = PLATFORM
    device_label: str = "Unknown"
    transports: List[str] = field(default_factory=list)
    backed_up: bool = False
    owner_user_id: Optional[str] = None
    record_id: Optional[int] = None
    created_at: Optional[float] = None
    last_used_at: Optional[float] = None

    @classmethod
    def from_row(cls, row: CredentialRow) -> "StoredCredential":
        return cls(
            credential_id=row.credential_id,
            public_key=row.public_key,
            sign_count=row.sign_count,
            device_type=row.device_type,
            device_label=row.device_label,
            transports=list(row.transports or []),
            backed_up=row.backed_up,
            owner_user_id=row.user_id,
            record_id=row.id,
            created_at=row.created_at,
            last_used_at=row.last_used_at,
        )


class CredentialStore:
    def __init__(self, db: Database, clock: Callable[[], float] = time.time) -> None:
        self.db = db
        self.clock = clock

    def save(
        self, user_id: str, credential: StoredCredential, display_name: Optional[str] = None
    ) -> int:
        """Insert a credential. With ``display_name`` the owner is created in the same transaction."""
        now = self.clock()
        row = CredentialRow(
            credential_id=credential.credential_id,
            user_id=user_id,
            public_key=credential.public_key,
            sign_count=credential.sign_count,
            device_type=credential.device_type,
            device_label=credential.device_label,
            transports=list(credential.transports),
            backed_up=credential.backed_up,
            created_at=now,
        )
        try:
            with self.db.session() as session:
                if display_name is not None:
                    ensure_user(session, user_id, display_name, now)
                    session.flush()
                session.add(row)
                session.flush()
                record_id = row.id
        except StoreConflictError as exc:
            raise CredentialAlreadyRegisteredError(
                f"Credential {credential.credential_id} is already registered"
            ) from exc
        return record_id

    def list_by_user(self, user_id: str) -> List[StoredCredential]:
        with self.db.session() as session:
            rows = session.scalars(
                select(CredentialRow)
                .where(CredentialRow.user_id == user_id)
                .order_by(CredentialRow.id)
            )
            return [StoredCredential.from_row(row) for row in rows]

    def find_by_credential_id(self, user_id: str, credential_id: str) -> Optional[StoredCredential]:
        with self.db.session() as session:
            row = session.scalar(
                select(CredentialRow).where(
                    CredentialRow.user_id == user_id,
                    CredentialRow.credential_id == credential_id,
                )
            )
            return StoredCredential.from_row(row) if row else None

    def find_owner_by_credential_id(self, credential_id: str) -> Optional[str]:
        with self.db.session() as session:
            return session.scalar(
                select(CredentialRow.user_id).where(CredentialRow.credential_id == credential_id)
            )

    def update_counter(self, user_id: str, record_id: int, new_counter: int) -> None:
        """Move the stored counter forward, refusing any regression.

        Counter-less authenticators report 0 forever; a 0 -> 0 update is accepted as a no-op.
        """
        if new_counter == 0:
            advances = CredentialRow.sign_count == 0
        else:
            advances = CredentialRow.sign_count < new_counter
        with self.db.session() as session:
            result = session.execute(
                update(CredentialRow)
                .where(
                    CredentialRow.id == record_id,
                    CredentialRow.user_id == user_id,
                    advances,
                )
                .values(sign_count=new_counter, last_used_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return
            row = session.scalar(
                select(CredentialRow).where(
                    CredentialRow.id == record_id, CredentialRow.user_id == user_id
                )
            )
        if row is None:
            raise CredentialNotFoundError(f"Credential record {record_id} not found")
        LOGGER.warning(
            "Rejected counter regression for %s: stored=%s attempted=%s",
            row.credential_id,
            row.sign_count,
            new_counter,
        )
        raise CounterRegressionError(row.credential_id, row.sign_count, new_counter)
