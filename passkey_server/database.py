"""SQLAlchemy helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import RPSettings
from .errors import StoreConflictError, StoreUnavailableError


class Base(DeclarativeBase):
    pass


class Database:
    def __init__(self, settings: RPSettings):
        self.engine = create_engine(settings.database_url, future=True)
        self.SessionLocal = sessionmaker(self.engine, expire_on_commit=False, future=True)

    def create_all(self) -> None:
        # Register the mapped tables before creating them.
        from . import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise StoreConflictError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailableError(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
