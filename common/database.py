"""Engine, session factory and transaction helper shared by all services."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings
from .exceptions import ConflictError, InternalError

logger = logging.getLogger(__name__)
settings = get_settings()

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run a multi-step mutation as one all-or-nothing unit.

    Any exception rolls the session back. Store failures are converted:
    integrity violations become :class:`ConflictError`, other database errors
    :class:`InternalError` with the original error logged. Everything else
    propagates unchanged.
    """

    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Integrity violation rolled back: %s", exc.orig)
        raise ConflictError("The change conflicts with existing records") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database failure, transaction rolled back")
        raise InternalError("Unexpected database error, no changes were saved") from exc
    except Exception:
        db.rollback()
        raise
