"""Server-side session storage and the cookie that carries its key."""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Protocol

from fastapi import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .database import AuthSession
from .errors import PersistenceError

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Maps opaque session ids to user ids."""

    def save(self, user_id: int) -> str:
        ...

    def load(self, session_id: str) -> Optional[int]:
        ...

    def destroy(self, session_id: str) -> None:
        ...

    def purge_expired(self) -> int:
        ...


class SqlSessionStore:
    """Session store backed by the ``auth_sessions`` table."""

    def __init__(self, session_factory: sessionmaker, ttl: timedelta):
        self.session_factory = session_factory
        self.ttl = ttl

    def _fail(self, db: Session, exc: Exception) -> None:
        db.rollback()
        logger.exception("session store error", exc_info=exc)
        raise PersistenceError("Session store unavailable") from exc

    def save(self, user_id: int) -> str:
        session_id = secrets.token_urlsafe(32)
        now = datetime.utcnow()
        db = self.session_factory()
        try:
            db.add(
                AuthSession(
                    id=session_id,
                    user_id=user_id,
                    created_at=now,
                    expires_at=now + self.ttl,
                )
            )
            db.commit()
            logger.debug("created session for user=%s", user_id)
            return session_id
        except SQLAlchemyError as exc:
            self._fail(db, exc)
        finally:
            db.close()

    def load(self, session_id: str) -> Optional[int]:
        if not session_id:
            return None
        db = self.session_factory()
        try:
            record = db.get(AuthSession, session_id)
            if record is None:
                return None
            if record.expires_at <= datetime.utcnow():
                db.delete(record)
                db.commit()
                return None
            return record.user_id
        except SQLAlchemyError as exc:
            self._fail(db, exc)
        finally:
            db.close()

    def destroy(self, session_id: str) -> None:
        if not session_id:
            return
        db = self.session_factory()
        try:
            db.query(AuthSession).filter(AuthSession.id == session_id).delete()
            db.commit()
        except SQLAlchemyError as exc:
            self._fail(db, exc)
        finally:
            db.close()

    def purge_expired(self) -> int:
        """Delete expired sessions and return how many were removed."""
        db = self.session_factory()
        try:
            removed = (
                db.query(AuthSession)
                .filter(AuthSession.expires_at <= datetime.utcnow())
                .delete()
            )
            db.commit()
            return removed
        except SQLAlchemyError as exc:
            self._fail(db, exc)
        finally:
            db.close()


def set_session_cookie(response: Response, session_id: str, settings: Settings) -> None:
    production = settings.is_production
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_id,
        max_age=settings.session_ttl_hours * 60 * 60,
        httponly=True,
        secure=production,
        samesite="none" if production else "lax",
        domain=settings.cookie_domain if production else None,
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    production = settings.is_production
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.cookie_domain if production else None,
        secure=production,
        httponly=True,
        samesite="none" if production else "lax",
    )
