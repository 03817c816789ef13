"""Database setup for users and server-side sessions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

Base = declarative_base()


def create_db_engine(url: str) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    kwargs = {"future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


engine = create_db_engine(settings.database_url)
SessionLocal = create_session_factory(engine)


class AuthSession(Base):
    """Server-side session keyed by the value of the session cookie."""

    __tablename__ = "auth_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create database tables if they do not exist."""
    # register the users table on the metadata
    from .models import user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
