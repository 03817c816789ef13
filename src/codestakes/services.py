"""Service layer for local accounts and GitHub account reconciliation."""

import logging
import re
from typing import Optional

from prometheus_client import Counter
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from .auth import hash_password, verify_password
from .errors import AuthError, PersistenceError, ValidationError
from .github import GitHubProfile
from .models.user import User
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,50}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

USERS_CREATED_COUNTER = Counter(
    "users_created_total", "Total users created", ["provider"]
)


def _handle_service_error(session: Session, exc: Exception) -> None:
    """Rollback transaction and raise a persistence error."""
    session.rollback()
    logger.exception("service layer error", exc_info=exc)
    raise PersistenceError("Database error") from exc


def validate_registration(username: str, email: str, password: str) -> None:
    if not username or not USERNAME_RE.match(username):
        raise ValidationError(
            "Username must be 3-50 characters of letters, digits, '.', '_' or '-'"
        )
    if not email or not EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def register_user(db: Session, username: str, email: str, password: str) -> User:
    """Create a local account after validating input and uniqueness."""

    username = (username or "").strip()
    email = (email or "").strip().lower()
    validate_registration(username, email, password)
    logger.info("register user username=%s", username)
    try:
        existing = (
            db.query(User)
            .filter(or_(User.username == username, User.email == email))
            .first()
        )
        if existing:
            raise ValidationError("Username or email already registered")
        user = User(
            username=username,
            email=email,
            display_name=username,
            password_hash=hash_password(password),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    except ValidationError:
        raise
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError("Username or email already registered") from exc
    except SQLAlchemyError as exc:
        _handle_service_error(db, exc)
    USERS_CREATED_COUNTER.labels(provider="local").inc()
    logger.info("registered user id=%s username=%s", user.id, user.username)
    return user


def authenticate_user(db: Session, credential: str, password: str) -> User:
    """Look up a user by username or email and verify the password."""

    credential = (credential or "").strip()
    if not credential or not password:
        raise AuthError("Invalid credentials")
    try:
        user = (
            db.query(User)
            .filter(or_(User.username == credential, User.email == credential.lower()))
            .first()
        )
    except SQLAlchemyError as exc:
        _handle_service_error(db, exc)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("failed login credential=%s", credential)
        raise AuthError("Invalid credentials")
    return user


def get_user(db: Session, user_id: int) -> Optional[User]:
    try:
        return db.get(User, user_id)
    except SQLAlchemyError as exc:
        _handle_service_error(db, exc)


def _available_username(db: Session, profile: GitHubProfile) -> str:
    taken = db.query(User.id).filter(User.username == profile.username).first()
    if taken is None:
        return profile.username
    return f"{profile.username}-{profile.github_id}"


def _available_email(db: Session, email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    email = email.lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        # never link a GitHub identity to an existing account by email
        logger.info("github email already in use, storing profile without it")
        return None
    return email


def find_or_create_github_user(session_factory: sessionmaker, profile: GitHubProfile) -> User:
    """Return the user for ``profile.github_id``, creating it on first login."""

    db: Session = session_factory()
    try:
        user = db.query(User).filter(User.github_id == profile.github_id).first()
        if user:
            logger.info("existing github user found username=%s", user.username)
            return user

        user = User(
            github_id=profile.github_id,
            username=_available_username(db, profile),
            email=_available_email(db, profile.email),
            display_name=profile.display_name or profile.username,
            avatar=profile.avatar,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        USERS_CREATED_COUNTER.labels(provider="github").inc()
        logger.info("new github user created id=%s username=%s", user.id, user.username)
        return user
    except SQLAlchemyError as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


async def reconcile_github_user(
    session_factory: sessionmaker, profile: GitHubProfile
) -> Result[User]:
    """Map a GitHub profile onto a local user.

    Returns ``Ok(user)`` on success and ``Err(reason)`` when the store fails,
    including when a concurrent callback already inserted the same identity.
    """
    logger.info(
        "github callback received id=%s username=%s", profile.github_id, profile.username
    )
    try:
        user = await run_in_threadpool(find_or_create_github_user, session_factory, profile)
    except PersistenceError as exc:
        return Err(str(exc))
    return Ok(user)
