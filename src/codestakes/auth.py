import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Generator, Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import Settings
from .errors import Unauthorized
from .models.user import User

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 260_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS
    ).hex()
    return f"{PBKDF2_ALGORITHM}${PBKDF2_ITERATIONS}${salt}${digest}"


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        algorithm, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    if algorithm != PBKDF2_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), int(iterations)
    ).hex()
    return hmac.compare_digest(digest, expected)


def create_access_token(user: User, settings: Settings) -> str:
    expires = timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": str(user.id), "exp": datetime.utcnow() + expires, "type": "access"}
    return jwt.encode(payload, settings.session_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Optional[int]:
    """Return the user id carried by a valid token, otherwise None."""
    try:
        payload = jwt.decode(
            token, settings.session_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.PyJWTError:
        return None
    subject = payload.get("sub")
    if subject is None or payload.get("type") != "access":
        return None
    try:
        return int(subject)
    except ValueError:
        return None


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """Resolve the request's user from a bearer token or the session cookie.

    An identity that no longer maps to a stored user is treated as
    unauthenticated rather than as an error.
    """
    settings: Settings = request.app.state.settings
    user_id = None

    token = _bearer_token(request)
    if token:
        user_id = decode_access_token(token, settings)

    if user_id is None:
        session_id = request.cookies.get(settings.session_cookie_name)
        if session_id:
            user_id = request.app.state.session_store.load(session_id)
            if user_id is not None:
                request.state.session_id = session_id

    if user_id is None:
        return None
    return db.get(User, user_id)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise Unauthorized("Not authenticated")
    return user
