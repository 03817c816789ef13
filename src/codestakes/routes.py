"""Authentication routes: local accounts, GitHub OAuth, session inspection."""

import hmac
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from prometheus_client import Counter
from pydantic import BaseModel, ConfigDict
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .auth import create_access_token, get_current_user, get_db, get_optional_user
from .config import Settings
from .errors import AuthError, ConfigurationError, PersistenceError
from .github import GitHubProvider, OAuthProviderError
from .models.user import User
from .result import Err
from .services import authenticate_user, reconcile_github_user, register_user
from .sessions import SessionStore, clear_session_cookie, set_session_cookie

logger = logging.getLogger(__name__)

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 10 * 60

LOGIN_COUNTER = Counter(
    "auth_logins_total",
    "Total login attempts by method and outcome",
    ["method", "outcome"],
)


class RegisterRequest(BaseModel):
    """Request body for registering a new user."""

    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    """Request body for user login; either username or email identifies the user."""

    username: Optional[str] = None
    email: Optional[str] = None
    password: str

    @property
    def credential(self) -> str:
        return self.username or self.email or ""


class UserResponse(BaseModel):
    """Public profile of a user."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    github_id: Optional[str] = None


class AuthResponse(BaseModel):
    """Profile plus a bearer token for clients that cannot use cookies."""

    user: UserResponse
    access_token: str
    token_type: str = "bearer"


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def _github(request: Request) -> GitHubProvider:
    return request.app.state.github_provider


def _start_session(request: Request, response: Response, user: User) -> AuthResponse:
    cfg = _settings(request)
    previous = request.cookies.get(cfg.session_cookie_name)
    store = _session_store(request)
    if previous:
        store.destroy(previous)
    session_id = store.save(user.id)
    set_session_cookie(response, session_id, cfg)
    return AuthResponse(
        user=UserResponse.model_validate(user),
        access_token=create_access_token(user, cfg),
    )


def register(
    request: Request,
    response: Response,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
):
    """Create a local account and sign it in."""
    user = register_user(db, payload.username, payload.email, payload.password)
    return _start_session(request, response, user)


def login(
    request: Request,
    response: Response,
    payload: LoginRequest,
    db: Session = Depends(get_db),
):
    try:
        user = authenticate_user(db, payload.credential, payload.password)
    except AuthError:
        LOGIN_COUNTER.labels(method="local", outcome="failure").inc()
        raise
    LOGIN_COUNTER.labels(method="local", outcome="success").inc()
    logger.info("user logged in id=%s", user.id)
    return _start_session(request, response, user)


def logout(request: Request, response: Response):
    """Destroy the server-side session and clear its cookie."""
    cfg = _settings(request)
    session_id = request.cookies.get(cfg.session_cookie_name)
    if session_id:
        _session_store(request).destroy(session_id)
    clear_session_cookie(response, cfg)
    return {"message": "Logged out successfully"}


def me(user: User = Depends(get_current_user)):
    return user


def _login_redirect(cfg: Settings, error: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{cfg.client_url.rstrip('/')}/login?error={error}",
        status_code=status.HTTP_302_FOUND,
    )


async def github_login(request: Request):
    """Redirect to the GitHub authorization page."""
    provider = _github(request)
    if not provider.is_configured:
        logger.warning("github login requested but oauth is not configured")
        raise ConfigurationError(
            "GitHub authentication is not configured on the server",
            extra={
                "error": "Missing GitHub OAuth credentials",
                "details": provider.config.missing(),
            },
        )

    state = secrets.token_urlsafe(32)
    response = RedirectResponse(url=provider.authorize_url(state))
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=state,
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        secure=_settings(request).is_production,
        samesite="lax",
        path="/api/auth",
    )
    return response


async def github_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Finish the OAuth handshake, reconcile the user and start a session."""
    cfg = _settings(request)
    provider = _github(request)
    if not provider.is_configured:
        return _login_redirect(cfg, "github_not_configured")

    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if error or not code:
        logger.warning("github callback without code error=%s", error)
        return _github_failure(cfg)
    if not state or not expected_state or not hmac.compare_digest(state, expected_state):
        logger.warning("github callback state mismatch")
        return _github_failure(cfg)

    try:
        profile = await provider.fetch_profile(code)
    except OAuthProviderError as exc:
        logger.warning("github profile fetch failed: %s", exc)
        return _github_failure(cfg)

    result = await reconcile_github_user(request.app.state.session_factory, profile)
    if isinstance(result, Err):
        logger.error("github reconciliation failed: %s", result.reason)
        return _github_failure(cfg)
    user = result.value

    store = _session_store(request)
    try:
        previous = request.cookies.get(cfg.session_cookie_name)
        if previous:
            await run_in_threadpool(store.destroy, previous)
        session_id = await run_in_threadpool(store.save, user.id)
    except PersistenceError:
        return _github_failure(cfg)

    LOGIN_COUNTER.labels(method="github", outcome="success").inc()
    logger.info("github login success id=%s username=%s", user.id, user.username)
    response = RedirectResponse(
        url=f"{cfg.client_url.rstrip('/')}/dashboard", status_code=status.HTTP_302_FOUND
    )
    set_session_cookie(response, session_id, cfg)
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/api/auth")
    return response


def _github_failure(cfg: Settings) -> RedirectResponse:
    LOGIN_COUNTER.labels(method="github", outcome="failure").inc()
    response = _login_redirect(cfg, "github_auth_failed")
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/api/auth")
    return response


def debug(request: Request, user: Optional[User] = Depends(get_optional_user)):
    """Report which cookies and credentials arrived, never their values."""
    cfg = _settings(request)
    if not cfg.debug_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    provider = _github(request)
    info = {
        "cookies": {name: "present" for name in request.cookies},
        "authHeaderPresent": "authorization" in request.headers,
        "isAuthenticated": user is not None,
        "user": "exists" if user is not None else "missing",
        "sessionPresent": getattr(request.state, "session_id", None) is not None,
        "githubConfigured": provider.is_configured,
        "env": {
            "clientIdPresent": bool(provider.config.client_id),
            "clientSecretPresent": bool(provider.config.client_secret),
            "serverUrl": cfg.server_url,
            "clientUrl": cfg.client_url,
        },
    }
    logger.debug("auth debug info: %s", info)
    return info


def build_router(settings: Settings, limiter: Limiter) -> APIRouter:
    """Assemble the auth routes, rate limiting register and login per app."""
    router = APIRouter(prefix="/api/auth", tags=["auth"])
    sensitive = limiter.limit(settings.auth_rate_limit)

    router.add_api_route(
        "/register",
        sensitive(register),
        methods=["POST"],
        response_model=AuthResponse,
        status_code=status.HTTP_201_CREATED,
    )
    router.add_api_route(
        "/login", sensitive(login), methods=["POST"], response_model=AuthResponse
    )
    router.add_api_route("/logout", logout, methods=["POST"])
    router.add_api_route("/me", me, methods=["GET"], response_model=UserResponse)
    router.add_api_route("/github", github_login, methods=["GET"])
    router.add_api_route("/github/callback", github_callback, methods=["GET"])
    router.add_api_route("/debug", debug, methods=["GET"])
    return router


def build_limiter(settings: Settings) -> Limiter:
    return Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
