"""FastAPI application wiring middleware, error handlers and auth routes."""

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, make_asgi_app
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings as default_settings
from .database import create_db_engine, create_session_factory, init_db
from .errors import AppError
from .github import GitHubOAuthConfig, GitHubProvider
from .routes import build_limiter, build_router
from .sessions import SessionStore, SqlSessionStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; a database outage does not stop the server."""
    cfg: Settings = app.state.settings
    provider: GitHubProvider = app.state.github_provider
    logger.info(
        "environment check node_env=%s github=%s server_url=%s client_url=%s",
        cfg.node_env,
        provider.config.missing(),
        cfg.server_url,
        cfg.client_url,
    )
    if provider.is_configured:
        logger.info("github oauth configured, callback=%s", provider.config.callback_url)
    else:
        logger.warning("github oauth is not configured, github login will not work")

    try:
        init_db(app.state.engine)
        logger.info("connected to database")
    except SQLAlchemyError:
        logger.exception("database connection error, starting without database")
    yield
    logger.info("server shutting down")


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content={"message": exc.message, **exc.extra}
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request body", "errors": details},
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"message": "Route not found", "path": request.url.path},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("global error handler caught: %s", exc)
    content = {"message": str(exc) or "Internal Server Error"}
    if not request.app.state.settings.is_production:
        content["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return JSONResponse(status_code=500, content=content)


def create_app(
    settings: Optional[Settings] = None,
    github_provider: Optional[GitHubProvider] = None,
    engine: Optional[Engine] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration; defaults to the environment-derived settings.
        github_provider: OAuth provider; built from ``settings`` when omitted.
        engine: Database engine; built from ``settings.database_url`` when omitted.
        session_store: Session storage; a table-backed store when omitted.

    Returns:
        Configured FastAPI application
    """
    settings = settings or default_settings
    engine = engine or create_db_engine(settings.database_url)
    session_factory = create_session_factory(engine)

    app = FastAPI(title=settings.api_title, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.github_provider = github_provider or GitHubProvider(
        GitHubOAuthConfig.from_settings(settings)
    )
    app.state.session_store = session_store or SqlSessionStore(
        session_factory, timedelta(hours=settings.session_ttl_hours)
    )

    limiter = build_limiter(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log incoming requests and their outcomes while updating metrics."""
        logger.info("request %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status=str(response.status_code),
            ).inc()
            logger.info(
                "response %s %s status %s",
                request.method,
                request.url.path,
                response.status_code,
            )
            return response
        except Exception:
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status="500",
            ).inc()
            logger.exception(
                "error handling %s %s", request.method, request.url.path
            )
            raise

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Cookie"],
    )

    app.include_router(build_router(settings, limiter))

    @app.get("/api/health")
    def health():
        return {"status": "ok", "message": "Server is running"}

    app.mount("/metrics", make_asgi_app())
    return app


app = create_app()


def main() -> None:
    configure_logging(default_settings.log_level)
    uvicorn.run(app, host=default_settings.host, port=default_settings.port)


if __name__ == "__main__":
    main()
