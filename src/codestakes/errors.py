"""Error taxonomy surfaced to clients as JSON responses."""

from fastapi import status


class AppError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None, extra: dict | None = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Malformed or duplicate registration input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(AppError):
    """Credentials did not match a user."""

    status_code = status.HTTP_401_UNAUTHORIZED


class Unauthorized(AppError):
    """Missing or invalid session on a protected route."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ConfigurationError(AppError):
    """A feature was requested that the server was started without."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class PersistenceError(AppError):
    """The user store is unavailable or rejected a write."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
