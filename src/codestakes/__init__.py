"""CodeStakes authentication backend."""

from .api import app, create_app
from .worker import celery_app

__all__ = ["app", "create_app", "celery_app"]
