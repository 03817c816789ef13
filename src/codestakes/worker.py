"""Celery application with a periodic task to purge expired sessions."""

from celery import Celery

from .config import settings


celery_app = Celery(
    "codestakes",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["codestakes.tasks"],
)

celery_app.conf.beat_schedule = {
    "purge-expired-sessions": {
        "task": "codestakes.tasks.purge_expired_sessions",
        "schedule": settings.session_purge_frequency,
    }
}
celery_app.conf.timezone = "UTC"
