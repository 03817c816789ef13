"""Celery tasks for session housekeeping."""

import logging
from datetime import timedelta

from prometheus_client import Counter

from .config import settings
from .database import SessionLocal
from .sessions import SqlSessionStore
from .worker import celery_app


logger = logging.getLogger(__name__)

SESSIONS_PURGED_COUNTER = Counter(
    "auth_sessions_purged_total", "Total expired sessions removed"
)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def purge_expired_sessions(self) -> int:
    """Delete sessions past their expiry and return how many were removed."""
    store = SqlSessionStore(SessionLocal, timedelta(hours=settings.session_ttl_hours))
    try:
        removed = store.purge_expired()
    except Exception as exc:  # pragma: no cover - executed on failure
        logger.exception("failed to purge expired sessions")
        raise self.retry(exc=exc)
    SESSIONS_PURGED_COUNTER.inc(removed)
    logger.info("purged %d expired sessions", removed)
    return removed
