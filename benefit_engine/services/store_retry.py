"""
Storage-boundary retry for transient database failures.

Wraps a store operation in a tenacity exponential-backoff loop.  Only
connection-level failures are retried; integrity and programming errors
propagate immediately.  The session is rolled back before each new
attempt.  When the budget is exhausted the failure surfaces as
``TransientStoreError`` for that single unit of work.

Usage:
    @with_store_retry("create_application")
    def create_application(...):
        ...
"""

from __future__ import annotations

import functools
import logging

from flask import current_app, has_app_context
from sqlalchemy.exc import DisconnectionError, OperationalError
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from benefit_engine.core.exceptions import TransientStoreError
from benefit_engine.models import db

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS = (OperationalError, DisconnectionError)


def _retry_settings() -> tuple[int, float, float]:
    if not has_app_context():
        return 3, 0.5, 8.0
    cfg = current_app.config
    return (
        max(1, int(cfg.get("STORE_RETRY_ATTEMPTS", 3))),
        float(cfg.get("STORE_RETRY_BASE_DELAY", 0.5)),
        float(cfg.get("STORE_RETRY_MAX_DELAY", 8.0)),
    )


def _before_sleep(operation: str):
    def callback(retry_state):
        exc = retry_state.outcome.exception()
        db.session.rollback()
        logger.warning(
            "Transient store failure in %s (attempt %d): %s",
            operation, retry_state.attempt_number, exc,
            extra={"event_type": "store_retry"},
        )
    return callback


def with_store_retry(operation: str):
    """Decorator: retry *fn* on transient store errors with exponential backoff."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            attempts, base_delay, max_delay = _retry_settings()
            retrying = Retrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=base_delay, max=max_delay),
                retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
                before_sleep=_before_sleep(operation),
            )
            try:
                return retrying(fn, *args, **kwargs)
            except RetryError as exc:
                cause = exc.last_attempt.exception()
                db.session.rollback()
                logger.error(
                    "Store unavailable for %s after %d attempts: %s",
                    operation, attempts, cause,
                    extra={"event_type": "store_retry_exhausted"},
                )
                raise TransientStoreError(operation, attempts, cause) from cause
        return wrapper
    return decorator
