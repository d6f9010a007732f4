# Overview: Locking and retry helpers shared by every mutating service.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Lock timeouts/deadlocks, and version_id_col mismatches on invoices and counters
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE on engines that support it (SQLite serializes writers instead)."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call func() until it succeeds or `attempts` runs out.

    Only RETRYABLE_ERRORS trigger a retry. The session is rolled back first,
    so func() reloads its rows; the delay doubles after every failure.
    Business errors (validation, conflicts) propagate on the first raise.
    """
    name = getattr(func, "__qualname__", "operation")
    attempt = 1
    while True:
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                logger.error("Giving up on %s after %d attempts: %s", name, attempts, exc)
                raise
            delay = backoff_base * 2 ** (attempt - 1)
            logger.warning(
                "Retrying %s after %s (attempt %d/%d, sleeping %.2fs)",
                name, type(exc).__name__, attempt, attempts, delay,
            )
            time.sleep(delay)
            attempt += 1
