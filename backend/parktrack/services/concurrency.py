# Overview: Locking and retry helpers shared by the transactional services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Storage-level failures that mean "another writer got there first".
# Business errors (CONFLICT, NOT_FOUND, ...) are never in this list.
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the partial unique indexes carry the invariants instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a single-shot transaction, retrying on concurrency failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (version_id mismatch). The session is rolled back before
    every retry so func always starts from a clean transaction.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
