# Overview: Row locking and transaction retry helpers shared by the write services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


class SaleNumberConflict(Exception):
    """Raised when a generated sale number loses the UNIQUE race to another sale."""


# Failures worth re-running the whole unit of work for
RETRYABLE_ERRORS = (OperationalError, StaleDataError, SaleNumberConflict)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id column on locked rows still catches lost updates there.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and sale-number collisions. Every failed
    attempt is rolled back in full before the next one starts; any other
    exception is rolled back and re-raised immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise


def commit_with_retry(session, *, attempts: int = 3, backoff_base: float = 0.1):
    """Commit the given session with retry handling."""
    return run_with_retry(session, session.commit, attempts=attempts, backoff_base=backoff_base)
