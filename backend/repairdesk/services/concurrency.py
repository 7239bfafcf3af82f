# Overview: Locking and retry helpers shared by the service layer.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (version_id conflicts). The operation must be safe to re-run from
    scratch: the session is rolled back before each retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency conflict (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def insert_unless_conflict(instance) -> bool:
    """
    Insert a row guarded by a unique constraint inside a savepoint.

    Returns False when the constraint rejects the row; only the savepoint is
    rolled back, so the caller's pending work survives and the caller
    still owns the commit.
    """
    try:
        with db.session.begin_nested():
            db.session.add(instance)
            db.session.flush()
    except IntegrityError:
        return False
    return True
