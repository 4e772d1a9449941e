# Overview: Transaction boundary and row-locking helpers shared by the service layer.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceError
from ..extensions import db

# Lock waits and deadlocks; worth retrying the whole unit of work
TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def transaction():
    """
    Run a block as one unit of work.

    Commits when the block exits cleanly and rolls back on any exception.
    Transient lock errors propagate as-is so run_with_retry can replay the
    block; any other storage failure becomes PersistenceError. Service
    errors pass through unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except TRANSIENT_ERRORS:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Database operation failed", {"reason": exc.__class__.__name__}) from exc
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work, replaying it on transient lock failures.

    func must open its own transaction() so each attempt starts clean.
    After the last attempt the failure is reported as PersistenceError.
    """
    for attempt in range(attempts):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceError("Database is busy, please retry", {"attempts": attempts}) from exc
            time.sleep(backoff_base * (2 ** attempt))
