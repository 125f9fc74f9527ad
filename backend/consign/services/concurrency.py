# Overview: Service-layer operations for concurrency; row locks, retries and atomic find-or-create.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConsignError, StorageError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func must be safe to re-run from scratch:
    the session is rolled back before each retry.
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
            logger.warning("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    All-or-nothing wrapper used by every mutating service call.

    - Domain errors roll the session back and propagate unchanged.
    - Lock/version conflicts are retried; once the budget is spent they
      surface as StorageError.
    - Any other database failure rolls back and surfaces as StorageError.
    """
    if attempts is None:
        attempts = int(current_app.config.get("RETRY_ATTEMPTS", 3))
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff_base)
    except ConsignError:
        db.session.rollback()
        raise
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        raise StorageError(f"Storage unavailable after {attempts} attempts") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageError("Storage operation failed") from exc


def find_or_create(lookup, build):
    """
    Atomic find-or-create against a unique constraint.

    lookup() returns the existing row or None; build() returns a new, unsaved
    instance. The insert runs inside a SAVEPOINT, so losing a race to a
    concurrent insert only discards the savepoint and the winner's row is
    re-read.

    Returns (instance, created).
    """
    existing = lookup()
    if existing is not None:
        return existing, False

    try:
        with db.session.begin_nested():
            instance = build()
            db.session.add(instance)
        return instance, True
    except IntegrityError:
        existing = lookup()
        if existing is None:
            raise
        return existing, False
