# Overview: Transaction primitive for stock writes; row locking plus bounded retry.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictAborted, NotFound
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front instead.

    populate_existing() overwrites any instance already in the identity map,
    so values read before the lock never leak into the write.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    Start the transaction with the write lock already held on SQLite.

    Without this, two SQLite writers can both read the same stock level
    before either upgrades to a write lock. Other dialects rely on
    lock_for_update() and are left untouched.
    """
    if db.engine.dialect.name != "sqlite":
        return
    conn = db.session.connection()
    raw = conn.connection.dbapi_connection
    if not raw.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, StaleDataError)):
        return True
    return isinstance(exc, NotFound) and exc.retryable


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None,
                   entity_ids: list | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and NotFound raised as retryable (row
    vanished between validation and commit). Every failure rolls the session
    back before propagating, so an aborted call leaves nothing behind.

    When the budget runs out, lock/version conflicts surface as
    ConflictAborted; a retryable NotFound surfaces as itself.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF_SECONDS", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            db.session.rollback()
            if not _is_retryable(exc):
                raise
            if attempt >= attempts - 1:
                if isinstance(exc, NotFound):
                    raise
                logger.warning("Transaction aborted after %d attempts: %s", attempts, exc)
                raise ConflictAborted(entity_ids=entity_ids, attempts=attempts) from exc
            logger.warning("Transaction conflict (attempt %d/%d), retrying: %s", attempt + 1, attempts, exc)
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))
