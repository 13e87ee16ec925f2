# Overview: Transaction and retry helpers shared by every stock-mutating workflow.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import SequenceCollisionError


RETRYABLE_ERRORS = (OperationalError, StaleDataError, SequenceCollisionError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock there instead.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Open the workflow's write transaction before the first read.

    On SQLite the read-then-write of current_stock is only safe if the write
    lock is held from the start, so BEGIN IMMEDIATE is issued unless the
    connection is already inside a transaction. Other backends rely on
    lock_for_update() row locks plus Product.version_id.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a whole unit of work, retrying on concurrency-related failures.

    Retries on OperationalError (locks, busy database), StaleDataError
    (optimistic locking conflicts) and SequenceCollisionError (document
    number taken). Every failure rolls the session back before the exception
    leaves this function.
    """
    if attempts is None:
        attempts = current_app.config.get("SEQUENCE_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying unit of work after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
