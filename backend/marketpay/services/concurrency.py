# Overview: Service-layer concurrency primitives; retries, write locks, and conditional status writes.

from __future__ import annotations

import time
from typing import Iterable

from flask import current_app
from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock before the first read of a read-modify-write.

    SQLite only: BEGIN IMMEDIATE makes concurrent writers queue on the busy
    timeout instead of failing on lock upgrade. Other backends rely on row
    locks and the conditional writes below.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def compare_and_set_status(model, row_id: int, expected: str | Iterable[str], values: dict) -> bool:
    """
    UPDATE model SET ... WHERE id = row_id AND status IN expected.

    Returns True when exactly one row changed. False means another writer
    moved the row first; callers must treat that as authoritative.
    """
    expected_statuses = (expected,) if isinstance(expected, str) else tuple(expected)
    stmt = (
        update(model)
        .where(model.id == row_id, model.status.in_(expected_statuses))
        .values(version_id=model.version_id + 1, **values)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls back the
    session and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after concurrency failure (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
