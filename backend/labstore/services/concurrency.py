# Overview: Transaction helpers shared by every service that writes stock, balances or the cash box.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageUnavailable
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front there instead.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Start the unit of work holding the write lock on SQLite.

    Without BEGIN IMMEDIATE two SQLite connections can both read the same
    stock/balance before either writes.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged. Exhausted retries surface as
    StorageUnavailable; nothing from the failed attempts is applied.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            logger.warning("Storage conflict (attempt %d/%d): %s", attempt + 1, attempts, exc)
            if attempt >= attempts - 1:
                raise StorageUnavailable() from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise StorageUnavailable()


def atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func inside one write transaction and commit it.

    func must not commit itself. Its return value is returned after commit.
    """
    def _op():
        begin_write()
        result = func()
        db.session.commit()
        return result

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
