# Overview: Transaction helpers shared by every state-changing service operation.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """SELECT ... FOR UPDATE. A no-op on SQLite, see begin_write_transaction()."""
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    On SQLite, open the unit of work with BEGIN IMMEDIATE so concurrent
    writers serialize on the database lock before reading stock or status.
    Other dialects rely on lock_for_update.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if not current_app.config.get("SQLITE_IMMEDIATE_TRANSACTIONS", True):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func() as one unit of work.

    Lock errors (OperationalError) and version_id conflicts (StaleDataError)
    are rolled back and retried with exponential backoff, up to attempts
    times. Any other exception is rolled back and re-raised.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt == attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
