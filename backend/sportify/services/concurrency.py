# Overview: Row locking and guarded counter updates shared by the stock and order services.

from __future__ import annotations

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def execute_guarded_update(stmt) -> bool:
    """
    Run an UPDATE whose WHERE clause carries the business guard
    (e.g. "current_stock - reserved_stock >= :qty").

    Returns True when exactly one row matched. The caller decides which
    error a miss means; nothing is retried here.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def run_in_transaction(func):
    """
    Execute func() and commit; roll back and re-raise on any failure.

    Stock and order writes are not retried: a conflict or a failed guard
    surfaces to the caller, who may resubmit.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except Exception:
        db.session.rollback()
        raise
