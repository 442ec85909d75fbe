# Overview: Locked reads and bounded replay for the stock-moving primitives
# (inventory edits, issue, return).

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Failures that mean "another writer got there first"; the whole operation is re-run
CONFLICT_ERRORS = (OperationalError, StaleDataError)


def locked(query):
    """
    Read rows for a stock move with SELECT ... FOR UPDATE.

    SQLite drops the FOR UPDATE clause. There the version_id columns on
    InventoryItem, BorrowRequest and BorrowRequestItem detect the race at
    flush time instead, and run_atomic replays the operation.
    """
    return query.with_for_update()


def run_atomic(operation, label: str):
    """
    Run one read-check-write stock operation, replaying it on write conflicts.

    operation must start from a clean session and re-read every row it checks,
    so a replay sees the other writer's result. ServiceErrors raised by the
    operation are never retried. Attempts and backoff come from
    ATOMIC_RETRY_ATTEMPTS / ATOMIC_RETRY_BACKOFF_SECONDS.
    """
    attempts = max(int(current_app.config.get("ATOMIC_RETRY_ATTEMPTS", 3)), 1)
    backoff = float(current_app.config.get("ATOMIC_RETRY_BACKOFF_SECONDS", 0.1))

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except CONFLICT_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error(
                    "%s failed after %d attempts: %s", label, attempts, exc.__class__.__name__
                )
                raise
            current_app.logger.warning(
                "%s hit a write conflict (attempt %d/%d), retrying", label, attempt, attempts
            )
            time.sleep(backoff * (2 ** (attempt - 1)))
