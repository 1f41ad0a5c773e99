"""Versioned reads and writes shared by every aggregate.

Two optimistic-concurrency styles live here:

* ORM-managed: models that declare ``version_id_col`` get ``WHERE version = :v``
  appended to every flush. ``commit_versioned`` turns the resulting
  ``StaleDataError`` into ``ConcurrentModification``.
* Explicit: ``compare_and_set`` issues a single conditional UPDATE for callers
  that need to key the swap on something other than the version alone
  (e.g. "only if no agent is assigned yet").

``storage_retry`` wraps write operations so that transient connection failures
are retried with backoff and surface as ``StorageUnavailable`` once exhausted.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from localmart.config import settings
from localmart.errors import ConcurrentModification, NotFound, StorageUnavailable
from localmart.observability import log_event, metrics_store

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


def load(db: Session, model: type[T], ident: Any, *, label: str | None = None) -> T:
    row = db.get(model, ident, populate_existing=True)
    if row is None:
        raise NotFound(f"{label or model.__name__} not found")
    return row


def load_by(db: Session, model: type[T], *criteria: Any) -> T | None:
    return db.scalar(select(model).where(*criteria))


def compare_and_set(
    db: Session,
    model: type,
    ident: Any,
    *,
    expected: Mapping[str, Any],
    values: Mapping[str, Any],
) -> bool:
    """Apply ``values`` only if every column in ``expected`` still matches.

    ``None`` in ``expected`` means ``IS NULL``. The row's ``version`` is bumped
    as part of the same statement. Nothing is committed.
    """
    criteria = [model.id == ident]
    for column_name, expected_value in expected.items():
        column = getattr(model, column_name)
        criteria.append(column.is_(None) if expected_value is None else column == expected_value)

    stmt = (
        update(model)
        .where(*criteria)
        .values(**values, version=model.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    matched = int(result.rowcount or 0) == 1
    if not matched:
        metrics_store.increment("ledger_cas_miss_total")
    return matched


def commit_versioned(db: Session, *, label: str) -> None:
    try:
        db.commit()
    except StaleDataError as err:
        db.rollback()
        metrics_store.increment("ledger_stale_write_total")
        raise ConcurrentModification(label) from err


def insert_or_get(db: Session, instance: T, *criteria: Any) -> T:
    """Insert ``instance``; if a unique constraint says it already exists, return the winner."""
    db.add(instance)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = load_by(db, type(instance), *criteria)
        if existing is None:
            raise
        metrics_store.increment("ledger_insert_race_total")
        return existing
    db.refresh(instance)
    return instance


def retry_on_conflict(
    db: Session,
    operation: Callable[[], T],
    *,
    label: str,
    attempts: int | None = None,
) -> T:
    """Re-run ``operation`` after a lost optimistic race, re-reading state each time."""
    max_attempts = attempts or settings.cas_max_attempts
    for attempt in range(max_attempts):
        try:
            return operation()
        except ConcurrentModification:
            db.rollback()
            metrics_store.increment("ledger_conflict_retry_total")
            if attempt + 1 >= max_attempts:
                raise
    raise ConcurrentModification(label)


def _is_transient(err: DBAPIError) -> bool:
    return isinstance(err, OperationalError) or err.connection_invalidated


def storage_retry(func: F) -> F:
    """Retry a write operation on transient storage failures.

    The wrapped callable must take the ``Session`` as its first argument. The
    session is rolled back before each new attempt so no partial state leaks.
    """

    @functools.wraps(func)
    def wrapper(db: Session, *args: Any, **kwargs: Any) -> Any:
        attempts = max(1, settings.storage_retry_max_attempts)
        for attempt in range(attempts):
            try:
                return func(db, *args, **kwargs)
            except DBAPIError as err:
                if not _is_transient(err):
                    raise
                db.rollback()
                metrics_store.increment("storage_retry_total")
                log_event(f"storage_transient_failure:{func.__name__}:{type(err.orig).__name__}")
                if attempt + 1 >= attempts:
                    raise StorageUnavailable() from err
                time.sleep(settings.storage_retry_backoff_s * (2**attempt))
        raise StorageUnavailable()

    return wrapper  # type: ignore[return-value]
