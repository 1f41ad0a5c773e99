"""At-most-one-true boolean columns, such as a customer's default address.

Clearing the other records and setting the chosen one happen in a single
database transaction. A partial unique index on the flag column rejects any
interleaving that would still end with two flagged rows, in which case the
write is retried from a fresh read.
"""

import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from localmart.config import settings
from localmart.errors import ConcurrentModification, NotFound
from localmart.models.address import Address
from localmart.observability import metrics_store
from localmart.services.ledger_store import storage_retry


@dataclass(frozen=True)
class ExclusiveFlag:
    model: type
    partition_column: str
    flag_column: str
    label: str

    def partition(self) -> Any:
        return getattr(self.model, self.partition_column)

    def flag(self) -> Any:
        return getattr(self.model, self.flag_column)


DEFAULT_ADDRESS = ExclusiveFlag(
    model=Address,
    partition_column="customer_id",
    flag_column="is_default",
    label="Address",
)


def apply_exclusive_flag(
    db: Session, flag: ExclusiveFlag, partition_key: Any, record_id: uuid.UUID
) -> None:
    """Stage both writes in the current transaction without committing."""
    model = flag.model
    owned = db.scalar(
        select(model.id).where(model.id == record_id, flag.partition() == partition_key)
    )
    if owned is None:
        raise NotFound(f"{flag.label} not found")

    db.execute(
        update(model)
        .where(flag.partition() == partition_key, model.id != record_id, flag.flag().is_(True))
        .values({flag.flag_column: False})
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(model)
        .where(model.id == record_id)
        .values({flag.flag_column: True})
        .execution_options(synchronize_session=False)
    )


@storage_retry
def set_exclusive_flag(
    db: Session, flag: ExclusiveFlag, partition_key: Any, record_id: uuid.UUID
) -> None:
    attempts = max(1, settings.cas_max_attempts)
    for _ in range(attempts):
        try:
            apply_exclusive_flag(db, flag, partition_key, record_id)
            db.commit()
        except IntegrityError:
            db.rollback()
            metrics_store.increment("exclusive_flag_conflict_total")
            continue
        except NotFound:
            db.rollback()
            raise
        db.expire_all()
        return
    raise ConcurrentModification(flag.label)
