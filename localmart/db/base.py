from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def next_version(current: int | None) -> int:
    """Version generator for optimistic locking; new rows start at 0."""
    return 0 if current is None else current + 1


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
