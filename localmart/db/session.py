from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from localmart.config import settings


def engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        return options

    # pysqlite waits up to ``timeout`` seconds for a competing writer's lock
    options["connect_args"] = {
        "check_same_thread": False,
        "timeout": settings.sqlite_busy_timeout_s,
    }
    if ":memory:" in database_url:
        options["poolclass"] = StaticPool
    return options


def build_engine(database_url: str) -> Engine:
    return create_engine(database_url, **engine_options(database_url))


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autoflush=False)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db
