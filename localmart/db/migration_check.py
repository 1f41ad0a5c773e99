"""Startup checks that keep the running code and the database schema in step."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from localmart.config import is_production_mode, settings
from localmart.db.base import Base

_MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
_ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


class SchemaOutOfDate(RuntimeError):
    def __init__(self, current: Optional[str], head: str) -> None:
        super().__init__(
            f"Database schema not up to date (at {current or 'no revision'}, head is {head}). "
            "Run: alembic upgrade head"
        )
        self.current = current
        self.head = head


def _alembic_config() -> Config:
    # the ini file is absent when the package is installed without the repo checkout
    config = Config(str(_ALEMBIC_INI)) if _ALEMBIC_INI.exists() else Config()
    config.set_main_option("script_location", str(_MIGRATIONS_DIR))
    return config


def get_alembic_head_revision() -> str:
    return ScriptDirectory.from_config(_alembic_config()).get_current_head()


def get_current_db_revision(engine: Engine) -> Optional[str]:
    if not inspect(engine).has_table("alembic_version"):
        return None
    with engine.connect() as connection:
        return connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1")
        ).scalar_one_or_none()


def assert_db_is_up_to_date(engine: Engine) -> None:
    current = get_current_db_revision(engine)
    head = get_alembic_head_revision()
    if current != head:
        raise SchemaOutOfDate(current, head)


def maybe_create_schema(engine: Engine) -> None:
    """Create missing tables directly from the models, for demo and local runs."""
    if not settings.auto_create_schema:
        return
    if is_production_mode():
        raise RuntimeError("AUTO_CREATE_SCHEMA must be disabled in LOCALMART_APP_MODE=production")

    import localmart.models  # noqa: F401 (register every mapped table)

    Base.metadata.create_all(bind=engine)
