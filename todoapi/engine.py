"""
Storage engine selection.

The engine is resolved once from ``DB_TYPE`` when the application starts and
stays fixed for the rest of the process.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

from sqlalchemy.engine import URL

from todoapi.config import Settings
from todoapi.errors import ConfigurationError

logger = logging.getLogger(__name__)

RELATIONAL = "relational"
DOCUMENT = "document"


class StorageEngine(str, enum.Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MONGODB = "mongodb"

    @property
    def family(self) -> str:
        return DOCUMENT if self is StorageEngine.MONGODB else RELATIONAL


_selected: Optional[StorageEngine] = None


def parse_storage_engine(value: str | None) -> StorageEngine:
    """Map a configuration value onto a :class:`StorageEngine`."""
    normalized = (value or "").strip().lower()
    try:
        return StorageEngine(normalized)
    except ValueError:
        choices = ", ".join(e.value for e in StorageEngine)
        raise ConfigurationError(
            f"Unknown storage engine {value!r} (expected one of: {choices})"
        ) from None


def select_storage_engine(value: str | None) -> StorageEngine:
    """
    Resolve and pin the process-wide storage engine.

    Selecting the same engine again is a no-op; selecting a different one
    after the first selection is a configuration error.
    """
    global _selected
    engine = parse_storage_engine(value)
    if _selected is None:
        _selected = engine
        logger.info("Storage engine selected: %s (%s)", engine.value, engine.family)
    elif _selected is not engine:
        raise ConfigurationError(
            f"Storage engine already selected as {_selected.value!r}; "
            f"cannot switch to {engine.value!r}"
        )
    return _selected


def current_storage_engine() -> StorageEngine:
    if _selected is None:
        raise ConfigurationError("Storage engine has not been selected yet")
    return _selected


def _reset_selection() -> None:
    """Forget the selected engine (tests only)."""
    global _selected
    _selected = None


def database_url_for(engine: StorageEngine, settings: Settings) -> str:
    """Return the SQLAlchemy URL for a relational engine."""
    if engine is StorageEngine.MEMORY:
        return "sqlite+pysqlite:///:memory:"
    if engine is StorageEngine.SQLITE:
        return f"sqlite+pysqlite:///{settings.sqlite_path}"
    if engine is StorageEngine.POSTGRESQL:
        if settings.database_url:
            return settings.database_url
        return URL.create(
            "postgresql+psycopg2",
            username=settings.db_user,
            password=settings.db_password,
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
        ).render_as_string(hide_password=False)
    raise ConfigurationError(f"{engine.value!r} is not a relational engine")
