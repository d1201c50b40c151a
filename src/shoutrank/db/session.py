"""Engine construction, migrations and transactional sessions for the SQL backend."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite+aiosqlite:///./shoutrank.db"
SQLITE_BUSY_TIMEOUT_MS = 5000

_PROJECT_ROOT = Path(__file__).resolve().parents[3]


def resolve_db_url(explicit: str | None = None) -> str:
    """Return the database URL, preferring ``explicit`` over ``SHOUTRANK_DB_URL``."""

    return explicit or os.getenv("SHOUTRANK_DB_URL") or DEFAULT_DB_URL


def create_engine(db_url: str | None = None, *, echo: bool = False) -> AsyncEngine:
    """Create an :class:`AsyncEngine`; SQLite connections get WAL and a busy timeout."""

    engine = create_async_engine(resolve_db_url(db_url), echo=echo)
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        for pragma in (
            "journal_mode=WAL",
            "synchronous=NORMAL",
            "foreign_keys=ON",
            f"busy_timeout={SQLITE_BUSY_TIMEOUT_MS}",
        ):
            cursor.execute(f"PRAGMA {pragma};")
        cursor.close()

    return engine


def get_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def _locate_alembic_ini() -> Path:
    explicit = os.getenv("SHOUTRANK_ALEMBIC_INI")
    candidates = [Path(explicit).expanduser()] if explicit else []
    candidates += [_PROJECT_ROOT / "alembic.ini", Path.cwd() / "alembic.ini"]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise FileNotFoundError(
        "alembic.ini not found; set SHOUTRANK_ALEMBIC_INI to its location"
    )


def migration_config(url: URL | str) -> Config:
    """Build an Alembic config that migrates ``url`` through a synchronous driver."""

    ini_path = _locate_alembic_ini()
    sync_url = make_url(url) if isinstance(url, str) else url
    if sync_url.drivername != sync_url.get_backend_name():
        sync_url = sync_url.set(drivername=sync_url.get_backend_name())

    config = Config(str(ini_path))
    config.set_main_option("script_location", str(ini_path.parent / "alembic"))
    config.set_main_option(
        "sqlalchemy.url",
        sync_url.render_as_string(hide_password=False).replace("%", "%%"),
    )
    # The URL above wins over SHOUTRANK_DB_URL, and the host process keeps
    # its own logging configuration.
    config.attributes["explicit_url"] = True
    config.attributes["configure_logger"] = False
    return config


async def init_db(engine: AsyncEngine) -> None:
    """Upgrade the database behind ``engine`` to the latest schema revision."""

    config = migration_config(engine.url)
    await asyncio.to_thread(command.upgrade, config, "head")
    logger.debug("Schema for %s is at %s", engine.url.database, await current_revision(engine))


async def current_revision(engine: AsyncEngine) -> str | None:
    """Return the Alembic revision stamped in the database, if any."""

    def _read(connection: Any) -> str | None:
        return MigrationContext.configure(connection).get_current_revision()

    async with engine.connect() as connection:
        return await connection.run_sync(_read)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any error."""

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
