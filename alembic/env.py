"""Migration environment for the ShoutRank leaderboard schema.

Invoked both from the ``alembic`` CLI and from ``shoutrank.db.init_db``; the
latter passes an explicit URL and keeps the host's logging untouched.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

from shoutrank.db import models  # noqa: F401  registers tables on Base.metadata
from shoutrank.db.base import Base
from shoutrank.db.session import resolve_db_url

config = context.config
target_metadata = Base.metadata

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    if config.attributes.get("explicit_url"):
        raw = config.get_main_option("sqlalchemy.url")
    else:
        raw = resolve_db_url(None)
    url = make_url(raw)
    # Migrations always run through the synchronous driver of the same backend.
    url = url.set(drivername=url.get_backend_name())
    return url.render_as_string(hide_password=False)


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _database_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
